"""Configuration for listsync.

Three pieces live here:

* :class:`RetryOptions`, the knobs that govern batch retries and backoff.
* The process-wide default retry options, guarded by a lock, with
  overrides installed by :func:`default_retry_options` layered on top and
  kept local to the current thread or task.
* :class:`ListSyncConfig` and its fluent :class:`ListSyncConfigBuilder`, which
  configure the HTTP batch submitter and the change-tracking gate.
"""

from __future__ import annotations

import contextvars
import dataclasses
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

# ---------------------------------------------------------------------------
# Retry options
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RetryOptions:
    """Retry policy for batch submissions.

    Parameters
    ----------
    max_retries:
        Maximum number of batch submissions, the first one included.
    initial_delay_seconds:
        Delay before the first resubmission.
    use_exponential_backoff:
        Double the delay after every resubmission (capped at
        *max_delay_seconds*).  When ``False`` every wait equals
        *initial_delay_seconds*.
    max_delay_seconds:
        Upper cap on any single backoff delay.  Must not be smaller than
        *initial_delay_seconds*.
    jitter:
        Randomly scale each delay to 50-100 % of its value.
    respect_retry_after:
        Honour ``Retry-After`` headers on throttled items, never waiting less
        than the server asked for (still capped at *max_delay_seconds*).
    """

    max_retries: int = 5

    initial_delay_seconds: float = 1

    use_exponential_backoff: bool = True

    max_delay_seconds: float = 60

    jitter: bool = False

    respect_retry_after: bool = True

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {self.max_retries}")
        if self.initial_delay_seconds < 1:
            raise ValueError(
                f"initial_delay_seconds must be at least 1, got {self.initial_delay_seconds}"
            )
        if self.max_delay_seconds <= 0:
            raise ValueError(f"max_delay_seconds must be > 0, got {self.max_delay_seconds}")
        if self.initial_delay_seconds > self.max_delay_seconds:
            raise ValueError(
                f"initial_delay_seconds ({self.initial_delay_seconds}) must not exceed "
                f"max_delay_seconds ({self.max_delay_seconds})"
            )

    def with_overrides(
        self,
        max_retries: int | None = None,
        initial_delay_seconds: float | None = None,
    ) -> RetryOptions:
        """Return a copy with the given per-call overrides applied.

        Overrides are validated like constructor arguments.
        """
        changes: dict[str, Any] = {}
        if max_retries is not None:
            changes["max_retries"] = max_retries
        if initial_delay_seconds is not None:
            changes["initial_delay_seconds"] = initial_delay_seconds
        if not changes:
            return self
        return dataclasses.replace(self, **changes)


# ---------------------------------------------------------------------------
# Process-wide defaults and scoped overrides
# ---------------------------------------------------------------------------

_defaults_lock = threading.Lock()
_default_retry_options = RetryOptions()

_SCOPED_RETRY_OPTIONS: contextvars.ContextVar[RetryOptions | None] = contextvars.ContextVar(
    "listsync_scoped_retry_options",
    default=None,
)


def get_default_retry_options() -> RetryOptions:
    """Return the retry options used when none are passed explicitly.

    An override installed with :func:`default_retry_options` in the current
    context wins; otherwise the process-wide defaults are returned.
    """
    scoped = _SCOPED_RETRY_OPTIONS.get()
    if scoped is not None:
        return scoped
    with _defaults_lock:
        return _default_retry_options


def set_default_retry_options(options: RetryOptions) -> None:
    """Replace the process-wide default retry options.

    The new value is seen by every thread and task that has no scoped
    override in place.
    """
    global _default_retry_options
    if not isinstance(options, RetryOptions):
        raise TypeError(f"expected RetryOptions, got {type(options).__name__}")
    with _defaults_lock:
        _default_retry_options = options


def reset_defaults() -> None:
    """Restore the built-in defaults and drop the current scoped override."""
    global _default_retry_options
    with _defaults_lock:
        _default_retry_options = RetryOptions()
    _SCOPED_RETRY_OPTIONS.set(None)


@contextmanager
def default_retry_options(options: RetryOptions) -> Iterator[RetryOptions]:
    """Override the defaults for the duration of a ``with`` block.

    The override is local to the current thread or task and is layered on
    top of the process-wide defaults.

    Usage::

        with default_retry_options(RetryOptions(max_retries=2)):
            orchestrator.submit_with_default_retries(registry)
    """
    if not isinstance(options, RetryOptions):
        raise TypeError(f"expected RetryOptions, got {type(options).__name__}")
    token = _SCOPED_RETRY_OPTIONS.set(options)
    try:
        yield options
    finally:
        _SCOPED_RETRY_OPTIONS.reset(token)


# ---------------------------------------------------------------------------
# Client configuration
# ---------------------------------------------------------------------------

@dataclass
class ListSyncConfig:
    """Configuration for the HTTP batch submitter and update gating.

    Parameters
    ----------
    token:
        Bearer token sent with every batch request.  Never logged.
    base_url:
        API root URL; batches are posted to ``{base_url}/$batch``.
    timeout_seconds:
        HTTP request timeout in seconds.
    http_proxy:
        Optional HTTP/HTTPS proxy URL.
    batch_retry:
        Retry options for orchestrators built from this config.  ``None``
        means "use the default retry options at call time".
    change_tracking_before_update:
        When ``True`` (default) update requests are only built for records
        whose tracker reports changes.
    metrics:
        Optional :class:`~listsync.observability.MetricsHook` backend.
    debug_dump_payload:
        Write the (redacted) batch request and response to *stderr*.
    """

    # ── Core ────────────────────────────────────────────────────────────
    token: str = ""

    base_url: str = "https://graph.microsoft.com/v1.0"

    # ── HTTP ────────────────────────────────────────────────────────────
    timeout_seconds: float = 30.0

    http_proxy: str | None = None

    # ── Retry ───────────────────────────────────────────────────────────
    batch_retry: RetryOptions | None = None

    # ── Change tracking ─────────────────────────────────────────────────
    change_tracking_before_update: bool = True

    # ── Observability ──────────────────────────────────────────────────
    metrics: Any | None = None

    # ── Debug ───────────────────────────────────────────────────────────
    debug_dump_payload: bool = False

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        from urllib.parse import urlparse

        parsed = urlparse(self.base_url)
        if parsed.scheme == "http" and parsed.hostname not in (
            "localhost",
            "127.0.0.1",
            "::1",
        ):
            raise ValueError(
                f"base_url uses insecure HTTP for non-local host '{parsed.hostname}'. "
                "Use HTTPS to protect your API token, or target localhost for testing."
            )
        if self.timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be > 0, got {self.timeout_seconds}")
        if self.batch_retry is not None and not isinstance(self.batch_retry, RetryOptions):
            raise TypeError(
                f"batch_retry must be RetryOptions or None, got {type(self.batch_retry).__name__}"
            )

    def resolved_retry_options(self) -> RetryOptions:
        """Return :attr:`batch_retry`, falling back to the default retry options."""
        if self.batch_retry is not None:
            return self.batch_retry
        return get_default_retry_options()

    def should_proceed_with_update(self, has_changes: bool) -> bool:
        """Decide whether an update request should be sent for a record."""
        if not self.change_tracking_before_update:
            return True
        return has_changes

    def __repr__(self) -> str:
        """Mask the token to prevent accidental credential leakage."""
        parts: list[str] = []
        for f in dataclasses.fields(self):
            val = getattr(self, f.name)
            if f.name == "token":
                masked = f"...{val[-4:]}" if len(val) >= 4 else "****"
                parts.append(f"token='{masked}'")
            else:
                parts.append(f"{f.name}={val!r}")
        return f"ListSyncConfig({', '.join(parts)})"


class ListSyncConfigBuilder:
    """Fluent builder for :class:`ListSyncConfig`.

    Usage::

        config = (
            ListSyncConfigBuilder()
            .with_token(token)
            .with_batch_retry_options(lambda o: dataclasses.replace(o, max_retries=3))
            .build()
        )
    """

    def __init__(self) -> None:
        self._values: dict[str, Any] = {}

    def with_token(self, token: str) -> ListSyncConfigBuilder:
        self._values["token"] = token
        return self

    def with_base_url(self, base_url: str) -> ListSyncConfigBuilder:
        self._values["base_url"] = base_url
        return self

    def with_timeout(self, seconds: float) -> ListSyncConfigBuilder:
        self._values["timeout_seconds"] = seconds
        return self

    def with_proxy(self, proxy: str) -> ListSyncConfigBuilder:
        self._values["http_proxy"] = proxy
        return self

    def with_batch_retry_options(
        self,
        options: RetryOptions | Callable[[RetryOptions], RetryOptions],
        *,
        make_default: bool = False,
    ) -> ListSyncConfigBuilder:
        """Set the batch retry options.

        *options* is either a :class:`RetryOptions` instance or a callable
        that receives the built-in defaults and returns the options to use.
        With ``make_default=True`` the options also become the
        process-wide defaults.
        """
        if callable(options) and not isinstance(options, RetryOptions):
            resolved = options(RetryOptions())
        else:
            resolved = options
        if not isinstance(resolved, RetryOptions):
            raise TypeError(f"expected RetryOptions, got {type(resolved).__name__}")
        self._values["batch_retry"] = resolved
        if make_default:
            set_default_retry_options(resolved)
        return self

    def with_metrics(self, metrics: Any) -> ListSyncConfigBuilder:
        self._values["metrics"] = metrics
        return self

    def without_change_tracking(self) -> ListSyncConfigBuilder:
        self._values["change_tracking_before_update"] = False
        return self

    def with_debug_dump(self, enabled: bool = True) -> ListSyncConfigBuilder:
        self._values["debug_dump_payload"] = enabled
        return self

    def build(self) -> ListSyncConfig:
        return ListSyncConfig(**self._values)
