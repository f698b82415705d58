"""Per-item failure classification and backoff computation.

Pure functions used by the retry orchestrator:

* :func:`classify_status` / :func:`classify_statuses` -- split a batch
  outcome into succeeded, retryable and terminal request ids.
* :func:`compute_backoff` -- delay before the next resubmission.
* :func:`retry_after_hint` -- the largest ``Retry-After`` among retryable
  items.
"""

from __future__ import annotations

import random
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

# Transient server-side, throttling and resource-locked statuses.
RETRYABLE_STATUSES: frozenset[int] = frozenset({423, 429, 500, 502, 503, 504})


class StatusClass(str, Enum):
    """Outcome class of a single batch item."""

    SUCCEEDED = "succeeded"
    RETRYABLE = "retryable"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class StatusClassification:
    """Request ids of one attempt partitioned by :class:`StatusClass`.

    Each tuple preserves the order of the classified mapping.
    """

    succeeded: tuple[str, ...] = ()
    retryable: tuple[str, ...] = ()
    terminal: tuple[str, ...] = ()


def is_success_status(status: int) -> bool:
    return 200 <= status < 300


def classify_status(status: int) -> StatusClass:
    """Classify a single item status.

    2xx succeeds; 423, 429, 500, 502, 503 and 504 are retried; every other
    status (400, 401, 403, 404, 405, 409, 410, 302, ...) is terminal.
    """
    if is_success_status(status):
        return StatusClass.SUCCEEDED
    if status in RETRYABLE_STATUSES:
        return StatusClass.RETRYABLE
    return StatusClass.TERMINAL


def classify_statuses(statuses: Mapping[str, int]) -> StatusClassification:
    """Partition the request ids of an attempt by :func:`classify_status`."""
    buckets: dict[StatusClass, list[str]] = {cls: [] for cls in StatusClass}
    for request_id, status in statuses.items():
        buckets[classify_status(status)].append(request_id)
    return StatusClassification(
        succeeded=tuple(buckets[StatusClass.SUCCEEDED]),
        retryable=tuple(buckets[StatusClass.RETRYABLE]),
        terminal=tuple(buckets[StatusClass.TERMINAL]),
    )


def compute_backoff(
    retry_index: int,
    base: float = 1.0,
    maximum: float = 60.0,
    exponential: bool = True,
    jitter: bool = False,
    retry_after: float | None = None,
) -> float:
    """Compute the delay before the next resubmission.

    With exponential backoff the delay is ``base * 2**retry_index`` capped at
    *maximum*, giving ``1, 2, 4, 8, 16, 32, 60, 60, ...`` for ``base=1`` and
    ``maximum=60``.  Without it every delay equals *base*.  :class:`~listsync.config.RetryOptions`
    never lets *base* exceed *maximum*; called directly with such values the
    exponential delay is clamped to *maximum* from the first retry on.

    A server-provided *retry_after* lengthens the delay when it is larger,
    never beyond *maximum*.  When *jitter* is enabled the result is scaled to
    between 50 % and 100 % of its value.

    Parameters
    ----------
    retry_index:
        Number of backoffs already taken in this retry sequence (0-indexed).
    base:
        Initial delay in seconds.
    maximum:
        Upper cap in seconds for exponential growth and ``Retry-After``.
    exponential:
        Whether the delay doubles with every retry.
    jitter:
        Whether to apply random jitter.
    retry_after:
        Largest ``Retry-After`` hint (seconds) among retryable items.

    Returns
    -------
    float
        Delay in seconds.
    """
    if exponential:
        # Past 2**62 the cap always wins; bounding the exponent avoids float overflow.
        delay = min(base * (2 ** min(retry_index, 62)), maximum)
    else:
        delay = base

    if retry_after is not None and retry_after > delay:
        delay = max(delay, min(retry_after, maximum))

    if jitter:
        delay *= 0.5 + random.random() * 0.5

    return float(delay)


def _parse_retry_after(headers: Mapping[str, str]) -> float | None:
    for key, raw in headers.items():
        if key.lower() != "retry-after":
            continue
        try:
            return float(raw)
        except (ValueError, TypeError):
            return None
    return None


def retry_after_hint(
    responses: Mapping[str, Any],
    request_ids: Iterable[str],
) -> float | None:
    """Return the largest ``Retry-After`` value among *request_ids*.

    Responses without a ``headers`` mapping, or without a numeric
    ``Retry-After`` header, are ignored.
    """
    hints: list[float] = []
    for request_id in request_ids:
        headers = getattr(responses.get(request_id), "headers", None)
        if not isinstance(headers, Mapping):
            continue
        value = _parse_retry_after(headers)
        if value is not None:
            hints.append(value)
    return max(hints) if hints else None
