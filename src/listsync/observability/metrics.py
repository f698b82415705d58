"""Metrics hook protocol and no-op default implementation.

listsync emits counters and timings around batch submissions and change
checks.  By default a :class:`NoopMetricsHook` is used; callers may supply any
object satisfying :class:`MetricsHook` to route data points to StatsD,
Prometheus, Datadog or similar.

Emitted metric names:

* ``listsync.batch_attempts_total``       -- counter
* ``listsync.batch_retries_total``        -- counter (tag ``reason``)
* ``listsync.batch_items_total``          -- counter (tag ``outcome``)
* ``listsync.batch_backoff_ms``           -- timing
* ``listsync.batch_request_duration_ms``  -- timing
* ``listsync.change_checks_total``        -- counter (tag ``changed``)
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class MetricsHook(Protocol):
    """Protocol that any metrics backend must satisfy.

    All methods accept an optional *tags* dict of string keys and values.
    """

    def increment(
        self,
        name: str,
        value: int = 1,
        tags: dict[str, str] | None = None,
    ) -> None:
        """Increment a counter metric."""
        ...

    def timing(
        self,
        name: str,
        ms: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        """Record a duration in milliseconds."""
        ...

    def gauge(
        self,
        name: str,
        value: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        """Set a gauge metric to an absolute value."""
        ...


class NoopMetricsHook:
    """Metrics backend that discards every data point."""

    __slots__ = ()

    def increment(
        self,
        name: str,
        value: int = 1,
        tags: dict[str, str] | None = None,
    ) -> None:
        pass

    def timing(
        self,
        name: str,
        ms: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        pass

    def gauge(
        self,
        name: str,
        value: float,
        tags: dict[str, str] | None = None,
    ) -> None:
        pass


def resolve_metrics(metrics: Any | None) -> Any:
    """Return *metrics*, or a :class:`NoopMetricsHook` when it is ``None``."""
    return metrics if metrics is not None else NoopMetricsHook()
