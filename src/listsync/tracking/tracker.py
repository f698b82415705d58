"""Change tracker for list-item records.

A :class:`ChangeTracker` pairs the snapshot captured when a record was last
loaded from the server with a :class:`SnapshotProvider` that produces the
record's live field values on demand.  It answers "would saving this record
send anything?" without a network round trip.
"""

from __future__ import annotations

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Protocol, runtime_checkable

from listsync.models import VersionComparison
from listsync.observability import get_logger, resolve_metrics

from .comparison import changes_summary, compare_pending_changes, values_equal

log = get_logger("listsync.tracking")


@runtime_checkable
class SnapshotProvider(Protocol):
    """Anything that can report its current field values."""

    def snapshot(self) -> Mapping[str, Any]:
        """Return the live field values as a name-to-value mapping."""
        ...


class ChangeTracker:
    """Track whether a record differs from its last-loaded state.

    Parameters
    ----------
    provider:
        Source of the record's live field values.
    metrics:
        Optional :class:`~listsync.observability.MetricsHook` backend.
    """

    __slots__ = ("_metrics", "_original", "_provider")

    def __init__(self, provider: SnapshotProvider, metrics: Any | None = None) -> None:
        if not isinstance(provider, SnapshotProvider):
            raise TypeError(
                f"provider must implement snapshot(), got {type(provider).__name__}"
            )
        self._provider = provider
        self._original: dict[str, Any] | None = None
        self._metrics = resolve_metrics(metrics)

    @property
    def is_loaded(self) -> bool:
        """``True`` once an original snapshot has been recorded."""
        return self._original is not None

    def set_original(self, snapshot: Mapping[str, Any] | None) -> None:
        """Record the server state of the record.

        A private copy is kept, so later mutation of *snapshot* by the caller
        does not affect change detection.  ``None`` marks the record as never
        loaded.
        """
        self._original = dict(snapshot) if snapshot is not None else None

    def original_values(self) -> Mapping[str, Any] | None:
        """Return a read-only view of the original snapshot, or ``None``."""
        if self._original is None:
            return None
        return MappingProxyType(self._original)

    def current_values(self) -> Mapping[str, Any]:
        """Return the provider's live snapshot."""
        return self._provider.snapshot()

    def has_changes(self) -> bool:
        """Return ``True`` if the live values differ from the original.

        A record that was never loaded always reports changes.  A field that
        is missing on one side counts as a change only when the other side
        holds a non-``None`` value.
        """
        if self._original is None:
            return True
        return self._changed_against(self.current_values())

    def _changed_against(self, current: Mapping[str, Any]) -> bool:
        """Check an already captured live snapshot against the original."""
        if self._original is None:
            return True
        changed = self._detect_change(self._original, current)
        self._metrics.increment(
            "listsync.change_checks_total",
            tags={"changed": str(changed).lower()},
        )
        return changed

    @staticmethod
    def _detect_change(original: Mapping[str, Any], current: Mapping[str, Any]) -> bool:
        for name, value in current.items():
            if name not in original:
                if value is not None:
                    return True
                continue
            if not values_equal(original[name], value):
                return True

        return any(
            name not in current and value is not None
            for name, value in original.items()
        )

    def pending_changes(self) -> VersionComparison:
        """Field differences that saving the record would send."""
        return compare_pending_changes(self)

    def changes_summary(self) -> str:
        """One-line summary of :meth:`pending_changes`."""
        summary = changes_summary(self.pending_changes())
        log.debug(
            "Computed pending changes summary",
            extra={"extra_fields": {"op": "changes_summary", "summary": summary}},
        )
        return summary
