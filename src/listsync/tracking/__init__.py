"""Change tracking and version comparison.

Exports
-------
ChangeTracker
    Detects whether a record differs from its last-loaded snapshot.
SnapshotProvider
    Protocol for objects that report their live field values.
compare_versions
    Field-level diff of two snapshots.
compare_pending_changes
    Field-level diff of a tracker's original and live snapshots.
changes_summary
    Human-readable one-line summary of a comparison.
"""

from .comparison import (
    NO_CHANGES_SUMMARY,
    changes_summary,
    compare_pending_changes,
    compare_versions,
    determine_change_type,
    values_equal,
)
from .tracker import ChangeTracker, SnapshotProvider

__all__ = [
    "NO_CHANGES_SUMMARY",
    "ChangeTracker",
    "SnapshotProvider",
    "changes_summary",
    "compare_pending_changes",
    "compare_versions",
    "determine_change_type",
    "values_equal",
]
