"""Field-level comparison of record snapshots.

A snapshot is a plain mapping of field name to value.  The functions here
classify every field of two snapshots as added, modified, removed or
unchanged and build a :class:`VersionComparison` from the result.

Presence matters: a field missing from a snapshot is not the same as a field
present with a ``None`` value.  ``{"a": None}`` compared to ``{}`` yields a
``REMOVED`` difference for ``a``.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from listsync.models import ChangeType, FieldDifference, VersionComparison

if TYPE_CHECKING:
    from .tracker import ChangeTracker

NO_CHANGES_SUMMARY = "No changes detected."

_EMPTY: Mapping[str, Any] = {}


def values_equal(old: Any, new: Any) -> bool:
    """Return ``True`` if two field values should be treated as equal.

    Values are compared with ``==``, which is structural for built-in
    containers.  Identical objects are always equal (so a ``NaN`` stored in
    both snapshots does not register as a change), and a ``bool`` never
    equals a non-``bool`` even though ``True == 1`` in Python.
    """
    if old is new:
        return True
    if isinstance(old, bool) != isinstance(new, bool):
        return False
    try:
        return bool(old == new)
    except (TypeError, ValueError):
        # Array-likes raise on truth-testing an element-wise comparison.
        return False


def determine_change_type(
    old: Any,
    new: Any,
    has_old: bool,
    has_new: bool,
) -> ChangeType:
    """Classify a single field from its presence flags and values."""
    if not has_old and has_new:
        return ChangeType.ADDED
    if has_old and not has_new:
        return ChangeType.REMOVED
    if not has_old and not has_new:
        return ChangeType.UNCHANGED
    return ChangeType.UNCHANGED if values_equal(old, new) else ChangeType.MODIFIED


def _diff_fields(
    from_data: Mapping[str, Any],
    to_data: Mapping[str, Any],
    include_unchanged: bool,
) -> tuple[FieldDifference, ...]:
    differences: list[FieldDifference] = []
    for name in sorted(set(from_data) | set(to_data)):
        has_old = name in from_data
        has_new = name in to_data
        old = from_data.get(name)
        new = to_data.get(name)
        change_type = determine_change_type(old, new, has_old, has_new)
        if include_unchanged or change_type is not ChangeType.UNCHANGED:
            differences.append(
                FieldDifference(
                    field_name=name,
                    old_value=old,
                    new_value=new,
                    change_type=change_type,
                )
            )
    return tuple(differences)


def compare_versions(
    from_snapshot: Mapping[str, Any] | None,
    to_snapshot: Mapping[str, Any] | None,
    include_unchanged: bool = False,
) -> VersionComparison:
    """Compare two snapshots field by field.

    Parameters
    ----------
    from_snapshot:
        The older snapshot.  ``None`` is treated as an empty mapping.
    to_snapshot:
        The newer snapshot.  ``None`` is treated as an empty mapping.
    include_unchanged:
        Also report fields whose value did not change.

    Returns
    -------
    VersionComparison
        Differences sorted by field name.  Empty when both snapshots are
        ``None``.
    """
    if from_snapshot is None and to_snapshot is None:
        return VersionComparison()

    differences = _diff_fields(
        from_snapshot if from_snapshot is not None else _EMPTY,
        to_snapshot if to_snapshot is not None else _EMPTY,
        include_unchanged,
    )
    return VersionComparison(
        differences=differences,
        from_snapshot=from_snapshot,
        to_snapshot=to_snapshot,
    )


def compare_pending_changes(tracker: ChangeTracker) -> VersionComparison:
    """Compare a tracker's original snapshot with its live values.

    Unchanged fields are never reported.  The result is empty when the
    tracker reports no changes or has never been loaded.  The live values are
    read once, so the change check and the diff always see the same snapshot.
    """
    current = tracker.current_values()
    original = tracker.original_values()
    if original is None or not tracker._changed_against(current):
        return VersionComparison(to_snapshot=current)

    return VersionComparison(
        differences=_diff_fields(original, current, include_unchanged=False),
        from_snapshot=original,
        to_snapshot=current,
    )


def changes_summary(comparison: VersionComparison) -> str:
    """Render a one-line, human-readable summary of *comparison*.

    Examples: ``"No changes detected."``,
    ``"1 field(s) added, 2 field(s) modified"``.
    """
    if not comparison.has_differences:
        return NO_CHANGES_SUMMARY

    clauses: list[str] = []
    added = len(comparison.added_fields)
    modified = len(comparison.modified_fields)
    removed = len(comparison.removed_fields)
    if added:
        clauses.append(f"{added} field(s) added")
    if modified:
        clauses.append(f"{modified} field(s) modified")
    if removed:
        clauses.append(f"{removed} field(s) removed")
    return ", ".join(clauses)
