"""Public data models for listsync.

This module contains the field-diff result types produced by the change
tracking engine and the request/response types exchanged with the batch
retry orchestrator.  Types are plain dataclasses; the derived views on
:class:`VersionComparison` and :class:`BatchRetryResult` are read-only
properties.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ChangeType(str, Enum):
    """How a single field differs between two snapshots."""

    ADDED = "added"
    """The field is present only in the newer snapshot."""

    MODIFIED = "modified"
    """The field is present in both snapshots with different values."""

    REMOVED = "removed"
    """The field is present only in the older snapshot."""

    UNCHANGED = "unchanged"
    """The field carries the same value in both snapshots."""


# ---------------------------------------------------------------------------
# Change tracking types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldDifference:
    """A single field-level difference.

    Attributes
    ----------
    field_name:
        Name of the field.
    old_value:
        Value in the older snapshot (``None`` when absent).
    new_value:
        Value in the newer snapshot (``None`` when absent).
    change_type:
        Classification of the difference.
    """

    field_name: str
    old_value: Any
    new_value: Any
    change_type: ChangeType

    @property
    def has_changed(self) -> bool:
        return self.change_type is not ChangeType.UNCHANGED


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class VersionComparison:
    """Result of comparing two field snapshots.

    Attributes
    ----------
    differences:
        Field differences sorted by field name.
    from_snapshot:
        The older snapshot, or ``None``.
    to_snapshot:
        The newer snapshot, or ``None``.
    compared_at:
        UTC timestamp of the comparison.
    """

    differences: tuple[FieldDifference, ...] = ()
    from_snapshot: Mapping[str, Any] | None = None
    to_snapshot: Mapping[str, Any] | None = None
    compared_at: datetime = field(default_factory=_utcnow)

    @property
    def has_differences(self) -> bool:
        return any(d.has_changed for d in self.differences)

    @property
    def changed_fields_count(self) -> int:
        return sum(1 for d in self.differences if d.has_changed)

    def _of_type(self, change_type: ChangeType) -> tuple[FieldDifference, ...]:
        return tuple(d for d in self.differences if d.change_type is change_type)

    @property
    def added_fields(self) -> tuple[FieldDifference, ...]:
        return self._of_type(ChangeType.ADDED)

    @property
    def modified_fields(self) -> tuple[FieldDifference, ...]:
        return self._of_type(ChangeType.MODIFIED)

    @property
    def removed_fields(self) -> tuple[FieldDifference, ...]:
        return self._of_type(ChangeType.REMOVED)

    @property
    def unchanged_fields(self) -> tuple[FieldDifference, ...]:
        return self._of_type(ChangeType.UNCHANGED)


# ---------------------------------------------------------------------------
# Batch types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BatchRequest:
    """A single HTTP request carried inside a JSON batch.

    Attributes
    ----------
    method:
        HTTP method (``GET``, ``POST``, ``PATCH``, ``DELETE``).
    url:
        Path relative to the API root, e.g. ``/sites/{id}/lists/{id}/items``.
    body:
        JSON-serialisable request body, or ``None``.
    headers:
        Per-request headers.  A JSON body without an explicit
        ``Content-Type`` is sent as ``application/json``.
    """

    method: str
    url: str
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class BatchRequestStep:
    """One entry of a batch: a request plus the ids it depends on.

    The ``request_id`` is visible to both the caller and the remote service
    and is reused verbatim on every retry.
    """

    request_id: str
    request: Any
    depends_on: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not isinstance(self.request_id, str) or not self.request_id:
            raise ValueError(f"request_id must be a non-empty string, got {self.request_id!r}")
        if isinstance(self.depends_on, str):
            raise TypeError("depends_on must be a collection of request ids, not a string")
        object.__setattr__(self, "depends_on", tuple(self.depends_on))


@dataclass(frozen=True)
class BatchItemResponse:
    """The response to one request of a batch.

    Attributes
    ----------
    request_id:
        Id of the request this response answers.
    status:
        HTTP status code of the individual request.
    headers:
        Response headers of the individual request.
    body:
        Parsed response body, or ``None``.
    """

    request_id: str
    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None

    @property
    def is_success(self) -> bool:
        return 200 <= self.status < 300


@dataclass
class AttemptOutcome:
    """What a single batch submission returned, keyed by request id."""

    statuses: dict[str, int] = field(default_factory=dict)
    responses: dict[str, Any] = field(default_factory=dict)


@dataclass
class BatchRetryResult:
    """Merged outcome of a retried batch submission.

    For every request id the status and response come from the last attempt
    in which that id was submitted.  Unpacks as ``statuses, responses``.

    Attributes
    ----------
    statuses:
        Request id to final HTTP status code.
    responses:
        Request id to the raw response of the final attempt.
    attempts:
        Number of batch submissions performed.
    """

    statuses: dict[str, int] = field(default_factory=dict)
    responses: dict[str, Any] = field(default_factory=dict)
    attempts: int = 0

    def __iter__(self) -> Iterator[dict[str, Any]]:
        yield self.statuses
        yield self.responses

    @property
    def succeeded_ids(self) -> tuple[str, ...]:
        return tuple(rid for rid, status in self.statuses.items() if 200 <= status < 300)

    @property
    def failed_ids(self) -> tuple[str, ...]:
        return tuple(rid for rid, status in self.statuses.items() if not 200 <= status < 300)
