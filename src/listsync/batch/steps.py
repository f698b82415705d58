"""Batch step registry.

A :class:`BatchStepRegistry` holds the requests that make up one batch
submission, in insertion order and keyed by request id.  The retry
orchestrator never mutates a registry: it derives the next, smaller batch
with :meth:`BatchStepRegistry.retain`, which reuses the original step objects
so request ids and dependency lists survive every retry unchanged.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Iterator, Mapping
from typing import TYPE_CHECKING, Any

from listsync.models import BatchRequest, BatchRequestStep

if TYPE_CHECKING:
    from listsync.config import ListSyncConfig
    from listsync.tracking import ChangeTracker


class BatchStepRegistry:
    """Ordered collection of :class:`BatchRequestStep` objects.

    Parameters
    ----------
    steps:
        Optional initial steps, added in order with the same validation as
        :meth:`add`.
    """

    __slots__ = ("_steps",)

    def __init__(self, steps: Iterable[BatchRequestStep] = ()) -> None:
        self._steps: dict[str, BatchRequestStep] = {}
        for step in steps:
            self.add(step)

    # -- building ----------------------------------------------------------

    def add(self, step: BatchRequestStep) -> None:
        """Register *step*.

        Raises
        ------
        ValueError
            If the id is already registered or a dependency names a request
            that has not been registered yet.
        """
        if step.request_id in self._steps:
            raise ValueError(f"duplicate request id {step.request_id!r}")
        unknown = [dep for dep in step.depends_on if dep not in self._steps]
        if unknown:
            raise ValueError(
                f"request {step.request_id!r} depends on unregistered ids: {', '.join(unknown)}"
            )
        self._steps[step.request_id] = step

    def add_request(
        self,
        request: Any,
        *,
        request_id: str | None = None,
        depends_on: Iterable[str] = (),
    ) -> str:
        """Wrap *request* in a step, register it and return its id.

        A random hex id is generated when *request_id* is omitted.
        """
        rid = request_id if request_id is not None else uuid.uuid4().hex
        self.add(BatchRequestStep(request_id=rid, request=request, depends_on=tuple(depends_on)))
        return rid

    def remove(self, request_id: str) -> bool:
        """Remove a step; return ``False`` if the id was not registered."""
        return self._steps.pop(request_id, None) is not None

    # -- querying ----------------------------------------------------------

    def get(self, request_id: str) -> BatchRequestStep | None:
        return self._steps.get(request_id)

    @property
    def ids(self) -> tuple[str, ...]:
        return tuple(self._steps)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._steps

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self) -> Iterator[BatchRequestStep]:
        return iter(self._steps.values())

    def __repr__(self) -> str:
        return f"BatchStepRegistry(ids={list(self._steps)!r})"

    # -- retry support -----------------------------------------------------

    def retain(self, request_ids: Iterable[str]) -> BatchStepRegistry:
        """Return a new registry holding only *request_ids*.

        Steps keep their original order and are the very same objects, so
        ids and ``depends_on`` tuples are identical to the original.  Ids not
        present here are ignored.  Dependencies on steps left out of the new
        registry are kept as-is; the remote service resolves them.
        """
        wanted = set(request_ids)
        subset = BatchStepRegistry()
        subset._steps = {rid: step for rid, step in self._steps.items() if rid in wanted}
        return subset


def fields_patch_request(
    url: str,
    tracker: ChangeTracker,
    *,
    changed_only: bool = False,
    config: ListSyncConfig | None = None,
) -> BatchRequest | None:
    """Build a ``PATCH`` request that saves a tracked record's fields.

    Parameters
    ----------
    url:
        Path of the item's fields resource, e.g.
        ``/sites/{site}/lists/{list}/items/{id}/fields``.
    tracker:
        The record's change tracker.
    changed_only:
        Send only added and modified fields instead of the full snapshot.
        Removed fields are sent as ``None`` so the server clears them.
    config:
        When given, its ``change_tracking_before_update`` flag decides
        whether an unchanged record is skipped.  Without a config unchanged
        records are always skipped.

    Returns
    -------
    BatchRequest | None
        ``None`` when the record has no changes and tracking is enabled.
    """
    has_changes = tracker.has_changes()
    proceed = config.should_proceed_with_update(has_changes) if config is not None else has_changes
    if not proceed:
        return None

    body: Mapping[str, Any]
    if changed_only and tracker.is_loaded:
        body = {
            diff.field_name: diff.new_value
            for diff in tracker.pending_changes().differences
        }
    else:
        body = dict(tracker.current_values())
    return BatchRequest(method="PATCH", url=url, body=body)
