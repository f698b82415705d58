"""listsync — change tracking and resilient batch submission for list items.

Public re-exports
-----------------

* **Change tracking:** :class:`ChangeTracker`, :func:`compare_versions`,
  :func:`compare_pending_changes`, :func:`changes_summary`
* **Batching:** :class:`BatchStepRegistry`, :class:`BatchRetryOrchestrator`,
  :class:`AsyncBatchRetryOrchestrator`, :class:`HttpBatchTransport`,
  :class:`AsyncHttpBatchTransport`
* **Configuration:** :class:`ListSyncConfig`, :class:`RetryOptions` and the
  default retry option helpers
* **Errors:** Every :class:`ListSyncError` subclass and :class:`ErrorCode`
* **Models:** Result dataclasses and enums

Usage::

    from listsync import (
        BatchRequest, BatchRetryOrchestrator, BatchStepRegistry,
        HttpBatchTransport, ListSyncConfig,
    )

    registry = BatchStepRegistry()
    registry.add_request(BatchRequest("GET", "/sites/root"), request_id="1")

    with HttpBatchTransport(ListSyncConfig(token="...")) as transport:
        statuses, responses = BatchRetryOrchestrator(transport).submit_with_retry(registry)
"""

from __future__ import annotations

# ── Batching ────────────────────────────────────────────────────────────
from listsync.batch import (
    AsyncBatchRetryOrchestrator,
    AsyncBatchTransport,
    AsyncHttpBatchTransport,
    BatchRetryOrchestrator,
    BatchStepRegistry,
    BatchTransport,
    HttpBatchTransport,
    async_submit_with_retry,
    fields_patch_request,
    submit_with_retry,
)

# ── Configuration ───────────────────────────────────────────────────────
from listsync.config import (
    ListSyncConfig,
    ListSyncConfigBuilder,
    RetryOptions,
    default_retry_options,
    get_default_retry_options,
    reset_defaults,
    set_default_retry_options,
)

# ── Errors ──────────────────────────────────────────────────────────────
from listsync.errors import (
    ErrorCode,
    ListSyncAuthError,
    ListSyncBatchResponseError,
    ListSyncError,
    ListSyncNetworkError,
    ListSyncNotFoundError,
    ListSyncPermissionError,
    ListSyncServiceError,
    ListSyncValidationError,
)

# ── Models ──────────────────────────────────────────────────────────────
from listsync.models import (
    AttemptOutcome,
    BatchItemResponse,
    BatchRequest,
    BatchRequestStep,
    BatchRetryResult,
    ChangeType,
    FieldDifference,
    VersionComparison,
)

# ── Change tracking ─────────────────────────────────────────────────────
from listsync.tracking import (
    ChangeTracker,
    SnapshotProvider,
    changes_summary,
    compare_pending_changes,
    compare_versions,
)

# ── Public surface ──────────────────────────────────────────────────────

__all__ = [
    # Change tracking
    "ChangeTracker",
    "SnapshotProvider",
    "compare_versions",
    "compare_pending_changes",
    "changes_summary",
    # Batching
    "BatchStepRegistry",
    "BatchRetryOrchestrator",
    "AsyncBatchRetryOrchestrator",
    "BatchTransport",
    "AsyncBatchTransport",
    "HttpBatchTransport",
    "AsyncHttpBatchTransport",
    "submit_with_retry",
    "async_submit_with_retry",
    "fields_patch_request",
    # Configuration
    "ListSyncConfig",
    "ListSyncConfigBuilder",
    "RetryOptions",
    "get_default_retry_options",
    "set_default_retry_options",
    "reset_defaults",
    "default_retry_options",
    # Errors
    "ListSyncError",
    "ErrorCode",
    "ListSyncValidationError",
    "ListSyncAuthError",
    "ListSyncPermissionError",
    "ListSyncNotFoundError",
    "ListSyncServiceError",
    "ListSyncNetworkError",
    "ListSyncBatchResponseError",
    # Models
    "ChangeType",
    "FieldDifference",
    "VersionComparison",
    "BatchRequest",
    "BatchRequestStep",
    "BatchItemResponse",
    "AttemptOutcome",
    "BatchRetryResult",
]
