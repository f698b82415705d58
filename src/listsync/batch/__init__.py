"""listsync.batch -- batch construction, submission and retry orchestration.

This sub-package provides:

* :mod:`.steps` -- The ordered registry of request steps in one batch.
* :mod:`.retries` -- Per-item status classification and backoff computation.
* :mod:`.transport` -- httpx-based JSON batch submitters (sync and async).
* :mod:`.orchestrator` -- Retry orchestrators that resubmit only retryable
  partial failures.
"""

from __future__ import annotations

from .orchestrator import (
    AsyncBatchRetryOrchestrator,
    BatchRetryOrchestrator,
    async_submit_with_retry,
    submit_with_retry,
)
from .retries import (
    RETRYABLE_STATUSES,
    StatusClass,
    StatusClassification,
    classify_status,
    classify_statuses,
    compute_backoff,
)
from .steps import BatchStepRegistry, fields_patch_request
from .transport import (
    AsyncBatchTransport,
    AsyncHttpBatchTransport,
    BatchTransport,
    HttpBatchTransport,
)

__all__ = [
    "RETRYABLE_STATUSES",
    "AsyncBatchRetryOrchestrator",
    "AsyncBatchTransport",
    "AsyncHttpBatchTransport",
    "BatchRetryOrchestrator",
    "BatchStepRegistry",
    "BatchTransport",
    "HttpBatchTransport",
    "StatusClass",
    "StatusClassification",
    "async_submit_with_retry",
    "classify_status",
    "classify_statuses",
    "compute_backoff",
    "fields_patch_request",
    "submit_with_retry",
]
