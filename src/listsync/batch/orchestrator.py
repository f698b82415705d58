"""Batch retry orchestrator.

Drives repeated submissions of one batch until every item has either
succeeded, failed terminally, or used up the retry budget:

1. **Submit** the current batch (initially the whole registry).
2. **Merge** the attempt's statuses and responses into the running result;
   an id resubmitted later is overwritten by its later outcome.
3. **Classify** the attempt: 2xx succeeded, 423/429/500/502/503/504
   retryable, everything else terminal.
4. **Stop** when nothing is retryable or the attempt budget is spent.
5. **Back off**, then rebuild the batch from the retryable ids only.  Steps
   are reused verbatim, so request ids and dependencies never change.

An exception raised while submitting is re-raised on the final attempt;
otherwise the same, unreduced batch is resubmitted after a backoff.  A
``retry_after`` carried in the exception's context lengthens that backoff.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

from listsync.config import ListSyncConfig, RetryOptions, get_default_retry_options
from listsync.errors import ListSyncBatchResponseError
from listsync.models import AttemptOutcome, BatchRetryResult
from listsync.observability import get_logger, resolve_metrics

from .retries import (
    StatusClassification,
    classify_statuses,
    compute_backoff,
    retry_after_hint,
)
from .steps import BatchStepRegistry

log = get_logger("listsync.batch")


# ---------------------------------------------------------------------------
# Shared helpers (used by both sync and async orchestrators)
# ---------------------------------------------------------------------------

class _RetryState:
    """Mutable state of one retry sequence."""

    __slots__ = ("attempt", "batch", "result", "retry_index")

    def __init__(self, registry: BatchStepRegistry) -> None:
        self.batch = registry
        self.result = BatchRetryResult()
        self.attempt = 0
        self.retry_index = 0


def _resolve_options(
    base: RetryOptions | None,
    max_retries: int | None,
    initial_delay_seconds: float | None,
) -> RetryOptions:
    """Apply per-call overrides; raises ``ValueError`` for invalid values."""
    options = base if base is not None else get_default_retry_options()
    return options.with_overrides(max_retries, initial_delay_seconds)


def _check_outcome(batch: BatchStepRegistry, outcome: AttemptOutcome) -> None:
    """Ensure the outcome reports every submitted id and nothing else."""
    submitted = set(batch.ids)
    reported = set(outcome.statuses)
    missing = submitted - reported
    unexpected = reported - submitted
    if missing or unexpected:
        raise ListSyncBatchResponseError(
            message=(
                f"Batch outcome does not match the submitted requests "
                f"(missing: {sorted(missing)}, unexpected: {sorted(unexpected)})"
            ),
            context={
                "missing_ids": sorted(missing),
                "unexpected_ids": sorted(unexpected),
                "reason": "id_mismatch",
            },
        )


def _merge_attempt(state: _RetryState, outcome: AttemptOutcome) -> None:
    for request_id, status in outcome.statuses.items():
        state.result.statuses[request_id] = status
        state.result.responses[request_id] = outcome.responses.get(request_id)


def _record_attempt(
    metrics: Any,
    state: _RetryState,
    options: RetryOptions,
    classification: StatusClassification,
) -> None:
    for outcome_name, ids in (
        ("succeeded", classification.succeeded),
        ("retryable", classification.retryable),
        ("terminal", classification.terminal),
    ):
        if ids:
            metrics.increment(
                "listsync.batch_items_total", len(ids), tags={"outcome": outcome_name},
            )
    for request_id in classification.terminal:
        log.warning(
            "Request failed with a non-retryable status and will not be retried",
            extra={
                "extra_fields": {
                    "op": "submit_batch",
                    "request_id": request_id,
                    "status_code": state.result.statuses[request_id],
                    "attempt": state.attempt,
                }
            },
        )
    log.debug(
        "Batch attempt completed",
        extra={
            "extra_fields": {
                "op": "submit_batch",
                "attempt": state.attempt,
                "max_retries": options.max_retries,
                "submitted": len(state.batch),
                "retryable": len(classification.retryable),
                "terminal": len(classification.terminal),
            }
        },
    )


def _finish(state: _RetryState, options: RetryOptions, classification: StatusClassification) -> bool:
    """Return ``True`` if the sequence ends after the current attempt."""
    if not classification.retryable:
        log.info(
            "Batch request completed",
            extra={"extra_fields": {"op": "submit_batch", "attempts": state.attempt}},
        )
        return True
    if state.attempt >= options.max_retries:
        log.warning(
            "Batch request completed with retryable failures after exhausting retries",
            extra={
                "extra_fields": {
                    "op": "submit_batch",
                    "attempts": state.attempt,
                    "failed": len(classification.retryable),
                    "failed_ids": list(classification.retryable),
                }
            },
        )
        return True
    return False


def _next_delay(
    metrics: Any,
    state: _RetryState,
    options: RetryOptions,
    reason: str,
    retry_after: float | None = None,
) -> float:
    delay = compute_backoff(
        state.retry_index,
        base=options.initial_delay_seconds,
        maximum=options.max_delay_seconds,
        exponential=options.use_exponential_backoff,
        jitter=options.jitter,
        retry_after=retry_after if options.respect_retry_after else None,
    )
    state.retry_index += 1
    metrics.increment("listsync.batch_retries_total", tags={"reason": reason})
    metrics.timing("listsync.batch_backoff_ms", delay * 1000, tags={"reason": reason})
    log.info(
        "Waiting before retry attempt",
        extra={
            "extra_fields": {
                "op": "submit_batch",
                "delay_seconds": delay,
                "next_attempt": state.attempt + 1,
                "reason": reason,
            }
        },
    )
    return delay


def _after_outcome(
    metrics: Any,
    state: _RetryState,
    registry: BatchStepRegistry,
    options: RetryOptions,
    outcome: AttemptOutcome,
) -> float | None:
    """Process a successful submission.

    Returns the backoff delay before the next attempt, or ``None`` when the
    sequence is complete.  On continuation ``state.batch`` already holds the
    reduced retry batch.
    """
    _merge_attempt(state, outcome)
    classification = classify_statuses(outcome.statuses)
    _record_attempt(metrics, state, options, classification)
    if _finish(state, options, classification):
        return None

    delay = _next_delay(
        metrics, state, options, "item_failure",
        retry_after=retry_after_hint(outcome.responses, classification.retryable),
    )
    state.batch = registry.retain(classification.retryable)
    log.debug(
        "Prepared retry batch",
        extra={
            "extra_fields": {
                "op": "submit_batch",
                "retry_ids": list(state.batch.ids),
            }
        },
    )
    return delay


def _after_exception(
    metrics: Any,
    state: _RetryState,
    options: RetryOptions,
    exc: Exception,
) -> float:
    """Handle a failed submission; re-raises when the sequence must stop."""
    log.error(
        "Error during batch request attempt",
        exc_info=exc,
        extra={
            "extra_fields": {
                "op": "submit_batch",
                "attempt": state.attempt,
                "error": str(exc),
            }
        },
    )
    if state.attempt >= options.max_retries:
        raise exc
    context = getattr(exc, "context", None)
    retry_after = context.get("retry_after") if isinstance(context, dict) else None
    return _next_delay(metrics, state, options, "exception", retry_after=retry_after)


def _start(registry: BatchStepRegistry, options: RetryOptions) -> None:
    log.info(
        "Starting batch request with retry logic",
        extra={
            "extra_fields": {
                "op": "submit_batch",
                "items": len(registry),
                "max_retries": options.max_retries,
                "initial_delay_seconds": options.initial_delay_seconds,
            }
        },
    )


# ---------------------------------------------------------------------------
# Sync orchestrator
# ---------------------------------------------------------------------------

class BatchRetryOrchestrator:
    """Submit batches with bounded, backoff-governed retries of partial failures.

    Parameters
    ----------
    transport:
        A :class:`~listsync.batch.transport.BatchTransport`.
    options:
        Retry options.  When ``None`` the default retry options
        (:func:`~listsync.config.get_default_retry_options`) are read on
        every call.
    metrics:
        Optional :class:`~listsync.observability.MetricsHook` backend.
    """

    def __init__(
        self,
        transport: Any,
        options: RetryOptions | None = None,
        metrics: Any | None = None,
    ) -> None:
        self._transport = transport
        self._options = options
        self._metrics = resolve_metrics(metrics)

    @classmethod
    def from_config(cls, transport: Any, config: ListSyncConfig) -> BatchRetryOrchestrator:
        """Build an orchestrator using a config's retry options and metrics."""
        return cls(transport, options=config.batch_retry, metrics=config.metrics)

    def submit_with_retry(
        self,
        registry: BatchStepRegistry,
        max_retries: int | None = None,
        initial_delay_seconds: float | None = None,
    ) -> BatchRetryResult:
        """Submit *registry*, resubmitting retryable failures.

        Parameters
        ----------
        registry:
            The requests to send.  Not modified.
        max_retries:
            Overrides the configured maximum number of submissions (>= 1).
        initial_delay_seconds:
            Overrides the configured first backoff delay (>= 1).

        Returns
        -------
        BatchRetryResult
            Final status and response per request id.  Unpacks as
            ``statuses, responses``.

        Raises
        ------
        ValueError
            If an override is out of range.  Raised before any submission.
        Exception
            Whatever the transport raised on the final attempt.
        """
        options = _resolve_options(self._options, max_retries, initial_delay_seconds)
        state = _RetryState(registry)
        if not len(registry):
            return state.result
        _start(registry, options)

        while state.attempt < options.max_retries:
            state.attempt += 1
            self._metrics.increment("listsync.batch_attempts_total")
            try:
                outcome = self._transport.submit(state.batch)
                _check_outcome(state.batch, outcome)
            except Exception as exc:
                time.sleep(_after_exception(self._metrics, state, options, exc))
                continue

            delay = _after_outcome(self._metrics, state, registry, options, outcome)
            if delay is None:
                break
            time.sleep(delay)

        state.result.attempts = state.attempt
        return state.result

    def submit_with_default_retries(self, registry: BatchStepRegistry) -> BatchRetryResult:
        """Submit *registry* with the orchestrator's configured options."""
        return self.submit_with_retry(registry)


# ---------------------------------------------------------------------------
# Async orchestrator
# ---------------------------------------------------------------------------

class AsyncBatchRetryOrchestrator:
    """Asynchronous batch retry orchestrator.

    Mirrors :class:`BatchRetryOrchestrator`; the transport's ``submit`` and
    the backoff are awaited.  Cancellation propagates from either.
    """

    def __init__(
        self,
        transport: Any,
        options: RetryOptions | None = None,
        metrics: Any | None = None,
    ) -> None:
        self._transport = transport
        self._options = options
        self._metrics = resolve_metrics(metrics)

    @classmethod
    def from_config(cls, transport: Any, config: ListSyncConfig) -> AsyncBatchRetryOrchestrator:
        return cls(transport, options=config.batch_retry, metrics=config.metrics)

    async def submit_with_retry(
        self,
        registry: BatchStepRegistry,
        max_retries: int | None = None,
        initial_delay_seconds: float | None = None,
    ) -> BatchRetryResult:
        """Submit *registry*, resubmitting retryable failures (async).

        See :meth:`BatchRetryOrchestrator.submit_with_retry`.
        """
        options = _resolve_options(self._options, max_retries, initial_delay_seconds)
        state = _RetryState(registry)
        if not len(registry):
            return state.result
        _start(registry, options)

        while state.attempt < options.max_retries:
            state.attempt += 1
            self._metrics.increment("listsync.batch_attempts_total")
            try:
                outcome = await self._transport.submit(state.batch)
                _check_outcome(state.batch, outcome)
            except Exception as exc:
                await asyncio.sleep(_after_exception(self._metrics, state, options, exc))
                continue

            delay = _after_outcome(self._metrics, state, registry, options, outcome)
            if delay is None:
                break
            await asyncio.sleep(delay)

        state.result.attempts = state.attempt
        return state.result

    async def submit_with_default_retries(self, registry: BatchStepRegistry) -> BatchRetryResult:
        return await self.submit_with_retry(registry)


# ---------------------------------------------------------------------------
# One-shot helpers
# ---------------------------------------------------------------------------

def submit_with_retry(
    transport: Any,
    registry: BatchStepRegistry,
    max_retries: int | None = None,
    initial_delay_seconds: float | None = None,
    options: RetryOptions | None = None,
) -> BatchRetryResult:
    """Submit *registry* through *transport* with retries.

    Unspecified settings come from *options*, or from the default retry options.
    """
    return BatchRetryOrchestrator(transport, options).submit_with_retry(
        registry, max_retries, initial_delay_seconds,
    )


async def async_submit_with_retry(
    transport: Any,
    registry: BatchStepRegistry,
    max_retries: int | None = None,
    initial_delay_seconds: float | None = None,
    options: RetryOptions | None = None,
) -> BatchRetryResult:
    """Async counterpart of :func:`submit_with_retry`."""
    return await AsyncBatchRetryOrchestrator(transport, options).submit_with_retry(
        registry, max_retries, initial_delay_seconds,
    )
