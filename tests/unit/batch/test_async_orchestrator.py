"""Tests for AsyncBatchRetryOrchestrator and async_submit_with_retry.

``asyncio.sleep`` inside the orchestrator module is replaced by an
``AsyncMock`` so backoff delays are recorded rather than awaited.
"""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from listsync.batch.orchestrator import AsyncBatchRetryOrchestrator, async_submit_with_retry
from listsync.batch.steps import BatchStepRegistry
from listsync.config import ListSyncConfig, RetryOptions, default_retry_options
from listsync.errors import ListSyncNetworkError, ListSyncPermissionError, ListSyncServiceError
from listsync.models import AttemptOutcome, BatchItemResponse, BatchRequest

ASYNC_SLEEP = "listsync.batch.orchestrator.asyncio.sleep"


class AsyncScriptedTransport:
    """Async fake transport replaying one scripted reply per submission."""

    def __init__(self, *replies: Any) -> None:
        self._replies = list(replies)
        self.submitted: list[tuple[str, ...]] = []

    async def submit(self, registry: BatchStepRegistry) -> AttemptOutcome:
        self.submitted.append(registry.ids)
        reply = self._replies.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        statuses = {rid: reply[rid] for rid in registry.ids}
        return AttemptOutcome(
            statuses=statuses,
            responses={rid: BatchItemResponse(rid, s) for rid, s in statuses.items()},
        )


def make_registry(*ids: str) -> BatchStepRegistry:
    registry = BatchStepRegistry()
    for rid in ids:
        registry.add_request(BatchRequest("DELETE", f"/items/{rid}"), request_id=rid)
    return registry


class TestAsyncRetryLoop:
    async def test_partial_failure_retried(self):
        transport = AsyncScriptedTransport(
            {"1": 200, "2": 503, "3": 404},
            {"2": 200},
        )
        with patch(ASYNC_SLEEP, new_callable=AsyncMock) as sleep:
            statuses, _ = await AsyncBatchRetryOrchestrator(transport).submit_with_retry(
                make_registry("1", "2", "3"),
            )

        assert transport.submitted == [("1", "2", "3"), ("2",)]
        assert statuses == {"1": 200, "2": 200, "3": 404}
        sleep.assert_awaited_once_with(1.0)

    async def test_backoff_sequence(self):
        transport = AsyncScriptedTransport(*([{"1": 429}] * 5))
        with patch(ASYNC_SLEEP, new_callable=AsyncMock) as sleep:
            result = await AsyncBatchRetryOrchestrator(transport).submit_with_retry(
                make_registry("1"),
            )

        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0, 4.0, 8.0]
        assert result.attempts == 5
        assert result.statuses == {"1": 429}

    async def test_empty_registry(self):
        transport = AsyncScriptedTransport()
        result = await AsyncBatchRetryOrchestrator(transport).submit_with_retry(
            BatchStepRegistry(),
        )
        assert result.statuses == {}
        assert transport.submitted == []

    async def test_transient_exception_then_success(self):
        transport = AsyncScriptedTransport(ListSyncNetworkError("reset"), {"1": 200})
        with patch(ASYNC_SLEEP, new_callable=AsyncMock):
            result = await AsyncBatchRetryOrchestrator(transport).submit_with_retry(
                make_registry("1"),
            )
        assert result.statuses == {"1": 200}
        assert result.attempts == 2

    async def test_exception_on_final_attempt_raises(self):
        transport = AsyncScriptedTransport(ListSyncNetworkError("reset"))
        with pytest.raises(ListSyncNetworkError):
            await AsyncBatchRetryOrchestrator(transport).submit_with_retry(
                make_registry("1"), max_retries=1,
            )

    async def test_permission_error_retried_within_budget(self):
        transport = AsyncScriptedTransport(ListSyncPermissionError("forbidden"), {"1": 200})
        with patch(ASYNC_SLEEP, new_callable=AsyncMock) as sleep:
            result = await AsyncBatchRetryOrchestrator(transport).submit_with_retry(
                make_registry("1"),
            )
        assert result.statuses == {"1": 200}
        assert len(transport.submitted) == 2
        sleep.assert_awaited_once_with(1.0)

    async def test_batch_level_retry_after_lengthens_backoff(self):
        transport = AsyncScriptedTransport(
            ListSyncServiceError("unavailable", context={"status_code": 503, "retry_after": 7}),
            {"1": 200},
        )
        with patch(ASYNC_SLEEP, new_callable=AsyncMock) as sleep:
            await AsyncBatchRetryOrchestrator(transport).submit_with_retry(make_registry("1"))
        sleep.assert_awaited_once_with(7.0)

    async def test_cancellation_during_backoff_propagates(self):
        transport = AsyncScriptedTransport({"1": 503}, {"1": 200})
        with patch(
            ASYNC_SLEEP, new_callable=AsyncMock, side_effect=asyncio.CancelledError,
        ), pytest.raises(asyncio.CancelledError):
            await AsyncBatchRetryOrchestrator(transport).submit_with_retry(make_registry("1"))
        assert transport.submitted == [("1",)]

    async def test_invalid_override_raises(self):
        with pytest.raises(ValueError):
            await AsyncBatchRetryOrchestrator(AsyncScriptedTransport()).submit_with_retry(
                make_registry("1"), max_retries=0,
            )


class TestAsyncOptions:
    async def test_default_retries_use_scoped_defaults(self):
        transport = AsyncScriptedTransport({"1": 500}, {"1": 500}, {"1": 500})
        with default_retry_options(RetryOptions(max_retries=3)), patch(
            ASYNC_SLEEP, new_callable=AsyncMock,
        ):
            result = await AsyncBatchRetryOrchestrator(transport).submit_with_default_retries(
                make_registry("1"),
            )
        assert result.attempts == 3

    async def test_from_config_uses_metrics(self, metrics):
        config = ListSyncConfig(batch_retry=RetryOptions(max_retries=1), metrics=metrics)
        transport = AsyncScriptedTransport({"1": 200})
        await AsyncBatchRetryOrchestrator.from_config(transport, config).submit_with_retry(
            make_registry("1"),
        )
        assert metrics.increments[0]["name"] == "listsync.batch_attempts_total"

    async def test_module_helper(self):
        transport = AsyncScriptedTransport({"1": 502}, {"1": 204})
        with patch(ASYNC_SLEEP, new_callable=AsyncMock):
            statuses, responses = await async_submit_with_retry(
                transport, make_registry("1"), max_retries=2,
            )
        assert statuses == {"1": 204}
        assert responses["1"].is_success
