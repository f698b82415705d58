"""Sync and async JSON batch submitters.

Each submitter sends one batch per call and reports per-item results; it
never retries on its own.  The request lifecycle is:

1. Encode the registry as ``{"requests": [...]}`` (ids and ``dependsOn``
   exactly as registered).
2. ``POST {base_url}/$batch`` with the bearer token.
3. On ``2xx`` -- decode ``{"responses": [...]}`` into an
   :class:`~listsync.models.AttemptOutcome`.
4. On a batch-level ``400/401/403/404`` -- raise the matching typed error.
5. On any other batch-level status -- raise :class:`ListSyncServiceError`.
6. On timeouts and connection failures -- raise :class:`ListSyncNetworkError`.
"""

from __future__ import annotations

import json as _json
import sys
import time
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

import httpx

from listsync.config import ListSyncConfig
from listsync.errors import (
    ListSyncAuthError,
    ListSyncBatchResponseError,
    ListSyncNetworkError,
    ListSyncNotFoundError,
    ListSyncPermissionError,
    ListSyncServiceError,
    ListSyncValidationError,
)
from listsync.models import AttemptOutcome, BatchItemResponse, BatchRequest
from listsync.observability import get_logger, resolve_metrics

from .steps import BatchStepRegistry

log = get_logger("listsync.transport")

BATCH_PATH = "/$batch"


# ---------------------------------------------------------------------------
# Collaborator protocols
# ---------------------------------------------------------------------------

@runtime_checkable
class BatchTransport(Protocol):
    """Submits one batch and returns per-item statuses and responses."""

    def submit(self, registry: BatchStepRegistry) -> AttemptOutcome:
        ...


@runtime_checkable
class AsyncBatchTransport(Protocol):
    """Async counterpart of :class:`BatchTransport`."""

    async def submit(self, registry: BatchStepRegistry) -> AttemptOutcome:
        ...


# ---------------------------------------------------------------------------
# Wire encoding
# ---------------------------------------------------------------------------

def encode_batch(registry: BatchStepRegistry) -> dict[str, Any]:
    """Build the JSON batch envelope for *registry*.

    Raises
    ------
    TypeError
        If a step's request is not a :class:`BatchRequest`.
    """
    requests: list[dict[str, Any]] = []
    for step in registry:
        request = step.request
        if not isinstance(request, BatchRequest):
            raise TypeError(
                f"step {step.request_id!r} carries {type(request).__name__}; "
                "the HTTP submitter needs a BatchRequest"
            )
        entry: dict[str, Any] = {
            "id": step.request_id,
            "method": request.method.upper(),
            "url": request.url,
        }
        headers = dict(request.headers)
        if request.body is not None:
            if not any(key.lower() == "content-type" for key in headers):
                headers["Content-Type"] = "application/json"
            entry["body"] = request.body
        if headers:
            entry["headers"] = headers
        if step.depends_on:
            entry["dependsOn"] = list(step.depends_on)
        requests.append(entry)
    return {"requests": requests}


def decode_batch(payload: Any) -> AttemptOutcome:
    """Turn a ``{"responses": [...]}`` body into an :class:`AttemptOutcome`.

    Raises
    ------
    ListSyncBatchResponseError
        If the body does not have the expected shape.
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("responses"), list):
        raise ListSyncBatchResponseError(
            message="Batch response has no 'responses' array",
            context={"reason": "missing_responses"},
        )

    outcome = AttemptOutcome()
    for item in payload["responses"]:
        if not isinstance(item, dict) or "id" not in item or "status" not in item:
            raise ListSyncBatchResponseError(
                message=f"Malformed batch response item: {item!r}"[:500],
                context={"reason": "malformed_item"},
            )
        request_id = str(item["id"])
        try:
            status = int(item["status"])
        except (TypeError, ValueError) as exc:
            raise ListSyncBatchResponseError(
                message=f"Non-numeric status for request {request_id!r}: {item['status']!r}",
                context={"reason": "bad_status", "request_id": request_id},
                cause=exc,
            ) from exc
        headers = item.get("headers") or {}
        if not isinstance(headers, Mapping):
            raise ListSyncBatchResponseError(
                message=f"Malformed headers for request {request_id!r}: {headers!r}"[:500],
                context={"reason": "malformed_item", "request_id": request_id},
            )
        outcome.statuses[request_id] = status
        outcome.responses[request_id] = BatchItemResponse(
            request_id=request_id,
            status=status,
            headers=dict(headers),
            body=item.get("body"),
        )
    return outcome


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _parse_retry_after(response: httpx.Response) -> float | None:
    """Extract the ``Retry-After`` header value as a float, or ``None``."""
    raw = response.headers.get("retry-after")
    if raw is None:
        return None
    try:
        return float(raw)
    except (ValueError, TypeError):
        return None


def _raise_for_status(response: httpx.Response) -> None:
    """Raise the typed error matching a non-2xx batch-level response."""
    status = response.status_code
    try:
        body = response.json()
    except ValueError:
        body = {}
    error = body.get("error", {}) if isinstance(body, dict) else {}
    if not isinstance(error, dict):
        error = {}
    service_message = error.get("message", response.text[:500])
    error_code = error.get("code", "")

    if status == 400:
        raise ListSyncValidationError(
            message=f"Batch rejected: {service_message}",
            context={"status_code": status, "error_code": error_code, "body": body},
        )
    if status == 401:
        raise ListSyncAuthError(
            message=f"Authentication failed for batch: {service_message}",
            context={"status_code": status, "error_code": error_code},
        )
    if status == 403:
        raise ListSyncPermissionError(
            message=f"Permission denied for batch: {service_message}",
            context={
                "status_code": status,
                "error_code": error_code,
                "operation": f"POST {BATCH_PATH}",
            },
        )
    if status == 404:
        raise ListSyncNotFoundError(
            message=f"Batch endpoint not found: {service_message}",
            context={"status_code": status, "path": BATCH_PATH},
        )
    raise ListSyncServiceError(
        message=f"Batch failed with status {status}: {service_message}",
        context={"status_code": status, "retry_after": _parse_retry_after(response)},
    )


def _dump_payload(
    url: str,
    payload: dict,
    response_status: int | None,
    response_body: Any | None,
    token: str | None = None,
) -> None:
    """Write a redacted debug dump of the batch request/response to stderr."""
    from listsync.utils.redact import redact

    dump: dict[str, Any] = {"method": "POST", "url": url, "request_body": payload}
    if response_status is not None:
        dump["response_status"] = response_status
    if response_body is not None:
        dump["response_body"] = response_body
    print(
        _json.dumps(redact(dump, token), indent=2, default=str),
        file=sys.stderr,
    )


def _emit_debug_dump(config: ListSyncConfig, response: httpx.Response, payload: dict) -> None:
    if not config.debug_dump_payload:
        return
    try:
        resp_body = response.json()
    except ValueError:
        resp_body = response.text[:1000]
    _dump_payload(
        str(response.url), payload, response.status_code, resp_body,
        token=config.token,
    )


def _client_options(config: ListSyncConfig) -> dict[str, Any]:
    headers = {"Content-Type": "application/json"}
    if config.token:
        headers["Authorization"] = f"Bearer {config.token}"
    return {
        "base_url": config.base_url,
        "headers": headers,
        "timeout": httpx.Timeout(config.timeout_seconds),
        "proxy": config.http_proxy,
    }


def _handle_response(
    config: ListSyncConfig,
    metrics: Any,
    response: httpx.Response,
    payload: dict,
    elapsed_ms: float,
) -> AttemptOutcome:
    metrics.timing(
        "listsync.batch_request_duration_ms",
        elapsed_ms,
        tags={"status": str(response.status_code)},
    )
    _emit_debug_dump(config, response, payload)

    if not 200 <= response.status_code < 300:
        log.warning(
            "Batch request rejected",
            extra={
                "extra_fields": {
                    "op": "submit_batch",
                    "status_code": response.status_code,
                    "items": len(payload["requests"]),
                }
            },
        )
        _raise_for_status(response)

    try:
        body = response.json()
    except ValueError as exc:
        raise ListSyncBatchResponseError(
            message="Batch response body is not valid JSON",
            context={"reason": "invalid_json"},
            cause=exc,
        ) from exc
    return decode_batch(body)


def _network_error(exc: Exception) -> ListSyncNetworkError:
    log.warning(
        "Batch request network error",
        extra={"extra_fields": {"op": "submit_batch", "error": str(exc)}},
    )
    return ListSyncNetworkError(
        message=f"Network error on POST {BATCH_PATH}: {exc}",
        context={"url": BATCH_PATH},
        cause=exc,
    )


# ---------------------------------------------------------------------------
# Sync submitter
# ---------------------------------------------------------------------------

class HttpBatchTransport:
    """Synchronous JSON batch submitter backed by :class:`httpx.Client`.

    Parameters
    ----------
    config:
        Connection settings.
    transport:
        Optional :class:`httpx.BaseTransport`, e.g. ``httpx.MockTransport``
        in tests.
    """

    def __init__(
        self,
        config: ListSyncConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._config = config
        self._metrics = resolve_metrics(config.metrics)
        self._client = httpx.Client(transport=transport, **_client_options(config))

    def submit(self, registry: BatchStepRegistry) -> AttemptOutcome:
        """Send *registry* as one batch and return the per-item outcome.

        Raises
        ------
        ListSyncValidationError, ListSyncAuthError, ListSyncPermissionError,
        ListSyncNotFoundError, ListSyncServiceError
            When the batch as a whole is rejected.
        ListSyncNetworkError
            On timeouts and connection failures.
        ListSyncBatchResponseError
            When the response body cannot be decoded.
        """
        payload = encode_batch(registry)
        t0 = time.monotonic()
        try:
            response = self._client.post(BATCH_PATH.lstrip("/"), json=payload)
        except (httpx.TimeoutException, httpx.NetworkError) as exc:
            raise _network_error(exc) from exc
        elapsed_ms = (time.monotonic() - t0) * 1000
        return _handle_response(self._config, self._metrics, response, payload, elapsed_ms)

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def __enter__(self) -> HttpBatchTransport:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


# ---------------------------------------------------------------------------
# Async submitter
# ---------------------------------------------------------------------------

class AsyncHttpBatchTransport:
    """Asynchronous JSON batch submitter backed by :class:`httpx.AsyncClient`.

    Mirrors :class:`HttpBatchTransport`.
    """

    def __init__(
        self,
        config: ListSyncConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._metrics = resolve_metrics(config.metrics)
        self._client = httpx.AsyncClient(transport=transport, **_client_options(config))

    async def submit(self, registry: BatchStepRegistry) -> AttemptOutcome:
        """Send *registry* as one batch (async).

        See :meth:`HttpBatchTransport.submit`.
        """
        payload = encode_batch(registry)
        t0 = time.monotonic()
        try:
            response = await self._client.post(BATCH_PATH.lstrip("/"), json=payload)
        except (httpx.TimeoutException, httpx.NetworkError) as exc:
            raise _network_error(exc) from exc
        elapsed_ms = (time.monotonic() - t0) * 1000
        return _handle_response(self._config, self._metrics, response, payload, elapsed_ms)

    async def close(self) -> None:
        """Close the underlying async HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> AsyncHttpBatchTransport:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()
