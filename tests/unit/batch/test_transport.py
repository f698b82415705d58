"""Unit tests for listsync/batch/transport.py.

Covers:
- encode_batch / decode_batch
- _raise_for_status mapping of batch-level statuses
- _dump_payload redaction
- HttpBatchTransport.submit (success, errors, network failures, debug dump)
- AsyncHttpBatchTransport equivalents
"""

from __future__ import annotations

import json

import httpx
import pytest

from listsync.batch.steps import BatchStepRegistry
from listsync.batch.transport import (
    AsyncBatchTransport,
    AsyncHttpBatchTransport,
    BatchTransport,
    HttpBatchTransport,
    _dump_payload,
    _raise_for_status,
    decode_batch,
    encode_batch,
)
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
from listsync.models import BatchItemResponse, BatchRequest

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def make_response(
    status_code: int = 200,
    body: dict | None = None,
    headers: dict | None = None,
) -> httpx.Response:
    """Build an httpx.Response with a request attached so ``.url`` works."""
    content = json.dumps(body).encode() if body is not None else b""
    resp = httpx.Response(status_code, content=content, headers=headers or {})
    resp.request = httpx.Request("POST", "https://graph.microsoft.com/v1.0/$batch")
    return resp


def make_registry() -> BatchStepRegistry:
    registry = BatchStepRegistry()
    registry.add_request(
        BatchRequest("post", "/sites/s/lists/l/items", body={"fields": {"Title": "x"}}),
        request_id="1",
    )
    registry.add_request(
        BatchRequest("GET", "/sites/s/lists/l/items", headers={"Prefer": "odata"}),
        request_id="2",
        depends_on=["1"],
    )
    return registry


def echo_handler(status: int = 200):
    """MockTransport handler that answers every request id with *status*."""

    def handler(request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "responses": [
                    {"id": r["id"], "status": status, "headers": {}, "body": {}}
                    for r in payload["requests"]
                ]
            },
        )

    return handler


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


class TestEncodeBatch:
    def test_envelope_shape(self):
        payload = encode_batch(make_registry())
        assert payload == {
            "requests": [
                {
                    "id": "1",
                    "method": "POST",
                    "url": "/sites/s/lists/l/items",
                    "body": {"fields": {"Title": "x"}},
                    "headers": {"Content-Type": "application/json"},
                },
                {
                    "id": "2",
                    "method": "GET",
                    "url": "/sites/s/lists/l/items",
                    "headers": {"Prefer": "odata"},
                    "dependsOn": ["1"],
                },
            ]
        }

    def test_explicit_content_type_kept(self):
        registry = BatchStepRegistry()
        registry.add_request(
            BatchRequest("PATCH", "/x", body="raw", headers={"content-type": "text/plain"}),
            request_id="1",
        )
        (entry,) = encode_batch(registry)["requests"]
        assert entry["headers"] == {"content-type": "text/plain"}

    def test_non_batch_request_rejected(self):
        registry = BatchStepRegistry()
        registry.add_request({"method": "GET"}, request_id="1")
        with pytest.raises(TypeError, match="BatchRequest"):
            encode_batch(registry)


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


class TestDecodeBatch:
    def test_statuses_and_responses(self):
        outcome = decode_batch({
            "responses": [
                {"id": "1", "status": 201, "body": {"id": "7"}},
                {"id": "2", "status": "429", "headers": {"Retry-After": "5"}},
            ]
        })
        assert outcome.statuses == {"1": 201, "2": 429}
        assert outcome.responses["1"] == BatchItemResponse("1", 201, {}, {"id": "7"})
        assert outcome.responses["2"].headers == {"Retry-After": "5"}

    @pytest.mark.parametrize("payload", [None, [], {}, {"responses": {}}])
    def test_missing_responses(self, payload):
        with pytest.raises(ListSyncBatchResponseError) as exc_info:
            decode_batch(payload)
        assert exc_info.value.context["reason"] == "missing_responses"

    def test_malformed_item(self):
        with pytest.raises(ListSyncBatchResponseError) as exc_info:
            decode_batch({"responses": [{"status": 200}]})
        assert exc_info.value.context["reason"] == "malformed_item"

    @pytest.mark.parametrize("headers", [["Retry-After", "5"], "Retry-After: 5", 7])
    def test_non_mapping_headers(self, headers):
        with pytest.raises(ListSyncBatchResponseError) as exc_info:
            decode_batch({"responses": [{"id": "1", "status": 429, "headers": headers}]})
        assert exc_info.value.context == {"reason": "malformed_item", "request_id": "1"}

    def test_null_headers_treated_as_empty(self):
        outcome = decode_batch({"responses": [{"id": "1", "status": 200, "headers": None}]})
        assert outcome.responses["1"].headers == {}

    def test_bad_status(self):
        with pytest.raises(ListSyncBatchResponseError) as exc_info:
            decode_batch({"responses": [{"id": "1", "status": "ok"}]})
        assert exc_info.value.context["reason"] == "bad_status"
        assert isinstance(exc_info.value.cause, ValueError)


# ---------------------------------------------------------------------------
# _raise_for_status
# ---------------------------------------------------------------------------


class TestRaiseForStatus:
    @pytest.mark.parametrize(
        ("status", "exc_type"),
        [
            (400, ListSyncValidationError),
            (401, ListSyncAuthError),
            (403, ListSyncPermissionError),
            (404, ListSyncNotFoundError),
            (429, ListSyncServiceError),
            (500, ListSyncServiceError),
            (503, ListSyncServiceError),
        ],
    )
    def test_status_mapping(self, status, exc_type):
        resp = make_response(status, {"error": {"code": "x", "message": "nope"}})
        with pytest.raises(exc_type, match="nope"):
            _raise_for_status(resp)

    def test_service_error_carries_retry_after(self):
        resp = make_response(503, {}, headers={"Retry-After": "12"})
        with pytest.raises(ListSyncServiceError) as exc_info:
            _raise_for_status(resp)
        assert exc_info.value.context["retry_after"] == 12.0

    def test_non_json_body(self):
        resp = httpx.Response(502, content=b"<html>bad gateway</html>")
        resp.request = httpx.Request("POST", "https://graph.microsoft.com/v1.0/$batch")
        with pytest.raises(ListSyncServiceError, match="bad gateway"):
            _raise_for_status(resp)

    def test_error_code_in_context(self):
        resp = make_response(401, {"error": {"code": "InvalidAuthenticationToken", "message": "m"}})
        with pytest.raises(ListSyncAuthError) as exc_info:
            _raise_for_status(resp)
        assert exc_info.value.context["error_code"] == "InvalidAuthenticationToken"


# ---------------------------------------------------------------------------
# _dump_payload
# ---------------------------------------------------------------------------


class TestDumpPayload:
    def test_writes_redacted_json_to_stderr(self, capsys):
        _dump_payload(
            "https://graph.microsoft.com/v1.0/$batch",
            {"requests": [{"headers": {"Authorization": "Bearer secret-abcd"}}]},
            200,
            {"responses": []},
            token="secret-abcd",
        )
        err = capsys.readouterr().err
        dump = json.loads(err)
        assert dump["response_status"] == 200
        assert "secret-abcd" not in err


# ---------------------------------------------------------------------------
# HttpBatchTransport
# ---------------------------------------------------------------------------


class TestHttpBatchTransport:
    def test_satisfies_protocol(self, config):
        with HttpBatchTransport(config, transport=httpx.MockTransport(echo_handler())) as t:
            assert isinstance(t, BatchTransport)

    def test_posts_envelope_to_batch_endpoint(self, config):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return echo_handler()(request)

        with HttpBatchTransport(config, transport=httpx.MockTransport(handler)) as t:
            outcome = t.submit(make_registry())

        (request,) = seen
        assert request.method == "POST"
        assert request.url.host == "graph.microsoft.com"
        assert request.url.path == "/v1.0/$batch"
        assert request.headers["Authorization"] == "Bearer test_token_1234"
        assert json.loads(request.content) == encode_batch(make_registry())
        assert outcome.statuses == {"1": 200, "2": 200}

    def test_no_auth_header_without_token(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return echo_handler()(request)

        with HttpBatchTransport(ListSyncConfig(), transport=httpx.MockTransport(handler)) as t:
            t.submit(make_registry())
        assert "Authorization" not in seen[0].headers

    def test_per_item_failures_are_reported_not_raised(self, config):
        with HttpBatchTransport(config, transport=httpx.MockTransport(echo_handler(503))) as t:
            outcome = t.submit(make_registry())
        assert outcome.statuses == {"1": 503, "2": 503}

    def test_batch_level_error_raised(self, config):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": {"code": "x", "message": "expired"}})

        with HttpBatchTransport(config, transport=httpx.MockTransport(handler)) as t:
            with pytest.raises(ListSyncAuthError, match="expired"):
                t.submit(make_registry())

    def test_invalid_json_body(self, config):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=b"not json")

        with HttpBatchTransport(config, transport=httpx.MockTransport(handler)) as t:
            with pytest.raises(ListSyncBatchResponseError) as exc_info:
                t.submit(make_registry())
        assert exc_info.value.context["reason"] == "invalid_json"

    @pytest.mark.parametrize(
        "exc",
        [httpx.ConnectError("refused"), httpx.ReadTimeout("slow")],
    )
    def test_network_errors_wrapped(self, config, exc):
        def handler(request: httpx.Request) -> httpx.Response:
            raise exc

        with HttpBatchTransport(config, transport=httpx.MockTransport(handler)) as t:
            with pytest.raises(ListSyncNetworkError) as exc_info:
                t.submit(make_registry())
        assert exc_info.value.cause is exc

    def test_duration_metric(self, metrics):
        config = ListSyncConfig(token="tok", metrics=metrics)
        with HttpBatchTransport(config, transport=httpx.MockTransport(echo_handler())) as t:
            t.submit(make_registry())
        (timing,) = metrics.timings
        assert timing["name"] == "listsync.batch_request_duration_ms"
        assert timing["tags"] == {"status": "200"}

    def test_debug_dump(self, capsys):
        config = ListSyncConfig(token="secret-token-9999", debug_dump_payload=True)
        with HttpBatchTransport(config, transport=httpx.MockTransport(echo_handler())) as t:
            t.submit(make_registry())
        err = capsys.readouterr().err
        assert '"request_body"' in err
        assert "secret-token-9999" not in err

    def test_no_dump_by_default(self, config, capsys):
        with HttpBatchTransport(config, transport=httpx.MockTransport(echo_handler())) as t:
            t.submit(make_registry())
        assert '"request_body"' not in capsys.readouterr().err


# ---------------------------------------------------------------------------
# AsyncHttpBatchTransport
# ---------------------------------------------------------------------------


class TestAsyncHttpBatchTransport:
    async def test_submit(self, config):
        async with AsyncHttpBatchTransport(
            config, transport=httpx.MockTransport(echo_handler(204)),
        ) as t:
            assert isinstance(t, AsyncBatchTransport)
            outcome = await t.submit(make_registry())
        assert outcome.statuses == {"1": 204, "2": 204}

    async def test_batch_level_error(self, config):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(403, json={"error": {"message": "denied"}})

        async with AsyncHttpBatchTransport(config, transport=httpx.MockTransport(handler)) as t:
            with pytest.raises(ListSyncPermissionError):
                await t.submit(make_registry())

    async def test_network_error(self, config):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused")

        async with AsyncHttpBatchTransport(config, transport=httpx.MockTransport(handler)) as t:
            with pytest.raises(ListSyncNetworkError):
                await t.submit(make_registry())
