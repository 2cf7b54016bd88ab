"""Anthropic dispatcher tests: the SDK client over httpx.MockTransport."""

from __future__ import annotations

import json
import os
from typing import Any

import httpx
import pytest

from wireflow._http import ANTHROPIC_VERSION
from wireflow.errors import APIError, ConfigurationError
from wireflow.providers import AnthropicClient, parse_message
from wireflow.providers._errors import (
    error_body_message,
    extract_status_code,
    wrap_provider_error,
)
from wireflow.stream import StreamEvent

pytestmark = pytest.mark.unit

PAYLOAD: dict[str, Any] = {
    "model": "claude-test",
    "max_tokens": 64,
    "temperature": 0.0,
    "system": [{"type": "text", "text": "sys"}],
    "messages": [{"role": "user", "content": [{"type": "text", "text": "Hi"}]}],
}

SSE_BODY = "\n".join(
    [
        "event: message_start",
        'data: {"type": "message_start", "message": {"id": "m1"}}',
        "",
        "event: content_block_delta",
        'data: {"type": "content_block_delta", "index": 0, '
        '"delta": {"type": "text_delta", "text": "Hel"}}',
        "",
        "event: content_block_delta",
        'data: {"type": "content_block_delta", "index": 0, '
        '"delta": {"type": "text_delta", "text": "lo"}}',
        "",
        "event: message_stop",
        'data: {"type": "message_stop"}',
        "",
    ]
)


class Recorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response

    @property
    def body(self) -> dict[str, Any]:
        return json.loads(self.requests[-1].content)


def _client(handler: Any) -> AnthropicClient:
    return AnthropicClient(
        "sk-test",
        base_url="https://api.test",
        transport=httpx.MockTransport(handler),
    )


def test_missing_api_key_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError) as exc:
        AnthropicClient(None)

    assert "ANTHROPIC_API_KEY" in (exc.value.hint or "")


# =============================================================================
# Batch
# =============================================================================


def test_create_message_sends_headers_and_joins_text_blocks() -> None:
    rec = Recorder(
        httpx.Response(
            200,
            json={
                "model": "claude-test",
                "stop_reason": "end_turn",
                "content": [
                    {"type": "text", "text": "Hello"},
                    {"type": "tool_use", "id": "t"},
                    {"type": "text", "text": ", world"},
                ],
                "usage": {"input_tokens": 10, "cache_read_input_tokens": 8},
            },
        )
    )

    with _client(rec) as client:
        result = client.create_message({**PAYLOAD, "stream": True})

    request = rec.requests[0]
    assert request.method == "POST"
    assert request.url == "https://api.test/v1/messages"
    assert request.headers["x-api-key"] == "sk-test"
    assert request.headers["anthropic-version"] == ANTHROPIC_VERSION
    assert "stream" not in rec.body
    assert rec.body["system"] == PAYLOAD["system"]
    assert result.text == "Hello, world"
    assert result.stop_reason == "end_turn"
    assert result.usage["cache_read_input_tokens"] == 8


@pytest.mark.parametrize(
    ("status", "hint_fragment"),
    [
        (401, "ANTHROPIC_API_KEY"),
        (403, "ANTHROPIC_API_KEY"),
        (413, "--count-tokens"),
        (429, "rerun"),
        (529, "rerun"),
    ],
)
def test_http_errors_map_to_api_error_with_hint(
    status: int, hint_fragment: str
) -> None:
    rec = Recorder(
        httpx.Response(
            status,
            json={"type": "error", "error": {"type": "some_error", "message": "nope"}},
        )
    )

    with pytest.raises(APIError) as exc, _client(rec) as client:
        client.create_message(PAYLOAD)

    err = exc.value
    assert err.status_code == status
    assert err.phase == "generate"
    assert "some_error: nope" in str(err)
    assert hint_fragment in (err.hint or "")


def test_network_failure_has_network_hint() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(APIError) as exc, _client(handler) as client:
        client.create_message(PAYLOAD)

    assert exc.value.status_code is None
    assert "network" in (exc.value.hint or "")


def test_invalid_json_body_is_an_api_error() -> None:
    rec = Recorder(httpx.Response(200, content=b"<html>"))

    with pytest.raises(APIError) as exc, _client(rec) as client:
        client.create_message(PAYLOAD)

    assert "invalid JSON" in str(exc.value)


def test_parse_message_rejects_error_bodies_and_missing_content() -> None:
    with pytest.raises(APIError):
        parse_message({"error": {"type": "overloaded_error", "message": "busy"}})
    with pytest.raises(APIError):
        parse_message({"id": "m"})


# =============================================================================
# Streaming
# =============================================================================


def test_stream_message_yields_typed_events() -> None:
    rec = Recorder(
        httpx.Response(
            200,
            content=SSE_BODY.encode("utf-8"),
            headers={"content-type": "text/event-stream"},
        )
    )

    with _client(rec) as client:
        events = list(client.stream_message(PAYLOAD))

    assert rec.body["stream"] is True
    assert events == [
        StreamEvent("delta", "Hel"),
        StreamEvent("delta", "lo"),
        StreamEvent("end"),
    ]


def test_stream_http_error_reads_body_for_message() -> None:
    rec = Recorder(
        httpx.Response(
            401,
            json={"error": {"type": "authentication_error", "message": "bad key"}},
        )
    )

    with pytest.raises(APIError) as exc, _client(rec) as client:
        list(client.stream_message(PAYLOAD))

    assert exc.value.status_code == 401
    assert exc.value.phase == "stream"
    assert "authentication_error: bad key" in str(exc.value)


# =============================================================================
# Token counting
# =============================================================================


def test_count_tokens_sends_only_countable_fields() -> None:
    rec = Recorder(httpx.Response(200, json={"input_tokens": 4321}))

    with _client(rec) as client:
        count = client.count_tokens({**PAYLOAD, "stream": True})

    assert count == 4321
    assert rec.requests[0].url.path == "/v1/messages/count_tokens"
    assert set(rec.body) == {"model", "system", "messages"}


def test_count_tokens_without_count_is_an_api_error() -> None:
    rec = Recorder(httpx.Response(200, json={"tokens": "many"}))

    with pytest.raises(APIError) as exc, _client(rec) as client:
        client.count_tokens(PAYLOAD)

    assert exc.value.phase == "count_tokens"


# =============================================================================
# Error helpers
# =============================================================================


def test_extract_status_code_walks_the_chain() -> None:
    inner = APIError("inner", status_code=503)
    outer = RuntimeError("outer")
    outer.__cause__ = inner

    assert extract_status_code(outer) == 503
    assert extract_status_code(ValueError("x")) is None


def test_wrap_provider_error_preserves_existing_api_errors() -> None:
    original = APIError("already wrapped")

    wrapped = wrap_provider_error(original, phase="stream", hint="try again")

    assert wrapped is original
    assert wrapped.phase == "stream"
    assert wrapped.hint == "try again"


@pytest.mark.parametrize(
    "body",
    [
        {"type": "error", "error": {"type": "rate_limit_error", "message": "slow"}},
        {"type": "rate_limit_error", "message": "slow"},
    ],
)
def test_error_body_message_accepts_outer_and_inner_shapes(body: Any) -> None:
    assert error_body_message(body) == "rate_limit_error: slow"


def test_error_body_message_ignores_unusable_bodies() -> None:
    assert error_body_message("<html>") is None
    assert error_body_message({"error": {"type": "x"}}) is None


def test_timeouts_have_timeout_hint() -> None:
    request = httpx.Request("POST", "https://api.test/v1/messages")

    timeout = httpx.ReadTimeout("slow", request=request)

    err = wrap_provider_error(timeout, phase="generate")

    assert "timed out" in (err.hint or "")
    assert err.status_code is None


# =============================================================================
# Live API (opt-in)
# =============================================================================


@pytest.mark.api
def test_live_create_message_round_trip() -> None:
    key = os.environ.get("ANTHROPIC_API_KEY")
    if not key:
        pytest.skip("ANTHROPIC_API_KEY not set")
    payload = {
        **PAYLOAD,
        "model": os.environ.get("WIREFLOW_TEST_MODEL", "claude-haiku-4-5"),
        "max_tokens": 16,
    }

    with AnthropicClient(key) as client:
        result = client.create_message(payload)
        tokens = client.count_tokens(payload)

    assert result.text
    assert tokens > 0
