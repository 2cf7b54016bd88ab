"""Anthropic Messages API dispatcher."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, Any

import anthropic
import httpx

from wireflow._http import ANTHROPIC_BASE_URL, ANTHROPIC_VERSION, DEFAULT_TIMEOUT_S
from wireflow.config.utils import API_KEY_VAR
from wireflow.errors import APIError, ConfigurationError
from wireflow.providers._errors import wrap_provider_error
from wireflow.stream import iter_events

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from wireflow.stream import StreamEvent

log = logging.getLogger(__name__)

_COUNT_TOKENS_KEYS = ("model", "system", "messages")


@dataclass(frozen=True)
class MessageResult:
    """Outcome of a non-streaming Messages call."""

    text: str
    stop_reason: str | None = None
    model: str | None = None
    usage: Mapping[str, Any] = field(default_factory=dict)


def parse_message(data: Mapping[str, Any]) -> MessageResult:
    """Extract the concatenated text blocks from a Messages response body."""
    if isinstance(data.get("error"), dict):
        err = data["error"]
        raise APIError(
            f"anthropic generate failed: {err.get('type', 'error')}: "
            f"{err.get('message', '')}",
            phase="generate",
        )
    content = data.get("content")
    if not isinstance(content, list):
        raise APIError(
            "anthropic generate returned no content",
            hint="Inspect the request with --dry-run.",
            phase="generate",
        )
    text = "".join(
        str(block.get("text", ""))
        for block in content
        if isinstance(block, dict) and block.get("type") == "text"
    )
    usage = data.get("usage")
    return MessageResult(
        text=text,
        stop_reason=data.get("stop_reason"),
        model=data.get("model"),
        usage=dict(usage) if isinstance(usage, dict) else {},
    )


def _json_body(raw: Any, phase: str) -> Any:
    try:
        return raw.http_response.json()
    except ValueError as e:
        raise APIError(f"anthropic {phase} returned invalid JSON", phase=phase) from e


class AnthropicClient:
    """Synchronous Messages API client: batch, streaming and token counting.

    Payloads are sent as built, cache markers included; responses are read
    as raw JSON or raw SSE lines. ``transport`` is handed to the underlying
    ``httpx.Client``; tests inject an ``httpx.MockTransport`` here.
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str = ANTHROPIC_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT_S,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize with an API key."""
        if not api_key:
            raise ConfigurationError(
                f"{API_KEY_VAR} is not set",
                hint=f"Export {API_KEY_VAR} or add it to the global config file.",
            )
        http_client = (
            httpx.Client(transport=transport, timeout=timeout)
            if transport is not None
            else None
        )
        self._client = anthropic.Anthropic(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=0,
            default_headers={"anthropic-version": ANTHROPIC_VERSION},
            http_client=http_client,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> AnthropicClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def create_message(self, payload: Mapping[str, Any]) -> MessageResult:
        """Send a batch request and wait for the complete response."""
        body = {k: v for k, v in payload.items() if k != "stream"}
        log.info("Sending Messages API request (model=%s)", body.get("model"))
        try:
            raw = self._client.messages.with_raw_response.create(**body)
        except (anthropic.AnthropicError, httpx.HTTPError) as e:
            raise wrap_provider_error(e, phase="generate") from e
        return parse_message(_json_body(raw, "generate"))

    def stream_message(self, payload: Mapping[str, Any]) -> Iterator[StreamEvent]:
        """Send a streaming request and yield typed events as they arrive."""
        body = {**payload, "stream": True}
        log.info("Sending streaming Messages API request (model=%s)", body["model"])
        messages = self._client.messages.with_streaming_response
        try:
            with messages.create(**body) as response:
                yield from iter_events(response.iter_lines())
        except (anthropic.AnthropicError, httpx.HTTPError) as e:
            raise wrap_provider_error(e, phase="stream") from e

    def count_tokens(self, payload: Mapping[str, Any]) -> int:
        """Exact input-token count for *payload* (count_tokens endpoint)."""
        body = {k: payload[k] for k in _COUNT_TOKENS_KEYS if k in payload}
        try:
            raw = self._client.messages.with_raw_response.count_tokens(**body)
        except (anthropic.AnthropicError, httpx.HTTPError) as e:
            raise wrap_provider_error(e, phase="count_tokens") from e
        data = _json_body(raw, "count_tokens")
        value = data.get("input_tokens") if isinstance(data, dict) else None
        if not isinstance(value, int):
            raise APIError(
                "anthropic count_tokens returned no input_tokens",
                phase="count_tokens",
            )
        return value
