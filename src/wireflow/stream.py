"""Server-sent event parsing and the streaming state machine.

The transport yields raw lines; ``iter_events`` turns ``data:`` lines into
typed StreamEvents (delta, end, error) and drops everything else. A
StreamAccumulator consumes them in order::

    Idle --delta--> Receiving --end--> Done
      |                 |
      +-----error-------+----error--> Failed
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import json
import logging
from typing import TYPE_CHECKING, Any, Literal

from wireflow.errors import InternalError, StreamError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator

log = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"

EventType = Literal["delta", "end", "error"]


@dataclass(frozen=True, slots=True)
class StreamEvent:
    """A recognized stream event."""

    type: EventType
    text: str = ""
    error_type: str | None = None


def parse_event(data: str) -> StreamEvent | None:
    """Map one ``data:`` payload to a StreamEvent, or None to ignore it."""
    data = data.strip()
    if not data or data == DONE_SENTINEL:
        return None
    try:
        obj: Any = json.loads(data)
    except json.JSONDecodeError:
        log.debug("Ignoring malformed stream payload: %.80s", data)
        return None
    if not isinstance(obj, dict):
        return None

    match obj.get("type"):
        case "content_block_delta":
            delta = obj.get("delta") or {}
            text = delta.get("text") if isinstance(delta, dict) else None
            if not isinstance(text, str):
                return None
            return StreamEvent("delta", text=text)
        case "message_stop":
            return StreamEvent("end")
        case "error":
            err = obj.get("error") or {}
            if not isinstance(err, dict):
                err = {}
            return StreamEvent(
                "error",
                text=str(err.get("message") or "Unknown stream error"),
                error_type=err.get("type"),
            )
        case _:
            return None


def iter_events(lines: Iterable[str]) -> Iterator[StreamEvent]:
    """Yield StreamEvents from an iterable of SSE lines, in order."""
    for line in lines:
        if not line.startswith(DATA_PREFIX):
            continue
        event = parse_event(line[len(DATA_PREFIX) :])
        if event is not None:
            yield event


class StreamState(str, Enum):
    IDLE = "idle"
    RECEIVING = "receiving"
    DONE = "done"
    FAILED = "failed"


class StreamAccumulator:
    """Single consumer of stream events that assembles the output text.

    ``on_text`` is called with each delta as it arrives, so callers can flush
    partial output before the stream completes.
    """

    def __init__(self, on_text: Callable[[str], None] | None = None) -> None:
        self.state = StreamState.IDLE
        self._parts: list[str] = []
        self._on_text = on_text

    @property
    def text(self) -> str:
        return "".join(self._parts)

    @property
    def finished(self) -> bool:
        return self.state in (StreamState.DONE, StreamState.FAILED)

    def feed(self, event: StreamEvent) -> None:
        """Advance the state machine by one event.

        Raises:
            StreamError: On an error event (state becomes Failed first).
            InternalError: If fed after reaching a terminal state.
        """
        if self.finished:
            raise InternalError(
                f"Stream event {event.type!r} received in state {self.state.value}"
            )
        match event.type:
            case "delta":
                self.state = StreamState.RECEIVING
                self._parts.append(event.text)
                if self._on_text is not None:
                    self._on_text(event.text)
            case "end":
                self.state = StreamState.DONE
            case "error":
                self.state = StreamState.FAILED
                label = f" ({event.error_type})" if event.error_type else ""
                raise StreamError(
                    f"Stream error{label}: {event.text}",
                    hint="Partial output was kept; rerun the workflow to retry.",
                    partial_output=self.text,
                )

    def consume(self, events: Iterable[StreamEvent]) -> str:
        """Feed every event until the stream ends and return the full text.

        Raises:
            StreamError: On an error event or if the events run out early.
        """
        for event in events:
            self.feed(event)
            if self.finished:
                break
        if self.state is not StreamState.DONE:
            self.state = StreamState.FAILED
            raise StreamError(
                "Stream ended before message_stop",
                hint="Partial output was kept; rerun the workflow to retry.",
                partial_output=self.text,
            )
        return self.text
