"""Test helpers (small, reusable doubles and builders).

Keep this file tiny and purpose-built: project trees and a scripted
dispatcher shared by the context, execution and CLI suites.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import datetime
from typing import TYPE_CHECKING, Any

from wireflow.providers.anthropic import MessageResult
from wireflow.stream import StreamEvent

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping
    from pathlib import Path

FIXED_DAY = datetime.date(2025, 3, 14)


@dataclass
class FakeDispatcher:
    """Dispatcher test double for run orchestration.

    Records every payload it receives and replays a scripted response or
    stream. Use to verify behavior without making real API calls.
    """

    text: str = "ok"
    events: list[StreamEvent] | None = None
    token_count: int | Exception = 1234
    payloads: list[dict[str, Any]] = field(default_factory=list)
    count_calls: int = 0

    def create_message(self, payload: Mapping[str, Any]) -> MessageResult:
        self.payloads.append(dict(payload))
        return MessageResult(text=self.text, stop_reason="end_turn")

    def stream_message(self, payload: Mapping[str, Any]) -> Iterator[StreamEvent]:
        self.payloads.append(dict(payload))
        events = self.events
        if events is None:
            events = [StreamEvent("delta", text=self.text), StreamEvent("end")]
        yield from events

    def count_tokens(self, payload: Mapping[str, Any]) -> int:
        del payload
        self.count_calls += 1
        if isinstance(self.token_count, Exception):
            raise self.token_count
        return self.token_count


def make_project(root: Path, *, config: str = "", description: str = "") -> Path:
    """Create ``<root>/.workflow`` with optional config and description."""
    marker = root / ".workflow"
    (marker / "output").mkdir(parents=True, exist_ok=True)
    (marker / "prompts").mkdir(exist_ok=True)
    (marker / "config").write_text(config, encoding="utf-8")
    (marker / "project.txt").write_text(description, encoding="utf-8")
    return root


def make_workflow(
    root: Path, name: str, *, task: str = "Do it.", config: str = ""
) -> Path:
    """Create a workflow directory with ``task.txt`` and ``config``."""
    wf_dir = root / ".workflow" / name
    wf_dir.mkdir(parents=True, exist_ok=True)
    (wf_dir / "task.txt").write_text(task, encoding="utf-8")
    (wf_dir / "config").write_text(config, encoding="utf-8")
    return wf_dir


def write_file(path: Path, text: str = "") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


# Smallest valid PDF/PNG headers; content is never parsed locally.
PDF_BYTES = b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\n1 0 obj<<>>endobj\ntrailer<<>>\n%%EOF\n"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
