"""Token estimation for cost preview.

Two modes:
- heuristic: ``words * 1.3 + overhead`` per segment, always available;
- exact: a ``count_tokens`` call on the dispatcher, used when reachable.

Estimates are recomputed on every request and never cached.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any, Literal, Protocol

from wireflow.errors import APIError

if TYPE_CHECKING:
    from collections.abc import Mapping

    from wireflow.context import ContextManifest

log = logging.getLogger(__name__)

# Structural/formatting tokens charged once per non-empty segment.
SEGMENT_OVERHEAD = 4096


class TokenCounter(Protocol):
    """Anything that can count tokens for an assembled request payload."""

    def count_tokens(self, payload: Mapping[str, Any]) -> int: ...


@dataclass(frozen=True, slots=True)
class TokenEstimate:
    """Per-segment token estimate.

    ``method`` is ``"exact"`` only when the counting endpoint answered; the
    segment fields are heuristic in both cases.
    """

    system: int
    task: int
    context: int
    total: int
    method: Literal["heuristic", "exact"] = "heuristic"

    def describe(self) -> list[str]:
        lines = [
            f"System tokens:  ~{self.system}",
            f"Task tokens:    ~{self.task}",
            f"Context tokens: ~{self.context}",
        ]
        label = "exact" if self.method == "exact" else "estimated"
        lines.append(f"Total tokens:   {self.total} ({label})")
        return lines


def segment_tokens(text: str) -> int:
    """Heuristic cost of one segment, overhead included."""
    return len(text.split()) * 13 // 10 + SEGMENT_OVERHEAD


def estimate_tokens(*, system: str, task: str, context: str) -> TokenEstimate:
    """Estimate tokens for each segment independently and sum them.

    System and task always carry the overhead; an empty context costs 0.
    """
    s, t = segment_tokens(system), segment_tokens(task)
    c = segment_tokens(context) if context.strip() else 0
    return TokenEstimate(system=s, task=t, context=c, total=s + t + c)


def estimate_manifest(manifest: ContextManifest) -> TokenEstimate:
    """Heuristic estimate over a manifest's text segments.

    Binary blocks (PDFs, images) are not counted by the heuristic.
    """
    return estimate_tokens(
        system=manifest.system_text,
        task=manifest.task.text_content,
        context=manifest.context_text,
    )


def count_or_estimate(
    manifest: ContextManifest,
    payload: Mapping[str, Any],
    counter: TokenCounter | None = None,
) -> TokenEstimate:
    """Use the exact counter when available, falling back to the heuristic.

    An ``APIError`` from the counter never fails the run; it is logged and
    the heuristic total is returned instead.
    """
    estimate = estimate_manifest(manifest)
    if counter is None:
        return estimate
    try:
        exact = counter.count_tokens(payload)
    except APIError as e:
        log.warning("Exact token count unavailable, using heuristic: %s", e)
        return estimate
    return TokenEstimate(
        system=estimate.system,
        task=estimate.task,
        context=estimate.context,
        total=exact,
        method="exact",
    )
