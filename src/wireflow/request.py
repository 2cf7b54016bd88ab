"""Request assembly: serialize a planned manifest into a Messages API payload."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from wireflow.plan import apply_plan, plan_breakpoints

if TYPE_CHECKING:
    from pathlib import Path

    from wireflow.config import ResolvedConfig
    from wireflow.context import ContentBlock, ContextManifest
    from wireflow.plan import CachePlan

CACHE_CONTROL: dict[str, str] = {"type": "ephemeral"}


def serialize_block(block: ContentBlock) -> dict[str, Any]:
    """Return the wire form of *block*, with ``cache_control`` when marked."""
    payload = dict(block.payload)
    if block.cache_marker:
        payload["cache_control"] = dict(CACHE_CONTROL)
    return payload


def build_request(
    config: ResolvedConfig,
    manifest: ContextManifest,
    plan: CachePlan | None = None,
    *,
    stream: bool = False,
) -> dict[str, Any]:
    """Build the request payload for one completion call.

    Args:
        config: Supplies ``model``, ``max_tokens`` and ``temperature``.
        manifest: Ordered system and user blocks; the task block is last.
        plan: Marker positions. Planned here when omitted.
        stream: Include ``"stream": true`` for SSE dispatch.

    Raises:
        CacheBudgetExceededError: If the plan breaks the marker invariants.
    """
    if plan is None:
        plan = plan_breakpoints(manifest.system, manifest.user)
    marked = apply_plan(manifest, plan)

    payload: dict[str, Any] = {
        "model": config.model,
        "max_tokens": config.max_tokens,
        "temperature": config.temperature,
        "system": [serialize_block(b) for b in marked.system],
        "messages": [
            {"role": "user", "content": [serialize_block(b) for b in marked.user]}
        ],
    }
    if stream:
        payload["stream"] = True
    return payload


def count_markers(payload: dict[str, Any]) -> int:
    """Count ``cache_control`` markers across system and message content."""
    blocks = list(payload.get("system", []))
    for message in payload.get("messages", []):
        content = message.get("content")
        if isinstance(content, list):
            blocks.extend(content)
    return sum(1 for b in blocks if isinstance(b, dict) and "cache_control" in b)


def write_payload(payload: dict[str, Any], path: Path) -> Path:
    """Persist *payload* as pretty-printed JSON for inspection."""
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    return path
