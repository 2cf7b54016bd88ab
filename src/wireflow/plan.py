"""Cache breakpoint planning.

The Messages API accepts at most four ``cache_control`` markers per request.
Markers are placed only where a run of stable content ends:

- system side: after the last stable system block, never on the trailing
  date block;
- user side: on the last document before the task, plus one at each change
  of block kind (PDF run -> text run -> image run) while budget remains.

When candidates exceed the budget, the lowest priority ones are dropped:
final pre-task boundary > system boundary > kind transitions (latest first).
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Literal

from wireflow.context import ContextManifest
from wireflow.errors import CacheBudgetExceededError, InternalError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from wireflow.context import ContentBlock

log = logging.getLogger(__name__)

MAX_CACHE_BREAKPOINTS = 4

Side = Literal["system", "user"]
BoundaryReason = Literal["final", "system", "transition"]


@dataclass(frozen=True, slots=True)
class Breakpoint:
    """One planned marker position."""

    side: Side
    index: int
    reason: BoundaryReason


@dataclass(frozen=True)
class CachePlan:
    """Set of marker positions across the system and user sequences."""

    breakpoints: tuple[Breakpoint, ...] = ()

    def __len__(self) -> int:
        return len(self.breakpoints)

    def __contains__(self, position: object) -> bool:
        return any((bp.side, bp.index) == position for bp in self.breakpoints)

    def positions(self, side: Side) -> frozenset[int]:
        return frozenset(bp.index for bp in self.breakpoints if bp.side == side)


def _system_boundary(blocks: Sequence[ContentBlock]) -> int | None:
    # Skip the unstable tail (the date block); the block before it ends the run.
    idx = len(blocks) - 1
    while idx >= 0 and not blocks[idx].stable:
        idx -= 1
    return idx if idx >= 0 else None


def _user_boundaries(
    blocks: Sequence[ContentBlock],
) -> tuple[int | None, list[int]]:
    if not blocks or blocks[-1].group != "task":
        raise InternalError("User blocks must end with the task block")
    documents = blocks[:-1]
    stable = [i for i, b in enumerate(documents) if b.stable]
    if not stable:
        return None, []
    final = stable[-1]
    transitions = [
        i
        for i in range(final)
        if documents[i].stable and documents[i].kind != documents[i + 1].kind
    ]
    return final, transitions


def plan_breakpoints(
    system_blocks: Sequence[ContentBlock],
    user_blocks: Sequence[ContentBlock],
    max_breakpoints: int = MAX_CACHE_BREAKPOINTS,
) -> CachePlan:
    """Choose cache marker positions for one request.

    Args:
        system_blocks: Ordered system blocks (may end with the date block).
        user_blocks: Ordered user blocks ending with the task block.
        max_breakpoints: Marker budget; never above the platform limit.

    Returns:
        A CachePlan with at most ``max_breakpoints`` positions.
    """
    if not 0 <= max_breakpoints <= MAX_CACHE_BREAKPOINTS:
        raise CacheBudgetExceededError(
            f"max_breakpoints must be within 0..{MAX_CACHE_BREAKPOINTS}, "
            f"got {max_breakpoints}"
        )

    candidates: list[Breakpoint] = []
    final, transitions = _user_boundaries(user_blocks)
    if final is not None:
        candidates.append(Breakpoint("user", final, "final"))
    system = _system_boundary(system_blocks)
    if system is not None:
        candidates.append(Breakpoint("system", system, "system"))
    candidates.extend(
        Breakpoint("user", i, "transition") for i in reversed(transitions)
    )

    chosen = candidates[:max_breakpoints]
    if len(chosen) < len(candidates):
        log.debug(
            "Dropped %d cache boundaries over budget of %d",
            len(candidates) - len(chosen),
            max_breakpoints,
        )
    ordered = sorted(chosen, key=lambda bp: (bp.side != "system", bp.index))
    return CachePlan(tuple(ordered))


def check_plan(
    plan: CachePlan,
    system_blocks: Sequence[ContentBlock],
    user_blocks: Sequence[ContentBlock],
) -> None:
    """Assert the marker invariants; raises CacheBudgetExceededError."""
    if len(plan) > MAX_CACHE_BREAKPOINTS:
        raise CacheBudgetExceededError(
            f"{len(plan)} cache markers planned; the limit is {MAX_CACHE_BREAKPOINTS}"
        )
    for bp in plan.breakpoints:
        blocks = system_blocks if bp.side == "system" else user_blocks
        if not 0 <= bp.index < len(blocks):
            raise CacheBudgetExceededError(
                f"Cache marker at {bp.side}[{bp.index}] is out of range"
            )
        block = blocks[bp.index]
        if block.group == "task" or not block.stable:
            raise CacheBudgetExceededError(
                f"Cache marker placed on unstable {block.group} block"
            )


def apply_plan(manifest: ContextManifest, plan: CachePlan) -> ContextManifest:
    """Return a copy of *manifest* with ``cache_marker`` set per *plan*."""
    check_plan(plan, manifest.system, manifest.user)
    system_marks = plan.positions("system")
    user_marks = plan.positions("user")
    return ContextManifest(
        system=tuple(
            b.with_marker(i in system_marks) for i, b in enumerate(manifest.system)
        ),
        user=tuple(b.with_marker(i in user_marks) for i, b in enumerate(manifest.user)),
    )


def plan_manifest(
    manifest: ContextManifest, max_breakpoints: int = MAX_CACHE_BREAKPOINTS
) -> tuple[ContextManifest, CachePlan]:
    """Plan and apply markers in one step."""
    plan = plan_breakpoints(manifest.system, manifest.user, max_breakpoints)
    return apply_plan(manifest, plan), plan
