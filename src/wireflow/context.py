"""Context aggregation: resolve document sources into an ordered manifest.

Source resolution follows a fixed priority (dependencies, declared pattern,
CLI pattern, declared files, CLI files) while the final block order groups the
most stable material first so a trailing cache boundary covers the largest
stable prefix:

    system prompts -> project description -> date     (system side)
    PDFs -> text (dependency, context, input) -> images -> task   (user side)
"""

from __future__ import annotations

from dataclasses import dataclass, replace
import datetime
import glob
import logging
from pathlib import Path
import re
import shlex
from typing import TYPE_CHECKING, Any, Literal

from wireflow.config import utils as config_utils
from wireflow.errors import (
    ContextFileMissingError,
    DependencyOutputMissingError,
    InputFileMissingError,
    InternalError,
    SourceError,
)
from wireflow.project import latest_output
from wireflow.source import Source, wrap_document

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from wireflow.config import ResolvedConfig

log = logging.getLogger(__name__)

BlockKind = Literal["text", "pdf", "image", "date"]
BlockGroup = Literal[
    "system", "project", "date", "dependency", "context", "input", "task"
]

_BRACE_RE = re.compile(r"\{([^{}]*,[^{}]*)\}")


@dataclass(frozen=True)
class ContentBlock:
    """One block of the request, before serialization.

    ``payload`` is the Messages API content block without ``cache_control``;
    the planner sets ``cache_marker`` and the assembler adds the marker.
    """

    kind: BlockKind
    group: BlockGroup
    payload: dict[str, Any]
    source_paths: tuple[str, ...] = ()
    stable: bool = True
    cache_marker: bool = False

    @classmethod
    def text(
        cls,
        text: str,
        *,
        group: BlockGroup,
        source_paths: tuple[str, ...] = (),
        stable: bool = True,
        kind: BlockKind = "text",
    ) -> ContentBlock:
        return cls(
            kind=kind,
            group=group,
            payload={"type": "text", "text": text},
            source_paths=source_paths,
            stable=stable,
        )

    @property
    def text_content(self) -> str:
        """Text carried by the block (empty for binary blocks)."""
        if self.payload.get("type") == "text":
            return str(self.payload.get("text", ""))
        return ""

    def with_marker(self, marker: bool = True) -> ContentBlock:
        return replace(self, cache_marker=marker)


@dataclass(frozen=True)
class ContextManifest:
    """Ordered system and user blocks for one request.

    The user sequence always ends with exactly one unstable ``task`` block.
    """

    system: tuple[ContentBlock, ...]
    user: tuple[ContentBlock, ...]

    def __post_init__(self) -> None:
        tasks = [i for i, b in enumerate(self.user) if b.group == "task"]
        if tasks != [len(self.user) - 1]:
            raise InternalError("Manifest must end with exactly one task block")
        if self.task.stable or self.task.cache_marker:
            raise InternalError("Task block must never be stable or cached")

    @property
    def task(self) -> ContentBlock:
        return self.user[-1]

    @property
    def documents(self) -> tuple[ContentBlock, ...]:
        return self.user[:-1]

    @property
    def system_text(self) -> str:
        return "".join(b.text_content for b in self.system)

    @property
    def context_text(self) -> str:
        return "".join(b.text_content for b in self.documents)


@dataclass(frozen=True)
class SourceOverrides:
    """One-off sources supplied on the command line.

    Relative paths are resolved against ``base_dir`` (the invocation
    directory), not the project root.
    """

    context_pattern: str | None = None
    context_files: tuple[str, ...] = ()
    input_pattern: str | None = None
    input_files: tuple[str, ...] = ()
    depends_on: tuple[str, ...] = ()
    base_dir: Path | None = None


# --- Path resolution ---


def expand_braces(pattern: str) -> list[str]:
    """Expand shell-style ``{a,b}`` alternatives, left to right."""
    m = _BRACE_RE.search(pattern)
    if m is None:
        return [pattern]
    head, tail = pattern[: m.start()], pattern[m.end() :]
    out: list[str] = []
    for alt in m.group(1).split(","):
        out.extend(expand_braces(head + alt + tail))
    return out


def expand_pattern(pattern: str, base_dir: Path) -> list[Path]:
    """Expand a (possibly multi-word) glob pattern into existing files.

    Each word is expanded separately and sorted; zero matches is an empty
    contribution, not an error.
    """
    try:
        words = shlex.split(pattern)
    except ValueError:
        words = [pattern]
    matches: list[Path] = []
    for word in words:
        for alt in expand_braces(word):
            hits = sorted(glob.glob(alt, root_dir=base_dir, recursive=True))
            files = [base_dir / h for h in hits if (base_dir / h).is_file()]
            if not files:
                log.debug("Pattern %r matched no files under %s", alt, base_dir)
            matches.extend(files)
    return matches


def _resolve_path(name: str, base_dir: Path) -> Path:
    path = Path(name).expanduser()
    return path if path.is_absolute() else base_dir / path


def find_dependency_output(project_root: Path | None, name: str) -> Path:
    """Return the latest shared output of workflow *name*.

    Raises:
        DependencyOutputMissingError: If the workflow has never produced output.
    """
    if project_root is not None:
        output = latest_output(project_root, name)
        if output is not None:
            return output
    raise DependencyOutputMissingError(
        name,
        hint=f"Ensure workflow '{name}' has been executed successfully: wfw run {name}",
    )


# --- System side ---


def load_system_prompts(names: Sequence[str], prefix: str | Path | None) -> str:
    """Concatenate ``<prefix>/<name>.txt`` for each name, in order."""
    if not names:
        return ""
    if not prefix:
        raise SourceError(
            "System prompt directory is not configured",
            hint="Set WORKFLOW_PROMPT_PREFIX in a config file or the environment.",
        )
    prompt_dir = Path(prefix).expanduser()
    if not prompt_dir.is_dir():
        raise SourceError(
            f"System prompt directory not found: {prompt_dir}",
            hint="Run 'wfw init' to create the default prompt directory.",
        )
    parts: list[str] = []
    for name in names:
        path = prompt_dir / f"{name}.txt"
        if not path.is_file():
            raise SourceError(
                f"System prompt file not found: {path}",
                hint="Create the file or adjust SYSTEM_PROMPTS.",
            )
        parts.append(path.read_text(encoding="utf-8"))
    return "".join(parts)


def load_project_descriptions(projects: Sequence[Path]) -> str:
    """Concatenate the non-empty ``project.txt`` files, outermost first."""
    parts: list[str] = []
    for root in projects:
        path = (
            root / config_utils.PROJECT_MARKER / config_utils.PROJECT_DESCRIPTION_FILE
        )
        if path.is_file():
            text = path.read_text(encoding="utf-8")
            if text.strip():
                parts.append(wrap_document("project", text))
    return "".join(parts)


def date_block(today: datetime.date) -> ContentBlock:
    """Trailing freshness block; date granularity only, never cached."""
    return ContentBlock.text(
        f"Today's date is {today.isoformat()}.",
        group="date",
        kind="date",
        stable=False,
    )


def build_system_blocks(
    config: ResolvedConfig,
    *,
    projects: Sequence[Path] = (),
    today: datetime.date | None = None,
) -> tuple[ContentBlock, ...]:
    blocks: list[ContentBlock] = []
    system_text = load_system_prompts(
        config.system_prompts, config.get("WORKFLOW_PROMPT_PREFIX")
    )
    if system_text.strip():
        blocks.append(ContentBlock.text(system_text, group="system"))
    project_text = load_project_descriptions(projects)
    if project_text:
        blocks.append(ContentBlock.text(project_text, group="project"))
    blocks.append(date_block(today or datetime.date.today()))
    return tuple(blocks)


# --- User side ---


def _collect(
    *,
    declared_pattern: str | None,
    cli_pattern: str | None,
    declared_files: Iterable[str],
    cli_files: Iterable[str],
    config_dir: Path,
    cli_dir: Path,
    missing: type[SourceError],
) -> list[Source]:
    matched: list[Path] = []
    if declared_pattern:
        matched.extend(expand_pattern(declared_pattern, config_dir))
    if cli_pattern:
        matched.extend(expand_pattern(cli_pattern, cli_dir))
    named = [_resolve_path(n, config_dir) for n in declared_files]
    named += [_resolve_path(n, cli_dir) for n in cli_files]
    sources = [Source.from_file(p) for p in matched]
    sources.extend(Source.from_file(p, missing=missing) for p in named)
    return sources


def _text_block(sources: Sequence[Source], group: BlockGroup) -> ContentBlock | None:
    texts = [s for s in sources if s.kind == "text"]
    if not texts:
        return None
    body = "".join(wrap_document(s.name, s.text()) for s in texts)
    return ContentBlock.text(
        body, group=group, source_paths=tuple(s.identifier for s in texts)
    )


def _binary_blocks(
    sources: Sequence[Source], kind: BlockKind, group: BlockGroup, *, citations: bool
) -> list[ContentBlock]:
    return [
        ContentBlock(
            kind=kind,
            group=group,
            payload=s.to_block(citations=citations),
            source_paths=(s.identifier,),
        )
        for s in sources
        if s.kind == kind
    ]


def build_manifest(
    config: ResolvedConfig,
    *,
    task: str,
    overrides: SourceOverrides | None = None,
    projects: Sequence[Path] = (),
    today: datetime.date | None = None,
    cwd: Path | None = None,
) -> ContextManifest:
    """Resolve every declared and CLI-supplied source into a ContextManifest.

    Args:
        config: Resolved configuration (declared sources, prompts, citations).
        task: Task text; becomes the terminal, never-cached block.
        overrides: One-off CLI sources and extra dependencies.
        projects: Project chain, outermost first; the last one is current.
        today: Date for the freshness block (defaults to today).
        cwd: Invocation directory used when no ``overrides.base_dir`` is given.

    Raises:
        DependencyOutputMissingError: A dependency has no shared output.
        ContextFileMissingError: A named context file does not exist.
        InputFileMissingError: A named input file does not exist.
        SourceError: Task is empty or a system prompt cannot be loaded.
    """
    if not task.strip():
        raise SourceError(
            "Task is empty",
            hint="Write the task description first (wfw edit NAME).",
        )
    overrides = overrides or SourceOverrides()
    cli_dir = overrides.base_dir or cwd or Path.cwd()
    project_root = projects[-1] if projects else None
    config_dir = project_root or cli_dir

    dependencies = [
        Source.from_file(find_dependency_output(project_root, name))
        for name in (*config.depends_on, *overrides.depends_on)
    ]
    context = _collect(
        declared_pattern=config.get("CONTEXT_PATTERN"),
        cli_pattern=overrides.context_pattern,
        declared_files=config.get("CONTEXT_FILES", ()),
        cli_files=overrides.context_files,
        config_dir=config_dir,
        cli_dir=cli_dir,
        missing=ContextFileMissingError,
    )
    inputs = _collect(
        declared_pattern=config.get("INPUT_PATTERN"),
        cli_pattern=overrides.input_pattern,
        declared_files=config.get("INPUT_FILES", ()),
        cli_files=overrides.input_files,
        config_dir=config_dir,
        cli_dir=cli_dir,
        missing=InputFileMissingError,
    )
    if not (dependencies or context or inputs):
        log.warning("No context provided; task will run without context")

    citations = config.enable_citations
    user: list[ContentBlock] = []
    for sources, group in ((context, "context"), (inputs, "input")):
        user.extend(_binary_blocks(sources, "pdf", group, citations=citations))
    for sources, group in (
        (dependencies, "dependency"),
        (context, "context"),
        (inputs, "input"),
    ):
        block = _text_block(sources, group)
        if block is not None:
            user.append(block)
    for sources, group in ((context, "context"), (inputs, "input")):
        user.extend(_binary_blocks(sources, "image", group, citations=False))
    user.append(ContentBlock.text(task, group="task", stable=False))

    return ContextManifest(
        system=build_system_blocks(config, projects=projects, today=today),
        user=tuple(user),
    )
