"""Run orchestration: prepare a request, then dispatch it and place output.

``prepare_run`` is pure with respect to the network and the output tree:
every resolution and aggregation error surfaces there, before any request is
sent or any output file is touched.
"""

from __future__ import annotations

from contextlib import ExitStack
from dataclasses import dataclass
import logging
from typing import TYPE_CHECKING, Any, Protocol

from wireflow.config import resolve_config
from wireflow.context import build_manifest
from wireflow.errors import StreamError
from wireflow.output import StreamSink, atomic_write, backup_existing, publish_output
from wireflow.plan import plan_manifest
from wireflow.project import read_task, require_workflow, shared_output_dir
from wireflow.providers.anthropic import AnthropicClient
from wireflow.request import build_request, write_payload
from wireflow.stream import StreamAccumulator
from wireflow.tokens import count_or_estimate, estimate_manifest

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator, Mapping, Sequence
    import datetime
    from pathlib import Path

    from wireflow.config import Environment, ResolvedConfig
    from wireflow.context import ContextManifest, SourceOverrides
    from wireflow.plan import CachePlan
    from wireflow.providers.anthropic import MessageResult
    from wireflow.stream import StreamEvent
    from wireflow.tokens import TokenEstimate

log = logging.getLogger(__name__)

DRY_RUN_FILE_NAME = "dry-run-request.json"


class Dispatcher(Protocol):
    """What the orchestrator needs from a completion client."""

    def create_message(self, payload: Mapping[str, Any]) -> MessageResult: ...

    def stream_message(self, payload: Mapping[str, Any]) -> Iterator[StreamEvent]: ...

    def count_tokens(self, payload: Mapping[str, Any]) -> int: ...


@dataclass(frozen=True)
class RunOptions:
    """Execution mode switches."""

    stream: bool = False
    count_tokens: bool = False
    dry_run: bool = False


@dataclass(frozen=True)
class PreparedRun:
    """Everything needed to dispatch one request, built without I/O side effects."""

    config: ResolvedConfig
    manifest: ContextManifest
    plan: CachePlan
    payload: dict[str, Any]
    estimate: TokenEstimate


@dataclass(frozen=True)
class RunResult:
    """Outcome of a workflow or task run.

    ``text`` is None when nothing was dispatched (dry-run or count-only).
    """

    prepared: PreparedRun
    estimate: TokenEstimate
    text: str | None = None
    output_path: Path | None = None
    backup_path: Path | None = None
    shared_path: Path | None = None
    dry_run_path: Path | None = None

    @property
    def dispatched(self) -> bool:
        return self.text is not None


def prepare_run(
    env: Environment,
    *,
    task: str,
    projects: Sequence[Path] = (),
    workflow_dir: Path | None = None,
    settings: Mapping[str, Any] | None = None,
    sources: SourceOverrides | None = None,
    stream: bool = False,
    today: datetime.date | None = None,
) -> PreparedRun:
    """Resolve config, aggregate sources, plan markers and assemble the payload.

    Raises:
        WireflowError: Any resolution or aggregation failure.
    """
    config = resolve_config(
        env, projects=projects, workflow_dir=workflow_dir, overrides=settings
    )
    manifest = build_manifest(
        config, task=task, overrides=sources, projects=projects, today=today
    )
    marked, plan = plan_manifest(manifest)
    payload = build_request(config, marked, plan, stream=stream)
    log.debug("Prepared request with %d cache markers", len(plan))
    return PreparedRun(
        config=config,
        manifest=marked,
        plan=plan,
        payload=payload,
        estimate=estimate_manifest(marked),
    )


def resolve_api_key(env: Environment, config: ResolvedConfig) -> str | None:
    """Environment key first, then the global config file."""
    return env.api_key or config.get("ANTHROPIC_API_KEY")


def _dispatch(
    client: Dispatcher,
    prepared: PreparedRun,
    output_path: Path | None,
    *,
    stream: bool,
    on_text: Callable[[str], None] | None,
) -> tuple[str, Path | None]:
    """Send the request and write output; returns (text, backup path)."""
    if not stream:
        result = client.create_message(prepared.payload)
        if on_text is not None:
            on_text(result.text)
        if output_path is None:
            return result.text, None
        backup = backup_existing(output_path)
        atomic_write(output_path, result.text)
        return result.text, backup

    with ExitStack() as stack:
        sink = (
            stack.enter_context(StreamSink(output_path))
            if output_path is not None
            else None
        )

        def emit(text: str) -> None:
            if sink is not None:
                sink.write(text)
            if on_text is not None:
                on_text(text)

        accumulator = StreamAccumulator(on_text=emit)
        text = accumulator.consume(client.stream_message(prepared.payload))
    return text, sink.backup_path if sink is not None else None


def _execute(
    env: Environment,
    prepared: PreparedRun,
    options: RunOptions,
    *,
    client: Dispatcher | None,
    output_path: Path | None,
    on_text: Callable[[str], None] | None,
) -> tuple[TokenEstimate, str | None, Path | None]:
    estimate = prepared.estimate
    api_key = resolve_api_key(env, prepared.config)
    dispatch = not (options.dry_run or options.count_tokens)
    with ExitStack() as stack:
        # Exact counting is opportunistic: without a key it stays heuristic.
        if client is None and (dispatch or (options.count_tokens and api_key)):
            client = stack.enter_context(AnthropicClient(api_key))
        if options.count_tokens:
            estimate = count_or_estimate(prepared.manifest, prepared.payload, client)
        if not dispatch or client is None:
            return estimate, None, None
        text, backup = _dispatch(
            client, prepared, output_path, stream=options.stream, on_text=on_text
        )
    return estimate, text, backup


def run_workflow(
    env: Environment,
    projects: Sequence[Path],
    name: str,
    *,
    settings: Mapping[str, Any] | None = None,
    sources: SourceOverrides | None = None,
    options: RunOptions | None = None,
    client: Dispatcher | None = None,
    on_text: Callable[[str], None] | None = None,
    today: datetime.date | None = None,
) -> RunResult:
    """Run workflow *name* of the innermost project in *projects*.

    On success the output is written to ``<workflow>/output.<fmt>`` (after
    backing up the previous one) and published to the shared output
    directory. A failed stream keeps its partial output in the workflow
    directory but does not publish it.

    Raises:
        WorkflowNotFoundError: Unknown workflow.
        WireflowError: Resolution or aggregation failure (nothing dispatched).
        APIError: Dispatch failure; StreamError for a mid-stream error.
    """
    options = options or RunOptions()
    root = projects[-1]
    wf_dir = require_workflow(root, name)
    prepared = prepare_run(
        env,
        task=read_task(wf_dir),
        projects=projects,
        workflow_dir=wf_dir,
        settings=settings,
        sources=sources,
        stream=options.stream,
        today=today,
    )

    dry_run_path = None
    if options.dry_run:
        dry_run_path = write_payload(prepared.payload, wf_dir / DRY_RUN_FILE_NAME)
        log.info("Dry-run request written to %s", dry_run_path)

    output_path = wf_dir / f"output.{prepared.config.output_format}"
    try:
        estimate, text, backup = _execute(
            env,
            prepared,
            options,
            client=client,
            output_path=output_path,
            on_text=on_text,
        )
    except StreamError:
        log.error("Workflow %s failed mid-stream; output not published", name)
        raise
    if text is None:
        return RunResult(prepared, estimate, dry_run_path=dry_run_path)

    shared = publish_output(output_path, shared_output_dir(root), name)
    log.info("Output written to %s", output_path)
    return RunResult(
        prepared,
        estimate,
        text=text,
        output_path=output_path,
        backup_path=backup,
        shared_path=shared,
    )


def run_task(
    env: Environment,
    task: str,
    *,
    projects: Sequence[Path] = (),
    settings: Mapping[str, Any] | None = None,
    sources: SourceOverrides | None = None,
    options: RunOptions | None = None,
    output_file: Path | None = None,
    client: Dispatcher | None = None,
    on_text: Callable[[str], None] | None = None,
    today: datetime.date | None = None,
) -> RunResult:
    """Run a one-off task: no workflow tier, no stored output.

    Output goes to ``on_text`` (normally stdout) and, when given, to
    *output_file* with the usual backup rule.
    """
    options = options or RunOptions()
    prepared = prepare_run(
        env,
        task=task,
        projects=projects,
        settings=settings,
        sources=sources,
        stream=options.stream,
        today=today,
    )
    estimate, text, backup = _execute(
        env,
        prepared,
        options,
        client=client,
        output_path=output_file,
        on_text=on_text,
    )
    return RunResult(
        prepared,
        estimate,
        text=text,
        output_path=output_file if text is not None else None,
        backup_path=backup,
    )
