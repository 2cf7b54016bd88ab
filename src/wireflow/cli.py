"""Command-line interface (``wfw``).

Usage:
  wfw init [DIR]                  create .workflow/ in DIR (default: .)
  wfw new NAME [--task TEMPLATE]  create a workflow
  wfw edit [NAME]                 open workflow (or project) files in $EDITOR
  wfw config [NAME]               show resolved configuration with origins
  wfw run NAME [options]          run a workflow
  wfw task NAME | -i TEXT         run a one-off task
  wfw tasks                       list task templates
  wfw list | ls                   list workflows
  wfw cat NAME                    print the latest output of a workflow
  wfw open NAME                   open the latest output in the system viewer

Exit codes: 0 success, 1 error, 2 invalid usage.
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import shlex
import subprocess
import sys
from typing import TYPE_CHECKING, Any

from wireflow import project as layout
from wireflow.config import (
    audit_lines,
    ensure_global_config,
    find_ancestor_projects,
    find_project_root,
    load_environment,
    resolve_config,
)
from wireflow.config import utils as config_utils
from wireflow.context import SourceOverrides
from wireflow.errors import WireflowError
from wireflow.execute import RunOptions, run_task, run_workflow

if TYPE_CHECKING:
    from collections.abc import Sequence

    from wireflow.config import Environment
    from wireflow.execute import RunResult

log = logging.getLogger(__name__)

PROG = "wfw"


# --- Parser ---


def _comma_list(value: str) -> list[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def _request_parent() -> argparse.ArgumentParser:
    """Flags shared by ``run`` and ``task``."""
    parent = argparse.ArgumentParser(add_help=False)
    src = parent.add_argument_group("context and input sources")
    src.add_argument("--context-file", action="append", default=[], metavar="FILE")
    src.add_argument("--context-pattern", metavar="GLOB")
    src.add_argument("--input-file", action="append", default=[], metavar="FILE")
    src.add_argument("--input-pattern", metavar="GLOB")

    api = parent.add_argument_group("API overrides")
    api.add_argument("--model", "-m")
    api.add_argument("--temperature", "-t", type=float)
    api.add_argument("--max-tokens", type=int)
    api.add_argument(
        "--system-prompts", type=_comma_list, metavar="NAMES", help="comma separated"
    )
    api.add_argument("--output-format", "-f", metavar="EXT")
    api.add_argument(
        "--enable-citations", dest="citations", action="store_true", default=None
    )
    api.add_argument(
        "--disable-citations", dest="citations", action="store_false", default=None
    )

    mode = parent.add_argument_group("execution mode")
    mode.add_argument(
        "--stream", action=argparse.BooleanOptionalAction, default=False
    )
    mode.add_argument("--count-tokens", action="store_true")
    mode.add_argument("--dry-run", "-n", action="store_true")
    return parent


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROG,
        description="Build AI workflows from layered config and document context.",
    )
    parser.add_argument(
        "-v", "--verbose", action="count", default=0, help="-v info, -vv debug"
    )
    sub = parser.add_subparsers(dest="cmd", metavar="COMMAND")
    request = _request_parent()

    p = sub.add_parser("init", help="initialize a project")
    p.add_argument("directory", nargs="?", default=".", type=Path)
    p.add_argument("--no-edit", action="store_true")

    p = sub.add_parser("new", help="create a workflow")
    p.add_argument("name")
    p.add_argument("--task", dest="template", metavar="TEMPLATE")
    p.add_argument("--no-edit", action="store_true")

    p = sub.add_parser("edit", help="edit workflow or project files")
    p.add_argument("name", nargs="?")

    p = sub.add_parser("config", help="show resolved configuration")
    p.add_argument("name", nargs="?")

    p = sub.add_parser("run", parents=[request], help="run a workflow")
    p.add_argument("name")
    p.add_argument(
        "--depends-on",
        action="append",
        default=[],
        type=_comma_list,
        metavar="NAMES",
    )

    p = sub.add_parser("task", parents=[request], help="run a one-off task")
    p.add_argument("name", nargs="?", help="task template name")
    p.add_argument("-i", "--inline", metavar="TEXT", help="inline task text")
    p.add_argument("--output-file", type=Path, metavar="PATH")

    sub.add_parser("tasks", help="list task templates")
    sub.add_parser("list", aliases=["ls"], help="list workflows")

    p = sub.add_parser("cat", help="print the latest workflow output")
    p.add_argument("name")

    p = sub.add_parser("open", help="open the latest workflow output")
    p.add_argument("name")

    p = sub.add_parser("help", help="show help")
    p.add_argument("topic", nargs="?")
    return parser


# --- Argument mapping ---


def cli_settings(args: argparse.Namespace) -> dict[str, Any]:
    """CLI tier values. Flags not passed, or passed empty, do not participate."""
    candidates = {
        "MODEL": getattr(args, "model", None),
        "TEMPERATURE": getattr(args, "temperature", None),
        "MAX_TOKENS": getattr(args, "max_tokens", None),
        "OUTPUT_FORMAT": getattr(args, "output_format", None),
        "SYSTEM_PROMPTS": getattr(args, "system_prompts", None),
        "ENABLE_CITATIONS": getattr(args, "citations", None),
    }
    out: dict[str, Any] = {}
    for key, value in candidates.items():
        if value is None or value == "" or value == []:
            continue
        out[key] = value
    return out


def source_overrides(args: argparse.Namespace, cwd: Path) -> SourceOverrides:
    depends = [name for group in getattr(args, "depends_on", []) for name in group]
    return SourceOverrides(
        context_pattern=args.context_pattern or None,
        context_files=tuple(f for f in args.context_file if f),
        input_pattern=args.input_pattern or None,
        input_files=tuple(f for f in args.input_file if f),
        depends_on=tuple(depends),
        base_dir=cwd,
    )


def run_options(args: argparse.Namespace) -> RunOptions:
    return RunOptions(
        stream=args.stream, count_tokens=args.count_tokens, dry_run=args.dry_run
    )


# --- Helpers ---


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    logging.getLogger("wireflow").setLevel(level)


def _out(line: str = "") -> None:
    sys.stdout.write(line + "\n")


def _write_stream(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


def _project_chain(env: Environment, cwd: Path, *, required: bool) -> list[Path]:
    if required:
        find_project_root(cwd, env.home)
    return find_ancestor_projects(cwd, env.home)


def open_in_editor(paths: Sequence[Path], env: Environment) -> None:
    """Open *paths* in ``$VISUAL``, ``$EDITOR`` or ``vi``."""
    editor = config_utils.first_set(env.variables, ("VISUAL", "EDITOR")) or "vi"
    cmd = [*shlex.split(editor), *(str(p) for p in paths)]
    try:
        subprocess.run(cmd, check=False)  # noqa: S603 - user-configured editor
    except OSError as e:
        raise WireflowError(
            f"Cannot start editor {editor!r}: {e}",
            hint="Set VISUAL or EDITOR to an installed editor.",
        ) from e


def opener_command(platform: str = sys.platform) -> list[str]:
    """Command that hands a file to the platform's default viewer."""
    if platform == "darwin":
        return ["open"]
    if platform.startswith(("win", "cygwin")):
        return ["cmd", "/c", "start", ""]
    return ["xdg-open"]


def open_in_viewer(path: Path) -> None:
    cmd = [*opener_command(), str(path)]
    try:
        subprocess.run(cmd, check=False)  # noqa: S603 - fixed platform opener
    except OSError as e:
        raise WireflowError(
            f"Cannot open {path} with {cmd[0]!r}: {e}",
            hint=f"Print it instead: {PROG} cat NAME",
        ) from e


def _project_files(marker: Path) -> list[Path]:
    return [
        marker / config_utils.PROJECT_DESCRIPTION_FILE,
        marker / config_utils.CONFIG_FILE_NAME,
    ]


def _workflow_files(wf_dir: Path) -> list[Path]:
    return [
        wf_dir / config_utils.TASK_FILE_NAME,
        wf_dir / config_utils.CONFIG_FILE_NAME,
    ]


def _maybe_edit(paths: Sequence[Path], env: Environment, *, no_edit: bool) -> None:
    if no_edit or not sys.stdin.isatty():
        return
    open_in_editor(paths, env)


def _report(result: RunResult, args: argparse.Namespace) -> None:
    if args.count_tokens:
        for line in result.estimate.describe():
            _out(line)
    if args.dry_run and result.dry_run_path is not None:
        _out(f"Dry run: request written to {result.dry_run_path}")
    elif args.dry_run:
        _out(json.dumps(result.prepared.payload, indent=2))


# --- Commands ---


def cmd_init(args: argparse.Namespace, env: Environment, cwd: Path) -> int:
    target = (cwd / args.directory).resolve()
    parents = find_ancestor_projects(target, env.home)
    if parents and parents[-1] != target:
        _out(f"Initializing nested project inside {parents[-1]}")
        _out("Empty settings will be inherited from the enclosing project.")
    root = layout.init_project(target)
    _out(f"Initialized workflow project: {root}/")
    _maybe_edit(_project_files(root), env, no_edit=args.no_edit)
    return 0


def cmd_new(args: argparse.Namespace, env: Environment, cwd: Path) -> int:
    projects = _project_chain(env, cwd, required=True)
    task_text = ""
    if args.template:
        config = resolve_config(env, projects=projects)
        task_text = layout.load_task_template(
            config.get("WORKFLOW_TASK_PREFIX"), args.template
        )
    wf_dir = layout.new_workflow(projects[-1], args.name, task_text=task_text)
    _out(f"Created workflow: {args.name}")
    _maybe_edit(_workflow_files(wf_dir), env, no_edit=args.no_edit)
    return 0


def cmd_edit(args: argparse.Namespace, env: Environment, cwd: Path) -> int:
    root = find_project_root(cwd, env.home)
    if args.name is None:
        files = _project_files(layout.marker_dir(root))
    else:
        wf_dir = layout.require_workflow(root, args.name)
        files = _workflow_files(wf_dir)
    open_in_editor(files, env)
    return 0


def cmd_config(args: argparse.Namespace, env: Environment, cwd: Path) -> int:
    projects = find_ancestor_projects(cwd, env.home)
    wf_dir = None
    if args.name is not None:
        if not projects:
            find_project_root(cwd, env.home)
        wf_dir = layout.require_workflow(projects[-1], args.name)
    config = resolve_config(env, projects=projects, workflow_dir=wf_dir)
    _out(f"Global config: {config_utils.global_config_path(env.variables)}")
    for root in projects:
        _out(f"Project: {root}")
    if wf_dir is not None:
        _out(f"Workflow: {wf_dir}")
    _out()
    for line in audit_lines(config):
        _out(line)
    return 0


def cmd_run(args: argparse.Namespace, env: Environment, cwd: Path) -> int:
    projects = _project_chain(env, cwd, required=True)
    result = run_workflow(
        env,
        projects,
        args.name,
        settings=cli_settings(args),
        sources=source_overrides(args, cwd),
        options=run_options(args),
        on_text=_write_stream if args.stream else None,
    )
    _report(result, args)
    if result.dispatched:
        if not args.stream:
            _out(result.text or "")
        else:
            _out()
        if result.backup_path is not None:
            log.info("Previous output saved as %s", result.backup_path)
        log.info("Output: %s", result.output_path)
    return 0


def cmd_task(args: argparse.Namespace, env: Environment, cwd: Path) -> int:
    if bool(args.name) == bool(args.inline):
        raise WireflowError(
            "Specify exactly one of a task template NAME or -i TEXT",
            hint=f"{PROG} task summarize  or  {PROG} task -i 'Summarize the notes'",
        )
    projects = _project_chain(env, cwd, required=False)
    if args.inline:
        task = args.inline
    else:
        config = resolve_config(env, projects=projects)
        prefix = config.get("WORKFLOW_TASK_PREFIX")
        task = layout.load_task_template(prefix, args.name)
    output_file = (cwd / args.output_file) if args.output_file else None
    result = run_task(
        env,
        task,
        projects=projects,
        settings=cli_settings(args),
        sources=source_overrides(args, cwd),
        options=run_options(args),
        output_file=output_file,
        on_text=_write_stream if args.stream else None,
    )
    _report(result, args)
    if result.dispatched:
        _out("" if args.stream else result.text or "")
    return 0


def cmd_tasks(args: argparse.Namespace, env: Environment, cwd: Path) -> int:
    config = resolve_config(env, projects=find_ancestor_projects(cwd, env.home))
    prefix = config.get("WORKFLOW_TASK_PREFIX")
    names = layout.list_task_templates(prefix)
    _out(f"Task templates in {prefix}:")
    for name in names:
        _out(f"  {name}")
    if not names:
        _out("  (none)")
    return 0


def cmd_list(args: argparse.Namespace, env: Environment, cwd: Path) -> int:
    root = find_project_root(cwd, env.home)
    names = layout.list_workflows(root)
    _out(f"Workflows in {root}:")
    for name in names:
        _out(f"  {layout.workflow_status(root, name).describe()}")
    if not names:
        _out("  (none)")
    return 0


def _require_output(env: Environment, cwd: Path, name: str) -> Path:
    root = find_project_root(cwd, env.home)
    layout.require_workflow(root, name)
    output = layout.latest_output(root, name)
    if output is None:
        raise WireflowError(
            f"Workflow '{name}' has no output yet",
            hint=f"Run it first: {PROG} run {name}",
        )
    return output


def cmd_cat(args: argparse.Namespace, env: Environment, cwd: Path) -> int:
    output = _require_output(env, cwd, args.name)
    sys.stdout.write(output.read_text(encoding="utf-8"))
    return 0


def cmd_open(args: argparse.Namespace, env: Environment, cwd: Path) -> int:
    open_in_viewer(_require_output(env, cwd, args.name))
    return 0


_COMMANDS = {
    "init": cmd_init,
    "new": cmd_new,
    "edit": cmd_edit,
    "config": cmd_config,
    "run": cmd_run,
    "task": cmd_task,
    "tasks": cmd_tasks,
    "list": cmd_list,
    "ls": cmd_list,
    "cat": cmd_cat,
    "open": cmd_open,
}


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point; returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if args.cmd in (None, "help"):
        topic = getattr(args, "topic", None)
        if topic and topic in _COMMANDS:
            parser.parse_args([topic, "--help"])
        parser.print_help()
        return 0

    env = load_environment()
    cwd = Path.cwd()
    try:
        ensure_global_config(env)
        return _COMMANDS[args.cmd](args, env, cwd)
    except WireflowError as e:
        sys.stderr.write(f"Error: {e}\n")
        if e.hint:
            sys.stderr.write(f"Hint: {e.hint}\n")
        return 1
    except KeyboardInterrupt:
        sys.stderr.write("Interrupted\n")
        return 130


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
