"""Project layout: ``.workflow/`` directories, workflows and task templates.

    <root>/.workflow/
        config          project tier
        project.txt     project description (system side)
        prompts/        project-local prompt files
        output/         latest output of every workflow (hardlinks)
        <name>/         one directory per workflow:
            task.txt, config, output.<fmt>, output-<timestamp>.<fmt>
"""

from __future__ import annotations

from dataclasses import dataclass
import datetime
import logging
from pathlib import Path
import re

from wireflow.config import utils
from wireflow.errors import (
    ConfigurationError,
    SourceError,
    WireflowError,
    WorkflowNotFoundError,
)

log = logging.getLogger(__name__)

_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")

PROJECT_CONFIG_TEMPLATE = """\
# Project-level workflow configuration
#
# Empty values inherit from ancestor projects and the global config.

# System prompts to concatenate (in order), from $WORKFLOW_PROMPT_PREFIX/<name>.txt
SYSTEM_PROMPTS=()

# API defaults
MODEL=
TEMPERATURE=
MAX_TOKENS=

# Output format (extension without dot: md, txt, json, html, ...)
OUTPUT_FORMAT=
"""

WORKFLOW_CONFIG_TEMPLATE = """\
# Workflow-specific configuration
# These values override project defaults from .workflow/config

# Paths in patterns and file lists are relative to the project root.

# Context: glob pattern (supports {a,b} alternatives)
# CONTEXT_PATTERN="References/*.md"

# Context: explicit files
# CONTEXT_FILES=(
#     "References/doc1.md"
#     "References/doc2.md"
# )

# Primary documents to analyze
# INPUT_PATTERN="data/*.pdf"
# INPUT_FILES=("report.pdf")

# Outputs of other workflows to include as context
# DEPENDS_ON=(
#     "00-context"
#     "01-outline"
# )

# API overrides
# MODEL=
# TEMPERATURE=
# MAX_TOKENS=
# SYSTEM_PROMPTS=(base)
# ENABLE_CITATIONS=true

# Output format override
# OUTPUT_FORMAT="txt"
"""


def marker_dir(root: Path) -> Path:
    return root / utils.PROJECT_MARKER


def shared_output_dir(root: Path) -> Path:
    return marker_dir(root) / utils.OUTPUT_DIR_NAME


def workflow_dir(root: Path, name: str) -> Path:
    return marker_dir(root) / name


def validate_workflow_name(name: str) -> str:
    """Return *name* if usable as a workflow directory name.

    Raises:
        ConfigurationError: For empty, reserved or path-like names.
    """
    if not name or not _NAME_RE.match(name):
        raise ConfigurationError(
            f"Invalid workflow name: {name!r}",
            hint="Use letters, digits, '.', '_' or '-' (no path separators).",
        )
    if name in utils.RESERVED_ENTRIES:
        raise ConfigurationError(
            f"'{name}' is reserved inside .workflow/",
            hint="Pick another workflow name.",
        )
    return name


def init_project(target: Path) -> Path:
    """Create ``<target>/.workflow`` with a pass-through project config.

    Values left empty inherit from any enclosing project through the
    cascade, so nested projects need no copied settings.

    Raises:
        WireflowError: If the project is already initialized.
    """
    root = marker_dir(target)
    if root.exists():
        raise WireflowError(
            f"Project already initialized at {target}",
            hint="Found an existing .workflow/ directory; use 'wfw edit' instead.",
        )
    (root / utils.PROMPTS_DIR_NAME).mkdir(parents=True)
    (root / utils.OUTPUT_DIR_NAME).mkdir()
    config = root / utils.CONFIG_FILE_NAME
    config.write_text(PROJECT_CONFIG_TEMPLATE, encoding="utf-8")
    (root / utils.PROJECT_DESCRIPTION_FILE).touch()
    log.info("Initialized workflow project: %s", root)
    return root


def new_workflow(root: Path, name: str, *, task_text: str = "") -> Path:
    """Create a workflow directory with ``task.txt`` and ``config``.

    Raises:
        WireflowError: If the workflow already exists.
    """
    validate_workflow_name(name)
    wf_dir = workflow_dir(root, name)
    if wf_dir.exists():
        raise WireflowError(
            f"Workflow '{name}' already exists",
            hint=f"Edit it with: wfw edit {name}",
        )
    wf_dir.mkdir(parents=True)
    (wf_dir / utils.TASK_FILE_NAME).write_text(task_text, encoding="utf-8")
    config = wf_dir / utils.CONFIG_FILE_NAME
    config.write_text(WORKFLOW_CONFIG_TEMPLATE, encoding="utf-8")
    log.info("Created workflow: %s", wf_dir)
    return wf_dir


def list_workflows(root: Path) -> list[str]:
    """Names of all workflows in the project, sorted."""
    base = marker_dir(root)
    if not base.is_dir():
        return []
    return sorted(
        p.name
        for p in base.iterdir()
        if p.is_dir() and p.name not in utils.RESERVED_ENTRIES
    )


def require_workflow(root: Path, name: str) -> Path:
    """Return the workflow directory or raise WorkflowNotFoundError."""
    wf_dir = workflow_dir(root, name)
    if not wf_dir.is_dir():
        available = ", ".join(list_workflows(root)) or "(none)"
        raise WorkflowNotFoundError(
            f"Workflow '{name}' not found (available: {available})",
            hint=f"Create it with: wfw new {name}",
        )
    return wf_dir


def latest_output(root: Path, name: str) -> Path | None:
    """Return the shared output file of workflow *name*, if any."""
    out_dir = shared_output_dir(root)
    if not out_dir.is_dir():
        return None
    candidates = sorted(p for p in out_dir.iterdir() if p.is_file() and p.stem == name)
    return candidates[0] if candidates else None


@dataclass(frozen=True)
class WorkflowStatus:
    """Summary line for ``wfw list``."""

    name: str
    missing: str | None = None
    last_run: datetime.datetime | None = None

    def describe(self) -> str:
        if self.missing is not None:
            return f"{self.name} [incomplete - missing {self.missing}]"
        if self.last_run is not None:
            return f"{self.name} [last run: {self.last_run:%Y-%m-%d %H:%M}]"
        return self.name


def workflow_status(root: Path, name: str) -> WorkflowStatus:
    wf_dir = workflow_dir(root, name)
    for required in (utils.TASK_FILE_NAME, utils.CONFIG_FILE_NAME):
        if not (wf_dir / required).is_file():
            return WorkflowStatus(name, missing=required)
    output = latest_output(root, name)
    if output is None:
        return WorkflowStatus(name)
    mtime = datetime.datetime.fromtimestamp(output.stat().st_mtime)
    return WorkflowStatus(name, last_run=mtime)


def read_task(wf_dir: Path) -> str:
    """Read ``task.txt`` of a workflow.

    Raises:
        SourceError: If the task file is missing.
    """
    path = wf_dir / utils.TASK_FILE_NAME
    if not path.is_file():
        raise SourceError(
            f"Task file not found: {path}",
            hint=f"Recreate it with: wfw edit {wf_dir.name}",
        )
    return path.read_text(encoding="utf-8")


# --- Task templates ---


def list_task_templates(prefix: str | Path | None) -> list[str]:
    """Names of the ``*.txt`` task templates under *prefix*."""
    if not prefix:
        return []
    task_dir = Path(prefix).expanduser()
    if not task_dir.is_dir():
        return []
    return sorted(p.stem for p in task_dir.glob("*.txt") if p.is_file())


def load_task_template(prefix: str | Path | None, name: str) -> str:
    """Return the text of task template *name*.

    Raises:
        SourceError: If no template directory or template exists.
    """
    if not prefix:
        raise SourceError(
            "Task template directory is not configured",
            hint="Set WORKFLOW_TASK_PREFIX, or pass the task inline with -i.",
        )
    path = Path(prefix).expanduser() / f"{name}.txt"
    if not path.is_file():
        available = ", ".join(list_task_templates(prefix)) or "(none)"
        raise SourceError(
            f"Task template not found: {path} (available: {available})",
            hint="Run 'wfw tasks' to list templates, or pass the task inline with -i.",
        )
    return path.read_text(encoding="utf-8")
