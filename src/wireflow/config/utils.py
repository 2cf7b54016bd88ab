# src/wireflow/config/utils.py

"""Configuration utilities and shared functionality.

This module contains pure helpers that can be imported without creating
circular dependencies: key tables, path utilities and project discovery.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from wireflow.errors import ProjectNotFoundError

if TYPE_CHECKING:
    from collections.abc import Mapping

# --- Keys ---

SCALAR_KEYS: tuple[str, ...] = (
    "MODEL",
    "TEMPERATURE",
    "MAX_TOKENS",
    "OUTPUT_FORMAT",
    "CONTEXT_PATTERN",
    "INPUT_PATTERN",
    "ENABLE_CITATIONS",
    "WORKFLOW_PROMPT_PREFIX",
    "WORKFLOW_TASK_PREFIX",
    "ANTHROPIC_API_KEY",
)

LIST_KEYS: tuple[str, ...] = (
    "SYSTEM_PROMPTS",
    "CONTEXT_FILES",
    "INPUT_FILES",
    "DEPENDS_ON",
)

# Display order for audits; API key last and always redacted.
CONFIG_KEYS: tuple[str, ...] = (
    "MODEL",
    "TEMPERATURE",
    "MAX_TOKENS",
    "OUTPUT_FORMAT",
    "SYSTEM_PROMPTS",
    "CONTEXT_PATTERN",
    "CONTEXT_FILES",
    "INPUT_PATTERN",
    "INPUT_FILES",
    "DEPENDS_ON",
    "ENABLE_CITATIONS",
    "WORKFLOW_PROMPT_PREFIX",
    "WORKFLOW_TASK_PREFIX",
    "ANTHROPIC_API_KEY",
)

# Keys only honoured in the global config file.
GLOBAL_ONLY_KEYS = frozenset({"ANTHROPIC_API_KEY"})

# --- Defaults ---

DEFAULT_MODEL = "claude-sonnet-4-5"
DEFAULT_TEMPERATURE = 1.0
DEFAULT_MAX_TOKENS = 4096
DEFAULT_OUTPUT_FORMAT = "md"
DEFAULT_SYSTEM_PROMPTS = ("base",)

# --- Layout constants ---

PROJECT_MARKER = ".workflow"
CONFIG_FILE_NAME = "config"
PROJECT_DESCRIPTION_FILE = "project.txt"
TASK_FILE_NAME = "task.txt"
PROMPTS_DIR_NAME = "prompts"
OUTPUT_DIR_NAME = "output"
TASKS_DIR_NAME = "tasks"
APP_DIR_NAME = "wireflow"

# Entries inside .workflow/ that are not workflows.
RESERVED_ENTRIES = frozenset(
    {CONFIG_FILE_NAME, PROMPTS_DIR_NAME, OUTPUT_DIR_NAME, PROJECT_DESCRIPTION_FILE}
)

# --- Environment variable names ---

API_KEY_VAR = "ANTHROPIC_API_KEY"
PROMPT_PREFIX_VARS = ("WIREFLOW_PROMPT_PREFIX", "WORKFLOW_PROMPT_PREFIX")
TASK_PREFIX_VARS = ("WIREFLOW_TASK_PREFIX", "WORKFLOW_TASK_PREFIX")
XDG_CONFIG_HOME_VAR = "XDG_CONFIG_HOME"


# --- Path utilities ---


def home_dir(variables: Mapping[str, str]) -> Path:
    """Return the user's home directory from a captured environment.

    Falls back to ``Path.home()`` when ``HOME`` is missing.
    """
    home = variables.get("HOME")
    if home:
        return Path(home)
    try:
        return Path.home()
    except RuntimeError:
        return Path.cwd()


def global_config_dir(variables: Mapping[str, str]) -> Path:
    """Return ``$XDG_CONFIG_HOME/wireflow`` (``~/.config/wireflow`` by default)."""
    base = variables.get(XDG_CONFIG_HOME_VAR)
    root = Path(base) if base else home_dir(variables) / ".config"
    return root / APP_DIR_NAME


def global_config_path(variables: Mapping[str, str]) -> Path:
    """Return the path of the global config file."""
    return global_config_dir(variables) / CONFIG_FILE_NAME


def first_set(variables: Mapping[str, str], names: tuple[str, ...]) -> str | None:
    """Return the first non-empty variable among *names*."""
    for name in names:
        value = variables.get(name, "").strip()
        if value:
            return value
    return None


# --- Project discovery ---


def find_ancestor_projects(start: Path, boundary: Path | None = None) -> list[Path]:
    """Collect every project root between *start* and *boundary*.

    Walks upward from *start*; the boundary (typically the user's home
    directory) and the filesystem root are never inspected. The result is
    ordered outermost first, so the last element is the project nearest to
    *start*.
    """
    current = start.resolve()
    stop = boundary.resolve() if boundary is not None else None
    found: list[Path] = []
    while current != stop and current.parent != current:
        if (current / PROJECT_MARKER).is_dir():
            found.append(current)
        current = current.parent
    found.reverse()
    return found


def find_project_root(start: Path, boundary: Path | None = None) -> Path:
    """Return the project root nearest to *start*.

    Raises:
        ProjectNotFoundError: If no ``.workflow/`` directory is found.
    """
    projects = find_ancestor_projects(start, boundary)
    if not projects:
        raise ProjectNotFoundError(
            "Not in a workflow project (no .workflow/ directory found)",
            hint="Run 'wfw init' to initialize a project first.",
        )
    return projects[-1]


# --- Sensitive key utilities ---

SENSITIVE_SEGMENTS = frozenset({"KEY", "SECRET", "PASSWORD", "TOKEN"})


def is_sensitive_field_key(name: str) -> bool:
    """Return True if a field name is considered sensitive for display.

    Matches whole ``_``-separated segments, so ``MAX_TOKENS`` is shown while
    ``ANTHROPIC_API_KEY`` is not.
    """
    if name.upper() in GLOBAL_ONLY_KEYS:
        return True
    return any(part in SENSITIVE_SEGMENTS for part in name.upper().split("_"))
