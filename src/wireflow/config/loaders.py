# src/wireflow/config/loaders.py

"""Configuration loaders for environment and tier files.

Tier files use a strict ``KEY=value`` / ``KEY=(list items)`` syntax. They are
parsed, never executed: command substitution and any statement that is not a
plain assignment is rejected. Each loader returns a plain mapping that the
core resolver can merge.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import os
from pathlib import Path
import re
import shlex
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from wireflow.errors import ConfigConflictError, ConfigurationError

from . import utils

if TYPE_CHECKING:
    from collections.abc import Mapping

log = logging.getLogger(__name__)

_DOTENV_LOADED: bool = False

_ASSIGNMENT_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)=(.*)$", re.DOTALL)
_VAR_RE = re.compile(r"\$(?:\{([A-Za-z_][A-Za-z0-9_]*)\}|([A-Za-z_][A-Za-z0-9_]*))")
_UNQUOTED_SPECIALS_RE = re.compile(r"([\\'\"#()])")
_SCALAR_SPECIALS_RE = re.compile(r"([\\'\"#()\s])")

# --- Environment ---


@dataclass(frozen=True)
class Environment:
    """Immutable snapshot of the process environment taken at entry.

    Pipeline code receives this value instead of reading ``os.environ``.
    """

    variables: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "variables", MappingProxyType(dict(self.variables)))

    @property
    def home(self) -> Path:
        return utils.home_dir(self.variables)

    @property
    def config_dir(self) -> Path:
        return utils.global_config_dir(self.variables)

    @property
    def api_key(self) -> str | None:
        return utils.first_set(self.variables, (utils.API_KEY_VAR,))

    @property
    def prompt_prefix(self) -> str | None:
        return utils.first_set(self.variables, utils.PROMPT_PREFIX_VARS)

    @property
    def task_prefix(self) -> str | None:
        return utils.first_set(self.variables, utils.TASK_PREFIX_VARS)

    def __str__(self) -> str:
        return f"Environment(home={self.home}, config_dir={self.config_dir})"

    __repr__ = __str__


def _try_load_dotenv() -> None:
    """Load a ``.env`` file from the working directory once per process."""
    global _DOTENV_LOADED
    if _DOTENV_LOADED:
        return
    from dotenv import find_dotenv, load_dotenv

    load_dotenv(find_dotenv(usecwd=True), override=False)
    _DOTENV_LOADED = True


def load_environment(*, dotenv: bool = True) -> Environment:
    """Capture the environment (optionally after loading ``.env``)."""
    if dotenv:
        _try_load_dotenv()
    return Environment(dict(os.environ))


def load_env_tier(env: Environment) -> dict[str, Any]:
    """Return the prompt/task prefix values supplied by environment variables."""
    values: dict[str, Any] = {}
    if env.prompt_prefix:
        values["WORKFLOW_PROMPT_PREFIX"] = env.prompt_prefix
    if env.task_prefix:
        values["WORKFLOW_TASK_PREFIX"] = env.task_prefix
    return values


# --- Tier file parsing ---


def _escape_expansion(value: str, *, in_double: bool, split: bool) -> str:
    if in_double:
        return value.replace("\\", "\\\\").replace('"', '\\"')
    if not split:
        return _SCALAR_SPECIALS_RE.sub(r"\\\1", value)
    return _UNQUOTED_SPECIALS_RE.sub(r"\\\1", value)


def _expand_variables(
    text: str, variables: Mapping[str, str], where: str, *, split: bool = True
) -> str:
    """Expand ``$VAR``/``${VAR}`` outside single quotes; reject substitutions.

    With ``split=False`` expansions stay one word, as in a shell scalar
    assignment. Array bodies keep word splitting.
    """
    out: list[str] = []
    i = 0
    in_single = in_double = False
    while i < len(text):
        ch = text[i]
        if ch == "\\" and not in_single and i + 1 < len(text):
            out.append(text[i : i + 2])
            i += 2
            continue
        if ch == "'" and not in_double:
            in_single = not in_single
        elif ch == '"' and not in_single:
            in_double = not in_double
        elif not in_single:
            if ch == "`" or text.startswith("$(", i):
                raise ConfigurationError(
                    f"{where}: command substitution is not supported",
                    hint="Config files are parsed, not executed. Use literal values.",
                )
            if ch == "$":
                m = _VAR_RE.match(text, i)
                if m is not None:
                    name = m.group(1) or m.group(2)
                    raw = variables.get(name, "")
                    out.append(_escape_expansion(raw, in_double=in_double, split=split))
                    i = m.end()
                    continue
        out.append(ch)
        i += 1
    return "".join(out)


def _expand_tilde(word: str, variables: Mapping[str, str]) -> str:
    if word == "~" or word.startswith("~/"):
        return str(utils.home_dir(variables)) + word[1:]
    return word


def _split_words(
    text: str, variables: Mapping[str, str], where: str, *, split: bool = True
) -> list[str]:
    expanded = _expand_variables(text, variables, where, split=split)
    try:
        words = shlex.split(expanded, comments=True, posix=True)
    except ValueError as e:
        raise ConfigurationError(f"{where}: {e}") from e
    return [_expand_tilde(w, variables) for w in words]


def _closing_paren(body: str) -> int:
    """Return the index of the first ``)`` outside quotes and comments, or -1."""
    quote: str | None = None
    i = 0
    at_word_start = True
    while i < len(body):
        ch = body[i]
        if quote is None:
            if ch == "\\":
                i += 2
                at_word_start = False
                continue
            if ch in "'\"":
                quote = ch
            elif ch == "#" and at_word_start:
                newline = body.find("\n", i)
                if newline < 0:
                    return -1
                i = newline
                continue
            elif ch == ")":
                return i
            at_word_start = ch.isspace()
        elif ch == quote:
            quote = None
        elif ch == "\\" and quote == '"':
            i += 1
        i += 1
    return -1


def parse_config_text(
    text: str,
    *,
    variables: Mapping[str, str] | None = None,
    source: str = "<config>",
) -> dict[str, str | list[str]]:
    """Parse tier file text into a mapping of scalar and list values.

    Args:
        text: File contents.
        variables: Mapping used for ``$VAR`` expansion. Defaults to ``os.environ``.
        source: Label used in error messages (usually the file path).

    Returns:
        Mapping of keys to a string (scalar assignment) or a list of strings
        (array assignment). Empty assignments yield ``""`` or ``[]``.

    Raises:
        ConfigurationError: On any statement that is not a plain assignment.
    """
    env = os.environ if variables is None else variables
    values: dict[str, str | list[str]] = {}
    lines = text.splitlines()
    i = 0
    while i < len(lines):
        lineno = i + 1
        line = lines[i].strip()
        i += 1
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        where = f"{source}:{lineno}"
        m = _ASSIGNMENT_RE.match(line)
        if m is None:
            raise ConfigurationError(
                f"{where}: unsupported statement: {line!r}",
                hint="Only KEY=value and KEY=(item ...) assignments are allowed.",
            )
        key, rest = m.group(1), m.group(2)
        if rest.startswith("("):
            body = rest[1:]
            end = _closing_paren(body)
            while end < 0:
                if i >= len(lines):
                    raise ConfigurationError(f"{where}: unterminated array for {key}")
                body += "\n" + lines[i]
                i += 1
                end = _closing_paren(body)
            trailing = body[end + 1 :].strip()
            if trailing and not trailing.startswith("#"):
                raise ConfigurationError(
                    f"{where}: unexpected text after array: {trailing!r}"
                )
            values[key] = _split_words(body[:end], env, where)
        else:
            words = _split_words(rest, env, where, split=False)
            if len(words) > 1:
                raise ConfigurationError(
                    f"{where}: value for {key} contains unquoted whitespace",
                    hint=f'Quote the value, e.g. {key}="{" ".join(words)}".',
                )
            values[key] = words[0] if words else ""
    return values


def _normalize_value(key: str, value: str | list[str], where: str) -> Any:
    if key in utils.LIST_KEYS:
        if isinstance(value, str):
            # Legacy comma/space separated form: SYSTEM_PROMPTS="Root,NeuroAI"
            return [v for v in re.split(r"[,\s]+", value) if v]
        return [v for v in value if v.strip()]
    if isinstance(value, list):
        raise ConfigurationError(
            f"{where}: {key} expects a single value, got a list",
            hint=f'Use {key}="value".',
        )
    return value


def load_config_file(
    path: Path,
    *,
    variables: Mapping[str, str] | None = None,
    allow_global_only: bool = False,
) -> dict[str, Any]:
    """Load and normalise one tier file.

    A missing file is an empty tier. Unknown keys are logged and ignored.

    Raises:
        ConfigConflictError: If *path* exists but is not a regular file.
        ConfigurationError: If the file cannot be parsed.
    """
    if not path.exists():
        return {}
    if not path.is_file():
        raise ConfigConflictError(
            f"{path} exists but is not a file",
            hint="Please resolve this conflict manually.",
        )
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e

    parsed = parse_config_text(text, variables=variables, source=str(path))
    known = set(utils.SCALAR_KEYS) | set(utils.LIST_KEYS)
    out: dict[str, Any] = {}
    for key, value in parsed.items():
        if key not in known:
            log.warning("Ignoring unknown config key %s in %s", key, path)
            continue
        if key in utils.GLOBAL_ONLY_KEYS and not allow_global_only:
            log.warning("%s is only honoured in the global config (%s)", key, path)
            continue
        out[key] = _normalize_value(key, value, str(path))
    return out


# --- Global config bootstrap ---

DEFAULT_BASE_PROMPT = """\
<system>
You are a helpful AI assistant supporting workflow-based content development and analysis.

When responding:

- Provide clear, well-organized outputs
- Use appropriate formatting (Markdown, JSON, etc. as requested)
- Cite sources and reasoning when relevant
- Maintain consistency across workflow stages
- Build upon context from previous workflow outputs
</system>
"""

DEFAULT_GLOBAL_CONFIG = f"""\
# Global wireflow configuration
#
# Configuration cascade: global -> ancestor projects -> project -> workflow -> CLI
# Each tier inherits from the previous tier when a value is empty.

MODEL="{utils.DEFAULT_MODEL}"
TEMPERATURE={utils.DEFAULT_TEMPERATURE}
MAX_TOKENS={utils.DEFAULT_MAX_TOKENS}
OUTPUT_FORMAT="{utils.DEFAULT_OUTPUT_FORMAT}"

# System prompt names, loaded from $WORKFLOW_PROMPT_PREFIX/<name>.txt
SYSTEM_PROMPTS=({" ".join(utils.DEFAULT_SYSTEM_PROMPTS)})
# Defaults to the prompts/ and tasks/ directories next to this file.
# WORKFLOW_PROMPT_PREFIX="${{HOME}}/prompts"
# WORKFLOW_TASK_PREFIX="${{HOME}}/tasks"

# Prefer exporting ANTHROPIC_API_KEY in your shell; the environment wins.
# ANTHROPIC_API_KEY=""
"""


def ensure_global_config(env: Environment) -> Path:
    """Create the global config directory, file and base prompt when missing.

    Returns:
        Path of the global config file.

    Raises:
        ConfigConflictError: If a path exists with the wrong type.
    """
    config_dir = env.config_dir
    if config_dir.exists() and not config_dir.is_dir():
        raise ConfigConflictError(
            f"{config_dir} exists but is not a directory",
            hint="Please resolve this conflict manually.",
        )
    config_file = config_dir / utils.CONFIG_FILE_NAME
    if config_file.exists() and not config_file.is_file():
        raise ConfigConflictError(
            f"{config_file} exists but is not a file",
            hint="Please resolve this conflict manually.",
        )

    prompts_dir = config_dir / utils.PROMPTS_DIR_NAME
    try:
        prompts_dir.mkdir(parents=True, exist_ok=True)
        (config_dir / utils.TASKS_DIR_NAME).mkdir(exist_ok=True)
        base_prompt = prompts_dir / "base.txt"
        if not base_prompt.exists():
            base_prompt.write_text(DEFAULT_BASE_PROMPT, encoding="utf-8")
        if not config_file.exists():
            config_file.write_text(DEFAULT_GLOBAL_CONFIG, encoding="utf-8")
            log.info("Created global config: %s", config_file)
    except FileExistsError as e:
        raise ConfigConflictError(
            f"{e.filename} exists but is not a directory",
            hint="Please resolve this conflict manually.",
        ) from e
    except OSError as e:
        # Read-only home directories fall back to built-in defaults.
        log.warning("Cannot create global config in %s: %s", config_dir, e)
    return config_file
