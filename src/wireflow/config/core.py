# src/wireflow/config/core.py

"""Configuration cascade schema and resolution.

This module implements the tiered cascade that feeds request assembly:
- Ordered tiers (builtin, global, env, ancestors, project, workflow, CLI)
- Pass-through resolution: empty values never override an earlier tier
- Provenance carried on every resolved value (ResolvedValue.origin)
- A pydantic schema wall that types and validates the resolved scalars
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from functools import cache
import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from wireflow.errors import ConfigurationError

from . import utils

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence
    from pathlib import Path

    from .loaders import Environment

log = logging.getLogger(__name__)

# --- Schema (pydantic wall) ---


class Settings(BaseModel):
    """Schema for resolved configuration values.

    Every field is optional: an unset key stays ``None`` (or empty) after
    resolution. Values arriving from tier files are strings and are coerced
    here.
    """

    model: str | None = Field(default=None, min_length=1)
    temperature: float | None = Field(default=None, ge=0.0, le=1.0)
    max_tokens: int | None = Field(default=None, gt=0)
    output_format: str | None = Field(default=None, pattern=r"^[A-Za-z0-9]+$")
    system_prompts: tuple[str, ...] = ()
    context_pattern: str | None = None
    context_files: tuple[str, ...] = ()
    input_pattern: str | None = None
    input_files: tuple[str, ...] = ()
    depends_on: tuple[str, ...] = ()
    enable_citations: bool | None = None
    workflow_prompt_prefix: str | None = None
    workflow_task_prefix: str | None = None
    anthropic_api_key: str | None = None

    model_config = {"extra": "forbid"}

    @field_validator("model", mode="before")
    @classmethod
    def normalize_model(cls, v: Any) -> Any:
        """Trim surrounding whitespace on model identifiers."""
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("output_format", mode="before")
    @classmethod
    def normalize_output_format(cls, v: Any) -> Any:
        """Accept ``md`` as well as ``.md``."""
        if isinstance(v, str):
            return v.strip().lstrip(".")
        return v

    @field_validator("enable_citations", mode="before")
    @classmethod
    def coerce_bool(cls, v: Any) -> Any:
        """Accept the usual shell spellings of booleans."""
        if isinstance(v, str):
            lowered = v.strip().lower()
            if lowered in {"1", "true", "yes", "on"}:
                return True
            if lowered in {"0", "false", "no", "off"}:
                return False
        return v


# --- Tiers ---


class Tier(str, Enum):
    """Origin tier of a configuration value, in cascade order."""

    BUILTIN = "builtin"
    GLOBAL = "global"
    ENV = "env"
    ANCESTOR = "ancestor"
    PROJECT = "project"
    WORKFLOW = "workflow"
    CLI = "cli"


@dataclass(frozen=True)
class FieldOrigin:
    """Tracks which tier (and file) supplied a configuration value."""

    tier: Tier
    path: Path | None = None

    def label(self) -> str:
        if self.path is None:
            return self.tier.value
        return f"{self.tier.value}:{self.path}"


def _freeze_value(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(value)
    return value


@dataclass(frozen=True)
class ConfigTier:
    """One layer of the cascade: an origin plus its key/value mapping."""

    tier: Tier
    values: Mapping[str, Any] = field(default_factory=dict)
    path: Path | None = None

    def __post_init__(self) -> None:
        frozen = {k: _freeze_value(v) for k, v in dict(self.values).items()}
        object.__setattr__(self, "values", MappingProxyType(frozen))

    @property
    def origin(self) -> FieldOrigin:
        return FieldOrigin(self.tier, self.path)


@dataclass(frozen=True)
class ResolvedValue:
    """A resolved value tagged with the tier that supplied it."""

    value: Any
    origin: FieldOrigin


@dataclass(frozen=True)
class ResolvedConfig:
    """Immutable result of cascade resolution.

    Keys that no tier supplied are absent from ``entries``; ``get`` returns
    ``None`` (or the given default) for them.
    """

    entries: Mapping[str, ResolvedValue]

    def __post_init__(self) -> None:
        object.__setattr__(self, "entries", MappingProxyType(dict(self.entries)))

    def get(self, key: str, default: Any = None) -> Any:
        entry = self.entries.get(key)
        return default if entry is None else entry.value

    def origin(self, key: str) -> FieldOrigin | None:
        entry = self.entries.get(key)
        return None if entry is None else entry.origin

    def __contains__(self, key: object) -> bool:
        return key in self.entries

    @property
    def model(self) -> str:
        return self.get("MODEL", utils.DEFAULT_MODEL)

    @property
    def temperature(self) -> float:
        return self.get("TEMPERATURE", utils.DEFAULT_TEMPERATURE)

    @property
    def max_tokens(self) -> int:
        return self.get("MAX_TOKENS", utils.DEFAULT_MAX_TOKENS)

    @property
    def output_format(self) -> str:
        return self.get("OUTPUT_FORMAT", utils.DEFAULT_OUTPUT_FORMAT)

    @property
    def system_prompts(self) -> tuple[str, ...]:
        return self.get("SYSTEM_PROMPTS", ())

    @property
    def depends_on(self) -> tuple[str, ...]:
        return self.get("DEPENDS_ON", ())

    @property
    def enable_citations(self) -> bool:
        return bool(self.get("ENABLE_CITATIONS", False))

    def __str__(self) -> str:
        parts = []
        for key, entry in self.entries.items():
            shown = "[REDACTED]" if utils.is_sensitive_field_key(key) else entry.value
            parts.append(f"{key}={shown!r}")
        return f"ResolvedConfig({', '.join(parts)})"

    __repr__ = __str__


# --- Resolution ---


def is_empty(value: Any) -> bool:
    """Return True when *value* is a pass-through signal.

    ``None``, blank strings and empty sequences are empty. ``False`` and
    ``0`` are real values.
    """
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple)):
        return all(is_empty(v) for v in value)
    return False


def _ordered_keys(tiers: Sequence[ConfigTier]) -> list[str]:
    keys = list(utils.CONFIG_KEYS)
    for tier in tiers:
        for key in tier.values:
            if key not in keys:
                keys.append(key)
    return keys


def resolve_tiers(tiers: Iterable[ConfigTier]) -> ResolvedConfig:
    """Merge tiers earliest to latest with pass-through semantics.

    For each key the last tier supplying a non-empty value wins, and its
    origin is recorded. Lists are atomic per tier; they are never merged
    element-wise.

    Raises:
        ConfigurationError: If a resolved value fails schema validation.
    """
    ordered = list(tiers)
    raw: dict[str, tuple[Any, FieldOrigin]] = {}
    for key in _ordered_keys(ordered):
        for tier in ordered:
            value = tier.values.get(key)
            if not is_empty(value):
                raw[key] = (value, tier.origin)

    typed = _validate({k: v for k, (v, _) in raw.items()})
    entries = {
        key: ResolvedValue(value=typed.get(key, value), origin=origin)
        for key, (value, origin) in raw.items()
    }
    return ResolvedConfig(entries=entries)


def _validate(values: Mapping[str, Any]) -> dict[str, Any]:
    """Run resolved values through ``Settings`` and return typed values by key."""
    known = {k.lower(): v for k, v in values.items() if k.lower() in _schema_fields()}
    try:
        settings = Settings.model_validate(known)
    except ValidationError as e:
        err = e.errors()[0]
        field_name = ".".join(str(p) for p in err.get("loc", ())).upper()
        msg = err.get("msg", "invalid value")
        raise ConfigurationError(
            f"Invalid configuration value for {field_name}: {msg}",
            hint=field_hint(field_name),
        ) from e
    dumped = settings.model_dump()
    return {k.upper(): dumped[k] for k in known}


@cache
def _schema_fields() -> frozenset[str]:
    return frozenset(Settings.model_fields)


def field_hint(key: str) -> str:
    """Return a compact hint for fixing a config key."""
    return f"Check {key} in the files shown by 'wfw config' or the matching CLI flag."


def builtin_tier(env: Environment) -> ConfigTier:
    """Hard-coded fallbacks that precede the global config file."""
    return ConfigTier(
        Tier.BUILTIN,
        {
            "MODEL": utils.DEFAULT_MODEL,
            "TEMPERATURE": utils.DEFAULT_TEMPERATURE,
            "MAX_TOKENS": utils.DEFAULT_MAX_TOKENS,
            "OUTPUT_FORMAT": utils.DEFAULT_OUTPUT_FORMAT,
            "SYSTEM_PROMPTS": list(utils.DEFAULT_SYSTEM_PROMPTS),
            "ENABLE_CITATIONS": False,
            "WORKFLOW_PROMPT_PREFIX": str(env.config_dir / utils.PROMPTS_DIR_NAME),
            "WORKFLOW_TASK_PREFIX": str(env.config_dir / utils.TASKS_DIR_NAME),
        },
    )


def build_tiers(
    env: Environment,
    *,
    projects: Sequence[Path] = (),
    workflow_dir: Path | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> list[ConfigTier]:
    """Load every tier in cascade order.

    Args:
        env: Captured environment (used for paths and ``$VAR`` expansion).
        projects: Project roots ordered outermost first; the last one is the
            current project, earlier ones are ancestors.
        workflow_dir: Directory of the workflow being run, if any.
        overrides: CLI values; absent keys do not participate.
    """
    from .loaders import load_config_file, load_env_tier

    variables = env.variables
    global_path = utils.global_config_path(variables)
    tiers = [
        builtin_tier(env),
        ConfigTier(
            Tier.GLOBAL,
            load_config_file(global_path, variables=variables, allow_global_only=True),
            global_path,
        ),
        ConfigTier(Tier.ENV, load_env_tier(env)),
    ]
    for idx, root in enumerate(projects):
        path = root / utils.PROJECT_MARKER / utils.CONFIG_FILE_NAME
        tier = Tier.PROJECT if idx == len(projects) - 1 else Tier.ANCESTOR
        values = load_config_file(path, variables=variables)
        tiers.append(ConfigTier(tier, values, path))
    if workflow_dir is not None:
        path = workflow_dir / utils.CONFIG_FILE_NAME
        tiers.append(
            ConfigTier(Tier.WORKFLOW, load_config_file(path, variables=variables), path)
        )
    tiers.append(ConfigTier(Tier.CLI, dict(overrides or {})))
    return tiers


def resolve_config(
    env: Environment,
    *,
    projects: Sequence[Path] = (),
    workflow_dir: Path | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> ResolvedConfig:
    """Resolve the full cascade into a ResolvedConfig.

    This is the main entry point; see ``build_tiers`` for the tier order.
    """
    config = resolve_tiers(
        build_tiers(
            env, projects=projects, workflow_dir=workflow_dir, overrides=overrides
        )
    )
    log.debug("Resolved config origins: %s", summarize_origins(config))
    return config


# --- Audit helpers ---


def _display(value: Any) -> str:
    if isinstance(value, tuple):
        return " ".join(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def audit_lines(config: ResolvedConfig) -> list[str]:
    """Produce human-readable ``KEY = value  (origin)`` lines.

    Secrets are never printed.
    """
    lines: list[str] = []
    for key in utils.CONFIG_KEYS:
        entry = config.entries.get(key)
        if entry is None:
            if key not in utils.GLOBAL_ONLY_KEYS:
                lines.append(f"{key} = (unset)")
            continue
        shown = (
            "[REDACTED]"
            if utils.is_sensitive_field_key(key)
            else _display(entry.value)
        )
        lines.append(f"{key} = {shown}  ({entry.origin.label()})")
    return lines


def summarize_origins(config: ResolvedConfig) -> dict[str, int]:
    """Count how many keys originated from each tier."""
    counts: dict[str, int] = {}
    for entry in config.entries.values():
        key = entry.origin.tier.value
        counts[key] = counts.get(key, 0) + 1
    return counts
