# src/wireflow/config/__init__.py

"""Configuration cascade for wireflow.

The core principle is resolve-once, freeze-then-flow: tiers are resolved at
the entry point into an immutable ResolvedConfig that flows through context
aggregation, planning and request assembly. No pipeline code reads the
process environment directly.

Key exports:
- resolve_config: Resolve all tiers for a project/workflow
- resolve_tiers: Pure pass-through merge over explicit tiers
- ResolvedConfig: Immutable result with per-key provenance
- load_environment: Entry-time snapshot of the environment
"""

# ruff: noqa: I001

from .core import (
    ConfigTier,
    FieldOrigin,
    ResolvedConfig,
    ResolvedValue,
    Settings,
    Tier,
    audit_lines,
    build_tiers,
    is_empty,
    resolve_config,
    resolve_tiers,
    summarize_origins,
)
from .loaders import (
    Environment,
    ensure_global_config,
    load_config_file,
    load_environment,
    parse_config_text,
)
from .utils import find_ancestor_projects, find_project_root

__all__ = [  # noqa: RUF022
    # Main public API
    "resolve_config",
    "resolve_tiers",
    "build_tiers",
    "ResolvedConfig",
    "ResolvedValue",
    # Core types
    "ConfigTier",
    "FieldOrigin",
    "Settings",
    "Tier",
    "is_empty",
    # Environment and files
    "Environment",
    "load_environment",
    "load_config_file",
    "parse_config_text",
    "ensure_global_config",
    # Project discovery
    "find_ancestor_projects",
    "find_project_root",
    # Audit helpers
    "audit_lines",
    "summarize_origins",
]
