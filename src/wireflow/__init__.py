"""wireflow: layered-config AI workflows with planned prompt caching.

Public API:
    - resolve_config(): Resolve the configuration cascade with provenance
    - build_manifest(): Aggregate context into ordered content blocks
    - plan_breakpoints(): Place cache markers under the 4-marker limit
    - build_request(): Assemble the Messages API payload
    - run_workflow() / run_task(): Prepare, dispatch and place output
"""

from __future__ import annotations

import logging

from wireflow.config import (
    Environment,
    ResolvedConfig,
    load_environment,
    resolve_config,
)
from wireflow.context import (
    ContentBlock,
    ContextManifest,
    SourceOverrides,
    build_manifest,
)
from wireflow.errors import (
    APIError,
    CacheBudgetExceededError,
    ConfigConflictError,
    ConfigurationError,
    ContextFileMissingError,
    DependencyOutputMissingError,
    InputFileMissingError,
    InternalError,
    ProjectNotFoundError,
    SourceError,
    StreamError,
    WireflowError,
    WorkflowNotFoundError,
)
from wireflow.execute import (
    PreparedRun,
    RunOptions,
    RunResult,
    prepare_run,
    run_task,
    run_workflow,
)
from wireflow.plan import CachePlan, plan_breakpoints
from wireflow.request import build_request
from wireflow.source import Source
from wireflow.tokens import TokenEstimate, estimate_tokens

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("wireflow")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("wireflow").addHandler(logging.NullHandler())

__all__ = [  # noqa: RUF022
    # Pipeline
    "load_environment",
    "resolve_config",
    "build_manifest",
    "plan_breakpoints",
    "build_request",
    "prepare_run",
    "run_workflow",
    "run_task",
    # Types
    "CachePlan",
    "ContentBlock",
    "ContextManifest",
    "Environment",
    "PreparedRun",
    "ResolvedConfig",
    "RunOptions",
    "RunResult",
    "Source",
    "SourceOverrides",
    "TokenEstimate",
    "estimate_tokens",
    # Errors
    "WireflowError",
    "ConfigurationError",
    "ConfigConflictError",
    "ProjectNotFoundError",
    "WorkflowNotFoundError",
    "SourceError",
    "DependencyOutputMissingError",
    "ContextFileMissingError",
    "InputFileMissingError",
    "InternalError",
    "CacheBudgetExceededError",
    "APIError",
    "StreamError",
]
