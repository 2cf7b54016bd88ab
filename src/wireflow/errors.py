"""Exception hierarchy for wireflow."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator


class WireflowError(Exception):
    """Base exception for all wireflow errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(WireflowError):
    """Configuration parsing, validation or resolution failed."""


class ConfigConflictError(ConfigurationError):
    """A configuration path exists but has the wrong type."""


class ProjectNotFoundError(WireflowError):
    """No ``.workflow/`` directory was found below the search boundary."""


class WorkflowNotFoundError(WireflowError):
    """The named workflow does not exist in the current project."""


class SourceError(WireflowError):
    """Source validation or loading failed."""


class DependencyOutputMissingError(SourceError):
    """A DEPENDS_ON workflow has never produced output."""

    def __init__(self, dependency: str, *, hint: str | None = None) -> None:
        super().__init__(f"Dependency output not found: {dependency}", hint=hint)
        self.dependency = dependency


class ContextFileMissingError(SourceError):
    """A named context file does not exist."""


class InputFileMissingError(SourceError):
    """A named input file does not exist."""


class InternalError(WireflowError):
    """A wireflow internal error (bug) or invariant violation."""


class CacheBudgetExceededError(InternalError):
    """More cache markers were placed than the platform allows."""


class APIError(WireflowError):
    """The Messages API call failed."""

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        status_code: int | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.status_code = status_code
        self.phase = phase


class StreamError(APIError):
    """An error event arrived mid-stream.

    ``partial_output`` holds whatever text was received before the failure.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        partial_output: str = "",
    ) -> None:
        super().__init__(message, hint=hint, phase="stream")
        self.partial_output = partial_output


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, skipping cycles."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
