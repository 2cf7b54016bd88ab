"""Provider-side error helpers.

SDK, transport and HTTP failures are mapped into APIError with the status
code and a remedial hint, so the CLI can print one consistent diagnostic.
"""

from __future__ import annotations

from typing import Any

import anthropic
import httpx

from wireflow._http import RETRYABLE_STATUS_CODES
from wireflow.config.utils import API_KEY_VAR
from wireflow.errors import APIError, _walk_exception_chain


def extract_status_code(exc: BaseException) -> int | None:
    """Walk the exception chain to find an HTTP status code."""
    for e in _walk_exception_chain(exc):
        value = getattr(e, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
        response = getattr(e, "response", None)
        value = getattr(response, "status_code", None)
        if isinstance(value, int) and 100 <= value <= 599:
            return value
    return None


def error_body_message(body: Any) -> str | None:
    """Return ``type: message`` from an API error body, if present.

    Accepts the full body (``{"type": "error", "error": {...}}``) or the
    inner ``error`` object.
    """
    if not isinstance(body, dict):
        return None
    error = body.get("error", body)
    if not isinstance(error, dict):
        return None
    message = error.get("message")
    if not isinstance(message, str) or not message:
        return None
    kind = error.get("type")
    return f"{kind}: {message}" if isinstance(kind, str) else message


def _status_hint(status_code: int | None, cause_message: str) -> str | None:
    cause_lower = cause_message.lower()
    if status_code in {401, 403} or (
        status_code == 400 and ("api key" in cause_lower or "api_key" in cause_lower)
    ):
        return (
            f"Check credentials (set {API_KEY_VAR} in the environment "
            "or the global config file)."
        )
    if status_code == 413:
        return "Request too large; reduce context or input files (see --count-tokens)."
    if status_code in RETRYABLE_STATUS_CODES:
        return "The API is busy or rate limited; wait and rerun."
    return None


def _network_hint(exc: BaseException) -> str | None:
    for e in _walk_exception_chain(exc):
        if isinstance(e, (anthropic.APITimeoutError, httpx.TimeoutException)):
            return "The request timed out; check your network and rerun."
    for e in _walk_exception_chain(exc):
        if isinstance(e, (anthropic.APIConnectionError, httpx.RequestError)):
            return "Could not reach the API; check your network connection."
    return None


def wrap_provider_error(
    exc: BaseException,
    *,
    phase: str,
    message: str | None = None,
    hint: str | None = None,
) -> APIError:
    """Map SDK and httpx exceptions into APIError."""
    # Already wrapped: fill in missing context only.
    if isinstance(exc, APIError):
        if exc.phase is None:
            exc.phase = phase
        if hint is not None and exc.hint is None:
            exc.hint = hint
        return exc

    status_code = extract_status_code(exc)
    cause = str(exc)
    if isinstance(exc, anthropic.APIStatusError):
        cause = error_body_message(exc.body) or cause

    derived_hint = hint if hint is not None else _status_hint(status_code, cause)
    if derived_hint is None:
        derived_hint = _network_hint(exc)

    msg = message or f"anthropic {phase} failed"
    status_note = f" (status={status_code})" if isinstance(status_code, int) else ""
    return APIError(
        f"{msg}{status_note}: {cause}" if cause else f"{msg}{status_note}",
        hint=derived_hint,
        status_code=status_code,
        phase=phase,
    )
