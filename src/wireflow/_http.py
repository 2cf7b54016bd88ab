"""Small HTTP-related constants shared across wireflow.

This module is intentionally tiny to avoid circular imports and drift.
"""

from __future__ import annotations

ANTHROPIC_BASE_URL = "https://api.anthropic.com"
ANTHROPIC_VERSION = "2023-06-01"

# Generous read timeout: long completions stream for minutes.
DEFAULT_TIMEOUT_S = 600.0

# Status codes worth suggesting a plain rerun for.
RETRYABLE_STATUS_CODES: frozenset[int] = frozenset(
    {408, 409, 429, 500, 502, 503, 504, 529}
)
