"""Provider implementations."""

from .anthropic import AnthropicClient, MessageResult, parse_message

__all__ = [
    "AnthropicClient",
    "MessageResult",
    "parse_message",
]
