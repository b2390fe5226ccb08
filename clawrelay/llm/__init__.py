"""LLM layer: CLI subprocess runner and output protocol."""

from .protocol import DirectiveCall, Message, ParsedResult, parse_output
from .provider import LLMError, LLMProcessError, LLMTimeoutError

__all__ = [
    "DirectiveCall",
    "Message",
    "ParsedResult",
    "parse_output",
    "LLMError",
    "LLMProcessError",
    "LLMTimeoutError",
]
