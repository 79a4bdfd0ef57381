"""
Models module for the text-completion client.

Provides a unified interface for talking to an Ollama-compatible endpoint.
"""

from interview_coach.models.llm_client import (
    CompletionError,
    LLMClient,
    LLMClientBase,
    LLMResponse,
    Message,
    extract_json,
    parse_json_loose,
)

__all__ = [
    "LLMClient",
    "LLMClientBase",
    "LLMResponse",
    "Message",
    "CompletionError",
    "extract_json",
    "parse_json_loose",
]
