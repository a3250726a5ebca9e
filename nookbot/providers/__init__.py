"""LLM providers."""

from nookbot.providers.base import LLMProvider, LLMResponse, ToolCallRequest, extract_text

__all__ = ["LLMProvider", "LLMResponse", "ToolCallRequest", "extract_text"]
