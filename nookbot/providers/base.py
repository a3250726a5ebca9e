"""Base LLM provider interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

# finish_reason values, grouped by what the agent loop does with them
FINAL_REASONS = frozenset({"stop", "end_turn", "stop_sequence"})
TOOL_REASONS = frozenset({"tool_calls", "tool_use", "function_call"})
TRUNCATED_REASONS = frozenset({"length", "max_tokens"})


@dataclass
class ToolCallRequest:
    """A tool call requested by the LLM."""
    id: str
    name: str
    arguments: Any  # normally a dict; anything else fails tool validation


@dataclass
class LLMResponse:
    """Response from an LLM provider.

    ``content`` is either plain text or a list of content segments
    (``{"type": "text", "text": ...}`` and other segment types).
    """
    content: str | list[dict[str, Any]] | None
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    finish_reason: str = "stop"
    usage: dict[str, int] = field(default_factory=dict)
    model: str = ""

    @property
    def has_tool_calls(self) -> bool:
        return len(self.tool_calls) > 0

    @property
    def is_final(self) -> bool:
        return not self.has_tool_calls and self.finish_reason in FINAL_REASONS

    @property
    def is_truncated(self) -> bool:
        return self.finish_reason in TRUNCATED_REASONS

    @property
    def text(self) -> str:
        return extract_text(self.content)


def extract_text(content: str | list[dict[str, Any]] | None) -> str:
    """Join all text segments with newlines, ignoring non-text segments."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content.strip()
    parts = []
    for segment in content:
        if isinstance(segment, dict) and segment.get("type") == "text":
            text = segment.get("text") or ""
            if text:
                parts.append(text)
    return "\n".join(parts).strip()


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Implementations raise nookbot.errors.UpstreamError subclasses for failures
    they can classify; anything else propagates as-is and is treated as a
    generic failure by the agent loop.
    """

    def __init__(self, api_key: str | None = None, api_base: str | None = None):
        self.api_key = api_key
        self.api_base = api_base

    @abstractmethod
    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """
        Send a chat completion request.

        Args:
            messages: List of message dicts with 'role' and 'content'.
            tools: Optional list of tool definitions.
            model: Model identifier (provider-specific).
            max_tokens: Maximum tokens in response.
            temperature: Sampling temperature.

        Returns:
            LLMResponse with content and/or tool calls.
        """

    @abstractmethod
    def get_default_model(self) -> str:
        """Get the default model for this provider."""
