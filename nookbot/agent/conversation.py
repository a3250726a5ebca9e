"""Conversation history for one agent loop run.

Append-only: turns are added with the append_* methods and read back as an
immutable snapshot. Nothing removes or edits a turn once it is in.
"""

import json
from dataclasses import dataclass, field
from typing import Any

from nookbot.providers.base import ToolCallRequest, extract_text

USER = "user"
ASSISTANT = "assistant"
TOOL_RESULTS = "tool_results"


@dataclass
class ToolResult:
    """Outcome of one tool call, as reported back to the model."""
    tool_call_id: str
    success: bool
    payload: Any = None
    error: str | None = None
    validation_error: bool = False
    cached: bool = False
    idempotent_replay: bool = False
    tool_name: str = ""

    @classmethod
    def failure(cls, tool_call_id: str, error: str, tool_name: str = "", **kwargs: Any) -> "ToolResult":
        return cls(tool_call_id=tool_call_id, success=False, error=error, tool_name=tool_name, **kwargs)

    def to_content(self) -> str:
        """JSON body of the role="tool" message."""
        body: dict[str, Any] = {"success": self.success}
        if self.payload is not None:
            body["result"] = self.payload
        if self.error:
            body["error"] = self.error
        if self.validation_error:
            body["validation_error"] = True
        if self.cached:
            body["cached"] = True
        if self.idempotent_replay:
            body["idempotent_replay"] = True
        return json.dumps(body, ensure_ascii=False, default=str)


@dataclass(frozen=True)
class Turn:
    role: str
    content: str | list[dict[str, Any]] | None = None
    tool_calls: tuple[ToolCallRequest, ...] = ()
    results: tuple[ToolResult, ...] = ()


@dataclass
class Conversation:
    """Ordered user / assistant / tool_results turns plus an optional system prompt."""
    system_prompt: str | None = None
    _turns: list[Turn] = field(default_factory=list, repr=False)

    @property
    def turns(self) -> tuple[Turn, ...]:
        return tuple(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def append_user(self, content: str) -> Turn:
        return self._append(Turn(role=USER, content=content))

    def append_assistant(
        self,
        content: str | list[dict[str, Any]] | None,
        tool_calls: list[ToolCallRequest] | None = None,
    ) -> Turn:
        return self._append(Turn(role=ASSISTANT, content=content, tool_calls=tuple(tool_calls or ())))

    def append_tool_results(self, results: list[ToolResult]) -> Turn:
        return self._append(Turn(role=TOOL_RESULTS, results=tuple(results)))

    def _append(self, turn: Turn) -> Turn:
        self._turns.append(turn)
        return turn

    def to_messages(self) -> list[dict[str, Any]]:
        """Render as chat-completion messages (OpenAI format, as LiteLLM expects)."""
        messages: list[dict[str, Any]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})

        for turn in self._turns:
            if turn.role == USER:
                messages.append({"role": "user", "content": turn.content})
            elif turn.role == ASSISTANT:
                msg: dict[str, Any] = {"role": "assistant", "content": extract_text(turn.content)}
                if turn.tool_calls:
                    msg["tool_calls"] = [
                        {
                            "id": tc.id,
                            "type": "function",
                            "function": {
                                "name": tc.name,
                                "arguments": json.dumps(tc.arguments, ensure_ascii=False, default=str),
                            },
                        }
                        for tc in turn.tool_calls
                    ]
                messages.append(msg)
            else:
                for result in turn.results:
                    messages.append({
                        "role": "tool",
                        "tool_call_id": result.tool_call_id,
                        "name": result.tool_name,
                        "content": result.to_content(),
                    })
        return messages
