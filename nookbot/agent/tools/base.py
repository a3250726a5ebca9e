"""Base class for agent tools."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from nookbot.core.ratelimit import PLATFORM
from nookbot.errors import ValidationError

if TYPE_CHECKING:
    from nookbot.core.cache import ReadCache


class ToolKind(str, Enum):
    """How the gateway treats a tool's calls."""
    READ_ONLY = "read_only"      # results go through the read cache
    MUTATING = "mutating"        # results go through the idempotency store
    PASSTHROUGH = "passthrough"  # neither


@dataclass
class ExecutionResult:
    """What a tool executor returns: an explicit success/error value, not an exception."""
    success: bool
    payload: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, payload: Any = None) -> "ExecutionResult":
        return cls(success=True, payload=payload)

    @classmethod
    def fail(cls, error: str, payload: Any = None) -> "ExecutionResult":
        return cls(success=False, payload=payload, error=error)

    @classmethod
    def coerce(cls, value: Any) -> "ExecutionResult":
        """Accept an ExecutionResult, a ``{"success": ..}`` dict, or a bare payload."""
        if isinstance(value, ExecutionResult):
            return value
        if isinstance(value, dict) and "success" in value:
            rest = {k: v for k, v in value.items() if k not in ("success", "error")}
            return cls(success=value["success"] is not False, payload=rest or None, error=value.get("error"))
        if value is None:
            return cls.fail("Tool returned no result")
        return cls.ok(value)


@dataclass
class ToolContext:
    """Who is calling and where. Passed to every tool execution."""
    actor_id: str
    scope_id: str
    cache: "ReadCache | None" = None

    def invalidate(self, namespace: str, prefix: str | None = None) -> int:
        """Drop cached reads in namespace for this scope (or the given key prefix)."""
        if self.cache is None:
            return 0
        return self.cache.invalidate_prefix(namespace, f"{self.scope_id}:" if prefix is None else prefix)


class ToolExecutor(Protocol):
    """Performs the actual platform action for a validated tool call."""

    async def execute(self, tool_name: str, args: dict[str, Any], ctx: ToolContext) -> ExecutionResult:
        ...


class NoArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")


def format_validation_error(error: PydanticValidationError) -> tuple[str, str]:
    """Return (first field, "field: message; ...") for a pydantic error."""
    parts = []
    first_field = ""
    for item in error.errors():
        loc = ".".join(str(p) for p in item["loc"]) or "arguments"
        first_field = first_field or loc
        parts.append(f"{loc}: {item['msg']}")
    return first_field or "arguments", "; ".join(parts)


class Tool(ABC):
    """
    Abstract base class for agent tools.

    A tool declares its arguments as a pydantic model (``args_model``); the
    JSON schema shown to the model and the validation done by the gateway
    both come from it. ``kind`` says whether the tool only reads platform
    state or changes it; ``target`` names the rate limiter bucket of the
    external system it calls.
    """

    args_model: type[BaseModel] = NoArgs
    kind: ToolKind | None = None
    target: str = PLATFORM
    cache_ttl: float | None = None
    owner_only: bool = False

    @property
    @abstractmethod
    def name(self) -> str:
        """Tool name used in function calls."""

    @property
    @abstractmethod
    def description(self) -> str:
        """Description of what the tool does."""

    @property
    def parameters(self) -> dict[str, Any]:
        """JSON schema for tool parameters."""
        schema = self.args_model.model_json_schema()
        schema.pop("title", None)
        for prop in schema.get("properties", {}).values():
            prop.pop("title", None)
        schema.setdefault("properties", {})
        return schema

    def validate_args(self, raw_args: Any) -> dict[str, Any]:
        """Validate raw arguments; return them with defaults applied.

        Raises:
            ValidationError: if the arguments do not match args_model.
        """
        if raw_args is None:
            raw_args = {}
        if not isinstance(raw_args, dict):
            raise ValidationError("arguments", f"expected an object, got {type(raw_args).__name__}")
        try:
            validated = self.args_model.model_validate(raw_args)
        except PydanticValidationError as e:
            field_name, message = format_validation_error(e)
            raise ValidationError(field_name, message) from e
        return validated.model_dump(mode="json")

    @abstractmethod
    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> ExecutionResult | dict | Any:
        """Perform the action with validated args."""

    def to_schema(self) -> dict[str, Any]:
        """Convert tool to OpenAI function schema format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }
