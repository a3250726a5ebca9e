"""Agent tools."""

from nookbot.agent.tools.base import ExecutionResult, Tool, ToolContext, ToolExecutor, ToolKind
from nookbot.agent.tools.registry import ToolRegistry

__all__ = ["ExecutionResult", "Tool", "ToolContext", "ToolExecutor", "ToolKind", "ToolRegistry"]
