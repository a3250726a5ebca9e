"""Agent core: loop, conversation, and tool gateway."""

from nookbot.agent.conversation import Conversation, ToolResult
from nookbot.agent.gateway import ToolGateway
from nookbot.agent.loop import AgentLoop, LoopOutcome, LoopState

__all__ = ["AgentLoop", "Conversation", "LoopOutcome", "LoopState", "ToolGateway", "ToolResult"]
