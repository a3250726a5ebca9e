"""Tool registry: catalogue, classification, and default executor."""

from typing import Any

from loguru import logger

from nookbot.agent.tools.base import ExecutionResult, Tool, ToolContext, ToolKind

# Mutating platform actions (idempotency-protected) for tools that don't declare a kind
MUTATING_TOOLS: frozenset[str] = frozenset({
    "create_channel", "delete_channel", "rename_channel",
    "create_category", "delete_category", "move_channel",
    "create_role", "delete_role", "rename_role",
    "assign_role", "remove_role",
    "kick_member", "ban_member", "unban_member",
    "timeout_member", "remove_timeout",
    "create_thread", "delete_thread", "archive_thread",
    "create_event", "delete_event", "edit_event",
    "create_emoji", "delete_emoji",
    "create_sticker", "delete_sticker",
    "pin_message", "unpin_message", "purge_messages", "send_message",
    "setup_reaction_role", "remove_reaction_role",
    "create_ticket", "close_ticket",
    "create_auto_message", "delete_auto_message",
})

# Side-effect-free queries (read-cached)
READ_ONLY_TOOLS: frozenset[str] = frozenset({
    "list_channels", "list_roles", "list_members",
    "get_channel_info", "get_role_info", "get_member_info",
    "get_server_info", "list_emojis", "list_stickers",
    "get_channel_messages", "list_tickets", "get_ticket_stats",
})

# Read cache TTL by tool (seconds): volatile listings short, near-static metadata long
CACHE_TTLS: dict[str, float] = {
    "list_channels": 30.0,
    "list_roles": 60.0,
    "list_members": 30.0,
    "get_channel_info": 60.0,
    "get_role_info": 60.0,
    "get_member_info": 30.0,
    "get_server_info": 120.0,
    "list_emojis": 300.0,
    "list_stickers": 300.0,
    "get_channel_messages": 10.0,
    "list_tickets": 30.0,
    "get_ticket_stats": 60.0,
}
DEFAULT_CACHE_TTL = 30.0


class ToolRegistry:
    """
    Registry for agent tools.

    Serves the tool catalogue sent to the model, answers "is this tool
    read-only or mutating", and acts as the default ToolExecutor by
    dispatching to the registered Tool objects.
    """

    def __init__(self, cache_ttls: dict[str, float] | None = None, owner_ids: list[str] | None = None):
        self._tools: dict[str, Tool] = {}
        self._ttl_overrides = dict(cache_ttls or {})
        # None: owner-only tools are open to everyone
        self.owner_ids = set(owner_ids) if owner_ids is not None else None

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            logger.warning(f"Tool '{tool.name}' already registered, replacing")
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def get_definitions(self, names: list[str] | None = None) -> list[dict[str, Any]]:
        """Tool catalogue in OpenAI function format (optionally a subset)."""
        tools = self._tools.values() if names is None else [self._tools[n] for n in names if n in self._tools]
        return [tool.to_schema() for tool in tools]

    def classify(self, name: str) -> ToolKind:
        """Declared kind first, then the static name lists, else passthrough."""
        tool = self._tools.get(name)
        if tool is not None and tool.kind is not None:
            return tool.kind
        if name in MUTATING_TOOLS:
            return ToolKind.MUTATING
        if name in READ_ONLY_TOOLS:
            return ToolKind.READ_ONLY
        return ToolKind.PASSTHROUGH

    def cache_ttl(self, name: str) -> float:
        """Configured override, then the tool's own TTL, then CACHE_TTLS."""
        if name in self._ttl_overrides:
            return self._ttl_overrides[name]
        tool = self._tools.get(name)
        if tool is not None and tool.cache_ttl is not None:
            return tool.cache_ttl
        return CACHE_TTLS.get(name, DEFAULT_CACHE_TTL)

    def target(self, name: str) -> str:
        tool = self._tools.get(name)
        return tool.target if tool is not None else ""

    async def execute(self, tool_name: str, args: dict[str, Any], ctx: ToolContext) -> ExecutionResult:
        """Run a registered tool. Exceptions from the tool propagate to the caller."""
        tool = self._tools.get(tool_name)
        if tool is None:
            return ExecutionResult.fail(f"Unknown tool: {tool_name}")
        if tool.owner_only and self.owner_ids is not None and ctx.actor_id not in self.owner_ids:
            logger.warning(f"Permission denied: {ctx.actor_id} tried to use {tool_name}")
            return ExecutionResult.fail(
                f"Only the server owner can use {tool_name}. This action requires elevated "
                "permissions to keep the server safe! 🍂"
            )
        return ExecutionResult.coerce(await tool.execute(args, ctx))
