"""Discord server tools: inspect and manage channels, roles, and messages."""

from typing import Any, Literal

import httpx
from pydantic import BaseModel, ConfigDict, Field

from nookbot.agent.tools.base import ExecutionResult, Tool, ToolContext, ToolKind
from nookbot.channels.discord_api import CHANNEL_TYPES, DiscordAPI

_TYPE_NAMES = {v: k for k, v in CHANNEL_TYPES.items()}


class _Args(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ListChannelsArgs(_Args):
    filter_type: Literal["text", "voice", "category", "announcement", "forum", "stage", "all"] = Field(
        default="all", description="Filter by channel type. Use 'all' to see everything."
    )
    include_ids: bool = Field(default=False, description="Include channel IDs in the response")


class ListRolesArgs(_Args):
    include_ids: bool = Field(default=False, description="Include role IDs in the response")


class CreateChannelArgs(_Args):
    name: str = Field(min_length=1, max_length=100, description="Name for the new channel")
    channel_type: Literal["text", "voice", "announcement", "forum", "stage"] = Field(
        default="text", description="Type of channel to create"
    )
    category: str | None = Field(default=None, max_length=100, description="Category to place the channel in")
    topic: str | None = Field(default=None, max_length=1024, description="Topic/description for the channel")


class DeleteChannelArgs(_Args):
    name: str = Field(min_length=1, description="Exact name (or ID) of the channel to delete")


class SendMessageArgs(_Args):
    channel: str = Field(min_length=1, description="Name (or ID) of the channel to post in")
    content: str = Field(min_length=1, max_length=2000, description="Message text")


def _http_error(action: str, e: httpx.HTTPStatusError) -> ExecutionResult:
    status = e.response.status_code
    if status == 403:
        return ExecutionResult.fail(f"I don't have permission to {action} here 🍂")
    if status == 404:
        return ExecutionResult.fail(f"Couldn't {action}: not found")
    return ExecutionResult.fail(f"Couldn't {action} (Discord returned {status})")


class DiscordTool(Tool):
    """Base for tools that act on the guild named by ``ctx.scope_id``."""

    def __init__(self, api: DiscordAPI):
        self.api = api

    async def _find_channel(self, guild_id: str, name_or_id: str) -> dict | None:
        wanted = name_or_id.lstrip("#").strip().lower()
        for channel in await self.api.list_channels(guild_id):
            if str(channel.get("id")) == wanted or str(channel.get("name", "")).lower() == wanted:
                return channel
        return None

    @staticmethod
    def _no_guild() -> ExecutionResult:
        return ExecutionResult.fail("This only works inside a server")


class ListChannelsTool(DiscordTool):
    args_model = ListChannelsArgs
    kind = ToolKind.READ_ONLY
    cache_ttl = 30.0

    @property
    def name(self) -> str:
        return "list_channels"

    @property
    def description(self) -> str:
        return (
            "List the channels and categories in the server. Use this BEFORE creating, "
            "deleting, or modifying channels to see what currently exists."
        )

    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> ExecutionResult:
        if not ctx.scope_id:
            return self._no_guild()
        try:
            raw = await self.api.list_channels(ctx.scope_id)
        except httpx.HTTPStatusError as e:
            return _http_error("list channels", e)

        categories = {str(c["id"]): c.get("name") for c in raw if c.get("type") == CHANNEL_TYPES["category"]}
        channels = []
        for c in sorted(raw, key=lambda c: c.get("position", 0)):
            type_name = _TYPE_NAMES.get(c.get("type"), "other")
            if args["filter_type"] != "all" and type_name != args["filter_type"]:
                continue
            entry: dict[str, Any] = {"name": c.get("name"), "type": type_name}
            if c.get("parent_id"):
                entry["category"] = categories.get(str(c["parent_id"]))
            if c.get("topic"):
                entry["topic"] = c["topic"]
            if args["include_ids"]:
                entry["id"] = str(c.get("id"))
            channels.append(entry)
        return ExecutionResult.ok({"count": len(channels), "channels": channels})


class ListRolesTool(DiscordTool):
    args_model = ListRolesArgs
    kind = ToolKind.READ_ONLY
    cache_ttl = 60.0

    @property
    def name(self) -> str:
        return "list_roles"

    @property
    def description(self) -> str:
        return "List the roles in the server. Use this to see what roles exist before creating or modifying roles."

    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> ExecutionResult:
        if not ctx.scope_id:
            return self._no_guild()
        try:
            raw = await self.api.list_roles(ctx.scope_id)
        except httpx.HTTPStatusError as e:
            return _http_error("list roles", e)

        roles = []
        for r in sorted(raw, key=lambda r: r.get("position", 0), reverse=True):
            entry: dict[str, Any] = {"name": r.get("name"), "color": f"#{int(r.get('color', 0)):06x}"}
            if args["include_ids"]:
                entry["id"] = str(r.get("id"))
            roles.append(entry)
        return ExecutionResult.ok({"count": len(roles), "roles": roles})


class CreateChannelTool(DiscordTool):
    args_model = CreateChannelArgs
    kind = ToolKind.MUTATING
    owner_only = True

    @property
    def name(self) -> str:
        return "create_channel"

    @property
    def description(self) -> str:
        return "Create a new text, voice, announcement, forum or stage channel. Requires owner permissions."

    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> ExecutionResult:
        if not ctx.scope_id:
            return self._no_guild()
        try:
            parent_id = None
            if args.get("category"):
                parent = await self._find_channel(ctx.scope_id, args["category"])
                if parent is None or parent.get("type") != CHANNEL_TYPES["category"]:
                    return ExecutionResult.fail(f"Category '{args['category']}' doesn't exist")
                parent_id = str(parent["id"])

            created = await self.api.create_channel(
                ctx.scope_id,
                args["name"],
                channel_type=CHANNEL_TYPES[args["channel_type"]],
                topic=args.get("topic"),
                parent_id=parent_id,
            )
        except httpx.HTTPStatusError as e:
            return _http_error("create that channel", e)

        ctx.invalidate("list_channels")
        return ExecutionResult.ok({
            "channel_id": str(created.get("id")),
            "channel_name": created.get("name"),
            "message": f"Created #{created.get('name')}",
        })


class DeleteChannelTool(DiscordTool):
    args_model = DeleteChannelArgs
    kind = ToolKind.MUTATING
    owner_only = True

    @property
    def name(self) -> str:
        return "delete_channel"

    @property
    def description(self) -> str:
        return (
            "Delete a channel from the server. Requires owner permissions. "
            "Use list_channels first to see what channels exist."
        )

    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> ExecutionResult:
        if not ctx.scope_id:
            return self._no_guild()
        try:
            channel = await self._find_channel(ctx.scope_id, args["name"])
            if channel is None:
                return ExecutionResult.fail(f"Channel '{args['name']}' doesn't exist")
            await self.api.delete_channel(str(channel["id"]))
        except httpx.HTTPStatusError as e:
            return _http_error("delete that channel", e)

        ctx.invalidate("list_channels")
        return ExecutionResult.ok({"channel_name": channel.get("name"), "message": f"Deleted #{channel.get('name')}"})


class SendMessageTool(DiscordTool):
    args_model = SendMessageArgs
    kind = ToolKind.MUTATING

    @property
    def name(self) -> str:
        return "send_message"

    @property
    def description(self) -> str:
        return "Post a message in a channel of the server."

    async def execute(self, args: dict[str, Any], ctx: ToolContext) -> ExecutionResult:
        if not ctx.scope_id:
            return self._no_guild()
        try:
            channel = await self._find_channel(ctx.scope_id, args["channel"])
            if channel is None:
                return ExecutionResult.fail(f"Channel '{args['channel']}' doesn't exist")
            sent = await self.api.send_message(str(channel["id"]), args["content"])
        except httpx.HTTPStatusError as e:
            return _http_error("send that message", e)

        first = sent[0] if sent else {}
        return ExecutionResult.ok({
            "message_id": str(first.get("id", "")),
            "channel_id": str(channel["id"]),
            "channel_name": channel.get("name"),
        })


def discord_tools(api: DiscordAPI) -> list[Tool]:
    """The full Discord tool set, bound to one API client."""
    return [
        ListChannelsTool(api),
        ListRolesTool(api),
        CreateChannelTool(api),
        DeleteChannelTool(api),
        SendMessageTool(api),
    ]
