"""Discord channel implementation using Discord Gateway websocket."""

import asyncio
import json
from typing import Any

import websockets
from loguru import logger

from nookbot.bus.events import OutboundMessage
from nookbot.bus.queue import MessageBus
from nookbot.channels.base import BaseChannel
from nookbot.channels.discord_api import DiscordAPI
from nookbot.config.schema import DiscordConfig
from nookbot.core.ratelimit import PLATFORM, RateLimiters


class DiscordChannel(BaseChannel):
    """Discord channel using Gateway websocket.

    MESSAGE_CREATE events become InboundMessages keyed by the Discord message
    id, so a message redelivered after a RESUME carries the same event id and
    is dropped by the agent's deduplicator.
    """

    name = "discord"

    def __init__(
        self,
        config: DiscordConfig,
        bus: MessageBus,
        api: DiscordAPI | None = None,
        limiters: RateLimiters | None = None,
    ):
        super().__init__(config, bus)
        self.config: DiscordConfig = config
        self.api = api or DiscordAPI(config.token)
        self.limiters = limiters
        self._ws: Any = None
        self._seq: int | None = None
        self._session_id: str | None = None  # For RESUME
        self._resume_url: str | None = None  # Gateway URL for resume
        self._heartbeat_task: asyncio.Task | None = None
        self._bot_user_id: str | None = None
        self._consecutive_failures: int = 0  # For exponential backoff

    async def start(self) -> None:
        """Start the Discord gateway connection."""
        if not self.config.token:
            logger.error("Discord bot token not configured")
            return

        self._running = True

        while self._running:
            try:
                url = self._resume_url or self.config.gateway_url
                logger.info("Connecting to Discord gateway...")
                async with websockets.connect(url) as ws:
                    self._ws = ws
                    self._consecutive_failures = 0
                    await self._gateway_loop()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._consecutive_failures += 1
                # Exponential backoff: 5s, 10s, 20s, 40s, 60s max
                delay = min(5 * (2 ** (self._consecutive_failures - 1)), 60)
                logger.warning(f"Discord gateway error: {e}")
                if self._running:
                    logger.info(f"Reconnecting in {delay}s (attempt {self._consecutive_failures})...")
                    await asyncio.sleep(delay)

    async def stop(self) -> None:
        """Stop the Discord channel."""
        self._running = False
        if self._heartbeat_task:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None
        if self._ws:
            await self._ws.close()
            self._ws = None
        await self.api.close()

    async def send(self, msg: OutboundMessage) -> None:
        """Send a reply through the REST API (chunked to Discord's 2000-char limit)."""
        if self.limiters is not None and self.limiters.has(PLATFORM):
            await self.limiters.acquire(PLATFORM)
        try:
            await self.api.send_message(msg.chat_id, msg.content, reply_to=msg.reply_to)
        except Exception as e:
            logger.error(f"Error sending Discord message to {msg.chat_id}: {e}")

    async def _gateway_loop(self) -> None:
        """Main gateway loop: identify, heartbeat, dispatch events."""
        if not self._ws:
            return

        async for raw in self._ws:
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f"Invalid JSON from Discord gateway: {raw[:100]}")
                continue

            if await self._dispatch(data) is False:
                break

    async def _dispatch(self, data: dict[str, Any]) -> bool:
        """Handle one gateway frame. Returns False when the connection should be dropped."""
        op = data.get("op")
        event_type = data.get("t")
        seq = data.get("s")
        payload = data.get("d")

        if seq is not None:
            self._seq = seq

        if op == 10:
            # HELLO: start heartbeat, then identify or resume
            interval_ms = payload.get("heartbeat_interval", 45000)
            await self._start_heartbeat(interval_ms / 1000)
            if self._session_id and self._seq is not None:
                await self._resume()
            else:
                await self._identify()
        elif op == 0 and event_type == "READY":
            self._session_id = payload.get("session_id")
            self._resume_url = payload.get("resume_gateway_url")
            self._bot_user_id = payload.get("user", {}).get("id")
            logger.info(f"Discord gateway READY (bot user ID: {self._bot_user_id})")
        elif op == 0 and event_type == "RESUMED":
            logger.info("Discord gateway RESUMED successfully")
        elif op == 0 and event_type == "MESSAGE_CREATE":
            await self._handle_message_create(payload)
        elif op == 7:
            # RECONNECT: keep session for RESUME
            logger.info("Discord gateway requested reconnect")
            return False
        elif op == 9:
            # INVALID_SESSION: d=True means resumable
            resumable = payload if isinstance(payload, bool) else False
            if not resumable:
                logger.warning("Discord gateway invalid session (not resumable)")
                self._session_id = None
                self._resume_url = None
                self._seq = None
            else:
                logger.info("Discord gateway invalid session (resumable)")
            return False
        elif op == 1:
            await self._send_json({"op": 1, "d": self._seq})
        elif op not in (0, 11):
            logger.debug(f"Discord gateway unknown op={op} t={event_type}")
        return True

    async def _send_json(self, payload: dict[str, Any]) -> None:
        if self._ws:
            await self._ws.send(json.dumps(payload))

    async def _identify(self) -> None:
        await self._send_json({
            "op": 2,
            "d": {
                "token": self.config.token,
                "intents": self.config.intents,
                "properties": {"os": "nookbot", "browser": "nookbot", "device": "nookbot"},
            },
        })
        logger.info(f"Discord IDENTIFY sent with intents={self.config.intents}")

    async def _resume(self) -> None:
        """Send RESUME payload to reconnect without losing events."""
        await self._send_json({
            "op": 6,
            "d": {"token": self.config.token, "session_id": self._session_id, "seq": self._seq},
        })
        logger.info(f"Discord RESUME sent (session={self._session_id}, seq={self._seq})")

    async def _start_heartbeat(self, interval_s: float) -> None:
        """Start or restart the heartbeat loop."""
        if self._heartbeat_task:
            self._heartbeat_task.cancel()

        async def heartbeat_loop() -> None:
            while self._running and self._ws:
                try:
                    await self._send_json({"op": 1, "d": self._seq})
                except Exception as e:
                    logger.warning(f"Discord heartbeat failed: {e}")
                    break
                await asyncio.sleep(interval_s)

        self._heartbeat_task = asyncio.create_task(heartbeat_loop())

    async def _handle_message_create(self, payload: dict[str, Any]) -> None:
        """Turn a MESSAGE_CREATE into an InboundMessage."""
        author = payload.get("author") or {}
        if author.get("bot"):
            return

        message_id = str(payload.get("id", ""))
        sender_id = str(author.get("id", ""))
        channel_id = str(payload.get("channel_id", ""))
        content = payload.get("content") or ""
        guild_id = payload.get("guild_id")

        if not message_id or not sender_id or not channel_id:
            logger.debug("Discord: dropping message without id, sender or channel")
            return

        # Guild messages only; the bot acts on server state
        if guild_id is None:
            logger.debug(f"Discord: ignoring DM from {sender_id}")
            return

        allowed = self.config.allowed_guild_ids
        if allowed and str(guild_id) not in allowed:
            logger.debug(f"Discord: dropping message from guild {guild_id} (not allowed)")
            return

        mentions_bot = bool(self._bot_user_id) and any(
            str(m.get("id")) == self._bot_user_id for m in payload.get("mentions") or []
        )
        if self._bot_user_id:
            content = content.replace(f"<@{self._bot_user_id}>", "").strip()

        referenced = payload.get("referenced_message") or {}
        reply_to_author_id = (referenced.get("author") or {}).get("id")
        is_reply_to_bot = bool(reply_to_author_id) and reply_to_author_id == self._bot_user_id

        display_name = (
            (payload.get("member") or {}).get("nick")
            or author.get("global_name")
            or author.get("username")
            or sender_id
        )

        await self._handle_message(
            sender_id=sender_id,
            chat_id=channel_id,
            content=content,
            event_id=message_id,
            scope_id=str(guild_id),
            metadata={
                "message_id": message_id,
                "guild_id": str(guild_id),
                "author_name": display_name,
                "mentions_bot": mentions_bot,
                "is_reply_to_bot": is_reply_to_bot,
                "reply_to_author_id": reply_to_author_id,
            },
        )
