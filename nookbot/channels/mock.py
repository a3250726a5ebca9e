"""Mock channel for end-to-end testing.

Injects messages through the same _handle_message() path as the Discord
channel and captures outbound replies, so the agent loop, deduplicator and
gateway run exactly as they do in production.

Usage:
    mock = MockChannel(bus=bus)
    await mock.inject_message("sunny, list the channels", sender_id="user_1")
    response = await mock.wait_for_response(timeout=5.0)
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from nookbot.bus.events import OutboundMessage
from nookbot.bus.queue import MessageBus
from nookbot.channels.base import BaseChannel


@dataclass
class MockConfig:
    allow_from: list[str] = field(default_factory=list)


class MockChannel(BaseChannel):
    """Programmatic channel; its name is "discord" so it passes the same filters."""

    name = "discord"

    def __init__(self, bus: MessageBus, config: MockConfig | None = None):
        super().__init__(config or MockConfig(), bus)
        self._responses: list[OutboundMessage] = []
        self._response_event = asyncio.Event()

    async def start(self) -> None:
        self._running = True
        logger.debug("MockChannel started")

    async def stop(self) -> None:
        self._running = False
        logger.debug("MockChannel stopped")

    async def send(self, msg: OutboundMessage) -> None:
        """Capture an outbound message (called by the channel manager)."""
        self._responses.append(msg)
        self._response_event.set()

    async def inject_message(
        self,
        content: str,
        sender_id: str,
        chat_id: str = "test_general",
        *,
        guild_id: str = "test_guild",
        message_id: str | None = None,
        mentions_bot: bool = False,
        is_reply_to_bot: bool = False,
        extra_metadata: dict[str, Any] | None = None,
    ) -> str:
        """Inject a message shaped like DiscordChannel output. Returns its event id.

        Passing the same message_id twice simulates a gateway redelivery.
        """
        event_id = message_id or uuid.uuid4().hex
        metadata: dict[str, Any] = {
            "message_id": event_id,
            "guild_id": guild_id,
            "author_name": sender_id,
            "mentions_bot": mentions_bot,
            "is_reply_to_bot": is_reply_to_bot,
        }
        if extra_metadata:
            metadata.update(extra_metadata)

        await self._handle_message(
            sender_id=sender_id,
            chat_id=chat_id,
            content=content,
            event_id=event_id,
            scope_id=guild_id,
            metadata=metadata,
        )
        return event_id

    async def wait_for_response(self, timeout: float = 5.0) -> OutboundMessage | None:
        """Wait for the next outbound response, or None on timeout."""
        start_count = len(self._responses)
        self._response_event.clear()
        try:
            await asyncio.wait_for(self._response_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
        if len(self._responses) > start_count:
            return self._responses[start_count]
        return None

    def get_responses(self) -> list[OutboundMessage]:
        return list(self._responses)

    @property
    def response_count(self) -> int:
        return len(self._responses)
