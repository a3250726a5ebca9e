"""Channel manager: starts channels and routes outbound messages to them."""

import asyncio

from loguru import logger

from nookbot.bus.queue import MessageBus
from nookbot.channels.base import BaseChannel


class ChannelManager:
    """Owns the enabled channels and the outbound dispatch task."""

    def __init__(self, bus: MessageBus, channels: list[BaseChannel] | None = None):
        self.bus = bus
        self.channels: dict[str, BaseChannel] = {c.name: c for c in channels or []}
        self._tasks: list[asyncio.Task] = []
        self._dispatch_task: asyncio.Task | None = None

    @property
    def enabled_channels(self) -> list[str]:
        return list(self.channels)

    async def start_all(self) -> None:
        """Start every channel and the outbound dispatcher. Returns once they are running."""
        if not self.channels:
            logger.warning("No channels enabled")
        self._dispatch_task = asyncio.create_task(self._dispatch_outbound())
        for name, channel in self.channels.items():
            logger.info(f"Starting {name} channel...")
            self._tasks.append(asyncio.create_task(channel.start()))

    async def stop_all(self) -> None:
        if self._dispatch_task:
            self._dispatch_task.cancel()
            self._dispatch_task = None
        for name, channel in self.channels.items():
            try:
                await channel.stop()
                logger.info(f"Stopped {name} channel")
            except Exception as e:
                logger.error(f"Error stopping {name}: {e}")
        for task in self._tasks:
            task.cancel()
        self._tasks.clear()

    async def _dispatch_outbound(self) -> None:
        while True:
            try:
                msg = await self.bus.consume_outbound()
            except asyncio.CancelledError:
                break
            channel = self.channels.get(msg.channel)
            if channel is None:
                logger.warning(f"Outbound message for unknown channel: {msg.channel}")
                continue
            try:
                await channel.send(msg)
            except Exception as e:
                logger.error(f"Error sending to {msg.channel}: {e}")
