"""Async message queue decoupling chat channels from the agent."""

import asyncio

from nookbot.bus.events import InboundMessage, OutboundMessage


class MessageBus:
    """Two asyncio queues: channels publish inbound, the agent publishes outbound."""

    def __init__(self, maxsize: int = 0):
        self.inbound: asyncio.Queue[InboundMessage] = asyncio.Queue(maxsize)
        self.outbound: asyncio.Queue[OutboundMessage] = asyncio.Queue(maxsize)

    async def publish_inbound(self, msg: InboundMessage) -> None:
        await self.inbound.put(msg)

    async def consume_inbound(self) -> InboundMessage:
        return await self.inbound.get()

    async def publish_outbound(self, msg: OutboundMessage) -> None:
        await self.outbound.put(msg)

    async def consume_outbound(self) -> OutboundMessage:
        return await self.outbound.get()

    @property
    def inbound_size(self) -> int:
        return self.inbound.qsize()

    @property
    def outbound_size(self) -> int:
        return self.outbound.qsize()
