"""Base class for chat channels."""

from abc import ABC, abstractmethod
from typing import Any

from loguru import logger

from nookbot.bus.events import InboundMessage, OutboundMessage
from nookbot.bus.queue import MessageBus


class BaseChannel(ABC):
    """
    A chat platform connection.

    Subclasses turn platform events into InboundMessages via _handle_message()
    and deliver OutboundMessages in send().
    """

    name: str = "base"

    def __init__(self, config: Any, bus: MessageBus):
        self.config = config
        self.bus = bus
        self._running = False

    @abstractmethod
    async def start(self) -> None:
        """Connect and keep delivering inbound messages until stopped."""

    @abstractmethod
    async def stop(self) -> None:
        """Disconnect and release resources."""

    @abstractmethod
    async def send(self, msg: OutboundMessage) -> None:
        """Deliver one outbound message."""

    @property
    def is_running(self) -> bool:
        return self._running

    def is_allowed(self, sender_id: str) -> bool:
        """Empty allow_from means everyone is allowed."""
        allow_from = getattr(self.config, "allow_from", None) or []
        return not allow_from or sender_id in allow_from

    async def _handle_message(
        self,
        sender_id: str,
        chat_id: str,
        content: str,
        event_id: str,
        scope_id: str = "",
        metadata: dict[str, Any] | None = None,
    ) -> None:
        if not self.is_allowed(sender_id):
            logger.debug(f"{self.name}: dropping message from {sender_id} (not in allow_from)")
            return

        await self.bus.publish_inbound(InboundMessage(
            channel=self.name,
            sender_id=sender_id,
            chat_id=chat_id,
            content=content,
            event_id=event_id,
            scope_id=scope_id,
            metadata=metadata or {},
        ))
