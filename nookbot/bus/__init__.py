"""Message bus."""

from nookbot.bus.events import InboundMessage, OutboundMessage
from nookbot.bus.queue import MessageBus

__all__ = ["InboundMessage", "MessageBus", "OutboundMessage"]
