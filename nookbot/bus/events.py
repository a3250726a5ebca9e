"""Event types for the message bus."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class InboundMessage:
    """Message received from a chat channel."""

    channel: str  # discord, system, ...
    sender_id: str  # user identifier
    chat_id: str  # channel/chat identifier
    content: str
    event_id: str  # platform-assigned, globally unique (dedup key)
    scope_id: str = ""  # guild/workspace; empty for DMs
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def actor_id(self) -> str:
        return f"{self.channel}:{self.sender_id}"


@dataclass
class OutboundMessage:
    """Message to send to a chat channel."""

    channel: str
    chat_id: str
    content: str
    reply_to: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
