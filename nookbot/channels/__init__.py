"""Chat channels."""

from nookbot.channels.base import BaseChannel
from nookbot.channels.manager import ChannelManager

__all__ = ["BaseChannel", "ChannelManager"]
