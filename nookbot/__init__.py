"""nookbot: a Discord server assistant built on a bounded tool-calling agent loop."""

__version__ = "0.1.0"
