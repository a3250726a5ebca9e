"""Process-wide shared services: rate limiting, idempotency, read cache, dedup."""

from nookbot.core.cache import ReadCache
from nookbot.core.dedup import DedupCheck, EventDeduplicator
from nookbot.core.idempotency import IdempotencyCheck, IdempotencyStore
from nookbot.core.ratelimit import MODEL, PLATFORM, TOOLS, RateLimiters, TokenBucket

__all__ = [
    "DedupCheck",
    "EventDeduplicator",
    "IdempotencyCheck",
    "IdempotencyStore",
    "MODEL",
    "PLATFORM",
    "RateLimiters",
    "ReadCache",
    "TOOLS",
    "TokenBucket",
]
