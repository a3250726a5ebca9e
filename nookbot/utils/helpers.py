"""Argument normalization and key hashing."""

import hashlib
import json
from pathlib import Path
from typing import Any


def normalize_args(value: Any) -> Any:
    """Recursively sort mapping keys, keep sequence order.

    Two argument sets that differ only in key order normalize to the
    same structure (and so to the same cache/idempotency key).
    """
    if isinstance(value, dict):
        return {str(k): normalize_args(value[k]) for k in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [normalize_args(v) for v in value]
    return value


def canonical_json(value: Any) -> str:
    """Compact, key-sorted JSON for hashing and cache keys."""
    return json.dumps(
        normalize_args(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def hash_key(payload: Any, length: int = 32) -> str:
    """SHA-256 of the canonical JSON of payload, truncated to length hex chars."""
    digest = hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()
    return digest[:length]


def ensure_dir(path: Path) -> Path:
    """Ensure a directory exists, return it."""
    path.mkdir(parents=True, exist_ok=True)
    return path
