"""Shared helpers."""

from nookbot.utils.helpers import canonical_json, ensure_dir, hash_key, normalize_args
from nookbot.utils.sanitizer import sanitize_object, sanitize_text

__all__ = [
    "canonical_json",
    "ensure_dir",
    "hash_key",
    "normalize_args",
    "sanitize_object",
    "sanitize_text",
]
