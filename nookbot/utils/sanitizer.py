"""Redaction of secrets from strings before they are logged or shown to the model."""

import re
from typing import Any

# (pattern, replacement), applied in order: specific shapes before generic ones
SENSITIVE_PATTERNS: list[tuple[re.Pattern, str]] = [
    (re.compile(r"sk-ant-api\d+-[A-Za-z0-9_-]{20,}", re.IGNORECASE), "[ANTHROPIC_KEY]"),
    (re.compile(r"sk-[A-Za-z0-9_-]{20,}", re.IGNORECASE), "[API_KEY]"),
    (re.compile(r"gh[po]_[A-Za-z0-9]{36,}", re.IGNORECASE), "[GITHUB_TOKEN]"),
    (re.compile(r"xox[baprs]-[A-Za-z0-9-]{10,}", re.IGNORECASE), "[SLACK_TOKEN]"),
    (re.compile(r"Bearer\s+[A-Za-z0-9._-]{20,}", re.IGNORECASE), "Bearer [REDACTED]"),
    (re.compile(r"Bot\s+[A-Za-z0-9._-]{50,}"), "Bot [REDACTED]"),
    # Discord bot tokens: base64 user id . timestamp . hmac
    (re.compile(r"[MN][A-Za-z\d]{23,}\.[\w-]{6}\.[\w-]{27,}"), "[DISCORD_TOKEN]"),
    (re.compile(r"eyJ[A-Za-z0-9_-]*\.eyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*"), "[JWT_TOKEN]"),
    (re.compile(r"AKIA[0-9A-Z]{16}"), "[AWS_ACCESS_KEY]"),
    (re.compile(
        r"-----BEGIN (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----[\s\S]*?"
        r"-----END (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----"
    ), "[PRIVATE_KEY]"),
    (re.compile(r"://[^:/\s]+:[^@\s]+@"), "://[CREDENTIALS]@"),
    (re.compile(
        r"(?:password|passwd|pwd|secret|token|apikey|api_key)\s*[:=]\s*['\"]?[^\s'\"]{8,}['\"]?",
        re.IGNORECASE,
    ), "[CREDENTIAL_REDACTED]"),
]

SENSITIVE_FIELDS: set[str] = {
    "password", "passwd", "pwd", "secret", "token", "apikey", "api_key",
    "authorization", "auth", "credential", "credentials", "private_key",
}


def sanitize_text(text: str, max_length: int = 500) -> str:
    """Redact known secret shapes and cap the length."""
    if not text:
        return text
    result = str(text)
    for pattern, replacement in SENSITIVE_PATTERNS:
        result = pattern.sub(replacement, result)
    if len(result) > max_length:
        result = result[:max_length] + "..."
    return result


def sanitize_object(value: Any, depth: int = 0) -> Any:
    """Recursively redact sensitive fields and strings in a JSON-like value."""
    if depth > 10:
        return "[MAX_DEPTH]"
    if isinstance(value, str):
        return sanitize_text(value, max_length=2000)
    if isinstance(value, dict):
        cleaned = {}
        for key, item in value.items():
            if str(key).lower() in SENSITIVE_FIELDS:
                cleaned[key] = "[REDACTED]"
            else:
                cleaned[key] = sanitize_object(item, depth + 1)
        return cleaned
    if isinstance(value, (list, tuple)):
        return [sanitize_object(v, depth + 1) for v in value]
    return value
