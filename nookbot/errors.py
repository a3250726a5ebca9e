"""Structured error types and the curated messages users get to see.

Tool-level errors never reach the end user: the gateway turns them into
failed ToolResults that are fed back to the model. Upstream (model service)
errors end the agent loop and are shown through one of the fixed messages
returned by user_message().
"""

from __future__ import annotations

import asyncio
from datetime import datetime


class NookbotError(Exception):
    """Base class for all nookbot errors."""

    def __init__(self, message: str, code: str = "UNKNOWN_ERROR", recoverable: bool = True):
        super().__init__(message)
        self.message = message
        self.code = code
        self.recoverable = recoverable
        self.timestamp = datetime.now()

    def to_dict(self) -> dict:
        return {
            "name": type(self).__name__,
            "message": self.message,
            "code": self.code,
            "recoverable": self.recoverable,
            "timestamp": self.timestamp.isoformat(),
        }


class ValidationError(NookbotError):
    """Tool arguments failed schema validation."""

    def __init__(self, field: str, message: str):
        super().__init__(f"Validation failed for {field}: {message}", "VALIDATION_ERROR")
        self.field = field
        self.validation_message = message


class ToolExecutionError(NookbotError):
    """A tool executor raised while performing its action."""

    def __init__(self, tool_name: str, message: str, original: BaseException | None = None):
        super().__init__(f"Tool {tool_name} failed: {message}", "TOOL_EXECUTION_ERROR")
        self.tool_name = tool_name
        self.original = original


class UpstreamError(NookbotError):
    """The model service call failed."""

    def __init__(self, message: str, code: str = "UPSTREAM_ERROR", recoverable: bool = True,
                 original: BaseException | None = None):
        super().__init__(message, code, recoverable)
        self.original = original


class UpstreamOverloaded(UpstreamError):
    def __init__(self, message: str = "model service is overloaded", original: BaseException | None = None):
        super().__init__(message, "UPSTREAM_OVERLOADED", True, original)


class UpstreamUnavailable(UpstreamError):
    def __init__(self, message: str = "model service is unavailable", original: BaseException | None = None):
        super().__init__(message, "UPSTREAM_UNAVAILABLE", True, original)


class UpstreamMisconfigured(UpstreamError):
    def __init__(self, message: str = "model service is misconfigured", original: BaseException | None = None):
        super().__init__(message, "UPSTREAM_MISCONFIGURED", False, original)


class ConfigurationError(NookbotError):
    """Configuration could not be loaded or is invalid (non-recoverable)."""

    def __init__(self, config_key: str, message: str):
        super().__init__(f"Configuration error for {config_key}: {message}", "CONFIGURATION_ERROR", False)
        self.config_key = config_key


class DuplicateEvent(NookbotError):
    """An inbound event id was already processed within the dedup window."""

    def __init__(self, event_id: str, first_execution_id: str | None, count: int):
        super().__init__(f"Event {event_id} already processed ({count}x)", "DUPLICATE_EVENT")
        self.event_id = event_id
        self.first_execution_id = first_execution_id
        self.count = count


# ── Curated user-facing text ───────────────────────────────────────────

OVERLOADED_TEXT = "Whoa, I'm a bit overwhelmed right now! 🍂 Give me a moment to catch my breath and try again!"
UNAVAILABLE_TEXT = "My brain is having a moment 😅 Let me try that again in a sec!"
MISCONFIGURED_TEXT = "Oops! There's an issue with my configuration 🍂 Let the server owner know!"
GENERIC_TEXT = (
    "Something went wrong on my end 🍂 Let me try again or ask the server owner "
    "for help if this keeps happening!"
)


def user_message(error: BaseException) -> str:
    """Map an error to the fixed text shown to the end user."""
    if isinstance(error, UpstreamOverloaded):
        return OVERLOADED_TEXT
    if isinstance(error, UpstreamUnavailable):
        return UNAVAILABLE_TEXT
    if isinstance(error, (UpstreamMisconfigured, ConfigurationError)):
        return MISCONFIGURED_TEXT
    if isinstance(error, ValidationError):
        return f"Hmm, there's an issue with the {error.field}: {error.validation_message} 🍂"
    if isinstance(error, ToolExecutionError):
        return f"I couldn't finish {error.tool_name}, something went wrong on my end 🍂"
    return GENERIC_TEXT


_OVERLOADED_NAMES = {"RateLimitError", "OverloadedError"}
_UNAVAILABLE_NAMES = {
    "ServiceUnavailableError", "InternalServerError", "APIConnectionError",
    "Timeout", "TimeoutError", "APITimeoutError",
}
_MISCONFIGURED_NAMES = {
    "AuthenticationError", "PermissionDeniedError", "NotFoundError",
    "BadRequestError", "UnsupportedParamsError",
}


def classify_upstream_error(exc: BaseException) -> UpstreamError | None:
    """Map an arbitrary exception from a model call onto the upstream taxonomy.

    Checks, in order: already-classified errors, HTTP status codes
    (``status_code`` or ``status``), the exception class name (covers the
    LiteLLM/OpenAI exception family without importing it), timeouts, and
    finally the message text. Returns None when nothing matches, meaning a
    generic failure.
    """
    if isinstance(exc, UpstreamError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return UpstreamUnavailable(f"model call timed out: {exc}", exc)

    status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    if isinstance(status, int):
        if status == 429 or status == 529:
            return UpstreamOverloaded(str(exc), exc)
        if status >= 500:
            return UpstreamUnavailable(str(exc), exc)
        if status in (401, 403):
            return UpstreamMisconfigured(str(exc), exc)

    name = type(exc).__name__
    if name in _OVERLOADED_NAMES:
        return UpstreamOverloaded(str(exc), exc)
    if name in _UNAVAILABLE_NAMES:
        return UpstreamUnavailable(str(exc), exc)
    if name in _MISCONFIGURED_NAMES:
        return UpstreamMisconfigured(str(exc), exc)

    text = str(exc).lower()
    if "api key" in text or "api_key" in text:
        return UpstreamMisconfigured(str(exc), exc)
    if "overloaded" in text or "rate limit" in text:
        return UpstreamOverloaded(str(exc), exc)
    return None
