"""LiteLLM provider implementation.

One LiteLLM call per chat() with a timeout. When fallback models are
configured, a failed call rotates to the next model and retries once; if the
retry fails too, the error is raised as an UpstreamError subclass so the
agent loop can pick the right message for the user.
"""

import asyncio
import os
from typing import Any

import json_repair
import litellm
from litellm import acompletion
from loguru import logger

from nookbot.errors import UpstreamError, UpstreamMisconfigured, classify_upstream_error
from nookbot.providers.base import LLMProvider, LLMResponse, ToolCallRequest

# Upper bound on a single LLM call
LLM_CALL_TIMEOUT: float = 45.0

# Provider prefix → env var LiteLLM reads the key from
_ENV_KEYS: dict[str, str] = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "groq": "GROQ_API_KEY",
    "gemini": "GEMINI_API_KEY",
}


class LiteLLMProvider(LLMProvider):
    """
    LLM provider using LiteLLM for multi-provider support.

    Model fallback: on timeout or error, rotates to the next model in the
    fallback list and retries once. Misconfiguration (bad key, unknown
    model) is not retried on the same key.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str | None = None,
        default_model: str = "anthropic/claude-3-5-haiku-20241022",
        extra_headers: dict[str, str] | None = None,
        fallback_models: list[str] | None = None,
        timeout: float = LLM_CALL_TIMEOUT,
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model
        self.extra_headers = extra_headers or {}
        self._timeout = timeout

        self._fallback_models = list(fallback_models or [])
        self._model_index = 0
        self._model_failures: dict[str, int] = {}

        if api_key:
            self._setup_env(api_key, default_model)

        # Disable LiteLLM logging noise
        litellm.suppress_debug_info = True
        # Drop unsupported parameters for providers
        litellm.drop_params = True

    def _setup_env(self, api_key: str, model: str) -> None:
        """Export the key under the env var LiteLLM expects for the model's provider."""
        prefix = model.split("/", 1)[0].lower() if "/" in model else ""
        env_key = _ENV_KEYS.get(prefix)
        if env_key:
            os.environ.setdefault(env_key, api_key)

    # ── Model fallback rotation ──────────────────────────────────────

    def _get_current_model(self, requested_model: str) -> str:
        if not self._fallback_models:
            return requested_model
        return self._fallback_models[self._model_index % len(self._fallback_models)]

    def _rotate_model(self) -> None:
        if len(self._fallback_models) < 2:
            return
        old_model = self._fallback_models[self._model_index]
        self._model_index = (self._model_index + 1) % len(self._fallback_models)
        logger.warning(f"LLM fallback: rotated from {old_model} → {self._fallback_models[self._model_index]}")

    def _record_failure(self, model: str) -> None:
        self._model_failures[model] = self._model_failures.get(model, 0) + 1

    async def _attempt_chat(
        self,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        max_tokens: int,
        temperature: float,
    ) -> LLMResponse:
        """Make a single LLM call with timeout. Raises on failure."""
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max(1, max_tokens),
            "temperature": temperature,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.api_base:
            kwargs["api_base"] = self.api_base
        if self.extra_headers:
            kwargs["extra_headers"] = self.extra_headers
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"

        response = await asyncio.wait_for(acompletion(**kwargs), timeout=self._timeout)
        return self._parse_response(response, model)

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """
        Send a chat completion request via LiteLLM.

        Raises:
            UpstreamOverloaded / UpstreamUnavailable / UpstreamMisconfigured
            for classifiable failures; the original exception otherwise.
        """
        requested = model or self.default_model
        current_model = self._get_current_model(requested)

        try:
            result = await self._attempt_chat(current_model, messages, tools, max_tokens, temperature)
            self._model_failures[current_model] = 0
            return result
        except Exception as e:
            error = self._classify(e, current_model)
            self._record_failure(current_model)
            if len(self._fallback_models) < 2 or isinstance(error, UpstreamMisconfigured):
                raise error from e
            self._rotate_model()

        fallback_model = self._get_current_model(requested)
        logger.info(f"LLM fallback retry with {fallback_model}")
        try:
            result = await self._attempt_chat(fallback_model, messages, tools, max_tokens, temperature)
            self._model_failures[fallback_model] = 0
            return result
        except Exception as e:
            error = self._classify(e, fallback_model)
            logger.error(f"LLM fallback also failed on {fallback_model}: {type(e).__name__}")
            self._record_failure(fallback_model)
            self._rotate_model()
            raise error from e

    @staticmethod
    def _classify(exc: Exception, model: str) -> Exception:
        if isinstance(exc, asyncio.TimeoutError):
            logger.warning(f"LLM timeout on {model}")
        else:
            logger.warning(f"LLM error on {model}: {type(exc).__name__}")
        classified: UpstreamError | None = classify_upstream_error(exc)
        return classified if classified is not None else exc

    def _parse_response(self, response: Any, model: str) -> LLMResponse:
        """Parse LiteLLM response into our standard format."""
        choice = response.choices[0]
        message = choice.message

        tool_calls = []
        if getattr(message, "tool_calls", None):
            for tc in message.tool_calls:
                args = tc.function.arguments
                if isinstance(args, str):
                    args = json_repair.loads(args) if args.strip() else {}
                # Non-object values pass through; the gateway rejects them as invalid input
                tool_calls.append(ToolCallRequest(id=tc.id, name=tc.function.name, arguments=args))

        usage = {}
        if getattr(response, "usage", None):
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return LLMResponse(
            content=message.content,
            tool_calls=tool_calls,
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
            model=model,
        )

    def get_default_model(self) -> str:
        return self.default_model
