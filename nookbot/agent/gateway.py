"""Tool invocation gateway.

Every tool call the model asks for goes through ToolGateway.invoke():

    validate args -> read cache / idempotency check -> rate limit -> executor

Read-only tools are answered from the read cache when possible; mutating
tools are collapsed through the idempotency store so that a retried or
repeated request inside the TTL window does not repeat the side effect.
Passthrough tools get validation and rate limiting only.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from loguru import logger

from nookbot.agent.conversation import ToolResult
from nookbot.agent.tools.base import ExecutionResult, ToolContext, ToolExecutor, ToolKind
from nookbot.agent.tools.registry import ToolRegistry
from nookbot.core.cache import ReadCache
from nookbot.core.idempotency import IdempotencyStore
from nookbot.core.ratelimit import TOOLS, RateLimiters
from nookbot.errors import ToolExecutionError, ValidationError, user_message
from nookbot.utils.helpers import canonical_json
from nookbot.utils.sanitizer import sanitize_text


class ToolGateway:
    """
    Validation, caching, idempotency, and rate limiting in front of a ToolExecutor.

    The registry supplies argument schemas and read/mutate classification;
    the executor (the registry itself unless another is given) performs the
    actual platform action.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        executor: ToolExecutor | None = None,
        limiters: RateLimiters | None = None,
        idempotency: IdempotencyStore | None = None,
        cache: ReadCache | None = None,
        idempotency_ttl: float | None = None,
        single_flight: bool = False,
    ):
        self.registry = registry
        self.executor = executor or registry
        self.limiters = limiters
        self.idempotency = idempotency if idempotency is not None else IdempotencyStore()
        self.cache = cache if cache is not None else ReadCache()
        self.idempotency_ttl = idempotency_ttl
        self.single_flight = single_flight
        self._inflight: dict[str, list] = {}  # key -> [lock, holders + waiters]

    @staticmethod
    def cache_key(scope_id: str, args: dict[str, Any]) -> str:
        return f"{scope_id}:{canonical_json(args)}"

    async def invoke(
        self,
        tool_name: str,
        raw_args: Any,
        actor_id: str,
        scope_id: str,
        *,
        tool_call_id: str = "",
        ttl: float | None = None,
        force: bool = False,
        skip_cache: bool = False,
    ) -> ToolResult:
        """
        Run one tool call. Always returns a ToolResult; executor failures are
        reported in it rather than raised.

        Args:
            tool_name: Registered tool name.
            raw_args: Arguments as produced by the model.
            actor_id: Who asked (part of the idempotency key).
            scope_id: Guild/workspace the call acts on.
            tool_call_id: Model-assigned id, echoed in the result.
            ttl: Idempotency window for this call (mutating tools only).
            force: Execute a mutating tool even if an identical call is on record.
            skip_cache: Bypass the read cache for a read-only tool.
        """
        tool = self.registry.get(tool_name)
        if tool is None:
            logger.warning(f"Gateway: unknown tool '{tool_name}'")
            return ToolResult.failure(tool_call_id, f"Unknown tool: {tool_name}", tool_name)

        try:
            args = tool.validate_args(raw_args)
        except ValidationError as e:
            logger.warning(f"Gateway: invalid input for {tool_name}: {e.validation_message}")
            return ToolResult.failure(
                tool_call_id,
                f"Invalid input: {e.validation_message}",
                tool_name,
                validation_error=True,
            )

        kind = self.registry.classify(tool_name)

        if kind == ToolKind.READ_ONLY:
            key = self.cache_key(scope_id, args)
            if not skip_cache:
                cached = self.cache.get(tool_name, key)
                if cached is not None:
                    logger.debug(f"Gateway: cache hit for {tool_name}")
                    return self._to_result(cached, tool_call_id, tool_name, cached=True)
            result = await self._execute(tool_name, args, actor_id, scope_id)
            if result.success:
                self.cache.set(tool_name, key, result, self.registry.cache_ttl(tool_name))
            return self._to_result(result, tool_call_id, tool_name)

        if kind == ToolKind.MUTATING:
            key = IdempotencyStore.generate_key(tool_name, args, actor_id, scope_id)
            async with self._single_flight(key):
                if not force:
                    check = self.idempotency.check(key)
                    if check.exists:
                        logger.info(f"Gateway: idempotent replay of {tool_name} (key {key[:8]}…)")
                        return self._to_result(check.value, tool_call_id, tool_name, idempotent_replay=True)
                result = await self._execute(tool_name, args, actor_id, scope_id)
                if result.success:
                    self.idempotency.store(key, result, ttl if ttl is not None else self.idempotency_ttl)
            return self._to_result(result, tool_call_id, tool_name)

        result = await self._execute(tool_name, args, actor_id, scope_id)
        return self._to_result(result, tool_call_id, tool_name)

    async def _execute(self, tool_name: str, args: dict[str, Any], actor_id: str, scope_id: str) -> ExecutionResult:
        """Rate-limit, then call the executor exactly once."""
        await self._acquire(tool_name)
        ctx = ToolContext(actor_id=actor_id, scope_id=scope_id, cache=self.cache)
        try:
            return ExecutionResult.coerce(await self.executor.execute(tool_name, args, ctx))
        except Exception as e:
            internal = sanitize_text(f"{type(e).__name__}: {e}")
            logger.error(f"Gateway: {tool_name} raised {internal}")
            error = ToolExecutionError(tool_name, internal, original=e)
            return ExecutionResult.fail(user_message(error), payload={"internal_error": internal})

    async def _acquire(self, tool_name: str) -> None:
        if self.limiters is None:
            return
        if self.limiters.has(TOOLS):
            await self.limiters.acquire(TOOLS)
        target = self.registry.target(tool_name)
        if target and target != TOOLS and self.limiters.has(target):
            await self.limiters.acquire(target)

    @asynccontextmanager
    async def _single_flight(self, key: str) -> AsyncIterator[None]:
        """Serialize identical mutating calls when single_flight is on."""
        if not self.single_flight:
            yield
            return
        entry = self._inflight.setdefault(key, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            # Dropped only when no caller holds or awaits the lock
            entry[1] -= 1
            if entry[1] == 0 and self._inflight.get(key) is entry:
                del self._inflight[key]

    @staticmethod
    def _to_result(
        result: ExecutionResult,
        tool_call_id: str,
        tool_name: str,
        cached: bool = False,
        idempotent_replay: bool = False,
    ) -> ToolResult:
        return ToolResult(
            tool_call_id=tool_call_id,
            success=result.success,
            payload=result.payload,
            error=result.error,
            cached=cached,
            idempotent_replay=idempotent_replay,
            tool_name=tool_name,
        )

    # ── Invalidation / introspection ─────────────────────────────────

    def invalidate_tool_cache(self, tool_name: str, scope_id: str | None = None) -> int:
        """Drop cached reads of one tool, for one scope or all scopes."""
        return self.cache.invalidate_prefix(tool_name, "" if scope_id is None else f"{scope_id}:")

    def invalidate_scope_cache(self, scope_id: str) -> int:
        """Drop every cached read for a scope, across all tools."""
        return sum(self.cache.invalidate_prefix(ns, f"{scope_id}:") for ns in self.cache.namespaces)

    def stats(self) -> dict[str, Any]:
        return {
            "cache": self.cache.stats(),
            "idempotency": self.idempotency.stats(),
            "rate_limits": self.limiters.get_stats() if self.limiters else {},
        }
