"""Tests for ToolGateway: validation, read cache, idempotency, rate limiting."""

import asyncio
import json
from typing import Any
from unittest.mock import AsyncMock

import pytest
from pydantic import BaseModel, ConfigDict, Field

from nookbot.agent.gateway import ToolGateway
from nookbot.agent.tools.base import ExecutionResult, Tool, ToolContext, ToolKind
from nookbot.agent.tools.registry import ToolRegistry
from nookbot.config.schema import RateLimitsConfig
from nookbot.core.cache import ReadCache
from nookbot.core.idempotency import IdempotencyStore
from nookbot.core.ratelimit import PLATFORM, TOOLS, RateLimiters, TokenBucket


# ── Helpers ──────────────────────────────────────────────────────────────


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


class CreateArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str = Field(min_length=1)
    topic: str | None = None
    options: dict[str, Any] = Field(default_factory=dict)


class ListArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")
    filter_type: str = "all"


class FakeCreateChannel(Tool):
    args_model = CreateArgs
    kind = ToolKind.MUTATING

    @property
    def name(self) -> str:
        return "create_channel"

    @property
    def description(self) -> str:
        return "Create a channel"

    async def execute(self, args, ctx):
        raise AssertionError("executor should be used instead")


class FakeListChannels(Tool):
    args_model = ListArgs
    kind = ToolKind.READ_ONLY
    cache_ttl = 30.0

    @property
    def name(self) -> str:
        return "list_channels"

    @property
    def description(self) -> str:
        return "List channels"

    async def execute(self, args, ctx):
        raise AssertionError("executor should be used instead")


class FakeEcho(Tool):
    @property
    def name(self) -> str:
        return "echo"

    @property
    def description(self) -> str:
        return "Passthrough tool"

    async def execute(self, args, ctx):
        raise AssertionError("executor should be used instead")


def make_gateway(executor=None, limiters=None, single_flight=False):
    clock = FakeClock()
    registry = ToolRegistry()
    for tool in (FakeCreateChannel(), FakeListChannels(), FakeEcho()):
        registry.register(tool)
    if executor is None:
        executor = AsyncMock()
        executor.execute.return_value = ExecutionResult.ok({"id": "123"})
    gateway = ToolGateway(
        registry,
        executor=executor,
        limiters=limiters,
        idempotency=IdempotencyStore(clock=clock),
        cache=ReadCache(clock=clock),
        single_flight=single_flight,
    )
    return gateway, executor, clock


# ── Validation ───────────────────────────────────────────────────────────


class TestValidation:
    @pytest.mark.asyncio
    async def test_invalid_args_have_no_side_effects(self):
        limiters = RateLimiters({TOOLS: TokenBucket(5, 1, name=TOOLS)})
        gateway, executor, _ = make_gateway(limiters=limiters)
        result = await gateway.invoke("create_channel", {"name": ""}, "u1", "g1", tool_call_id="call_1")

        assert result.success is False
        assert result.validation_error is True
        assert result.tool_call_id == "call_1"
        assert result.error.startswith("Invalid input: name")
        executor.execute.assert_not_called()
        assert limiters.get(TOOLS).available_tokens == 5
        assert gateway.idempotency.stats()["total_entries"] == 0

    @pytest.mark.asyncio
    async def test_unexpected_field_is_rejected(self):
        gateway, executor, _ = make_gateway()
        result = await gateway.invoke("create_channel", {"name": "x", "bogus": 1}, "u1", "g1")
        assert result.validation_error
        assert "bogus" in result.error
        executor.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_object_args_are_rejected(self):
        gateway, executor, _ = make_gateway()
        result = await gateway.invoke("create_channel", ["general"], "u1", "g1")
        assert result.validation_error
        executor.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        gateway, executor, _ = make_gateway()
        result = await gateway.invoke("launch_rockets", {}, "u1", "g1", tool_call_id="c")
        assert result.success is False
        assert result.error == "Unknown tool: launch_rockets"
        assert result.tool_call_id == "c"
        executor.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_executor_receives_defaults(self):
        gateway, executor, _ = make_gateway()
        await gateway.invoke("create_channel", {"name": "general"}, "u1", "g1")
        tool_name, args, ctx = executor.execute.call_args.args
        assert tool_name == "create_channel"
        assert args == {"name": "general", "topic": None, "options": {}}
        assert isinstance(ctx, ToolContext)
        assert (ctx.actor_id, ctx.scope_id) == ("u1", "g1")
        assert ctx.cache is gateway.cache


# ── Idempotency ──────────────────────────────────────────────────────────


class TestIdempotency:
    @pytest.mark.asyncio
    async def test_create_general_twice_executes_once(self):
        gateway, executor, _ = make_gateway()
        first = await gateway.invoke("create_channel", {"name": "general"}, "u1", "g1", tool_call_id="a")
        second = await gateway.invoke("create_channel", {"name": "general"}, "u1", "g1", tool_call_id="b")

        assert executor.execute.await_count == 1
        assert first.success and not first.idempotent_replay
        assert second.success and second.idempotent_replay
        assert second.payload == first.payload
        assert second.tool_call_id == "b"

    @pytest.mark.asyncio
    async def test_reordered_equal_args_replay(self):
        gateway, executor, _ = make_gateway()
        calls = [
            {"name": "x", "topic": "t", "options": {"a": 1, "b": 2}},
            {"options": {"b": 2, "a": 1}, "topic": "t", "name": "x"},
            {"topic": "t", "name": "x", "options": {"a": 1, "b": 2}},
        ]
        results = [await gateway.invoke("create_channel", args, "u1", "g1") for args in calls]
        assert executor.execute.await_count == 1
        assert [r.idempotent_replay for r in results] == [False, True, True]

    @pytest.mark.asyncio
    async def test_different_actor_or_scope_executes_again(self):
        gateway, executor, _ = make_gateway()
        await gateway.invoke("create_channel", {"name": "general"}, "u1", "g1")
        await gateway.invoke("create_channel", {"name": "general"}, "u2", "g1")
        await gateway.invoke("create_channel", {"name": "general"}, "u1", "g2")
        assert executor.execute.await_count == 3

    @pytest.mark.asyncio
    async def test_replay_window_expires(self):
        gateway, executor, clock = make_gateway()
        await gateway.invoke("create_channel", {"name": "general"}, "u1", "g1", ttl=60)
        clock.now = 60
        result = await gateway.invoke("create_channel", {"name": "general"}, "u1", "g1")
        assert executor.execute.await_count == 2
        assert not result.idempotent_replay

    @pytest.mark.asyncio
    async def test_failed_mutation_is_not_stored(self):
        executor = AsyncMock()
        executor.execute.side_effect = [
            ExecutionResult.fail("Missing permissions"),
            ExecutionResult.ok({"id": "1"}),
        ]
        gateway, executor, _ = make_gateway(executor=executor)
        first = await gateway.invoke("create_channel", {"name": "general"}, "u1", "g1")
        second = await gateway.invoke("create_channel", {"name": "general"}, "u1", "g1")
        assert first.success is False
        assert second.success is True
        assert not second.idempotent_replay
        assert executor.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_force_bypasses_replay(self):
        gateway, executor, _ = make_gateway()
        await gateway.invoke("create_channel", {"name": "general"}, "u1", "g1")
        result = await gateway.invoke("create_channel", {"name": "general"}, "u1", "g1", force=True)
        assert executor.execute.await_count == 2
        assert not result.idempotent_replay

    @pytest.mark.asyncio
    async def test_concurrent_identical_calls_may_both_execute_by_default(self):
        executor = AsyncMock()

        async def slow(*_):
            await asyncio.sleep(0.01)
            return ExecutionResult.ok({"id": "1"})

        executor.execute.side_effect = slow
        gateway, executor, _ = make_gateway(executor=executor)
        await asyncio.gather(
            gateway.invoke("create_channel", {"name": "general"}, "u1", "g1"),
            gateway.invoke("create_channel", {"name": "general"}, "u1", "g1"),
        )
        assert executor.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_single_flight_collapses_concurrent_calls(self):
        executor = AsyncMock()

        async def slow(*_):
            await asyncio.sleep(0.01)
            return ExecutionResult.ok({"id": "1"})

        executor.execute.side_effect = slow
        gateway, executor, _ = make_gateway(executor=executor, single_flight=True)
        results = await asyncio.gather(
            gateway.invoke("create_channel", {"name": "general"}, "u1", "g1"),
            gateway.invoke("create_channel", {"name": "general"}, "u1", "g1"),
        )
        assert executor.execute.await_count == 1
        assert sorted(r.idempotent_replay for r in results) == [False, True]
        assert gateway._inflight == {}

    @pytest.mark.asyncio
    async def test_single_flight_holds_after_a_failed_first_call(self):
        calls = 0
        active = 0
        peak = 0

        async def flaky(*_):
            nonlocal calls, active, peak
            calls += 1
            attempt = calls
            active += 1
            peak = max(peak, active)
            try:
                await asyncio.sleep(0.01)
                if attempt == 1:
                    return ExecutionResult.fail("discord hiccup")
                return ExecutionResult.ok({"id": "1"})
            finally:
                active -= 1

        executor = AsyncMock()
        executor.execute.side_effect = flaky
        gateway, executor, _ = make_gateway(executor=executor, single_flight=True)

        first = asyncio.create_task(gateway.invoke("create_channel", {"name": "general"}, "u1", "g1"))
        second = asyncio.create_task(gateway.invoke("create_channel", {"name": "general"}, "u1", "g1"))

        async def after_first():
            await first
            return await gateway.invoke("create_channel", {"name": "general"}, "u1", "g1")

        third = asyncio.create_task(after_first())
        results = await asyncio.gather(first, second, third)

        assert peak == 1
        assert calls == 2
        assert [r.success for r in results] == [False, True, True]
        assert results[2].idempotent_replay
        assert gateway._inflight == {}


# ── Read cache ───────────────────────────────────────────────────────────


class TestReadCache:
    @pytest.mark.asyncio
    async def test_second_read_is_cached(self):
        gateway, executor, _ = make_gateway()
        first = await gateway.invoke("list_channels", {}, "u1", "g1")
        second = await gateway.invoke("list_channels", {"filter_type": "all"}, "u2", "g1", tool_call_id="x")
        assert executor.execute.await_count == 1
        assert not first.cached
        assert second.cached
        assert second.tool_call_id == "x"

    @pytest.mark.asyncio
    async def test_cache_is_per_scope(self):
        gateway, executor, _ = make_gateway()
        await gateway.invoke("list_channels", {}, "u1", "g1")
        await gateway.invoke("list_channels", {}, "u1", "g2")
        assert executor.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_cache_expires_after_tool_ttl(self):
        gateway, executor, clock = make_gateway()
        await gateway.invoke("list_channels", {}, "u1", "g1")
        clock.now = 29.9
        assert (await gateway.invoke("list_channels", {}, "u1", "g1")).cached
        clock.now = 30.0
        assert not (await gateway.invoke("list_channels", {}, "u1", "g1")).cached
        assert executor.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_skip_cache(self):
        gateway, executor, _ = make_gateway()
        await gateway.invoke("list_channels", {}, "u1", "g1")
        result = await gateway.invoke("list_channels", {}, "u1", "g1", skip_cache=True)
        assert not result.cached
        assert executor.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_failed_read_is_not_cached(self):
        executor = AsyncMock()
        executor.execute.return_value = ExecutionResult.fail("boom")
        gateway, executor, _ = make_gateway(executor=executor)
        await gateway.invoke("list_channels", {}, "u1", "g1")
        await gateway.invoke("list_channels", {}, "u1", "g1")
        assert executor.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_invalidation_helpers(self):
        gateway, executor, _ = make_gateway()
        await gateway.invoke("list_channels", {}, "u1", "g1")
        await gateway.invoke("list_channels", {}, "u1", "g2")
        assert gateway.invalidate_tool_cache("list_channels", "g1") == 1
        assert gateway.invalidate_scope_cache("g2") == 1
        await gateway.invoke("list_channels", {}, "u1", "g1")
        assert executor.execute.await_count == 3

    @pytest.mark.asyncio
    async def test_mutation_invalidating_through_context(self):
        executor = AsyncMock()

        async def execute(tool_name, args, ctx):
            if tool_name == "create_channel":
                ctx.invalidate("list_channels")
            return ExecutionResult.ok({"tool": tool_name})

        executor.execute.side_effect = execute
        gateway, executor, _ = make_gateway(executor=executor)
        await gateway.invoke("list_channels", {}, "u1", "g1")
        await gateway.invoke("create_channel", {"name": "new"}, "u1", "g1")
        result = await gateway.invoke("list_channels", {}, "u1", "g1")
        assert not result.cached


# ── Passthrough, failures, rate limits ───────────────────────────────────


class TestExecution:
    @pytest.mark.asyncio
    async def test_passthrough_is_never_cached_or_replayed(self):
        gateway, executor, _ = make_gateway()
        await gateway.invoke("echo", {}, "u1", "g1")
        result = await gateway.invoke("echo", {}, "u1", "g1")
        assert executor.execute.await_count == 2
        assert not result.cached and not result.idempotent_replay

    @pytest.mark.asyncio
    async def test_executor_exception_becomes_failed_result(self):
        executor = AsyncMock()
        executor.execute.side_effect = RuntimeError("token=supersecretvalue123 leaked")
        gateway, executor, _ = make_gateway(executor=executor)
        result = await gateway.invoke("create_channel", {"name": "general"}, "u1", "g1", tool_call_id="c1")
        assert result.success is False
        assert result.tool_call_id == "c1"
        assert "create_channel" in result.error
        assert "supersecretvalue123" not in result.payload["internal_error"]
        assert "RuntimeError" in result.payload["internal_error"]
        assert gateway.idempotency.stats()["total_entries"] == 0

    @pytest.mark.asyncio
    async def test_bare_payload_from_executor_is_success(self):
        executor = AsyncMock()
        executor.execute.return_value = ["general", "random"]
        gateway, _, _ = make_gateway(executor=executor)
        result = await gateway.invoke("echo", {}, "u1", "g1")
        assert result.success
        assert result.payload == ["general", "random"]

    @pytest.mark.asyncio
    async def test_acquires_tools_and_target_buckets(self):
        limiters = RateLimiters({
            TOOLS: TokenBucket(5, 1, name=TOOLS),
            PLATFORM: TokenBucket(10, 1, name=PLATFORM),
        })
        gateway, _, _ = make_gateway(limiters=limiters)
        await gateway.invoke("create_channel", {"name": "general"}, "u1", "g1")
        assert limiters.get(TOOLS).available_tokens == 4
        assert limiters.get(PLATFORM).available_tokens == 9

    @pytest.mark.asyncio
    async def test_cache_hit_and_replay_consume_no_tokens(self):
        limiters = RateLimiters({TOOLS: TokenBucket(5, 1, name=TOOLS)})
        gateway, _, _ = make_gateway(limiters=limiters)
        await gateway.invoke("list_channels", {}, "u1", "g1")
        await gateway.invoke("list_channels", {}, "u1", "g1")
        await gateway.invoke("create_channel", {"name": "general"}, "u1", "g1")
        await gateway.invoke("create_channel", {"name": "general"}, "u1", "g1")
        assert limiters.get(TOOLS).available_tokens == 3

    @pytest.mark.asyncio
    async def test_stats(self):
        gateway, _, _ = make_gateway(limiters=RateLimiters.from_config(RateLimitsConfig()))
        stats = gateway.stats()
        assert set(stats) == {"cache", "idempotency", "rate_limits"}
        assert set(stats["rate_limits"]) == {"model", "platform", "tools"}


class TestToolResultContent:
    @pytest.mark.asyncio
    async def test_replay_flag_is_visible_to_the_model(self):
        gateway, _, _ = make_gateway()
        await gateway.invoke("create_channel", {"name": "general"}, "u1", "g1")
        replay = await gateway.invoke("create_channel", {"name": "general"}, "u1", "g1")
        body = json.loads(replay.to_content())
        assert body == {"success": True, "result": {"id": "123"}, "idempotent_replay": True}
