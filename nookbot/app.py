"""Service wiring: builds the process-scoped objects from a Config."""

from dataclasses import dataclass

from loguru import logger

from nookbot.agent.gateway import ToolGateway
from nookbot.agent.loop import AgentLoop
from nookbot.agent.tools.discord import discord_tools
from nookbot.agent.tools.registry import ToolRegistry
from nookbot.bus.queue import MessageBus
from nookbot.channels.discord_api import DiscordAPI
from nookbot.config.schema import Config
from nookbot.core.cache import ReadCache
from nookbot.core.dedup import EventDeduplicator
from nookbot.core.idempotency import IdempotencyStore
from nookbot.core.ratelimit import RateLimiters
from nookbot.providers.base import LLMProvider
from nookbot.providers.litellm_provider import LiteLLMProvider


@dataclass
class Services:
    """Everything one bot process shares across concurrent agent loops."""
    config: Config
    bus: MessageBus
    limiters: RateLimiters
    idempotency: IdempotencyStore
    cache: ReadCache
    dedup: EventDeduplicator
    registry: ToolRegistry
    gateway: ToolGateway
    provider: LLMProvider
    discord_api: DiscordAPI
    agent: AgentLoop

    async def close(self) -> None:
        self.agent.stop()
        await self.discord_api.close()


def build_services(config: Config, provider: LLMProvider | None = None) -> Services:
    """Construct a fresh, fully wired set of services."""
    bus = MessageBus()
    limiters = RateLimiters.from_config(config.rate_limits)
    idempotency = IdempotencyStore(
        default_ttl=config.idempotency.ttl,
        max_entries=config.idempotency.max_entries,
        sweep_interval=config.idempotency.sweep_interval,
    )
    cache = ReadCache(
        default_ttl=config.cache.default_ttl,
        max_entries_per_namespace=config.cache.max_entries_per_namespace,
        sweep_interval=config.cache.sweep_interval,
    )
    dedup = EventDeduplicator(ttl=config.dedup.ttl, sweep_interval=config.dedup.sweep_interval)

    discord_api = DiscordAPI(config.discord.token)
    # No owner list configured: owner-only tools are open
    registry = ToolRegistry(cache_ttls=config.cache.tool_ttls, owner_ids=config.agent.owner_ids or None)
    for tool in discord_tools(discord_api):
        registry.register(tool)

    gateway = ToolGateway(
        registry,
        limiters=limiters,
        idempotency=idempotency,
        cache=cache,
        idempotency_ttl=config.idempotency.ttl,
        single_flight=config.idempotency.single_flight,
    )

    if provider is None:
        provider = LiteLLMProvider(
            api_key=config.provider.api_key,
            api_base=config.provider.api_base,
            default_model=config.agent.model,
            extra_headers=config.provider.extra_headers,
            fallback_models=config.provider.fallback_models,
            timeout=config.provider.timeout,
        )

    agent = AgentLoop(
        bus=bus,
        provider=provider,
        gateway=gateway,
        registry=registry,
        limiters=limiters,
        deduplicator=dedup,
        model=config.agent.model,
        max_iterations=config.agent.max_iterations,
        temperature=config.agent.temperature,
        max_tokens=config.agent.max_tokens,
        system_prompt=config.agent.system_prompt,
        name=config.agent.name,
        owner_ids=config.agent.owner_ids,
    )
    logger.debug(f"Services built: {len(registry)} tools, buckets {limiters.names}")

    return Services(
        config=config,
        bus=bus,
        limiters=limiters,
        idempotency=idempotency,
        cache=cache,
        dedup=dedup,
        registry=registry,
        gateway=gateway,
        provider=provider,
        discord_api=discord_api,
        agent=agent,
    )
