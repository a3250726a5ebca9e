"""Configuration schema (pydantic)."""

from pydantic import BaseModel, Field


class BucketConfig(BaseModel):
    """One token bucket: ``refill_rate`` tokens per ``interval`` seconds, burst ``capacity``."""

    capacity: int = Field(ge=1)
    refill_rate: float = Field(gt=0)
    interval: float = Field(default=1.0, gt=0)


class RateLimitsConfig(BaseModel):
    # Discord allows ~50 req/s globally; stay under it
    platform: BucketConfig = BucketConfig(capacity=10, refill_rate=45, interval=1.0)
    model: BucketConfig = BucketConfig(capacity=50, refill_rate=300, interval=60.0)
    tools: BucketConfig = BucketConfig(capacity=5, refill_rate=20, interval=1.0)


class IdempotencyConfig(BaseModel):
    ttl: float = Field(default=300.0, gt=0)
    max_entries: int = Field(default=10_000, ge=1)
    sweep_interval: float = Field(default=60.0, gt=0)
    single_flight: bool = False  # serialize identical mutating calls with a per-key lock


class CacheConfig(BaseModel):
    default_ttl: float = Field(default=300.0, gt=0)
    max_entries_per_namespace: int = Field(default=2000, ge=1)
    sweep_interval: float = Field(default=60.0, gt=0)
    tool_ttls: dict[str, float] = Field(default_factory=dict)  # overrides CACHE_TTLS


class DedupConfig(BaseModel):
    ttl: float = Field(default=300.0, gt=0)
    sweep_interval: float = Field(default=60.0, gt=0)


class AgentConfig(BaseModel):
    model: str = "anthropic/claude-3-5-haiku-20241022"
    max_iterations: int = Field(default=20, ge=1)
    max_tokens: int = Field(default=3000, ge=1)
    temperature: float = Field(default=0.7, ge=0, le=2)
    name: str = "Sunny"
    system_prompt: str | None = None
    owner_ids: list[str] = Field(default_factory=list)


class ProviderConfig(BaseModel):
    api_key: str | None = None
    api_base: str | None = None
    extra_headers: dict[str, str] = Field(default_factory=dict)
    fallback_models: list[str] = Field(default_factory=list)
    timeout: float = Field(default=45.0, gt=0)


class DiscordConfig(BaseModel):
    enabled: bool = True
    token: str = ""
    gateway_url: str = "wss://gateway.discord.gg/?v=10&encoding=json"
    intents: int = 37377  # GUILDS | GUILD_MESSAGES | DIRECT_MESSAGES | MESSAGE_CONTENT
    allowed_guild_ids: list[str] = Field(default_factory=list)  # empty = all guilds
    allow_from: list[str] = Field(default_factory=list)  # user ids; empty = everyone


class Config(BaseModel):
    """Root configuration."""

    agent: AgentConfig = Field(default_factory=AgentConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    discord: DiscordConfig = Field(default_factory=DiscordConfig)
    rate_limits: RateLimitsConfig = Field(default_factory=RateLimitsConfig)
    idempotency: IdempotencyConfig = Field(default_factory=IdempotencyConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    dedup: DedupConfig = Field(default_factory=DedupConfig)
