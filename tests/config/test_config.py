"""Tests for config schema and loader."""

import json
from pathlib import Path

import pytest

from nookbot.config.loader import load_config, save_config
from nookbot.config.schema import Config
from nookbot.errors import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("NOOKBOT_API_KEY", "NOOKBOT_API_BASE", "NOOKBOT_MODEL", "NOOKBOT_DISCORD_TOKEN"):
        monkeypatch.delenv(name, raising=False)


class TestDefaults:
    def test_missing_file_gives_defaults(self, tmp_path: Path):
        config = load_config(tmp_path / "absent.json")
        assert config.agent.max_iterations == 20
        assert config.idempotency.ttl == 300.0
        assert config.dedup.ttl == 300.0
        assert config.idempotency.single_flight is False

    def test_default_buckets(self):
        limits = Config().rate_limits
        assert (limits.platform.capacity, limits.platform.refill_rate, limits.platform.interval) == (10, 45, 1.0)
        assert (limits.model.capacity, limits.model.refill_rate, limits.model.interval) == (50, 300, 60.0)
        assert (limits.tools.capacity, limits.tools.refill_rate, limits.tools.interval) == (5, 20, 1.0)


class TestLoad:
    def test_partial_file_merges_with_defaults(self, tmp_path: Path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"agent": {"name": "Maple"}, "cache": {"tool_ttls": {"list_roles": 5}}}))
        config = load_config(path)
        assert config.agent.name == "Maple"
        assert config.agent.max_tokens == 3000
        assert config.cache.tool_ttls == {"list_roles": 5.0}

    def test_env_overrides(self, tmp_path: Path, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"discord": {"token": "from-file"}}))
        monkeypatch.setenv("NOOKBOT_DISCORD_TOKEN", "from-env")
        monkeypatch.setenv("NOOKBOT_MODEL", "openai/gpt-4o-mini")
        config = load_config(path)
        assert config.discord.token == "from-env"
        assert config.agent.model == "openai/gpt-4o-mini"

    def test_bad_json(self, tmp_path: Path):
        path = tmp_path / "config.json"
        path.write_text("{not json")
        with pytest.raises(ConfigurationError) as exc:
            load_config(path)
        assert exc.value.recoverable is False

    def test_non_object(self, tmp_path: Path):
        path = tmp_path / "config.json"
        path.write_text("[1, 2]")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_invalid_value_names_the_field(self, tmp_path: Path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"rate_limits": {"tools": {"capacity": 0, "refill_rate": 1}}}))
        with pytest.raises(ConfigurationError) as exc:
            load_config(path)
        assert exc.value.config_key == "rate_limits.tools.capacity"


def test_save_then_load(tmp_path: Path):
    config = Config()
    config.agent.owner_ids = ["discord:1"]
    path = save_config(config, tmp_path / "nested" / "config.json")
    assert path.exists()
    assert load_config(path).agent.owner_ids == ["discord:1"]
