"""Load configuration from JSON with environment overrides."""

import json
import os
from pathlib import Path

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from nookbot.config.schema import Config
from nookbot.errors import ConfigurationError
from nookbot.utils.helpers import ensure_dir

DEFAULT_CONFIG_PATH = Path.home() / ".nookbot" / "config.json"

ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "NOOKBOT_API_KEY": ("provider", "api_key"),
    "NOOKBOT_API_BASE": ("provider", "api_base"),
    "NOOKBOT_MODEL": ("agent", "model"),
    "NOOKBOT_DISCORD_TOKEN": ("discord", "token"),
}


def get_config_path() -> Path:
    return DEFAULT_CONFIG_PATH


def _apply_env(data: dict) -> dict:
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            data.setdefault(section, {})[key] = value
    return data


def load_config(path: Path | None = None) -> Config:
    """Load config from path (default ~/.nookbot/config.json).

    A missing file yields defaults. Unreadable JSON or values that fail the
    schema raise ConfigurationError.
    """
    path = path or get_config_path()
    data: dict = {}
    if path.exists():
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(str(path), f"cannot read config: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(str(path), "top level must be a JSON object")
        logger.debug(f"Loaded config from {path}")
    else:
        logger.info(f"No config at {path}, using defaults")

    try:
        return Config.model_validate(_apply_env(data))
    except PydanticValidationError as e:
        first = e.errors()[0]
        loc = ".".join(str(p) for p in first["loc"])
        raise ConfigurationError(loc or str(path), first["msg"]) from e


def save_config(config: Config, path: Path | None = None) -> Path:
    path = path or get_config_path()
    ensure_dir(path.parent)
    path.write_text(config.model_dump_json(indent=2), encoding="utf-8")
    return path
