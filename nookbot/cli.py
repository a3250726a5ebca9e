"""CLI entrypoint for nookbot: typer app with `run`, `ask` and `init` commands."""

import asyncio
import sys
from pathlib import Path

import typer
from loguru import logger

from nookbot import __version__
from nookbot.app import Services, build_services
from nookbot.channels.discord import DiscordChannel
from nookbot.channels.manager import ChannelManager
from nookbot.config.loader import get_config_path, load_config, save_config
from nookbot.config.schema import Config
from nookbot.errors import NookbotError

app = typer.Typer(add_completion=False, help="nookbot: Discord server assistant")

_CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Path to config JSON (default ~/.nookbot/config.json)")
_LOG_LEVEL_OPTION = typer.Option("INFO", "--log-level", "-l", help="Log level: DEBUG, INFO, WARNING, ERROR")


def _configure_logging(level: str) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan> - {message}",
    )


def _load(config_path: Path | None) -> Config:
    try:
        return load_config(config_path)
    except NookbotError as exc:
        typer.echo(f"Config error: {exc}")
        raise typer.Exit(code=1) from exc


@app.command()
def run(
    config_path: Path | None = _CONFIG_OPTION,
    log_level: str = _LOG_LEVEL_OPTION,
) -> None:
    """Connect to Discord and answer messages until interrupted."""
    _configure_logging(log_level)
    config = _load(config_path)
    if not config.discord.token:
        typer.echo("No Discord token configured (set discord.token or NOOKBOT_DISCORD_TOKEN).")
        raise typer.Exit(code=1)

    services = build_services(config)
    logger.info(f"nookbot {__version__} starting (model {config.agent.model})")
    try:
        asyncio.run(_serve(services))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")


async def _serve(services: Services) -> None:
    channel = DiscordChannel(
        services.config.discord, services.bus, api=services.discord_api, limiters=services.limiters
    )
    manager = ChannelManager(services.bus, [channel])
    await manager.start_all()
    try:
        await services.agent.run()
    finally:
        await manager.stop_all()
        await services.close()


@app.command()
def ask(
    message: str = typer.Argument(..., help="Request to send to the assistant"),
    scope: str = typer.Option("", "--guild", "-g", help="Guild id the request acts on"),
    actor: str = typer.Option("cli:user", "--as", help="Actor id to act as"),
    config_path: Path | None = _CONFIG_OPTION,
    log_level: str = typer.Option("WARNING", "--log-level", "-l", help="Log level"),
) -> None:
    """Run a single request through the agent loop and print the reply."""
    _configure_logging(log_level)
    config = _load(config_path)
    services = build_services(config)

    async def _ask() -> str:
        try:
            return await services.agent.process_direct(message, actor_id=actor, scope_id=scope)
        finally:
            await services.close()

    typer.echo(asyncio.run(_ask()))


@app.command()
def init(
    config_path: Path | None = _CONFIG_OPTION,
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config"),
) -> None:
    """Write a default config file."""
    path = config_path or get_config_path()
    if path.exists() and not force:
        typer.echo(f"{path} already exists (use --force to overwrite)")
        raise typer.Exit(code=1)
    typer.echo(f"Wrote {save_config(Config(), path)}")


if __name__ == "__main__":
    app()
