from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

import uvicorn

from core.api import create_api_app
from core.bot import ModmailBot
from core.config import AppConfig, load_config
from core.logging import configure_logging

LOGGER = logging.getLogger(__name__)

CONFIG_ENV = "MODMAIL_CONFIG"
API_SHUTDOWN_TIMEOUT_SECONDS = 10


def resolve_config_path(root: Path) -> Path:
    override = os.getenv(CONFIG_ENV)
    if override:
        return Path(override).expanduser()
    return root / "config" / "config.yaml"


def build_api_server(bot: ModmailBot, config: AppConfig) -> uvicorn.Server:
    return uvicorn.Server(
        uvicorn.Config(
            app=create_api_app(bot),
            host=config.fastapi.host,
            port=config.fastapi.port,
            log_level=config.logging.level.lower(),
        )
    )


async def stop_api_server(server: uvicorn.Server, task: asyncio.Task[None]) -> None:
    """Ask uvicorn to drain, cancelling only if it does not exit in time."""
    server.should_exit = True
    try:
        await asyncio.wait_for(task, timeout=API_SHUTDOWN_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        LOGGER.warning("API server did not stop within %ss; cancelling", API_SHUTDOWN_TIMEOUT_SECONDS)
    except Exception:
        LOGGER.exception("API server failed while shutting down")


async def _run_bot(config: AppConfig) -> None:
    bot = ModmailBot(config=config)
    async with bot:
        server: uvicorn.Server | None = None
        api_task: asyncio.Task[None] | None = None
        if config.fastapi.enabled:
            server = build_api_server(bot, config)
            api_task = asyncio.create_task(server.serve())
            LOGGER.info("Status API listening on %s:%s", config.fastapi.host, config.fastapi.port)
        try:
            await bot.start(config.discord.token)
        finally:
            if server is not None and api_task is not None:
                await stop_api_server(server, api_task)


def main() -> None:
    config = load_config(resolve_config_path(Path(__file__).resolve().parent))
    configure_logging(config.logging)
    try:
        asyncio.run(_run_bot(config))
    except KeyboardInterrupt:
        LOGGER.info("Modmail bot stopped")


if __name__ == "__main__":
    main()
