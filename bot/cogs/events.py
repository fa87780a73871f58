from __future__ import annotations

import logging

import discord
from discord.ext import commands, tasks

from core.bot import ModmailBot

LOGGER = logging.getLogger(__name__)


class EventsCog(commands.Cog):
    def __init__(self, bot: ModmailBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        self.auto_close_worker.start()

    async def cog_unload(self) -> None:
        self.auto_close_worker.cancel()

    @commands.Cog.listener()
    async def on_ready(self) -> None:
        configured = set(await self.bot.guild_repo.list_enabled_guild_ids())
        missing = [guild.id for guild in self.bot.guilds if guild.id not in configured]
        if missing:
            LOGGER.info("Guilds without modmail configuration: %s", missing)

    @commands.Cog.listener()
    async def on_guild_join(self, guild: discord.Guild) -> None:
        await self.bot.config_service.invalidate(guild.id)
        LOGGER.info("Joined guild %s (%s)", guild.name, guild.id, extra={"guild_id": guild.id})

    @commands.Cog.listener()
    async def on_guild_remove(self, guild: discord.Guild) -> None:
        await self.bot.config_service.invalidate(guild.id)
        LOGGER.info("Removed from guild %s", guild.id, extra={"guild_id": guild.id})

    @tasks.loop(minutes=5)
    async def auto_close_worker(self) -> None:
        lifecycle = self.bot.lifecycle_service
        try:
            resolved = await lifecycle.close_due_resolved()
            warned = await lifecycle.warn_inactive()
            idle = await lifecycle.close_inactive()
        except Exception:  # pragma: no cover - runtime safety
            LOGGER.exception("Auto-close sweep failed")
            return
        if resolved or warned or idle:
            LOGGER.info("Sweep closed %s resolved, warned %s idle, closed %s idle tickets", resolved, warned, idle)

    @auto_close_worker.before_loop
    async def before_auto_close_worker(self) -> None:
        await self.bot.wait_until_ready()


async def setup(bot: ModmailBot) -> None:
    await bot.add_cog(EventsCog(bot))
