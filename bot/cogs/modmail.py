from __future__ import annotations

import logging

import discord
from discord.ext import commands

from core.bot import ModmailBot
from core.errors import BotError, send_error_response
from database.models import ModmailRecord
from services.components import CUSTOM_ID_PREFIX
from utils.constants import REACTION_DELIVERED, REACTION_FAILED, REACTION_QUEUED
from utils.embeds import error_embed, rate_limited_embed
from utils.rate_limit import DistributedRateLimiter

LOGGER = logging.getLogger(__name__)

RELAY_FAILURE_MESSAGE = "Failed to deliver your message. The support thread may have been closed."
GENERIC_DM_ERROR = "An error occurred while processing your message. Please try again later."
TYPING_THROTTLE_SECONDS = 8


class ModmailCog(commands.Cog):
    """Routes DMs and thread messages between users and staff."""

    def __init__(self, bot: ModmailBot) -> None:
        self.bot = bot
        self.rate_limiter = DistributedRateLimiter(bot.cache)
        # user id -> DM message ids received while that user's setup flow runs
        self._active_flows: dict[int, list[int]] = {}

    async def _allow_dm(self, message: discord.Message) -> bool:
        settings = self.bot.config.modmail
        key = f"modmail:dm:rl:{message.author.id}"
        result = await self.rate_limiter.hit(
            key,
            limit=settings.rate_limit_messages,
            window_seconds=settings.rate_limit_window_seconds,
            cooldown_seconds=settings.rate_limit_cooldown_seconds,
        )
        if result.allowed:
            return True
        notice_key = f"{key}:notified"
        if not await self.bot.cache.get(notice_key):
            await self.bot.cache.set(notice_key, 1, ttl=result.retry_after)
            try:
                await message.channel.send(embed=rate_limited_embed(result.retry_after))
            except discord.HTTPException:
                LOGGER.debug("Could not send rate-limit notice to %s", message.author.id)
        return False

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or message.webhook_id:
            return
        if message.guild is None:
            await self._handle_dm(message)
        elif isinstance(message.channel, discord.Thread):
            await self._handle_thread_message(message)

    async def _handle_dm(self, message: discord.Message) -> None:
        try:
            if not await self._allow_dm(message):
                return

            active = await self.bot.modmail_repo.list_active_for_user(message.author.id)
            if active:
                await self._relay_dm(active[0], message)
                return

            queued = self._active_flows.get(message.author.id)
            if queued is not None:
                queued.append(message.id)
                try:
                    await message.add_reaction(REACTION_QUEUED)
                except discord.HTTPException:
                    LOGGER.debug("Could not mark queued DM %s", message.id)
                return

            self._active_flows[message.author.id] = []
            try:
                await self.bot.creation_service.start_from_dm(message, self._active_flows[message.author.id])
            finally:
                self._active_flows.pop(message.author.id, None)
        except BotError as exc:
            await message.channel.send(embed=error_embed(exc.user_message))
        except discord.HTTPException:
            LOGGER.exception("DM handling failed for user %s", message.author.id)
            try:
                await message.channel.send(embed=error_embed(GENERIC_DM_ERROR))
            except discord.HTTPException:
                LOGGER.debug("Could not report DM failure to %s", message.author.id)

    async def _relay_dm(self, record: ModmailRecord, message: discord.Message) -> None:
        delivered = await self.bot.relay_service.relay_user_to_workspace(record.id, message)
        if delivered:
            await message.add_reaction(REACTION_DELIVERED)
            return
        await message.add_reaction(REACTION_FAILED)
        await message.reply(RELAY_FAILURE_MESSAGE, mention_author=False)

    async def _handle_thread_message(self, message: discord.Message) -> None:
        if not isinstance(message.author, discord.Member):
            return
        if message.content.startswith(self.bot.config.discord.prefix):
            return
        record = await self.bot.modmail_repo.get_by_thread(message.channel.id)
        if record is None or record.is_closed:
            return
        await self.bot.relay_service.relay_workspace_to_user(record.id, message, message.author)

    @commands.Cog.listener()
    async def on_message_edit(self, before: discord.Message, after: discord.Message) -> None:
        if after.author.bot or after.webhook_id or before.content == after.content:
            return
        relay = self.bot.relay_service
        if after.guild is None:
            record = await self.bot.modmail_repo.find_active_by_message(after.id, workspace_side=False)
            if record is None:
                return
            outcome = await relay.handle_edit(record.id, after.id, False, after.content)
            if outcome.changed and outcome.entry:
                await relay.mirror_user_edit(record, outcome.entry)
            return

        if not isinstance(after.channel, discord.Thread):
            return
        record = await self.bot.modmail_repo.get_by_thread(after.channel.id)
        if record is None or record.is_closed:
            return
        outcome = await relay.handle_edit(record.id, after.id, True, after.content)
        if outcome.changed and outcome.entry:
            await relay.mirror_staff_edit(record, outcome.entry, after.author.display_name, after.guild.name)

    @commands.Cog.listener()
    async def on_raw_message_delete(self, payload: discord.RawMessageDeleteEvent) -> None:
        relay = self.bot.relay_service
        if payload.guild_id is None:
            record = await self.bot.modmail_repo.find_active_by_message(payload.message_id, workspace_side=False)
            if record is None:
                return
            outcome = await relay.handle_delete(record.id, payload.message_id, False, record.user_id)
            if outcome.changed and outcome.entry:
                await relay.mirror_user_delete(record, outcome.entry)
            return

        record = await self.bot.modmail_repo.get_by_thread(payload.channel_id)
        if record is None or record.is_closed:
            return
        outcome = await relay.handle_delete(record.id, payload.message_id, True, None)
        if outcome.changed and outcome.entry:
            await relay.mirror_staff_delete(record, outcome.entry)

    @commands.Cog.listener()
    async def on_typing(self, channel: discord.abc.Messageable, user: discord.abc.User, when: object) -> None:
        if user.bot or not isinstance(channel, discord.DMChannel):
            return
        # One indicator lasts about ten seconds.
        throttle_key = f"modmail:typing:{user.id}"
        if await self.bot.cache.get(throttle_key):
            return
        await self.bot.cache.set(throttle_key, 1, ttl=TYPING_THROTTLE_SECONDS)
        active = await self.bot.modmail_repo.list_active_for_user(user.id)
        if not active or not active[0].has_thread:
            return
        thread = self.bot.get_channel(active[0].thread_id_int)
        if not isinstance(thread, discord.Thread):
            return
        try:
            await thread.typing()
        except discord.HTTPException:
            LOGGER.debug("Could not relay typing to thread %s", thread.id)

    @commands.Cog.listener()
    async def on_interaction(self, interaction: discord.Interaction) -> None:
        if interaction.type != discord.InteractionType.component:
            return
        custom_id = str((interaction.data or {}).get("custom_id", ""))
        if not custom_id.startswith(CUSTOM_ID_PREFIX):
            return
        try:
            await self.bot.components.dispatch(interaction)
        except BotError as exc:
            LOGGER.info("Component %s failed: %s", custom_id, exc.user_message)
            await send_error_response(interaction, exc.user_message)


async def setup(bot: ModmailBot) -> None:
    await bot.add_cog(ModmailCog(bot))
