from __future__ import annotations

import logging

import discord
from discord.ext import commands

from core.bot import ModmailBot
from core.errors import TicketNotFoundError, ValidationError
from database.models import ModmailRecord
from utils.decorators import modmail_staff_only, modmail_thread_only
from utils.embeds import make_embed, success_embed
from views.staff_controls import outcome_embed

LOGGER = logging.getLogger(__name__)


class StaffCog(commands.Cog):
    def __init__(self, bot: ModmailBot) -> None:
        self.bot = bot

    async def _record(self, ctx: commands.Context[ModmailBot]) -> ModmailRecord:
        record = await self.bot.modmail_repo.get_by_thread(ctx.channel.id)
        if record is None:
            raise TicketNotFoundError()
        return record

    @staticmethod
    def _member(ctx: commands.Context[ModmailBot]) -> discord.Member:
        if not isinstance(ctx.author, discord.Member):
            raise ValidationError("This command can only be used in a server.")
        return ctx.author

    @commands.hybrid_group(name="modmail", description="Modmail staff commands")
    @commands.guild_only()
    async def modmail_group(self, ctx: commands.Context[ModmailBot]) -> None:
        if ctx.invoked_subcommand is None:
            await ctx.reply(
                "Use `modmail close`, `claim`, `unclaim`, `resolve`, `ban`, `unban` or `open`.",
                mention_author=False,
            )

    @modmail_group.command(name="close", description="Close this modmail thread")
    @modmail_thread_only()
    async def close(self, ctx: commands.Context[ModmailBot], *, reason: str | None = None) -> None:
        await ctx.defer()
        record = await self._record(ctx)
        outcome = await self.bot.lifecycle_service.close(record.id, self._member(ctx), reason)
        # The thread is archived by now; reply only when the close did not happen.
        if not outcome.changed:
            await ctx.reply(embed=outcome_embed(outcome), mention_author=False)

    @modmail_group.command(name="claim", description="Claim this modmail thread")
    @modmail_thread_only()
    async def claim(self, ctx: commands.Context[ModmailBot]) -> None:
        record = await self._record(ctx)
        outcome = await self.bot.lifecycle_service.claim(record.id, self._member(ctx))
        await ctx.reply(embed=outcome_embed(outcome), mention_author=False)

    @modmail_group.command(name="unclaim", description="Release your claim on this thread")
    @modmail_thread_only()
    async def unclaim(self, ctx: commands.Context[ModmailBot]) -> None:
        record = await self._record(ctx)
        outcome = await self.bot.lifecycle_service.unclaim(record.id, self._member(ctx))
        await ctx.reply(embed=outcome_embed(outcome), mention_author=False)

    @modmail_group.command(name="resolve", description="Mark this thread as resolved")
    @modmail_thread_only()
    async def resolve(self, ctx: commands.Context[ModmailBot]) -> None:
        await ctx.defer()
        record = await self._record(ctx)
        outcome = await self.bot.lifecycle_service.resolve(record.id, self._member(ctx))
        await ctx.reply(embed=outcome_embed(outcome), mention_author=False)

    @modmail_group.command(name="ban", description="Ban this user from modmail and close the thread")
    @modmail_thread_only()
    async def ban(
        self,
        ctx: commands.Context[ModmailBot],
        duration: str = "permanent",
        *,
        reason: str | None = None,
    ) -> None:
        await ctx.defer()
        record = await self._record(ctx)
        outcome = await self.bot.lifecycle_service.ban(record.id, self._member(ctx), reason, duration)
        if not outcome.changed:
            await ctx.reply(embed=outcome_embed(outcome), mention_author=False)

    @modmail_group.command(name="unban", description="Lift a modmail ban")
    @modmail_staff_only()
    async def unban(self, ctx: commands.Context[ModmailBot], user: discord.User) -> None:
        assert ctx.guild is not None
        removed = await self.bot.ban_service.remove_ban(ctx.guild.id, user.id)
        if not removed:
            raise ValidationError(f"{user} is not banned from modmail.")
        await ctx.reply(embed=success_embed(f"{user.mention} can use modmail again."), mention_author=False)

    @modmail_group.command(name="open", description="List open modmail threads")
    @modmail_staff_only()
    async def open_tickets(self, ctx: commands.Context[ModmailBot]) -> None:
        assert ctx.guild is not None
        records = await self.bot.modmail_repo.list_open(ctx.guild.id, limit=25)
        if not records:
            await ctx.reply(embed=success_embed("No open modmail threads."), mention_author=False)
            return
        lines = [
            f"`#{record.ticket_number}` <#{record.thread_id}> | {record.status} | <@{record.user_id}>"
            + (f" | claimed by <@{record.claimed_by}>" if record.claimed_by else "")
            for record in records
        ]
        await ctx.reply(
            embed=make_embed("Open Modmail Threads", "\n".join(lines), color=discord.Color.blurple()),
            mention_author=False,
        )


async def setup(bot: ModmailBot) -> None:
    await bot.add_cog(StaffCog(bot))
