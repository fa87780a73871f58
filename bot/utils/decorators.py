from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

import discord
from discord.ext import commands

from core.errors import PermissionDeniedError, ValidationError
from database.models import GuildModmailConfig, ModmailCategory

F = TypeVar("F", bound=Callable[..., Any])


def is_modmail_staff(
    member: discord.Member,
    config: GuildModmailConfig | None,
    category: ModmailCategory | None = None,
) -> bool:
    permissions = member.guild_permissions
    if permissions.administrator or permissions.manage_guild:
        return True
    if config is None:
        return False
    allowed = set(config.staff_role_ids_for(category))
    return any(role.id in allowed for role in member.roles)


def modmail_thread_only() -> Callable[[F], F]:
    """Hybrid command check: must run inside a modmail thread by a staff member."""

    async def predicate(ctx: commands.Context[Any]) -> bool:
        if not ctx.guild or not isinstance(ctx.author, discord.Member):
            raise ValidationError("This command can only be used in a server.")
        if not isinstance(ctx.channel, discord.Thread):
            raise ValidationError("This command can only be used in a modmail thread.")
        record = await ctx.bot.modmail_repo.get_by_thread(ctx.channel.id)
        if record is None:
            raise ValidationError("This thread is not a modmail conversation.")
        config = await ctx.bot.config_service.get_config(ctx.guild.id)
        category = config.get_category(record.category_id) if config else None
        if not is_modmail_staff(ctx.author, config, category):
            raise PermissionDeniedError()
        return True

    return commands.check(predicate)


def modmail_staff_only() -> Callable[[F], F]:
    async def predicate(ctx: commands.Context[Any]) -> bool:
        if not ctx.guild or not isinstance(ctx.author, discord.Member):
            raise ValidationError("This command can only be used in a server.")
        config = await ctx.bot.config_service.get_config(ctx.guild.id)
        if not is_modmail_staff(ctx.author, config):
            raise PermissionDeniedError()
        return True

    return commands.check(predicate)
