from __future__ import annotations

import logging
from dataclasses import dataclass

import discord
from discord import app_commands
from discord.ext import commands

LOGGER = logging.getLogger(__name__)


class BotError(RuntimeError):
    user_message: str = "An unexpected error occurred."


@dataclass(slots=True)
class PermissionDeniedError(BotError):
    user_message: str = "You do not have permission to run this action."


@dataclass(slots=True)
class ValidationError(BotError):
    user_message: str = "The provided input is not valid."


@dataclass(slots=True)
class TicketNotFoundError(BotError):
    user_message: str = "No active modmail conversation was found."


class ModmailError(BotError):
    """Terminal failure of a modmail operation; nothing beyond a compensating delete was kept."""

    code: str = "modmail_error"


@dataclass(slots=True)
class NotConfiguredError(ModmailError):
    user_message: str = "This server has not configured modmail support."
    code: str = "not_configured"


@dataclass(slots=True)
class BannedError(ModmailError):
    user_message: str = "You are banned from using modmail in this server."
    code: str = "banned"


@dataclass(slots=True)
class AlreadyOpenError(ModmailError):
    user_message: str = (
        "You already have an open modmail conversation in this server. "
        "Please continue in your existing thread."
    )
    code: str = "already_open"


@dataclass(slots=True)
class NoCategoriesError(ModmailError):
    user_message: str = "This server has not configured any modmail categories."
    code: str = "no_categories"


@dataclass(slots=True)
class CategoryNotFoundError(ModmailError):
    user_message: str = "Could not find a valid modmail category. Please contact server staff."
    code: str = "category_not_found"


@dataclass(slots=True)
class RecordCreationError(ModmailError):
    user_message: str = "Failed to create modmail record. Please try again later."
    code: str = "record_creation_failed"


@dataclass(slots=True)
class ThreadCreationError(ModmailError):
    user_message: str = "Failed to create support thread. Please try again later."
    code: str = "thread_creation_failed"


class HookRegistrationError(ValueError):
    """Raised when a hook id is registered twice on the same pipeline."""


async def send_error_response(
    target: commands.Context[commands.Bot] | discord.Interaction[commands.Bot], message: str
) -> None:
    embed = discord.Embed(title="Error", description=message, color=discord.Color.red())
    if isinstance(target, commands.Context):
        await target.reply(embed=embed, mention_author=False)
        return
    if target.response.is_done():
        await target.followup.send(embed=embed, ephemeral=True)
    else:
        await target.response.send_message(embed=embed, ephemeral=True)


def _humanize_command_error(error: Exception) -> str:
    original = getattr(error, "original", None)
    if isinstance(original, BotError):
        return original.user_message
    if isinstance(error, BotError):
        return error.user_message
    if isinstance(error, commands.CommandOnCooldown):
        return f"Cooldown active. Retry in {error.retry_after:.1f} seconds."
    if isinstance(error, commands.MissingPermissions):
        return "You are missing required Discord permissions."
    if isinstance(error, commands.CheckFailure):
        return "You are not authorized for this command."
    if isinstance(error, commands.BadArgument):
        return "Command argument was invalid."
    return "An unexpected command error occurred."


async def handle_prefix_command_error(
    ctx: commands.Context[commands.Bot], error: commands.CommandError
) -> None:
    message = _humanize_command_error(error)
    LOGGER.exception(
        "Prefix command failed. command=%s guild=%s user=%s",
        getattr(ctx.command, "qualified_name", None),
        getattr(ctx.guild, "id", None),
        ctx.author.id,
        exc_info=error,
    )
    await send_error_response(ctx, message)


async def handle_app_command_error(
    interaction: discord.Interaction[commands.Bot], error: app_commands.AppCommandError
) -> None:
    message = "An unexpected slash-command error occurred."
    original = getattr(error, "original", error)
    if isinstance(error, app_commands.CheckFailure):
        message = "You are not authorized for this command."
    elif isinstance(error, app_commands.CommandOnCooldown):
        message = f"Cooldown active. Retry in {error.retry_after:.1f} seconds."
    elif isinstance(original, BotError):
        message = original.user_message

    LOGGER.exception(
        "Slash command failed. command=%s guild=%s user=%s",
        getattr(interaction.command, "qualified_name", None),
        getattr(interaction.guild, "id", None),
        interaction.user.id if interaction.user else None,
        exc_info=error,
    )
    await send_error_response(interaction, message)
