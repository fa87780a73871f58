from __future__ import annotations

import random
from datetime import UTC, datetime

import discord

from database.models import ModmailCategory, ModmailRecord
from utils.constants import STAFF_TIPS
from utils.time import from_iso

STATUS_FIELD = "Status"


def make_embed(
    title: str,
    description: str,
    color: discord.Color | None = None,
    footer: str | None = None,
) -> discord.Embed:
    resolved_color = color if color is not None else discord.Color.blurple()
    embed = discord.Embed(
        title=title,
        description=description,
        color=resolved_color,
        timestamp=datetime.now(UTC),
    )
    if footer:
        embed.set_footer(text=footer)
    return embed


def staff_embed(title: str, description: str) -> discord.Embed:
    return make_embed(title=title, description=description, color=discord.Color.gold())


def success_embed(message: str) -> discord.Embed:
    return make_embed(title="Success", description=message, color=discord.Color.green())


def error_embed(message: str) -> discord.Embed:
    return make_embed(title="Error", description=message, color=discord.Color.red())


def starter_embed(
    record: ModmailRecord,
    user: discord.abc.User,
    category: ModmailCategory,
    status: str = "Unclaimed",
) -> discord.Embed:
    embed = make_embed(
        title=f"Modmail #{record.ticket_number}",
        description=f"💡 **Tip:** {random.choice(STAFF_TIPS)}",
        color=discord.Color.blurple(),
    )
    embed.add_field(name="User", value=f"{user.mention} (`{user.id}`)", inline=True)
    embed.add_field(name="Category", value=f"{category.emoji or ''} {category.name}".strip(), inline=True)
    embed.add_field(name=STATUS_FIELD, value=status, inline=True)
    embed.set_thumbnail(url=user.display_avatar.url)
    return embed


def with_status(embed: discord.Embed, status: str) -> discord.Embed:
    """Copy of a starter embed with its Status field replaced."""
    updated = embed.copy()
    for index, embed_field in enumerate(updated.fields):
        if embed_field.name == STATUS_FIELD:
            updated.set_field_at(index, name=STATUS_FIELD, value=status, inline=embed_field.inline)
            return updated
    updated.add_field(name=STATUS_FIELD, value=status, inline=True)
    return updated


def claimed_embed(staff_name: str) -> discord.Embed:
    return make_embed(
        title="Ticket Claimed",
        description=(
            f"Your support ticket has been claimed by **{staff_name}**.\n"
            "They will be assisting you with your request."
        ),
        color=discord.Color.blue(),
    )


def resolved_embed(auto_close_hours: int) -> discord.Embed:
    return make_embed(
        title="Thread Resolved",
        description=(
            "**Your issue has been marked as resolved!**\n\n"
            "If you still need help, click **I Need More Help** below. "
            f"Otherwise this thread will automatically close in **{auto_close_hours} hours**."
        ),
        color=discord.Color.green(),
    )


def additional_help_embed(user_name: str) -> discord.Embed:
    return make_embed(
        title="🆘 Additional Help Requested",
        description=(
            f"**{user_name}** has indicated they still need help with this issue.\n\n"
            "The auto-close timer has been cancelled."
        ),
        color=discord.Color.orange(),
    )


def user_closed_embed(reason: str | None, closed_by: str) -> discord.Embed:
    return make_embed(
        title="Thread Closed",
        description=(
            "**Your modmail thread has been closed.**\n\n"
            f"**Reason:** {reason or 'No reason provided'}\n\n"
            "If you need further assistance, feel free to message me again to create a new thread.\n\n"
            f"**Closed by:** {closed_by}"
        ),
        color=discord.Color.red(),
    )


def thread_closed_embed(reason: str | None, closed_by: str, dm_failed: bool = False) -> discord.Embed:
    embed = make_embed(
        title="Thread Closed",
        description=f"**Closed by:** {closed_by}\n**Reason:** {reason or 'No reason provided'}",
        color=discord.Color.red(),
    )
    if dm_failed:
        embed.set_footer(text="The user could not be notified by DM.")
    return embed


def banned_embed(guild_name: str, reason: str | None, expires_at: str | None) -> discord.Embed:
    description = (
        f"You have been banned from using modmail in **{guild_name}**.\n\n"
        f"**Reason:** {reason or 'No reason provided'}\n\n"
    )
    expiry = from_iso(expires_at)
    if expiry is not None:
        description += f"This ban expires <t:{int(expiry.timestamp())}:R>."
    else:
        description += "This ban is permanent."
    return make_embed(title="Modmail Banned", description=description, color=discord.Color.dark_red())


def rate_limited_embed(seconds: int) -> discord.Embed:
    return make_embed(
        title="Slow down",
        description=f"Please wait **{seconds}** seconds before sending another message.",
        color=discord.Color.orange(),
    )


def inactivity_notice_embed(inactive_for: str, closes_in: str | None) -> discord.Embed:
    description = f"There has been no activity in your modmail thread for **{inactive_for}**.\n\n"
    if closes_in:
        description += (
            f"It will close automatically in **{closes_in}** unless you send another message. "
            "If your issue is solved, you can close it now."
        )
    else:
        description += "Send another message if you still need help, or close the thread if you are done."
    return make_embed(title="Are you still there?", description=description, color=discord.Color.orange())


def auto_close_warning_embed(inactive_for: str, closes_in: str | None) -> discord.Embed:
    description = f"No activity for **{inactive_for}**. The user has been reminded."
    if closes_in:
        description += f"\nThis thread closes automatically in **{closes_in}** without a reply from the user."
    return staff_embed("Inactivity Warning", description)
