from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import discord

from services.components import ComponentRegistry
from utils.constants import (
    HANDLER_USER_AI_CONTINUE,
    HANDLER_USER_AI_DISMISS,
    HANDLER_USER_CLOSE,
    HANDLER_USER_REOPEN,
)
from utils.embeds import error_embed
from views.staff_controls import outcome_embed

if TYPE_CHECKING:
    from core.bot import ModmailBot

LOGGER = logging.getLogger(__name__)


async def build_user_close_view(components: ComponentRegistry, ticket_id: str) -> discord.ui.View:
    view = discord.ui.View(timeout=None)
    view.add_item(
        discord.ui.Button(
            label="Close Thread",
            style=discord.ButtonStyle.danger,
            emoji="🔒",
            custom_id=await components.create(HANDLER_USER_CLOSE, {"ticket_id": ticket_id}),
        )
    )
    return view


async def build_resolved_view(components: ComponentRegistry, ticket_id: str) -> discord.ui.View:
    view = discord.ui.View(timeout=None)
    view.add_item(
        discord.ui.Button(
            label="I Need More Help",
            style=discord.ButtonStyle.primary,
            emoji="🆘",
            custom_id=await components.create(HANDLER_USER_REOPEN, {"ticket_id": ticket_id}),
        )
    )
    view.add_item(
        discord.ui.Button(
            label="Close Thread",
            style=discord.ButtonStyle.danger,
            emoji="🔒",
            custom_id=await components.create(HANDLER_USER_CLOSE, {"ticket_id": ticket_id}),
        )
    )
    return view


async def build_ai_followup_view(components: ComponentRegistry, metadata: dict[str, Any]) -> discord.ui.View:
    """Buttons under an AI answer: open the ticket anyway, or dismiss."""
    view = discord.ui.View(timeout=None)
    view.add_item(
        discord.ui.Button(
            label="Continue with Support Ticket",
            style=discord.ButtonStyle.primary,
            emoji="📧",
            custom_id=await components.create(HANDLER_USER_AI_CONTINUE, metadata),
        )
    )
    view.add_item(
        discord.ui.Button(
            label="I'm All Set",
            style=discord.ButtonStyle.success,
            emoji="✅",
            custom_id=await components.create(HANDLER_USER_AI_DISMISS, {"user_id": metadata.get("user_id")}),
        )
    )
    return view


class UserControlHandlers:
    def __init__(self, bot: ModmailBot) -> None:
        self.bot = bot

    def register(self, components: ComponentRegistry) -> None:
        components.register_handler(HANDLER_USER_REOPEN, self.reopen)
        components.register_handler(HANDLER_USER_CLOSE, self.close)
        components.register_handler(HANDLER_USER_AI_CONTINUE, self.ai_continue)
        components.register_handler(HANDLER_USER_AI_DISMISS, self.ai_dismiss)

    async def reopen(self, interaction: discord.Interaction, metadata: dict[str, Any]) -> None:
        await interaction.response.defer()
        outcome = await self.bot.lifecycle_service.reopen(
            interaction.user.id,
            ticket_id=metadata.get("ticket_id"),
            resolved_message=interaction.message,
        )
        await interaction.followup.send(embed=outcome_embed(outcome))

    async def close(self, interaction: discord.Interaction, metadata: dict[str, Any]) -> None:
        await interaction.response.defer()
        outcome = await self.bot.lifecycle_service.close_by_user(metadata["ticket_id"], interaction.user)
        if interaction.message is not None and outcome.changed:
            try:
                await interaction.message.edit(view=None)
            except discord.HTTPException:
                LOGGER.debug("Could not clear buttons on message %s", interaction.message.id)
        await interaction.followup.send(embed=outcome_embed(outcome))

    async def _owns(self, interaction: discord.Interaction, metadata: dict[str, Any]) -> bool:
        if interaction.user.id == int(metadata.get("user_id") or 0):
            return True
        await interaction.response.send_message(embed=error_embed("This button is not for you."), ephemeral=True)
        return False

    async def ai_continue(self, interaction: discord.Interaction, metadata: dict[str, Any]) -> None:
        if not await self._owns(interaction, metadata):
            return
        # Dropping the buttons first keeps a double click from opening two tickets.
        await interaction.response.edit_message(view=None)
        await self.bot.creation_service.continue_after_suggestion(interaction.user, interaction.channel, metadata)

    async def ai_dismiss(self, interaction: discord.Interaction, metadata: dict[str, Any]) -> None:
        if not await self._owns(interaction, metadata):
            return
        await interaction.response.edit_message(view=None)
        await interaction.followup.send("Glad that helped! Message me again any time you need support.")
