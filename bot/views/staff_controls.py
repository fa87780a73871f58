from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import discord

from services.components import ComponentRegistry
from services.outcomes import OUTCOME_OK, LifecycleOutcome
from utils.constants import (
    HANDLER_STAFF_BAN,
    HANDLER_STAFF_CLAIM,
    HANDLER_STAFF_CLOSE,
    HANDLER_STAFF_CLOSE_WITH_MESSAGE,
    HANDLER_STAFF_RESOLVE,
    INTERACTION_TIMEOUT_SECONDS,
)
from utils.decorators import is_modmail_staff
from utils.embeds import error_embed, success_embed

if TYPE_CHECKING:
    from core.bot import ModmailBot

LOGGER = logging.getLogger(__name__)

STAFF_BUTTONS: tuple[tuple[str, str, discord.ButtonStyle, str, int], ...] = (
    (HANDLER_STAFF_CLAIM, "Claim", discord.ButtonStyle.primary, "🙋", 0),
    (HANDLER_STAFF_RESOLVE, "Resolve", discord.ButtonStyle.success, "✅", 0),
    (HANDLER_STAFF_CLOSE, "Close", discord.ButtonStyle.danger, "🔒", 1),
    (HANDLER_STAFF_CLOSE_WITH_MESSAGE, "Close with Message", discord.ButtonStyle.danger, "📝", 1),
    (HANDLER_STAFF_BAN, "Ban", discord.ButtonStyle.secondary, "🔨", 1),
)


async def build_staff_controls(components: ComponentRegistry, ticket_id: str) -> discord.ui.View:
    view = discord.ui.View(timeout=None)
    for handler, label, style, emoji, row in STAFF_BUTTONS:
        custom_id = await components.create(handler, {"ticket_id": ticket_id})
        view.add_item(discord.ui.Button(label=label, style=style, emoji=emoji, custom_id=custom_id, row=row))
    return view


def disabled_controls(message: discord.Message) -> discord.ui.View | None:
    if not message.components:
        return None
    view = discord.ui.View.from_message(message, timeout=None)
    for item in view.children:
        if isinstance(item, discord.ui.Button):
            item.disabled = True
    return view


def outcome_embed(outcome: LifecycleOutcome) -> discord.Embed:
    message = outcome.message or "Done."
    return success_embed(message) if outcome.status == OUTCOME_OK else error_embed(message)


class CloseReasonModal(discord.ui.Modal, title="Close Modmail"):
    reason: discord.ui.TextInput[CloseReasonModal] = discord.ui.TextInput(
        label="Reason",
        placeholder="Why is this ticket being closed?",
        style=discord.TextStyle.long,
        max_length=1000,
        required=False,
    )

    def __init__(self, on_confirm: Callable[[discord.Interaction, str | None], Awaitable[None]]) -> None:
        super().__init__(timeout=INTERACTION_TIMEOUT_SECONDS)
        self.on_confirm = on_confirm

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await self.on_confirm(interaction, str(self.reason.value).strip() or None)


class CloseWithMessageModal(discord.ui.Modal, title="Close with Message"):
    final_message: discord.ui.TextInput[CloseWithMessageModal] = discord.ui.TextInput(
        label="Final message to the user",
        style=discord.TextStyle.long,
        max_length=1500,
        required=True,
    )
    reason: discord.ui.TextInput[CloseWithMessageModal] = discord.ui.TextInput(
        label="Reason (staff only)",
        style=discord.TextStyle.short,
        max_length=200,
        required=False,
    )

    def __init__(self, on_confirm: Callable[[discord.Interaction, str, str | None], Awaitable[None]]) -> None:
        super().__init__(timeout=INTERACTION_TIMEOUT_SECONDS)
        self.on_confirm = on_confirm

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await self.on_confirm(
            interaction,
            str(self.final_message.value).strip(),
            str(self.reason.value).strip() or None,
        )


class BanModal(discord.ui.Modal, title="Ban from Modmail"):
    duration: discord.ui.TextInput[BanModal] = discord.ui.TextInput(
        label="Duration (e.g. 30m, 12h, 7d, 2w or permanent)",
        default="permanent",
        max_length=20,
        required=True,
    )
    reason: discord.ui.TextInput[BanModal] = discord.ui.TextInput(
        label="Reason",
        style=discord.TextStyle.long,
        max_length=500,
        required=False,
    )

    def __init__(self, on_confirm: Callable[[discord.Interaction, str, str | None], Awaitable[None]]) -> None:
        super().__init__(timeout=INTERACTION_TIMEOUT_SECONDS)
        self.on_confirm = on_confirm

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await self.on_confirm(
            interaction,
            str(self.duration.value).strip() or "permanent",
            str(self.reason.value).strip() or None,
        )


class StaffControlHandlers:
    """Callbacks behind the buttons on a ticket's starter message."""

    def __init__(self, bot: ModmailBot) -> None:
        self.bot = bot

    def register(self, components: ComponentRegistry) -> None:
        components.register_handler(HANDLER_STAFF_CLAIM, self.claim)
        components.register_handler(HANDLER_STAFF_RESOLVE, self.resolve)
        components.register_handler(HANDLER_STAFF_CLOSE, self.close)
        components.register_handler(HANDLER_STAFF_CLOSE_WITH_MESSAGE, self.close_with_message)
        components.register_handler(HANDLER_STAFF_BAN, self.ban)

    async def _require_staff(self, interaction: discord.Interaction, metadata: dict[str, Any]) -> discord.Member | None:
        member = interaction.user
        if not interaction.guild or not isinstance(member, discord.Member):
            await interaction.response.send_message(embed=error_embed("Guild context is required."), ephemeral=True)
            return None
        record = await self.bot.modmail_repo.get_by_id(str(metadata.get("ticket_id", "")))
        config = await self.bot.config_service.get_config(interaction.guild.id)
        category = config.get_category(record.category_id) if config and record else None
        if not is_modmail_staff(member, config, category):
            LOGGER.info("Rejected staff control from %s in guild %s", member.id, interaction.guild.id)
            await interaction.response.send_message(
                embed=error_embed("Only modmail staff can use these controls."), ephemeral=True
            )
            return None
        return member

    async def claim(self, interaction: discord.Interaction, metadata: dict[str, Any]) -> None:
        member = await self._require_staff(interaction, metadata)
        if member is None:
            return
        await interaction.response.defer(ephemeral=True)
        outcome = await self.bot.lifecycle_service.claim(metadata["ticket_id"], member)
        await interaction.followup.send(embed=outcome_embed(outcome), ephemeral=True)

    async def resolve(self, interaction: discord.Interaction, metadata: dict[str, Any]) -> None:
        member = await self._require_staff(interaction, metadata)
        if member is None:
            return
        await interaction.response.defer(ephemeral=True)
        outcome = await self.bot.lifecycle_service.resolve(metadata["ticket_id"], member)
        await interaction.followup.send(embed=outcome_embed(outcome), ephemeral=True)

    async def close(self, interaction: discord.Interaction, metadata: dict[str, Any]) -> None:
        member = await self._require_staff(interaction, metadata)
        if member is None:
            return

        async def confirm(modal_interaction: discord.Interaction, reason: str | None) -> None:
            await modal_interaction.response.defer(ephemeral=True)
            outcome = await self.bot.lifecycle_service.close(metadata["ticket_id"], member, reason)
            await modal_interaction.followup.send(embed=outcome_embed(outcome), ephemeral=True)

        await interaction.response.send_modal(CloseReasonModal(confirm))

    async def close_with_message(self, interaction: discord.Interaction, metadata: dict[str, Any]) -> None:
        member = await self._require_staff(interaction, metadata)
        if member is None:
            return

        async def confirm(modal_interaction: discord.Interaction, final_message: str, reason: str | None) -> None:
            await modal_interaction.response.defer(ephemeral=True)
            outcome = await self.bot.lifecycle_service.close(
                metadata["ticket_id"], member, reason, final_message=final_message
            )
            await modal_interaction.followup.send(embed=outcome_embed(outcome), ephemeral=True)

        await interaction.response.send_modal(CloseWithMessageModal(confirm))

    async def ban(self, interaction: discord.Interaction, metadata: dict[str, Any]) -> None:
        member = await self._require_staff(interaction, metadata)
        if member is None:
            return

        async def confirm(modal_interaction: discord.Interaction, duration: str, reason: str | None) -> None:
            await modal_interaction.response.defer(ephemeral=True)
            outcome = await self.bot.lifecycle_service.ban(metadata["ticket_id"], member, reason, duration)
            await modal_interaction.followup.send(embed=outcome_embed(outcome), ephemeral=True)

        await interaction.response.send_modal(BanModal(confirm))
