from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import discord

from database.models import FormField, FormResponse
from utils.constants import INTERACTION_TIMEOUT_SECONDS
from utils.formatting import truncate

LOGGER = logging.getLogger(__name__)

# Discord allows at most five inputs per modal and 25 options per select.
MODAL_FIELD_LIMIT = 5
SELECT_OPTION_LIMIT = 25


@dataclass(slots=True)
class PromptOption:
    label: str
    value: str
    description: str | None = None
    emoji: str | None = None


class _ChoiceSelect(discord.ui.Select["ChoiceView"]):
    def __init__(self, options: list[PromptOption], placeholder: str) -> None:
        super().__init__(
            placeholder=placeholder,
            min_values=1,
            max_values=1,
            options=[
                discord.SelectOption(
                    label=truncate(option.label, 100),
                    value=option.value,
                    description=truncate(option.description, 100) if option.description else None,
                    emoji=option.emoji,
                )
                for option in options[:SELECT_OPTION_LIMIT]
            ],
        )

    async def callback(self, interaction: discord.Interaction) -> None:
        assert self.view is not None
        self.view.selected = self.values[0]
        await interaction.response.defer()
        self.view.stop()


class ChoiceView(discord.ui.View):
    def __init__(self, user_id: int, options: list[PromptOption], placeholder: str, timeout: float) -> None:
        super().__init__(timeout=timeout)
        self.user_id = user_id
        self.selected: str | None = None
        self.add_item(_ChoiceSelect(options, placeholder))

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        return interaction.user.id == self.user_id


class FormModal(discord.ui.Modal):
    def __init__(self, title: str, form_fields: list[FormField], timeout: float) -> None:
        super().__init__(title=truncate(title, 45), timeout=timeout)
        self.form_fields = form_fields
        self.inputs: list[discord.ui.TextInput[FormModal]] = []
        self.submitted = asyncio.Event()
        for form_field in form_fields:
            text_input: discord.ui.TextInput[FormModal] = discord.ui.TextInput(
                label=truncate(form_field.label, 45),
                placeholder=truncate(form_field.placeholder, 100) if form_field.placeholder else None,
                style=discord.TextStyle.long if form_field.style == "long" else discord.TextStyle.short,
                required=form_field.required,
                max_length=min(form_field.max_length, 4000),
            )
            self.inputs.append(text_input)
            self.add_item(text_input)

    def responses(self) -> list[FormResponse]:
        return [
            FormResponse(field_id=form_field.id, question=form_field.label, answer=str(text_input.value or "").strip())
            for form_field, text_input in zip(self.form_fields, self.inputs)
        ]

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await interaction.response.defer()
        self.submitted.set()
        self.stop()


class FormLauncherView(discord.ui.View):
    """Button that opens the next form modal; modals can only be sent as an interaction response."""

    def __init__(self, user_id: int, modal: FormModal, label: str, timeout: float) -> None:
        super().__init__(timeout=timeout)
        self.user_id = user_id
        self.modal = modal
        self.open_button.label = label

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        return interaction.user.id == self.user_id

    @discord.ui.button(label="Fill out form", style=discord.ButtonStyle.primary, emoji="📝")
    async def open_button(self, interaction: discord.Interaction, _: discord.ui.Button[FormLauncherView]) -> None:
        await interaction.response.send_modal(self.modal)


class DmPrompter:
    """Interactive prompts shown in a user's DM while a ticket is being set up."""

    def __init__(self, timeout: float = INTERACTION_TIMEOUT_SECONDS) -> None:
        self.timeout = timeout

    async def choose(
        self,
        message: discord.Message,
        user_id: int,
        prompt: str,
        options: list[PromptOption],
        placeholder: str = "Make a selection",
    ) -> str | None:
        view = ChoiceView(user_id, options, placeholder, self.timeout)
        await message.edit(content=prompt, view=view)
        timed_out = await view.wait()
        await message.edit(view=None)
        if timed_out:
            return None
        return view.selected

    async def collect_form(
        self,
        message: discord.Message,
        user_id: int,
        title: str,
        form_fields: list[FormField],
    ) -> list[FormResponse] | None:
        responses: list[FormResponse] = []
        chunks = [
            form_fields[index : index + MODAL_FIELD_LIMIT]
            for index in range(0, len(form_fields), MODAL_FIELD_LIMIT)
        ]
        for page, chunk in enumerate(chunks, start=1):
            modal = FormModal(title, chunk, self.timeout)
            label = "Fill out form" if len(chunks) == 1 else f"Fill out form ({page}/{len(chunks)})"
            view = FormLauncherView(user_id, modal, label, self.timeout)
            await message.edit(content=f"Please answer a few questions about **{title}**.", view=view)
            try:
                await asyncio.wait_for(modal.submitted.wait(), timeout=self.timeout)
            except TimeoutError:
                LOGGER.info("Form prompt timed out. user=%s", user_id)
                await message.edit(view=None)
                return None
            view.stop()
            responses.extend(modal.responses())
        await message.edit(view=None)
        return responses
