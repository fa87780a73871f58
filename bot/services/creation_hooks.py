from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import discord

from services.hook_pipeline import (
    HOOK_BEFORE_CREATION,
    PRIORITY_HIGH,
    PRIORITY_LOW,
    PRIORITY_NORMAL,
    BaseHook,
    BeforeCreationContext,
    HookContext,
    HookResult,
)
from views.dm_prompts import DmPrompter, PromptOption
from views.user_controls import build_ai_followup_view

if TYPE_CHECKING:
    from services.ai_responder import AIResponder
    from services.components import ComponentRegistry
    from services.config_service import ConfigService

LOGGER = logging.getLogger(__name__)


def _guild_selected(context: HookContext) -> bool:
    return isinstance(context, BeforeCreationContext) and context.selected_guild_id is not None


def _category_pending(context: HookContext) -> bool:
    return isinstance(context, BeforeCreationContext) and context.selected_category_id is None


def _category_selected(context: HookContext) -> bool:
    return isinstance(context, BeforeCreationContext) and context.selected_category_id is not None


class ServerSelectionHook(BaseHook):
    id = "server_selection"
    name = "Server selection"
    description = "Pick which server the conversation is for."
    type = HOOK_BEFORE_CREATION
    priority = PRIORITY_HIGH

    def __init__(self, client: Any, prompter: DmPrompter) -> None:
        super().__init__()
        self.client = client
        self.prompter = prompter

    async def execute_hook(self, context: BeforeCreationContext) -> HookResult:
        if context.selected_guild_id is not None:
            return self.ok()
        guild_ids = list(context.available_guild_ids)
        if not guild_ids:
            return self.stop(user_message="None of the servers you share with me accept modmail right now.")
        if len(guild_ids) == 1:
            return self.ok({"selected_guild_id": guild_ids[0]})

        options: list[PromptOption] = []
        for guild_id in guild_ids:
            guild = self.client.get_guild(guild_id)
            options.append(PromptOption(label=guild.name if guild else str(guild_id), value=str(guild_id)))
        choice = await self.prompter.choose(
            context.shared_message,
            context.user_id,
            "Which server do you need help with?",
            options,
            placeholder="Select a server",
        )
        if choice is None:
            await _finish_prompt(context, "Server selection timed out. Send another message to start again.")
            return self.stop(user_message="Server selection timed out.")
        return self.ok({"selected_guild_id": int(choice)})


class CategorySelectionHook(BaseHook):
    id = "category_selection"
    name = "Category selection"
    description = "Pick a category and fill out its form."
    type = HOOK_BEFORE_CREATION
    priority = PRIORITY_NORMAL

    def __init__(self, config_service: ConfigService, prompter: DmPrompter) -> None:
        super().__init__()
        self.config_service = config_service
        self.prompter = prompter
        self.add_condition(_guild_selected)
        self.add_condition(_category_pending)

    async def execute_hook(self, context: BeforeCreationContext) -> HookResult:
        assert context.selected_guild_id is not None
        config = await self.config_service.get_config(context.selected_guild_id)
        # Leave validation of an unusable guild to the orchestrator.
        if config is None or not config.enabled:
            return self.ok()
        categories = config.enabled_categories()
        if not categories:
            return self.ok()

        if len(categories) == 1:
            category = categories[0]
        else:
            choice = await self.prompter.choose(
                context.shared_message,
                context.user_id,
                "What do you need help with?",
                [
                    PromptOption(
                        label=category.name,
                        value=category.id,
                        description=category.description or None,
                        emoji=category.emoji,
                    )
                    for category in categories
                ],
                placeholder="Select a category",
            )
            if choice is None:
                await _finish_prompt(context, "Category selection timed out. Send another message to start again.")
                return self.stop(user_message="Category selection timed out.")
            category = config.get_category(choice) or categories[0]

        data: dict[str, Any] = {"selected_category_id": category.id}
        if category.form_fields:
            responses = await self.prompter.collect_form(
                context.shared_message, context.user_id, category.name, category.form_fields
            )
            if responses is None:
                await _finish_prompt(context, "The form timed out. Send another message to start again.")
                return self.stop(user_message="Form timed out.")
            data["form_responses"] = responses
        return self.ok(data)


class AIResponseHook(BaseHook):
    id = "ai_response"
    name = "AI response"
    description = "Suggest an answer before a ticket is opened."
    type = HOOK_BEFORE_CREATION
    priority = PRIORITY_LOW

    def __init__(
        self,
        config_service: ConfigService,
        responder: AIResponder | None,
        components: ComponentRegistry,
    ) -> None:
        super().__init__()
        self.config_service = config_service
        self.responder = responder
        self.components = components
        self.add_condition(_guild_selected)
        self.add_condition(_category_selected)
        self.add_condition(lambda _: self.responder is not None and self.responder.available)

    async def execute_hook(self, context: BeforeCreationContext) -> HookResult:
        assert self.responder is not None and context.selected_guild_id is not None
        try:
            config = await self.config_service.get_config(context.selected_guild_id)
            if config is None or not config.ai_enabled:
                return self.ok()
            category = config.get_category(context.selected_category_id)
            answer = await self.responder.suggest(config, category, context.message_content)
            if not answer or context.shared_message is None:
                return self.ok()
            view = None
            if config.ai_prevent_creation:
                view = await build_ai_followup_view(self.components, _followup_metadata(context))
            await context.shared_message.edit(content=answer, view=view)
        except (discord.HTTPException, RuntimeError, ValueError):
            LOGGER.exception("AI suggestion failed. user=%s", context.user_id)
            return self.ok()

        if config.ai_prevent_creation:
            return self.stop({"ai_response_sent": True, "prevent_creation": True})
        return self.ok({"ai_response_sent": True})


def _followup_metadata(context: BeforeCreationContext) -> dict[str, Any]:
    """What the continue button needs to open the ticket later."""
    return {
        "user_id": context.user_id,
        "guild_id": context.selected_guild_id,
        "category_id": context.selected_category_id,
        "message_id": context.source_message.id if context.source_message is not None else None,
        "form_responses": [
            {"field_id": response.field_id, "question": response.question, "answer": response.answer}
            for response in context.form_responses
        ],
    }


async def _finish_prompt(context: BeforeCreationContext, text: str) -> None:
    if context.shared_message is None:
        return
    try:
        await context.shared_message.edit(content=text, view=None)
    except discord.HTTPException:
        LOGGER.warning("Could not update prompt message for user %s", context.user_id)
