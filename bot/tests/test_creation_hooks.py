from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from database.models import FormField, FormResponse
from factories import make_category, make_guild_config
from services.creation_hooks import AIResponseHook, CategorySelectionHook, ServerSelectionHook
from services.hook_pipeline import HOOK_BEFORE_CREATION, BeforeCreationContext, HookPipeline


def _prompter(choice: str | None = None, responses: list[FormResponse] | None = None) -> MagicMock:
    prompter = MagicMock()
    prompter.choose = AsyncMock(return_value=choice)
    prompter.collect_form = AsyncMock(return_value=responses)
    return prompter


def _config_service(config: object) -> MagicMock:
    service = MagicMock()
    service.get_config = AsyncMock(return_value=config)
    return service


def _components() -> MagicMock:
    components = MagicMock()
    components.create = AsyncMock(side_effect=lambda handler, metadata: f"mm:{handler}")
    return components


def _context(**overrides: object) -> BeforeCreationContext:
    shared = MagicMock()
    shared.edit = AsyncMock()
    values: dict[str, object] = {"user_id": 10, "message_content": "How do I verify?", "shared_message": shared}
    values.update(overrides)
    return BeforeCreationContext(**values)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_server_selection_auto_selects_single_guild() -> None:
    hook = ServerSelectionHook(MagicMock(), _prompter())
    result = await hook.execute_hook(_context(available_guild_ids=[5]))

    assert result.success is True
    assert result.data == {"selected_guild_id": 5}


@pytest.mark.asyncio
async def test_server_selection_stops_without_guilds() -> None:
    hook = ServerSelectionHook(MagicMock(), _prompter())
    result = await hook.execute_hook(_context(available_guild_ids=[]))

    assert result.continue_chain is False
    assert result.user_message is not None


@pytest.mark.asyncio
async def test_server_selection_prompts_for_many_guilds() -> None:
    client = MagicMock()
    client.get_guild = MagicMock(side_effect=lambda guild_id: SimpleNamespace(name=f"Guild {guild_id}"))
    prompter = _prompter(choice="6")
    hook = ServerSelectionHook(client, prompter)

    result = await hook.execute_hook(_context(available_guild_ids=[5, 6]))

    assert result.data == {"selected_guild_id": 6}
    options = prompter.choose.await_args.args[3]
    assert [option.label for option in options] == ["Guild 5", "Guild 6"]


@pytest.mark.asyncio
async def test_server_selection_timeout_stops_chain() -> None:
    client = MagicMock()
    client.get_guild = MagicMock(return_value=None)
    context = _context(available_guild_ids=[5, 6])
    hook = ServerSelectionHook(client, _prompter(choice=None))

    result = await hook.execute_hook(context)

    assert result.continue_chain is False
    context.shared_message.edit.assert_awaited()


@pytest.mark.asyncio
async def test_category_selection_collects_form() -> None:
    category = make_category(1, "billing", form_fields=[FormField(id="order", label="Order number")])
    answers = [FormResponse(field_id="order", question="Order number", answer="A-1")]
    prompter = _prompter(choice="billing", responses=answers)
    config = make_guild_config(1, categories=[make_category(1, "general"), category])
    hook = CategorySelectionHook(_config_service(config), prompter)

    result = await hook.execute_hook(_context(selected_guild_id=1))

    assert result.data == {"selected_category_id": "billing", "form_responses": answers}
    prompter.collect_form.assert_awaited_once()


@pytest.mark.asyncio
async def test_category_selection_is_skipped_until_guild_chosen() -> None:
    prompter = _prompter()
    pipeline = HookPipeline()
    pipeline.register(CategorySelectionHook(_config_service(make_guild_config(1)), prompter))

    result = await pipeline.execute(HOOK_BEFORE_CREATION, _context())

    assert result.executed_count == 0


@pytest.mark.asyncio
async def test_hooks_chain_into_selected_guild_and_category() -> None:
    prompter = _prompter()
    pipeline = HookPipeline()
    pipeline.register(CategorySelectionHook(_config_service(make_guild_config(1)), prompter))
    pipeline.register(ServerSelectionHook(MagicMock(), prompter))
    context = _context(available_guild_ids=[1])

    result = await pipeline.execute(HOOK_BEFORE_CREATION, context)

    assert result.success is True
    assert context.selected_guild_id == 1
    assert context.selected_category_id == "general"


@pytest.mark.asyncio
async def test_ai_hook_can_prevent_creation() -> None:
    responder = MagicMock()
    responder.available = True
    responder.suggest = AsyncMock(return_value="Use the /verify command.")
    config = make_guild_config(1, ai_enabled=True, ai_prevent_creation=True)
    components = _components()
    hook = AIResponseHook(_config_service(config), responder, components)
    context = _context(selected_guild_id=1, selected_category_id="general", source_message=SimpleNamespace(id=1111))

    assert await hook.should_execute(context) is True
    result = await hook.execute_hook(context)

    assert result.continue_chain is False
    assert result.data == {"ai_response_sent": True, "prevent_creation": True}
    context.shared_message.edit.assert_awaited_once()
    edit = context.shared_message.edit.await_args.kwargs
    assert edit["content"] == "Use the /verify command."
    assert [item.label for item in edit["view"].children] == ["Continue with Support Ticket", "I'm All Set"]
    metadata = components.create.await_args_list[0].args[1]
    assert metadata["message_id"] == 1111
    assert metadata["category_id"] == "general"


@pytest.mark.asyncio
async def test_ai_hook_errors_never_block_creation() -> None:
    responder = MagicMock()
    responder.available = True
    responder.suggest = AsyncMock(side_effect=RuntimeError("model offline"))
    hook = AIResponseHook(_config_service(make_guild_config(1, ai_enabled=True)), responder, _components())

    result = await hook.execute_hook(_context(selected_guild_id=1, selected_category_id="general"))

    assert result.success is True
    assert result.continue_chain is True


@pytest.mark.asyncio
async def test_ai_hook_requires_available_responder() -> None:
    hook = AIResponseHook(_config_service(make_guild_config(1)), None, _components())
    assert await hook.should_execute(_context(selected_guild_id=1, selected_category_id="general")) is False
