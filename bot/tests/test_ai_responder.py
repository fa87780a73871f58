from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from openai import OpenAIError

from core.config import AIConfig
from factories import make_category, make_guild_config
from services.ai_responder import SUGGESTION_FOOTER, AIResponder
from services.cache import MemoryCache


def _client(answer: str | None = "Try restarting the app.") -> MagicMock:
    client = MagicMock()
    client.chat.completions.create = AsyncMock(
        return_value=SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=answer))])
    )
    return client


@pytest.mark.asyncio
async def test_suggestion_includes_category_and_footer() -> None:
    client = _client()
    responder = AIResponder(AIConfig(enabled=True), MemoryCache(), client=client)

    answer = await responder.suggest(make_guild_config(1), make_category(1, "billing"), "My card failed")

    assert answer == "Try restarting the app." + SUGGESTION_FOOTER
    messages = client.chat.completions.create.await_args.kwargs["messages"]
    assert "'Billing'" in messages[0]["content"]
    assert messages[1] == {"role": "user", "content": "My card failed"}


@pytest.mark.asyncio
async def test_api_errors_yield_no_suggestion() -> None:
    client = _client()
    client.chat.completions.create.side_effect = OpenAIError("quota exceeded")
    responder = AIResponder(AIConfig(enabled=True), MemoryCache(), client=client)

    assert await responder.suggest(make_guild_config(1), None, "hello") is None


@pytest.mark.asyncio
async def test_blank_question_or_answer_yields_nothing() -> None:
    responder = AIResponder(AIConfig(enabled=True), MemoryCache(), client=_client(answer="   "))

    assert await responder.suggest(make_guild_config(1), None, "   ") is None
    assert await responder.suggest(make_guild_config(1), None, "real question") is None


@pytest.mark.asyncio
async def test_cached_documentation_is_used_in_prompt(monkeypatch) -> None:
    client = _client()
    cache = MemoryCache()
    responder = AIResponder(AIConfig(enabled=True), cache, client=client)
    monkeypatch.setattr(responder, "fetch_documentation", AsyncMock(return_value="FAQ: restart first"))
    config = make_guild_config(1, ai_documentation_url="https://docs.example/faq")

    await responder.suggest(config, None, "It crashed")

    system = client.chat.completions.create.await_args.kwargs["messages"][0]["content"]
    assert "FAQ: restart first" in system


def test_responder_unavailable_without_key() -> None:
    assert AIResponder(AIConfig(enabled=True, api_key=""), MemoryCache()).available is False
    assert AIResponder(AIConfig(enabled=False, api_key="sk-test"), MemoryCache()).available is False
