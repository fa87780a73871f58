from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import discord
import pytest

from cogs.modmail import ModmailCog
from core.config import ModmailSettings
from factories import make_record
from services.cache import MemoryCache
from utils.constants import REACTION_QUEUED

USER_ID = 10


def _bot(active: list[object] | None = None) -> SimpleNamespace:
    return SimpleNamespace(
        cache=MemoryCache(),
        config=SimpleNamespace(modmail=ModmailSettings()),
        modmail_repo=SimpleNamespace(list_active_for_user=AsyncMock(return_value=active or [])),
        creation_service=SimpleNamespace(start_from_dm=AsyncMock()),
        get_channel=MagicMock(),
    )


def _dm(message_id: int) -> MagicMock:
    message = MagicMock()
    message.id = message_id
    message.author = SimpleNamespace(id=USER_ID, bot=False)
    message.channel.send = AsyncMock()
    message.add_reaction = AsyncMock()
    return message


@pytest.mark.asyncio
async def test_dm_during_setup_is_queued_and_marked() -> None:
    bot = _bot()
    cog = ModmailCog(bot)  # type: ignore[arg-type]
    cog._active_flows[USER_ID] = []
    message = _dm(2222)

    await cog._handle_dm(message)

    assert cog._active_flows[USER_ID] == [2222]
    message.add_reaction.assert_awaited_once_with(REACTION_QUEUED)
    bot.creation_service.start_from_dm.assert_not_awaited()


@pytest.mark.asyncio
async def test_queued_dm_survives_reaction_failure() -> None:
    cog = ModmailCog(_bot())  # type: ignore[arg-type]
    cog._active_flows[USER_ID] = []
    message = _dm(2222)
    message.add_reaction.side_effect = discord.HTTPException(MagicMock(status=403, reason="Forbidden"), "no")

    await cog._handle_dm(message)

    assert cog._active_flows[USER_ID] == [2222]
    message.channel.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_dm_typing_is_shown_in_the_thread_once_per_window() -> None:
    bot = _bot(active=[make_record(thread_id="900")])
    thread = MagicMock(spec=discord.Thread)
    thread.id = 900
    thread.typing = AsyncMock()
    bot.get_channel.return_value = thread
    cog = ModmailCog(bot)  # type: ignore[arg-type]
    channel = MagicMock(spec=discord.DMChannel)
    user = SimpleNamespace(id=USER_ID, bot=False)

    await cog.on_typing(channel, user, None)
    await cog.on_typing(channel, user, None)

    thread.typing.assert_awaited_once()
    bot.get_channel.assert_called_once_with(900)


@pytest.mark.asyncio
async def test_typing_outside_dms_is_ignored() -> None:
    bot = _bot(active=[make_record(thread_id="900")])
    cog = ModmailCog(bot)  # type: ignore[arg-type]

    await cog.on_typing(MagicMock(spec=discord.TextChannel), SimpleNamespace(id=USER_ID, bot=False), None)

    bot.modmail_repo.list_active_for_user.assert_not_awaited()
