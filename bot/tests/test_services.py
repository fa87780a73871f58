from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from core.errors import ValidationError
from database.base import Database
from database.repositories import BanRepository, CategoryRepository, ComponentRepository, GuildConfigRepository
from factories import make_category, make_guild_config
from services.ban_service import BanService
from services.cache import MemoryCache
from services.components import CUSTOM_ID_PREFIX, ComponentRegistry
from services.config_service import ConfigService


@pytest.mark.asyncio
async def test_ban_lifecycle(db: Database) -> None:
    service = BanService(BanRepository(db))

    ban = await service.create_ban(1, 10, "spam", 100, "2h")
    assert ban.expires_at is not None
    assert await service.is_banned(1, 10) is True
    assert await service.is_banned(2, 10) is False

    assert await service.remove_ban(1, 10) is True
    assert await service.remove_ban(1, 10) is False
    assert await service.is_banned(1, 10) is False


@pytest.mark.asyncio
async def test_permanent_ban_and_invalid_duration(db: Database) -> None:
    service = BanService(BanRepository(db))

    ban = await service.create_ban(1, 10, None, 100)
    assert ban.expires_at is None
    with pytest.raises(ValidationError):
        await service.create_ban(1, 11, None, 100, "soon")


@pytest.mark.asyncio
async def test_component_dispatch_routes_to_handler(db: Database) -> None:
    registry = ComponentRegistry(ComponentRepository(db))
    handler = AsyncMock()
    registry.register_handler("demo.press", handler)
    custom_id = await registry.create("demo.press", {"ticket_id": "t-1"})
    interaction = SimpleNamespace(data={"custom_id": custom_id})

    assert custom_id.startswith(CUSTOM_ID_PREFIX)
    assert await registry.dispatch(interaction) is True  # type: ignore[arg-type]
    handler.assert_awaited_once_with(interaction, {"ticket_id": "t-1"})


@pytest.mark.asyncio
async def test_unknown_component_is_reported_as_expired(db: Database) -> None:
    registry = ComponentRegistry(ComponentRepository(db))
    interaction = MagicMock()
    interaction.data = {"custom_id": f"{CUSTOM_ID_PREFIX}gone"}
    interaction.response.send_message = AsyncMock()

    assert await registry.dispatch(interaction) is True
    assert interaction.response.send_message.await_args.kwargs["ephemeral"] is True

    foreign = SimpleNamespace(data={"custom_id": "other:button"})
    assert await registry.dispatch(foreign) is False  # type: ignore[arg-type]


def test_duplicate_component_handler_is_rejected() -> None:
    registry = ComponentRegistry(MagicMock())
    registry.register_handler("demo", AsyncMock())
    with pytest.raises(ValueError):
        registry.register_handler("demo", AsyncMock())


@pytest.mark.asyncio
async def test_config_service_caches_until_invalidated(db: Database) -> None:
    guild_repo = GuildConfigRepository(db)
    category_repo = CategoryRepository(db)
    service = ConfigService(guild_repo, category_repo, MemoryCache())
    await service.bootstrap_from_config(
        [make_guild_config(1, categories=[make_category(1, "general"), make_category(1, "appeals", position=1)])]
    )

    config = await service.get_config(1)
    assert config is not None
    assert [category.id for category in config.categories] == ["general", "appeals"]

    await category_repo.upsert(make_category(1, "general", name="Renamed"))
    cached = await service.get_config(1)
    assert cached is not None and cached.categories[0].name == "General"

    await service.invalidate(1)
    fresh = await service.get_config(1)
    assert fresh is not None and fresh.categories[0].name == "Renamed"

    assert await service.enabled_guild_ids([1, 2]) == [1]
    assert await service.get_config(2) is None
