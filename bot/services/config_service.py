from __future__ import annotations

import logging
from typing import Any

from database.models import FormField, GuildModmailConfig, ModmailCategory
from database.repositories import CategoryRepository, GuildConfigRepository
from services.cache import CacheBackend
from utils.constants import DEFAULT_AUTO_CLOSE_HOURS, DEFAULT_AUTO_CLOSE_WARNING_HOURS

LOGGER = logging.getLogger(__name__)


def _config_to_dict(config: GuildModmailConfig) -> dict[str, Any]:
    return {
        "guild_id": config.guild_id,
        "enabled": config.enabled,
        "default_category_id": config.default_category_id,
        "global_staff_role_ids": list(config.global_staff_role_ids),
        "thread_naming_pattern": config.thread_naming_pattern,
        "allow_attachments": config.allow_attachments,
        "max_attachment_size_mb": config.max_attachment_size_mb,
        "ai_enabled": config.ai_enabled,
        "ai_prevent_creation": config.ai_prevent_creation,
        "ai_system_prompt": config.ai_system_prompt,
        "ai_documentation_url": config.ai_documentation_url,
        "auto_close_warning_hours": config.auto_close_warning_hours,
        "auto_close_hours": config.auto_close_hours,
        "categories": [
            {
                "id": category.id,
                "guild_id": category.guild_id,
                "name": category.name,
                "description": category.description,
                "emoji": category.emoji,
                "enabled": category.enabled,
                "staff_role_ids": list(category.staff_role_ids),
                "form_fields": [form_field.to_dict() for form_field in category.form_fields],
                "forum_channel_id": category.forum_channel_id,
                "webhook_id": category.webhook_id,
                "webhook_token": category.webhook_token,
                "open_tag_id": category.open_tag_id,
                "closed_tag_id": category.closed_tag_id,
                "resolve_auto_close_hours": category.resolve_auto_close_hours,
                "priority": category.priority,
                "position": category.position,
            }
            for category in config.categories
        ],
    }


def _config_from_dict(raw: dict[str, Any]) -> GuildModmailConfig:
    categories = []
    for row in raw.get("categories", []):
        row = dict(row)
        row["form_fields"] = [FormField.from_dict(item) for item in row.get("form_fields", [])]
        categories.append(ModmailCategory(**row))
    return GuildModmailConfig(
        guild_id=int(raw["guild_id"]),
        enabled=bool(raw["enabled"]),
        default_category_id=raw.get("default_category_id"),
        global_staff_role_ids=[int(role_id) for role_id in raw.get("global_staff_role_ids", [])],
        thread_naming_pattern=raw["thread_naming_pattern"],
        allow_attachments=bool(raw["allow_attachments"]),
        max_attachment_size_mb=int(raw["max_attachment_size_mb"]),
        ai_enabled=bool(raw.get("ai_enabled", False)),
        ai_prevent_creation=bool(raw.get("ai_prevent_creation", False)),
        ai_system_prompt=raw.get("ai_system_prompt"),
        ai_documentation_url=raw.get("ai_documentation_url"),
        auto_close_warning_hours=int(raw.get("auto_close_warning_hours", DEFAULT_AUTO_CLOSE_WARNING_HOURS)),
        auto_close_hours=int(raw.get("auto_close_hours", DEFAULT_AUTO_CLOSE_HOURS)),
        categories=categories,
    )


class ConfigService:
    """Read side of guild modmail configuration, cached per guild."""

    def __init__(
        self,
        guild_repo: GuildConfigRepository,
        category_repo: CategoryRepository,
        cache: CacheBackend,
        ttl: int = 60,
    ) -> None:
        self.guild_repo = guild_repo
        self.category_repo = category_repo
        self.cache = cache
        self.ttl = ttl

    @staticmethod
    def _cache_key(guild_id: int) -> str:
        return f"modmail:config:{guild_id}"

    async def get_config(self, guild_id: int) -> GuildModmailConfig | None:
        cached = await self.cache.get(self._cache_key(guild_id))
        if cached:
            return _config_from_dict(cached)
        config = await self.guild_repo.get(guild_id)
        if config is None:
            return None
        config.categories = await self.category_repo.list_by_guild(guild_id)
        await self.cache.set(self._cache_key(guild_id), _config_to_dict(config), ttl=self.ttl)
        return config

    async def invalidate(self, guild_id: int) -> None:
        await self.cache.delete(self._cache_key(guild_id))

    async def enabled_guild_ids(self, candidate_ids: list[int]) -> list[int]:
        enabled = set(await self.guild_repo.list_enabled_guild_ids())
        return [guild_id for guild_id in candidate_ids if guild_id in enabled]

    async def bootstrap_from_config(self, guilds: list[GuildModmailConfig]) -> None:
        """Seed guild settings and categories declared in config.yaml."""
        for guild_config in guilds:
            await self.guild_repo.upsert(guild_config)
            # Category upserts leave provisioned webhook credentials untouched.
            for category in guild_config.categories:
                await self.category_repo.upsert(category)
            await self.invalidate(guild_config.guild_id)
            LOGGER.info(
                "Bootstrapped modmail config for guild %s with %s categories",
                guild_config.guild_id,
                len(guild_config.categories),
            )
