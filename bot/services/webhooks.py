from __future__ import annotations

import logging
from typing import Any

import discord

from database.models import ModmailCategory
from database.repositories import CategoryRepository
from utils.constants import WEBHOOK_NAME

LOGGER = logging.getLogger(__name__)


class WebhookProvider:
    """Resolves the relay webhook of a category's forum channel."""

    def __init__(self, client: Any, category_repo: CategoryRepository) -> None:
        self.client = client
        self.category_repo = category_repo
        self._cache: dict[str, discord.Webhook] = {}

    def forget(self, category_id: str) -> None:
        self._cache.pop(category_id, None)

    async def get_webhook(self, category: ModmailCategory) -> discord.Webhook | None:
        cached = self._cache.get(category.id)
        if cached is not None:
            return cached

        if category.webhook_id and category.webhook_token:
            webhook = discord.Webhook.partial(category.webhook_id, category.webhook_token, client=self.client)
            self._cache[category.id] = webhook
            return webhook

        if not category.forum_channel_id:
            LOGGER.warning("Category %s has no forum channel configured", category.id)
            return None
        channel = self.client.get_channel(category.forum_channel_id)
        if not isinstance(channel, discord.ForumChannel):
            LOGGER.warning("Forum channel %s for category %s is unavailable", category.forum_channel_id, category.id)
            return None

        try:
            webhook = next(
                (hook for hook in await channel.webhooks() if hook.name == WEBHOOK_NAME and hook.token),
                None,
            )
            if webhook is None:
                webhook = await channel.create_webhook(name=WEBHOOK_NAME, reason="Modmail message relay")
        except discord.HTTPException:
            LOGGER.exception("Could not provision webhook for category %s", category.id)
            return None

        await self.category_repo.set_webhook(category.id, webhook.id, webhook.token)
        category.webhook_id = webhook.id
        category.webhook_token = webhook.token
        self._cache[category.id] = webhook
        LOGGER.info("Provisioned relay webhook %s for category %s", webhook.id, category.id)
        return webhook
