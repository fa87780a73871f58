from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any
from uuid import uuid4

import discord

from database.repositories import ComponentRepository
from utils.embeds import error_embed

LOGGER = logging.getLogger(__name__)

CUSTOM_ID_PREFIX = "mm:"

ComponentHandler = Callable[[discord.Interaction, dict[str, Any]], Awaitable[None]]


class ComponentRegistry:
    """Buttons that survive restarts: each custom_id maps to a named handler plus stored metadata."""

    def __init__(self, component_repo: ComponentRepository) -> None:
        self.component_repo = component_repo
        self._handlers: dict[str, ComponentHandler] = {}

    def register_handler(self, name: str, handler: ComponentHandler) -> None:
        if name in self._handlers:
            raise ValueError(f"Component handler '{name}' is already registered")
        self._handlers[name] = handler

    def has_handler(self, name: str) -> bool:
        return name in self._handlers

    async def create(self, handler: str, metadata: dict[str, Any]) -> str:
        custom_id = f"{CUSTOM_ID_PREFIX}{uuid4().hex}"
        await self.component_repo.create(custom_id, handler, metadata)
        return custom_id

    async def resolve(self, custom_id: str) -> tuple[str, dict[str, Any]] | None:
        if not custom_id.startswith(CUSTOM_ID_PREFIX):
            return None
        return await self.component_repo.get(custom_id)

    async def dispatch(self, interaction: discord.Interaction) -> bool:
        custom_id = str((interaction.data or {}).get("custom_id", ""))
        resolved = await self.resolve(custom_id)
        if resolved is None:
            if custom_id.startswith(CUSTOM_ID_PREFIX):
                await interaction.response.send_message(
                    embed=error_embed("This button has expired."), ephemeral=True
                )
                return True
            return False

        handler_name, metadata = resolved
        handler = self._handlers.get(handler_name)
        if handler is None:
            LOGGER.warning("No handler registered for component %s (%s)", custom_id, handler_name)
            return False
        await handler(interaction, metadata)
        return True
