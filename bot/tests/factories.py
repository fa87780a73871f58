from __future__ import annotations

import uuid

from database.models import (
    GuildModmailConfig,
    ModmailCategory,
    ModmailMessage,
    ModmailRecord,
)
from utils.constants import AUTHOR_USER, CONTEXT_BOTH


def make_category(guild_id: int = 1, category_id: str = "general", **overrides: object) -> ModmailCategory:
    values: dict[str, object] = {
        "id": category_id,
        "guild_id": guild_id,
        "name": category_id.title(),
        "forum_channel_id": 500,
    }
    values.update(overrides)
    return ModmailCategory(**values)  # type: ignore[arg-type]


def make_guild_config(guild_id: int = 1, **overrides: object) -> GuildModmailConfig:
    values: dict[str, object] = {
        "guild_id": guild_id,
        "categories": [make_category(guild_id)],
    }
    values.update(overrides)
    return GuildModmailConfig(**values)  # type: ignore[arg-type]


def make_record(
    guild_id: int = 1,
    user_id: int = 10,
    number: int = 1,
    thread_id: str = "900",
    **overrides: object,
) -> ModmailRecord:
    values: dict[str, object] = {
        "id": str(uuid.uuid4()),
        "guild_id": guild_id,
        "user_id": user_id,
        "user_display_name": "Alice",
        "ticket_number": number,
        "category_id": "general",
        "thread_id": thread_id,
    }
    values.update(overrides)
    return ModmailRecord(**values)  # type: ignore[arg-type]


def make_message(modmail_id: str, **overrides: object) -> ModmailMessage:
    values: dict[str, object] = {
        "message_id": str(uuid.uuid4()),
        "modmail_id": modmail_id,
        "author_id": 10,
        "author_type": AUTHOR_USER,
        "context": CONTEXT_BOTH,
        "content": "hello",
    }
    values.update(overrides)
    return ModmailMessage(**values)  # type: ignore[arg-type]
