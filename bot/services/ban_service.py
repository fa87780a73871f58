from __future__ import annotations

import logging
from datetime import timedelta

from core.errors import ValidationError
from database.models import ModmailBan
from database.repositories import BanRepository
from utils.time import parse_ban_duration, to_iso, utc_now

LOGGER = logging.getLogger(__name__)


class BanService:
    def __init__(self, ban_repo: BanRepository) -> None:
        self.ban_repo = ban_repo

    async def is_banned(self, guild_id: int, user_id: int) -> bool:
        return await self.ban_repo.get_active(guild_id, user_id) is not None

    async def get_ban(self, guild_id: int, user_id: int) -> ModmailBan | None:
        return await self.ban_repo.get_active(guild_id, user_id)

    def validate_duration(self, duration: str) -> timedelta | None:
        try:
            return parse_ban_duration(duration)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

    async def create_ban(
        self,
        guild_id: int,
        user_id: int,
        reason: str | None,
        banned_by: int,
        duration: str = "permanent",
    ) -> ModmailBan:
        length = self.validate_duration(duration)
        ban = ModmailBan(
            guild_id=guild_id,
            user_id=user_id,
            reason=reason,
            banned_by=banned_by,
            expires_at=to_iso(utc_now() + length) if length else None,
        )
        await self.ban_repo.add(ban)
        LOGGER.info(
            "Modmail ban created. guild=%s user=%s by=%s expires=%s",
            guild_id,
            user_id,
            banned_by,
            ban.expires_at or "never",
        )
        return ban

    async def remove_ban(self, guild_id: int, user_id: int) -> bool:
        removed = await self.ban_repo.remove(guild_id, user_id)
        if removed:
            LOGGER.info("Modmail ban removed. guild=%s user=%s", guild_id, user_id)
        return removed
