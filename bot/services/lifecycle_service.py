from __future__ import annotations

import logging
from datetime import datetime, timedelta
from uuid import uuid4

import discord

from core.errors import TicketNotFoundError
from database.models import GuildModmailConfig, ModmailCategory, ModmailMessage, ModmailRecord
from services.deps import ModmailServiceDeps
from services.hook_pipeline import HOOK_AFTER_CLOSING, HOOK_BEFORE_CLOSING, CloseContext
from services.outcomes import (
    OUTCOME_ALREADY_CLAIMED,
    OUTCOME_ALREADY_CLOSED,
    OUTCOME_ALREADY_OPEN,
    OUTCOME_ALREADY_RESOLVED,
    OUTCOME_NOT_CLAIMED,
    OUTCOME_OK,
    OUTCOME_VETOED,
    LifecycleOutcome,
)
from utils.constants import AUTHOR_STAFF, CONTEXT_BOTH, DEFAULT_RESOLVE_AUTO_CLOSE_HOURS, MESSAGE_CHAR_LIMIT
from utils.embeds import (
    additional_help_embed,
    auto_close_warning_embed,
    banned_embed,
    claimed_embed,
    inactivity_notice_embed,
    resolved_embed,
    staff_embed,
    thread_closed_embed,
    user_closed_embed,
    with_status,
)
from utils.formatting import build_thread_name, format_staff_reply, truncate
from utils.time import format_hours, from_iso, to_iso, utc_now
from views.staff_controls import disabled_controls
from views.user_controls import build_resolved_view, build_user_close_view

LOGGER = logging.getLogger(__name__)

STATUS_UNCLAIMED = "Unclaimed"
STATUS_RESOLVED = "Resolved"
STATUS_CLOSED = "Closed"
STATUS_CLOSED_BANNED = "Closed (Banned)"
USER_CLOSE_REASON = "Closed by user"
USER_CLOSE_RESOLVED_REASON = "Resolved - Closed by user"
AUTO_CLOSE_REASON = "Automatically closed after being resolved"
INACTIVITY_CLOSE_REASON = "Automatically closed after {hours} hours of inactivity"


class LifecycleService:
    """State transitions of a ticket: claim, resolve, reopen and close.

    The store's conditional updates decide every transition. Discord side
    effects (renames, DMs, starter status) run afterwards and are best-effort.
    """

    def __init__(self, deps: ModmailServiceDeps) -> None:
        self.deps = deps

    async def _require(self, ticket_id: str) -> ModmailRecord:
        record = await self.deps.modmail_repo.get_by_id(ticket_id)
        if record is None:
            raise TicketNotFoundError()
        return record

    async def _routing(self, record: ModmailRecord) -> tuple[GuildModmailConfig | None, ModmailCategory | None]:
        config = await self.deps.config_service.get_config(record.guild_id)
        category = config.get_category(record.category_id) if config else None
        return config, category

    async def _thread(self, record: ModmailRecord) -> discord.Thread | None:
        if not record.has_thread:
            return None
        channel = self.deps.client.get_channel(record.thread_id_int)
        if isinstance(channel, discord.Thread):
            return channel
        try:
            fetched = await self.deps.client.fetch_channel(record.thread_id_int)
        except discord.HTTPException:
            LOGGER.warning("Thread %s for ticket %s is unavailable", record.thread_id, record.id)
            return None
        return fetched if isinstance(fetched, discord.Thread) else None

    async def _user(self, user_id: int) -> discord.User | None:
        user = self.deps.client.get_user(user_id)
        if user is not None:
            return user
        try:
            return await self.deps.client.fetch_user(user_id)
        except discord.HTTPException:
            return None

    async def _dm(self, record: ModmailRecord, **kwargs: object) -> discord.Message | None:
        user = await self._user(record.user_id)
        if user is None:
            return None
        try:
            return await user.send(**kwargs)  # type: ignore[arg-type]
        except discord.HTTPException:
            LOGGER.info("Could not DM user %s for ticket %s", record.user_id, record.id, extra={"ticket_id": record.id})
            return None

    async def _post(self, thread: discord.Thread | None, **kwargs: object) -> discord.Message | None:
        if thread is None:
            return None
        try:
            return await thread.send(**kwargs)  # type: ignore[arg-type]
        except discord.HTTPException:
            LOGGER.warning("Could not post in thread %s", thread.id)
            return None

    def _guild_name(self, guild_id: int) -> str:
        guild = self.deps.client.get_guild(guild_id)
        return guild.name if guild else "the server"

    async def _rename(self, record: ModmailRecord, thread: discord.Thread | None, claimer: str | None) -> None:
        if thread is None:
            return
        config, category = await self._routing(record)
        name = build_thread_name(
            config.thread_naming_pattern if config else None,
            number=record.ticket_number,
            username=record.user_display_name,
            category=category.name if category else "",
            claimer=claimer,
        )
        if thread.name == name:
            return
        try:
            await thread.edit(name=name)
        except discord.HTTPException:
            LOGGER.warning("Could not rename thread %s", thread.id)

    async def update_starter_status(
        self, record: ModmailRecord, status: str, *, disable_controls: bool = False
    ) -> bool:
        thread = await self._thread(record)
        if thread is None:
            return False
        try:
            starter = thread.starter_message or await thread.fetch_message(thread.id)
            if not starter.embeds:
                return False
            view = disabled_controls(starter) if disable_controls else discord.utils.MISSING
            await starter.edit(embed=with_status(starter.embeds[0], status), view=view)
        except discord.HTTPException:
            LOGGER.warning("Could not update starter message of ticket %s", record.id, extra={"ticket_id": record.id})
            return False
        return True

    async def claim(self, ticket_id: str, staff: discord.Member) -> LifecycleOutcome:
        record = await self._require(ticket_id)
        if record.is_closed:
            return LifecycleOutcome(OUTCOME_ALREADY_CLOSED, "This ticket is already closed.", record)

        if not await self.deps.modmail_repo.claim(record.id, staff.id):
            current = await self._require(ticket_id)
            if current.is_closed:
                return LifecycleOutcome(OUTCOME_ALREADY_CLOSED, "This ticket is already closed.", current)
            return LifecycleOutcome(
                OUTCOME_ALREADY_CLAIMED,
                f"This ticket is already claimed by <@{current.claimed_by}>.",
                current,
                claimed_by=current.claimed_by,
            )

        LOGGER.info("Ticket claimed. staff=%s", staff.id, extra={"ticket_id": record.id, "guild_id": record.guild_id})
        record.claimed_by = staff.id
        thread = await self._thread(record)
        await self._rename(record, thread, staff.display_name)
        await self._dm(record, embed=claimed_embed(staff.display_name))
        await self.update_starter_status(record, f"Claimed by {staff.mention}")
        return LifecycleOutcome(OUTCOME_OK, "You claimed this ticket.", record, claimed_by=staff.id)

    async def unclaim(self, ticket_id: str, staff: discord.Member) -> LifecycleOutcome:
        record = await self._require(ticket_id)
        if not await self.deps.modmail_repo.unclaim(record.id):
            return LifecycleOutcome(OUTCOME_NOT_CLAIMED, "This ticket is not claimed.", record)

        LOGGER.info("Ticket unclaimed. staff=%s", staff.id, extra={"ticket_id": record.id})
        record.claimed_by = None
        thread = await self._thread(record)
        await self._rename(record, thread, None)
        await self.update_starter_status(record, STATUS_UNCLAIMED)
        return LifecycleOutcome(OUTCOME_OK, "Ticket unclaimed.", record)

    async def resolve(self, ticket_id: str, staff: discord.Member) -> LifecycleOutcome:
        record = await self._require(ticket_id)
        if record.is_closed:
            return LifecycleOutcome(OUTCOME_ALREADY_CLOSED, "This ticket is already closed.", record)
        if record.is_resolved:
            return LifecycleOutcome(OUTCOME_ALREADY_RESOLVED, "This ticket is already marked as resolved.", record)

        _, category = await self._routing(record)
        hours = category.resolve_auto_close_hours if category else DEFAULT_RESOLVE_AUTO_CLOSE_HOURS
        auto_close_at = to_iso(utc_now() + timedelta(hours=hours))
        assert auto_close_at is not None
        if not await self.deps.modmail_repo.mark_resolved(record.id, staff.id, auto_close_at):
            current = await self._require(ticket_id)
            if current.is_resolved:
                return LifecycleOutcome(
                    OUTCOME_ALREADY_RESOLVED, "This ticket is already marked as resolved.", current
                )
            return LifecycleOutcome(OUTCOME_ALREADY_CLOSED, "This ticket is already closed.", current)

        LOGGER.info("Ticket resolved. staff=%s hours=%s", staff.id, hours, extra={"ticket_id": record.id})
        view = await build_resolved_view(self.deps.components, record.id)
        await self._dm(record, embed=resolved_embed(hours), view=view)
        thread = await self._thread(record)
        await self._post(
            thread,
            embed=staff_embed(
                "Thread Resolved",
                f"{staff.mention} marked this ticket as resolved. "
                f"It will close automatically in **{hours} hours** unless the user asks for more help.",
            ),
        )
        await self.update_starter_status(record, STATUS_RESOLVED)
        return LifecycleOutcome(OUTCOME_OK, "Ticket marked as resolved.", await self._require(ticket_id))

    async def reopen(
        self,
        user_id: int,
        guild_id: int | None = None,
        ticket_id: str | None = None,
        resolved_message: discord.Message | None = None,
    ) -> LifecycleOutcome:
        record: ModmailRecord | None
        if ticket_id:
            record = await self.deps.modmail_repo.get_by_id(ticket_id)
        elif guild_id is not None:
            record = await self.deps.modmail_repo.get_active_for_user(guild_id, user_id)
        else:
            active = await self.deps.modmail_repo.list_active_for_user(user_id)
            record = active[0] if active else None
        if record is None or record.user_id != user_id or record.is_closed:
            raise TicketNotFoundError()
        if not record.is_resolved:
            return LifecycleOutcome(OUTCOME_ALREADY_OPEN, "Your ticket is already open. Staff will reply soon.", record)

        if not await self.deps.modmail_repo.reopen(record.id):
            current = await self.deps.modmail_repo.get_by_id(record.id)
            if current is None or current.is_closed:
                raise TicketNotFoundError()
            return LifecycleOutcome(
                OUTCOME_ALREADY_OPEN, "Your ticket is already open. Staff will reply soon.", current
            )

        LOGGER.info("Ticket reopened by user", extra={"ticket_id": record.id, "user_id": user_id})
        thread = await self._thread(record)
        await self._post(thread, embed=additional_help_embed(record.user_display_name))
        status = f"Claimed by <@{record.claimed_by}>" if record.claimed_by else STATUS_UNCLAIMED
        await self.update_starter_status(record, status)
        if resolved_message is not None:
            try:
                await resolved_message.edit(view=None)
            except discord.HTTPException:
                LOGGER.debug("Could not clear resolved buttons for ticket %s", record.id)
        return LifecycleOutcome(
            OUTCOME_OK,
            "Your ticket has been reopened. Staff have been notified that you still need help.",
            await self.deps.modmail_repo.get_by_id(record.id),
        )

    async def close(
        self,
        ticket_id: str,
        closed_by: discord.abc.User,
        reason: str | None,
        final_message: str | None = None,
        banned: bool = False,
        closed_by_user: bool = False,
    ) -> LifecycleOutcome:
        record = await self._require(ticket_id)
        if record.is_closed:
            return LifecycleOutcome(OUTCOME_ALREADY_CLOSED, "This ticket is already closed.", record)
        if closed_by_user:
            reason = USER_CLOSE_RESOLVED_REASON if record.is_resolved else USER_CLOSE_REASON

        context = CloseContext(modmail=record, closed_by=closed_by.id, reason=reason)
        before = await self.deps.pipeline.execute(HOOK_BEFORE_CLOSING, context)
        if before.stopped:
            LOGGER.info("Close vetoed by hook %s", before.stopped_at, extra={"ticket_id": record.id})
            return LifecycleOutcome(
                OUTCOME_VETOED, before.user_message or "This ticket cannot be closed right now.", record
            )
        reason = context.reason

        thread = await self._thread(record)
        dm_failed = False
        guild_name = self._guild_name(record.guild_id)
        if final_message:
            overhead = len(format_staff_reply("", closed_by.display_name, guild_name))
            dm_message = await self._dm(
                record,
                content=format_staff_reply(
                    truncate(final_message, MESSAGE_CHAR_LIMIT - overhead), closed_by.display_name, guild_name
                ),
            )
            dm_failed = dm_message is None
            logged = await self._post(
                thread,
                content=truncate(f"**[Final Message]** {final_message}", MESSAGE_CHAR_LIMIT),
                allowed_mentions=discord.AllowedMentions.none(),
            )
            if dm_message is not None:
                await self.deps.modmail_repo.append_message(
                    ModmailMessage(
                        message_id=str(uuid4()),
                        modmail_id=record.id,
                        author_id=closed_by.id,
                        author_type=AUTHOR_STAFF,
                        context=CONTEXT_BOTH,
                        content=final_message,
                        workspace_message_id=logged.id if logged else None,
                        dm_message_id=dm_message.id,
                    )
                )

        if not await self.deps.modmail_repo.close(record.id, closed_by.id, reason):
            return LifecycleOutcome(OUTCOME_ALREADY_CLOSED, "This ticket is already closed.", record)
        LOGGER.info(
            "Ticket closed. by=%s banned=%s",
            closed_by.id,
            banned,
            extra={"ticket_id": record.id, "guild_id": record.guild_id},
        )

        if not banned:
            if await self._dm(record, embed=user_closed_embed(reason, closed_by.display_name)) is None:
                dm_failed = True
        await self._post(thread, embed=thread_closed_embed(reason, closed_by.mention, dm_failed))

        closed = await self._require(ticket_id)
        await self.finalize_thread(closed, banned=banned)
        await self.deps.pipeline.execute(
            HOOK_AFTER_CLOSING, CloseContext(modmail=closed, closed_by=closed_by.id, reason=reason)
        )
        return LifecycleOutcome(OUTCOME_OK, "Ticket closed.", closed, dm_failed=dm_failed)

    async def close_by_user(self, ticket_id: str, user: discord.abc.User) -> LifecycleOutcome:
        record = await self._require(ticket_id)
        if record.user_id != user.id:
            raise TicketNotFoundError()
        return await self.close(ticket_id, user, None, closed_by_user=True)

    async def ban(
        self,
        ticket_id: str,
        staff: discord.Member,
        reason: str | None,
        duration: str = "permanent",
    ) -> LifecycleOutcome:
        """Close the ticket and ban its user.

        A vetoed close leaves the user unbanned. An already closed ticket
        still gets the ban and the ban notice.
        """
        record = await self._require(ticket_id)
        self.deps.ban_service.validate_duration(duration)
        outcome = await self.close(
            ticket_id, staff, f"User banned: {reason or 'No reason provided'}", banned=True
        )
        if outcome.status == OUTCOME_VETOED:
            return outcome

        ban = await self.deps.ban_service.create_ban(record.guild_id, record.user_id, reason, staff.id, duration)
        dm_failed = outcome.dm_failed
        notice = banned_embed(self._guild_name(record.guild_id), reason, ban.expires_at)
        if await self._dm(record, embed=notice) is None:
            dm_failed = True
        message = (
            "User banned from modmail and ticket closed."
            if outcome.changed
            else "User banned from modmail. The ticket was already closed."
        )
        return LifecycleOutcome(OUTCOME_OK, message, outcome.ticket, dm_failed=dm_failed)

    async def finalize_thread(self, record: ModmailRecord, banned: bool = False) -> None:
        await self.update_starter_status(
            record, STATUS_CLOSED_BANNED if banned else STATUS_CLOSED, disable_controls=True
        )
        thread = await self._thread(record)
        if thread is None:
            return
        _, category = await self._routing(record)
        kwargs: dict[str, object] = {"locked": True, "archived": True}
        if category and isinstance(thread.parent, discord.ForumChannel):
            tags = [tag for tag in thread.applied_tags if tag.id != category.open_tag_id]
            closed_tag = thread.parent.get_tag(category.closed_tag_id) if category.closed_tag_id else None
            if closed_tag is not None and closed_tag not in tags:
                tags.append(closed_tag)
            kwargs["applied_tags"] = tags[:5]
        try:
            await thread.edit(**kwargs)  # type: ignore[arg-type]
        except discord.HTTPException:
            LOGGER.warning("Could not archive thread %s", thread.id, extra={"ticket_id": record.id})

    async def close_due_resolved(self) -> int:
        """Close resolved tickets whose auto-close horizon has passed."""
        closer = self.deps.client.user
        if closer is None:
            return 0
        closed = 0
        for record in await self.deps.modmail_repo.list_due_resolved(to_iso(utc_now()) or ""):
            outcome = await self.close(record.id, closer, AUTO_CLOSE_REASON)
            if outcome.changed:
                closed += 1
        return closed

    async def _sweep_configs(self) -> list[GuildModmailConfig]:
        configs: list[GuildModmailConfig] = []
        for guild_id in await self.deps.guild_repo.list_enabled_guild_ids():
            config = await self.deps.config_service.get_config(guild_id)
            if config is not None:
                configs.append(config)
        return configs

    async def warn_inactive(self) -> int:
        """Remind users of idle open tickets once, in DM and in the thread."""
        now = utc_now()
        warned = 0
        for config in await self._sweep_configs():
            if config.auto_close_warning_hours <= 0:
                continue
            idle_since = to_iso(now - timedelta(hours=config.auto_close_warning_hours)) or ""
            for record in await self.deps.modmail_repo.list_warning_candidates(config.guild_id, idle_since):
                idle_hours = _idle_hours(record, now)
                closes_in: str | None = None
                if config.auto_close_hours > 0:
                    remaining = config.auto_close_hours - idle_hours
                    # Past the close horizon the inactivity close takes over.
                    if remaining <= 0:
                        continue
                    closes_in = format_hours(remaining)
                if not await self.deps.modmail_repo.mark_warned(record.id, to_iso(now) or ""):
                    continue

                inactive_for = format_hours(idle_hours)
                view = await build_user_close_view(self.deps.components, record.id)
                await self._dm(record, embed=inactivity_notice_embed(inactive_for, closes_in), view=view)
                thread = await self._thread(record)
                await self._post(thread, embed=auto_close_warning_embed(inactive_for, closes_in))
                LOGGER.info("Inactivity warning sent", extra={"ticket_id": record.id, "guild_id": record.guild_id})
                warned += 1
        return warned

    async def close_inactive(self) -> int:
        """Close open tickets whose user has been silent past the guild's horizon."""
        closer = self.deps.client.user
        if closer is None:
            return 0
        now = utc_now()
        closed = 0
        for config in await self._sweep_configs():
            if config.auto_close_hours <= 0:
                continue
            idle_since = to_iso(now - timedelta(hours=config.auto_close_hours)) or ""
            reason = INACTIVITY_CLOSE_REASON.format(hours=config.auto_close_hours)
            for record in await self.deps.modmail_repo.list_idle_open(config.guild_id, idle_since):
                outcome = await self.close(record.id, closer, reason)
                if outcome.changed:
                    closed += 1
        return closed


def _idle_hours(record: ModmailRecord, now: datetime) -> float:
    activity = [
        stamp
        for stamp in (
            from_iso(record.last_user_activity_at) or from_iso(record.created_at),
            from_iso(record.last_staff_activity_at),
        )
        if stamp is not None
    ]
    if not activity:
        return 0.0
    return (now - max(activity)).total_seconds() / 3600
