from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from uuid import uuid4

import discord

from database.models import GuildModmailConfig, ModmailCategory, ModmailMessage, ModmailRecord
from services.deps import ModmailServiceDeps
from utils.attachments import AttachmentPolicy, build_warning_text, filter_attachments, to_attachment_record
from utils.constants import (
    AUTHOR_STAFF,
    AUTHOR_USER,
    CONTEXT_BOTH,
    CONTEXT_THREAD,
    MESSAGE_CHAR_LIMIT,
    REACTION_DELIVERED,
    REACTION_FAILED,
    REACTION_PARTIAL,
    REACTION_STAFF_ONLY,
)
from utils.formatting import format_edited_content, format_staff_reply, sanitize_mentions, truncate

LOGGER = logging.getLogger(__name__)

USER_ATTACHMENT_SOURCE = "from the user"
DM_FAILURE_REPLY = "Failed to send message. User may have DMs disabled or blocked the bot."

CHANGE_OK = "ok"
CHANGE_NOT_FOUND = "not_found"
CHANGE_IGNORED = "ignored"


@dataclass(slots=True)
class MessageChangeOutcome:
    status: str
    entry: ModmailMessage | None = None

    @property
    def changed(self) -> bool:
        return self.status == CHANGE_OK


async def _react(message: discord.Message, emoji: str) -> None:
    try:
        await message.add_reaction(emoji)
    except discord.HTTPException:
        LOGGER.debug("Could not react %s on message %s", emoji, message.id)


async def _to_files(attachments: Sequence[discord.Attachment]) -> list[discord.File]:
    return [await attachment.to_file(spoiler=attachment.is_spoiler()) for attachment in attachments]


class RelayService:
    def __init__(self, deps: ModmailServiceDeps) -> None:
        self.deps = deps

    async def _routing(
        self, record: ModmailRecord
    ) -> tuple[GuildModmailConfig, ModmailCategory] | None:
        config = await self.deps.config_service.get_config(record.guild_id)
        if config is None:
            return None
        category = config.get_category(record.category_id)
        if category is None:
            return None
        return config, category

    async def _resolve_user(self, user_id: int) -> discord.User | None:
        user = self.deps.client.get_user(user_id)
        if user is not None:
            return user
        try:
            return await self.deps.client.fetch_user(user_id)
        except discord.HTTPException:
            LOGGER.warning("Could not fetch user %s", user_id)
            return None

    async def send_to_workspace(
        self,
        record: ModmailRecord,
        author: discord.abc.User,
        content: str,
        attachments: Sequence[discord.Attachment] = (),
        attachment_source: str = USER_ATTACHMENT_SOURCE,
    ) -> discord.WebhookMessage | None:
        """Post a user's message into the ticket thread through the category webhook.

        Returns the webhook message, or None when nothing could be delivered.
        """
        routing = await self._routing(record)
        if routing is None or not record.has_thread:
            return None
        config, category = routing
        webhook = await self.deps.webhooks.get_webhook(category)
        if webhook is None:
            LOGGER.error("No relay webhook for ticket %s", record.id, extra={"ticket_id": record.id})
            return None

        filtered = filter_attachments(
            attachments,
            AttachmentPolicy(allow_attachments=config.allow_attachments, max_size_mb=config.max_attachment_size_mb),
        )
        thread = discord.Object(id=record.thread_id_int)
        text = truncate(sanitize_mentions(content), MESSAGE_CHAR_LIMIT)
        try:
            files = await _to_files(filtered.forwardable)
            if not text and not files:
                text = "*No message content*"
            sent = await webhook.send(
                content=text or discord.utils.MISSING,
                username=truncate(author.display_name, 80),
                avatar_url=author.display_avatar.url,
                files=files or discord.utils.MISSING,
                thread=thread,
                allowed_mentions=discord.AllowedMentions.none(),
                wait=True,
            )
        except discord.HTTPException:
            LOGGER.exception("Webhook relay failed for ticket %s", record.id, extra={"ticket_id": record.id})
            return None

        warning = build_warning_text(filtered.warnings, attachment_source)
        if warning:
            try:
                await webhook.send(content=warning, username="Modmail", thread=thread)
            except discord.HTTPException:
                LOGGER.warning("Could not post attachment warning for ticket %s", record.id)
        return sent

    async def relay_user_to_workspace(
        self,
        ticket_id: str,
        message: discord.Message,
        content: str | None = None,
    ) -> bool:
        record = await self.deps.modmail_repo.get_by_id(ticket_id)
        if record is None or not record.has_thread or record.is_closed:
            return False

        text = content if content is not None else message.content
        sent = await self.send_to_workspace(record, message.author, text, message.attachments)
        if sent is None:
            return False

        await self.deps.modmail_repo.append_message(
            ModmailMessage(
                message_id=str(uuid4()),
                modmail_id=record.id,
                author_id=message.author.id,
                author_type=AUTHOR_USER,
                context=CONTEXT_BOTH,
                content=text,
                workspace_message_id=sent.id,
                dm_message_id=message.id,
                attachments=[to_attachment_record(attachment) for attachment in message.attachments],
            )
        )
        return True

    async def relay_workspace_to_user(
        self,
        ticket_id: str,
        message: discord.Message,
        staff: discord.abc.User,
    ) -> bool:
        record = await self.deps.modmail_repo.get_by_id(ticket_id)
        if record is None or record.is_closed:
            return False

        attachment_records = [to_attachment_record(attachment) for attachment in message.attachments]
        if message.content.lstrip().startswith(self.deps.settings.staff_only_prefix):
            await _react(message, REACTION_STAFF_ONLY)
            await self.deps.modmail_repo.append_message(
                ModmailMessage(
                    message_id=str(uuid4()),
                    modmail_id=record.id,
                    author_id=staff.id,
                    author_type=AUTHOR_STAFF,
                    context=CONTEXT_THREAD,
                    content=message.content,
                    workspace_message_id=message.id,
                    attachments=attachment_records,
                    is_staff_only=True,
                )
            )
            return True

        filtered = filter_attachments(
            message.attachments,
            AttachmentPolicy(allow_attachments=True, max_size_mb=self.deps.settings.dm_attachment_limit_mb),
        )
        warning = build_warning_text(filtered.warnings)
        if warning:
            try:
                await message.reply(warning, mention_author=False)
            except discord.HTTPException:
                LOGGER.warning("Could not post attachment warning for ticket %s", record.id)

        if not message.content.strip() and not filtered.forwardable:
            await _react(message, REACTION_PARTIAL)
            return False

        guild_name = message.guild.name if message.guild else "the server"
        overhead = len(format_staff_reply("", staff.display_name, guild_name))
        rendered = format_staff_reply(
            truncate(message.content, MESSAGE_CHAR_LIMIT - overhead), staff.display_name, guild_name
        )

        user = await self._resolve_user(record.user_id)
        dm_message: discord.Message | None = None
        if user is not None:
            try:
                files = await _to_files(filtered.forwardable)
                dm_message = await user.send(content=rendered, files=files or None)
            except discord.HTTPException:
                LOGGER.warning("DM delivery failed for ticket %s", record.id, extra={"ticket_id": record.id})
        if dm_message is None:
            await _react(message, REACTION_FAILED)
            try:
                await message.reply(DM_FAILURE_REPLY, mention_author=False)
            except discord.HTTPException:
                LOGGER.debug("Could not reply with delivery failure for ticket %s", record.id)
            return False

        await _react(message, REACTION_PARTIAL if filtered.skipped_any else REACTION_DELIVERED)
        await self.deps.modmail_repo.append_message(
            ModmailMessage(
                message_id=str(uuid4()),
                modmail_id=record.id,
                author_id=staff.id,
                author_type=AUTHOR_STAFF,
                context=CONTEXT_BOTH,
                content=message.content,
                workspace_message_id=message.id,
                dm_message_id=dm_message.id,
                attachments=attachment_records,
            )
        )
        return True

    async def handle_edit(
        self,
        ticket_id: str,
        platform_message_id: int,
        workspace_side: bool,
        new_content: str,
    ) -> MessageChangeOutcome:
        entry = await self.deps.modmail_repo.find_message(ticket_id, platform_message_id, workspace_side)
        if entry is None:
            return MessageChangeOutcome(CHANGE_NOT_FOUND)
        if entry.is_deleted or entry.content == new_content:
            return MessageChangeOutcome(CHANGE_IGNORED, entry)
        updated = await self.deps.modmail_repo.record_edit(entry.message_id, new_content)
        if updated is None:
            return MessageChangeOutcome(CHANGE_NOT_FOUND)
        return MessageChangeOutcome(CHANGE_OK, updated)

    async def handle_delete(
        self,
        ticket_id: str,
        platform_message_id: int,
        workspace_side: bool,
        deleted_by: int | None,
    ) -> MessageChangeOutcome:
        entry = await self.deps.modmail_repo.find_message(ticket_id, platform_message_id, workspace_side)
        if entry is None:
            return MessageChangeOutcome(CHANGE_NOT_FOUND)
        updated = await self.deps.modmail_repo.record_delete(entry.message_id, deleted_by)
        if updated is None:
            return MessageChangeOutcome(CHANGE_IGNORED, entry)
        return MessageChangeOutcome(CHANGE_OK, updated)

    async def _webhook_for(self, record: ModmailRecord) -> discord.Webhook | None:
        routing = await self._routing(record)
        if routing is None:
            return None
        return await self.deps.webhooks.get_webhook(routing[1])

    async def mirror_user_edit(self, record: ModmailRecord, entry: ModmailMessage) -> bool:
        if entry.is_staff_only or entry.workspace_message_id is None or not record.has_thread:
            return False
        webhook = await self._webhook_for(record)
        if webhook is None:
            return False
        content = format_edited_content(
            sanitize_mentions(entry.content), sanitize_mentions(entry.original_content or "")
        )
        try:
            await webhook.edit_message(
                entry.workspace_message_id,
                content=truncate(content, MESSAGE_CHAR_LIMIT),
                thread=discord.Object(id=record.thread_id_int),
            )
        except discord.HTTPException:
            LOGGER.warning("Could not mirror user edit for ticket %s", record.id, extra={"ticket_id": record.id})
            return False
        return True

    async def mirror_user_delete(self, record: ModmailRecord, entry: ModmailMessage) -> bool:
        if entry.is_staff_only or entry.workspace_message_id is None or not record.has_thread:
            return False
        webhook = await self._webhook_for(record)
        if webhook is None:
            return False
        content = f"~~{sanitize_mentions(entry.content)}~~" if entry.content else "~~*deleted*~~"
        try:
            await webhook.edit_message(
                entry.workspace_message_id,
                content=truncate(content, MESSAGE_CHAR_LIMIT),
                thread=discord.Object(id=record.thread_id_int),
            )
        except discord.HTTPException:
            LOGGER.warning("Could not mirror user delete for ticket %s", record.id, extra={"ticket_id": record.id})
            return False
        return True

    async def _dm_copy(self, record: ModmailRecord, entry: ModmailMessage) -> discord.PartialMessage | None:
        if entry.is_staff_only or entry.dm_message_id is None:
            return None
        user = await self._resolve_user(record.user_id)
        if user is None:
            return None
        try:
            channel = user.dm_channel or await user.create_dm()
        except discord.HTTPException:
            return None
        return channel.get_partial_message(entry.dm_message_id)

    async def mirror_staff_edit(
        self, record: ModmailRecord, entry: ModmailMessage, staff_name: str, guild_name: str
    ) -> bool:
        dm_copy = await self._dm_copy(record, entry)
        if dm_copy is None:
            return False
        overhead = len(format_staff_reply("", staff_name, guild_name))
        try:
            await dm_copy.edit(
                content=format_staff_reply(
                    truncate(entry.content, MESSAGE_CHAR_LIMIT - overhead), staff_name, guild_name
                )
            )
        except discord.HTTPException:
            LOGGER.warning("Could not mirror staff edit for ticket %s", record.id, extra={"ticket_id": record.id})
            return False
        return True

    async def mirror_staff_delete(self, record: ModmailRecord, entry: ModmailMessage) -> bool:
        dm_copy = await self._dm_copy(record, entry)
        if dm_copy is None:
            return False
        try:
            await dm_copy.delete()
        except discord.HTTPException:
            LOGGER.warning("Could not mirror staff delete for ticket %s", record.id, extra={"ticket_id": record.id})
            return False
        return True

