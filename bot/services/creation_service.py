from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

import discord

from core.errors import (
    AlreadyOpenError,
    BannedError,
    CategoryNotFoundError,
    ModmailError,
    NoCategoriesError,
    NotConfiguredError,
    RecordCreationError,
    ThreadCreationError,
)
from database.models import (
    FormResponse,
    GuildModmailConfig,
    ModmailCategory,
    ModmailMessage,
    ModmailRecord,
)
from services.deps import ModmailServiceDeps
from services.hook_pipeline import (
    HOOK_AFTER_CREATION,
    HOOK_BEFORE_CREATION,
    AfterCreationContext,
    BeforeCreationContext,
)
from services.relay_service import RelayService
from utils.attachments import to_attachment_record
from utils.constants import (
    AUTHOR_SYSTEM,
    AUTHOR_USER,
    CONTEXT_DM,
    CONTEXT_THREAD,
    MESSAGE_CHAR_LIMIT,
    REACTION_DELIVERED,
)
from utils.embeds import starter_embed
from utils.formatting import build_form_response_chunks, build_thread_name, sanitize_mentions, truncate
from views.staff_controls import build_staff_controls
from views.user_controls import build_user_close_view

LOGGER = logging.getLogger(__name__)

INITIAL_ATTACHMENT_SOURCE = "from the user's initial message"
NO_GUILDS_MESSAGE = "None of the servers you share with me accept modmail right now."
GENERIC_START_FAILURE = "Unable to start modmail process. Please try again."
SUGGESTION_SOURCE_MISSING = "Your original message could not be found. Please send your request again."


@dataclass(slots=True)
class CreationResult:
    success: bool
    ticket_id: str | None = None
    thread_id: int | None = None
    ticket_number: int | None = None
    welcome_message_sent: bool = False
    error: str | None = None
    user_message: str | None = None


class CreationService:
    def __init__(self, deps: ModmailServiceDeps, relay: RelayService) -> None:
        self.deps = deps
        self.relay = relay

    async def available_guild_ids(self, user: discord.abc.User) -> list[int]:
        mutual = [guild.id for guild in getattr(user, "mutual_guilds", [])]
        return await self.deps.config_service.enabled_guild_ids(mutual)

    async def start_from_dm(
        self,
        message: discord.Message,
        queued_message_ids: Sequence[int] = (),
    ) -> CreationResult:
        """Run the setup flow for a DM from a user without an active ticket."""
        context = BeforeCreationContext(
            user_id=message.author.id,
            user_display_name=message.author.display_name,
            message_content=message.content,
            source_message=message,
            dm_channel=message.channel,
            available_guild_ids=await self.available_guild_ids(message.author),
        )
        pipeline_result = await self.deps.pipeline.execute(HOOK_BEFORE_CREATION, context)

        if not pipeline_result.success:
            text = pipeline_result.user_message or GENERIC_START_FAILURE
            await self._notify(context, text)
            return CreationResult(success=False, error=pipeline_result.error, user_message=text)
        if pipeline_result.stopped or context.prevent_creation:
            LOGGER.info(
                "Creation stopped by hook %s", pipeline_result.stopped_at, extra={"user_id": context.user_id}
            )
            return CreationResult(success=False, error="stopped", user_message=pipeline_result.user_message)

        if context.selected_guild_id is None:
            if len(context.available_guild_ids) != 1:
                await self._notify(context, NO_GUILDS_MESSAGE)
                return CreationResult(success=False, error="no_guild", user_message=NO_GUILDS_MESSAGE)
            context.selected_guild_id = context.available_guild_ids[0]

        result = await self.create_ticket(
            guild_id=context.selected_guild_id,
            user_id=message.author.id,
            user_display_name=message.author.display_name,
            initial_message=message,
            category_id=context.selected_category_id,
            form_responses=context.form_responses,
            queued_message_ids=queued_message_ids,
        )
        if not result.success:
            await self._notify(context, result.user_message or GENERIC_START_FAILURE)
            return result

        view = await build_user_close_view(self.deps.components, result.ticket_id or "")
        # Editing the shared message would replace the AI answer the user is reading.
        await self._notify(
            context,
            self._created_text(context.selected_guild_id),
            view=view,
            fresh=context.ai_response_sent,
        )
        return result

    async def continue_after_suggestion(
        self,
        user: discord.abc.User,
        channel: discord.abc.Messageable,
        metadata: dict[str, Any],
    ) -> CreationResult:
        """Open the ticket a user still wants after an AI answer held creation back."""
        try:
            initial_message = await channel.fetch_message(int(metadata["message_id"]))
        except (discord.HTTPException, KeyError, TypeError, ValueError):
            LOGGER.info("Original request of user %s is gone", user.id)
            await self._send(channel, user.id, SUGGESTION_SOURCE_MISSING)
            return CreationResult(success=False, error="message_missing", user_message=SUGGESTION_SOURCE_MISSING)

        guild_id = int(metadata["guild_id"])
        result = await self.create_ticket(
            guild_id=guild_id,
            user_id=user.id,
            user_display_name=user.display_name,
            initial_message=initial_message,
            category_id=metadata.get("category_id"),
            form_responses=[FormResponse(**item) for item in metadata.get("form_responses", [])],
        )
        if not result.success:
            await self._send(channel, user.id, result.user_message or GENERIC_START_FAILURE)
            return result
        view = await build_user_close_view(self.deps.components, result.ticket_id or "")
        await self._send(channel, user.id, self._created_text(guild_id), view=view)
        return result

    def _created_text(self, guild_id: int) -> str:
        guild = self.deps.client.get_guild(guild_id)
        return (
            f"✅ Your message has been sent to the staff of **{guild.name if guild else 'the server'}**. "
            "They will reply to you here."
        )

    async def _send(
        self,
        channel: discord.abc.Messageable | None,
        user_id: int,
        text: str,
        view: discord.ui.View | None = None,
    ) -> None:
        if channel is None:
            return
        try:
            await channel.send(text, view=view or discord.utils.MISSING)
        except discord.HTTPException:
            LOGGER.warning("Could not notify user %s", user_id)

    async def _notify(
        self,
        context: BeforeCreationContext,
        text: str,
        view: discord.ui.View | None = None,
        fresh: bool = False,
    ) -> None:
        if context.shared_message is None or fresh:
            await self._send(context.dm_channel, context.user_id, text, view=view)
            return
        try:
            await context.shared_message.edit(content=text, view=view)
        except discord.HTTPException:
            LOGGER.warning("Could not notify user %s", context.user_id)

    @staticmethod
    def _pick_category(config: GuildModmailConfig, category_id: str | None) -> ModmailCategory | None:
        for candidate in (category_id, config.default_category_id):
            category = config.get_category(candidate)
            if category is not None and category.enabled:
                return category
        enabled = config.enabled_categories()
        return enabled[0] if enabled else None

    async def create_ticket(
        self,
        guild_id: int,
        user_id: int,
        user_display_name: str,
        initial_message: discord.Message,
        category_id: str | None = None,
        form_responses: list[FormResponse] | None = None,
        queued_message_ids: Sequence[int] | None = None,
    ) -> CreationResult:
        try:
            config = await self.deps.config_service.get_config(guild_id)
            if config is None or not config.enabled:
                raise NotConfiguredError()
            if await self.deps.ban_service.is_banned(guild_id, user_id):
                raise BannedError()
            if await self.deps.modmail_repo.get_active_for_user(guild_id, user_id) is not None:
                raise AlreadyOpenError()
            if not config.enabled_categories():
                raise NoCategoriesError()
            category = self._pick_category(config, category_id)
            if category is None:
                raise CategoryNotFoundError()

            record = await self._create_record(
                config, category, user_id, user_display_name, initial_message, form_responses or []
            )
            thread = await self._create_thread(config, category, record, initial_message.author)
        except ModmailError as exc:
            LOGGER.info(
                "Ticket creation failed: %s", exc.code, extra={"guild_id": guild_id, "user_id": user_id}
            )
            return CreationResult(success=False, error=exc.code, user_message=exc.user_message)

        try:
            await self.deps.modmail_repo.set_thread_id(record.id, thread.id)
        except Exception:
            LOGGER.exception("Could not link thread %s; rolling back", thread.id, extra={"ticket_id": record.id})
            await self._discard_thread(thread)
            await self._discard_record(record.id)
            failure = ThreadCreationError()
            return CreationResult(success=False, error=failure.code, user_message=failure.user_message)
        record.thread_id = str(thread.id)
        LOGGER.info(
            "Ticket #%s created in thread %s",
            record.ticket_number,
            thread.id,
            extra={"ticket_id": record.id, "guild_id": guild_id},
        )

        welcome_sent = await self._send_welcome(record, thread, initial_message)
        await self._post_form_responses(record, thread)
        await self._relay_queued(record, initial_message, queued_message_ids or ())
        await self.deps.pipeline.execute(HOOK_AFTER_CREATION, AfterCreationContext(modmail=record, thread=thread))

        return CreationResult(
            success=True,
            ticket_id=record.id,
            thread_id=thread.id,
            ticket_number=record.ticket_number,
            welcome_message_sent=welcome_sent,
        )

    async def _create_record(
        self,
        config: GuildModmailConfig,
        category: ModmailCategory,
        user_id: int,
        user_display_name: str,
        initial_message: discord.Message,
        form_responses: list[FormResponse],
    ) -> ModmailRecord:
        record_id = str(uuid4())
        try:
            ticket_number = await self.deps.guild_repo.next_ticket_number(config.guild_id)
            record = ModmailRecord(
                id=record_id,
                guild_id=config.guild_id,
                user_id=user_id,
                user_display_name=user_display_name,
                ticket_number=ticket_number,
                category_id=category.id,
                form_responses=list(form_responses),
                messages=[
                    ModmailMessage(
                        message_id=str(uuid4()),
                        modmail_id=record_id,
                        author_id=user_id,
                        author_type=AUTHOR_USER,
                        context=CONTEXT_DM,
                        content=initial_message.content,
                        dm_message_id=initial_message.id,
                        attachments=[to_attachment_record(a) for a in initial_message.attachments],
                    )
                ],
            )
            await self.deps.modmail_repo.create(record)
        except Exception as exc:
            LOGGER.exception("Could not store ticket record", extra={"guild_id": config.guild_id, "user_id": user_id})
            await self._discard_record(record_id)
            try:
                existing = await self.deps.modmail_repo.get_active_for_user(config.guild_id, user_id)
            except Exception:
                LOGGER.exception("Could not check for a concurrent ticket", extra={"user_id": user_id})
                raise RecordCreationError() from exc
            # A concurrent creation for the same user loses on the single-open index.
            if existing is not None:
                raise AlreadyOpenError() from exc
            raise RecordCreationError() from exc
        return record

    async def _discard_record(self, record_id: str) -> None:
        try:
            await self.deps.modmail_repo.delete(record_id)
        except Exception:
            LOGGER.exception("Could not remove ticket record", extra={"ticket_id": record_id})

    async def _discard_thread(self, thread: discord.Thread) -> None:
        try:
            await thread.delete()
        except discord.HTTPException:
            LOGGER.warning("Could not delete orphaned thread %s", thread.id)

    async def _forum(self, category: ModmailCategory) -> discord.ForumChannel | None:
        if not category.forum_channel_id:
            return None
        channel = self.deps.client.get_channel(category.forum_channel_id)
        if channel is None:
            try:
                channel = await self.deps.client.fetch_channel(category.forum_channel_id)
            except discord.HTTPException:
                return None
        return channel if isinstance(channel, discord.ForumChannel) else None

    async def _create_thread(
        self,
        config: GuildModmailConfig,
        category: ModmailCategory,
        record: ModmailRecord,
        user: discord.abc.User,
    ) -> discord.Thread:
        try:
            forum = await self._forum(category)
            if forum is None:
                raise ThreadCreationError()
            name = build_thread_name(
                config.thread_naming_pattern,
                number=record.ticket_number,
                username=record.user_display_name,
                category=category.name,
            )
            mentions = " ".join(f"<@&{role_id}>" for role_id in config.staff_role_ids_for(category))
            open_tag = forum.get_tag(category.open_tag_id) if category.open_tag_id else None
            created = await forum.create_thread(
                name=name,
                content=mentions or None,
                embed=starter_embed(record, user, category),
                view=await build_staff_controls(self.deps.components, record.id),
                applied_tags=[open_tag] if open_tag else discord.utils.MISSING,
                allowed_mentions=discord.AllowedMentions(everyone=False, users=False, roles=True),
            )
        except (discord.HTTPException, ThreadCreationError) as exc:
            LOGGER.exception("Thread creation failed; removing record", extra={"ticket_id": record.id})
            await self._discard_record(record.id)
            raise ThreadCreationError() from exc
        return created.thread

    async def _send_welcome(
        self, record: ModmailRecord, thread: discord.Thread, initial_message: discord.Message
    ) -> bool:
        entry = record.messages[0]
        try:
            source = await initial_message.channel.fetch_message(initial_message.id)
            content, attachments, author = source.content, source.attachments, source.author
        except discord.HTTPException:
            LOGGER.info("Initial DM is gone; relaying stored text", extra={"ticket_id": record.id})
            content, attachments, author = entry.content, [], initial_message.author
        if not content and not attachments:
            content = "*No message content*"

        sent = await self.relay.send_to_workspace(
            record, author, content, attachments, attachment_source=INITIAL_ATTACHMENT_SOURCE
        )
        if sent is not None:
            await self.deps.modmail_repo.mark_delivered(entry.message_id, sent.id)
            return True

        try:
            fallback = await thread.send(
                truncate(f"**{author.display_name}**: {sanitize_mentions(content)}", MESSAGE_CHAR_LIMIT),
                allowed_mentions=discord.AllowedMentions.none(),
            )
        except discord.HTTPException:
            LOGGER.warning("Welcome message could not be posted", extra={"ticket_id": record.id})
            return False
        await self.deps.modmail_repo.mark_delivered(entry.message_id, fallback.id)
        return True

    async def _post_form_responses(self, record: ModmailRecord, thread: discord.Thread) -> None:
        bot_id = self.deps.client.user.id if self.deps.client.user else 0
        for chunk in build_form_response_chunks(record.form_responses):
            try:
                posted = await thread.send(chunk, allowed_mentions=discord.AllowedMentions.none())
            except discord.HTTPException:
                LOGGER.warning("Could not post form responses", extra={"ticket_id": record.id})
                return
            await self.deps.modmail_repo.append_message(
                ModmailMessage(
                    message_id=str(uuid4()),
                    modmail_id=record.id,
                    author_id=bot_id,
                    author_type=AUTHOR_SYSTEM,
                    context=CONTEXT_THREAD,
                    content=chunk,
                    workspace_message_id=posted.id,
                )
            )

    async def _relay_queued(
        self, record: ModmailRecord, initial_message: discord.Message, queued_message_ids: Sequence[int]
    ) -> None:
        for message_id in queued_message_ids:
            try:
                queued = await initial_message.channel.fetch_message(message_id)
            except discord.HTTPException:
                LOGGER.info("Queued DM %s is gone", message_id, extra={"ticket_id": record.id})
                continue
            if await self.relay.relay_user_to_workspace(record.id, queued):
                try:
                    await queued.add_reaction(REACTION_DELIVERED)
                except discord.HTTPException:
                    LOGGER.debug("Could not react to queued DM %s", message_id)
