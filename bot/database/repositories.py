from __future__ import annotations

import json
from typing import Any

from database.base import Database
from database.models import (
    AttachmentRecord,
    FormField,
    FormResponse,
    GuildModmailConfig,
    ModmailBan,
    ModmailCategory,
    ModmailMessage,
    ModmailMetrics,
    ModmailRecord,
)
from utils.constants import (
    AUTHOR_STAFF,
    AUTHOR_SYSTEM,
    AUTHOR_USER,
    CONTEXT_BOTH,
    MODMAIL_STATUS_CLOSED,
    MODMAIL_STATUS_OPEN,
    MODMAIL_STATUS_RESOLVED,
)
from utils.time import from_iso, now_iso, utc_now


def _json_load(value: str | None, default: Any) -> Any:
    if value is None:
        return default
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return default


def _json_dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=True, separators=(",", ":"))


def _opt_int(value: Any) -> int | None:
    return int(value) if value is not None else None


class GuildConfigRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def ensure_guild(self, guild_id: int) -> None:
        await self.db.execute(
            """
            INSERT INTO modmail_guild_config(guild_id)
            VALUES (?)
            ON CONFLICT(guild_id) DO NOTHING;
            """,
            [guild_id],
        )

    async def upsert(self, config: GuildModmailConfig) -> None:
        await self.db.execute(
            """
            INSERT INTO modmail_guild_config(
                guild_id, enabled, default_category_id, global_staff_role_ids_json,
                thread_naming_pattern, allow_attachments, max_attachment_size_mb,
                ai_enabled, ai_prevent_creation, ai_system_prompt, ai_documentation_url,
                auto_close_warning_hours, auto_close_hours
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(guild_id) DO UPDATE SET
                enabled = excluded.enabled,
                default_category_id = excluded.default_category_id,
                global_staff_role_ids_json = excluded.global_staff_role_ids_json,
                thread_naming_pattern = excluded.thread_naming_pattern,
                allow_attachments = excluded.allow_attachments,
                max_attachment_size_mb = excluded.max_attachment_size_mb,
                ai_enabled = excluded.ai_enabled,
                ai_prevent_creation = excluded.ai_prevent_creation,
                ai_system_prompt = excluded.ai_system_prompt,
                ai_documentation_url = excluded.ai_documentation_url,
                auto_close_warning_hours = excluded.auto_close_warning_hours,
                auto_close_hours = excluded.auto_close_hours,
                updated_at = CURRENT_TIMESTAMP;
            """,
            [
                config.guild_id,
                config.enabled,
                config.default_category_id,
                _json_dump(config.global_staff_role_ids),
                config.thread_naming_pattern,
                config.allow_attachments,
                config.max_attachment_size_mb,
                config.ai_enabled,
                config.ai_prevent_creation,
                config.ai_system_prompt,
                config.ai_documentation_url,
                config.auto_close_warning_hours,
                config.auto_close_hours,
            ],
        )

    async def get(self, guild_id: int) -> GuildModmailConfig | None:
        row = await self.db.fetchone(
            "SELECT * FROM modmail_guild_config WHERE guild_id = ?;",
            [guild_id],
        )
        if not row:
            return None
        return GuildModmailConfig(
            guild_id=int(row["guild_id"]),
            enabled=bool(row["enabled"]),
            default_category_id=row["default_category_id"],
            global_staff_role_ids=[int(x) for x in _json_load(row["global_staff_role_ids_json"], [])],
            thread_naming_pattern=row["thread_naming_pattern"],
            allow_attachments=bool(row["allow_attachments"]),
            max_attachment_size_mb=int(row["max_attachment_size_mb"]),
            ai_enabled=bool(row["ai_enabled"]),
            ai_prevent_creation=bool(row["ai_prevent_creation"]),
            ai_system_prompt=row["ai_system_prompt"],
            ai_documentation_url=row["ai_documentation_url"],
            auto_close_warning_hours=int(row["auto_close_warning_hours"]),
            auto_close_hours=int(row["auto_close_hours"]),
        )

    async def list_enabled_guild_ids(self) -> list[int]:
        rows = await self.db.fetchall(
            "SELECT guild_id FROM modmail_guild_config WHERE enabled = ?;",
            [True],
        )
        return [int(row["guild_id"]) for row in rows]

    async def next_ticket_number(self, guild_id: int) -> int:
        await self.ensure_guild(guild_id)
        row = await self.db.execute_returning(
            """
            UPDATE modmail_guild_config
            SET ticket_counter = ticket_counter + 1, updated_at = CURRENT_TIMESTAMP
            WHERE guild_id = ?
            RETURNING ticket_counter;
            """,
            [guild_id],
        )
        if row is None:
            raise RuntimeError(f"Guild config row missing for {guild_id}")
        return int(row["ticket_counter"])


class CategoryRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def upsert(self, category: ModmailCategory) -> None:
        await self.db.execute(
            """
            INSERT INTO modmail_categories (
                id, guild_id, name, description, emoji, enabled, staff_role_ids_json,
                form_fields_json, forum_channel_id, open_tag_id, closed_tag_id,
                resolve_auto_close_hours, priority, position
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                description = excluded.description,
                emoji = excluded.emoji,
                enabled = excluded.enabled,
                staff_role_ids_json = excluded.staff_role_ids_json,
                form_fields_json = excluded.form_fields_json,
                forum_channel_id = excluded.forum_channel_id,
                open_tag_id = excluded.open_tag_id,
                closed_tag_id = excluded.closed_tag_id,
                resolve_auto_close_hours = excluded.resolve_auto_close_hours,
                priority = excluded.priority,
                position = excluded.position,
                updated_at = CURRENT_TIMESTAMP;
            """,
            [
                category.id,
                category.guild_id,
                category.name,
                category.description,
                category.emoji,
                category.enabled,
                _json_dump(category.staff_role_ids),
                _json_dump([form_field.to_dict() for form_field in category.form_fields]),
                category.forum_channel_id,
                category.open_tag_id,
                category.closed_tag_id,
                category.resolve_auto_close_hours,
                category.priority,
                category.position,
            ],
        )

    async def get(self, category_id: str) -> ModmailCategory | None:
        row = await self.db.fetchone("SELECT * FROM modmail_categories WHERE id = ?;", [category_id])
        if not row:
            return None
        return self._row_to_category(row)

    async def list_by_guild(self, guild_id: int) -> list[ModmailCategory]:
        rows = await self.db.fetchall(
            """
            SELECT * FROM modmail_categories
            WHERE guild_id = ?
            ORDER BY position ASC, name ASC;
            """,
            [guild_id],
        )
        return [self._row_to_category(row) for row in rows]

    async def set_webhook(self, category_id: str, webhook_id: int | None, webhook_token: str | None) -> None:
        await self.db.execute(
            """
            UPDATE modmail_categories
            SET webhook_id = ?, webhook_token = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ?;
            """,
            [webhook_id, webhook_token, category_id],
        )

    def _row_to_category(self, row: dict[str, Any]) -> ModmailCategory:
        return ModmailCategory(
            id=row["id"],
            guild_id=int(row["guild_id"]),
            name=row["name"],
            description=row["description"],
            emoji=row["emoji"],
            enabled=bool(row["enabled"]),
            staff_role_ids=[int(x) for x in _json_load(row["staff_role_ids_json"], [])],
            form_fields=[FormField.from_dict(raw) for raw in _json_load(row["form_fields_json"], [])],
            forum_channel_id=_opt_int(row["forum_channel_id"]),
            webhook_id=_opt_int(row["webhook_id"]),
            webhook_token=row["webhook_token"],
            open_tag_id=_opt_int(row["open_tag_id"]),
            closed_tag_id=_opt_int(row["closed_tag_id"]),
            resolve_auto_close_hours=int(row["resolve_auto_close_hours"]),
            priority=int(row["priority"]),
            position=int(row["position"]),
        )


class ModmailRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(self, record: ModmailRecord) -> None:
        created_at = record.created_at or now_iso()
        await self.db.execute(
            """
            INSERT INTO modmails(
                id, guild_id, user_id, user_display_name, ticket_number, category_id,
                thread_id, status, last_user_activity_at, form_responses_json,
                created_at, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            [
                record.id,
                record.guild_id,
                record.user_id,
                record.user_display_name,
                record.ticket_number,
                record.category_id,
                record.thread_id,
                record.status,
                record.last_user_activity_at or created_at,
                _json_dump(
                    [
                        {"field_id": r.field_id, "question": r.question, "answer": r.answer}
                        for r in record.form_responses
                    ]
                ),
                created_at,
                created_at,
            ],
        )
        for message in record.messages:
            await self.append_message(message)

    async def get_by_id(self, modmail_id: str, with_messages: bool = False) -> ModmailRecord | None:
        row = await self.db.fetchone("SELECT * FROM modmails WHERE id = ?;", [modmail_id])
        if not row:
            return None
        record = self._row_to_modmail(row)
        if with_messages:
            record.messages = await self.list_messages(record.id)
        return record

    async def get_by_thread(self, thread_id: int | str) -> ModmailRecord | None:
        row = await self.db.fetchone(
            "SELECT * FROM modmails WHERE thread_id = ?;",
            [str(thread_id)],
        )
        if not row:
            return None
        return self._row_to_modmail(row)

    async def get_active_for_user(self, guild_id: int, user_id: int) -> ModmailRecord | None:
        row = await self.db.fetchone(
            """
            SELECT * FROM modmails
            WHERE guild_id = ? AND user_id = ? AND status IN (?, ?)
            ORDER BY created_at DESC
            LIMIT 1;
            """,
            [guild_id, user_id, MODMAIL_STATUS_OPEN, MODMAIL_STATUS_RESOLVED],
        )
        if not row:
            return None
        return self._row_to_modmail(row)

    async def list_active_for_user(self, user_id: int) -> list[ModmailRecord]:
        rows = await self.db.fetchall(
            """
            SELECT * FROM modmails
            WHERE user_id = ? AND status IN (?, ?)
            ORDER BY created_at DESC;
            """,
            [user_id, MODMAIL_STATUS_OPEN, MODMAIL_STATUS_RESOLVED],
        )
        return [self._row_to_modmail(row) for row in rows]

    async def list_open(self, guild_id: int, limit: int = 100) -> list[ModmailRecord]:
        rows = await self.db.fetchall(
            """
            SELECT * FROM modmails
            WHERE guild_id = ? AND status IN (?, ?)
            ORDER BY created_at DESC
            LIMIT ?;
            """,
            [guild_id, MODMAIL_STATUS_OPEN, MODMAIL_STATUS_RESOLVED, limit],
        )
        return [self._row_to_modmail(row) for row in rows]

    async def list_due_resolved(self, now: str, limit: int = 50) -> list[ModmailRecord]:
        rows = await self.db.fetchall(
            """
            SELECT * FROM modmails
            WHERE status = ? AND resolve_auto_close_at IS NOT NULL AND resolve_auto_close_at <= ?
            ORDER BY resolve_auto_close_at ASC
            LIMIT ?;
            """,
            [MODMAIL_STATUS_RESOLVED, now, limit],
        )
        return [self._row_to_modmail(row) for row in rows]

    async def list_warning_candidates(self, guild_id: int, idle_since: str, limit: int = 50) -> list[ModmailRecord]:
        """Open, unwarned tickets where neither side has written since ``idle_since``."""
        rows = await self.db.fetchall(
            """
            SELECT * FROM modmails
            WHERE guild_id = ? AND status = ? AND auto_close_warning_at IS NULL
              AND COALESCE(last_user_activity_at, created_at) <= ?
              AND (last_staff_activity_at IS NULL OR last_staff_activity_at <= ?)
            ORDER BY COALESCE(last_user_activity_at, created_at) ASC
            LIMIT ?;
            """,
            [guild_id, MODMAIL_STATUS_OPEN, idle_since, idle_since, limit],
        )
        return [self._row_to_modmail(row) for row in rows]

    async def list_idle_open(self, guild_id: int, idle_since: str, limit: int = 50) -> list[ModmailRecord]:
        """Open tickets whose user has not written since ``idle_since``."""
        rows = await self.db.fetchall(
            """
            SELECT * FROM modmails
            WHERE guild_id = ? AND status = ? AND COALESCE(last_user_activity_at, created_at) <= ?
            ORDER BY COALESCE(last_user_activity_at, created_at) ASC
            LIMIT ?;
            """,
            [guild_id, MODMAIL_STATUS_OPEN, idle_since, limit],
        )
        return [self._row_to_modmail(row) for row in rows]

    async def mark_warned(self, modmail_id: str, warned_at: str) -> bool:
        affected = await self.db.execute(
            """
            UPDATE modmails
            SET auto_close_warning_at = ?, updated_at = ?
            WHERE id = ? AND status = ? AND auto_close_warning_at IS NULL;
            """,
            [warned_at, warned_at, modmail_id, MODMAIL_STATUS_OPEN],
        )
        return affected > 0

    async def set_thread_id(self, modmail_id: str, thread_id: int) -> None:
        await self.db.execute(
            "UPDATE modmails SET thread_id = ?, updated_at = ? WHERE id = ?;",
            [str(thread_id), now_iso(), modmail_id],
        )

    async def delete(self, modmail_id: str) -> None:
        await self.db.execute("DELETE FROM modmail_messages WHERE modmail_id = ?;", [modmail_id])
        await self.db.execute("DELETE FROM modmails WHERE id = ?;", [modmail_id])

    async def claim(self, modmail_id: str, staff_id: int) -> bool:
        """Set the claimer only if nobody holds the ticket yet.

        The WHERE clause makes this a single conditional write, so exactly one
        of several concurrent claimants sees an affected row.
        """
        now = now_iso()
        affected = await self.db.execute(
            """
            UPDATE modmails
            SET claimed_by = ?, claimed_at = ?, updated_at = ?
            WHERE id = ? AND claimed_by IS NULL AND status <> ?;
            """,
            [staff_id, now, now, modmail_id, MODMAIL_STATUS_CLOSED],
        )
        return affected == 1

    async def unclaim(self, modmail_id: str) -> bool:
        affected = await self.db.execute(
            """
            UPDATE modmails
            SET claimed_by = NULL, claimed_at = NULL, updated_at = ?
            WHERE id = ? AND claimed_by IS NOT NULL AND status <> ?;
            """,
            [now_iso(), modmail_id, MODMAIL_STATUS_CLOSED],
        )
        return affected == 1

    async def mark_resolved(self, modmail_id: str, staff_id: int, auto_close_at: str) -> bool:
        now = now_iso()
        affected = await self.db.execute(
            """
            UPDATE modmails
            SET status = ?, marked_resolved_by = ?, marked_resolved_at = ?,
                resolve_auto_close_at = ?, updated_at = ?
            WHERE id = ? AND status = ?;
            """,
            [MODMAIL_STATUS_RESOLVED, staff_id, now, auto_close_at, now, modmail_id, MODMAIL_STATUS_OPEN],
        )
        return affected == 1

    async def reopen(self, modmail_id: str) -> bool:
        now = now_iso()
        affected = await self.db.execute(
            """
            UPDATE modmails
            SET status = ?, marked_resolved_by = NULL, marked_resolved_at = NULL,
                resolve_auto_close_at = NULL, auto_close_warning_at = NULL,
                last_user_activity_at = ?, updated_at = ?
            WHERE id = ? AND status = ?;
            """,
            [MODMAIL_STATUS_OPEN, now, now, modmail_id, MODMAIL_STATUS_RESOLVED],
        )
        return affected == 1

    async def close(self, modmail_id: str, closed_by: int, reason: str | None) -> bool:
        now = now_iso()
        affected = await self.db.execute(
            """
            UPDATE modmails
            SET status = ?, closed_by = ?, close_reason = ?, closed_at = ?,
                resolve_auto_close_at = NULL, updated_at = ?
            WHERE id = ? AND status <> ?;
            """,
            [MODMAIL_STATUS_CLOSED, closed_by, reason, now, now, modmail_id, MODMAIL_STATUS_CLOSED],
        )
        return affected == 1

    async def append_message(self, message: ModmailMessage) -> ModmailMessage:
        """Append an entry and bump the ticket's counters and activity timestamps."""
        message.created_at = message.created_at or now_iso()
        await self.db.execute(
            """
            INSERT INTO modmail_messages(
                message_id, modmail_id, position, author_id, author_type, context, content,
                original_content, workspace_message_id, dm_message_id, attachments_json,
                is_staff_only, is_edited, edited_at, is_deleted, deleted_at, deleted_by, created_at
            )
            VALUES (
                ?, ?, (SELECT COALESCE(MAX(position), 0) + 1 FROM modmail_messages WHERE modmail_id = ?),
                ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?
            );
            """,
            [
                message.message_id,
                message.modmail_id,
                message.modmail_id,
                message.author_id,
                message.author_type,
                message.context,
                message.content,
                message.original_content,
                message.workspace_message_id,
                message.dm_message_id,
                _json_dump([self._attachment_to_dict(a) for a in message.attachments]),
                message.is_staff_only,
                message.is_edited,
                message.edited_at,
                message.is_deleted,
                message.deleted_at,
                message.deleted_by,
                message.created_at,
            ],
        )

        is_user = message.author_type == AUTHOR_USER
        is_staff = message.author_type == AUTHOR_STAFF
        await self.db.execute(
            """
            UPDATE modmails
            SET total_messages = total_messages + 1,
                user_messages = user_messages + ?,
                staff_messages = staff_messages + ?,
                system_messages = system_messages + ?,
                staff_only_messages = staff_only_messages + ?,
                total_attachments = total_attachments + ?,
                last_user_activity_at = COALESCE(?, last_user_activity_at),
                last_staff_activity_at = COALESCE(?, last_staff_activity_at),
                auto_close_warning_at = CASE WHEN ? THEN NULL ELSE auto_close_warning_at END,
                updated_at = ?
            WHERE id = ?;
            """,
            [
                1 if is_user else 0,
                1 if is_staff else 0,
                1 if message.author_type == AUTHOR_SYSTEM else 0,
                1 if message.is_staff_only else 0,
                len(message.attachments),
                message.created_at if is_user else None,
                message.created_at if is_staff else None,
                is_user or is_staff,
                message.created_at,
                message.modmail_id,
            ],
        )
        return message

    async def mark_delivered(self, message_id: str, workspace_message_id: int) -> None:
        await self.db.execute(
            """
            UPDATE modmail_messages
            SET workspace_message_id = ?, context = ?
            WHERE message_id = ?;
            """,
            [workspace_message_id, CONTEXT_BOTH, message_id],
        )

    async def list_messages(self, modmail_id: str) -> list[ModmailMessage]:
        rows = await self.db.fetchall(
            """
            SELECT * FROM modmail_messages
            WHERE modmail_id = ?
            ORDER BY position ASC;
            """,
            [modmail_id],
        )
        return [self._row_to_message(row) for row in rows]

    async def find_message(
        self, modmail_id: str, platform_message_id: int, workspace_side: bool
    ) -> ModmailMessage | None:
        column = "workspace_message_id" if workspace_side else "dm_message_id"
        row = await self.db.fetchone(
            f"SELECT * FROM modmail_messages WHERE modmail_id = ? AND {column} = ?;",
            [modmail_id, platform_message_id],
        )
        if not row:
            return None
        return self._row_to_message(row)

    async def find_active_by_message(
        self, platform_message_id: int, workspace_side: bool
    ) -> ModmailRecord | None:
        column = "workspace_message_id" if workspace_side else "dm_message_id"
        row = await self.db.fetchone(
            f"""
            SELECT m.* FROM modmails m
            JOIN modmail_messages mm ON mm.modmail_id = m.id
            WHERE mm.{column} = ? AND m.status <> ?
            LIMIT 1;
            """,
            [platform_message_id, MODMAIL_STATUS_CLOSED],
        )
        if not row:
            return None
        return self._row_to_modmail(row)

    async def record_edit(self, message_id: str, new_content: str) -> ModmailMessage | None:
        # original_content keeps the text from before the first edit only.
        affected = await self.db.execute(
            """
            UPDATE modmail_messages
            SET original_content = COALESCE(original_content, content),
                content = ?, is_edited = ?, edited_at = ?
            WHERE message_id = ?;
            """,
            [new_content, True, now_iso(), message_id],
        )
        if affected == 0:
            return None
        return await self.get_message(message_id)

    async def record_delete(self, message_id: str, deleted_by: int | None) -> ModmailMessage | None:
        affected = await self.db.execute(
            """
            UPDATE modmail_messages
            SET is_deleted = ?, deleted_at = ?, deleted_by = ?
            WHERE message_id = ? AND is_deleted = ?;
            """,
            [True, now_iso(), deleted_by, message_id, False],
        )
        if affected == 0:
            return None
        return await self.get_message(message_id)

    async def get_message(self, message_id: str) -> ModmailMessage | None:
        row = await self.db.fetchone("SELECT * FROM modmail_messages WHERE message_id = ?;", [message_id])
        if not row:
            return None
        return self._row_to_message(row)

    @staticmethod
    def _attachment_to_dict(attachment: AttachmentRecord) -> dict[str, Any]:
        return {
            "id": attachment.id,
            "filename": attachment.filename,
            "url": attachment.url,
            "size": attachment.size,
            "content_type": attachment.content_type,
            "spoiler": attachment.spoiler,
        }

    def _row_to_message(self, row: dict[str, Any]) -> ModmailMessage:
        return ModmailMessage(
            message_id=row["message_id"],
            modmail_id=row["modmail_id"],
            author_id=int(row["author_id"]),
            author_type=row["author_type"],
            context=row["context"],
            content=row["content"],
            original_content=row["original_content"],
            workspace_message_id=_opt_int(row["workspace_message_id"]),
            dm_message_id=_opt_int(row["dm_message_id"]),
            attachments=[
                AttachmentRecord(
                    id=str(raw.get("id")),
                    filename=str(raw.get("filename", "")),
                    url=str(raw.get("url", "")),
                    size=int(raw.get("size", 0)),
                    content_type=raw.get("content_type"),
                    spoiler=bool(raw.get("spoiler", False)),
                )
                for raw in _json_load(row["attachments_json"], [])
            ],
            is_staff_only=bool(row["is_staff_only"]),
            is_edited=bool(row["is_edited"]),
            edited_at=row["edited_at"],
            is_deleted=bool(row["is_deleted"]),
            deleted_at=row["deleted_at"],
            deleted_by=_opt_int(row["deleted_by"]),
            position=int(row["position"]),
            created_at=row["created_at"],
        )

    def _row_to_modmail(self, row: dict[str, Any]) -> ModmailRecord:
        return ModmailRecord(
            id=row["id"],
            guild_id=int(row["guild_id"]),
            user_id=int(row["user_id"]),
            user_display_name=row["user_display_name"],
            ticket_number=int(row["ticket_number"]),
            category_id=row["category_id"],
            thread_id=row["thread_id"],
            status=row["status"],
            claimed_by=_opt_int(row["claimed_by"]),
            claimed_at=row["claimed_at"],
            marked_resolved_by=_opt_int(row["marked_resolved_by"]),
            marked_resolved_at=row["marked_resolved_at"],
            resolve_auto_close_at=row["resolve_auto_close_at"],
            closed_by=_opt_int(row["closed_by"]),
            close_reason=row["close_reason"],
            closed_at=row["closed_at"],
            last_user_activity_at=row["last_user_activity_at"],
            last_staff_activity_at=row["last_staff_activity_at"],
            auto_close_warning_at=row["auto_close_warning_at"],
            form_responses=[
                FormResponse(
                    field_id=str(raw.get("field_id", "")),
                    question=str(raw.get("question", "")),
                    answer=str(raw.get("answer", "")),
                )
                for raw in _json_load(row["form_responses_json"], [])
            ],
            metrics=ModmailMetrics(
                total_messages=int(row["total_messages"]),
                user_messages=int(row["user_messages"]),
                staff_messages=int(row["staff_messages"]),
                system_messages=int(row["system_messages"]),
                staff_only_messages=int(row["staff_only_messages"]),
                total_attachments=int(row["total_attachments"]),
            ),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


class BanRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def add(self, ban: ModmailBan) -> None:
        await self.db.execute(
            """
            INSERT INTO modmail_bans(guild_id, user_id, reason, banned_by, expires_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(guild_id, user_id) DO UPDATE SET
                reason = excluded.reason,
                banned_by = excluded.banned_by,
                expires_at = excluded.expires_at,
                created_at = CURRENT_TIMESTAMP;
            """,
            [ban.guild_id, ban.user_id, ban.reason, ban.banned_by, ban.expires_at],
        )

    async def remove(self, guild_id: int, user_id: int) -> bool:
        affected = await self.db.execute(
            "DELETE FROM modmail_bans WHERE guild_id = ? AND user_id = ?;",
            [guild_id, user_id],
        )
        return affected > 0

    async def get_active(self, guild_id: int, user_id: int) -> ModmailBan | None:
        row = await self.db.fetchone(
            "SELECT * FROM modmail_bans WHERE guild_id = ? AND user_id = ?;",
            [guild_id, user_id],
        )
        if not row:
            return None
        expires_at = row.get("expires_at")
        if expires_at:
            try:
                expiry = from_iso(expires_at)
            except ValueError:
                expiry = None
            if expiry is not None and expiry <= utc_now():
                await self.remove(guild_id, user_id)
                return None
        return ModmailBan(
            guild_id=int(row["guild_id"]),
            user_id=int(row["user_id"]),
            reason=row["reason"],
            banned_by=int(row["banned_by"]),
            expires_at=expires_at,
            created_at=str(row["created_at"]) if row.get("created_at") is not None else None,
        )


class ComponentRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(self, component_id: str, handler: str, metadata: dict[str, Any]) -> None:
        await self.db.execute(
            """
            INSERT INTO persistent_components(id, handler, metadata_json)
            VALUES (?, ?, ?);
            """,
            [component_id, handler, _json_dump(metadata)],
        )

    async def get(self, component_id: str) -> tuple[str, dict[str, Any]] | None:
        row = await self.db.fetchone(
            "SELECT handler, metadata_json FROM persistent_components WHERE id = ?;",
            [component_id],
        )
        if not row:
            return None
        return row["handler"], dict(_json_load(row["metadata_json"], {}))

    async def delete(self, component_id: str) -> None:
        await self.db.execute("DELETE FROM persistent_components WHERE id = ?;", [component_id])
