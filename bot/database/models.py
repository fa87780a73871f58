from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from utils.constants import (
    DEFAULT_AUTO_CLOSE_HOURS,
    DEFAULT_AUTO_CLOSE_WARNING_HOURS,
    DEFAULT_MAX_ATTACHMENT_MB,
    DEFAULT_RESOLVE_AUTO_CLOSE_HOURS,
    DEFAULT_THREAD_NAME_PATTERN,
    MODMAIL_STATUS_CLOSED,
    MODMAIL_STATUS_OPEN,
    MODMAIL_STATUS_RESOLVED,
    PENDING_THREAD_ID,
)


@dataclass(slots=True)
class FormField:
    id: str
    label: str
    style: str = "short"
    required: bool = True
    placeholder: str | None = None
    max_length: int = 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "style": self.style,
            "required": self.required,
            "placeholder": self.placeholder,
            "max_length": self.max_length,
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> FormField:
        return cls(
            id=str(raw.get("id", "")),
            label=str(raw.get("label", "Question")),
            style=str(raw.get("style", "short")),
            required=bool(raw.get("required", True)),
            placeholder=raw.get("placeholder"),
            max_length=int(raw.get("max_length", 1000)),
        )


@dataclass(slots=True)
class FormResponse:
    field_id: str
    question: str
    answer: str


@dataclass(slots=True)
class ModmailCategory:
    id: str
    guild_id: int
    name: str
    description: str = ""
    emoji: str | None = None
    enabled: bool = True
    staff_role_ids: list[int] = field(default_factory=list)
    form_fields: list[FormField] = field(default_factory=list)
    forum_channel_id: int | None = None
    webhook_id: int | None = None
    webhook_token: str | None = None
    open_tag_id: int | None = None
    closed_tag_id: int | None = None
    resolve_auto_close_hours: int = DEFAULT_RESOLVE_AUTO_CLOSE_HOURS
    priority: int = 2
    position: int = 0


@dataclass(slots=True)
class GuildModmailConfig:
    guild_id: int
    enabled: bool = True
    default_category_id: str | None = None
    global_staff_role_ids: list[int] = field(default_factory=list)
    thread_naming_pattern: str = DEFAULT_THREAD_NAME_PATTERN
    allow_attachments: bool = True
    max_attachment_size_mb: int = DEFAULT_MAX_ATTACHMENT_MB
    ai_enabled: bool = False
    ai_prevent_creation: bool = False
    ai_system_prompt: str | None = None
    ai_documentation_url: str | None = None
    # 0 turns the inactivity warning or the inactivity close off.
    auto_close_warning_hours: int = DEFAULT_AUTO_CLOSE_WARNING_HOURS
    auto_close_hours: int = DEFAULT_AUTO_CLOSE_HOURS
    categories: list[ModmailCategory] = field(default_factory=list)

    def enabled_categories(self) -> list[ModmailCategory]:
        return [category for category in self.categories if category.enabled]

    def get_category(self, category_id: str | None) -> ModmailCategory | None:
        if not category_id:
            return None
        for category in self.categories:
            if category.id == category_id:
                return category
        return None

    def staff_role_ids_for(self, category: ModmailCategory | None) -> list[int]:
        role_ids = list(category.staff_role_ids) if category else []
        for role_id in self.global_staff_role_ids:
            if role_id not in role_ids:
                role_ids.append(role_id)
        return role_ids


@dataclass(slots=True)
class AttachmentRecord:
    id: str
    filename: str
    url: str
    size: int
    content_type: str | None = None
    spoiler: bool = False


@dataclass(slots=True)
class ModmailMessage:
    message_id: str
    modmail_id: str
    author_id: int
    author_type: str
    context: str
    content: str = ""
    original_content: str | None = None
    workspace_message_id: int | None = None
    dm_message_id: int | None = None
    attachments: list[AttachmentRecord] = field(default_factory=list)
    is_staff_only: bool = False
    is_edited: bool = False
    edited_at: str | None = None
    is_deleted: bool = False
    deleted_at: str | None = None
    deleted_by: int | None = None
    position: int = 0
    created_at: str | None = None


@dataclass(slots=True)
class ModmailMetrics:
    total_messages: int = 0
    user_messages: int = 0
    staff_messages: int = 0
    system_messages: int = 0
    staff_only_messages: int = 0
    total_attachments: int = 0


@dataclass(slots=True)
class ModmailRecord:
    id: str
    guild_id: int
    user_id: int
    user_display_name: str
    ticket_number: int
    category_id: str | None
    thread_id: str = PENDING_THREAD_ID
    status: str = MODMAIL_STATUS_OPEN
    claimed_by: int | None = None
    claimed_at: str | None = None
    marked_resolved_by: int | None = None
    marked_resolved_at: str | None = None
    resolve_auto_close_at: str | None = None
    closed_by: int | None = None
    close_reason: str | None = None
    closed_at: str | None = None
    last_user_activity_at: str | None = None
    last_staff_activity_at: str | None = None
    auto_close_warning_at: str | None = None
    form_responses: list[FormResponse] = field(default_factory=list)
    metrics: ModmailMetrics = field(default_factory=ModmailMetrics)
    messages: list[ModmailMessage] = field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_closed(self) -> bool:
        return self.status == MODMAIL_STATUS_CLOSED

    @property
    def is_resolved(self) -> bool:
        return self.status == MODMAIL_STATUS_RESOLVED

    @property
    def has_thread(self) -> bool:
        return self.thread_id != PENDING_THREAD_ID

    @property
    def thread_id_int(self) -> int | None:
        return int(self.thread_id) if self.has_thread else None


@dataclass(slots=True)
class ModmailBan:
    guild_id: int
    user_id: int
    reason: str | None
    banned_by: int
    expires_at: str | None = None
    created_at: str | None = None
