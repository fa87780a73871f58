from __future__ import annotations

MODMAIL_STATUS_OPEN = "open"
MODMAIL_STATUS_RESOLVED = "resolved"
MODMAIL_STATUS_CLOSED = "closed"
ACTIVE_STATUSES = (MODMAIL_STATUS_OPEN, MODMAIL_STATUS_RESOLVED)

AUTHOR_USER = "user"
AUTHOR_STAFF = "staff"
AUTHOR_SYSTEM = "system"

CONTEXT_DM = "dm"
CONTEXT_THREAD = "thread"
CONTEXT_BOTH = "both"

PENDING_THREAD_ID = "pending"

DEFAULT_THREAD_NAME_PATTERN = "#{number} | {username}"
THREAD_NAME_LIMIT = 100
MESSAGE_CHAR_LIMIT = 2000
FORM_ANSWER_LIMIT = 1500
DEFAULT_RESOLVE_AUTO_CLOSE_HOURS = 24
DEFAULT_AUTO_CLOSE_HOURS = 72
DEFAULT_AUTO_CLOSE_WARNING_HOURS = 48
DEFAULT_MAX_ATTACHMENT_MB = 25
DM_ATTACHMENT_LIMIT_MB = 8
INTERACTION_TIMEOUT_SECONDS = 900
WEBHOOK_NAME = "Modmail Relay"

REACTION_DELIVERED = "📨"
REACTION_PARTIAL = "⚠️"
REACTION_FAILED = "❌"
REACTION_STAFF_ONLY = "🔒"
REACTION_QUEUED = "📝"

HANDLER_STAFF_CLAIM = "modmail.staff.claim"
HANDLER_STAFF_RESOLVE = "modmail.staff.resolve"
HANDLER_STAFF_CLOSE = "modmail.staff.close"
HANDLER_STAFF_CLOSE_WITH_MESSAGE = "modmail.staff.close_with_message"
HANDLER_STAFF_BAN = "modmail.staff.ban"
HANDLER_USER_REOPEN = "modmail.user.reopen"
HANDLER_USER_CLOSE = "modmail.user.close"
HANDLER_USER_AI_CONTINUE = "modmail.user.ai_continue"
HANDLER_USER_AI_DISMISS = "modmail.user.ai_dismiss"

STAFF_TIPS = (
    "Messages starting with `.` stay in this thread and are never sent to the user.",
    "Claim the ticket so other staff know you are handling it.",
    "Use **Resolve** when the issue is fixed. The user can still ask for more help.",
    "Use **Close** with a final message to send one last reply before closing.",
    "Edits and deletions are mirrored to the user's DM.",
    "Attachments larger than 8 MB cannot be delivered to the user by DM.",
)
