from __future__ import annotations

import re
from collections.abc import Sequence

from database.models import FormResponse
from utils.constants import (
    DEFAULT_THREAD_NAME_PATTERN,
    FORM_ANSWER_LIMIT,
    MESSAGE_CHAR_LIMIT,
    THREAD_NAME_LIMIT,
)

ZERO_WIDTH_SPACE = "\u200b"
_MASS_MENTION = re.compile(r"@(everyone|here)")


def truncate(text: str, limit: int, suffix: str = "...") -> str:
    if len(text) <= limit:
        return text
    return text[: limit - len(suffix)] + suffix


def sanitize_mentions(content: str) -> str:
    return _MASS_MENTION.sub(lambda m: f"@{ZERO_WIDTH_SPACE}{m.group(1)}", content)


def build_thread_name(
    pattern: str | None,
    *,
    number: int,
    username: str,
    category: str,
    claimer: str | None = None,
) -> str:
    name = (pattern or DEFAULT_THREAD_NAME_PATTERN)
    name = (
        name.replace("{number}", str(number))
        .replace("{username}", username)
        .replace("{claimer}", claimer or "unclaimed")
        .replace("{category}", category)
    )
    return truncate(name, THREAD_NAME_LIMIT, suffix="…")


def format_staff_reply(content: str, staff_name: str, guild_name: str) -> str:
    return (
        f"**{staff_name}:**\n{content}\n\n"
        f"-# This message was sent by the staff of {guild_name} in response to your modmail.\n"
        "-# To reply, simply send a message in this DM.\n"
        "-# If you want to close this thread, just click the close button above."
    )


def format_edited_content(new_content: str, original_content: str | None) -> str:
    return f"{new_content}\n\n-# ✏️ Original: ~~{original_content or ''}~~"


def build_form_response_chunks(responses: Sequence[FormResponse]) -> list[str]:
    """Render form answers as one or more messages under the character limit.

    A question's section is never split across two messages; overlong answers
    are truncated instead.
    """
    header = "# Form Responses:\n"
    chunks: list[str] = []
    current = header
    for index, response in enumerate(responses, start=1):
        answer = truncate(response.answer or "*No answer*", FORM_ANSWER_LIMIT)
        section = f"\n## {response.question or f'Question {index}'}\n{answer}\n"
        if len(current) + len(section) > MESSAGE_CHAR_LIMIT and current != header:
            chunks.append(current)
            current = ""
        current += section
    if current and current != header:
        chunks.append(current)
    return chunks
