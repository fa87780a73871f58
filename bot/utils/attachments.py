from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from database.models import AttachmentRecord

WARNING_HEADER = "⚠️ The following attachment(s) {source}could not be forwarded:"


@dataclass(slots=True)
class AttachmentPolicy:
    allow_attachments: bool = True
    max_size_mb: float = 25


@dataclass(slots=True)
class AttachmentFilterResult:
    forwardable: list[Any] = field(default_factory=list)
    rejected: list[tuple[Any, str]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def skipped_any(self) -> bool:
        return bool(self.rejected)


def format_file_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


def _format_limit(max_size_mb: float) -> str:
    return f"{max_size_mb:g}"


def filter_attachments(attachments: Iterable[Any], policy: AttachmentPolicy) -> AttachmentFilterResult:
    """Split attachments into those allowed by the policy and those that must be skipped.

    Works on anything exposing ``filename`` and ``size`` (discord.Attachment or
    AttachmentRecord). The input order is preserved in both lists.
    """
    result = AttachmentFilterResult()
    max_bytes = policy.max_size_mb * 1024 * 1024
    for attachment in attachments:
        if not policy.allow_attachments:
            reason = "attachments are disabled for this server"
            result.rejected.append((attachment, reason))
            result.warnings.append(f"• **{attachment.filename}** – {reason}")
            continue
        if attachment.size > max_bytes:
            reason = f"exceeds the **{_format_limit(policy.max_size_mb)} MB** limit"
            result.rejected.append((attachment, reason))
            result.warnings.append(
                f"• **{attachment.filename}** ({format_file_size(attachment.size)}) {reason}"
            )
            continue
        result.forwardable.append(attachment)
    return result


def build_warning_text(warnings: list[str], source: str = "") -> str | None:
    if not warnings:
        return None
    header = WARNING_HEADER.format(source=f"{source} " if source else "")
    return "\n".join([header, *warnings])


def to_attachment_record(attachment: Any) -> AttachmentRecord:
    is_spoiler = getattr(attachment, "is_spoiler", None)
    return AttachmentRecord(
        id=str(attachment.id),
        filename=attachment.filename,
        url=attachment.url,
        size=int(attachment.size),
        content_type=getattr(attachment, "content_type", None),
        spoiler=bool(is_spoiler()) if callable(is_spoiler) else False,
    )
