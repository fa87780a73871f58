from __future__ import annotations

from types import SimpleNamespace

from utils.attachments import (
    AttachmentPolicy,
    build_warning_text,
    filter_attachments,
    format_file_size,
    to_attachment_record,
)

MB = 1024 * 1024


def _file(name: str, size: int) -> SimpleNamespace:
    return SimpleNamespace(
        id=1,
        filename=name,
        size=size,
        url=f"https://cdn.example/{name}",
        content_type="image/png",
        is_spoiler=lambda: name.startswith("SPOILER_"),
    )


def test_oversized_attachment_is_rejected_with_warning() -> None:
    result = filter_attachments([_file("big.zip", 30 * MB)], AttachmentPolicy(max_size_mb=25))

    assert result.forwardable == []
    assert len(result.warnings) == 1
    assert "big.zip" in result.warnings[0]
    assert "30.0 MB" in result.warnings[0]
    assert "25 MB" in result.warnings[0]
    assert result.skipped_any is True


def test_disabled_attachments_reject_everything() -> None:
    files = [_file("a.png", 10), _file("b.png", 20)]
    result = filter_attachments(files, AttachmentPolicy(allow_attachments=False))

    assert result.forwardable == []
    assert [item for item, _ in result.rejected] == files
    assert all("disabled" in warning for warning in result.warnings)


def test_filter_preserves_order_of_allowed_files() -> None:
    files = [_file("one.png", MB), _file("huge.mov", 9 * MB), _file("two.png", 2 * MB)]
    result = filter_attachments(files, AttachmentPolicy(max_size_mb=8))

    assert [item.filename for item in result.forwardable] == ["one.png", "two.png"]
    assert len(result.rejected) == 1


def test_warning_text_header_mentions_source() -> None:
    assert build_warning_text([]) is None
    text = build_warning_text(["• **x.png** too big"], source="from the user")
    assert text is not None
    assert text.splitlines()[0] == "⚠️ The following attachment(s) from the user could not be forwarded:"


def test_format_file_size_units() -> None:
    assert format_file_size(512) == "512 B"
    assert format_file_size(2048) == "2.0 KB"
    assert format_file_size(3 * MB) == "3.0 MB"


def test_to_attachment_record_reads_spoiler_flag() -> None:
    record = to_attachment_record(_file("SPOILER_cat.png", 100))
    assert record.spoiler is True
    assert record.filename == "SPOILER_cat.png"
    assert record.size == 100
