from __future__ import annotations

import asyncio
import sqlite3
from datetime import timedelta

import pytest

from database.base import Database
from database.models import AttachmentRecord, ModmailBan
from database.repositories import BanRepository, ComponentRepository, GuildConfigRepository, ModmailRepository
from factories import make_message, make_record
from utils.constants import AUTHOR_STAFF, AUTHOR_SYSTEM, CONTEXT_THREAD, MODMAIL_STATUS_CLOSED
from utils.time import to_iso, utc_now


@pytest.mark.asyncio
async def test_ticket_numbers_increase_per_guild(db: Database) -> None:
    repo = GuildConfigRepository(db)

    numbers = await asyncio.gather(*(repo.next_ticket_number(1) for _ in range(5)))
    other = await repo.next_ticket_number(2)

    assert sorted(numbers) == [1, 2, 3, 4, 5]
    assert other == 1


@pytest.mark.asyncio
async def test_concurrent_claims_have_exactly_one_winner(db: Database) -> None:
    repo = ModmailRepository(db)
    record = make_record()
    await repo.create(record)

    results = await asyncio.gather(*(repo.claim(record.id, staff_id) for staff_id in range(100, 110)))

    assert results.count(True) == 1
    stored = await repo.get_by_id(record.id)
    assert stored is not None
    assert stored.claimed_by == 100 + results.index(True)


@pytest.mark.asyncio
async def test_unclaim_then_claim_again(db: Database) -> None:
    repo = ModmailRepository(db)
    record = make_record()
    await repo.create(record)

    assert await repo.claim(record.id, 100) is True
    assert await repo.unclaim(record.id) is True
    assert await repo.unclaim(record.id) is False
    assert await repo.claim(record.id, 200) is True


@pytest.mark.asyncio
async def test_only_one_active_ticket_per_user_and_guild(db: Database) -> None:
    repo = ModmailRepository(db)
    await repo.create(make_record(number=1))

    with pytest.raises(sqlite3.IntegrityError):
        await repo.create(make_record(number=2))

    # A ticket in another guild is fine.
    await repo.create(make_record(guild_id=2, number=1, thread_id="901"))
    assert len(await repo.list_active_for_user(10)) == 2


@pytest.mark.asyncio
async def test_closed_ticket_frees_the_slot_and_stays_closed(db: Database) -> None:
    repo = ModmailRepository(db)
    first = make_record(number=1)
    await repo.create(first)

    assert await repo.close(first.id, 100, "done") is True
    assert await repo.close(first.id, 100, "again") is False
    assert await repo.reopen(first.id) is False
    assert await repo.claim(first.id, 100) is False
    assert await repo.mark_resolved(first.id, 100, to_iso(utc_now()) or "") is False

    stored = await repo.get_by_id(first.id)
    assert stored is not None
    assert stored.status == MODMAIL_STATUS_CLOSED
    assert stored.close_reason == "done"

    await repo.create(make_record(number=2, thread_id="902"))


@pytest.mark.asyncio
async def test_reopen_only_from_resolved(db: Database) -> None:
    repo = ModmailRepository(db)
    record = make_record()
    await repo.create(record)

    assert await repo.reopen(record.id) is False
    horizon = to_iso(utc_now() + timedelta(hours=24)) or ""
    assert await repo.mark_resolved(record.id, 100, horizon) is True
    assert await repo.mark_resolved(record.id, 100, horizon) is False
    assert await repo.reopen(record.id) is True

    stored = await repo.get_by_id(record.id)
    assert stored is not None
    assert stored.status == "open"
    assert stored.resolve_auto_close_at is None


@pytest.mark.asyncio
async def test_list_due_resolved_respects_horizon(db: Database) -> None:
    repo = ModmailRepository(db)
    due = make_record(user_id=10, number=1, thread_id="901")
    later = make_record(user_id=11, number=2, thread_id="902")
    await repo.create(due)
    await repo.create(later)
    await repo.mark_resolved(due.id, 100, to_iso(utc_now() - timedelta(minutes=1)) or "")
    await repo.mark_resolved(later.id, 100, to_iso(utc_now() + timedelta(hours=1)) or "")

    found = await repo.list_due_resolved(to_iso(utc_now()) or "")

    assert [record.id for record in found] == [due.id]


@pytest.mark.asyncio
async def test_edit_keeps_first_original_content(db: Database) -> None:
    repo = ModmailRepository(db)
    record = make_record()
    await repo.create(record)
    entry = await repo.append_message(make_message(record.id, content="v1", dm_message_id=55))

    await repo.record_edit(entry.message_id, "v2")
    edited = await repo.record_edit(entry.message_id, "v3")

    assert edited is not None
    assert edited.content == "v3"
    assert edited.original_content == "v1"
    assert edited.is_edited is True


@pytest.mark.asyncio
async def test_delete_is_recorded_once(db: Database) -> None:
    repo = ModmailRepository(db)
    record = make_record()
    await repo.create(record)
    entry = await repo.append_message(make_message(record.id, workspace_message_id=77))

    deleted = await repo.record_delete(entry.message_id, 100)
    again = await repo.record_delete(entry.message_id, 100)

    assert deleted is not None
    assert deleted.is_deleted is True
    assert deleted.deleted_by == 100
    assert again is None


@pytest.mark.asyncio
async def test_append_updates_metrics_and_positions(db: Database) -> None:
    repo = ModmailRepository(db)
    record = make_record()
    await repo.create(record)
    attachment = AttachmentRecord(id="1", filename="a.png", url="https://cdn/a.png", size=10)

    await repo.append_message(make_message(record.id, attachments=[attachment]))
    await repo.append_message(make_message(record.id, author_id=100, author_type=AUTHOR_STAFF))
    await repo.append_message(
        make_message(record.id, author_id=100, author_type=AUTHOR_STAFF, context=CONTEXT_THREAD, is_staff_only=True)
    )
    await repo.append_message(make_message(record.id, author_id=0, author_type=AUTHOR_SYSTEM))

    stored = await repo.get_by_id(record.id, with_messages=True)
    assert stored is not None
    assert stored.metrics.total_messages == 4
    assert stored.metrics.user_messages == 1
    assert stored.metrics.staff_messages == 2
    assert stored.metrics.system_messages == 1
    assert stored.metrics.staff_only_messages == 1
    assert stored.metrics.total_attachments == 1
    assert [message.position for message in stored.messages] == [1, 2, 3, 4]
    assert stored.messages[0].attachments[0].filename == "a.png"
    assert stored.last_staff_activity_at is not None


@pytest.mark.asyncio
async def test_find_active_by_message_ignores_closed_tickets(db: Database) -> None:
    repo = ModmailRepository(db)
    record = make_record()
    await repo.create(record)
    await repo.append_message(make_message(record.id, dm_message_id=42))

    found = await repo.find_active_by_message(42, workspace_side=False)
    assert found is not None and found.id == record.id

    await repo.close(record.id, 100, None)
    assert await repo.find_active_by_message(42, workspace_side=False) is None


@pytest.mark.asyncio
async def test_delete_removes_record_and_messages(db: Database) -> None:
    repo = ModmailRepository(db)
    record = make_record()
    await repo.create(record)
    await repo.append_message(make_message(record.id))

    await repo.delete(record.id)

    assert await repo.get_by_id(record.id) is None
    assert await repo.list_messages(record.id) == []


@pytest.mark.asyncio
async def test_expired_ban_is_dropped(db: Database) -> None:
    repo = BanRepository(db)
    await repo.add(
        ModmailBan(guild_id=1, user_id=10, reason="spam", banned_by=100,
                   expires_at=to_iso(utc_now() - timedelta(minutes=1)))
    )
    await repo.add(ModmailBan(guild_id=1, user_id=11, reason=None, banned_by=100))

    assert await repo.get_active(1, 10) is None
    permanent = await repo.get_active(1, 11)
    assert permanent is not None and permanent.expires_at is None


@pytest.mark.asyncio
async def test_component_repository_round_trip(db: Database) -> None:
    repo = ComponentRepository(db)
    await repo.create("mm:abc", "modmail.staff.claim", {"ticket_id": "t1"})

    assert await repo.get("mm:abc") == ("modmail.staff.claim", {"ticket_id": "t1"})
    await repo.delete("mm:abc")
    assert await repo.get("mm:abc") is None


def _hours_ago(hours: float) -> str:
    return to_iso(utc_now() - timedelta(hours=hours)) or ""


@pytest.mark.asyncio
async def test_warning_candidates_need_both_sides_idle(db: Database) -> None:
    repo = ModmailRepository(db)
    idle = make_record(user_id=10, number=1, thread_id="901", created_at=_hours_ago(50))
    staff_busy = make_record(user_id=11, number=2, thread_id="902", created_at=_hours_ago(50))
    fresh = make_record(user_id=12, number=3, thread_id="903")
    for record in (idle, staff_busy, fresh):
        await repo.create(record)
    await repo.append_message(make_message(staff_busy.id, author_id=100, author_type=AUTHOR_STAFF))

    found = await repo.list_warning_candidates(1, _hours_ago(48))

    assert [record.id for record in found] == [idle.id]


@pytest.mark.asyncio
async def test_mark_warned_is_once_per_quiet_period(db: Database) -> None:
    repo = ModmailRepository(db)
    record = make_record(created_at=_hours_ago(50))
    await repo.create(record)

    assert await repo.mark_warned(record.id, to_iso(utc_now()) or "") is True
    assert await repo.mark_warned(record.id, to_iso(utc_now()) or "") is False
    assert await repo.list_warning_candidates(1, _hours_ago(48)) == []

    await repo.append_message(make_message(record.id))
    stored = await repo.get_by_id(record.id)
    assert stored is not None and stored.auto_close_warning_at is None
    assert await repo.mark_warned(record.id, to_iso(utc_now()) or "") is True


@pytest.mark.asyncio
async def test_idle_open_ignores_staff_activity_and_other_states(db: Database) -> None:
    repo = ModmailRepository(db)
    idle = make_record(user_id=10, number=1, thread_id="901", created_at=_hours_ago(80))
    resolved = make_record(user_id=11, number=2, thread_id="902", created_at=_hours_ago(80))
    active_user = make_record(user_id=12, number=3, thread_id="903", created_at=_hours_ago(80))
    for record in (idle, resolved, active_user):
        await repo.create(record)
    await repo.append_message(make_message(idle.id, author_id=100, author_type=AUTHOR_STAFF))
    await repo.mark_resolved(resolved.id, 100, to_iso(utc_now() + timedelta(hours=1)) or "")
    await repo.append_message(make_message(active_user.id, author_id=12))

    found = await repo.list_idle_open(1, _hours_ago(72))

    assert [record.id for record in found] == [idle.id]
    assert await repo.list_idle_open(2, _hours_ago(72)) == []
