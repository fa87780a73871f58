from __future__ import annotations

from datetime import UTC, datetime, timedelta


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return dt.astimezone(UTC).isoformat()


def now_iso() -> str:
    return utc_now().isoformat()


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def parse_ban_duration(value: str) -> timedelta | None:
    """Return the ban length, or None for a permanent ban."""
    value = value.strip().lower()
    if value in {"", "permanent", "perm", "forever"}:
        return None
    unit = value[-1]
    try:
        amount = int(value[:-1])
    except ValueError as exc:
        raise ValueError("Invalid duration. Use a number followed by m, h, d or w.") from exc
    if amount <= 0:
        raise ValueError("Duration must be positive.")
    if unit == "m":
        return timedelta(minutes=amount)
    if unit == "h":
        return timedelta(hours=amount)
    if unit == "d":
        return timedelta(days=amount)
    if unit == "w":
        return timedelta(weeks=amount)
    raise ValueError("Invalid duration unit. Use m, h, d or w.")


def format_hours(hours: float) -> str:
    """Render a duration such as ``1 day 2 hours`` or ``45 minutes``."""
    total_minutes = max(0, round(hours * 60))
    days, remainder = divmod(total_minutes, 24 * 60)
    whole_hours, minutes = divmod(remainder, 60)
    parts: list[str] = []
    if days:
        parts.append(f"{days} day{'s' if days != 1 else ''}")
    if whole_hours:
        parts.append(f"{whole_hours} hour{'s' if whole_hours != 1 else ''}")
    if minutes and not days:
        parts.append(f"{minutes} minute{'s' if minutes != 1 else ''}")
    return " ".join(parts) or "0 minutes"
