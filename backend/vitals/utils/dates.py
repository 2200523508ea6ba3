from __future__ import annotations

from datetime import datetime, timedelta, timezone

SECONDS_PER_DAY = 86400


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def utcnow_iso() -> str:
    return to_iso(utcnow())


def to_iso(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_datetime(value: str | None) -> datetime | None:
    """Parse GitHub-style ISO timestamps; naive values are taken as UTC."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def days_since(value: str | None, now: datetime) -> float:
    dt = parse_datetime(value)
    if dt is None:
        return 0.0
    return max(0.0, (now - dt).total_seconds() / SECONDS_PER_DAY)


def shift_iso(value: str, seconds: float) -> str:
    dt = parse_datetime(value)
    if dt is None:
        raise ValueError(f"Not a timestamp: {value!r}")
    return to_iso(dt + timedelta(seconds=seconds))
