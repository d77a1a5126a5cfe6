"""
Datetime helpers. Everything is stored and compared as UTC ISO-8601 text.
"""
from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """Naive datetimes are taken to be UTC already."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso(dt: datetime) -> str:
    """Fixed-width UTC ISO string so that text ordering matches time ordering."""
    return to_utc(dt).isoformat(timespec="microseconds")


def parse_datetime(s: str | None) -> datetime:
    if s is None:
        raise ValueError("expected datetime string")
    return to_utc(datetime.fromisoformat(s.replace("Z", "+00:00")))
