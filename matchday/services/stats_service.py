"""
Headline numbers for the landing page.
"""
from __future__ import annotations

import sqlite3
from datetime import datetime, timedelta

from matchday.datetime_utils import to_utc, utcnow
from matchday.errors import operation
from matchday.persistence.repositories import MatchRepository, SignupRepository

RECENT_SIGNUPS_WINDOW = timedelta(days=30)


@operation("app_stats")
def app_stats(conn: sqlite3.Connection, now: datetime | None = None) -> dict[str, int]:
    current = to_utc(now) if now is not None else utcnow()
    return {
        "upcoming_matches": MatchRepository().count_upcoming(conn, current),
        "recent_signups": SignupRepository().count_since(conn, current - RECENT_SIGNUPS_WINDOW),
    }
