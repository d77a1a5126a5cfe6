#!/usr/bin/env python3
"""
Demo: Admin schedules a match → players sign up → lineups and capacity.
Run from project root: python3 scripts/demo_roster.py
"""
from __future__ import annotations

import json
import sys
from datetime import timedelta
from pathlib import Path

# Ensure project root on path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from matchday.auth import hash_password
from matchday.config import get_settings
from matchday.datetime_utils import utcnow
from matchday.errors import DuplicateSignup
from matchday.models import ANONYMOUS, MatchSpec, MatchType, NewPlayer, Position, Team
from matchday.persistence import UserRepository, get_connection, init_db
from matchday.persistence.db import set_db_path
from matchday.services import AdminRegistry, AuthorizationGate, MatchService, RosterEngine, redact_match

DEMO_ADMIN_EMAIL = "demo-admin@example.com"

WHITE = [("Ana", Position.GK), ("Ben", Position.CB), ("Cid", Position.ST1), ("Dara", None)]
BLACK = [("Eli", Position.GK), ("Fay", Position.CM), ("Gus", Position.ST2)]


def main() -> None:
    # Use data/demo_roster.db for demo (distinct from matchday.db)
    db_path = PROJECT_ROOT / "data" / "demo_roster.db"
    if db_path.exists():
        db_path.unlink()
    set_db_path(db_path)
    init_db(db_path=db_path)
    get_settings().admin_emails = frozenset({DEMO_ADMIN_EMAIL})

    conn = get_connection()
    try:
        gate = AuthorizationGate()

        # 1. Admin account, enrolled through the allow-list
        user = UserRepository().create(conn, DEMO_ADMIN_EMAIL, hash_password("demo-password"), name="Demo Admin")
        AdminRegistry().enroll(conn, user)
        admin = gate.resolve_identity(conn, user.id)
        print(f"Admin: {user.email} (is_admin={admin.is_admin})")

        # 2. Private friendly tomorrow evening
        starts = (utcnow() + timedelta(days=1)).replace(hour=19, minute=0, second=0, microsecond=0)
        matches = MatchService(gate)
        match = matches.create_match(conn, admin, MatchSpec(
            starts_at=starts,
            ends_at=starts + timedelta(hours=1, minutes=30),
            location="Riverside Pitch 3",
            capacity=14,
            is_private=True,
            match_type=MatchType.FRIENDLY,
            total_cost=84.0,
            rented_by_name="Demo Admin",
        ))
        print(f"Created match {match.id} at {match.starts_at.isoformat()}")

        # 3. Signups (anonymous callers, players created by name)
        roster = RosterEngine(gate)
        for team, players in ((Team.WHITE, WHITE), (Team.BLACK, BLACK)):
            for name, position in players:
                roster.signup(conn, ANONYMOUS, match.id, NewPlayer(name), team, position)
        try:
            roster.signup(conn, ANONYMOUS, match.id, NewPlayer("Ana"), Team.BLACK)
        except DuplicateSignup as e:
            print(f"Rejected: {e}")

        # 4. Lineups, capacity, and what an anonymous visitor sees
        lineups = roster.get_lineups(conn, match.id)
        summary = roster.capacity_summary(conn, match.id)
        out = {
            "match": redact_match(match, is_admin=False).to_dict(),
            "capacity": summary.to_dict(),
            "lineups": {team: [e.to_dict() for e in entries] for team, entries in lineups.items()},
        }
        print(json.dumps(out, indent=2))
    finally:
        conn.close()


if __name__ == "__main__":
    main()
