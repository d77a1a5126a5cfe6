"""
Repository interfaces for matchday data.
No business logic; only read/write operations.
Connections run in autocommit mode; callers that need several statements to
apply atomically wrap them in persistence.db.transaction().
"""
from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime
from typing import Any

from matchday.datetime_utils import parse_datetime, to_iso, utcnow
from matchday.models import Match, Player, Signup, User


def _opt_datetime(s: str | None) -> datetime | None:
    return parse_datetime(s) if s else None


# ---------- UserRepository ----------


class UserRepository:
    """CRUD for accounts. Passwords are only ever stored hashed."""

    def create(
        self, conn: sqlite3.Connection, email: str, password_hash: str, name: str | None = None,
        id: str | None = None,
    ) -> User:
        uid = id or str(uuid.uuid4())
        now = utcnow()
        display_name = name or email.split("@")[0]
        conn.execute(
            "INSERT INTO users (id, email, name, password_hash, created_at) VALUES (?, ?, ?, ?, ?)",
            (uid, email, display_name, password_hash, to_iso(now)),
        )
        return User(id=uid, email=email, name=display_name, created_at=now, password_hash=password_hash)

    def get(self, conn: sqlite3.Connection, user_id: str) -> User | None:
        row = conn.execute(
            "SELECT id, email, name, password_hash, created_at FROM users WHERE id = ?", (user_id,)
        ).fetchone()
        return _row_to_user(row) if row else None

    def get_by_email(self, conn: sqlite3.Connection, email: str) -> User | None:
        row = conn.execute(
            "SELECT id, email, name, password_hash, created_at FROM users WHERE email = ?", (email,)
        ).fetchone()
        return _row_to_user(row) if row else None


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        name=row["name"],
        created_at=parse_datetime(row["created_at"]),
        password_hash=row["password_hash"],
    )


# ---------- AdminRepository ----------


class AdminRepository:
    """The admin registry. Writes here bypass the authorization gate; only AdminRegistry calls them."""

    def exists(self, conn: sqlite3.Connection, user_id: str) -> bool:
        row = conn.execute("SELECT 1 FROM admins WHERE user_id = ?", (user_id,)).fetchone()
        return row is not None

    def insert_if_absent(self, conn: sqlite3.Connection, user_id: str, role: str = "admin") -> bool:
        """Returns True if a row was inserted, False if the user was already an admin."""
        cur = conn.execute(
            "INSERT INTO admins (user_id, role, created_at) VALUES (?, ?, ?) ON CONFLICT(user_id) DO NOTHING",
            (user_id, role, to_iso(utcnow())),
        )
        return cur.rowcount == 1

    def delete(self, conn: sqlite3.Connection, user_id: str) -> None:
        conn.execute("DELETE FROM admins WHERE user_id = ?", (user_id,))


# ---------- PlayerRepository ----------

_PLAYER_COLS = "id, display_name, image_url, preferred_position, created_at"


def _row_to_player(row: sqlite3.Row) -> Player:
    return Player(
        id=row["id"],
        display_name=row["display_name"],
        image_url=row["image_url"],
        preferred_position=row["preferred_position"],
        created_at=parse_datetime(row["created_at"]),
    )


class PlayerRepository:
    """CRUD for players. display_name is unique and case-sensitive."""

    def get(self, conn: sqlite3.Connection, player_id: str) -> Player | None:
        row = conn.execute(f"SELECT {_PLAYER_COLS} FROM players WHERE id = ?", (player_id,)).fetchone()
        return _row_to_player(row) if row else None

    def get_by_name(self, conn: sqlite3.Connection, display_name: str) -> Player | None:
        row = conn.execute(
            f"SELECT {_PLAYER_COLS} FROM players WHERE display_name = ?", (display_name,)
        ).fetchone()
        return _row_to_player(row) if row else None

    def insert_if_absent(
        self,
        conn: sqlite3.Connection,
        display_name: str,
        id: str | None = None,
        image_url: str | None = None,
        preferred_position: str | None = None,
    ) -> Player:
        """
        Atomic find-or-create keyed by display_name. A concurrent insert of the
        same name resolves to the single surviving row.
        """
        pid = id or str(uuid.uuid4())
        conn.execute(
            f"""INSERT INTO players ({_PLAYER_COLS}) VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(display_name) DO NOTHING""",
            (pid, display_name, image_url, preferred_position, to_iso(utcnow())),
        )
        player = self.get_by_name(conn, display_name)
        if player is None:
            raise RuntimeError(f"player row missing after upsert: {display_name!r}")
        return player

    def search(self, conn: sqlite3.Connection, query: str, limit: int = 10) -> list[Player]:
        """Case-insensitive substring match on display_name, alphabetical. Needs casefold() from get_connection."""
        rows = conn.execute(
            f"""SELECT {_PLAYER_COLS} FROM players
                WHERE instr(casefold(display_name), ?) > 0
                ORDER BY casefold(display_name), display_name LIMIT ?""",
            (query.casefold(), limit),
        ).fetchall()
        return [_row_to_player(r) for r in rows]

    def list_all(self, conn: sqlite3.Connection, limit: int = 500) -> list[Player]:
        rows = conn.execute(
            f"SELECT {_PLAYER_COLS} FROM players ORDER BY display_name COLLATE NOCASE, display_name LIMIT ?",
            (limit,),
        ).fetchall()
        return [_row_to_player(r) for r in rows]

    def update(self, conn: sqlite3.Connection, player_id: str, fields: dict[str, Any]) -> None:
        """fields: column -> value, restricted to display_name, image_url, preferred_position."""
        allowed = {"display_name", "image_url", "preferred_position"}
        cols = [c for c in fields if c in allowed]
        if not cols:
            return
        assignments = ", ".join(f"{c} = ?" for c in cols)
        conn.execute(
            f"UPDATE players SET {assignments} WHERE id = ?",
            [fields[c] for c in cols] + [player_id],
        )


# ---------- MatchRepository ----------

_MATCH_COLS = (
    "id, starts_at, ends_at, location, capacity, is_private, match_type, total_cost, "
    "rented_by_player_id, rented_by_name, description, created_by, created_by_label, created_at"
)


def _row_to_match(row: sqlite3.Row) -> Match:
    return Match(
        id=row["id"],
        starts_at=parse_datetime(row["starts_at"]),
        ends_at=parse_datetime(row["ends_at"]),
        location=row["location"],
        capacity=row["capacity"],
        is_private=bool(row["is_private"]),
        match_type=row["match_type"],
        created_by=row["created_by"],
        created_at=parse_datetime(row["created_at"]),
        total_cost=row["total_cost"],
        rented_by_player_id=row["rented_by_player_id"],
        rented_by_name=row["rented_by_name"],
        description=row["description"],
        created_by_label=row["created_by_label"],
    )


class MatchRepository:
    """CRUD for matches. No business logic."""

    def create(
        self,
        conn: sqlite3.Connection,
        starts_at: datetime,
        ends_at: datetime,
        location: str | None,
        capacity: int,
        is_private: bool,
        match_type: str,
        created_by: str,
        total_cost: float | None = None,
        rented_by_player_id: str | None = None,
        rented_by_name: str | None = None,
        description: str | None = None,
        created_by_label: str | None = None,
        id: str | None = None,
    ) -> Match:
        mid = id or str(uuid.uuid4())
        now = utcnow()
        conn.execute(
            f"""INSERT INTO matches ({_MATCH_COLS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                mid,
                to_iso(starts_at),
                to_iso(ends_at),
                location,
                capacity,
                1 if is_private else 0,
                match_type,
                total_cost,
                rented_by_player_id,
                rented_by_name,
                description,
                created_by,
                created_by_label,
                to_iso(now),
            ),
        )
        match = self.get(conn, mid)
        if match is None:
            raise RuntimeError(f"match row missing after insert: {mid}")
        return match

    def get(self, conn: sqlite3.Connection, match_id: str) -> Match | None:
        row = conn.execute(f"SELECT {_MATCH_COLS} FROM matches WHERE id = ?", (match_id,)).fetchone()
        return _row_to_match(row) if row else None

    def list_upcoming(self, conn: sqlite3.Connection, now: datetime, limit: int = 20) -> list[Match]:
        rows = conn.execute(
            f"SELECT {_MATCH_COLS} FROM matches WHERE starts_at >= ? ORDER BY starts_at ASC, id LIMIT ?",
            (to_iso(now), limit),
        ).fetchall()
        return [_row_to_match(r) for r in rows]

    def count_upcoming(self, conn: sqlite3.Connection, now: datetime) -> int:
        row = conn.execute("SELECT COUNT(*) FROM matches WHERE starts_at >= ?", (to_iso(now),)).fetchone()
        return int(row[0])

    def update(self, conn: sqlite3.Connection, match: Match) -> None:
        """Write back every mutable column of match."""
        conn.execute(
            """UPDATE matches SET starts_at = ?, ends_at = ?, location = ?, capacity = ?,
                   is_private = ?, match_type = ?, total_cost = ?, description = ?
               WHERE id = ?""",
            (
                to_iso(match.starts_at),
                to_iso(match.ends_at),
                match.location,
                match.capacity,
                1 if match.is_private else 0,
                match.match_type,
                match.total_cost,
                match.description,
                match.id,
            ),
        )

    def delete(self, conn: sqlite3.Connection, match_id: str) -> bool:
        cur = conn.execute("DELETE FROM matches WHERE id = ?", (match_id,))
        return cur.rowcount > 0


# ---------- SignupRepository ----------

_SIGNUP_COLS = "match_id, player_id, team, position, display_name_snapshot, created_at, updated_at"


def _row_to_signup(row: sqlite3.Row) -> Signup:
    return Signup(
        match_id=row["match_id"],
        player_id=row["player_id"],
        team=row["team"],
        position=row["position"],
        display_name_snapshot=row["display_name_snapshot"],
        created_at=parse_datetime(row["created_at"]),
        updated_at=_opt_datetime(row["updated_at"]),
    )


class SignupRepository:
    """CRUD for signups. The (match_id, player_id) primary key enforces one signup per pair."""

    def get(self, conn: sqlite3.Connection, match_id: str, player_id: str) -> Signup | None:
        row = conn.execute(
            f"SELECT {_SIGNUP_COLS} FROM signups WHERE match_id = ? AND player_id = ?",
            (match_id, player_id),
        ).fetchone()
        return _row_to_signup(row) if row else None

    def create(
        self,
        conn: sqlite3.Connection,
        match_id: str,
        player_id: str,
        team: str,
        position: str | None,
        display_name_snapshot: str,
    ) -> Signup:
        """Plain insert. Raises sqlite3.IntegrityError if the pair already exists."""
        now = utcnow()
        conn.execute(
            f"INSERT INTO signups ({_SIGNUP_COLS}) VALUES (?, ?, ?, ?, ?, ?, NULL)",
            (match_id, player_id, team, position, display_name_snapshot, to_iso(now)),
        )
        return Signup(
            match_id=match_id, player_id=player_id, team=team, position=position,
            display_name_snapshot=display_name_snapshot, created_at=now,
        )

    def upsert(
        self,
        conn: sqlite3.Connection,
        match_id: str,
        player_id: str,
        team: str,
        position: str | None,
        display_name_snapshot: str,
    ) -> Signup:
        """Insert, or overwrite team and position on (match_id, player_id) conflict."""
        now = to_iso(utcnow())
        conn.execute(
            f"""INSERT INTO signups ({_SIGNUP_COLS}) VALUES (?, ?, ?, ?, ?, ?, NULL)
                ON CONFLICT(match_id, player_id) DO UPDATE SET
                    team = excluded.team,
                    position = excluded.position,
                    updated_at = ?""",
            (match_id, player_id, team, position, display_name_snapshot, now, now),
        )
        signup = self.get(conn, match_id, player_id)
        if signup is None:
            raise RuntimeError(f"signup row missing after upsert: {match_id}/{player_id}")
        return signup

    def update(
        self, conn: sqlite3.Connection, match_id: str, player_id: str, team: str, position: str | None
    ) -> bool:
        cur = conn.execute(
            "UPDATE signups SET team = ?, position = ?, updated_at = ? WHERE match_id = ? AND player_id = ?",
            (team, position, to_iso(utcnow()), match_id, player_id),
        )
        return cur.rowcount > 0

    def delete(self, conn: sqlite3.Connection, match_id: str, player_id: str) -> bool:
        cur = conn.execute(
            "DELETE FROM signups WHERE match_id = ? AND player_id = ?", (match_id, player_id)
        )
        return cur.rowcount > 0

    def list_by_match(self, conn: sqlite3.Connection, match_id: str) -> list[Signup]:
        rows = conn.execute(
            f"SELECT {_SIGNUP_COLS} FROM signups WHERE match_id = ? ORDER BY created_at, player_id",
            (match_id,),
        ).fetchall()
        return [_row_to_signup(r) for r in rows]

    def count_by_match(self, conn: sqlite3.Connection, match_id: str) -> int:
        row = conn.execute("SELECT COUNT(*) FROM signups WHERE match_id = ?", (match_id,)).fetchone()
        return int(row[0])

    def count_by_team(self, conn: sqlite3.Connection, match_id: str) -> dict[str, int]:
        rows = conn.execute(
            "SELECT team, COUNT(*) AS n FROM signups WHERE match_id = ? GROUP BY team", (match_id,)
        ).fetchall()
        return {r["team"]: int(r["n"]) for r in rows}

    def count_since(self, conn: sqlite3.Connection, since: datetime) -> int:
        row = conn.execute("SELECT COUNT(*) FROM signups WHERE created_at >= ?", (to_iso(since),)).fetchone()
        return int(row[0])

    def list_lineup_rows(self, conn: sqlite3.Connection, match_id: str, team: str) -> list[dict[str, Any]]:
        """Signups for one team joined to the live player row, in signup order."""
        rows = conn.execute(
            """SELECT s.match_id, s.team, s.player_id, s.position, s.created_at,
                      p.display_name, p.image_url
               FROM signups s JOIN players p ON p.id = s.player_id
               WHERE s.match_id = ? AND s.team = ?
               ORDER BY s.created_at, s.player_id""",
            (match_id, team),
        ).fetchall()
        return [dict(r) for r in rows]
