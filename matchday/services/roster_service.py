"""
Roster engine: who plays for which team, at which position.

Per (match, player) a signup goes NotSignedUp -> SignedUp -> Updated* -> Removed.
Every mutation runs in one BEGIN IMMEDIATE transaction, so the duplicate
check, the live capacity count and the write see the same state. The
(match_id, player_id) primary key is the final arbiter of uniqueness.
"""
from __future__ import annotations

import logging
import sqlite3
from datetime import datetime

from matchday.config import get_settings
from matchday.datetime_utils import parse_datetime, utcnow
from matchday.errors import DuplicateSignup, MatchFull, NotFound, ValidationError, operation
from matchday.models import (
    CapacitySummary,
    CurrentUserPlayer,
    ExistingPlayer,
    Identity,
    LineupEntry,
    Match,
    NewPlayer,
    Player,
    PlayerChoice,
    Position,
    Signup,
    SignupUpdate,
    Team,
)
from matchday.persistence.db import transaction
from matchday.persistence.repositories import MatchRepository, PlayerRepository, SignupRepository
from matchday.services.authorization import AuthorizationGate
from matchday.services.player_service import PlayerRegistry
from matchday.services.view_cache import LINEUP, ViewCache, get_view_cache

logger = logging.getLogger(__name__)

POSITION_ORDER: dict[str, int] = {
    Position.GK.value: 1,
    Position.LB.value: 2,
    Position.CB.value: 3,
    Position.RB.value: 4,
    Position.CM.value: 5,
    Position.ST1.value: 6,
    Position.ST2.value: 7,
}
UNPOSITIONED_ORDER = 99

POSITION_LABELS: dict[str, str] = {
    Position.GK.value: "Goalkeeper",
    Position.LB.value: "Left Back",
    Position.CB.value: "Center Back",
    Position.RB.value: "Right Back",
    Position.CM.value: "Midfielder",
    Position.ST1.value: "Striker 1",
    Position.ST2.value: "Striker 2",
}

LINEUP_MODES = ("all", "positioned")


def _team_value(team: Team | str) -> str:
    try:
        return Team(team).value
    except ValueError:
        raise ValidationError(f"Invalid team '{team}'. Must be white or black") from None


def _position_value(position: Position | str | None) -> str | None:
    if position is None:
        return None
    try:
        return Position(position).value
    except ValueError:
        raise ValidationError(f"Invalid position '{position}'") from None


def _lineup_entry(row: dict) -> LineupEntry:
    position = row["position"]
    return LineupEntry(
        match_id=row["match_id"],
        team=row["team"],
        player_id=row["player_id"],
        display_name=row["display_name"],
        image_url=row["image_url"],
        position=position,
        position_order=POSITION_ORDER.get(position, UNPOSITIONED_ORDER),
        position_label=POSITION_LABELS.get(position) if position else None,
        created_at=parse_datetime(row["created_at"]),
    )


class RosterEngine:
    def __init__(
        self,
        gate: AuthorizationGate | None = None,
        players: PlayerRegistry | None = None,
        views: ViewCache | None = None,
    ) -> None:
        self._gate = gate or AuthorizationGate()
        self._players = players or PlayerRegistry(self._gate)
        self._views = views or get_view_cache()
        self._match_repo = MatchRepository()
        self._player_repo = PlayerRepository()
        self._signup_repo = SignupRepository()

    # ---------- Guards (call inside a transaction) ----------

    def _require_match(self, conn: sqlite3.Connection, match_id: str) -> Match:
        match = self._match_repo.get(conn, match_id)
        if match is None:
            raise NotFound(f"Match not found: {match_id}")
        return match

    @staticmethod
    def _require_not_started(match: Match, now: datetime | None = None) -> None:
        if match.starts_at <= (now or utcnow()):
            raise ValidationError("Signups are closed: this match has already started")

    def _require_capacity(self, conn: sqlite3.Connection, match: Match) -> None:
        if not get_settings().enforce_capacity:
            return
        taken = self._signup_repo.count_by_match(conn, match.id)
        if taken >= match.capacity:
            raise MatchFull(f"Match is full ({taken}/{match.capacity})")

    def _resolve_player(self, conn: sqlite3.Connection, identity: Identity, choice: PlayerChoice) -> Player:
        if isinstance(choice, ExistingPlayer):
            player = self._player_repo.get(conn, choice.player_id)
            if player is None:
                raise NotFound(f"Player not found: {choice.player_id}")
            return player
        if isinstance(choice, NewPlayer):
            return self._players.find_or_create_by_name(conn, choice.display_name)
        if isinstance(choice, CurrentUserPlayer):
            current = self._gate.refresh(conn, identity)
            return self._players.ensure_user_player(conn, current, choice.display_name)
        raise ValidationError(f"Unsupported player choice: {type(choice).__name__}")

    # ---------- Mutations ----------

    @operation("signup")
    def signup(
        self,
        conn: sqlite3.Connection,
        identity: Identity,
        match_id: str,
        player: PlayerChoice,
        team: Team | str,
        position: Position | str | None = None,
    ) -> Signup:
        """
        Sign a player up for one team. Player creation (for NewPlayer and
        CurrentUserPlayer) commits or rolls back together with the signup.
        """
        team_value = _team_value(team)
        position_value = _position_value(position)
        try:
            with transaction(conn):
                match = self._require_match(conn, match_id)
                self._require_not_started(match)
                resolved = self._resolve_player(conn, identity, player)
                if self._signup_repo.get(conn, match_id, resolved.id) is not None:
                    raise DuplicateSignup(f"{resolved.display_name} is already signed up for this match")
                self._require_capacity(conn, match)
                signup = self._signup_repo.create(
                    conn, match_id, resolved.id, team_value, position_value, resolved.display_name
                )
        except sqlite3.IntegrityError as e:
            if "UNIQUE" in str(e) or "PRIMARY KEY" in str(e):
                raise DuplicateSignup("Player is already signed up for this match") from e
            raise
        self._views.invalidate_lineups(match_id)
        logger.info("Player %s joined %s for match %s", signup.player_id, team_value, match_id)
        return signup

    @operation("upsert_signup")
    def upsert_signup(
        self,
        conn: sqlite3.Connection,
        identity: Identity,
        match_id: str,
        player_id: str,
        team: Team | str,
        position: Position | str | None = None,
    ) -> Signup:
        """Insert, or overwrite team and position of an existing signup. Idempotent."""
        team_value = _team_value(team)
        position_value = _position_value(position)
        with transaction(conn):
            match = self._require_match(conn, match_id)
            player = self._player_repo.get(conn, player_id)
            if player is None:
                raise NotFound(f"Player not found: {player_id}")
            existing = self._signup_repo.get(conn, match_id, player_id)
            if existing is None:
                self._require_not_started(match)
                self._require_capacity(conn, match)
            else:
                self._gate.require_admin_or_self(conn, identity, player_id, "change this signup")
                if existing.team == team_value and existing.position == position_value:
                    return existing
            signup = self._signup_repo.upsert(
                conn, match_id, player_id, team_value, position_value, player.display_name
            )
        self._views.invalidate_lineups(match_id)
        return signup

    @operation("update_signup")
    def update_signup(
        self,
        conn: sqlite3.Connection,
        identity: Identity,
        match_id: str,
        player_id: str,
        update: SignupUpdate,
    ) -> Signup:
        """Admin or the player themselves. Team moves do not change the total."""
        with transaction(conn):
            existing = self._signup_repo.get(conn, match_id, player_id)
            if existing is None:
                raise NotFound(f"Signup not found: {match_id}/{player_id}")
            self._gate.require_admin_or_self(conn, identity, player_id, "change this signup")
            if update.is_empty():
                return existing
            team_value = _team_value(update.team) if update.team is not None else existing.team
            if update.clear_position:
                position_value = None
            elif update.position is not None:
                position_value = _position_value(update.position)
            else:
                position_value = existing.position
            self._signup_repo.update(conn, match_id, player_id, team_value, position_value)
            signup = self._signup_repo.get(conn, match_id, player_id)
        self._views.invalidate_lineups(match_id)
        if signup is None:
            raise NotFound(f"Signup not found: {match_id}/{player_id}")
        return signup

    @operation("delete_signup")
    def delete_signup(self, conn: sqlite3.Connection, identity: Identity, match_id: str, player_id: str) -> None:
        with transaction(conn):
            if self._signup_repo.get(conn, match_id, player_id) is None:
                raise NotFound(f"Signup not found: {match_id}/{player_id}")
            current = self._gate.require_admin_or_self(conn, identity, player_id, "remove this signup")
            self._signup_repo.delete(conn, match_id, player_id)
        self._views.invalidate_lineups(match_id)
        logger.info("Player %s left match %s (by %s)", player_id, match_id, current.actor_id)

    # ---------- Reads ----------

    @operation("get_lineup")
    def get_lineup(
        self, conn: sqlite3.Connection, match_id: str, team: Team | str, mode: str = "all"
    ) -> list[LineupEntry]:
        """
        One team ordered gk, lb, cb, rb, cm, st1, st2, then unpositioned players
        by signup time. mode="positioned" leaves the unpositioned out.
        Names are the players' current names, not the signup snapshot.
        """
        if mode not in LINEUP_MODES:
            raise ValidationError(f"Invalid lineup mode '{mode}'. Must be one of: {', '.join(LINEUP_MODES)}")
        team_value = _team_value(team)
        self._require_match(conn, match_id)
        entries = self._views.get_or_load(
            (LINEUP, match_id, team_value), lambda: self._load_lineup(conn, match_id, team_value)
        )
        if mode == "positioned":
            return [e for e in entries if e.position is not None]
        return list(entries)

    def _load_lineup(self, conn: sqlite3.Connection, match_id: str, team: str) -> list[LineupEntry]:
        entries = [_lineup_entry(r) for r in self._signup_repo.list_lineup_rows(conn, match_id, team)]
        # stable sort keeps signup order within the same position
        entries.sort(key=lambda e: e.position_order)
        return entries

    @operation("get_lineups")
    def get_lineups(self, conn: sqlite3.Connection, match_id: str, mode: str = "all") -> dict[str, list[LineupEntry]]:
        return {team.value: self.get_lineup(conn, match_id, team, mode=mode) for team in Team}

    @operation("capacity_summary")
    def capacity_summary(self, conn: sqlite3.Connection, match_id: str) -> CapacitySummary:
        match = self._require_match(conn, match_id)
        counts = self._signup_repo.count_by_team(conn, match_id)
        return CapacitySummary(
            capacity=match.capacity,
            white_count=counts.get(Team.WHITE.value, 0),
            black_count=counts.get(Team.BLACK.value, 0),
        )

    @operation("list_signups")
    def list_signups(self, conn: sqlite3.Connection, match_id: str) -> list[Signup]:
        """Raw rows in signup order, with the name each player had when they joined."""
        self._require_match(conn, match_id)
        return self._signup_repo.list_by_match(conn, match_id)
