"""
Match store: scheduling, capacity and visibility of matches.
Only administrators create, modify or delete matches; reads are open and
go through the visibility filter before reaching a caller.
"""
from __future__ import annotations

import dataclasses
import logging
import sqlite3
from datetime import datetime, timedelta

from matchday.config import get_settings
from matchday.datetime_utils import to_utc, utcnow
from matchday.errors import NotFound, ValidationError, operation
from matchday.models import CAPACITY_RANGES, Identity, Match, MatchSpec, MatchType, MatchUpdate, MatchView
from matchday.persistence.db import transaction
from matchday.persistence.repositories import (
    MatchRepository,
    PlayerRepository,
    SignupRepository,
    UserRepository,
)
from matchday.services.authorization import AuthorizationGate
from matchday.services.view_cache import MATCH, UPCOMING, ViewCache, get_view_cache
from matchday.services.visibility import redact_match

logger = logging.getLogger(__name__)

LOCATION_MIN_LENGTH = 3
LOCATION_MAX_LENGTH = 100
ORGANIZER_NAME_MIN_LENGTH = 2
ORGANIZER_NAME_MAX_LENGTH = 50
DESCRIPTION_MAX_LENGTH = 500
MAX_TOTAL_COST = 500.0
MIN_DURATION = timedelta(hours=1)
MAX_DURATION = timedelta(hours=4)
UPCOMING_DEFAULT_LIMIT = 20
UPCOMING_MAX_LIMIT = 100


def _match_type(value: MatchType | str) -> MatchType:
    try:
        return MatchType(value)
    except ValueError:
        raise ValidationError(
            f"Invalid match type '{value}'. Must be one of: friendly, training, tournament"
        ) from None


def validate_capacity(match_type: MatchType | str, capacity: int) -> None:
    mt = _match_type(match_type)
    low, high = CAPACITY_RANGES[mt]
    if isinstance(capacity, bool) or not isinstance(capacity, int):
        raise ValidationError("Capacity must be a whole number")
    if not (low <= capacity <= high):
        raise ValidationError(
            f"Invalid capacity {capacity} for a {mt.value} match (allowed {low}-{high})"
        )


def validate_schedule(starts_at: datetime, ends_at: datetime) -> None:
    if ends_at <= starts_at:
        raise ValidationError("Match must end after it starts")
    duration = ends_at - starts_at
    if duration < MIN_DURATION:
        raise ValidationError("Match must last at least 1 hour")
    if duration > MAX_DURATION:
        raise ValidationError("Match cannot last more than 4 hours")


def validate_location(location: str | None) -> str:
    cleaned = (location or "").strip()
    if len(cleaned) < LOCATION_MIN_LENGTH:
        raise ValidationError(f"Location must be at least {LOCATION_MIN_LENGTH} characters")
    if len(cleaned) > LOCATION_MAX_LENGTH:
        raise ValidationError(f"Location cannot exceed {LOCATION_MAX_LENGTH} characters")
    return cleaned


def validate_total_cost(total_cost: float | None) -> None:
    if total_cost is None:
        return
    if total_cost < 0:
        raise ValidationError("Cost cannot be negative")
    if total_cost > MAX_TOTAL_COST:
        raise ValidationError(f"Cost cannot exceed {MAX_TOTAL_COST:g}")


def validate_description(description: str | None) -> None:
    if description is not None and len(description) > DESCRIPTION_MAX_LENGTH:
        raise ValidationError(f"Description cannot exceed {DESCRIPTION_MAX_LENGTH} characters")


def validate_match_spec(spec: MatchSpec, now: datetime | None = None) -> None:
    """All creation rules except those that need the store (organizer player existence)."""
    starts_at, ends_at = to_utc(spec.starts_at), to_utc(spec.ends_at)
    validate_schedule(starts_at, ends_at)
    if starts_at <= to_utc(now or utcnow()):
        raise ValidationError("Match date and time must be in the future")
    validate_location(spec.location)
    validate_capacity(spec.match_type, spec.capacity)
    validate_total_cost(spec.total_cost)
    validate_description(spec.description)
    organizer_name = (spec.rented_by_name or "").strip()
    if not organizer_name and not spec.rented_by_player_id:
        raise ValidationError("Provide the organizer's name or player")
    if organizer_name and not (ORGANIZER_NAME_MIN_LENGTH <= len(organizer_name) <= ORGANIZER_NAME_MAX_LENGTH):
        raise ValidationError(
            f"Organizer name must be {ORGANIZER_NAME_MIN_LENGTH}-{ORGANIZER_NAME_MAX_LENGTH} characters"
        )


class MatchService:
    """
    Domain logic for matches: admin guards, validation, cache invalidation.
    Persistence is delegated to repositories.
    """

    def __init__(self, gate: AuthorizationGate | None = None, views: ViewCache | None = None) -> None:
        self._gate = gate or AuthorizationGate()
        self._views = views or get_view_cache()
        self._match_repo = MatchRepository()
        self._player_repo = PlayerRepository()
        self._signup_repo = SignupRepository()
        self._user_repo = UserRepository()

    # ---------- Writes (admin only) ----------

    @operation("create_match")
    def create_match(
        self, conn: sqlite3.Connection, identity: Identity, spec: MatchSpec, now: datetime | None = None
    ) -> Match:
        actor = self._gate.require_admin(conn, identity, "create matches")
        validate_match_spec(spec, now=now)
        organizer_name = (spec.rented_by_name or "").strip() or None
        with transaction(conn):
            if spec.rented_by_player_id and self._player_repo.get(conn, spec.rented_by_player_id) is None:
                raise ValidationError(f"Organizer player not found: {spec.rented_by_player_id}")
            user = self._user_repo.get(conn, actor.actor_id)
            match = self._match_repo.create(
                conn,
                starts_at=spec.starts_at,
                ends_at=spec.ends_at,
                location=validate_location(spec.location),
                capacity=spec.capacity,
                is_private=spec.is_private,
                match_type=_match_type(spec.match_type).value,
                created_by=actor.actor_id,
                total_cost=spec.total_cost,
                rented_by_player_id=spec.rented_by_player_id,
                rented_by_name=organizer_name,
                description=spec.description,
                created_by_label=user.name if user else None,
            )
        self._views.invalidate_match(match.id)
        logger.info("Match %s created by %s at %s", match.id, actor.actor_id, match.starts_at.isoformat())
        return match

    @operation("update_match")
    def update_match(
        self, conn: sqlite3.Connection, identity: Identity, match_id: str, update: MatchUpdate
    ) -> Match:
        self._gate.require_admin(conn, identity, "modify matches")
        with transaction(conn):
            current = self._match_repo.get(conn, match_id)
            if current is None:
                raise NotFound(f"Match not found: {match_id}")
            if update.is_empty():
                return current
            merged = self._apply_update(current, update)
            validate_schedule(merged.starts_at, merged.ends_at)
            validate_capacity(merged.match_type, merged.capacity)
            validate_total_cost(merged.total_cost)
            validate_description(merged.description)
            if get_settings().enforce_capacity and merged.capacity < current.capacity:
                taken = self._signup_repo.count_by_match(conn, match_id)
                if merged.capacity < taken:
                    raise ValidationError(
                        f"Capacity {merged.capacity} is below the {taken} players already signed up"
                    )
            self._match_repo.update(conn, merged)
            updated = self._match_repo.get(conn, match_id)
        self._views.invalidate_match(match_id)
        if updated is None:
            raise NotFound(f"Match not found: {match_id}")
        return updated

    @staticmethod
    def _apply_update(current: Match, update: MatchUpdate) -> Match:
        changes: dict[str, object] = {}
        if update.starts_at is not None:
            changes["starts_at"] = to_utc(update.starts_at)
        if update.ends_at is not None:
            changes["ends_at"] = to_utc(update.ends_at)
        if update.location is not None:
            changes["location"] = validate_location(update.location)
        if update.capacity is not None:
            changes["capacity"] = update.capacity
        if update.is_private is not None:
            changes["is_private"] = update.is_private
        if update.match_type is not None:
            changes["match_type"] = _match_type(update.match_type).value
        if update.clear_total_cost:
            changes["total_cost"] = None
        elif update.total_cost is not None:
            changes["total_cost"] = update.total_cost
        if update.clear_description:
            changes["description"] = None
        elif update.description is not None:
            changes["description"] = update.description
        return dataclasses.replace(current, **changes)

    @operation("delete_match")
    def delete_match(self, conn: sqlite3.Connection, identity: Identity, match_id: str) -> None:
        """Signups go with the match (ON DELETE CASCADE)."""
        actor = self._gate.require_admin(conn, identity, "delete matches")
        with transaction(conn):
            if not self._match_repo.delete(conn, match_id):
                raise NotFound(f"Match not found: {match_id}")
        self._views.invalidate_match(match_id)
        logger.info("Match %s deleted by %s", match_id, actor.actor_id)

    # ---------- Reads ----------

    @operation("get_match")
    def get_match(self, conn: sqlite3.Connection, match_id: str) -> Match:
        match = self._views.get_or_load((MATCH, match_id), lambda: self._match_repo.get(conn, match_id))
        if match is None:
            raise NotFound(f"Match not found: {match_id}")
        return match

    @operation("list_upcoming")
    def list_upcoming(
        self, conn: sqlite3.Connection, limit: int = UPCOMING_DEFAULT_LIMIT, now: datetime | None = None
    ) -> list[Match]:
        """Matches with starts_at >= now, soonest first."""
        limit = max(1, min(limit, UPCOMING_MAX_LIMIT))
        if now is not None:
            return self._match_repo.list_upcoming(conn, to_utc(now), limit=limit)
        cached = self._views.get_or_load(
            (UPCOMING, limit), lambda: self._match_repo.list_upcoming(conn, utcnow(), limit=limit)
        )
        # A cached list can age past the start of its first entries.
        current = utcnow()
        return [m for m in cached if m.starts_at >= current]

    # ---------- Caller-facing reads (visibility filter applied) ----------

    def get_match_view(self, conn: sqlite3.Connection, identity: Identity, match_id: str) -> MatchView:
        current = self._gate.refresh(conn, identity)
        return redact_match(self.get_match(conn, match_id), current.is_admin)

    def list_upcoming_views(
        self, conn: sqlite3.Connection, identity: Identity, limit: int = UPCOMING_DEFAULT_LIMIT
    ) -> list[MatchView]:
        current = self._gate.refresh(conn, identity)
        return [redact_match(m, current.is_admin) for m in self.list_upcoming(conn, limit=limit)]
