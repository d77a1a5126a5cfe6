"""
Data models for matches, players and signups.
Domain objects only; no persistence or API logic.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union


# ---------- Enums ----------
class MatchType(str, Enum):
    FRIENDLY = "friendly"
    TRAINING = "training"
    TOURNAMENT = "tournament"


class Team(str, Enum):
    WHITE = "white"
    BLACK = "black"


class Position(str, Enum):
    """Seven slots of a small-sided team, in canonical lineup order."""
    GK = "gk"
    LB = "lb"
    CB = "cb"
    RB = "rb"
    CM = "cm"
    ST1 = "st1"
    ST2 = "st2"


# Inclusive (min, max) capacity per match type.
CAPACITY_RANGES: dict[MatchType, tuple[int, int]] = {
    MatchType.TRAINING: (1, 6),
    MatchType.FRIENDLY: (14, 18),
    MatchType.TOURNAMENT: (14, 18),
}


# ---------- User (account) ----------
@dataclass
class User:
    """An account that can authenticate. email is the verified contact address."""
    id: str
    email: str
    name: str
    created_at: datetime
    password_hash: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class Identity:
    """The acting caller for one request. Never cached across requests."""
    actor_id: str | None
    is_admin: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.actor_id is not None

    def to_dict(self) -> dict[str, Any]:
        return {"actor_id": self.actor_id, "is_admin": self.is_admin}


ANONYMOUS = Identity(actor_id=None, is_admin=False)


# ---------- Player ----------
@dataclass
class Player:
    id: str
    display_name: str
    created_at: datetime
    image_url: str | None = None
    preferred_position: str | None = None  # Position value

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "image_url": self.image_url,
            "preferred_position": self.preferred_position,
            "created_at": self.created_at.isoformat(),
        }


# ---------- Match ----------
@dataclass
class Match:
    """
    A scheduled session. ends_at > starts_at; capacity within the match type's range.
    Organizer: rented_by_player_id and/or rented_by_name (at least one).
    """
    id: str
    starts_at: datetime
    ends_at: datetime
    location: str | None
    capacity: int
    is_private: bool
    match_type: str  # MatchType value
    created_by: str
    created_at: datetime
    total_cost: float | None = None
    rented_by_player_id: str | None = None
    rented_by_name: str | None = None
    description: str | None = None
    created_by_label: str | None = None

    @property
    def duration_hours(self) -> float:
        return (self.ends_at - self.starts_at).total_seconds() / 3600

    @property
    def cost_per_player(self) -> float | None:
        if self.total_cost is None or self.capacity <= 0:
            return None
        return round(self.total_cost / self.capacity, 2)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "starts_at": self.starts_at.isoformat(),
            "ends_at": self.ends_at.isoformat(),
            "location": self.location,
            "capacity": self.capacity,
            "is_private": self.is_private,
            "match_type": self.match_type,
            "total_cost": self.total_cost,
            "cost_per_player": self.cost_per_player,
            "rented_by_player_id": self.rented_by_player_id,
            "rented_by_name": self.rented_by_name,
            "description": self.description,
            "created_by": self.created_by,
            "created_by_label": self.created_by_label,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class MatchSpec:
    """Input for creating a match."""
    starts_at: datetime
    ends_at: datetime
    location: str
    capacity: int = 18
    is_private: bool = False
    match_type: MatchType = MatchType.FRIENDLY
    total_cost: float | None = None
    rented_by_player_id: str | None = None
    rented_by_name: str | None = None
    description: str | None = None


@dataclass
class MatchUpdate:
    """
    Partial update. None means "leave unchanged"; clear_* flags null out
    nullable columns explicitly.
    """
    starts_at: datetime | None = None
    ends_at: datetime | None = None
    location: str | None = None
    capacity: int | None = None
    is_private: bool | None = None
    match_type: MatchType | None = None
    total_cost: float | None = None
    clear_total_cost: bool = False
    description: str | None = None
    clear_description: bool = False

    def is_empty(self) -> bool:
        return all(
            getattr(self, name) is None
            for name in ("starts_at", "ends_at", "location", "capacity", "is_private",
                         "match_type", "total_cost", "description")
        ) and not self.clear_total_cost and not self.clear_description


@dataclass
class PlayerUpdate:
    display_name: str | None = None
    image_url: str | None = None
    clear_image_url: bool = False
    preferred_position: Position | None = None
    clear_preferred_position: bool = False


# ---------- Signup ----------
@dataclass
class Signup:
    """
    One player's slot in one match. At most one per (match_id, player_id).
    display_name_snapshot is frozen at signup time (audit trail only).
    """
    match_id: str
    player_id: str
    team: str  # Team value
    display_name_snapshot: str
    created_at: datetime
    position: str | None = None  # Position value
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "match_id": self.match_id,
            "player_id": self.player_id,
            "team": self.team,
            "position": self.position,
            "display_name_snapshot": self.display_name_snapshot,
            "created_at": self.created_at.isoformat(),
        }
        if self.updated_at is not None:
            d["updated_at"] = self.updated_at.isoformat()
        return d


@dataclass
class SignupUpdate:
    team: Team | None = None
    position: Position | None = None
    clear_position: bool = False

    def is_empty(self) -> bool:
        return self.team is None and self.position is None and not self.clear_position


# ---------- Player choice at signup ----------
@dataclass(frozen=True)
class ExistingPlayer:
    player_id: str


@dataclass(frozen=True)
class NewPlayer:
    """Find-or-create by exact display name."""
    display_name: str


@dataclass(frozen=True)
class CurrentUserPlayer:
    """The authenticated actor's own player (player id == actor id)."""
    display_name: str


PlayerChoice = Union[ExistingPlayer, NewPlayer, CurrentUserPlayer]


# ---------- Lineup (derived, never persisted) ----------
@dataclass(frozen=True)
class LineupEntry:
    match_id: str
    team: str
    player_id: str
    display_name: str  # live name from players
    image_url: str | None
    position: str | None
    position_order: int
    position_label: str | None
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "match_id": self.match_id,
            "team": self.team,
            "player_id": self.player_id,
            "display_name": self.display_name,
            "image_url": self.image_url,
            "position": self.position,
            "position_order": self.position_order,
            "position_label": self.position_label,
        }


@dataclass
class CapacitySummary:
    capacity: int
    white_count: int
    black_count: int

    @property
    def total(self) -> int:
        return self.white_count + self.black_count

    @property
    def spots_remaining(self) -> int:
        return max(self.capacity - self.total, 0)

    @property
    def is_full(self) -> bool:
        return self.total >= self.capacity

    def to_dict(self) -> dict[str, Any]:
        return {
            "capacity": self.capacity,
            "white_count": self.white_count,
            "black_count": self.black_count,
            "total": self.total,
            "spots_remaining": self.spots_remaining,
            "is_full": self.is_full,
        }


@dataclass
class MatchView:
    """A Match as one caller may see it (after the visibility filter)."""
    match: Match
    redacted: bool = False
    hidden_fields: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        d = self.match.to_dict()
        d["redacted"] = self.redacted
        return d
