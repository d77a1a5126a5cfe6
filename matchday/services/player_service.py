"""
Player registry: identities that sign up for matches.
Players are created implicitly at signup (upsert by display name) or by
explicit registration, and are never deleted here.
"""
from __future__ import annotations

import logging
import sqlite3

from matchday.errors import LoginRequired, NotFound, ValidationError, operation
from matchday.models import ANONYMOUS, Identity, Player, PlayerUpdate, Position
from matchday.persistence.db import transaction
from matchday.persistence.repositories import PlayerRepository
from matchday.services.authorization import AuthorizationGate
from matchday.services.view_cache import LINEUP, ViewCache, get_view_cache

logger = logging.getLogger(__name__)

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 50
SEARCH_MIN_LENGTH = 2
SEARCH_DEFAULT_LIMIT = 10


def normalize_display_name(name: str | None) -> str:
    """Trim and length-check a display name. Matching stays case-sensitive."""
    cleaned = (name or "").strip()
    if len(cleaned) < NAME_MIN_LENGTH:
        raise ValidationError(f"Player name must be at least {NAME_MIN_LENGTH} characters")
    if len(cleaned) > NAME_MAX_LENGTH:
        raise ValidationError(f"Player name cannot exceed {NAME_MAX_LENGTH} characters")
    return cleaned


def _position_value(position: Position | str | None) -> str | None:
    if position is None:
        return None
    try:
        return Position(position).value
    except ValueError:
        raise ValidationError(f"Unknown position: {position}") from None


class PlayerRegistry:
    def __init__(self, gate: AuthorizationGate | None = None, views: ViewCache | None = None) -> None:
        self._repo = PlayerRepository()
        self._gate = gate or AuthorizationGate()
        self._views = views or get_view_cache()

    @operation("get_player")
    def get_player(self, conn: sqlite3.Connection, player_id: str) -> Player:
        player = self._repo.get(conn, player_id)
        if player is None:
            raise NotFound(f"Player not found: {player_id}")
        return player

    @operation("list_players")
    def list_players(self, conn: sqlite3.Connection, limit: int = 500) -> list[Player]:
        return self._repo.list_all(conn, limit=limit)

    @operation("find_or_create_player")
    def find_or_create_by_name(self, conn: sqlite3.Connection, name: str) -> Player:
        """Exact, case-sensitive match on display name; created if absent. Atomic."""
        display_name = normalize_display_name(name)
        with transaction(conn):
            return self._repo.insert_if_absent(conn, display_name)

    @operation("ensure_user_player")
    def ensure_user_player(self, conn: sqlite3.Connection, identity: Identity, display_name: str) -> Player:
        """
        The actor's own player row (id == actor id), created on first use.
        If another player already holds the name, a numeric suffix is added.
        """
        if not identity.is_authenticated:
            raise LoginRequired("Login required to sign up as yourself")
        with transaction(conn):
            existing = self._repo.get(conn, identity.actor_id)
            if existing is not None:
                return existing
            base = normalize_display_name(display_name)
            candidate = base
            suffix = 2
            while self._repo.get_by_name(conn, candidate) is not None:
                candidate = f"{base[:NAME_MAX_LENGTH - 3]} {suffix}"
                suffix += 1
            player = self._repo.insert_if_absent(conn, candidate, id=identity.actor_id)
            logger.info("Created player %s for user %s", player.display_name, identity.actor_id)
            return player

    @operation("register_player")
    def register_player(
        self,
        conn: sqlite3.Connection,
        display_name: str,
        image_url: str | None = None,
        preferred_position: Position | str | None = None,
        identity: Identity = ANONYMOUS,
    ) -> Player:
        """
        Explicit registration by display name. A new name is open to anyone.
        For an existing name, omitted fields are kept and changing avatar or
        position requires admin or the player themselves.
        """
        name = normalize_display_name(display_name)
        position = _position_value(preferred_position)
        with transaction(conn):
            existing = self._repo.get_by_name(conn, name)
            if existing is None:
                return self._repo.insert_if_absent(conn, name, image_url=image_url, preferred_position=position)
            fields: dict[str, object] = {}
            if image_url is not None and image_url != existing.image_url:
                fields["image_url"] = image_url
            if position is not None and position != existing.preferred_position:
                fields["preferred_position"] = position
            if not fields:
                return existing
            self._gate.require_admin_or_self(conn, identity, existing.id, "update this player")
            self._repo.update(conn, existing.id, fields)
            player = self._repo.get(conn, existing.id)
        self._views.invalidate(lambda k: k[0] == LINEUP)
        if player is None:
            raise NotFound(f"Player not found: {existing.id}")
        return player

    @operation("search_players")
    def search(self, conn: sqlite3.Connection, query: str, limit: int = SEARCH_DEFAULT_LIMIT) -> list[Player]:
        """Case-insensitive substring search, alphabetical. Short queries return nothing."""
        q = (query or "").strip()
        if len(q) < SEARCH_MIN_LENGTH:
            return []
        return self._repo.search(conn, q, limit=max(1, min(limit, 50)))

    @operation("update_player")
    def update_player(
        self, conn: sqlite3.Connection, identity: Identity, player_id: str, update: PlayerUpdate
    ) -> Player:
        """Admin or the player themselves."""
        with transaction(conn):
            player = self._repo.get(conn, player_id)
            if player is None:
                raise NotFound(f"Player not found: {player_id}")
            self._gate.require_admin_or_self(conn, identity, player_id, "update this player")
            fields: dict[str, object] = {}
            if update.display_name is not None:
                name = normalize_display_name(update.display_name)
                if name != player.display_name:
                    holder = self._repo.get_by_name(conn, name)
                    if holder is not None:
                        raise ValidationError(f"Display name already taken: {name}")
                    fields["display_name"] = name
            if update.clear_image_url:
                fields["image_url"] = None
            elif update.image_url is not None:
                fields["image_url"] = update.image_url
            if update.clear_preferred_position:
                fields["preferred_position"] = None
            elif update.preferred_position is not None:
                fields["preferred_position"] = _position_value(update.preferred_position)
            self._repo.update(conn, player_id, fields)
            updated = self._repo.get(conn, player_id)
        if "display_name" in fields or "image_url" in fields:
            # lineups show live names and avatars
            self._views.invalidate(lambda k: k[0] == LINEUP)
        if updated is None:
            raise NotFound(f"Player not found: {player_id}")
        return updated
