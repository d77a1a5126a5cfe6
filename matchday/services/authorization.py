"""
Authorization gate and admin registry.

Admin status is membership in the `admins` table, read fresh on every call.
The only way into the registry is AdminRegistry.enroll, which checks the
configured allow-list of emails at first authentication.
"""
from __future__ import annotations

import logging
import sqlite3

from matchday.config import get_settings
from matchday.errors import LoginRequired, Unauthorized, operation
from matchday.models import ANONYMOUS, Identity, User
from matchday.persistence.repositories import AdminRepository

logger = logging.getLogger(__name__)


class AdminRegistry:
    """Persisted set of admin user ids plus the allow-list bootstrap."""

    def __init__(self, allowed_emails: frozenset[str] | None = None) -> None:
        self._repo = AdminRepository()
        self._allowed_emails = allowed_emails

    @property
    def allowed_emails(self) -> frozenset[str]:
        if self._allowed_emails is not None:
            return self._allowed_emails
        return get_settings().admin_emails

    def is_admin(self, conn: sqlite3.Connection, user_id: str) -> bool:
        return self._repo.exists(conn, user_id)

    def is_allowed(self, email: str | None) -> bool:
        return bool(email) and email.strip().lower() in self.allowed_emails

    @operation("enroll_admin")
    def enroll(self, conn: sqlite3.Connection, user: User) -> bool:
        """
        Privileged path: add user to the registry if their email is allow-listed.
        Runs without consulting the gate (the user is not an admin yet).
        Returns whether the user is an admin afterwards.
        """
        if not self.is_allowed(user.email):
            return self.is_admin(conn, user.id)
        if self._repo.insert_if_absent(conn, user.id):
            logger.info("Auto-enrolled admin %s (%s)", user.id, user.email)
        return True

    @operation("revoke_admin")
    def revoke(self, conn: sqlite3.Connection, user_id: str) -> None:
        self._repo.delete(conn, user_id)
        logger.info("Revoked admin %s", user_id)


class AuthorizationGate:
    """
    Resolves the acting identity and re-checks rights at call time.
    Never trusts an is_admin flag carried over from an earlier request.
    """

    def __init__(self, registry: AdminRegistry | None = None) -> None:
        self._registry = registry or AdminRegistry()

    def resolve_identity(self, conn: sqlite3.Connection, actor_id: str | None) -> Identity:
        """No actor -> anonymous. Lookup failures fail closed (non-admin)."""
        if not actor_id:
            return ANONYMOUS
        try:
            is_admin = self._registry.is_admin(conn, actor_id)
        except sqlite3.Error as e:
            logger.warning("Admin lookup failed for %s, treating as non-admin: %s", actor_id, e)
            is_admin = False
        return Identity(actor_id=actor_id, is_admin=is_admin)

    def refresh(self, conn: sqlite3.Connection, identity: Identity) -> Identity:
        """Re-read admin status for the same actor from stored state."""
        return self.resolve_identity(conn, identity.actor_id)

    def require_admin(self, conn: sqlite3.Connection, identity: Identity, action: str) -> Identity:
        current = self.refresh(conn, identity)
        if not current.is_authenticated:
            logger.warning("Anonymous caller denied: %s", action)
            raise LoginRequired(f"Login required to {action}")
        if not current.is_admin:
            logger.warning("Non-admin %s denied: %s", current.actor_id, action)
            raise Unauthorized(f"Only administrators can {action}")
        return current

    def require_admin_or_self(
        self, conn: sqlite3.Connection, identity: Identity, player_id: str, action: str
    ) -> Identity:
        current = self.refresh(conn, identity)
        if current.is_admin or (current.actor_id is not None and current.actor_id == player_id):
            return current
        if not current.is_authenticated:
            logger.warning("Anonymous caller denied: %s for player %s", action, player_id)
            raise LoginRequired(f"Login required to {action}")
        logger.warning("Caller %s denied: %s for player %s", current.actor_id, action, player_id)
        raise Unauthorized(f"Only administrators or the player themselves can {action}")
