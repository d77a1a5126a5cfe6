"""
Shared fixtures: a temporary database per test, fresh settings and an empty view cache.
"""
from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

import sys
sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from matchday.auth import hash_password
from matchday.config import Settings, reset_settings, set_settings
from matchday.datetime_utils import utcnow
from matchday.models import Identity, MatchSpec, MatchType
from matchday.persistence.db import get_connection, init_db, set_db_path
from matchday.persistence.repositories import AdminRepository, UserRepository
from matchday.services.view_cache import get_view_cache

ADMIN_EMAIL = "boss@example.com"


@pytest.fixture(autouse=True)
def settings(tmp_path):
    s = Settings(db_path=tmp_path / "matchday.db", admin_emails=frozenset({ADMIN_EMAIL}))
    set_settings(s)
    get_view_cache().clear()
    yield s
    get_view_cache().clear()
    reset_settings()


@pytest.fixture
def db_conn(tmp_path, settings):
    db_path = tmp_path / "matchday.db"
    set_db_path(db_path)
    init_db(db_path=db_path)
    conn = get_connection()
    try:
        yield conn
    finally:
        conn.close()


def make_user(conn, email: str, name: str | None = None):
    return UserRepository().create(conn, email, hash_password("secret123"), name=name)


@pytest.fixture
def admin(db_conn) -> Identity:
    user = make_user(db_conn, ADMIN_EMAIL, name="Boss")
    AdminRepository().insert_if_absent(db_conn, user.id)
    return Identity(actor_id=user.id, is_admin=True)


@pytest.fixture
def member(db_conn) -> Identity:
    user = make_user(db_conn, "member@example.com", name="Member")
    return Identity(actor_id=user.id)


def match_spec(**overrides) -> MatchSpec:
    """A valid friendly tomorrow evening; override any field."""
    starts = utcnow().replace(microsecond=0) + timedelta(days=1)
    values = dict(
        starts_at=starts,
        ends_at=starts + timedelta(hours=1, minutes=30),
        location="Riverside Pitch 3",
        capacity=18,
        is_private=False,
        match_type=MatchType.FRIENDLY,
        rented_by_name="Sam Organizer",
    )
    values.update(overrides)
    return MatchSpec(**values)
