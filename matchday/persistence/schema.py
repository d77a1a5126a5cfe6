"""
SQLite schema for matchday entities.
Migration-friendly: each table created with IF NOT EXISTS.
"""
from __future__ import annotations


def users_schema() -> str:
    return """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL UNIQUE COLLATE NOCASE,
        name TEXT NOT NULL,
        password_hash TEXT NOT NULL,
        created_at TEXT NOT NULL
    );
    """


def admins_schema() -> str:
    """Admin registry keyed by user id. Membership is the only source of admin status."""
    return """
    CREATE TABLE IF NOT EXISTS admins (
        user_id TEXT PRIMARY KEY,
        role TEXT NOT NULL DEFAULT 'admin',
        created_at TEXT NOT NULL,
        FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
    );
    """


def players_schema() -> str:
    """display_name is unique (case-sensitive); find-or-create upserts on it."""
    return """
    CREATE TABLE IF NOT EXISTS players (
        id TEXT PRIMARY KEY,
        display_name TEXT NOT NULL UNIQUE,
        image_url TEXT,
        preferred_position TEXT,
        created_at TEXT NOT NULL,
        CHECK (preferred_position IS NULL OR preferred_position IN ('gk', 'lb', 'cb', 'rb', 'cm', 'st1', 'st2'))
    );
    """


def matches_schema() -> str:
    return """
    CREATE TABLE IF NOT EXISTS matches (
        id TEXT PRIMARY KEY,
        starts_at TEXT NOT NULL,
        ends_at TEXT NOT NULL,
        location TEXT,
        capacity INTEGER NOT NULL,
        is_private INTEGER NOT NULL DEFAULT 0,
        match_type TEXT NOT NULL DEFAULT 'friendly',
        total_cost REAL,
        rented_by_player_id TEXT,
        rented_by_name TEXT,
        description TEXT,
        created_by TEXT NOT NULL,
        created_by_label TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY (rented_by_player_id) REFERENCES players(id) ON DELETE SET NULL,
        CHECK (ends_at > starts_at),
        CHECK (capacity > 0),
        CHECK (match_type IN ('friendly', 'training', 'tournament'))
    );
    CREATE INDEX IF NOT EXISTS ix_matches_starts_at ON matches(starts_at);
    """


def signups_schema() -> str:
    """One row per (match, player). The primary key is the uniqueness guarantee."""
    return """
    CREATE TABLE IF NOT EXISTS signups (
        match_id TEXT NOT NULL,
        player_id TEXT NOT NULL,
        team TEXT NOT NULL,
        position TEXT,
        display_name_snapshot TEXT NOT NULL,
        created_at TEXT NOT NULL,
        updated_at TEXT,
        PRIMARY KEY (match_id, player_id),
        FOREIGN KEY (match_id) REFERENCES matches(id) ON DELETE CASCADE,
        FOREIGN KEY (player_id) REFERENCES players(id),
        CHECK (team IN ('white', 'black')),
        CHECK (position IS NULL OR position IN ('gk', 'lb', 'cb', 'rb', 'cm', 'st1', 'st2'))
    );
    CREATE INDEX IF NOT EXISTS ix_signups_match_team ON signups(match_id, team);
    CREATE INDEX IF NOT EXISTS ix_signups_player ON signups(player_id);
    CREATE INDEX IF NOT EXISTS ix_signups_created_at ON signups(created_at);
    """


def all_schema_sql() -> str:
    """Combine all schema DDL for a single execution. Order: users, admins, players, matches, signups."""
    return "\n".join([
        users_schema(),
        admins_schema(),
        players_schema(),
        matches_schema(),
        signups_schema(),
    ])
