"""
Runtime configuration read from environment variables.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path


def _default_db_path() -> Path:
    return Path(__file__).resolve().parent.parent / "data" / "matchday.db"


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class Settings:
    db_path: Path = field(default_factory=_default_db_path)
    jwt_secret_key: str = "matchday-dev-secret-change-in-production"
    access_token_expire_minutes: int = 60 * 24 * 7  # 7 days
    # Emails auto-enrolled as admins on first authentication. Stored lowercase.
    admin_emails: frozenset[str] = frozenset()
    enforce_capacity: bool = True
    view_ttl_seconds: float = 120.0
    busy_timeout_ms: int = 5000
    log_level: str = "INFO"
    cors_origins: list[str] = field(default_factory=lambda: ["http://localhost:3000", "http://127.0.0.1:3000"])

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        defaults = cls()
        db_path = env.get("MATCHDAY_DB_PATH")
        return cls(
            db_path=Path(db_path) if db_path else defaults.db_path,
            jwt_secret_key=env.get("JWT_SECRET_KEY", defaults.jwt_secret_key),
            access_token_expire_minutes=int(
                env.get("ACCESS_TOKEN_EXPIRE_MINUTES", defaults.access_token_expire_minutes)
            ),
            admin_emails=frozenset(e.lower() for e in _parse_list(env.get("ADMIN_EMAILS"))),
            enforce_capacity=_parse_bool(env.get("MATCHDAY_ENFORCE_CAPACITY"), defaults.enforce_capacity),
            view_ttl_seconds=float(env.get("MATCHDAY_VIEW_TTL_SECONDS", defaults.view_ttl_seconds)),
            busy_timeout_ms=int(env.get("MATCHDAY_BUSY_TIMEOUT_MS", defaults.busy_timeout_ms)),
            log_level=env.get("LOG_LEVEL", defaults.log_level).upper(),
            cors_origins=_parse_list(env.get("CORS_ORIGINS")) or defaults.cors_origins,
        )


_settings: Settings | None = None


def get_settings() -> Settings:
    """Process-wide settings, loaded from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def set_settings(settings: Settings) -> None:
    global _settings
    _settings = settings


def reset_settings() -> None:
    """Drop cached settings so the next get_settings() re-reads the environment."""
    global _settings
    _settings = None
