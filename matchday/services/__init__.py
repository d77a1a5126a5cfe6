"""
Service layer: authorization, players, matches, rosters.
Services own transactions and cache invalidation; repositories only read and write.
"""
from .authorization import AdminRegistry, AuthorizationGate
from .match_service import MatchService
from .player_service import PlayerRegistry
from .roster_service import RosterEngine
from .stats_service import app_stats
from .view_cache import ViewCache, get_view_cache
from .visibility import build_preview, redact_match

__all__ = [
    "AdminRegistry",
    "AuthorizationGate",
    "MatchService",
    "PlayerRegistry",
    "RosterEngine",
    "app_stats",
    "ViewCache",
    "get_view_cache",
    "build_preview",
    "redact_match",
]
