"""
Short-lived, process-local cache of read views: the upcoming list, single
matches and team lineups. Entries expire after settings.view_ttl_seconds and
are dropped eagerly by every write that touches them. Misses (None) are
never stored, and expired entries are pruned on each store.

Cached values are unredacted; the visibility filter runs per caller after a hit.
"""
from __future__ import annotations

import threading
import time
from typing import Any, Callable, Hashable

from matchday.config import get_settings

UPCOMING = "upcoming"
MATCH = "match"
LINEUP = "lineup"


class ViewCache:
    def __init__(self, ttl_seconds: float | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[Hashable, ...], tuple[float, Any]] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> float:
        return self._ttl if self._ttl is not None else get_settings().view_ttl_seconds

    def get_or_load(self, key: tuple[Hashable, ...], loader: Callable[[], Any]) -> Any:
        if self.ttl <= 0:
            return loader()
        now = self._clock()
        with self._lock:
            hit = self._entries.get(key)
            if hit is not None and hit[0] > now:
                return hit[1]
        value = loader()
        if value is None:
            return value
        with self._lock:
            self._prune(now)
            self._entries[key] = (now + self.ttl, value)
        return value

    def _prune(self, now: float) -> None:
        """Drop expired entries. Caller holds the lock."""
        expired = [k for k, (expires, _) in self._entries.items() if expires <= now]
        for k in expired:
            del self._entries[k]

    def invalidate(self, predicate: Callable[[tuple[Hashable, ...]], bool]) -> int:
        with self._lock:
            stale = [k for k in self._entries if predicate(k)]
            for k in stale:
                del self._entries[k]
        return len(stale)

    def invalidate_match(self, match_id: str) -> None:
        """Match row changed: its detail, its lineups and every upcoming list."""
        self.invalidate(lambda k: k[0] == UPCOMING or (k[0] in (MATCH, LINEUP) and k[1] == match_id))

    def invalidate_lineups(self, match_id: str) -> None:
        self.invalidate(lambda k: k[0] == LINEUP and k[1] == match_id)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


_views = ViewCache()


def get_view_cache() -> ViewCache:
    return _views
