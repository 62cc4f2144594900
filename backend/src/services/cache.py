from __future__ import annotations

import threading
from typing import Dict, Optional, Tuple

from models import RatingSnapshot, ScoreResult

_MISSING = object()

CacheKey = Tuple[str, str, str]  # restaurant_id, preferences_version, meal_time


class ScoreCache:
    """Per-restaurant scoring results for one preference state.

    A cached ``None`` means the restaurant was excluded, which is distinct from
    a miss. Every invalidation bumps ``epoch``; a pass captures the epoch
    before it loads data and its writes are dropped if the epoch moved, so a
    result computed from pre-change data never lands after the change.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[CacheKey, Optional[ScoreResult]] = {}
        self._epoch = 0
        self._hits = 0
        self._misses = 0

    @property
    def epoch(self) -> int:
        return self._epoch

    def get(self, key: CacheKey):
        with self._lock:
            value = self._entries.get(key, _MISSING)
            if value is _MISSING:
                self._misses += 1
            else:
                self._hits += 1
            return value

    def set(self, key: CacheKey, value: Optional[ScoreResult], epoch: Optional[int] = None) -> bool:
        with self._lock:
            if epoch is not None and epoch != self._epoch:
                return False
            self._entries[key] = value
            return True

    def invalidate_restaurant(self, restaurant_id: str) -> int:
        with self._lock:
            self._epoch += 1
            stale = [key for key in self._entries if key[0] == restaurant_id]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def retain_version(self, preferences_version: str) -> None:
        """Drop entries computed for any other preference state."""
        with self._lock:
            self._entries = {k: v for k, v in self._entries.items() if k[1] == preferences_version}

    def clear(self) -> None:
        with self._lock:
            self._epoch += 1
            self._entries = {}
            self._hits = 0
            self._misses = 0

    def stats(self) -> dict:
        with self._lock:
            total = self._hits + self._misses
            return {
                "size": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / total * 100, 1) if total > 0 else 0.0,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def is_miss(value: object) -> bool:
    return value is _MISSING


class RatingCache:
    """Rating snapshots by restaurant id, invalidated on rating change events.

    Uses the same epoch guard as ScoreCache for snapshots fetched before an
    invalidation.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[str, RatingSnapshot] = {}
        self._epoch = 0

    @property
    def epoch(self) -> int:
        return self._epoch

    def get(self, restaurant_id: str) -> Optional[RatingSnapshot]:
        with self._lock:
            return self._entries.get(restaurant_id)

    def set(self, restaurant_id: str, snapshot: RatingSnapshot, epoch: Optional[int] = None) -> bool:
        with self._lock:
            if epoch is not None and epoch != self._epoch:
                return False
            self._entries[restaurant_id] = snapshot
            return True

    def invalidate(self, restaurant_id: Optional[str] = None) -> None:
        with self._lock:
            self._epoch += 1
            if restaurant_id is None:
                self._entries = {}
            else:
                self._entries.pop(restaurant_id, None)

    def __contains__(self, restaurant_id: str) -> bool:
        with self._lock:
            return restaurant_id in self._entries
