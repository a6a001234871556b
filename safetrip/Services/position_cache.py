# safetrip/Services/position_cache.py
"""
In-memory last-known-position cache.

Purpose:
- Serve the live position of a tourist without a database query
- Never let an out-of-order or late upload move the position backwards

Architecture:
- Thread-safe (uses threading.Lock)
- LRU eviction (removes least recently touched tourists when full)
- Writes are compare-and-set on recorded_at, not unconditional overwrites
"""

import threading
from collections import OrderedDict
from datetime import datetime
from typing import Any, Dict, Optional

from safetrip.Core.clock import as_utc
from safetrip.Core.config import settings


class PositionCache:
    """
    Per-tourist last-known-position store.

    Attributes:
        max_size: Maximum number of tourists kept before LRU eviction
    """

    def __init__(self, max_size: int = 10000):
        self._cache: OrderedDict[str, Dict[str, Any]] = OrderedDict()
        self._lock = threading.Lock()
        self.max_size = max_size

    def get(self, tourist_id: str) -> Optional[Dict[str, Any]]:
        """
        Returns:
            A copy of the cached entry, or None if the tourist is unknown.
        """
        with self._lock:
            entry = self._cache.get(tourist_id)
            if entry is None:
                return None
            self._cache.move_to_end(tourist_id)
            return dict(entry)

    def compare_and_set(self, tourist_id: str, entry: Dict[str, Any]) -> bool:
        """
        Store `entry` only if its recorded_at is strictly newer than the
        cached one.

        The read, the comparison and the write happen under one lock, so two
        batches for the same tourist processed concurrently cannot regress
        the position.

        Args:
            tourist_id: Cache key
            entry: Position fields; must contain 'recorded_at'

        Returns:
            True if the entry was written.

        Example:
            cache.compare_and_set("tourist-1", {"latitude": 40.4, "longitude": -3.7,
                                                "recorded_at": sample.recorded_at})
        """
        recorded_at = as_utc(entry["recorded_at"])

        with self._lock:
            current = self._cache.get(tourist_id)
            if current is not None and as_utc(current["recorded_at"]) >= recorded_at:
                return False

            self._cache[tourist_id] = {**entry, "recorded_at": recorded_at}
            self._cache.move_to_end(tourist_id)

            if len(self._cache) > self.max_size:
                oldest_key = next(iter(self._cache))
                del self._cache[oldest_key]

            return True

    def invalidate(self, tourist_id: str) -> bool:
        """Drop a tourist's entry (e.g. when the session ends)."""
        with self._lock:
            if tourist_id in self._cache:
                del self._cache[tourist_id]
                print(f"[CACHE] Invalidated {tourist_id}")
                return True
            return False

    def clear(self) -> None:
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
        print(f"[CACHE] Cleared {count} entries")

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            newest: Optional[datetime] = max(
                (entry["recorded_at"] for entry in self._cache.values()),
                default=None
            )
            return {
                "size": len(self._cache),
                "max_size": self.max_size,
                "newest_recorded_at": newest,
            }


# Global cache instance (singleton)
position_cache = PositionCache(max_size=settings.POSITION_CACHE_MAX_SIZE)
