"""
In-memory TTL cache for upstream responses.

Each entry expires independently; expired entries are dropped lazily on
read. Nothing is persisted.
"""

import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

from .normalize import cache_key

# Seconds
SEARCH_RESULTS_TTL = 60 * 60
REVIEWS_TTL = 30 * 60


class TTLCache:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() > expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: float) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + ttl, value)

    def __len__(self) -> int:
        return len(self._entries)


def search_key(query: str, location: str, limit: int) -> str:
    return "search:" + cache_key(query, location, str(limit))


def reviews_key(id_or_name: str, limit: int) -> str:
    return "reviews:" + cache_key(id_or_name, str(limit))
