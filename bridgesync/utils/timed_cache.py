"""
Short-lived key/value cache fronting store reads.
"""

import time
from typing import Callable, Dict, Generic, Optional, Tuple, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class TimedCache(Generic[K, V]):
    """
    Mapping whose entries stop being returned once they are older than live_for seconds.

    Entries are kept in the order they were written, so every write can drop
    the expired ones from the front without scanning the whole map.
    """

    def __init__(self, live_for: float, clock: Callable[[], float] = time.monotonic):
        self.live_for = live_for
        self._clock = clock
        self._entries: Dict[K, Tuple[V, float]] = {}

    def get(self, key: K) -> Optional[V]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, stored_at = entry
        if self._clock() - stored_at < self.live_for:
            return value
        del self._entries[key]
        return None

    def set(self, key: K, value: V) -> None:
        now = self._clock()
        self._entries.pop(key, None)
        self._entries[key] = (value, now)
        self._evict_expired(now)

    def delete(self, key: K) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def _evict_expired(self, now: float) -> None:
        while self._entries:
            oldest_key = next(iter(self._entries))
            if now - self._entries[oldest_key][1] < self.live_for:
                return
            del self._entries[oldest_key]

    def __contains__(self, key: K) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        # Expired entries count until the next write evicts them
        return len(self._entries)
