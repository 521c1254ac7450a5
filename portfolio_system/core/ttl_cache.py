"""
TTL Cache
Process-wide key -> value map where each entry carries an absolute expiry.
A read past expiry evicts the entry and reports a miss. Every read-modify-write
runs under one lock because readers fan out over a thread pool.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional


@dataclass
class CacheEntry:
    value: Any
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class TTLCache:
    """Time-to-live cache; default TTL in seconds"""

    def __init__(self, default_ttl: float = 300, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired(self._clock()):
                del self._entries[key]
                return None
            return entry.value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(
                value=value,
                expires_at=self._clock() + (ttl if ttl is not None else self.default_ttl),
            )

    def invalidate(self, key: Optional[str] = None) -> None:
        """Drop one key, or everything when key is None"""
        with self._lock:
            if key:
                self._entries.pop(key, None)
            else:
                self._entries.clear()

    def keys(self) -> List[str]:
        # Expired entries still count until a read evicts them
        with self._lock:
            return list(self._entries.keys())

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
