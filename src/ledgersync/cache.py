"""Small in-process TTL cache used by the sync dashboard."""
import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple


class TTLCache:
    """
    Mutex-guarded map of key -> (value, stored_at, expires_at).

    Expired entries are dropped when read and by `evict_expired()`. The clock
    is injectable so tests can move time without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: Dict[Hashable, Tuple[Any, float, float]] = {}

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the cached value, or None if missing or expired."""
        entry = self.get_entry(key)
        return entry[0] if entry else None

    def get_entry(self, key: Hashable) -> Optional[Tuple[Any, float]]:
        """Return (value, age_seconds) for a live entry, or None."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, stored_at, expires_at = entry
            if now >= expires_at:
                del self._entries[key]
                return None
            return value, now - stored_at

    def set(self, key: Hashable, value: Any, ttl: float) -> None:
        now = self._clock()
        with self._lock:
            self._entries[key] = (value, now, now + ttl)

    def evict_expired(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, _, expires_at) in self._entries.items() if now >= expires_at]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
