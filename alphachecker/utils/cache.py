"""In-memory time-keyed cache."""
import time
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Hashable, Optional, TypeVar

V = TypeVar("V")


@dataclass
class CacheEntry(Generic[V]):
    """A cached value and the monotonic time it expires at."""
    value: V
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class TTLCache(Generic[V]):
    """
    Small TTL cache keyed by any hashable.

    Expired entries are dropped lazily on read. The clock is injectable so
    expiry can be tested without sleeping.
    """

    def __init__(
        self,
        default_ttl_seconds: float = 300.0,
        max_entries: int = 1024,
        clock: Callable[[], float] = time.monotonic,
    ):
        if default_ttl_seconds <= 0:
            raise ValueError("default_ttl_seconds must be positive")
        self.default_ttl_seconds = default_ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[Hashable, CacheEntry[V]] = {}

    def get(self, key: Hashable) -> Optional[V]:
        """Return the cached value, or None when missing or expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return entry.value

    def set(self, key: Hashable, value: V, ttl_seconds: Optional[float] = None) -> None:
        """Store a value for ttl_seconds (defaults to the cache TTL)."""
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        if len(self._entries) >= self.max_entries and key not in self._entries:
            self.purge_expired()
            if len(self._entries) >= self.max_entries:
                # Evict the entry closest to expiry
                oldest = min(self._entries, key=lambda k: self._entries[k].expires_at)
                del self._entries[oldest]
        self._entries[key] = CacheEntry(value=value, expires_at=self._clock() + ttl)

    def delete(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        """Drop all expired entries and return how many were removed."""
        now = self._clock()
        expired = [k for k, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
