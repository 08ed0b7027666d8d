"""
In-memory TTL cache.

Entries expire a fixed number of seconds after they are written and the
least recently used entry is evicted once the cache is full. The clock is
injectable so expiry can be tested without sleeping.
"""

import time
from collections import OrderedDict
from typing import Callable, Generic, Hashable, Optional, TypeVar

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Bounded key-value store with per-entry expiry."""

    def __init__(
        self,
        ttl_seconds: float,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.ttl = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: OrderedDict[Hashable, tuple[float, V]] = OrderedDict()
        self._hits = 0
        self._misses = 0

    def _expired(self, written_at: float) -> bool:
        return self._clock() - written_at >= self.ttl

    def get(self, key: Hashable) -> Optional[V]:
        """Return a fresh value or None."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        written_at, value = entry
        if self._expired(written_at):
            del self._entries[key]
            self._misses += 1
            return None

        self._entries.move_to_end(key)
        self._hits += 1
        return value

    def set(self, key: Hashable, value: V) -> None:
        self._entries[key] = (self._clock(), value)
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)

    def invalidate(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        expired = [k for k, (written_at, _) in self._entries.items() if self._expired(written_at)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def stats(self) -> dict[str, int]:
        return {
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not self._expired(entry[0])
