"""Process-local TTL cache shared by every user session.

Entries expire lazily on read and in a periodic sweep. When the store is
full, the quarter of entries with the fewest hits is evicted before the new
entry goes in.
"""

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional


logger = logging.getLogger(__name__)

DEFAULT_TTL = 5 * 60
MAX_CACHE_SIZE = 100
EVICTION_FRACTION = 0.25


class CacheKind(str, Enum):
    categories = "categories"
    cards = "cards"
    transactions = "transactions"
    recurring = "recurring"
    budgets = "budgets"
    summary = "summary"


CACHE_TTLS: dict[CacheKind, float] = {
    CacheKind.categories: 10 * 60,
    CacheKind.cards: 10 * 60,
    CacheKind.transactions: 2 * 60,
    CacheKind.recurring: 5 * 60,
    CacheKind.budgets: 5 * 60,
    CacheKind.summary: 60,
}


def cache_key(kind: CacheKind, user_id: int) -> str:
    return f"{kind.value}_{user_id}"


def user_cache_keys(user_id: int) -> list[str]:
    return [cache_key(kind, user_id) for kind in CacheKind]


@dataclass
class CacheEntry:
    data: Any
    timestamp: float
    ttl: float
    hits: int = 0

    def expired(self, now: float) -> bool:
        return now - self.timestamp > self.ttl


@dataclass(frozen=True)
class CacheStats:
    size: int
    hits: int
    misses: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def as_dict(self) -> dict[str, object]:
        return {
            "size": self.size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hit_rate,
        }


class TTLCache:
    def __init__(
        self,
        capacity: int = MAX_CACHE_SIZE,
        default_ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.capacity = capacity
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.has(key)

    def set(self, key: str, data: Any, ttl: Optional[float] = None) -> None:
        with self._lock:
            if len(self._entries) >= self.capacity:
                self._evict_least_used()
            self._entries[key] = CacheEntry(
                data=data,
                timestamp=self._clock(),
                ttl=self.default_ttl if ttl is None else ttl,
            )

    def get(self, key: str) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None
            if entry.expired(self._clock()):
                del self._entries[key]
                self._misses += 1
                return None
            entry.hits += 1
            self._hits += 1
            return entry.data

    def has(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            if entry.expired(self._clock()):
                del self._entries[key]
                return False
            return True

    def clear(self, key: Optional[str] = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def clear_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefix)]
            for key in doomed:
                del self._entries[key]
            return len(doomed)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def sweep(self) -> int:
        with self._lock:
            now = self._clock()
            expired = [k for k, entry in self._entries.items() if entry.expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.info(f"cache_sweep: removed={len(expired)}")
        return len(expired)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                size=len(self._entries), hits=self._hits, misses=self._misses
            )

    def _evict_least_used(self) -> None:
        # sorted() is stable, so ties fall back to insertion order
        ranked = sorted(self._entries.items(), key=lambda item: item[1].hits)
        to_remove = max(1, int(len(ranked) * EVICTION_FRACTION))
        for key, _entry in ranked[:to_remove]:
            del self._entries[key]
        logger.info(f"cache_evict: removed={to_remove} capacity={self.capacity}")
