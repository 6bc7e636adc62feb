"""
Time-boxed read cache.

Responsibility:
- Cap read volume against the store by remembering query results for a short TTL.

Design notes:
- Never a source of truth: expired or missing entries read as absent, and any
  failure inside the cache falls through to a live read (see `read_through`).
- Writers invalidate by exact key or by prefix before reporting success, so a
  caller always reads its own writes. Other sessions may see data up to TTL old.
- Every invalidation bumps a generation counter. A read-through load that
  overlaps an invalidation is handed to its caller but never stored.
- Eviction is lazy (on access) plus an optional `cleanup()` sweep.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, List, Mapping, Optional, TypeVar

from backend.app import config

logger = logging.getLogger(__name__)

T = TypeVar("T")
K = TypeVar("K", bound=Hashable)

PREFIX_SEPARATOR = ":"


@dataclass
class CacheEntry:
    key: str
    data: Any
    stored_at: float
    expires_at: float
    access_count: int = 0
    last_accessed: float = 0.0


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    size: int
    evictions: int

    @property
    def requests(self) -> int:
        return self.hits + self.misses

    @property
    def hit_ratio(self) -> float:
        return self.hits / self.requests if self.requests else 0.0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "size": self.size,
            "evictions": self.evictions,
            "requests": self.requests,
            "hit_ratio": round(self.hit_ratio, 4),
        }


class TimedCache:
    def __init__(
        self,
        name: str,
        *,
        default_ttl: float,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ):
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.name = name
        self.default_ttl = default_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._generation = 0

    @property
    def generation(self) -> int:
        """Counter bumped by every invalidation."""
        with self._lock:
            return self._generation

    def get(self, key: str) -> Optional[Any]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or now >= entry.expires_at:
                if entry is not None:
                    del self._entries[key]
                self._misses += 1
                return None
            entry.access_count += 1
            entry.last_accessed = now
            self._hits += 1
            return entry.data

    def set(
        self,
        key: str,
        data: Any,
        ttl: Optional[float] = None,
        *,
        if_generation: Optional[int] = None,
    ) -> bool:
        """
        Store `data` under `key`.

        With `if_generation`, the write is skipped (and False returned) when
        any invalidation happened since that generation was read.
        """
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        now = self._clock()
        with self._lock:
            if if_generation is not None and if_generation != self._generation:
                return False
            if key not in self._entries and len(self._entries) >= self.max_entries:
                self._evict_least_used()
            self._entries[key] = CacheEntry(
                key=key,
                data=data,
                stored_at=now,
                expires_at=now + ttl,
                last_accessed=now,
            )
        return True

    def invalidate(self, key_or_prefix: str) -> int:
        """
        Drop one exact key, or every key under a prefix ending in ":".

        "sales:2026-10-17:" clears that day; "dashboard:2026-10-1" only
        clears that exact key, never "dashboard:2026-10-10".
        """
        with self._lock:
            self._generation += 1
            if key_or_prefix.endswith(PREFIX_SEPARATOR):
                doomed = [key for key in self._entries if key.startswith(key_or_prefix)]
            else:
                doomed = [key_or_prefix] if key_or_prefix in self._entries else []
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def invalidate_all(self) -> int:
        with self._lock:
            self._generation += 1
            count = len(self._entries)
            self._entries.clear()
        return count

    def cleanup(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                size=len(self._entries),
                evictions=self._evictions,
            )

    def snapshot(self) -> List[Dict[str, Any]]:
        now = self._clock()
        with self._lock:
            return [
                {
                    "key": entry.key,
                    "stored_at": entry.stored_at,
                    "expires_at": entry.expires_at,
                    "access_count": entry.access_count,
                    "expired": now >= entry.expires_at,
                }
                for entry in sorted(self._entries.values(), key=lambda e: e.key)
            ]

    def _evict_least_used(self) -> None:
        # caller holds the lock
        victim = min(
            self._entries.values(),
            key=lambda e: (e.access_count, e.last_accessed, e.key),
        )
        del self._entries[victim.key]
        self._evictions += 1


def read_through(cache: TimedCache, key: str, loader: Callable[[], T], ttl: Optional[float] = None) -> T:
    """
    Serve `key` from the cache, or call `loader` and remember the result.

    Cache faults are logged and bypassed; loader errors propagate untouched.
    A result loaded while a writer invalidated the cache is returned but not
    stored, so the cache never holds data older than the last write.
    """
    generation = None
    try:
        cached = cache.get(key)
        generation = cache.generation
    except Exception:
        logger.warning("cache %s read failed for %s; falling through to live read", cache.name, key, exc_info=True)
        cached = None
    if cached is not None:
        return cached

    value = loader()
    if generation is None:
        return value
    try:
        stored = cache.set(key, value, ttl, if_generation=generation)
    except Exception:
        logger.warning("cache %s write failed for %s", cache.name, key, exc_info=True)
        return value
    if not stored:
        logger.debug("cache %s skipped %s: invalidated during load", cache.name, key)
    return value


def read_through_many(
    cache: TimedCache,
    keys: Mapping[K, str],
    loader: Callable[[List[K]], Dict[K, T]],
    ttl: Optional[float] = None,
) -> Dict[K, T]:
    """
    Batch form of `read_through`: `keys` maps each item to its cache key, and a
    single `loader` call receives every item that missed. Results keep the order of `keys`.
    """
    found: Dict[K, T] = {}
    generation = None
    try:
        generation = cache.generation
        for item, key in keys.items():
            cached = cache.get(key)
            if cached is not None:
                found[item] = cached
    except Exception:
        logger.warning("cache %s batch read failed; falling through to live read", cache.name, exc_info=True)
        found, generation = {}, None

    missing = [item for item in keys if item not in found]
    logger.debug("cache %s batch: %s cached, %s to load", cache.name, len(found), len(missing))
    if missing:
        loaded = loader(missing)
        found.update(loaded)
        if generation is not None:
            try:
                skipped = sum(
                    1 for item in missing if not cache.set(keys[item], loaded[item], ttl, if_generation=generation)
                )
            except Exception:
                logger.warning("cache %s batch write failed", cache.name, exc_info=True)
            else:
                if skipped:
                    logger.debug("cache %s skipped %s batch entries: invalidated during load", cache.name, skipped)
    return {item: found[item] for item in keys}


# -------------------------
# Keys
# -------------------------

def sales_prefix(day) -> str:
    return f"sales:{day.isoformat()}:"


def sales_entries_key(day, machine_id: Optional[str] = None) -> str:
    return f"{sales_prefix(day)}entries:{machine_id or 'all'}"


def sales_totals_key(day) -> str:
    return f"{sales_prefix(day)}totals"


def dashboard_key(day) -> str:
    return f"dashboard:{day.isoformat()}"


# -------------------------
# Shared instances
# -------------------------

class CacheRegistry:
    def __init__(self, caches: Dict[str, TimedCache]):
        self._caches = caches

    @property
    def sales(self) -> TimedCache:
        return self._caches["sales"]

    @property
    def dashboard(self) -> TimedCache:
        return self._caches["dashboard"]

    def all(self) -> List[TimedCache]:
        return list(self._caches.values())

    def invalidate_sales_date(self, day) -> int:
        """
        Drop every read that covers `day`: its sales keys plus all dashboard
        summaries, since week/month rollups of later dates include it too.
        """
        removed = self.sales.invalidate(sales_prefix(day))
        removed += self.dashboard.invalidate("dashboard:")
        return removed

    def invalidate_all(self) -> int:
        return sum(cache.invalidate_all() for cache in self.all())

    def cleanup(self) -> int:
        return sum(cache.cleanup() for cache in self.all())

    def global_stats(self) -> Dict[str, Any]:
        per_cache = {cache.name: cache.stats() for cache in self.all()}
        combined = CacheStats(
            hits=sum(s.hits for s in per_cache.values()),
            misses=sum(s.misses for s in per_cache.values()),
            size=sum(s.size for s in per_cache.values()),
            evictions=sum(s.evictions for s in per_cache.values()),
        )
        out = {name: s.as_dict() for name, s in per_cache.items()}
        out["overall"] = combined.as_dict()
        return out


def build_registry(clock: Callable[[], float] = time.monotonic) -> CacheRegistry:
    max_entries = config.cache_max_entries()
    return CacheRegistry(
        {
            "sales": TimedCache(
                "sales",
                default_ttl=config.sales_cache_ttl_minutes() * 60,
                max_entries=max_entries,
                clock=clock,
            ),
            "dashboard": TimedCache(
                "dashboard",
                default_ttl=config.dashboard_cache_ttl_minutes() * 60,
                max_entries=max_entries,
                clock=clock,
            ),
        }
    )


caches = build_registry()
