"""
Bounded read-through cache for reference lookups.

Every candidate a resolver visits costs a point read against the
reference collection. Chats in the same tenant share users, so the same
identifiers come back page after page; ReadThroughCache keeps recently
resolved reference records in memory for a bounded time.

Entries expire ``ttl`` seconds after insertion. An expired entry is
treated as absent on lookup even if it has not been purged yet. When the
cache is full the least recently used entry is evicted before a new one
is inserted.

The cache is owned by a single asyncio task and is not locked.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any

from tenantfill.migration.config import CacheConfig
from tenantfill.migration.models import CacheEntry

logger = logging.getLogger(__name__)

CacheListener = Callable[["CacheStats"], None]


@dataclass(frozen=True)
class CacheStats:
    """
    Point-in-time cache statistics.

    Attributes:
        hits: Lookups answered from the cache
        misses: Lookups that found nothing usable
        size: Entries currently held (expired ones included until purged)
        evictions: Entries removed for capacity or age
        capacity: Configured maximum size
        last_cleanup: Clock reading of the last expiry sweep, None if never
    """

    hits: int = 0
    misses: int = 0
    size: int = 0
    evictions: int = 0
    capacity: int = 0
    last_cleanup: float | None = None

    @property
    def requests(self) -> int:
        return self.hits + self.misses

    @property
    def efficiency(self) -> float:
        """Hit ratio in percent, 0 when nothing was requested."""
        if self.requests == 0:
            return 0.0
        return self.hits / self.requests * 100


class ReadThroughCache:
    """
    LRU cache with per-entry TTL, tags and a read-through helper.

    Example:
        >>> cache = ReadThroughCache(CacheConfig(capacity=2, ttl_seconds=60))
        >>> cache.set("user:u1", profile, tags=("user",))
        >>> cache.get("user:u1") is profile
        True
        >>> record = await cache.get_or_load("user:u2", lambda: store.get_by_id(...))
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the cache.

        Args:
            config: Capacity and TTL bounds (defaults to CacheConfig())
            clock: Monotonic time source in seconds
        """
        self._config = config or CacheConfig()
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._listeners: list[CacheListener] = []
        self._cleanup_task: asyncio.Task[None] | None = None
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._last_cleanup: float | None = None

    @property
    def config(self) -> CacheConfig:
        return self._config

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and not entry.is_expired(self._clock())

    def get(self, key: str, default: Any = None) -> Any:
        """
        Return the cached value, or ``default`` on a miss.

        A stale entry is removed on the spot and counted as an eviction.
        """
        entry = self._entries.get(key)
        now = self._clock()

        if entry is None:
            self._misses += 1
            self._notify()
            return default

        if entry.is_expired(now):
            del self._entries[key]
            self._evictions += 1
            self._misses += 1
            logger.debug("Cache entry %s expired", key)
            self._notify()
            return default

        entry.last_accessed_at = now
        entry.access_count += 1
        self._entries.move_to_end(key)
        self._hits += 1
        self._notify()
        return entry.value

    def set(
        self,
        key: str,
        value: Any,
        *,
        ttl: float | None = None,
        tags: Iterable[str] = (),
    ) -> None:
        """
        Store a value, evicting the least recently used entry when full.

        Args:
            key: Cache key
            value: Value to store
            ttl: Lifetime in seconds (defaults to the configured TTL)
            tags: Labels for ``invalidate_by_tag``
        """
        if ttl is not None and ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")

        now = self._clock()
        if key in self._entries:
            del self._entries[key]
        elif len(self._entries) >= self._config.capacity:
            evicted, _ = self._entries.popitem(last=False)
            self._evictions += 1
            logger.debug("Evicted least recently used cache entry %s", evicted)

        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            inserted_at=now,
            last_accessed_at=now,
            ttl=ttl if ttl is not None else self._config.ttl_seconds,
            tags=frozenset(tags),
        )
        self._notify()

    async def get_or_load(
        self,
        key: str,
        loader: Callable[[], Awaitable[Any]],
        *,
        ttl: float | None = None,
        tags: Iterable[str] = (),
    ) -> Any:
        """
        Return the cached value or load, cache and return it.

        A loader result of None means "not found" and is not cached, so a
        record created later is picked up on the next lookup. Loader
        exceptions propagate and leave the cache untouched.
        """
        entry = self._entries.get(key)
        if entry is not None and not entry.is_expired(self._clock()):
            return self.get(key)
        if entry is not None:
            # Counts the stale entry as an eviction and the lookup as a miss
            self.get(key)
        else:
            self._misses += 1
            self._notify()

        value = await loader()
        if value is not None:
            self.set(key, value, ttl=ttl, tags=tags)
        return value

    def invalidate(self, key: str) -> bool:
        """Remove one entry. Returns True if it existed."""
        if self._entries.pop(key, None) is None:
            return False
        self._notify()
        return True

    def invalidate_by_tag(self, tag: str) -> int:
        """Remove every entry carrying ``tag``. Returns the number removed."""
        keys = [key for key, entry in self._entries.items() if tag in entry.tags]
        return self._remove(keys)

    def invalidate_by_pattern(self, pattern: str | re.Pattern[str]) -> int:
        """Remove every entry whose key matches a regular expression."""
        regex = re.compile(pattern) if isinstance(pattern, str) else pattern
        keys = [key for key in self._entries if regex.search(key)]
        return self._remove(keys)

    def cleanup_expired(self) -> int:
        """
        Purge every expired entry.

        Returns:
            Number of entries removed (also added to evictions)
        """
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        self._evictions += len(expired)
        self._last_cleanup = now
        if expired:
            logger.info("Cleaned %d expired cache entries", len(expired))
        self._notify()
        return len(expired)

    def clear(self) -> None:
        """Drop every entry and reset the counters."""
        self._entries.clear()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._last_cleanup = None
        self._notify()

    def stats(self) -> CacheStats:
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            size=len(self._entries),
            evictions=self._evictions,
            capacity=self._config.capacity,
            last_cleanup=self._last_cleanup,
        )

    def entries(self) -> list[CacheEntry]:
        """Entries from least to most recently used."""
        return list(self._entries.values())

    def add_listener(self, listener: CacheListener) -> Callable[[], None]:
        """
        Call ``listener`` with fresh stats after every cache change.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe

    def start_cleanup(self, interval: float | None = None) -> None:
        """Run ``cleanup_expired`` periodically on the running event loop."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        period = interval if interval is not None else self._config.cleanup_interval_seconds
        self._cleanup_task = asyncio.create_task(self._cleanup_loop(period))

    async def stop_cleanup(self) -> None:
        """Stop the periodic sweep started by ``start_cleanup``."""
        task, self._cleanup_task = self._cleanup_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    @property
    def is_cleanup_running(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

    async def _cleanup_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            self.cleanup_expired()

    def _remove(self, keys: list[str]) -> int:
        for key in keys:
            del self._entries[key]
        if keys:
            self._notify()
        return len(keys)

    def _notify(self) -> None:
        if not self._listeners:
            return
        stats = self.stats()
        for listener in list(self._listeners):
            try:
                listener(stats)
            except Exception:
                logger.exception("Cache listener %r failed", listener)


__all__ = ["CacheListener", "CacheStats", "ReadThroughCache"]
