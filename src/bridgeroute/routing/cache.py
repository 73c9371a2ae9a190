"""Short-lived quote cache with single-flight fetches.

Entries expire lazily on read and are also dropped by sweep(). Only one
fetch per key runs at a time; concurrent callers for the same key await
the same in-flight result.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

# fetch() returns the value to cache and its absolute expiry (unix time)
Fetcher = Callable[[], Awaitable[tuple[Any, float]]]


@dataclass
class CacheEntry:
    value: Any
    expires_at: float


class QuoteCache:
    """In-process TTL cache keyed by route request hash."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, asyncio.Task] = {}
        self.hits = 0
        self.misses = 0
        self.fetches = 0

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> tuple[Optional[Any], bool]:
        """Return (value, hit). Expired entries are removed and count as a miss."""
        entry = self._entries.get(key)
        if entry is None:
            return None, False
        if self._clock() >= entry.expires_at:
            self._entries.pop(key, None)
            return None, False
        return entry.value, True

    def put(self, key: str, value: Any, expires_at: float) -> None:
        """Store a value until `expires_at`. Already-expired values are not stored."""
        if self._clock() >= expires_at:
            return
        self._entries[key] = CacheEntry(value=value, expires_at=expires_at)

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    async def get_or_fetch(self, key: str, fetch: Fetcher) -> tuple[Any, bool]:
        """Return (value, hit), fetching at most once per key concurrently.

        A failed fetch propagates its exception to every waiter and caches
        nothing. Cancelling one waiter does not cancel the shared fetch.
        """
        value, hit = self.get(key)
        if hit:
            self.hits += 1
            logger.debug(f"Quote cache hit: {key[:12]}")
            return value, True

        task = self._inflight.get(key)
        if task is None:
            self.misses += 1
            task = asyncio.ensure_future(self._run_fetch(key, fetch))
            self._inflight[key] = task
        else:
            logger.debug(f"Joining in-flight fetch: {key[:12]}")

        value = await asyncio.shield(task)
        return value, False

    async def _run_fetch(self, key: str, fetch: Fetcher) -> Any:
        self.fetches += 1
        try:
            value, expires_at = await fetch()
            self.put(key, value, expires_at)
            return value
        finally:
            self._inflight.pop(key, None)

    def sweep(self) -> int:
        """Drop expired entries. Returns the number removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info(f"Quote cache sweep removed {len(expired)} expired entries")
        return len(expired)

    def stats(self) -> dict:
        return {
            "entries": len(self._entries),
            "in_flight": len(self._inflight),
            "hits": self.hits,
            "misses": self.misses,
            "fetches": self.fetches,
        }
