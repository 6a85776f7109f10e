"""
LocationCache - TTL cache of handle -> location with retry-aware misses.

Features:
- Entries live for a fixed TTL (30 days by default)
- ``None`` locations are recorded as *Unresolved* and never served as hits,
  so a later lookup is always free to retry them
- Snapshot/restore for write-back to an external key-value store
- Change listeners (used by the persister to debounce write-back)

All mutation happens on the event loop thread, so no lock is taken.
"""

import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError


def _now_ms(clock: Callable[[], float]) -> int:
    return int(clock() * 1000)


@dataclass
class CacheEntry:
    """A single cached resolution."""

    handle: str
    location: str | None  # None = Unresolved
    cached_at: int  # epoch ms
    expiry: int  # epoch ms

    @property
    def is_unresolved(self) -> bool:
        return self.location is None

    def is_expired(self, now_ms: int) -> bool:
        return now_ms >= self.expiry


@dataclass
class CacheHit:
    """Result from a successful cache lookup."""

    location: str
    cached_at: int
    expiry: int


class SnapshotEntry(BaseModel):
    """Persisted layout of one cache entry."""

    model_config = ConfigDict(populate_by_name=True)

    location: str | None = None
    expiry: int
    cached_at: int = Field(default=0, alias="cachedAt")


class LocationCache:
    """
    In-memory handle -> location cache.

    Usage:
        cache = LocationCache()

        hit = cache.lookup("alice")
        if hit:
            return hit.location

        cache.record("alice", "France")
    """

    def __init__(
        self,
        ttl: timedelta = timedelta(days=30),
        clock: Callable[[], float] = time.time,
        debug: bool = False,
    ):
        self._entries: dict[str, CacheEntry] = {}
        self._ttl_ms = int(ttl.total_seconds() * 1000)
        self._clock = clock
        self._debug = debug
        self._listeners: list[Callable[[], None]] = []
        self._stats = CacheStats()

    def lookup(self, handle: str) -> CacheHit | None:
        """
        Look up a handle.

        Returns CacheHit only for an unexpired, resolved entry; None otherwise.
        """
        entry = self._entries.get(handle)
        if entry is None:
            self._stats.misses += 1
            self._log(f"MISS: {handle}")
            return None

        if entry.is_unresolved:
            self._stats.unresolved += 1
            self._log(f"UNRESOLVED: {handle}, retry allowed")
            return None

        if entry.is_expired(_now_ms(self._clock)):
            self._stats.misses += 1
            self._log(f"EXPIRED: {handle}")
            return None

        self._stats.hits += 1
        self._log(f"HIT: {handle} -> {entry.location}")
        return CacheHit(
            location=entry.location,
            cached_at=entry.cached_at,
            expiry=entry.expiry,
        )

    def record(self, handle: str, location: str | None) -> CacheEntry:
        """Upsert an entry expiring one TTL from now."""
        now = _now_ms(self._clock)
        entry = CacheEntry(
            handle=handle,
            location=location,
            cached_at=now,
            expiry=now + self._ttl_ms,
        )
        self._entries[handle] = entry
        self._stats.records += 1
        self._log(f"SET: {handle} -> {location if location is not None else '<unresolved>'}")
        self._notify()
        return entry

    def restore(self, snapshot: dict[str, Any]) -> int:
        """
        Load a persisted snapshot.

        Expired and Unresolved entries are discarded so that failures are
        retried after a restart.

        Returns:
            Number of entries loaded
        """
        now = _now_ms(self._clock)
        loaded = 0
        skipped = 0

        for handle, raw in snapshot.items():
            try:
                item = SnapshotEntry.model_validate(raw)
            except ValidationError as e:
                logger.warning(f"Skipping malformed cache entry for {handle}: {e}")
                skipped += 1
                continue

            if item.location is None or item.expiry <= now:
                skipped += 1
                continue

            self._entries[handle] = CacheEntry(
                handle=handle,
                location=item.location,
                cached_at=item.cached_at,
                expiry=item.expiry,
            )
            loaded += 1

        logger.info(
            f"Loaded {loaded} cached locations "
            f"(skipped {skipped} expired or unresolved)"
        )
        return loaded

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Serializable view of all entries."""
        return {
            handle: SnapshotEntry(
                location=entry.location,
                expiry=entry.expiry,
                cached_at=entry.cached_at,
            ).model_dump(by_alias=True)
            for handle, entry in self._entries.items()
        }

    def get_entry(self, handle: str) -> CacheEntry | None:
        """Raw entry, Unresolved included (for debugging)."""
        return self._entries.get(handle)

    def clear(self) -> None:
        count = len(self._entries)
        self._entries.clear()
        self._log(f"CLEAR: {count} entries removed")
        self._notify()

    def add_listener(self, listener: Callable[[], None]) -> None:
        """Register a callback invoked after every mutation."""
        self._listeners.append(listener)

    def _notify(self) -> None:
        for listener in self._listeners:
            try:
                listener()
            except Exception as e:
                logger.error(f"Cache listener failed: {e}")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, handle: object) -> bool:
        return handle in self._entries

    def get_stats(self) -> "CacheStats":
        """Get cache statistics."""
        self._stats.size = len(self._entries)
        return self._stats

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[LocationCache] {message}")


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    unresolved: int = 0
    records: int = 0
    size: int = 0

    @property
    def hit_rate(self) -> float:
        """Calculate cache hit rate."""
        total = self.hits + self.misses + self.unresolved
        if total == 0:
            return 0.0
        return self.hits / total

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "hits": self.hits,
            "misses": self.misses,
            "unresolved": self.unresolved,
            "records": self.records,
            "size": self.size,
            "hit_rate": f"{self.hit_rate:.2%}",
        }
