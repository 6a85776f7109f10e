"""
CachePersister - Best-effort write-back of the location cache.

Writes are debounced (a burst of records collapses into one write) and also
happen on a fixed interval as a durability floor. Store failures are logged
and swallowed; the in-memory cache stays authoritative.
"""

import asyncio
import json

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from geoflag.datastore.base import PersistentStore
from geoflag.services.cache import LocationCache


class CachePersister:
    """
    Synchronizes a LocationCache with a PersistentStore.

    Usage:
        persister = CachePersister(cache, store, key="location_cache")
        await persister.load()
        persister.start()
        ...
        await persister.stop()  # final flush
    """

    def __init__(
        self,
        cache: LocationCache,
        store: PersistentStore,
        key: str,
        debounce_seconds: float = 5.0,
        periodic_interval: float = 30.0,
        debug: bool = False,
    ):
        self._cache = cache
        self._store = store
        self._key = key
        self._debounce_seconds = debounce_seconds
        self._periodic_interval = periodic_interval
        self._debug = debug

        self.scheduler = AsyncIOScheduler()
        self._is_running = False
        self._debounce_task: asyncio.Task[None] | None = None
        self._closed = False
        self.flush_count = 0
        self.failure_count = 0

        cache.add_listener(self.mark_dirty)

    async def load(self) -> int:
        """Restore the cache from the store. Returns entries loaded."""
        try:
            blob = await self._store.get(self._key)
        except Exception as e:
            logger.error(f"Error loading cache: {e}")
            return 0

        if not blob:
            self._log("No persisted cache found")
            return 0

        try:
            snapshot = json.loads(blob)
        except json.JSONDecodeError as e:
            logger.error(f"Persisted cache is not valid JSON, ignoring: {e}")
            return 0

        if not isinstance(snapshot, dict):
            logger.error("Persisted cache has unexpected shape, ignoring")
            return 0

        return self._cache.restore(snapshot)

    def mark_dirty(self) -> None:
        """Schedule a debounced write-back unless one is already pending."""
        if self._closed:
            return
        if self._debounce_task is not None and not self._debounce_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop (e.g. cache mutated from sync code); periodic flush covers it
            return
        self._debounce_task = loop.create_task(self._debounced_flush())

    async def _debounced_flush(self) -> None:
        await asyncio.sleep(self._debounce_seconds)
        await self.flush()

    async def flush(self) -> bool:
        """Write the current snapshot. Returns False on failure, never raises."""
        try:
            blob = json.dumps(self._cache.snapshot(), ensure_ascii=False)
            await self._store.set(self._key, blob)
        except Exception as e:
            self.failure_count += 1
            logger.error(f"Error saving cache: {e}")
            return False

        self.flush_count += 1
        self._log(f"Saved {len(self._cache)} entries")
        return True

    def start(self) -> None:
        """Start the periodic write-back job."""
        if self._is_running:
            logger.warning("Cache persister is already running")
            return

        if self._closed:
            # A shut down AsyncIOScheduler cannot be started again
            self.scheduler = AsyncIOScheduler()
            self._closed = False

        self.scheduler.add_job(
            self.flush,
            trigger="interval",
            seconds=self._periodic_interval,
            id="cache_flush_job",
            name="Location Cache Flush",
            replace_existing=True,
        )
        self.scheduler.start()
        self._is_running = True
        logger.info(
            f"Cache persister started: saving every {self._periodic_interval}s"
        )

    async def stop(self) -> None:
        """Cancel pending work and flush one last time."""
        self._closed = True
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
            try:
                await self._debounce_task
            except asyncio.CancelledError:
                pass
        self._debounce_task = None

        if self._is_running:
            self.scheduler.shutdown(wait=False)
            self._is_running = False

        await self.flush()
        logger.info("Cache persister stopped")

    def is_running(self) -> bool:
        return self._is_running

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[CachePersister] {message}")
