"""
LocationResolver - Public entry point for handle -> location lookups.

Combines:
- LocationCache for confirmed results
- RequestScheduler for paced, coalesced upstream lookups
- CachePersister for best-effort write-back
"""

import asyncio
import inspect
import json
from datetime import timedelta
from typing import Any, Iterable

from loguru import logger

from geoflag.datastore.base import MemoryStore, PersistentStore
from geoflag.services.auth import AuthContextProvider
from geoflag.services.cache import LocationCache
from geoflag.services.errors import QueueFullError
from geoflag.services.fetcher import FetchExecutor, RetryConfig
from geoflag.services.interfaces import AnnotationRenderer, IdentityLocator
from geoflag.services.persistence import CachePersister
from geoflag.services.rate_limit import RateLimitListener, RateLimitMonitor
from geoflag.services.scheduler import RequestScheduler, SchedulerConfig
from geoflag.settings import Settings, global_settings


class LocationResolver:
    """
    Resolves handles to locations, from cache when possible.

    Usage:
        async with LocationResolver(store=SqlStore()) as resolver:
            location = await resolver.resolve("alice")

        # Components can be injected for testing
        resolver = LocationResolver(executor=FakeExecutor())
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: PersistentStore | None = None,
        auth: AuthContextProvider | None = None,
        cache: LocationCache | None = None,
        monitor: RateLimitMonitor | None = None,
        executor: FetchExecutor | None = None,
        scheduler: RequestScheduler | None = None,
    ):
        self.settings = settings or global_settings
        s = self.settings

        # An empty cache is falsy
        if cache is None:
            cache = LocationCache(ttl=timedelta(days=s.cache_ttl_days), debug=s.debug)
        self.cache = cache
        self.monitor = monitor or RateLimitMonitor()
        self.executor = executor or FetchExecutor(
            endpoint=s.api_endpoint,
            auth=auth,
            retry=RetryConfig(
                max_attempts=s.retry_max_attempts,
                initial_delay=s.retry_initial_delay,
                max_delay=s.retry_max_delay,
                backoff_multiplier=s.retry_backoff_multiplier,
                retryable_status_codes=frozenset(s.retry_status_codes),
            ),
            timeout=s.request_timeout,
            auth_wait_timeout=s.auth_wait_timeout,
            auth_poll_interval=s.auth_poll_interval,
            rate_limit_fallback_pause=s.rate_limit_fallback_pause,
            debug=s.debug,
        )
        self.scheduler = scheduler or RequestScheduler(
            executor=self.executor,
            cache=self.cache,
            monitor=self.monitor,
            config=SchedulerConfig(
                max_concurrent=s.max_concurrent_requests,
                min_request_interval=s.min_request_interval,
                max_recheck_interval=s.rate_limit_max_recheck,
                max_queue_size=s.max_queue_size,
            ),
            debug=s.debug,
        )
        self.store = store or MemoryStore()
        self.persister = CachePersister(
            cache=self.cache,
            store=self.store,
            key=s.cache_storage_key,
            debounce_seconds=s.cache_save_debounce,
            periodic_interval=s.cache_periodic_save_interval,
            debug=s.debug,
        )
        self.enabled = s.enabled_default
        self._started = False
        self._closed = False

    async def start(self) -> int:
        """Restore the persisted cache and start periodic write-back."""
        if self._started:
            return len(self.cache)
        if self._closed:
            self.scheduler.reopen()
            self._closed = False
        await self._load_enabled()
        loaded = await self.persister.load()
        self.persister.start()
        self._started = True
        return loaded

    async def resolve(self, handle: str) -> str | None:
        """
        Resolve a handle to its location.

        Returns:
            Location string, or None when unknown, failed, or rate limited
        """
        if not handle:
            return None

        hit = self.cache.lookup(handle)
        if hit:
            return hit.location

        try:
            future = self.scheduler.enqueue(handle)
        except QueueFullError as e:
            logger.warning(str(e))
            return None

        # Shielded so one caller's cancellation leaves coalesced peers intact
        return await asyncio.shield(future)

    async def annotate(self, handle: str, renderer: AnnotationRenderer) -> str | None:
        """Resolve ``handle`` and hand the outcome to the renderer once."""
        if not self.enabled:
            return None
        location = await self.resolve(handle)
        try:
            result = renderer.render(handle, location)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Error rendering marker for {handle}: {e}")
        return location

    async def annotate_elements(
        self,
        elements: Iterable[Any],
        locator: IdentityLocator,
        renderer: AnnotationRenderer,
    ) -> dict[str, str | None]:
        """
        Annotate every identity element on a page.

        Elements sharing a handle are resolved once and rendered each.
        """
        if not self.enabled:
            logger.debug("Annotation disabled, skipping page")
            return {}

        jobs = []
        for element in elements:
            handle = locator.locate(element)
            if handle:
                jobs.append((handle, self.annotate(handle, renderer)))

        results = await asyncio.gather(*(job for _, job in jobs))
        return {handle: location for (handle, _), location in zip(jobs, results)}

    async def set_enabled(self, enabled: bool) -> None:
        """Turn annotation on or off and remember the choice."""
        self.enabled = enabled
        logger.info(f"Annotation {'enabled' if enabled else 'disabled'}")
        key = self.settings.toggle_storage_key
        try:
            await self.store.set(key, json.dumps(enabled))
        except Exception as e:
            logger.error(f"Error saving annotation toggle: {e}")

    async def _load_enabled(self) -> None:
        try:
            blob = await self.store.get(self.settings.toggle_storage_key)
        except Exception as e:
            logger.error(f"Error loading annotation toggle: {e}")
            return
        if blob is None:
            return
        try:
            value = json.loads(blob)
        except json.JSONDecodeError:
            value = None
        if isinstance(value, bool):
            self.enabled = value
        else:
            logger.warning(f"Ignoring malformed annotation toggle: {blob!r}")

    def on_rate_limit_change(self, listener: RateLimitListener) -> None:
        """Subscribe to pause window changes (UI/log side-channel)."""
        self.monitor.subscribe(listener)

    def get_health_status(self) -> dict[str, Any]:
        """Get status of all components."""
        return {
            "enabled": self.enabled,
            "cache": self.cache.get_stats().to_dict(),
            "scheduler": self.scheduler.get_stats().to_dict(),
            "rate_limit": self.monitor.get_status(),
            "persistence": {
                "running": self.persister.is_running(),
                "flushes": self.persister.flush_count,
                "failures": self.persister.failure_count,
            },
        }

    async def close(self) -> None:
        """Stop dispatching, flush the cache and release HTTP resources."""
        await self.scheduler.close()
        await self.persister.stop()
        await self.executor.close()
        self._started = False
        self._closed = True
        logger.debug("LocationResolver closed")

    async def __aenter__(self) -> "LocationResolver":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()


# Global resolver instance
_global_resolver: LocationResolver | None = None


def get_resolver() -> LocationResolver:
    """Get the global resolver instance."""
    global _global_resolver
    if _global_resolver is None:
        _global_resolver = LocationResolver()
    return _global_resolver


async def close_resolver() -> None:
    """Close the global resolver."""
    global _global_resolver
    if _global_resolver:
        await _global_resolver.close()
        _global_resolver = None
