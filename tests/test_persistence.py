"""Cache write-back: debounce, periodic job, failure handling."""

import asyncio
import json

import pytest

from geoflag.datastore.base import MemoryStore, PersistentStore
from geoflag.services.cache import LocationCache
from geoflag.services.persistence import CachePersister

KEY = "location_cache"


class BrokenStore(PersistentStore):
    """Store whose backend has gone away."""

    def __init__(self) -> None:
        self.attempts = 0

    async def get(self, key: str) -> str | None:
        self.attempts += 1
        raise ConnectionError("store unavailable")

    async def set(self, key: str, blob: str) -> None:
        self.attempts += 1
        raise ConnectionError("store unavailable")


@pytest.mark.asyncio
async def test_records_are_debounced_into_one_write(clock) -> None:
    cache = LocationCache(clock=clock)
    store = MemoryStore()
    persister = CachePersister(cache, store, KEY, debounce_seconds=0.05)

    cache.record("alice", "France")
    cache.record("bob", None)
    cache.record("carol", "Brazil")
    assert store.writes == 0

    await asyncio.sleep(0.15)

    assert store.writes == 1
    assert set(json.loads(store.data[KEY])) == {"alice", "bob", "carol"}
    await persister.stop()


@pytest.mark.asyncio
async def test_flush_failure_is_swallowed(clock) -> None:
    cache = LocationCache(clock=clock)
    store = BrokenStore()
    persister = CachePersister(cache, store, KEY)
    cache.record("alice", "France")

    assert await persister.flush() is False
    assert persister.failure_count == 1
    assert cache.lookup("alice").location == "France"
    await persister.stop()


@pytest.mark.asyncio
async def test_load_failure_leaves_cache_empty(clock) -> None:
    cache = LocationCache(clock=clock)
    persister = CachePersister(cache, BrokenStore(), KEY)

    assert await persister.load() == 0
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_load_ignores_corrupt_blob(clock) -> None:
    cache = LocationCache(clock=clock)
    persister = CachePersister(cache, MemoryStore({KEY: "{not json"}), KEY)

    assert await persister.load() == 0

    persister = CachePersister(cache, MemoryStore({KEY: "[1, 2]"}), KEY)
    assert await persister.load() == 0


@pytest.mark.asyncio
async def test_load_restores_and_drops_unresolved(clock) -> None:
    source = LocationCache(clock=clock)
    source.record("alice", None)
    source.record("dave", "Kenya")
    store = MemoryStore({KEY: json.dumps(source.snapshot())})

    cache = LocationCache(clock=clock)
    persister = CachePersister(cache, store, KEY)

    assert await persister.load() == 1
    assert "alice" not in cache
    assert cache.lookup("dave").location == "Kenya"
    assert store.writes == 0


@pytest.mark.asyncio
async def test_start_and_stop_flushes(clock) -> None:
    cache = LocationCache(clock=clock)
    store = MemoryStore()
    persister = CachePersister(
        cache, store, KEY, debounce_seconds=60, periodic_interval=3600
    )

    persister.start()
    assert persister.is_running()
    assert persister.scheduler.get_job("cache_flush_job") is not None

    cache.record("alice", "France")
    await persister.stop()

    assert not persister.is_running()
    assert store.writes == 1
    assert json.loads(store.data[KEY])["alice"]["location"] == "France"

    # Records after shutdown do not schedule new writes
    cache.record("bob", "Chile")
    await asyncio.sleep(0)
    assert store.writes == 1


@pytest.mark.asyncio
async def test_periodic_job_writes_without_records(clock) -> None:
    cache = LocationCache(clock=clock)
    cache.record("alice", "France")
    store = MemoryStore()
    persister = CachePersister(
        cache, store, KEY, debounce_seconds=60, periodic_interval=0.1
    )

    persister.start()
    await asyncio.sleep(0.45)
    periodic_writes = store.writes
    await persister.stop()

    assert periodic_writes >= 2
    assert store.writes > periodic_writes
    assert json.loads(store.data[KEY])["alice"]["location"] == "France"


@pytest.mark.asyncio
async def test_persister_restarts_after_stop(clock) -> None:
    cache = LocationCache(clock=clock)
    store = MemoryStore()
    persister = CachePersister(
        cache, store, KEY, debounce_seconds=0.01, periodic_interval=3600
    )

    persister.start()
    await persister.stop()
    persister.start()

    assert persister.is_running()
    assert persister.scheduler.get_job("cache_flush_job") is not None

    cache.record("bob", "Chile")
    await asyncio.sleep(0.05)
    assert json.loads(store.data[KEY])["bob"]["location"] == "Chile"
    await persister.stop()
