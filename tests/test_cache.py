from datetime import timedelta

from conftest import FakeClock

from geoflag.services.cache import LocationCache

DAY_MS = 24 * 60 * 60 * 1000


def test_lookup_miss_then_hit(clock) -> None:
    cache = LocationCache(clock=clock)
    assert cache.lookup("alice") is None

    cache.record("alice", "France")
    hit = cache.lookup("alice")

    assert hit is not None
    assert hit.location == "France"
    assert hit.expiry == hit.cached_at + 30 * DAY_MS


def test_unresolved_entry_is_never_a_hit(clock) -> None:
    cache = LocationCache(clock=clock)
    cache.record("bob", None)

    assert "bob" in cache
    assert cache.get_entry("bob").is_unresolved
    assert cache.lookup("bob") is None

    clock.advance(1)
    assert cache.lookup("bob") is None
    clock.advance(29 * 24 * 3600)
    assert cache.lookup("bob") is None
    assert cache.get_stats().unresolved == 3


def test_expired_entry_is_a_miss(clock) -> None:
    cache = LocationCache(ttl=timedelta(seconds=10), clock=clock)
    cache.record("alice", "Japan")

    clock.advance(9)
    assert cache.lookup("alice") is not None
    clock.advance(1)
    assert cache.lookup("alice") is None


def test_record_replaces_unresolved_entry(clock) -> None:
    cache = LocationCache(clock=clock)
    cache.record("carol", None)
    clock.advance(60)
    cache.record("carol", "Brazil")

    entry = cache.get_entry("carol")
    assert entry.location == "Brazil"
    assert entry.cached_at == int(clock() * 1000)
    assert cache.lookup("carol").location == "Brazil"


def test_snapshot_layout(clock) -> None:
    cache = LocationCache(clock=clock)
    cache.record("alice", "France")
    cache.record("bob", None)

    snapshot = cache.snapshot()

    now_ms = int(clock() * 1000)
    assert snapshot["alice"] == {
        "location": "France",
        "expiry": now_ms + 30 * DAY_MS,
        "cachedAt": now_ms,
    }
    assert snapshot["bob"]["location"] is None


def test_restore_round_trip_keeps_resolved_entries(clock) -> None:
    cache = LocationCache(clock=clock)
    cache.record("alice", "France")
    clock.advance(5)
    cache.record("dave", "Kenya")
    cache.record("bob", None)

    restored = LocationCache(clock=clock)
    loaded = restored.restore(cache.snapshot())

    assert loaded == 2
    for handle in ("alice", "dave"):
        before = cache.get_entry(handle)
        copy = restored.get_entry(handle)
        assert copy.location == before.location
        assert copy.expiry == before.expiry
        assert copy.cached_at == before.cached_at
    assert "bob" not in restored


def test_restore_discards_expired_and_malformed_entries() -> None:
    clock = FakeClock(start=1_000.0)
    now_ms = 1_000_000
    snapshot = {
        "fresh": {"location": "Chile", "expiry": now_ms + 1, "cachedAt": now_ms},
        "stale": {"location": "Peru", "expiry": now_ms - 1, "cachedAt": 0},
        "failed": {"location": None, "expiry": now_ms + DAY_MS, "cachedAt": now_ms},
        "broken": {"location": "Spain"},
    }

    cache = LocationCache(clock=clock)

    assert cache.restore(snapshot) == 1
    assert cache.lookup("fresh").location == "Chile"
    assert len(cache) == 1


def test_listeners_notified_on_record(clock) -> None:
    cache = LocationCache(clock=clock)
    calls: list[int] = []
    cache.add_listener(lambda: calls.append(1))

    def broken_listener() -> None:
        raise RuntimeError("listener down")

    cache.add_listener(broken_listener)

    cache.record("alice", "France")
    cache.record("bob", None)

    assert len(calls) == 2


def test_stats(clock) -> None:
    cache = LocationCache(clock=clock)
    cache.record("alice", "France")
    cache.lookup("alice")
    cache.lookup("zed")

    stats = cache.get_stats().to_dict()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["size"] == 1
    assert stats["hit_rate"] == "50.00%"
