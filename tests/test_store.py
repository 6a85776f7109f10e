import pytest

from geoflag.datastore import engine
from geoflag.datastore.store import SqlStore
from geoflag.services.errors import PersistenceError


@pytest.mark.asyncio
async def test_sql_store_round_trip(tmp_path) -> None:
    await engine.init_db(f"sqlite+aiosqlite:///{tmp_path / 'kv.db'}", echo=False)
    try:
        store = SqlStore()

        assert await store.get("location_cache") is None

        await store.set("location_cache", '{"alice": {}}')
        assert await store.get("location_cache") == '{"alice": {}}'

        await store.set("location_cache", "{}")
        assert await store.get("location_cache") == "{}"
    finally:
        await engine.close_db()


@pytest.mark.asyncio
async def test_sql_store_survives_reconnect(tmp_path) -> None:
    url = f"sqlite+aiosqlite:///{tmp_path / 'kv.db'}"

    await engine.init_db(url)
    await SqlStore().set("k", "v1")
    await engine.close_db()

    await engine.init_db(url)
    try:
        assert await SqlStore(engine.get_session_factory()).get("k") == "v1"
    finally:
        await engine.close_db()


@pytest.mark.asyncio
async def test_uninitialised_store_raises_persistence_error() -> None:
    await engine.close_db()

    with pytest.raises(PersistenceError):
        await SqlStore().get("k")
