"""
SQL-backed persistent store.
"""

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from geoflag.datastore.base import PersistentStore
from geoflag.datastore.engine import get_session_factory
from geoflag.datastore.repositories import KeyValueRepository
from geoflag.services.errors import PersistenceError


class SqlStore(PersistentStore):
    """
    PersistentStore on top of the async SQLAlchemy engine.

    Usage:
        await init_db()
        store = SqlStore()
        await store.set("key", "blob")
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self._session_factory = session_factory

    def _factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            try:
                self._session_factory = get_session_factory()
            except RuntimeError as e:
                raise PersistenceError(str(e)) from e
        return self._session_factory

    async def get(self, key: str) -> str | None:
        try:
            async with self._factory()() as session:
                return await KeyValueRepository(session).get(key)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to read '{key}': {e}") from e

    async def set(self, key: str, blob: str) -> None:
        try:
            async with self._factory()() as session:
                await KeyValueRepository(session).put(key, blob)
                await session.commit()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to write '{key}': {e}") from e
