"""
Persistent store interface for cache write-back.
"""

from abc import ABC, abstractmethod


class PersistentStore(ABC):
    """
    Best-effort key-value blob store.

    Implementations may raise on any call; the persister logs and swallows.
    """

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the blob stored under ``key``, or None."""
        ...

    @abstractmethod
    async def set(self, key: str, blob: str) -> None:
        """Store ``blob`` under ``key``, replacing any previous value."""
        ...


class MemoryStore(PersistentStore):
    """Process-local store, mostly for tests and one-shot runs."""

    def __init__(self, initial: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(initial or {})
        self.writes = 0

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, blob: str) -> None:
        self.data[key] = blob
        self.writes += 1
