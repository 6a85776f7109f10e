"""Shared fakes for the resolution service tests."""

import asyncio
import time

import pytest

from geoflag.services.fetcher import FetchOutcome
from geoflag.settings import Settings


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stands in for asyncio.sleep and records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class ScriptedExecutor:
    """Fetch executor double that tracks concurrency."""

    def __init__(self, respond=None, delay: float = 0.0, gate=None) -> None:
        self.respond = respond or (lambda handle: FetchOutcome.resolved(handle, None))
        self.delay = delay
        self.gate = gate
        self.calls: list[str] = []
        self.started_at: list[float] = []
        self.active = 0
        self.max_active = 0
        self.closed = False

    async def attempt(self, handle: str) -> FetchOutcome:
        self.calls.append(handle)
        self.started_at.append(time.monotonic())
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
            result = self.respond(handle)
            if isinstance(result, Exception):
                raise result
            return result
        finally:
            self.active -= 1

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fast_settings() -> Settings:
    return Settings(
        min_request_interval=0.0,
        cache_save_debounce=0.01,
        cache_periodic_save_interval=3600.0,
        rate_limit_max_recheck=0.01,
        retry_initial_delay=0.0,
        retry_max_delay=0.0,
        auth_wait_timeout=0.0,
        debug=True,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
