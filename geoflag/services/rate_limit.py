"""
RateLimitMonitor - Shared upstream pause window.

States:
- OPEN: No window installed, dispatch allowed
- PAUSED: A 429 installed a reset time in the future, dispatch suspended

Transitions:
- OPEN → PAUSED: observe() with a reset time
- PAUSED → OPEN: wall clock passes the reset time (checked lazily)
"""

import time
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from loguru import logger


class RateLimitState(str, Enum):
    """Rate limit gate states."""

    OPEN = "OPEN"
    PAUSED = "PAUSED"


RateLimitListener = Callable[[float | None], None]


class RateLimitMonitor:
    """
    Clock-relative gate consulted before every dispatch.

    Updated only by the fetch executor's 429 outcomes; holds no retry logic.

    Usage:
        monitor = RateLimitMonitor()

        if monitor.is_paused():
            wait = monitor.remaining()
            ...

        monitor.observe(reset_at_epoch_seconds)
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._reset_at: float | None = None
        self._listeners: list[RateLimitListener] = []
        self._observed_count = 0

    @property
    def reset_at(self) -> float | None:
        return self._reset_at

    @property
    def state(self) -> RateLimitState:
        return RateLimitState.PAUSED if self.is_paused() else RateLimitState.OPEN

    def observe(self, reset_at: float) -> None:
        """Install or overwrite the pause window (epoch seconds)."""
        self._reset_at = reset_at
        self._observed_count += 1
        wait = max(0.0, reset_at - self._clock())
        logger.warning(
            f"Rate limit detected, resuming requests at "
            f"{datetime.fromtimestamp(reset_at).isoformat()} (in {wait / 60:.1f} min)"
        )
        self._notify(reset_at)

    def is_paused(self, now: float | None = None) -> bool:
        """Check whether dispatch is suspended, clearing a passed window."""
        if self._reset_at is None:
            return False

        now = self._clock() if now is None else now
        if now < self._reset_at:
            return True

        self._reset_at = None
        logger.info("Rate limit window passed, resuming requests")
        self._notify(None)
        return False

    def remaining(self, now: float | None = None) -> float:
        """Seconds until the window lifts (0 when not paused)."""
        if not self.is_paused(now):
            return 0.0
        now = self._clock() if now is None else now
        return max(0.0, self._reset_at - now)

    def subscribe(self, listener: RateLimitListener) -> None:
        """Receive the new reset time (or None when it clears)."""
        self._listeners.append(listener)

    def _notify(self, reset_at: float | None) -> None:
        for listener in self._listeners:
            try:
                listener(reset_at)
            except Exception as e:
                logger.error(f"Rate limit listener failed: {e}")

    def get_status(self) -> dict[str, Any]:
        """Get current status as dictionary."""
        paused = self.is_paused()
        return {
            "state": (RateLimitState.PAUSED if paused else RateLimitState.OPEN).value,
            "reset_at": (
                datetime.fromtimestamp(self._reset_at).isoformat()
                if self._reset_at
                else None
            ),
            "time_until_reset": self.remaining() if paused else None,
            "observed_count": self._observed_count,
        }
