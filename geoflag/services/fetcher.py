"""
FetchExecutor - One resolution attempt against the upstream API.

Combines:
- Authentication context wait with unauthenticated fallback
- Exponential backoff retry for retryable statuses and network errors
- 429 detection with reset-time extraction
- Whole-attempt deadline independent of backoff
"""

import asyncio
import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

import httpx
from loguru import logger

from geoflag.services.auth import DEFAULT_HEADERS, AuthContextProvider
from geoflag.services.errors import (
    ContextUnavailableError,
    PermanentFailureError,
    RateLimitError,
    TransientFailureError,
)

LOCATION_PATH = (
    "data",
    "user_result_by_screen_name",
    "result",
    "about_profile",
    "account_based_in",
)


class OutcomeKind(str, Enum):
    """Kinds of fetch outcome."""

    RESOLVED = "RESOLVED"
    RATE_LIMITED = "RATE_LIMITED"
    TRANSIENT_FAILURE = "TRANSIENT_FAILURE"
    PERMANENT_FAILURE = "PERMANENT_FAILURE"


@dataclass
class FetchOutcome:
    """Result of one ``FetchExecutor.attempt`` call."""

    handle: str
    kind: OutcomeKind
    location: str | None = None
    reset_at: float | None = None
    status_code: int | None = None
    attempts: int = 1
    reason: str | None = None

    @property
    def is_resolved(self) -> bool:
        return self.kind == OutcomeKind.RESOLVED

    @classmethod
    def resolved(cls, handle: str, location: str | None, **kwargs) -> "FetchOutcome":
        return cls(handle, OutcomeKind.RESOLVED, location=location, **kwargs)

    @classmethod
    def rate_limited(cls, handle: str, reset_at: float, **kwargs) -> "FetchOutcome":
        return cls(handle, OutcomeKind.RATE_LIMITED, reset_at=reset_at, **kwargs)

    @classmethod
    def transient(cls, handle: str, reason: str, **kwargs) -> "FetchOutcome":
        return cls(handle, OutcomeKind.TRANSIENT_FAILURE, reason=reason, **kwargs)

    @classmethod
    def permanent(cls, handle: str, reason: str, **kwargs) -> "FetchOutcome":
        return cls(handle, OutcomeKind.PERMANENT_FAILURE, reason=reason, **kwargs)


@dataclass
class RetryConfig:
    """Backoff policy for retryable failures."""

    max_attempts: int = 3
    initial_delay: float = 1.0  # seconds
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    retryable_status_codes: frozenset[int] = field(
        default_factory=lambda: frozenset({408, 500, 502, 503, 504})
    )

    def delay_for(self, attempt: int) -> float:
        """Delay before retrying after failed attempt number ``attempt``."""
        return min(
            self.initial_delay * self.backoff_multiplier ** (attempt - 1),
            self.max_delay,
        )


class FetchExecutor:
    """
    Resolves a single handle against the upstream GraphQL endpoint.

    Usage:
        executor = FetchExecutor(endpoint=settings.api_endpoint)
        outcome = await executor.attempt("alice")
        if outcome.is_resolved:
            print(outcome.location)
    """

    def __init__(
        self,
        endpoint: str,
        auth: AuthContextProvider | None = None,
        retry: RetryConfig | None = None,
        timeout: float = 10.0,
        auth_wait_timeout: float = 3.0,
        auth_poll_interval: float = 0.1,
        rate_limit_fallback_pause: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
        debug: bool = False,
    ):
        self._endpoint = endpoint
        self._auth = auth
        self._retry = retry or RetryConfig()
        self._timeout = timeout
        self._auth_wait_timeout = auth_wait_timeout
        self._auth_poll_interval = auth_poll_interval
        self._auth_timed_out = False
        self._rate_limit_fallback_pause = rate_limit_fallback_pause
        self._sleep = sleep
        self._clock = clock
        self._debug = debug

        # HTTP client (lazy initialization unless injected)
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
            )
        return self._http_client

    async def attempt(self, handle: str) -> FetchOutcome:
        """
        Resolve ``handle``, retrying transient failures with backoff.

        Never raises for upstream problems; every failure is reported as a
        FetchOutcome. The whole chain is bounded by the request timeout.
        """
        try:
            return await asyncio.wait_for(
                self._attempt_with_retry(handle), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Request timeout for {handle}, not caching")
            return FetchOutcome.transient(
                handle, f"timed out after {self._timeout}s"
            )

    async def _attempt_with_retry(self, handle: str) -> FetchOutcome:
        headers = await self._resolve_headers()
        attempt = 1

        while True:
            try:
                location = await self._fetch_once(handle, headers)
                return FetchOutcome.resolved(handle, location, attempts=attempt)

            except RateLimitError as e:
                return FetchOutcome.rate_limited(
                    handle, e.reset_at, status_code=429, attempts=attempt
                )

            except PermanentFailureError as e:
                logger.warning(f"Lookup failed for {handle}: {e}")
                return FetchOutcome.permanent(
                    handle, str(e), status_code=e.status_code, attempts=attempt
                )

            except TransientFailureError as e:
                if attempt >= self._retry.max_attempts:
                    logger.error(
                        f"Giving up on {handle} after {attempt} attempts: {e}"
                    )
                    return FetchOutcome.transient(
                        handle, str(e), status_code=e.status_code, attempts=attempt
                    )

                delay = self._retry.delay_for(attempt)
                logger.info(
                    f"{e}; retrying {handle} in {delay:.1f}s "
                    f"(attempt {attempt}/{self._retry.max_attempts})"
                )
                await self._sleep(delay)
                attempt += 1

    async def _resolve_headers(self) -> dict[str, str]:
        """Best available headers; defaults when the context never readies."""
        try:
            headers = await self._wait_for_auth()
        except ContextUnavailableError as e:
            self._log(f"{e}, continuing unauthenticated")
            return dict(DEFAULT_HEADERS)
        return headers

    async def _wait_for_auth(self) -> dict[str, str]:
        if self._auth is None:
            raise ContextUnavailableError("No authentication context configured")

        # Only the first attempt waits; afterwards take whatever is available
        if self._auth_timed_out:
            max_polls = 0
        else:
            max_polls = round(self._auth_wait_timeout / self._auth_poll_interval)
        polls = 0
        while not self._auth.is_ready() and polls < max_polls:
            await self._sleep(self._auth_poll_interval)
            polls += 1

        headers = self._auth.get_headers() if self._auth.is_ready() else None
        if not headers:
            self._auth_timed_out = True
            raise ContextUnavailableError(
                "Authentication context not ready after "
                f"{polls * self._auth_poll_interval:.1f}s"
            )
        return headers

    async def _fetch_once(self, handle: str, headers: dict[str, str]) -> str | None:
        """Execute one upstream request and extract the location."""
        client = await self._get_http_client()
        params = {"variables": json.dumps({"screenName": handle})}

        try:
            response = await client.get(self._endpoint, params=params, headers=headers)
        except httpx.RequestError as e:
            raise TransientFailureError(
                f"Network error: {type(e).__name__}: {e}", handle=handle
            ) from e

        status = response.status_code
        self._log(f"{handle}: HTTP {status}")

        if response.is_success:
            return self._parse_location(handle, response)

        if status == 429:
            raise RateLimitError(handle, self._parse_reset_at(response))

        if status in self._retry.retryable_status_codes:
            raise TransientFailureError(
                f"HTTP {status}", handle=handle, status_code=status
            )

        raise PermanentFailureError(
            f"HTTP {status}: {response.text[:200]}",
            handle=handle,
            status_code=status,
        )

    def _parse_location(self, handle: str, response: httpx.Response) -> str | None:
        try:
            data: Any = response.json()
        except ValueError as e:
            raise PermanentFailureError(
                f"Malformed response body: {e}",
                handle=handle,
                status_code=response.status_code,
            ) from e

        if not isinstance(data, dict):
            raise PermanentFailureError(
                "Unexpected response shape",
                handle=handle,
                status_code=response.status_code,
            )

        node: Any = data
        for key in LOCATION_PATH:
            if not isinstance(node, dict):
                node = None
                break
            node = node.get(key)

        location = node if isinstance(node, str) and node.strip() else None
        self._log(f"Extracted location for {handle}: {location}")
        return location

    def _parse_reset_at(self, response: httpx.Response) -> float:
        limit = response.headers.get("x-rate-limit-limit")
        remaining = response.headers.get("x-rate-limit-remaining")
        raw_reset = response.headers.get("x-rate-limit-reset")
        logger.warning(f"Rate limited! Limit: {limit}, Remaining: {remaining}")

        try:
            return float(int(raw_reset))
        except (TypeError, ValueError):
            return self._clock() + self._rate_limit_fallback_pause

    async def close(self) -> None:
        """Close the HTTP client if this executor created it."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug("FetchExecutor closed")

    def _log(self, message: str) -> None:
        """Log debug message if debug mode is enabled."""
        if self._debug:
            logger.debug(f"[FetchExecutor] {message}")
