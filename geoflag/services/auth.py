"""
Authentication context - request headers harvested from host traffic.

The host application's own GraphQL calls carry the credentials the upstream
API expects. ``HeaderCapture`` keeps the essential ones as they go by; the
fetch executor reads them, falling back to bare defaults when nothing was
captured in time.
"""

from abc import ABC, abstractmethod

from loguru import logger

ESSENTIAL_HEADERS = (
    "authorization",
    "x-csrf-token",
    "x-twitter-auth-type",
    "x-twitter-active-user",
    "x-twitter-client-language",
)

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "Content-Type": "application/json",
}

GRAPHQL_MARKER = "x.com/i/api/graphql"


class AuthContextProvider(ABC):
    """Source of header/credential material for upstream calls."""

    @abstractmethod
    def is_ready(self) -> bool:
        """Whether headers are available yet."""
        ...

    @abstractmethod
    def get_headers(self) -> dict[str, str] | None:
        """Current headers, or None when nothing is available."""
        ...


class HeaderCapture(AuthContextProvider):
    """
    Collects essential headers from observed API requests.

    Usage:
        capture = HeaderCapture()
        capture.capture(request.url, request.headers)

        # After a grace period with no traffic:
        capture.mark_ready()
    """

    def __init__(self, url_marker: str = GRAPHQL_MARKER):
        self._url_marker = url_marker
        self._headers: dict[str, str] | None = None
        self._ready = False

    def capture(self, url: str, headers: dict[str, str] | None) -> bool:
        """
        Inspect an outgoing host request.

        Returns True if any essential header was captured.
        """
        if not headers or self._url_marker not in url:
            return False

        captured = {
            key: value
            for key, value in headers.items()
            if key.lower() in ESSENTIAL_HEADERS
        }
        if not captured:
            return False

        self._headers = {**(self._headers or {}), **captured}
        self._ready = True
        # Names only, values are credentials
        logger.info(f"Captured API headers: {', '.join(captured)}")
        return True

    def mark_ready(self) -> None:
        """Stop waiting for host traffic and use defaults if nothing arrived."""
        if self._ready:
            return
        logger.info("No API headers captured yet, using defaults")
        self._headers = dict(DEFAULT_HEADERS)
        self._ready = True

    def is_ready(self) -> bool:
        return self._ready

    def get_headers(self) -> dict[str, str] | None:
        return dict(self._headers) if self._headers is not None else None
