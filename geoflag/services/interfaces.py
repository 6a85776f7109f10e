"""
Interfaces of the UI-side collaborators.
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable


class IdentityLocator(ABC):
    """Extracts a handle from a UI element."""

    @abstractmethod
    def locate(self, element: Any) -> str | None:
        """Return the handle, or None for non-identity elements."""
        ...


class AnnotationRenderer(ABC):
    """Places or removes the location marker next to a handle."""

    @abstractmethod
    def render(self, handle: str, location: str | None) -> Awaitable[None] | None:
        """Render the outcome; may be sync or return an awaitable."""
        ...
