"""
Service layer - handle to location resolution under upstream rate limits.

Provides:
- LocationCache: TTL cache that never serves Unresolved entries
- RateLimitMonitor: Shared upstream pause window
- FetchExecutor: One lookup with backoff retry and 429 detection
- RequestScheduler: Paced, concurrency-limited, coalescing dispatch
- LocationResolver: Facade combining all of the above
"""

from geoflag.services.errors import (
    ServiceError,
    RateLimitError,
    TransientFailureError,
    PermanentFailureError,
    PersistenceError,
    ContextUnavailableError,
    QueueFullError,
)
from geoflag.services.cache import CacheEntry, CacheHit, LocationCache
from geoflag.services.persistence import CachePersister
from geoflag.services.rate_limit import RateLimitMonitor, RateLimitState
from geoflag.services.auth import AuthContextProvider, HeaderCapture
from geoflag.services.fetcher import (
    FetchExecutor,
    FetchOutcome,
    OutcomeKind,
    RetryConfig,
)
from geoflag.services.scheduler import HandleState, RequestScheduler, SchedulerConfig
from geoflag.services.interfaces import AnnotationRenderer, IdentityLocator
from geoflag.services.resolver import LocationResolver, get_resolver, close_resolver

__all__ = [
    # Errors
    "ServiceError",
    "RateLimitError",
    "TransientFailureError",
    "PermanentFailureError",
    "PersistenceError",
    "ContextUnavailableError",
    "QueueFullError",
    # Cache
    "CacheEntry",
    "CacheHit",
    "LocationCache",
    "CachePersister",
    # Rate limiting
    "RateLimitMonitor",
    "RateLimitState",
    # Fetching
    "AuthContextProvider",
    "HeaderCapture",
    "FetchExecutor",
    "FetchOutcome",
    "OutcomeKind",
    "RetryConfig",
    # Scheduling
    "HandleState",
    "RequestScheduler",
    "SchedulerConfig",
    # Facade
    "AnnotationRenderer",
    "IdentityLocator",
    "LocationResolver",
    "get_resolver",
    "close_resolver",
]
