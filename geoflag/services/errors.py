"""
Service layer exceptions.

Only the fetch executor raises the upstream failures below; they are
converted into a ``FetchOutcome`` before they leave it, so callers of the
resolver never see them.
"""


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, handle: str | None = None):
        self.handle = handle
        super().__init__(message)


class RateLimitError(ServiceError):
    """Upstream answered 429; all dispatch must pause until ``reset_at``."""

    def __init__(self, handle: str, reset_at: float):
        self.reset_at = reset_at
        super().__init__(
            f"Rate limit exceeded while resolving '{handle}', "
            f"resets at epoch {reset_at:.0f}",
            handle=handle,
        )


class TransientFailureError(ServiceError):
    """Recoverable failure (retryable status or network error)."""

    def __init__(
        self,
        message: str,
        handle: str | None = None,
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, handle=handle)


class PermanentFailureError(ServiceError):
    """Failure that retrying will not fix (malformed body, 4xx, ...)."""

    def __init__(
        self,
        message: str,
        handle: str | None = None,
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, handle=handle)


class PersistenceError(ServiceError):
    """Persistent store read or write failed."""

    pass


class ContextUnavailableError(ServiceError):
    """Authentication context never became ready."""

    pass


class QueueFullError(ServiceError):
    """Request queue reached its ceiling; the request was rejected."""

    def __init__(self, handle: str, max_size: int):
        self.max_size = max_size
        super().__init__(
            f"Request queue full ({max_size} pending), rejected '{handle}'",
            handle=handle,
        )
