"""Thread store errors.

Each error carries a ``code`` naming the failure kind so callers (the CLI,
a sync loop, a UI) can react without matching on message text.
"""


class StoreError(Exception):
    """Base exception for thread store operations."""

    code = "STORE_ERROR"


class BackendUnavailableError(StoreError):
    """Raised when the persistence backend cannot be read or written."""

    code = "BACKEND_UNAVAILABLE"


class EmptyThreadError(StoreError):
    """Raised when a capture with no posts is saved."""

    code = "EMPTY_THREAD"


class StorageLimitError(StoreError):
    """Raised when a free-tier store already holds the maximum thread count."""

    code = "STORAGE_LIMIT_REACHED"


class NotFoundError(StoreError):
    """Raised when an operation references an entity id that does not exist."""

    code = "NOT_FOUND"


class ForbiddenError(StoreError):
    """Raised on an operation that is never allowed, e.g. deleting the default collection."""

    code = "FORBIDDEN"
