# discount_sync/errors.py


class SyncError(Exception):
    """Base class for everything the sync core raises on purpose."""


class ValidationError(SyncError):
    """Malformed identifier or payload. Raised before any upstream call."""


class NotFoundError(SyncError):
    pass


class DuplicateRelationshipError(ValidationError):
    pass


class UpstreamError(SyncError):
    """Transport or API failure talking to Shopify."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ThrottledError(UpstreamError):
    """429/5xx or GraphQL THROTTLED. Retried with backoff by the client."""


class PersistenceError(SyncError):
    """Local storage failure. The mirror can't be trusted after this."""
