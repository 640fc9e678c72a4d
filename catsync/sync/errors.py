# catsync Sync Errors
# Error taxonomy for detection, dispatch, queueing and reconciliation

from typing import Optional


class SyncError(Exception):
    """Base class for all synchronization errors."""


class RemoteError(SyncError):
    """Error reported by the remote catalog."""

    def __init__(self, message: str, *, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ValidationError(RemoteError):
    """Malformed payload rejected by the remote. Fatal for the item, never retried."""


class NotFoundError(ValidationError):
    """The addressed remote resource does not exist."""


class AuthError(RemoteError):
    """Expired or invalid credential. Fatal for the whole run."""


class RateLimitError(RemoteError):
    """Remote signalled rate limiting. Retryable with backoff."""

    def __init__(
        self,
        message: str = "Rate limited by remote",
        *,
        status_code: Optional[int] = 429,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class TransientNetworkError(RemoteError):
    """Timeout, connection reset or server-side hiccup. Retryable with backoff."""


class ReadinessError(SyncError):
    """Pre-flight checks failed before any dispatch."""


class QueueCorruption(SyncError):
    """Persisted queue failed integrity validation or could not be parsed."""

    def __init__(self, message: str, violations: Optional[list[str]] = None):
        super().__init__(message)
        self.violations = violations or []


class InvalidTransition(SyncError):
    """Queue item status change not permitted by the state machine."""


class SessionNotFound(SyncError):
    """No persisted session exists for the given id."""


class ReconciliationFailure(SyncError):
    """Write-back to the table store failed after a successful dispatch."""

    def __init__(self, message: str, row_ids: Optional[list[str]] = None):
        super().__init__(message)
        self.row_ids = row_ids or []
