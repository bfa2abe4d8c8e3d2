"""Exception hierarchy shared by the store service and the client."""
from typing import Optional


class PayflowError(Exception):
    """Base class for every error raised by payflow."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class ValidationRefusal(PayflowError):
    """
    Submitted data is incomplete or inconsistent (e.g. confirmation mismatch).
    Recovered locally; nothing is written.
    """


class RefusalError(PayflowError):
    """
    Raised when a lifecycle action is refused.
    This is NOT a malfunction - it's the state machine working correctly.
    """

    def __init__(
        self,
        message: str,
        request_id: Optional[str] = None,
        current_status: Optional[str] = None,
        target_status: Optional[str] = None,
    ):
        self.request_id = request_id
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(message)


class NotFoundError(PayflowError):
    """Referenced record does not exist."""


class TransportError(PayflowError):
    """The authoritative store could not be reached (timeout, network, 5xx)."""


class StoreNotConfigured(TransportError):
    """No store URL configured; the client runs local-only."""


class RejectedByStore(PayflowError):
    """The store answered but refused the change (4xx)."""

    def __init__(self, message: str, status_code: int):
        self.status_code = status_code
        super().__init__(message)


class ConflictError(RejectedByStore):
    """Stale write: the stored version moved on since the client read it."""

    def __init__(self, message: str):
        super().__init__(message, status_code=409)


class CacheCorruptError(PayflowError):
    """The durable local cache could not be parsed."""


class BackupImportError(PayflowError):
    """A backup payload is malformed; nothing was imported."""
