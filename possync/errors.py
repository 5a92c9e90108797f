"""Exception types raised by the sync engine."""

# Client errors that can clear up without changing the request.
TRANSIENT_STATUS_CODES = frozenset({401, 403, 408, 429})


class SyncError(Exception):
    """Base class for sync engine failures."""


class RemoteError(SyncError):
    """A remote call failed (transport error or HTTP error status)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        """Transport failures, 5xx and auth or throttling responses are worth retrying."""
        if self.status_code is None or self.status_code >= 500:
            return True
        return self.status_code in TRANSIENT_STATUS_CODES


class DecodeError(SyncError):
    """A wire payload could not be mapped to a local record."""


class LocalStoreError(SyncError):
    """The local store rejected an operation."""
