"""Exception taxonomy for the reconciliation run."""

from typing import Optional, Any


class SyncError(Exception):
    """Base class for every error raised by the sync."""


class NetworkError(SyncError):
    """The gateway was unreachable or answered with a non-2xx response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        """Transport failures, 5xx and 429 are worth another attempt."""
        if self.status_code is None:
            return True
        return self.status_code >= 500 or self.status_code == 429


class EntityResolutionFailure(SyncError):
    """No buyer, vendor or order could be matched for a gateway record."""

    def __init__(self, reference: str, entity: str, detail: str):
        super().__init__(f"{entity} not resolved for {reference}: {detail}")
        self.reference = reference
        self.entity = entity
        self.detail = detail


class PersistenceError(SyncError):
    """A create or update against the store failed."""


class DuplicateReferenceError(PersistenceError):
    """The external reference already has an internal record."""

    def __init__(self, table: str, reference: str):
        super().__init__(f"{table} already holds reference {reference}")
        self.table = table
        self.reference = reference


class StageFailure(SyncError):
    """An exception escaped a whole sync stage."""

    def __init__(self, stage: str, message: str, result: Any = None):
        super().__init__(f"Stage '{stage}' failed: {message}")
        self.stage = stage
        self.result = result


class SyncInterrupted(SyncError):
    """The run stopped early at a cooperative checkpoint."""


class SyncCancelled(SyncInterrupted):
    """The run was cancelled by its caller."""


class SyncDeadlineExceeded(SyncInterrupted):
    """The run passed its deadline."""
