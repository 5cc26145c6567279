"""Per-run deadline and cooperative cancellation."""

import time
from typing import Optional

from ..errors import SyncCancelled, SyncDeadlineExceeded


class RunControl:
    """
    Checkpoint object handed down through a sync run.

    The gateway drain checks it before every page and the engine before
    every record. Nothing is interrupted mid-request; a run stops at the
    next checkpoint after ``cancel()`` or once the deadline passes.
    """

    def __init__(self, deadline_seconds: Optional[float] = None):
        """
        Args:
            deadline_seconds: Seconds from now after which the run stops.
                None means no deadline.
        """
        self.deadline_seconds = deadline_seconds
        self._deadline: Optional[float] = (
            time.monotonic() + deadline_seconds if deadline_seconds is not None else None
        )
        self._cancelled = False
        self._cancel_reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._cancelled = True
        self._cancel_reason = reason

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def check(self) -> None:
        """Raise if the run should stop.

        Raises:
            SyncCancelled: If cancel() was called.
            SyncDeadlineExceeded: If the deadline has passed.
        """
        if self._cancelled:
            raise SyncCancelled(self._cancel_reason or "cancelled")
        if self.expired():
            raise SyncDeadlineExceeded(
                f"run exceeded its {self.deadline_seconds}s deadline"
            )
