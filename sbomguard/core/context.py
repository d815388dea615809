import threading
import time
from collections.abc import Callable

from sbomguard.core.errors import Cancelled


class CancelContext:
    """
    Cancellation token with an optional deadline, shared by every lookup of
    one pipeline run.

    Cancellation is cooperative: blocking waits go through `sleep()` /
    `wait()` so they return as soon as the context is cancelled.
    """

    def __init__(
        self,
        timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self._event = threading.Event()
        self._reason: str | None = None
        self.deadline = clock() + timeout if timeout is not None else None

    def cancel(self, reason: str = 'cancelled by caller') -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self.deadline is not None and self._clock() >= self.deadline:
            self.cancel('deadline exceeded')
            return True
        return False

    @property
    def reason(self) -> str | None:
        return self._reason

    def remaining(self) -> float | None:
        """Seconds until the deadline, or None when there is no deadline."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self._clock())

    def check(self) -> None:
        if self.cancelled:
            raise Cancelled(self._reason or 'cancelled')

    def wait(self, seconds: float) -> bool:
        """Block up to `seconds` (clamped to the deadline). True if cancelled."""
        remaining = self.remaining()
        if remaining is not None:
            seconds = min(seconds, remaining)
        if seconds > 0:
            self._event.wait(seconds)
        return self.cancelled

    def sleep(self, seconds: float) -> None:
        """Like wait(), but raises Cancelled when interrupted."""
        if self.wait(seconds):
            raise Cancelled(self._reason or 'cancelled')

    def timeout_for(self, default: float) -> float:
        """Request timeout clamped so a call never outlives the deadline."""
        remaining = self.remaining()
        if remaining is None:
            return default
        return max(0.001, min(default, remaining))
