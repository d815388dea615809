"""Process-wide outbound rate limiting with FIFO admission."""
import threading
import time
from collections.abc import Callable

import structlog
from ratelimit import limits
from ratelimit import RateLimitException

from sbomguard.core.context import CancelContext
from sbomguard.core.errors import Cancelled

logger = structlog.get_logger('throttle')


def _admit() -> None:
    return None


class RateLimiter:
    """
    Leaky-bucket style limiter shared by every lookup in the process.

    Admission is FIFO: callers take a ticket and are served in ticket order,
    so concurrent pipelines contend fairly. The pacing itself is delegated to
    `ratelimit.limits` configured with `burst` calls per `burst / rate`
    seconds, which with the default burst of 1 spaces calls evenly.
    """

    def __init__(
        self,
        rate: float = 10.0,
        burst: int = 1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if rate <= 0:
            raise ValueError('rate must be positive')
        if burst < 1:
            raise ValueError('burst must be at least 1')
        self.rate = rate
        self.burst = burst
        self._sleep = sleep
        self._gate = limits(calls=burst, period=burst / rate, clock=clock)(_admit)
        self._cond = threading.Condition()
        self._next_ticket = 0
        self._serving = 0
        self._abandoned: set[int] = set()
        self.admitted = 0

    def acquire(self, ctx: CancelContext | None = None) -> None:
        """Block until this caller may issue one request."""
        with self._cond:
            ticket = self._next_ticket
            self._next_ticket += 1
            while ticket != self._serving:
                if ctx is not None and ctx.cancelled:
                    self._abandoned.add(ticket)
                    raise Cancelled(ctx.reason or 'cancelled')
                self._cond.wait(timeout=0.05)

        try:
            while True:
                try:
                    self._gate()
                    self.admitted += 1
                    return
                except RateLimitException as exc:
                    delay = max(exc.period_remaining, 0.0)
                    logger.debug('Rate limit wait', wait=f"{delay:.3f}s")
                    if ctx is not None:
                        ctx.sleep(delay)
                    else:
                        self._sleep(delay)
        finally:
            with self._cond:
                self._advance()

    def _advance(self) -> None:
        self._serving += 1
        while self._serving in self._abandoned:
            self._abandoned.discard(self._serving)
            self._serving += 1
        self._cond.notify_all()
