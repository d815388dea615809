import random
from dataclasses import dataclass
from dataclasses import field

import requests

# Status codes worth another attempt. 429 is the only retried 4xx.
RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


@dataclass
class RetryPolicy:
    """Exponential backoff with symmetric jitter.

    delay(n) = base_delay * factor ** (n - 1) * uniform(1 - jitter, 1 + jitter)
    where n is the number of the attempt that just failed.
    """
    max_attempts: int = 3
    base_delay: float = 0.2
    factor: float = 2.0
    jitter: float = 0.2
    rng: random.Random = field(default_factory=random.Random, repr=False)

    def delay_for(self, attempt: int) -> float:
        delay = self.base_delay * (self.factor ** (attempt - 1))
        if self.jitter:
            delay *= self.rng.uniform(1 - self.jitter, 1 + self.jitter)
        return max(0.0, delay)

    def should_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts

    @staticmethod
    def is_retryable_status(status_code: int) -> bool:
        return status_code in RETRYABLE_STATUS or status_code >= 500

    @staticmethod
    def is_retryable_exception(exc: Exception) -> bool:
        return isinstance(exc, (requests.Timeout, requests.ConnectionError))
