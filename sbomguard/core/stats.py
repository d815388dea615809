import threading
import time
from dataclasses import dataclass
from dataclasses import field


@dataclass
class BaseStats:
    total: int = 0
    failed: int = 0
    api_requests: int = 0
    cache_hits: int = 0
    start_time: float = field(default_factory=time.time)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def inc_failed(self, count: int = 1):
        with self._lock:
            self.failed += count

    def inc_api_requests(self, count: int = 1):
        with self._lock:
            self.api_requests += count

    def inc_cache_hits(self, count: int = 1):
        with self._lock:
            self.cache_hits += count

    @property
    def elapsed_time(self) -> float:
        return time.time() - self.start_time


@dataclass
class LookupStats(BaseStats):
    """Counters of the vulnerability client, shared across pipelines."""
    lookups: int = 0
    retries: int = 0
    empty: int = 0
    findings: int = 0

    def inc_lookup(self, findings: int = 0):
        with self._lock:
            self.lookups += 1
            self.findings += findings
            if not findings:
                self.empty += 1

    def inc_retries(self, count: int = 1):
        with self._lock:
            self.retries += count


@dataclass
class CorrelationStats(BaseStats):
    """Per-run counters of the correlation engine."""
    unique: int = 0
    completed: int = 0
    duplicates: int = 0

    def inc_completed(self, count: int = 1):
        with self._lock:
            self.completed += count
