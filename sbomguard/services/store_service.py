import threading
import time
from collections.abc import Callable
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from sbomguard.core.errors import AnalysisNotFound
from sbomguard.core.errors import ErrorKind
from sbomguard.core.storage import AnalysisBackend
from sbomguard.core.storage import MemoryBackend
from sbomguard.models.analysis import Analysis
from sbomguard.models.analysis import AnalysisStatus
from sbomguard.models.analysis import AnalysisSummary

logger = structlog.get_logger('store_service')

Key = tuple[str, str]


class AnalysisStore:
    """
    Analysis persistence with idempotent get-or-create.

    At most one run per (tenant_id, content_hash) is in flight at a time.
    The per-key lock is held only while deciding whether to reuse or create
    a record, never for the duration of the pipeline run.
    """

    def __init__(self, backend: AnalysisBackend | None = None):
        self.backend = backend or MemoryBackend()
        self._key_locks: dict[Key, list] = {}
        self._key_locks_guard = threading.Lock()
        self._inflight: dict[Key, str] = {}
        self._changed = threading.Condition()
        self._restore_inflight()

    def _restore_inflight(self) -> None:
        # Runs do not survive a restart; records left mid-flight are marked failed.
        for analysis in self.backend.scan():
            if not analysis.status.is_terminal:
                if analysis.status is AnalysisStatus.PENDING:
                    analysis.start()
                analysis.fail(ErrorKind.INTERNAL, 'Interrupted by process restart')
                self.backend.put(analysis)
                logger.warning('Marked interrupted analysis as failed', analysis_id=analysis.id)

    @contextmanager
    def _key_lock(self, key: Key) -> Iterator[None]:
        # Entries are [lock, users]; dropped once nobody holds or waits on them.
        with self._key_locks_guard:
            entry = self._key_locks.get(key)
            if entry is None:
                entry = self._key_locks[key] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._key_locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._key_locks[key]

    def get_or_create(
        self,
        tenant_id: str,
        content_hash: str,
        factory: Callable[[], Analysis],
        admit: Callable[[], None] | None = None,
    ) -> tuple[Analysis, bool]:
        """
        Return (analysis, created).

        A COMPLETE analysis for the same content is returned as is; an
        in-flight one is returned for the caller to await. A previous FAILED
        run does not block a new attempt.

        `admit` runs only when a new record is about to be created and may
        raise to refuse it; nothing is saved in that case.
        """
        key = (tenant_id, content_hash)
        with self._key_lock(key):
            cached = self.find_complete(tenant_id, content_hash)
            if cached is not None:
                logger.info('Reusing completed analysis', analysis_id=cached.id, tenant_id=tenant_id)
                return cached, False

            inflight_id = self._inflight.get(key)
            if inflight_id is not None:
                inflight = self.backend.get(inflight_id)
                if inflight is not None and not inflight.status.is_terminal:
                    logger.info('Attaching to in-flight analysis', analysis_id=inflight_id, tenant_id=tenant_id)
                    return inflight, False

            if admit is not None:
                admit()
            analysis = factory()
            if analysis.tenant_id != tenant_id or analysis.content_hash != content_hash:
                raise ValueError('factory produced an analysis for a different key')
            self._inflight[key] = analysis.id
            self.save(analysis)
            logger.info('Created analysis', analysis_id=analysis.id, tenant_id=tenant_id)
            return analysis, True

    def find_complete(self, tenant_id: str, content_hash: str) -> Analysis | None:
        matches = [
            a for a in self.backend.scan()
            if a.tenant_id == tenant_id
            and a.content_hash == content_hash
            and a.status is AnalysisStatus.COMPLETE
        ]
        if not matches:
            return None
        return max(matches, key=lambda a: a.created_at)

    def save(self, analysis: Analysis) -> None:
        self.backend.put(analysis)
        if analysis.status.is_terminal:
            key = (analysis.tenant_id, analysis.content_hash)
            with self._key_locks_guard:
                if self._inflight.get(key) == analysis.id:
                    del self._inflight[key]
        with self._changed:
            self._changed.notify_all()

    def get(self, analysis_id: str) -> Analysis:
        analysis = self.backend.get(analysis_id)
        if analysis is None:
            raise AnalysisNotFound(f"Analysis not found: {analysis_id}")
        return analysis

    def list(self, tenant_id: str) -> list[AnalysisSummary]:
        """Summaries of a tenant's analyses, newest first."""
        analyses = [a for a in self.backend.scan() if a.tenant_id == tenant_id]
        analyses.sort(key=lambda a: a.created_at, reverse=True)
        return [a.summary() for a in analyses]

    def delete(self, analysis_id: str) -> None:
        analysis = self.get(analysis_id)
        if not analysis.status.is_terminal:
            raise ValueError(f"Analysis {analysis_id} is still {analysis.status}")
        self.backend.delete(analysis_id)
        logger.info('Deleted analysis', analysis_id=analysis_id)

    def wait_for(self, analysis_id: str, timeout: float | None = None) -> Analysis:
        """Block until the analysis is COMPLETE or FAILED and return it."""
        deadline = time.monotonic() + timeout if timeout is not None else None
        with self._changed:
            while True:
                analysis = self.get(analysis_id)
                if analysis.status.is_terminal:
                    return analysis
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    raise TimeoutError(f"Analysis {analysis_id} is still {analysis.status}")
                self._changed.wait(timeout=remaining if remaining is not None else 1.0)
