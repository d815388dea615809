import threading
from concurrent.futures import ThreadPoolExecutor

import structlog

from sbomguard.core.context import CancelContext
from sbomguard.core.errors import Cancelled
from sbomguard.core.errors import CorrelationDegraded
from sbomguard.core.errors import ErrorKind
from sbomguard.core.errors import SbomGuardError
from sbomguard.core.logging import bind_analysis_context
from sbomguard.core.logging import clear_analysis_context
from sbomguard.models.analysis import Analysis
from sbomguard.models.analysis import AnalysisStatus
from sbomguard.models.analysis import AnalysisSummary
from sbomguard.models.analysis import ComponentLookupFailure
from sbomguard.models.analysis import ComponentRiskResult
from sbomguard.models.component import Component
from sbomguard.models.tier import UsageSnapshot
from sbomguard.services.correlation_service import CorrelationEngine
from sbomguard.services.parser_service import SbomParser
from sbomguard.services.scoring_service import RiskScorer
from sbomguard.services.store_service import AnalysisStore
from sbomguard.services.usage_service import UsageGuard

logger = structlog.get_logger('analysis_service')


class AnalysisHandle:
    """
    Returned by `submit_analysis`. Only the submission that created the run
    holds its cancel context; callers that attached to an existing run can
    wait for it but not cancel it.
    """

    def __init__(
        self,
        analysis_id: str,
        store: AnalysisStore,
        created: bool = False,
        cached: bool = False,
        ctx: CancelContext | None = None,
    ):
        self.analysis_id = analysis_id
        self.created = created
        self.cached = cached
        self._store = store
        self._ctx = ctx

    def result(self, timeout: float | None = None) -> Analysis:
        """Wait for the run to reach COMPLETE or FAILED."""
        return self._store.wait_for(self.analysis_id, timeout=timeout)

    def done(self) -> bool:
        return self._store.get(self.analysis_id).status.is_terminal

    def cancel(self, reason: str = 'cancelled by caller') -> bool:
        if self._ctx is None:
            return False
        self._ctx.cancel(reason)
        return True

    def __repr__(self) -> str:
        return (
            f"AnalysisHandle(analysis_id={self.analysis_id!r}, "
            f"created={self.created}, cached={self.cached})"
        )


class AnalysisService:
    """Parse, admit, correlate and score uploaded SBOMs."""

    def __init__(
        self,
        parser: SbomParser,
        engine: CorrelationEngine,
        scorer: RiskScorer,
        store: AnalysisStore,
        guard: UsageGuard,
        max_pipelines: int = 4,
        default_timeout: float | None = 300.0,
    ):
        self.parser = parser
        self.engine = engine
        self.scorer = scorer
        self.store = store
        self.guard = guard
        self.default_timeout = default_timeout
        self._executor = ThreadPoolExecutor(
            max_workers=max_pipelines, thread_name_prefix='pipeline',
        )
        self._contexts: dict[str, CancelContext] = {}
        self._contexts_lock = threading.Lock()

    def submit_analysis(
        self,
        tenant_id: str,
        source_filename: str,
        raw_document: bytes | str,
        vendor_id: str | None = None,
        timeout: float | None = None,
    ) -> AnalysisHandle:
        """
        Parse and admit synchronously, then run correlation in the background.

        Raises MalformedDocument / UnsupportedFormat for bad input and
        QuotaExceeded / QuotaCheckUnavailable when the tenant is not admitted.
        Nothing is persisted in either case.
        """
        if not tenant_id:
            raise ValueError('tenant_id is required')

        parsed = self.parser.parse(raw_document)
        content_hash = parsed.content_hash

        cached = self.store.find_complete(tenant_id, content_hash)
        if cached is not None:
            logger.info(
                'Returning cached analysis',
                analysis_id=cached.id, tenant_id=tenant_id,
            )
            return AnalysisHandle(cached.id, self.store, cached=True)

        def admit() -> None:
            self.guard.check_quota(tenant_id, parsed.distinct_count).raise_if_denied()

        def factory() -> Analysis:
            return Analysis(
                tenant_id=tenant_id,
                vendor_id=vendor_id,
                source_filename=source_filename,
                source_format=str(parsed.format),
                content_hash=content_hash,
                total_components=parsed.distinct_count,
                skipped_components=parsed.skipped_count,
            )

        analysis, created = self.store.get_or_create(tenant_id, content_hash, factory, admit=admit)
        if not created:
            return AnalysisHandle(
                analysis.id, self.store,
                cached=analysis.status is AnalysisStatus.COMPLETE,
            )

        ctx = CancelContext(timeout=timeout if timeout is not None else self.default_timeout)
        with self._contexts_lock:
            self._contexts[analysis.id] = ctx
        self._executor.submit(self._run, analysis.id, parsed.components, ctx)
        return AnalysisHandle(analysis.id, self.store, created=True, ctx=ctx)

    def _run(self, analysis_id: str, components: list[Component], ctx: CancelContext) -> None:
        analysis = self.store.get(analysis_id)
        bind_analysis_context(analysis.id, analysis.tenant_id)
        try:
            analysis.start()
            self.store.save(analysis)
            logger.info('Analysis running', components=len(components))
            ctx.check()

            outcome = self.engine.correlate(components, ctx)
            results = self.scorer.score_results(outcome.results)
            overall = self.scorer.overall(results)
            analysis.complete(results, outcome.failures, overall)
            self.store.save(analysis)
            logger.info(
                'Analysis complete',
                vulnerabilities=analysis.total_vulnerabilities,
                overall_risk_score=analysis.overall_risk_score,
                risk_level=str(analysis.risk_level),
                lookup_failures=len(analysis.lookup_failures),
            )
            self._charge(analysis)
        except CorrelationDegraded as e:
            results = self.scorer.score_results(e.results)
            self._finish_failed(
                analysis_id, e.kind, e.message,
                results, e.failures, self.scorer.overall(results),
            )
        except Cancelled as e:
            self._finish_failed(analysis_id, e.kind, e.message)
        except SbomGuardError as e:
            self._finish_failed(analysis_id, e.kind, e.message)
        except Exception as e:
            logger.exception('Analysis crashed')
            self._finish_failed(analysis_id, ErrorKind.INTERNAL, str(e) or type(e).__name__)
        finally:
            with self._contexts_lock:
                self._contexts.pop(analysis_id, None)
            clear_analysis_context()

    def _finish_failed(
        self,
        analysis_id: str,
        kind: ErrorKind,
        message: str,
        results: list[ComponentRiskResult] | None = None,
        failures: list[ComponentLookupFailure] | None = None,
        overall_risk_score: float = 0.0,
    ) -> None:
        analysis = self.store.get(analysis_id)
        if analysis.status.is_terminal:
            logger.error(
                'Analysis already terminal', status=str(analysis.status),
                error_kind=str(kind), error=message,
            )
            return
        if analysis.status is AnalysisStatus.PENDING:
            analysis.start()
        analysis.fail(kind, message, results, failures, overall_risk_score)
        self.store.save(analysis)
        logger.warning(
            'Analysis failed', error_kind=str(kind), error=message,
            partial_results=len(analysis.component_results),
        )

    def _charge(self, analysis: Analysis) -> None:
        try:
            self.guard.record_usage(analysis.tenant_id)
        except Exception:
            logger.exception('Failed to record usage')

    def get_analysis(self, analysis_id: str) -> Analysis:
        return self.store.get(analysis_id)

    def list_analyses(self, tenant_id: str) -> list[AnalysisSummary]:
        return self.store.list(tenant_id)

    def delete_analysis(self, analysis_id: str) -> None:
        self.store.delete(analysis_id)

    def get_usage(self, tenant_id: str) -> UsageSnapshot:
        return self.guard.get_usage(tenant_id)

    def shutdown(self, wait: bool = True, cancel_running: bool = True) -> None:
        """Stop accepting work. In-flight runs are cancelled unless told otherwise."""
        if cancel_running:
            with self._contexts_lock:
                contexts = list(self._contexts.values())
            for ctx in contexts:
                ctx.cancel('service shutting down')
        self._executor.shutdown(wait=wait)
