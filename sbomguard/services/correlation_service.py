import contextvars
from concurrent.futures import FIRST_COMPLETED
from concurrent.futures import Future
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import wait
from dataclasses import dataclass
from dataclasses import field

import structlog

from sbomguard.core.context import CancelContext
from sbomguard.core.errors import Cancelled
from sbomguard.core.errors import CorrelationDegraded
from sbomguard.core.errors import ErrorKind
from sbomguard.core.errors import SbomGuardError
from sbomguard.core.stats import CorrelationStats
from sbomguard.models.analysis import ComponentLookupFailure
from sbomguard.models.analysis import ComponentRiskResult
from sbomguard.models.component import Component
from sbomguard.services.vulnerability_service import VulnerabilityClient

logger = structlog.get_logger('correlation_service')

POLL_INTERVAL = 0.05


@dataclass
class CorrelationResult:
    """Unscored results in declared order, plus per-identity failures."""
    results: list[ComponentRiskResult] = field(default_factory=list)
    failures: list[ComponentLookupFailure] = field(default_factory=list)
    lookups: int = 0
    elapsed: float = 0.0

    @property
    def failure_ratio(self) -> float:
        return len(self.failures) / self.lookups if self.lookups else 0.0


class CorrelationEngine:
    """Fans vulnerability lookups out over the components of one analysis."""

    def __init__(
        self,
        client: VulnerabilityClient,
        concurrency: int = 8,
        max_failure_ratio: float = 0.5,
    ):
        if concurrency < 1:
            raise ValueError('concurrency must be at least 1')
        if not 0.0 <= max_failure_ratio <= 1.0:
            raise ValueError('max_failure_ratio must be within [0, 1]')
        self.client = client
        self.concurrency = concurrency
        self.max_failure_ratio = max_failure_ratio

    def correlate(self, components: list[Component], ctx: CancelContext) -> CorrelationResult:
        """
        Look up every distinct component identity once and fan the findings
        back out to each declared occurrence.

        Raises Cancelled when `ctx` is cancelled mid-flight and
        CorrelationDegraded when too large a share of lookups failed.
        """
        ctx.check()

        # identity -> declared positions, first occurrence first
        slots: dict[tuple[str, str, str], list[int]] = {}
        for index, component in enumerate(components):
            slots.setdefault(component.identity, []).append(index)

        stats = CorrelationStats(total=len(components), unique=len(slots))
        stats.duplicates = len(components) - len(slots)
        results: list[ComponentRiskResult | None] = [None] * len(components)
        failures: list[ComponentLookupFailure] = []

        logger.info(
            'Starting correlation',
            components=len(components),
            unique=len(slots),
            concurrency=self.concurrency,
        )

        executor = ThreadPoolExecutor(
            max_workers=self.concurrency, thread_name_prefix='lookup',
        )
        try:
            pending: dict[Future, tuple[str, str, str]] = {
                executor.submit(
                    contextvars.copy_context().run,
                    self.client.lookup, components[positions[0]], ctx,
                ): identity
                for identity, positions in slots.items()
            }
            while pending:
                if ctx.cancelled:
                    raise Cancelled(ctx.reason or 'cancelled')
                done, _ = wait(
                    pending, timeout=POLL_INTERVAL, return_when=FIRST_COMPLETED,
                )
                for future in done:
                    identity = pending.pop(future)
                    positions = slots[identity]
                    try:
                        findings = future.result()
                        incomplete = False
                    except Cancelled:
                        raise
                    except SbomGuardError as e:
                        findings, incomplete = [], True
                        failures.append(self._failure(components[positions[0]], e.message, e.kind))
                    except Exception as e:
                        findings, incomplete = [], True
                        failures.append(self._failure(components[positions[0]], str(e), ErrorKind.INTERNAL))
                        logger.exception(
                            'Unexpected lookup error',
                            component=components[positions[0]].display_name,
                        )
                    for position in positions:
                        results[position] = ComponentRiskResult(
                            component=components[position],
                            findings=list(findings),
                            lookup_incomplete=incomplete,
                        )
                    stats.inc_completed()
        except Cancelled:
            logger.warning(
                'Correlation cancelled',
                completed=stats.completed,
                unique=stats.unique,
                reason=ctx.reason,
            )
            ctx.cancel(ctx.reason or 'correlation aborted')
            executor.shutdown(wait=False, cancel_futures=True)
            raise
        else:
            executor.shutdown(wait=True)

        # failures are reported per identity, in declared order of first occurrence
        order = {identity: positions[0] for identity, positions in slots.items()}
        failures.sort(key=lambda f: order[f.component.identity])

        outcome = CorrelationResult(
            results=[r for r in results if r is not None],
            failures=failures,
            lookups=len(slots),
            elapsed=stats.elapsed_time,
        )
        logger.info(
            'Correlation finished',
            unique=outcome.lookups,
            failed=len(failures),
            duplicates=stats.duplicates,
            elapsed=f"{outcome.elapsed:.3f}s",
        )

        if outcome.failure_ratio > self.max_failure_ratio:
            raise CorrelationDegraded(
                f"{len(failures)} of {outcome.lookups} lookups failed "
                f"(limit {self.max_failure_ratio:.0%})",
                results=outcome.results,
                failures=outcome.failures,
            )
        return outcome

    @staticmethod
    def _failure(component: Component, reason: str, kind: ErrorKind) -> ComponentLookupFailure:
        return ComponentLookupFailure(component=component, reason=reason, error_kind=kind)
