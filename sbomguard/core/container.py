"""Dependency Injection Container."""
from typing import Optional

from sbomguard.core.client import get_http_client
from sbomguard.core.config import get_config
from sbomguard.core.config import SBOMGuardConfig
from sbomguard.core.retry import RetryPolicy
from sbomguard.core.storage import AnalysisBackend
from sbomguard.core.storage import JsonlBackend
from sbomguard.core.storage import MemoryBackend
from sbomguard.core.throttle import RateLimiter
from sbomguard.models.vulnerability import Severity
from sbomguard.services.analysis_service import AnalysisService
from sbomguard.services.correlation_service import CorrelationEngine
from sbomguard.services.parser_service import SbomParser
from sbomguard.services.scoring_service import RiskScorer
from sbomguard.services.store_service import AnalysisStore
from sbomguard.services.usage_service import StaticTierService
from sbomguard.services.usage_service import TierService
from sbomguard.services.usage_service import UsageGuard
from sbomguard.services.usage_service import UsageLedger
from sbomguard.services.vulnerability_service import VulnerabilityClient


class Container:
    """
    Wires the pipeline from configuration. Everything process-wide (the rate
    limiter, the HTTP session) is created once here and handed down.
    """

    _instance: Optional['Container'] = None

    def __init__(
        self,
        config: SBOMGuardConfig | None = None,
        persistent: bool = True,
        tier_service: TierService | None = None,
    ) -> None:
        self.config: SBOMGuardConfig = config or get_config()
        self.persistent = persistent
        self._tier_service = tier_service
        self._limiter: RateLimiter | None = None
        self._client: VulnerabilityClient | None = None
        self._analysis_service: AnalysisService | None = None

    @classmethod
    def get_instance(cls) -> 'Container':
        if cls._instance is None:
            cls._instance = Container()
        return cls._instance

    # -- Shared infrastructure --

    def get_rate_limiter(self) -> RateLimiter:
        if not self._limiter:
            self._limiter = RateLimiter(rate=self.config.osv.rate_limit)
        return self._limiter

    def get_vulnerability_client(self) -> VulnerabilityClient:
        if not self._client:
            osv = self.config.osv
            cache_name = self.config.paths.http_cache_path if osv.cache_enabled else None
            session = get_http_client(cache_name=cache_name, expire_after=osv.cache_ttl)
            if osv.api_key:
                session.headers['Authorization'] = f"Bearer {osv.api_key}"
            self._client = VulnerabilityClient(
                session=session,
                limiter=self.get_rate_limiter(),
                base_url=osv.api_base_url,
                retry_policy=RetryPolicy(
                    max_attempts=osv.max_attempts,
                    base_delay=osv.backoff_base,
                    factor=osv.backoff_factor,
                    jitter=osv.backoff_jitter,
                ),
                timeout=osv.timeout,
                severity_precedence=osv.severity_precedence,
                default_severity=Severity(osv.default_severity),
            )
        return self._client

    def get_backend(self) -> AnalysisBackend:
        if self.persistent:
            return JsonlBackend(self.config.paths.analyses_path)
        return MemoryBackend()

    def get_tier_service(self) -> TierService:
        if not self._tier_service:
            self._tier_service = StaticTierService(
                default_tier=self.config.usage.default_tier,
            )
        return self._tier_service

    # -- Services --

    def get_analysis_service(self, concurrency: int | None = None) -> AnalysisService:
        if not self._analysis_service:
            ledger = UsageLedger(self.config.paths.usage_path if self.persistent else None)
            engine = CorrelationEngine(
                self.get_vulnerability_client(),
                concurrency=concurrency or self.config.correlation.concurrency,
                max_failure_ratio=self.config.correlation.max_failure_ratio,
            )
            self._analysis_service = AnalysisService(
                parser=SbomParser(),
                engine=engine,
                scorer=RiskScorer(),
                store=AnalysisStore(self.get_backend()),
                guard=UsageGuard(self.get_tier_service(), ledger),
                max_pipelines=self.config.pipeline.max_pipelines,
                default_timeout=self.config.pipeline.default_timeout,
            )
        return self._analysis_service

# Global Accessor


def get_container() -> Container:
    return Container.get_instance()
