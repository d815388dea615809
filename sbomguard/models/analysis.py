import uuid
from datetime import datetime
from datetime import timezone
from enum import Enum

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from sbomguard.core.errors import ErrorKind
from sbomguard.core.errors import InvalidTransition
from sbomguard.models.component import Component
from sbomguard.models.vulnerability import VulnerabilityFinding


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnalysisStatus(str, Enum):
    PENDING = 'PENDING'
    RUNNING = 'RUNNING'
    COMPLETE = 'COMPLETE'
    FAILED = 'FAILED'

    @property
    def is_terminal(self) -> bool:
        return self in (AnalysisStatus.COMPLETE, AnalysisStatus.FAILED)

    def __str__(self) -> str:
        return self.value


_TRANSITIONS = {
    AnalysisStatus.PENDING: {AnalysisStatus.RUNNING},
    AnalysisStatus.RUNNING: {AnalysisStatus.COMPLETE, AnalysisStatus.FAILED},
    AnalysisStatus.COMPLETE: set(),
    AnalysisStatus.FAILED: set(),
}


class RiskLevel(str, Enum):
    NONE = 'NONE'
    LOW = 'LOW'
    MEDIUM = 'MEDIUM'
    HIGH = 'HIGH'
    CRITICAL = 'CRITICAL'

    @classmethod
    def from_score(cls, score: float) -> 'RiskLevel':
        if score <= 0:
            return cls.NONE
        if score < 25:
            return cls.LOW
        if score < 50:
            return cls.MEDIUM
        if score < 75:
            return cls.HIGH
        return cls.CRITICAL

    def __str__(self) -> str:
        return self.value


class ComponentRiskResult(BaseModel):
    component: Component
    findings: list[VulnerabilityFinding] = Field(default_factory=list)
    risk_score: float = Field(default=0.0, ge=0.0, le=100.0)
    lookup_incomplete: bool = False


class ComponentLookupFailure(BaseModel):
    component: Component
    reason: str
    error_kind: ErrorKind = ErrorKind.UPSTREAM_UNAVAILABLE


class AnalysisSummary(BaseModel):
    id: str
    tenant_id: str
    vendor_id: str | None = None
    source_filename: str
    status: AnalysisStatus
    total_components: int
    total_vulnerabilities: int
    overall_risk_score: float
    risk_level: RiskLevel
    created_at: datetime
    completed_at: datetime | None = None


class Analysis(BaseModel):
    """
    One pipeline run over one uploaded SBOM.

    Totals and the overall score are only ever written together with the
    component results (see `complete` / `fail`), which keeps them derived.
    """
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    tenant_id: str
    vendor_id: str | None = None
    source_filename: str
    source_format: str = ''
    content_hash: str
    status: AnalysisStatus = AnalysisStatus.PENDING
    total_components: int = 0
    skipped_components: int = 0
    total_vulnerabilities: int = 0
    overall_risk_score: float = Field(default=0.0, ge=0.0, le=100.0)
    risk_level: RiskLevel = RiskLevel.NONE
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    component_results: list[ComponentRiskResult] = Field(default_factory=list)
    lookup_failures: list[ComponentLookupFailure] = Field(default_factory=list)
    error: str | None = None
    error_kind: ErrorKind | None = None

    model_config = ConfigDict(validate_assignment=True)

    def transition(self, status: AnalysisStatus) -> None:
        if status not in _TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"Illegal status transition {self.status} -> {status}",
            )
        self.status = status

    def start(self) -> None:
        self.transition(AnalysisStatus.RUNNING)

    def complete(
        self,
        results: list[ComponentRiskResult],
        failures: list[ComponentLookupFailure],
        overall_risk_score: float,
    ) -> None:
        self.transition(AnalysisStatus.COMPLETE)
        self._set_results(results, failures, overall_risk_score)
        self.completed_at = utcnow()

    def fail(
        self,
        kind: ErrorKind,
        message: str,
        results: list[ComponentRiskResult] | None = None,
        failures: list[ComponentLookupFailure] | None = None,
        overall_risk_score: float = 0.0,
    ) -> None:
        self.transition(AnalysisStatus.FAILED)
        self._set_results(results or [], failures or [], overall_risk_score)
        self.error = message
        self.error_kind = kind
        self.completed_at = utcnow()

    def _set_results(self, results, failures, overall_risk_score) -> None:
        self.component_results = list(results)
        self.lookup_failures = list(failures)
        self.total_vulnerabilities = sum(len(r.findings) for r in results)
        self.overall_risk_score = overall_risk_score
        self.risk_level = RiskLevel.from_score(overall_risk_score)

    def summary(self) -> AnalysisSummary:
        return AnalysisSummary(
            id=self.id,
            tenant_id=self.tenant_id,
            vendor_id=self.vendor_id,
            source_filename=self.source_filename,
            status=self.status,
            total_components=self.total_components,
            total_vulnerabilities=self.total_vulnerabilities,
            overall_risk_score=self.overall_risk_score,
            risk_level=self.risk_level,
            created_at=self.created_at,
            completed_at=self.completed_at,
        )
