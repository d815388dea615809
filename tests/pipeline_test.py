import json
import threading
from unittest.mock import MagicMock

import pytest
import requests

from sbomguard.core.errors import ErrorKind
from sbomguard.core.errors import MalformedDocument
from sbomguard.core.errors import QuotaCheckUnavailable
from sbomguard.core.errors import QuotaExceeded
from sbomguard.core.retry import RetryPolicy
from sbomguard.core.storage import MemoryBackend
from sbomguard.core.throttle import RateLimiter
from sbomguard.models.analysis import AnalysisStatus
from sbomguard.models.analysis import RiskLevel
from sbomguard.models.tier import TierLimits
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

LODASH_VULN = {
    'id': 'GHSA-35jh-r3h4-6jhm',
    'summary': 'Command Injection in lodash',
    'aliases': ['CVE-2021-23337'],
    'database_specific': {'severity': 'CRITICAL'},
}

SBOM = {
    'bomFormat': 'CycloneDX',
    'specVersion': '1.5',
    'components': [
        {'name': 'lodash', 'version': '4.17.20', 'purl': 'pkg:npm/lodash@4.17.20'},
        {'name': 'left-pad', 'version': '1.3.0', 'purl': 'pkg:npm/left-pad@1.3.0'},
    ],
}


def osv_response(status=200, payload=None):
    response = MagicMock()
    response.status_code = status
    response.json.return_value = payload if payload is not None else {}
    response.from_cache = False
    return response


class FakeOSV:
    """Stands in for the HTTP session; answers by package name."""

    def __init__(self):
        self.calls = []
        self.status = 200
        self.gate: threading.Event | None = None
        self._lock = threading.Lock()

    def post(self, url, json=None, timeout=None):
        with self._lock:
            self.calls.append(json['package']['name'])
        if self.gate is not None:
            self.gate.wait(5)
        if self.status != 200:
            return osv_response(self.status)
        if json['package']['name'] == 'lodash':
            return osv_response(payload={'vulns': [LODASH_VULN]})
        return osv_response(payload={})


@pytest.fixture
def osv():
    fake = FakeOSV()
    yield fake
    if fake.gate is not None:
        fake.gate.set()


def build_service(osv, tiers=None, store=None):
    session = MagicMock(spec=requests.Session)
    session.post.side_effect = osv.post
    client = VulnerabilityClient(
        session=session,
        limiter=RateLimiter(rate=1000.0),
        retry_policy=RetryPolicy(max_attempts=2, base_delay=0.0, jitter=0.0),
    )
    return AnalysisService(
        parser=SbomParser(),
        engine=CorrelationEngine(client, concurrency=4),
        scorer=RiskScorer(),
        store=store or AnalysisStore(MemoryBackend()),
        guard=UsageGuard(tiers or StaticTierService(default_tier='free'), UsageLedger()),
        max_pipelines=2,
        default_timeout=30.0,
    )


@pytest.fixture
def service(osv):
    svc = build_service(osv)
    yield svc
    if osv.gate is not None:
        osv.gate.set()
    svc.shutdown()


def submit(service, document=SBOM, tenant='tenant-a', **kwargs):
    return service.submit_analysis(
        tenant_id=tenant,
        source_filename='bom.json',
        raw_document=json.dumps(document).encode(),
        **kwargs,
    )


def test_end_to_end_analysis(service):
    """Test a submission runs through to a scored COMPLETE analysis."""
    handle = submit(service, vendor_id='vendor-1')
    assert handle.created
    assert not handle.cached

    analysis = handle.result(timeout=10)

    assert analysis.status is AnalysisStatus.COMPLETE
    assert analysis.vendor_id == 'vendor-1'
    assert analysis.source_format == 'cyclonedx'
    assert analysis.total_components == 2
    assert analysis.total_vulnerabilities == 1
    lodash, left_pad = analysis.component_results
    assert lodash.component.name == 'lodash'
    assert lodash.findings[0].id == 'GHSA-35jh-r3h4-6jhm'
    assert lodash.risk_score >= 40.0
    assert left_pad.findings == []
    assert left_pad.risk_score == 0.0
    assert analysis.overall_risk_score == lodash.risk_score
    assert analysis.risk_level is RiskLevel.MEDIUM
    assert handle.done()
    assert service.get_usage('tenant-a').used == 1


def test_quota_exceeded_persists_nothing(osv):
    """Test a refused submission leaves no record and makes no lookups."""
    tiers = StaticTierService(
        {'tenant-a': 'tiny'},
        catalog={'tiny': TierLimits(tier='tiny', max_analyses_per_month=5, max_components_per_analysis=10)},
    )
    service = build_service(osv, tiers=tiers)
    document = {
        'bomFormat': 'CycloneDX',
        'components': [
            {'name': f"pkg-{i}", 'version': '1.0.0', 'purl': f"pkg:npm/pkg-{i}@1.0.0"}
            for i in range(15)
        ],
    }

    with pytest.raises(QuotaExceeded):
        submit(service, document)

    assert service.list_analyses('tenant-a') == []
    assert osv.calls == []
    service.shutdown()


def test_tier_lookup_failure_denies(osv):
    """Test an unreachable tier service refuses the submission."""
    tiers = MagicMock(spec=TierService)
    tiers.get_tier_limits.side_effect = TimeoutError('billing unreachable')
    service = build_service(osv, tiers=tiers)

    with pytest.raises(QuotaCheckUnavailable):
        submit(service)
    assert service.list_analyses('tenant-a') == []
    service.shutdown()


def test_malformed_document_persists_nothing(service):
    """Test a malformed upload leaves no record."""
    with pytest.raises(MalformedDocument):
        service.submit_analysis('tenant-a', 'bom.json', b'{"bomFormat": ')
    assert service.list_analyses('tenant-a') == []


def test_concurrent_identical_submissions_share_one_run(service, osv):
    """Test identical submissions in flight share one run."""
    osv.gate = threading.Event()

    first = submit(service)
    second = submit(service)
    osv.gate.set()

    assert first.created
    assert not second.created
    assert second.analysis_id == first.analysis_id
    assert first.result(timeout=10).id == second.result(timeout=10).id
    assert sorted(osv.calls) == ['left-pad', 'lodash']
    assert service.get_usage('tenant-a').used == 1


def test_only_the_owner_can_cancel(service, osv):
    """Test only the creating submission can cancel."""
    osv.gate = threading.Event()
    first = submit(service)
    second = submit(service)

    assert not second.cancel()
    assert first.cancel()
    osv.gate.set()


def test_cancellation_fails_with_zero_results(service, osv):
    """Test a cancelled run fails without results or charge."""
    osv.gate = threading.Event()
    handle = submit(service)

    assert handle.cancel()
    analysis = handle.result(timeout=10)

    assert analysis.status is AnalysisStatus.FAILED
    assert analysis.error_kind is ErrorKind.CANCELLED
    assert analysis.component_results == []
    assert service.get_usage('tenant-a').used == 0


def test_deadline_fails_run(service, osv):
    """Test a run past its deadline fails as cancelled."""
    osv.gate = threading.Event()
    analysis = submit(service, timeout=0.2).result(timeout=10)
    assert analysis.status is AnalysisStatus.FAILED
    assert analysis.error_kind is ErrorKind.CANCELLED


def test_resubmission_returns_cached_result(service, osv):
    """Test resubmitting finished content returns the stored result."""
    first = submit(service).result(timeout=10)
    calls = len(osv.calls)

    reordered = {**SBOM, 'components': list(reversed(SBOM['components']))}
    handle = submit(service, reordered)

    assert handle.cached
    assert not handle.created
    assert handle.analysis_id == first.id
    assert handle.result(timeout=1).overall_risk_score == first.overall_risk_score
    assert len(osv.calls) == calls
    assert service.get_usage('tenant-a').used == 1


def test_failed_run_can_be_retried(service, osv):
    """Test a failed run does not block a new attempt."""
    osv.status = 503
    failed = submit(service).result(timeout=10)
    assert failed.status is AnalysisStatus.FAILED

    osv.status = 200
    retry = submit(service)
    assert retry.created
    assert retry.analysis_id != failed.id
    assert retry.result(timeout=10).status is AnalysisStatus.COMPLETE


def test_degraded_correlation_keeps_partial_results(service, osv):
    """Test a degraded run keeps its partial results."""
    osv.status = 503
    analysis = submit(service).result(timeout=10)

    assert analysis.status is AnalysisStatus.FAILED
    assert analysis.error_kind is ErrorKind.CORRELATION_DEGRADED
    assert len(analysis.lookup_failures) == 2
    assert len(analysis.component_results) == 2
    assert all(r.lookup_incomplete for r in analysis.component_results)
    assert service.get_usage('tenant-a').used == 0


def test_unexpected_error_fails_internal(osv):
    """Test a crash in the pipeline fails the run as Internal."""
    service = build_service(osv)
    service.scorer = MagicMock(spec=RiskScorer)
    service.scorer.score_results.side_effect = RuntimeError('scoring bug')

    analysis = submit(service).result(timeout=10)

    assert analysis.status is AnalysisStatus.FAILED
    assert analysis.error_kind is ErrorKind.INTERNAL
    assert analysis.error == 'scoring bug'
    service.shutdown()


def test_list_and_delete(service):
    """Test listing and deleting a tenant's analyses."""
    analysis = submit(service).result(timeout=10)

    summaries = service.list_analyses('tenant-a')
    assert [s.id for s in summaries] == [analysis.id]
    assert summaries[0].total_vulnerabilities == 1
    assert service.list_analyses('tenant-b') == []

    service.delete_analysis(analysis.id)
    assert service.list_analyses('tenant-a') == []


class RecordingBackend(MemoryBackend):
    """Remembers every status written for each analysis."""

    def __init__(self):
        super().__init__()
        self.history: dict[str, list[str]] = {}

    def put(self, analysis):
        self.history.setdefault(analysis.id, []).append(analysis.status.value)
        super().put(analysis)


def test_expired_run_passes_through_running(osv):
    """Test an expired run is stored as PENDING, RUNNING, then FAILED."""
    backend = RecordingBackend()
    service = build_service(osv, store=AnalysisStore(backend))

    handle = submit(service, timeout=0.0)
    analysis = handle.result(timeout=10)
    service.shutdown()

    assert analysis.error_kind is ErrorKind.CANCELLED
    assert backend.history[handle.analysis_id] == ['PENDING', 'RUNNING', 'FAILED']
    assert osv.calls == []


def test_identical_submission_attaches_even_when_quota_is_spent(osv):
    """Test attaching to an in-flight run is not refused for quota."""
    tiers = StaticTierService(
        {'tenant-a': 'one'},
        catalog={'one': TierLimits(tier='one', max_analyses_per_month=1, max_components_per_analysis=100)},
    )
    service = build_service(osv, tiers=tiers)
    osv.gate = threading.Event()

    first = submit(service)
    service.guard.record_usage('tenant-a')
    second = submit(service)
    osv.gate.set()

    assert not second.created
    assert second.analysis_id == first.analysis_id
    assert second.result(timeout=10).status is AnalysisStatus.COMPLETE
    with pytest.raises(QuotaExceeded):
        submit(service, {**SBOM, 'components': SBOM['components'][:1]})
    service.shutdown()
