from collections.abc import Callable
from typing import Any

import requests
import structlog

from sbomguard.core.context import CancelContext
from sbomguard.core.errors import Cancelled
from sbomguard.core.errors import UpstreamUnavailable
from sbomguard.core.retry import RetryPolicy
from sbomguard.core.stats import LookupStats
from sbomguard.core.throttle import RateLimiter
from sbomguard.models.component import Component
from sbomguard.models.component import ComponentRef
from sbomguard.models.component import UNKNOWN_VERSION
from sbomguard.models.vulnerability import Severity
from sbomguard.models.vulnerability import VulnerabilityFinding

logger = structlog.get_logger('vulnerability_service')

CANONICAL = 'canonical'
DATABASE_SPECIFIC = 'database_specific'
SEVERITY_SOURCES = (CANONICAL, DATABASE_SPECIFIC)

# OSV caps pages at 1000 vulnerabilities; anything beyond this is a loop.
MAX_PAGES = 20


class VulnerabilityClient:
    """
    Stateless adapter over an OSV-style `/v1/query` endpoint.

    Everything it depends on (session, limiter, retry policy) is handed in
    at construction; the limiter is expected to be shared by all clients of
    the process.
    """

    def __init__(
        self,
        session: requests.Session,
        limiter: RateLimiter,
        base_url: str = 'https://api.osv.dev',
        retry_policy: RetryPolicy | None = None,
        timeout: float = 10.0,
        severity_precedence: tuple[str, ...] = SEVERITY_SOURCES,
        default_severity: Severity = Severity.MEDIUM,
        sleep: Callable[[float, CancelContext], None] | None = None,
        stats: LookupStats | None = None,
    ):
        unknown = [s for s in severity_precedence if s not in SEVERITY_SOURCES]
        if unknown or not severity_precedence:
            raise ValueError(f"Invalid severity precedence: {severity_precedence!r}")
        self.session = session
        self.limiter = limiter
        self.query_url = f"{base_url.rstrip('/')}/v1/query"
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self.severity_precedence = tuple(severity_precedence)
        self.default_severity = default_severity
        self._sleep = sleep or (lambda seconds, ctx: ctx.sleep(seconds))
        self.stats = stats or LookupStats()

    def lookup(self, component: Component, ctx: CancelContext) -> list[VulnerabilityFinding]:
        """Return every finding for one component. Empty means no known data."""
        ctx.check()
        body = self.build_query(component)
        ref = component.ref()

        findings: dict[str, VulnerabilityFinding] = {}
        for _ in range(MAX_PAGES):
            payload = self._query(body, component, ctx)
            if payload is None:
                break
            for vuln in payload.get('vulns') or []:
                finding = self.to_finding(vuln, ref)
                if finding is not None and finding.id not in findings:
                    findings[finding.id] = finding
            token = payload.get('next_page_token')
            if not token:
                break
            body = {**body, 'page_token': token}

        self.stats.inc_lookup(len(findings))
        return list(findings.values())

    def build_query(self, component: Component) -> dict[str, Any]:
        if component.ecosystem:
            body: dict[str, Any] = {
                'package': {
                    'name': component.name,
                    'ecosystem': component.ecosystem,
                },
            }
            if component.version and component.version != UNKNOWN_VERSION:
                body['version'] = component.version
            return body
        if component.package_id:
            # OSV rejects a version both inside the purl and beside it.
            return {'package': {'purl': component.package_id}}
        body = {'package': {'name': component.name}}
        if component.version and component.version != UNKNOWN_VERSION:
            body['version'] = component.version
        return body

    def _query(self, body: dict, component: Component, ctx: CancelContext) -> dict | None:
        """One logical request with retries. None means 'no data' (4xx)."""
        attempt = 0
        last_error = ''
        while True:
            attempt += 1
            self.limiter.acquire(ctx)
            ctx.check()
            self.stats.inc_api_requests()
            try:
                response = self.session.post(
                    self.query_url,
                    json=body,
                    timeout=ctx.timeout_for(self.timeout),
                )
            except requests.RequestException as e:
                if not self.retry_policy.is_retryable_exception(e):
                    raise UpstreamUnavailable(f"Request failed: {e}")
                last_error = f"{type(e).__name__}: {e}"
            else:
                status = response.status_code
                if status < 400:
                    if getattr(response, 'from_cache', False):
                        self.stats.inc_cache_hits()
                    try:
                        return response.json() or {}
                    except ValueError as e:
                        raise UpstreamUnavailable(f"Invalid JSON from upstream: {e}")
                if not self.retry_policy.is_retryable_status(status):
                    logger.debug(
                        'No data for package',
                        component=component.display_name,
                        status=status,
                    )
                    return None
                last_error = f"HTTP {status}"

            if ctx.cancelled:
                raise Cancelled(ctx.reason or 'cancelled')
            if not self.retry_policy.should_retry(attempt):
                break
            delay = self.retry_policy.delay_for(attempt)
            self.stats.inc_retries()
            logger.warning(
                'Transient lookup failure, retrying',
                component=component.display_name,
                attempt=attempt,
                error=last_error,
                delay=f"{delay:.3f}s",
            )
            self._sleep(delay, ctx)

        self.stats.inc_failed()
        logger.error(
            'Lookup failed after retries',
            component=component.display_name,
            attempts=attempt,
            error=last_error,
        )
        raise UpstreamUnavailable(
            f"{component.display_name}: {last_error} after {attempt} attempts",
        )

    def to_finding(self, vuln: dict, ref: ComponentRef) -> VulnerabilityFinding | None:
        if not isinstance(vuln, dict) or not vuln.get('id'):
            return None
        cvss = self._extract_cvss(vuln)
        severity = self.resolve_severity(vuln, cvss)
        references = [
            r.get('url') for r in vuln.get('references') or []
            if isinstance(r, dict) and r.get('url')
        ]
        return VulnerabilityFinding(
            id=str(vuln['id']),
            severity=severity,
            cvss_score=cvss,
            summary=str(vuln.get('summary') or vuln.get('details') or '')[:500],
            published_at=vuln.get('published'),
            affected_component=ref,
            aliases=[str(a) for a in vuln.get('aliases') or []],
            references=references,
        )

    def resolve_severity(self, vuln: dict, cvss: float | None) -> Severity:
        """Pick the severity level following the configured precedence."""
        for source in self.severity_precedence:
            if source == CANONICAL:
                severity = self._canonical_severity(vuln.get('severity'))
            else:
                specific = vuln.get('database_specific') or {}
                severity = Severity.parse(specific.get('severity')) if isinstance(
                    specific, dict,
                ) else None
            if severity is not None:
                return severity
        if cvss is not None:
            return Severity.from_cvss(cvss)
        return self.default_severity

    @staticmethod
    def _canonical_severity(value: Any) -> Severity | None:
        if isinstance(value, str):
            return Severity.parse(value)
        if isinstance(value, list):
            for entry in value:
                if isinstance(entry, dict):
                    severity = Severity.parse(entry.get('severity') or entry.get('level'))
                    if severity is not None:
                        return severity
        return None

    @staticmethod
    def _extract_cvss(vuln: dict) -> float | None:
        candidates: list[Any] = []
        severity = vuln.get('severity')
        if isinstance(severity, list):
            candidates.extend(
                entry.get('score') for entry in severity if isinstance(entry, dict)
            )
        specific = vuln.get('database_specific')
        if isinstance(specific, dict):
            candidates.append(specific.get('cvss_score'))
            candidates.append(specific.get('cvss'))

        best = None
        for value in candidates:
            try:
                score = float(value)
            except (TypeError, ValueError):
                # CVSS vector strings carry no base score on their own.
                continue
            if 0.0 <= score <= 10.0 and (best is None or score > best):
                best = score
        return best
