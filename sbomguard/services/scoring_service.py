"""
Deterministic risk scoring.

A component score is a severity-weighted sum of its findings:

    CRITICAL 40, HIGH 25, MEDIUM 10, LOW 3 points per finding

Within one severity the first three findings count in full and every further
one at half weight, so a pile of low-severity advisories cannot dominate.
The sum is capped at 100.

When at least one finding carries a CVSS score the result is blended:

    0.7 * severity_score + 0.3 * cvss_score

where cvss_score is the same diminishing sum with each finding worth
`cvss * 10` points (its severity weight when it has no CVSS), the largest
contributions of a severity counting in full, capped at 100.
For a single finding this is exactly 0.7 * weight + 0.3 * (cvss / 10) * 100.
Because both sums only grow when a finding is added, adding a finding never
lowers the score.

The analysis score is the maximum component score.
"""
from collections import defaultdict

from sbomguard.models.analysis import ComponentRiskResult
from sbomguard.models.analysis import RiskLevel
from sbomguard.models.vulnerability import Severity
from sbomguard.models.vulnerability import VulnerabilityFinding

SEVERITY_WEIGHTS = {
    Severity.CRITICAL: 40.0,
    Severity.HIGH: 25.0,
    Severity.MEDIUM: 10.0,
    Severity.LOW: 3.0,
}
FULL_WEIGHT_FINDINGS = 3
DIMINISHED_WEIGHT = 0.5
SEVERITY_SHARE = 0.7
CVSS_SHARE = 0.3
MAX_SCORE = 100.0


class RiskScorer:
    def __init__(
        self,
        weights: dict[Severity, float] | None = None,
        full_weight_findings: int = FULL_WEIGHT_FINDINGS,
        diminished_weight: float = DIMINISHED_WEIGHT,
    ):
        self.weights = dict(weights or SEVERITY_WEIGHTS)
        self.full_weight_findings = full_weight_findings
        self.diminished_weight = diminished_weight

    def score(self, findings: list[VulnerabilityFinding]) -> float:
        if not findings:
            return 0.0

        by_severity: dict[Severity, list[VulnerabilityFinding]] = defaultdict(list)
        for finding in findings:
            by_severity[finding.severity].append(finding)

        severity_total = 0.0
        cvss_total = 0.0
        for severity, group in by_severity.items():
            weight = self.weights[severity]
            points = sorted(
                (f.cvss_score * 10 if f.cvss_score is not None else weight for f in group),
                reverse=True,
            )
            for rank, value in enumerate(points):
                multiplier = 1.0 if rank < self.full_weight_findings else self.diminished_weight
                severity_total += weight * multiplier
                cvss_total += value * multiplier

        severity_score = min(MAX_SCORE, severity_total)
        if any(f.cvss_score is not None for f in findings):
            blended = SEVERITY_SHARE * severity_score + CVSS_SHARE * min(MAX_SCORE, cvss_total)
        else:
            blended = severity_score
        return round(max(0.0, min(MAX_SCORE, blended)), 2)

    @staticmethod
    def sort_findings(findings: list[VulnerabilityFinding]) -> list[VulnerabilityFinding]:
        return sorted(findings, key=lambda f: f.sort_key)

    def score_result(self, result: ComponentRiskResult) -> ComponentRiskResult:
        """Scored copy of a result with findings in reporting order."""
        return result.model_copy(update={
            'findings': self.sort_findings(result.findings),
            'risk_score': self.score(result.findings),
        })

    def score_results(self, results: list[ComponentRiskResult]) -> list[ComponentRiskResult]:
        return [self.score_result(r) for r in results]

    @staticmethod
    def overall(results: list[ComponentRiskResult]) -> float:
        """One critically vulnerable component drives the whole analysis."""
        return max((r.risk_score for r in results), default=0.0)

    @staticmethod
    def risk_level(score: float) -> RiskLevel:
        return RiskLevel.from_score(score)
