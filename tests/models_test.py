import pytest
from pydantic import ValidationError

from sbomguard.models.component import Component
from sbomguard.models.vulnerability import Severity
from sbomguard.models.vulnerability import VulnerabilityFinding


@pytest.mark.parametrize(
    'label,expected', [
        ('critical', Severity.CRITICAL),
        (' High ', Severity.HIGH),
        ('MODERATE', Severity.MEDIUM),
        ('minor', Severity.LOW),
        ('unknown', None),
        (None, None),
        (7.5, None),
    ],
)
def test_severity_parse(label, expected):
    """Test severity labels parse case-insensitively."""
    assert Severity.parse(label) is expected


@pytest.mark.parametrize(
    'score,expected', [
        (10.0, Severity.CRITICAL),
        (9.0, Severity.CRITICAL),
        (8.9, Severity.HIGH),
        (4.0, Severity.MEDIUM),
        (3.9, Severity.LOW),
        (0.0, Severity.LOW),
    ],
)
def test_severity_from_cvss(score, expected):
    """Test CVSS scores map to severity bands."""
    assert Severity.from_cvss(score) is expected


def test_component_is_immutable():
    """Test components cannot be modified."""
    component = Component(name='lodash', version='4.17.20', ecosystem='npm')
    with pytest.raises(ValidationError):
        component.version = '4.17.21'
    assert component.identity == ('npm', 'lodash', '4.17.20')
    assert component.display_name == 'lodash@4.17.20'


def test_component_requires_name():
    """Test a component without a name is invalid."""
    with pytest.raises(ValidationError):
        Component(name='')


def test_finding_rejects_out_of_range_cvss():
    """Test CVSS values outside 0-10 are dropped."""
    ref = Component(name='lodash').ref()
    with pytest.raises(ValidationError):
        VulnerabilityFinding(id='OSV-1', severity=Severity.LOW, cvss_score=11.0, affected_component=ref)


def test_finding_ignores_unparseable_dates():
    """Test bad advisory dates become None."""
    ref = Component(name='lodash').ref()
    finding = VulnerabilityFinding(
        id='OSV-1', severity=Severity.LOW, published_at='yesterday', affected_component=ref,
    )
    assert finding.published_at is None
