import json

import pytest

from sbomguard.core.errors import MalformedDocument
from sbomguard.core.errors import UnsupportedFormat
from sbomguard.models.component import UNKNOWN_VERSION
from sbomguard.services.parser_service import parse_purl
from sbomguard.services.parser_service import SbomFormat
from sbomguard.services.parser_service import SbomParser


def cyclonedx(components):
    return json.dumps({
        'bomFormat': 'CycloneDX',
        'specVersion': '1.5',
        'components': components,
    })


@pytest.fixture
def parser():
    return SbomParser()


def test_parse_cyclonedx(parser):
    """Test parsing a CycloneDX document."""
    raw = cyclonedx([
        {'name': 'lodash', 'version': '4.17.20', 'purl': 'pkg:npm/lodash@4.17.20'},
        {'name': 'left-pad', 'version': '1.3.0', 'purl': 'pkg:npm/left-pad@1.3.0'},
    ])
    parsed = parser.parse(raw.encode())

    assert parsed.format is SbomFormat.CYCLONEDX
    assert parsed.spec_version == '1.5'
    assert [c.name for c in parsed.components] == ['lodash', 'left-pad']
    assert parsed.components[0].ecosystem == 'npm'
    assert parsed.components[0].version == '4.17.20'
    assert parsed.components[0].package_id == 'pkg:npm/lodash@4.17.20'
    assert parsed.skipped_count == 0


def test_parse_cyclonedx_nested_components_are_flattened(parser):
    """Test nested CycloneDX components are flattened."""
    raw = cyclonedx([
        {
            'name': 'app', 'version': '1.0', 'purl': 'pkg:pypi/app@1.0',
            'components': [
                {'name': 'requests', 'version': '2.31.0', 'purl': 'pkg:pypi/requests@2.31.0'},
            ],
        },
    ])
    parsed = parser.parse(raw)
    assert [c.name for c in parsed.components] == ['app', 'requests']
    assert all(c.ecosystem == 'PyPI' for c in parsed.components)


def test_parse_cyclonedx_maven_group(parser):
    """Test the Maven group is folded into the name."""
    raw = cyclonedx([{
        'group': 'org.apache.logging.log4j',
        'name': 'log4j-core',
        'version': '2.14.1',
        'purl': 'pkg:maven/org.apache.logging.log4j/log4j-core@2.14.1',
    }])
    component = parser.parse(raw).components[0]
    assert component.name == 'org.apache.logging.log4j:log4j-core'
    assert component.ecosystem == 'Maven'


def test_parse_skips_entries_without_name(parser):
    """Test nameless entries are skipped and counted."""
    raw = cyclonedx([
        {'name': 'lodash', 'version': '4.17.20'},
        {'version': '1.0.0'},
        {'name': '   '},
        'not-an-object',
    ])
    parsed = parser.parse(raw)
    assert len(parsed.components) == 1
    assert parsed.skipped_count == 3


def test_parse_missing_version_is_unknown(parser):
    """Test a missing version becomes unknown."""
    parsed = parser.parse(cyclonedx([{'name': 'mystery'}]))
    assert parsed.components[0].version == UNKNOWN_VERSION
    assert parsed.components[0].ecosystem == ''


def test_parse_version_falls_back_to_purl(parser):
    """Test the version is taken from the purl when absent."""
    parsed = parser.parse(cyclonedx([{'name': 'lodash', 'purl': 'pkg:npm/lodash@4.17.21'}]))
    assert parsed.components[0].version == '4.17.21'


def test_parse_spdx(parser):
    """Test parsing an SPDX document."""
    raw = json.dumps({
        'spdxVersion': 'SPDX-2.3',
        'SPDXID': 'SPDXRef-DOCUMENT',
        'packages': [
            {
                'name': 'django',
                'versionInfo': '3.2.0',
                'externalRefs': [{
                    'referenceCategory': 'PACKAGE-MANAGER',
                    'referenceType': 'purl',
                    'referenceLocator': 'pkg:pypi/django@3.2.0',
                }],
            },
            {'name': 'vendored', 'versionInfo': 'NOASSERTION'},
        ],
    })
    parsed = parser.parse(raw)
    assert parsed.format is SbomFormat.SPDX
    assert parsed.spec_version == 'SPDX-2.3'
    django, vendored = parsed.components
    assert django.ecosystem == 'PyPI'
    assert django.version == '3.2.0'
    assert vendored.version == UNKNOWN_VERSION


def test_parse_syft(parser):
    """Test parsing a Syft document."""
    raw = json.dumps({
        'descriptor': {'name': 'syft', 'version': '1.0.0'},
        'schema': {'version': '16.0.0'},
        'artifacts': [
            {'name': 'github.com/gin-gonic/gin', 'version': 'v1.9.0', 'purl': 'pkg:golang/github.com/gin-gonic/gin@v1.9.0'},
        ],
    })
    parsed = parser.parse(raw)
    assert parsed.format is SbomFormat.SYFT
    assert parsed.spec_version == '16.0.0'
    assert parsed.components[0].ecosystem == 'Go'
    assert parsed.components[0].name == 'github.com/gin-gonic/gin'


def test_content_hash_ignores_declared_order(parser):
    """Test the content hash does not depend on component order."""
    a = {'name': 'lodash', 'version': '4.17.20', 'purl': 'pkg:npm/lodash@4.17.20'}
    b = {'name': 'left-pad', 'version': '1.3.0', 'purl': 'pkg:npm/left-pad@1.3.0'}
    first = parser.parse(cyclonedx([a, b]))
    second = parser.parse(json.dumps({'components': [b, a], 'specVersion': '1.4', 'bomFormat': 'CycloneDX'}))
    assert first.content_hash == second.content_hash

    changed = parser.parse(cyclonedx([a, {**b, 'version': '1.3.1'}]))
    assert changed.content_hash != first.content_hash


def test_distinct_count_collapses_duplicates(parser):
    """Test duplicate components count once."""
    entry = {'name': 'lodash', 'version': '4.17.20', 'purl': 'pkg:npm/lodash@4.17.20'}
    parsed = parser.parse(cyclonedx([entry, entry, {'name': 'other', 'version': '1'}]))
    assert len(parsed.components) == 3
    assert parsed.distinct_count == 2


@pytest.mark.parametrize(
    'raw', [
        b'\xff\xfe\x00garbage',
        b'',
        '   ',
        '{"bomFormat": "CycloneDX", ',
        '[1, 2, 3]',
        '{"bomFormat": "CycloneDX"}',
        '{"spdxVersion": "SPDX-2.3", "packages": "nope"}',
    ],
)
def test_parse_malformed(parser, raw):
    """Test malformed input raises MalformedDocument."""
    with pytest.raises(MalformedDocument):
        parser.parse(raw)


@pytest.mark.parametrize(
    'raw', [
        '{"bomFormat": "SomethingElse", "components": []}',
        '{"hello": "world"}',
    ],
)
def test_parse_unsupported(parser, raw):
    """Test unknown dialects raise UnsupportedFormat."""
    with pytest.raises(UnsupportedFormat):
        parser.parse(raw)


def test_parse_purl():
    """Test purl parsing."""
    assert parse_purl('pkg:npm/%40angular/core@16.0.0') == ('npm', '@angular/core', '16.0.0')
    assert parse_purl('pkg:maven/org.apache/commons@1.0?type=jar') == ('maven', 'org.apache:commons', '1.0')
    assert parse_purl('pkg:pypi/requests') == ('pypi', 'requests', '')
    assert parse_purl('not a purl') is None
