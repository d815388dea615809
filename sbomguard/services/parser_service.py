import hashlib
import json
import re
from dataclasses import dataclass
from dataclasses import field
from enum import Enum
from typing import Any
from urllib.parse import unquote

import structlog

from sbomguard.core.errors import MalformedDocument
from sbomguard.core.errors import UnsupportedFormat
from sbomguard.models.component import Component
from sbomguard.models.component import UNKNOWN_VERSION

logger = structlog.get_logger('parser_service')

# purl type -> OSV ecosystem name
PURL_ECOSYSTEMS = {
    'npm': 'npm',
    'pypi': 'PyPI',
    'maven': 'Maven',
    'golang': 'Go',
    'cargo': 'crates.io',
    'gem': 'RubyGems',
    'nuget': 'NuGet',
    'composer': 'Packagist',
    'pub': 'Pub',
    'hex': 'Hex',
    'hackage': 'Hackage',
    'cran': 'CRAN',
    'swift': 'SwiftURL',
    'conan': 'ConanCenter',
    'deb': 'Debian',
    'apk': 'Alpine',
    'github': 'GitHub Actions',
}

PURL_PATTERN = re.compile(
    r'^pkg:(?P<type>[A-Za-z0-9.+-]+)/(?P<path>[^@?#]+)'
    r'(?:@(?P<version>[^?#]+))?',
)


class SbomFormat(str, Enum):
    CYCLONEDX = 'cyclonedx'
    SPDX = 'spdx'
    SYFT = 'syft'

    def __str__(self) -> str:
        return self.value


@dataclass
class ParsedSbom:
    format: SbomFormat
    spec_version: str = ''
    components: list[Component] = field(default_factory=list)
    skipped_count: int = 0

    @property
    def distinct_count(self) -> int:
        return len({c.identity for c in self.components})

    @property
    def content_hash(self) -> str:
        """
        SHA-256 of the normalized component list. Declared order does not
        matter, so reordering the input JSON yields the same hash.
        """
        rows = sorted(
            (c.ecosystem, c.name, c.version, c.package_id)
            for c in self.components
        )
        hasher = hashlib.sha256()
        for row in rows:
            hasher.update(json.dumps(row, ensure_ascii=False).encode())
            hasher.update(b'\n')
        return hasher.hexdigest()


def parse_purl(purl: str) -> tuple[str, str, str] | None:
    """Split a package URL into (type, name, version). Namespace is kept in name."""
    match = PURL_PATTERN.match(purl.strip()) if purl else None
    if not match:
        return None
    purl_type = match.group('type').lower()
    path = unquote(match.group('path')).strip('/')
    version = unquote(match.group('version') or '')
    if '/' in path:
        namespace, _, name = path.rpartition('/')
        if purl_type == 'maven':
            path = f"{namespace}:{name}"
        elif purl_type in ('npm', 'golang', 'composer', 'github', 'swift'):
            path = f"{namespace}/{name}"
        else:
            path = name
    return purl_type, path, version


def ecosystem_for(purl_type: str) -> str:
    return PURL_ECOSYSTEMS.get(purl_type, purl_type)


class SbomParser:
    """Decodes CycloneDX, SPDX and Syft JSON documents into components."""

    def parse(self, raw_document: bytes | str) -> ParsedSbom:
        data = self._load_json(raw_document)
        sbom_format = self.detect_format(data)

        if sbom_format is SbomFormat.CYCLONEDX:
            entries = self._require_list(data, 'components', sbom_format)
            entries = list(self._flatten_cyclonedx(entries))
            spec_version = str(data.get('specVersion', ''))
            extract = self._from_cyclonedx
        elif sbom_format is SbomFormat.SPDX:
            entries = self._require_list(data, 'packages', sbom_format)
            spec_version = str(data.get('spdxVersion', ''))
            extract = self._from_spdx
        else:
            entries = self._require_list(data, 'artifacts', sbom_format)
            spec_version = str((data.get('schema') or {}).get('version', ''))
            extract = self._from_syft

        parsed = ParsedSbom(format=sbom_format, spec_version=spec_version)
        for entry in entries:
            component = extract(entry) if isinstance(entry, dict) else None
            if component is None:
                parsed.skipped_count += 1
                continue
            parsed.components.append(component)

        logger.info(
            'Parsed SBOM',
            format=str(sbom_format),
            spec_version=spec_version,
            components=len(parsed.components),
            distinct=parsed.distinct_count,
            skipped=parsed.skipped_count,
        )
        return parsed

    def detect_format(self, data: dict[str, Any]) -> SbomFormat:
        bom_format = data.get('bomFormat')
        if bom_format is not None:
            if str(bom_format).lower() == 'cyclonedx':
                return SbomFormat.CYCLONEDX
            raise UnsupportedFormat(f"Unsupported bomFormat: {bom_format!r}")
        if 'spdxVersion' in data or 'SPDXID' in data:
            return SbomFormat.SPDX
        descriptor = data.get('descriptor')
        if isinstance(descriptor, dict) and descriptor.get('name') == 'syft':
            return SbomFormat.SYFT

        # Dialect markers absent: fall back to the shape of the document.
        if isinstance(data.get('components'), list):
            return SbomFormat.CYCLONEDX
        if isinstance(data.get('packages'), list):
            return SbomFormat.SPDX
        if isinstance(data.get('artifacts'), list):
            return SbomFormat.SYFT
        raise UnsupportedFormat('Could not identify SBOM dialect')

    def _load_json(self, raw_document: bytes | str) -> dict[str, Any]:
        if isinstance(raw_document, bytes):
            try:
                text = raw_document.decode('utf-8-sig')
            except UnicodeDecodeError as e:
                raise MalformedDocument(f"Document is not UTF-8 text: {e}")
        else:
            text = raw_document
        if not text.strip():
            raise MalformedDocument('Document is empty')
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise MalformedDocument(f"Invalid JSON: {e}")
        if not isinstance(data, dict):
            raise MalformedDocument('Top-level JSON value must be an object')
        return data

    @staticmethod
    def _require_list(data: dict, key: str, sbom_format: SbomFormat) -> list:
        value = data.get(key)
        if not isinstance(value, list):
            raise MalformedDocument(
                f"{sbom_format} document has no '{key}' list",
            )
        return value

    def _flatten_cyclonedx(self, entries: list):
        """Depth-first walk over nested CycloneDX components."""
        for entry in entries:
            yield entry
            if isinstance(entry, dict) and isinstance(entry.get('components'), list):
                yield from self._flatten_cyclonedx(entry['components'])

    def _from_cyclonedx(self, entry: dict) -> Component | None:
        name = self._clean(entry.get('name'))
        if not name:
            return None
        group = self._clean(entry.get('group'))
        return self._build(
            name=name,
            group=group,
            version=self._clean(entry.get('version')),
            purl=self._clean(entry.get('purl')),
        )

    def _from_spdx(self, entry: dict) -> Component | None:
        name = self._clean(entry.get('name'))
        if not name:
            return None
        purl = ''
        for ref in entry.get('externalRefs') or []:
            if not isinstance(ref, dict):
                continue
            if str(ref.get('referenceType', '')).lower() == 'purl':
                purl = self._clean(ref.get('referenceLocator'))
                break
        version = self._clean(entry.get('versionInfo'))
        if version == 'NOASSERTION':
            version = ''
        return self._build(name=name, group='', version=version, purl=purl)

    def _from_syft(self, entry: dict) -> Component | None:
        name = self._clean(entry.get('name'))
        if not name:
            return None
        return self._build(
            name=name,
            group='',
            version=self._clean(entry.get('version')),
            purl=self._clean(entry.get('purl')),
        )

    def _build(self, name: str, group: str, version: str, purl: str) -> Component:
        ecosystem = ''
        parsed = parse_purl(purl) if purl else None
        if parsed:
            purl_type, purl_name, purl_version = parsed
            ecosystem = ecosystem_for(purl_type)
            if not group and purl_name != name and purl_name.endswith(name):
                # The purl carries the namespace the document omitted.
                name = purl_name
            version = version or purl_version
        if group:
            if ecosystem == 'Maven':
                name = f"{group}:{name}"
            elif ecosystem == 'npm' and group.startswith('@'):
                name = f"{group}/{name}"
            elif ecosystem in ('Go', 'Packagist'):
                name = f"{group}/{name}"
        return Component(
            name=name,
            version=version or UNKNOWN_VERSION,
            package_id=purl,
            ecosystem=ecosystem,
        )

    @staticmethod
    def _clean(value: Any) -> str:
        if value is None:
            return ''
        return str(value).strip()
