from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator

from sbomguard.models.component import ComponentRef


class Severity(str, Enum):
    LOW = 'LOW'
    MEDIUM = 'MEDIUM'
    HIGH = 'HIGH'
    CRITICAL = 'CRITICAL'

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: Any) -> 'Severity | None':
        """Map the free-form labels used by advisory databases to a Severity."""
        if not isinstance(value, str):
            return None
        label = value.strip().upper()
        label = _SEVERITY_ALIASES.get(label, label)
        try:
            return cls(label)
        except ValueError:
            return None

    @classmethod
    def from_cvss(cls, score: float) -> 'Severity':
        if score >= 9.0:
            return cls.CRITICAL
        if score >= 7.0:
            return cls.HIGH
        if score >= 4.0:
            return cls.MEDIUM
        return cls.LOW

    def __str__(self) -> str:
        return self.value


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}

_SEVERITY_ALIASES = {
    'MODERATE': 'MEDIUM',
    'IMPORTANT': 'HIGH',
    'MINOR': 'LOW',
}


class VulnerabilityFinding(BaseModel):
    """One advisory matched against one component."""
    id: str
    severity: Severity
    cvss_score: float | None = Field(default=None, ge=0.0, le=10.0)
    summary: str = ''
    published_at: datetime | None = None
    affected_component: ComponentRef
    aliases: list[str] = Field(default_factory=list)
    references: list[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True, extra='ignore')

    @field_validator('published_at', mode='before')
    @classmethod
    def parse_datetime(cls, v: Any) -> datetime | None:
        if not v:
            return None
        if isinstance(v, datetime):
            return v
        try:
            return datetime.fromisoformat(str(v).replace('Z', '+00:00'))
        except (ValueError, TypeError):
            return None

    @property
    def sort_key(self) -> tuple[int, float, str]:
        """Severity desc, then CVSS desc, then id asc."""
        cvss = self.cvss_score if self.cvss_score is not None else -1.0
        return (-self.severity.rank, -cvss, self.id)
