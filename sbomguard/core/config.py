"""Configuration management for SBOMGuard."""
import os
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path


def _env_tuple(name: str, default: str) -> tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(part.strip() for part in raw.split(',') if part.strip())


@dataclass
class PathConfig:
    """File path configuration."""
    base_data_dir: Path = field(
        default_factory=lambda: Path(os.getenv('SBOMGUARD_DATA_DIR', 'data')),
    )

    @property
    def analyses_path(self) -> Path:
        """JSONL ledger of persisted analyses."""
        return self.base_data_dir / 'analyses.jsonl'

    @property
    def usage_path(self) -> Path:
        """JSONL ledger of consumed quota."""
        return self.base_data_dir / 'usage.jsonl'

    @property
    def cache_dir(self) -> Path:
        return Path('.cache')

    @property
    def http_cache_path(self) -> Path:
        return self.cache_dir / 'osv' / 'db.sqlite3'


@dataclass
class OSVConfig:
    """Vulnerability database client configuration."""
    api_base_url: str = field(
        default_factory=lambda: os.getenv(
            'SBOMGUARD_OSV_URL', 'https://api.osv.dev',
        ),
    )
    api_key: str | None = field(
        default_factory=lambda: os.getenv('SBOMGUARD_OSV_API_KEY'),
    )
    rate_limit: float = field(
        default_factory=lambda: float(
            os.getenv('SBOMGUARD_OSV_RATE_LIMIT', '10'),
        ),
    )
    timeout: float = 10.0
    max_attempts: int = 3
    backoff_base: float = 0.2
    backoff_factor: float = 2.0
    backoff_jitter: float = 0.2
    # Where the severity level is read from, first match wins.
    severity_precedence: tuple[str, ...] = field(
        default_factory=lambda: _env_tuple(
            'SBOMGUARD_SEVERITY_PRECEDENCE', 'canonical,database_specific',
        ),
    )
    default_severity: str = 'MEDIUM'
    cache_enabled: bool = field(
        default_factory=lambda: os.getenv('SBOMGUARD_OSV_CACHE', '1') != '0',
    )
    cache_ttl: int = 60 * 60 * 24  # 1 day in seconds

    def __repr__(self) -> str:
        return (
            f"OSVConfig(api_base_url={self.api_base_url!r}, api_key='*****', "
            f"rate_limit={self.rate_limit!r}, timeout={self.timeout!r}, "
            f"max_attempts={self.max_attempts!r}, "
            f"severity_precedence={self.severity_precedence!r})"
        )


@dataclass
class CorrelationConfig:
    concurrency: int = field(
        default_factory=lambda: int(
            os.getenv('SBOMGUARD_CONCURRENCY', '8'),
        ),
    )
    max_failure_ratio: float = 0.5


@dataclass
class PipelineConfig:
    max_pipelines: int = 4
    default_timeout: float | None = 300.0


@dataclass
class UsageConfig:
    default_tier: str = field(
        default_factory=lambda: os.getenv('SBOMGUARD_DEFAULT_TIER', 'free'),
    )


@dataclass
class SBOMGuardConfig:
    paths: PathConfig = field(default_factory=PathConfig)
    osv: OSVConfig = field(default_factory=OSVConfig)
    correlation: CorrelationConfig = field(default_factory=CorrelationConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    usage: UsageConfig = field(default_factory=UsageConfig)

    @classmethod
    def load(cls) -> 'SBOMGuardConfig':
        return cls()


_config: SBOMGuardConfig | None = None


def get_config() -> SBOMGuardConfig:
    global _config
    if _config is None:
        _config = SBOMGuardConfig.load()
    return _config
