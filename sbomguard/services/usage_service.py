import json
import os
import threading
from abc import ABC
from abc import abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from datetime import timezone
from pathlib import Path

import structlog

from sbomguard.core.errors import ErrorKind
from sbomguard.core.errors import QuotaCheckUnavailable
from sbomguard.core.errors import QuotaExceeded
from sbomguard.models.tier import TIER_CATALOG
from sbomguard.models.tier import TierLimits
from sbomguard.models.tier import UsageSnapshot

logger = structlog.get_logger('usage_service')


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def billing_period(moment: datetime) -> str:
    """Calendar month, e.g. '2026-10'."""
    return moment.strftime('%Y-%m')


class TierService(ABC):
    """External subscription lookup: tenant -> tier limits."""

    @abstractmethod
    def get_tier_limits(self, tenant_id: str) -> TierLimits:
        ...


class StaticTierService(TierService):
    """Tier assignments held in memory, resolved against TIER_CATALOG."""

    def __init__(
        self,
        assignments: dict[str, str] | None = None,
        default_tier: str = 'free',
        catalog: dict[str, TierLimits] | None = None,
    ):
        self.assignments = dict(assignments or {})
        self.default_tier = default_tier
        self.catalog = catalog or TIER_CATALOG

    def get_tier_limits(self, tenant_id: str) -> TierLimits:
        tier = self.assignments.get(tenant_id, self.default_tier)
        try:
            return self.catalog[tier]
        except KeyError:
            raise LookupError(f"Unknown tier {tier!r} for tenant {tenant_id!r}")


class UsageLedger:
    """Completed analyses per tenant and calendar month."""

    def __init__(self, filepath: str | Path | None = None):
        self.filepath = Path(filepath) if filepath else None
        self._counts: dict[tuple[str, str], int] = {}
        self._lock = threading.Lock()
        if self.filepath:
            os.makedirs(self.filepath.parent, exist_ok=True)
            self._load_existing()

    def _load_existing(self) -> None:
        if not self.filepath.exists():
            return
        with open(self.filepath, encoding='utf-8') as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    record = json.loads(line)
                    key = (record['tenant_id'], record['period'])
                    self._counts[key] = self._counts.get(key, 0) + int(record['quantity'])
                except (ValueError, KeyError, TypeError) as e:
                    logger.warning('Skipping unreadable usage record', error=str(e))

    def used(self, tenant_id: str, period: str) -> int:
        with self._lock:
            return self._counts.get((tenant_id, period), 0)

    def increment(self, tenant_id: str, period: str, quantity: int = 1) -> int:
        with self._lock:
            key = (tenant_id, period)
            self._counts[key] = self._counts.get(key, 0) + quantity
            if self.filepath:
                with open(self.filepath, 'a', encoding='utf-8') as f:
                    f.write(json.dumps({
                        'tenant_id': tenant_id, 'period': period, 'quantity': quantity,
                    }) + '\n')
            return self._counts[key]


@dataclass
class QuotaDecision:
    allowed: bool
    reason: str | None = None
    error_kind: ErrorKind | None = None
    limits: TierLimits | None = None

    def raise_if_denied(self) -> None:
        if self.allowed:
            return
        if self.error_kind is ErrorKind.QUOTA_CHECK_UNAVAILABLE:
            raise QuotaCheckUnavailable(self.reason or '')
        raise QuotaExceeded(self.reason or '')


class UsageGuard:
    """
    Admission control per tenant. Fails closed: when the tier lookup errors
    the request is denied rather than run unmetered.

    Only COMPLETE analyses are charged (`record_usage`), so a failed run and
    its retry never consume two slots.
    """

    def __init__(
        self,
        tiers: TierService,
        ledger: UsageLedger | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.tiers = tiers
        self.ledger = ledger or UsageLedger()
        self.clock = clock

    def check_quota(self, tenant_id: str, requested_components: int) -> QuotaDecision:
        try:
            limits = self.tiers.get_tier_limits(tenant_id)
        except Exception as e:
            logger.error('Tier lookup failed, denying', tenant_id=tenant_id, error=str(e))
            return QuotaDecision(
                allowed=False,
                reason=f"Tier lookup unavailable: {e}",
                error_kind=ErrorKind.QUOTA_CHECK_UNAVAILABLE,
            )

        if not limits.allows_components(requested_components):
            return self._deny(
                tenant_id, limits,
                f"SBOM declares {requested_components} components; "
                f"tier '{limits.tier}' allows {limits.max_components_per_analysis} per analysis",
            )

        used = self.ledger.used(tenant_id, billing_period(self.clock()))
        if not limits.allows_analyses(used):
            return self._deny(
                tenant_id, limits,
                f"Monthly analysis limit reached ({used}/{limits.max_analyses_per_month}) "
                f"for tier '{limits.tier}'",
            )
        return QuotaDecision(allowed=True, limits=limits)

    def _deny(self, tenant_id: str, limits: TierLimits, reason: str) -> QuotaDecision:
        logger.info('Quota denied', tenant_id=tenant_id, tier=limits.tier, reason=reason)
        return QuotaDecision(
            allowed=False, reason=reason,
            error_kind=ErrorKind.QUOTA_EXCEEDED, limits=limits,
        )

    def record_usage(self, tenant_id: str, quantity: int = 1) -> int:
        period = billing_period(self.clock())
        used = self.ledger.increment(tenant_id, period, quantity)
        logger.debug('Usage recorded', tenant_id=tenant_id, period=period, used=used)
        return used

    def get_usage(self, tenant_id: str) -> UsageSnapshot:
        try:
            limits = self.tiers.get_tier_limits(tenant_id)
        except Exception as e:
            raise QuotaCheckUnavailable(f"Tier lookup unavailable: {e}")
        period = billing_period(self.clock())
        return UsageSnapshot(
            tenant_id=tenant_id,
            tier=limits.tier,
            period=period,
            used=self.ledger.used(tenant_id, period),
            limit=limits.max_analyses_per_month,
        )


__all__ = [
    'QuotaDecision',
    'StaticTierService',
    'TierService',
    'UsageGuard',
    'UsageLedger',
]
