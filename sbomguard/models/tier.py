from pydantic import BaseModel
from pydantic import ConfigDict

UNLIMITED = -1


class TierLimits(BaseModel):
    """Usage limits of one subscription tier. -1 means unlimited."""
    tier: str
    max_analyses_per_month: int
    max_components_per_analysis: int

    model_config = ConfigDict(frozen=True)

    def allows_components(self, requested: int) -> bool:
        return (
            self.max_components_per_analysis == UNLIMITED
            or requested <= self.max_components_per_analysis
        )

    def allows_analyses(self, used: int) -> bool:
        return (
            self.max_analyses_per_month == UNLIMITED
            or used < self.max_analyses_per_month
        )


TIER_CATALOG: dict[str, TierLimits] = {
    'free': TierLimits(
        tier='free', max_analyses_per_month=3,
        max_components_per_analysis=100,
    ),
    'starter': TierLimits(
        tier='starter', max_analyses_per_month=10,
        max_components_per_analysis=500,
    ),
    'professional': TierLimits(
        tier='professional', max_analyses_per_month=50,
        max_components_per_analysis=2500,
    ),
    'enterprise': TierLimits(
        tier='enterprise', max_analyses_per_month=UNLIMITED,
        max_components_per_analysis=10000,
    ),
    'federal': TierLimits(
        tier='federal', max_analyses_per_month=UNLIMITED,
        max_components_per_analysis=UNLIMITED,
    ),
}


class UsageSnapshot(BaseModel):
    tenant_id: str
    tier: str
    period: str
    used: int
    limit: int

    @property
    def unlimited(self) -> bool:
        return self.limit == UNLIMITED

    @property
    def remaining(self) -> int | None:
        if self.unlimited:
            return None
        return max(0, self.limit - self.used)

    @property
    def can_use(self) -> bool:
        return self.unlimited or self.used < self.limit

    @property
    def percentage_used(self) -> float:
        if self.unlimited or self.limit == 0:
            return 0.0 if self.unlimited else 100.0
        return min(100.0, self.used / self.limit * 100)
