"""Plan catalog and per-business usage quota."""

from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Mapping, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from botlocal.logging_config import get_logger
from botlocal.models import Business, PlanTier

logger = get_logger("plan_service")


@dataclass(frozen=True)
class Plan:
    tier: PlanTier
    display_name: str
    monthly_message_limit: Optional[int]  # None = unbounded
    price_cents: int


@dataclass(frozen=True)
class PlanDecision:
    allowed: bool
    limit: Optional[int]
    used: int


class PlanCatalog:
    """Immutable tier -> plan mapping. Every PlanTier must be present exactly once."""

    def __init__(self, plans: Mapping[PlanTier, Plan]):
        unknown = [key for key in plans if not isinstance(key, PlanTier)]
        if unknown:
            raise ValueError(f"Plan catalog has unknown tiers: {unknown}")
        missing = [tier.value for tier in PlanTier if tier not in plans]
        if missing:
            raise ValueError(f"Plan catalog is missing tiers: {missing}")
        for tier, plan in plans.items():
            if plan.tier is not tier:
                raise ValueError(f"Plan catalog entry {tier.value} describes {plan.tier.value}")
            if plan.monthly_message_limit is not None and plan.monthly_message_limit < 0:
                raise ValueError(f"Negative quota for {tier.value}")
        self._plans = MappingProxyType(dict(plans))

    def get(self, tier: PlanTier) -> Plan:
        return self._plans[tier]

    def limit_for(self, tier: PlanTier) -> Optional[int]:
        return self._plans[tier].monthly_message_limit

    @property
    def lowest(self) -> PlanTier:
        return PlanTier.lowest()

    def __iter__(self):
        return iter(self._plans.values())

    def __len__(self) -> int:
        return len(self._plans)


DEFAULT_PLANS = PlanCatalog(
    {
        PlanTier.STARTER: Plan(PlanTier.STARTER, "Starter", 100, 0),
        PlanTier.PRO: Plan(PlanTier.PRO, "Pro", 5000, 2999),
        PlanTier.ENTERPRISE: Plan(PlanTier.ENTERPRISE, "Enterprise", None, 9999),
    }
)


class PlanLimiter:
    def __init__(self, catalog: PlanCatalog = DEFAULT_PLANS):
        self.catalog = catalog

    def check(self, business: Business) -> PlanDecision:
        """Decide whether one more AI reply fits in the business's monthly quota."""
        limit = self.catalog.limit_for(business.plan)
        used = business.message_count or 0
        allowed = limit is None or used < limit
        return PlanDecision(allowed=allowed, limit=limit, used=used)

    def consume(self, db: Session, business: Business, decision: PlanDecision) -> bool:
        """Atomically take one unit of quota.

        Returns False when a concurrent turn consumed the last unit first. Runs in the
        caller's transaction; the caller commits.
        """
        stmt = (
            update(Business)
            .where(Business.id == business.id)
            .values(
                message_count=Business.message_count + 1,
                last_message_at=datetime.now(timezone.utc),
            )
        )
        if decision.limit is not None:
            stmt = stmt.where(Business.message_count < decision.limit)

        result = db.execute(stmt.execution_options(synchronize_session=False))
        if result.rowcount == 0:
            logger.info(
                "Quota consumed by a concurrent turn",
                extra={"context": {"business_id": str(business.id), "limit": decision.limit}},
            )
            return False
        return True
