"""
Plan Limit Gate.

Monthly appointment quotas per plan tier. The decision functions are pure;
count_month_appointments() is the only storage access.

Limits:
- FREE: 60 appointments per calendar month
- STANDARD: 180 appointments per calendar month
- PREMIUM: unlimited
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Appointment, AppointmentStatus, PlanTier

logger = logging.getLogger(__name__)


class _Unlimited:
    """Sentinel for a quota with no upper bound."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNLIMITED"

    def __bool__(self) -> bool:
        return True


UNLIMITED = _Unlimited()

MONTHLY_LIMITS: dict[PlanTier, int | _Unlimited] = {
    PlanTier.FREE: 60,
    PlanTier.STANDARD: 180,
    PlanTier.PREMIUM: UNLIMITED,
}

# Warn once when exactly this many bookings remain
WARNING_THRESHOLD = 5


@dataclass(frozen=True)
class QuotaDecision:
    """Result of the quota gate for one booking attempt."""

    tier: PlanTier
    current_count: int
    limit: int | _Unlimited
    allowed: bool
    remaining: int | _Unlimited

    def to_dict(self) -> dict:
        return {
            "plan_tier": self.tier.value,
            "current_count": self.current_count,
            "limit": None if self.limit is UNLIMITED else self.limit,
            "remaining": None if self.remaining is UNLIMITED else self.remaining,
            "allowed": self.allowed,
        }


def monthly_limit(tier: PlanTier) -> int | _Unlimited:
    return MONTHLY_LIMITS[PlanTier(tier)]


def can_create(tier: PlanTier, count: int) -> bool:
    """True while the month's count is below the plan limit."""
    limit = monthly_limit(tier)
    if limit is UNLIMITED:
        return True
    return count < limit


def remaining(tier: PlanTier, count: int) -> int | _Unlimited:
    limit = monthly_limit(tier)
    if limit is UNLIMITED:
        return UNLIMITED
    return max(0, limit - count)


def should_warn(tier: PlanTier, count: int) -> bool:
    """
    Whether the tenant should be warned that the limit is approaching.

    Evaluate with the count after the insert; fires only at the crossing.
    """
    left = remaining(tier, count)
    if left is UNLIMITED:
        return False
    return left == WARNING_THRESHOLD


def usage_percentage(tier: PlanTier, count: int) -> int:
    limit = monthly_limit(tier)
    if limit is UNLIMITED or limit == 0:
        return 0
    return min(round(count / limit * 100), 100)


def check_quota(tier: PlanTier, count: int) -> QuotaDecision:
    return QuotaDecision(
        tier=PlanTier(tier),
        current_count=count,
        limit=monthly_limit(tier),
        allowed=can_create(tier, count),
        remaining=remaining(tier, count),
    )


def month_bounds(now: datetime) -> tuple[datetime, datetime]:
    """[first instant of the month, first instant of next month) in now's timezone."""
    start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    # Day 28 + 4 days always lands in the next month
    next_month = (start.replace(day=28) + timedelta(days=4)).replace(day=1)
    return start, next_month


async def count_month_appointments(
    session: AsyncSession, tenant_id: UUID, now: datetime
) -> int:
    """
    Count the tenant's occupying appointments occurring in now's calendar month.

    Args:
        session: Active session (the booking transaction's own session)
        tenant_id: Tenant UUID
        now: Timezone-aware current time; its timezone defines month boundaries
    """
    start, end = month_bounds(now)
    result = await session.execute(
        select(func.count(Appointment.id)).where(
            Appointment.tenant_id == tenant_id,
            Appointment.status.in_(AppointmentStatus.occupying()),
            Appointment.start_time >= start,
            Appointment.start_time < end,
        )
    )
    count = result.scalar_one()
    logger.debug(
        f"Tenant has {count} appointments between {start.date()} and {end.date()}",
        extra={"tenant_id": str(tenant_id)},
    )
    return count
