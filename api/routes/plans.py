"""Plan usage endpoint."""

from datetime import datetime
from typing import Annotated
from uuid import UUID
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_tenant_id, get_timezone
from database.connection import get_db_session
from database.models import Tenant
from scheduling.errors import NotFoundError
from scheduling.services.plan_limits import (
    check_quota,
    count_month_appointments,
    should_warn,
    usage_percentage,
)

router = APIRouter(prefix="/api/plans", tags=["plans"])


@router.get("/usage")
async def get_usage(
    tenant_id: Annotated[UUID, Depends(get_tenant_id)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
    timezone: Annotated[ZoneInfo, Depends(get_timezone)],
):
    """Appointments used this month against the plan limit (limit/remaining null when unlimited)."""
    tenant = await session.get(Tenant, tenant_id)
    if tenant is None:
        raise NotFoundError("Tenant not found", details={"tenant_id": str(tenant_id)})

    used = await count_month_appointments(session, tenant_id, datetime.now(timezone))
    quota = check_quota(tenant.plan_tier, used).to_dict()
    return {
        "plan_tier": quota["plan_tier"],
        "used": used,
        "limit": quota["limit"],
        "remaining": quota["remaining"],
        "usage_percentage": usage_percentage(tenant.plan_tier, used),
        "near_limit": should_warn(tenant.plan_tier, used),
    }
