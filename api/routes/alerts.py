"""In-app alert endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_tenant_id
from database.connection import get_db_session
from scheduling.errors import NotFoundError
from scheduling.services.alert_service import (
    alert_to_dict,
    list_alerts,
    mark_all_read,
    mark_read,
)

router = APIRouter(prefix="/api/alerts", tags=["alerts"])


@router.get("")
async def get_alerts(
    tenant_id: Annotated[UUID, Depends(get_tenant_id)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
    unread_only: bool = False,
):
    alerts = await list_alerts(session, tenant_id, unread_only=unread_only)
    return {"alerts": [alert_to_dict(alert) for alert in alerts]}


@router.post("/read-all")
async def read_all(
    tenant_id: Annotated[UUID, Depends(get_tenant_id)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
):
    return {"updated": await mark_all_read(session, tenant_id)}


@router.post("/{alert_id}/read")
async def read_one(
    alert_id: UUID,
    tenant_id: Annotated[UUID, Depends(get_tenant_id)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
):
    if not await mark_read(session, tenant_id, alert_id):
        raise NotFoundError("Alert not found", details={"alert_id": str(alert_id)})
    return {"success": True}
