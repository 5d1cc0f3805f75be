"""Slot grid endpoint."""

import logging
from datetime import date, datetime
from typing import Annotated
from uuid import UUID
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_tenant_id, get_timezone
from database.connection import get_db_session
from scheduling.services.slot_generator import get_available_slots

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/schedules", tags=["slots"])


@router.get("/{schedule_id}/slots")
async def list_slots(
    schedule_id: UUID,
    tenant_id: Annotated[UUID, Depends(get_tenant_id)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
    timezone: Annotated[ZoneInfo, Depends(get_timezone)],
    day: Annotated[date, Query(alias="date")],
    service_id: UUID | None = None,
    professional_id: UUID | None = None,
):
    """
    Slot grid of a schedule for one date.

    **Returns:**
    ```json
    {"slots": [{"time": "08:00", "available": true}, ...]}
    ```

    **Errors:**
    - **404**: Schedule or service not found
    """
    slots = await get_available_slots(
        session,
        tenant_id,
        schedule_id,
        service_id,
        day,
        professional_id=professional_id,
        timezone=timezone,
        now=datetime.now(timezone),
    )
    return {"slots": [slot.to_dict() for slot in slots]}
