"""
Appointment endpoints: booking, availability pre-check, status and delete.

Booking errors are SchedulingError subclasses rendered by the app-level
exception handler as {"error", "code", "details"}.
"""

import logging
from typing import Annotated, Any
from uuid import UUID
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Body, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import (
    get_booking_transaction,
    get_status_transaction,
    get_tenant_id,
    get_timezone,
)
from database.connection import get_db_session
from scheduling.transactions.booking_transaction import (
    BookingTransaction,
    appointment_to_dict,
    check_availability,
)
from scheduling.transactions.status_transaction import StatusTransaction
from scheduling.validators.booking_validators import (
    AvailabilityCheckRequest,
    StatusUpdateRequest,
    ensure_aware,
    validate_booking_request,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/appointments", tags=["appointments"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_appointment(
    tenant_id: Annotated[UUID, Depends(get_tenant_id)],
    timezone: Annotated[ZoneInfo, Depends(get_timezone)],
    transaction: Annotated[BookingTransaction, Depends(get_booking_transaction)],
    payload: Annotated[dict[str, Any], Body()],
):
    """
    Book an appointment.

    **Errors:**
    - **400**: VALIDATION_ERROR (details.fields)
    - **403**: APPOINTMENT_LIMIT_REACHED (current_count, remaining)
    - **404**: Client, schedule, service or professional not found
    - **409**: SLOT_CONFLICT (conflicting appointment interval)
    - **422**: SLOT_NOT_AVAILABLE
    """
    request = validate_booking_request(payload, timezone)
    result = await transaction.execute(tenant_id, request)
    return result.to_dict()


@router.post("/validate")
async def validate_appointment(
    tenant_id: Annotated[UUID, Depends(get_tenant_id)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
    timezone: Annotated[ZoneInfo, Depends(get_timezone)],
    request: AvailabilityCheckRequest,
):
    """Conflict pre-check: 200 {"available": true} or 409 SLOT_CONFLICT."""
    request.start = ensure_aware(request.start, timezone)
    return await check_availability(session, tenant_id, request)


@router.patch("/{appointment_id}/status")
async def update_status(
    appointment_id: UUID,
    tenant_id: Annotated[UUID, Depends(get_tenant_id)],
    transaction: Annotated[StatusTransaction, Depends(get_status_transaction)],
    request: StatusUpdateRequest,
):
    appointment, client = await transaction.change_status(
        tenant_id, appointment_id, request.status
    )
    return appointment_to_dict(appointment, client)


@router.delete("/{appointment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_appointment(
    appointment_id: UUID,
    tenant_id: Annotated[UUID, Depends(get_tenant_id)],
    transaction: Annotated[StatusTransaction, Depends(get_status_transaction)],
) -> Response:
    await transaction.delete(tenant_id, appointment_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
