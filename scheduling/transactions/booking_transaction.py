"""
Booking Transaction Handler.

Single entry point for creating appointments:
- Request validation (before any storage access)
- Slot check against the schedule's grid and booking horizon
- Conflict check with SERIALIZABLE isolation and row locks
- Monthly quota gate for the tenant's plan
- Persistence and commit
- Post-commit "created" event (fire-and-forget, never affects the response)

Check-then-insert runs in one SERIALIZABLE transaction; a serialization
failure on commit means a concurrent booking won and is reported as a
conflict.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from database.connection import get_async_session
from database.models import (
    AlertType,
    Appointment,
    Client,
    Professional,
    Schedule,
    Service,
    Tenant,
)
from scheduling.domain import AppointmentSnapshot, BookingCandidate, within_booking_horizon
from scheduling.errors import (
    BookingConflictError,
    BookingValidationError,
    NotFoundError,
    QuotaExceededError,
    SlotUnavailableError,
)
from scheduling.events import EventPublisher
from scheduling.services.alert_service import record_alert
from scheduling.services.conflict_detector import find_conflict, load_conflict_candidates
from scheduling.services.notification_dispatcher import NotificationContext, NotificationEvent
from scheduling.services.plan_limits import (
    QuotaDecision,
    check_quota,
    count_month_appointments,
    remaining,
    should_warn,
)
from scheduling.services.slot_generator import (
    effective_duration,
    generate_slots,
    load_schedule_config,
    load_service,
    slot_is_available,
)
from scheduling.validators.booking_validators import (
    AvailabilityCheckRequest,
    BookingRequest,
    validate_start_alignment,
)

logger = logging.getLogger(__name__)

# PostgreSQL SQLSTATE for serialization_failure
SERIALIZATION_FAILURE = "40001"


def is_serialization_failure(error: DBAPIError) -> bool:
    orig = getattr(error, "orig", None)
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code == SERIALIZATION_FAILURE


def client_to_dict(client: Client | None) -> dict[str, Any] | None:
    if client is None:
        return None
    return {
        "id": str(client.id),
        "name": client.name,
        "email": client.email,
        "phone": client.phone,
    }


def appointment_to_dict(appointment: Appointment, client: Client | None = None) -> dict[str, Any]:
    """API representation of an appointment with a normalized client sub-object."""
    return {
        "id": str(appointment.id),
        "schedule_id": str(appointment.schedule_id) if appointment.schedule_id else None,
        "service_id": str(appointment.service_id) if appointment.service_id else None,
        "professional_id": (
            str(appointment.professional_id) if appointment.professional_id else None
        ),
        "client_id": str(appointment.client_id),
        "start": appointment.start_time.isoformat(),
        "end": appointment.end_time.isoformat(),
        "duration": appointment.duration_minutes,
        "status": appointment.status.value,
        "modality": appointment.modality.value,
        "price": str(appointment.price) if appointment.price is not None else None,
        "notes": appointment.notes,
        "client": client_to_dict(client),
    }


async def _get_owned(session: AsyncSession, model, tenant_id: UUID, entity_id: UUID, label: str):
    result = await session.execute(
        select(model).where(model.id == entity_id, model.tenant_id == tenant_id)
    )
    entity = result.scalar_one_or_none()
    if entity is None:
        raise NotFoundError(f"{label} not found", details={f"{label.lower()}_id": str(entity_id)})
    return entity


async def build_notification_context(
    session: AsyncSession, appointment: Appointment, tenant: Tenant | None = None
) -> NotificationContext:
    """Collect the names rendered into notification templates."""
    client = await session.get(Client, appointment.client_id)
    service = await session.get(Service, appointment.service_id) if appointment.service_id else None
    professional = (
        await session.get(Professional, appointment.professional_id)
        if appointment.professional_id
        else None
    )
    if tenant is None:
        tenant = await session.get(Tenant, appointment.tenant_id)
    return NotificationContext(
        client_name=client.name if client else "",
        client_phone=client.phone if client else None,
        service_name=service.name if service else None,
        professional_name=professional.name if professional else None,
        business_name=tenant.business_name if tenant else None,
    )


@dataclass
class BookingResult:
    """Committed booking."""

    appointment: Appointment
    client: Client
    quota: QuotaDecision
    limit_warning: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = appointment_to_dict(self.appointment, self.client)
        data["quota"] = self.quota.to_dict()
        data["limit_warning"] = self.limit_warning
        return data


class BookingTransaction:
    """
    Atomic transaction handler for creating appointments.

    Args:
        timezone: Application timezone (slot grid, month boundaries)
        publisher: Post-commit event publisher; None disables notifications
        session_factory: Async context manager yielding a session
        clock: Returns the current time (tests pin it)
    """

    def __init__(
        self,
        timezone: ZoneInfo,
        publisher: EventPublisher | None = None,
        session_factory: Callable = get_async_session,
        clock: Callable[[], datetime] | None = None,
    ):
        self.timezone = timezone
        self.publisher = publisher
        self.session_factory = session_factory
        self.clock = clock or (lambda: datetime.now(self.timezone))

    async def execute(self, tenant_id: UUID, request: BookingRequest) -> BookingResult:
        """
        Create an appointment.

        Args:
            tenant_id: Tenant owning the booking
            request: Validated booking request (timezone-aware start)

        Returns:
            BookingResult with the committed appointment

        Raises:
            BookingValidationError: Start not on a whole minute
            NotFoundError: Client, schedule, service or professional missing
            SlotUnavailableError: Start is not an available slot of the schedule
            BookingConflictError: Interval overlaps an existing booking
            QuotaExceededError: Monthly plan limit reached
        """
        start = request.start
        trace_id = f"{tenant_id}_{start.isoformat()}"
        logger.info(
            f"[{trace_id}] Starting booking transaction",
            extra={"tenant_id": str(tenant_id), "schedule_id": str(request.schedule_id)},
        )

        alignment = validate_start_alignment(start)
        if not alignment.valid:
            raise BookingValidationError(
                alignment.error_message, details=alignment.details, error_code=alignment.error_code
            )

        now = self.clock()

        async with self.session_factory() as session:
            try:
                await session.execute(text("SET TRANSACTION ISOLATION LEVEL SERIALIZABLE"))

                tenant = await session.get(Tenant, tenant_id)
                if tenant is None:
                    raise NotFoundError("Tenant not found", details={"tenant_id": str(tenant_id)})
                client = await _get_owned(session, Client, tenant_id, request.client_id, "Client")
                config = await load_schedule_config(
                    session, tenant_id, request.schedule_id, self.timezone
                )
                service = (
                    await load_service(session, tenant_id, request.service_id)
                    if request.service_id
                    else None
                )
                if request.professional_id:
                    await _get_owned(
                        session, Professional, tenant_id, request.professional_id, "Professional"
                    )

                duration = request.duration or effective_duration(config, service)
                local_start = start.astimezone(self.timezone)

                # Step 1: slot must exist in the schedule grid and be open for booking
                if not within_booking_horizon(config, local_start, now):
                    logger.warning(f"[{trace_id}] Start outside booking horizon")
                    raise SlotUnavailableError(
                        "Requested time is outside the booking window",
                        details={
                            "start": local_start.isoformat(),
                            "min_notice_hours": config.min_notice_hours,
                            "advance_booking_days": config.advance_booking_days,
                        },
                    )
                grid = generate_slots(config, local_start.date(), duration)
                if not slot_is_available(grid, local_start.time()):
                    logger.warning(f"[{trace_id}] Requested start is not an available slot")
                    raise SlotUnavailableError(
                        "Requested time is not an available slot",
                        details={"start": local_start.isoformat(), "duration": duration},
                    )

                candidate = BookingCandidate(
                    schedule_id=request.schedule_id,
                    start_time=start,
                    duration_minutes=duration,
                    professional_id=request.professional_id,
                    status=request.status,
                )
                occupies = request.status.occupies_time

                # Step 2: conflict check under row locks
                if occupies:
                    existing = await load_conflict_candidates(
                        session,
                        tenant_id,
                        request.schedule_id,
                        start,
                        candidate.end_time,
                        request.professional_id,
                    )
                    conflict = find_conflict(candidate, existing)
                    if conflict is not None:
                        logger.warning(
                            f"[{trace_id}] Slot conflict with appointment {conflict.id}",
                            extra={"tenant_id": str(tenant_id)},
                        )
                        raise BookingConflictError(
                            "Time slot already booked",
                            details={
                                "conflicting_appointment_id": str(conflict.id),
                                "conflicting_start": conflict.start_time.isoformat(),
                                "conflicting_end": conflict.end_time.isoformat(),
                            },
                        )

                # Step 3: monthly quota
                count = await count_month_appointments(session, tenant_id, now)
                quota = check_quota(tenant.plan_tier, count)
                if occupies and not quota.allowed:
                    logger.warning(
                        f"[{trace_id}] Monthly limit reached ({count})",
                        extra={"tenant_id": str(tenant_id)},
                    )
                    raise QuotaExceededError(
                        f"Monthly appointment limit reached ({count} used). "
                        f"Upgrade your plan to continue.",
                        details={"current_count": count, "remaining": quota.to_dict()["remaining"]},
                    )

                # Step 4: persist
                appointment = Appointment(
                    tenant_id=tenant_id,
                    schedule_id=request.schedule_id,
                    professional_id=request.professional_id,
                    client_id=client.id,
                    service_id=request.service_id,
                    start_time=start,
                    duration_minutes=duration,
                    status=request.status,
                    modality=request.modality,
                    price=(
                        request.price
                        if request.price is not None
                        else (service.price if service else None)
                    ),
                    notes=request.notes,
                )
                session.add(appointment)
                await session.flush()

                record_alert(
                    session,
                    tenant_id,
                    AlertType.APPOINTMENT_CREATED,
                    "New appointment",
                    f"{client.name} booked for {local_start.strftime('%d/%m/%Y %H:%M')}",
                    appointment_id=appointment.id,
                )

                new_count = count + 1 if occupies else count
                warn = occupies and should_warn(tenant.plan_tier, new_count)
                if warn:
                    left = remaining(tenant.plan_tier, new_count)
                    record_alert(
                        session,
                        tenant_id,
                        AlertType.PLAN_LIMIT_APPROACHING,
                        "Plan limit approaching",
                        f"Only {left} appointments left this month "
                        f"on the {tenant.plan_tier.value} plan",
                        metadata={"remaining": left, "plan_tier": tenant.plan_tier.value},
                    )

                context = await build_notification_context(session, appointment, tenant)

                await session.commit()
            except DBAPIError as e:
                # Serialization failures can surface on any statement, not only COMMIT
                await session.rollback()
                if is_serialization_failure(e):
                    logger.warning(f"[{trace_id}] Serialization failure, concurrent booking won")
                    raise BookingConflictError(
                        "Time slot was booked concurrently",
                        details={"start": start.isoformat()},
                    ) from e
                raise

        logger.info(
            f"[{trace_id}] Appointment committed",
            extra={"tenant_id": str(tenant_id), "appointment_id": str(appointment.id)},
        )

        # Step 5: post-commit notification (fire-and-forget)
        if self.publisher is not None:
            self.publisher.publish(
                NotificationEvent.CREATED, AppointmentSnapshot.from_model(appointment), context
            )

        return BookingResult(
            appointment=appointment,
            client=client,
            quota=check_quota(tenant.plan_tier, new_count),
            limit_warning=warn,
        )


async def check_availability(
    session: AsyncSession, tenant_id: UUID, request: AvailabilityCheckRequest
) -> dict[str, Any]:
    """
    Conflict pre-check without locking or writing.

    Raises:
        NotFoundError: Schedule missing
        BookingConflictError: Interval overlaps an existing booking
    """
    await _get_owned(session, Schedule, tenant_id, request.schedule_id, "Schedule")
    candidate = BookingCandidate(
        schedule_id=request.schedule_id,
        start_time=request.start,
        duration_minutes=request.duration,
        professional_id=request.professional_id,
    )
    existing = await load_conflict_candidates(
        session,
        tenant_id,
        request.schedule_id,
        request.start,
        candidate.end_time,
        request.professional_id,
        exclude_id=request.exclude_appointment_id,
        lock=False,
    )
    conflict = find_conflict(candidate, existing)
    if conflict is not None:
        raise BookingConflictError(
            "Time slot already booked",
            details={
                "conflicting_appointment_id": str(conflict.id),
                "conflicting_start": conflict.start_time.isoformat(),
                "conflicting_end": conflict.end_time.isoformat(),
            },
        )
    return {"available": True}

