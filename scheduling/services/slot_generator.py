"""
Availability Slot Generator.

Turns a schedule's working-hour configuration into candidate start times for
a given date and service duration. Slots that are blocked or already booked
are returned with available=False rather than omitted, so callers can render
the full grid.

Stepping rule per working window (default hours are split at lunch, so the
cursor jumps straight from lunch start to lunch end):
    cursor = window start
    while cursor + duration + buffer <= window end:
        emit slot at cursor, advance by duration + buffer
"""

import logging
from collections.abc import Iterable
from datetime import date, datetime, time, timedelta
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from database.models import Appointment, AppointmentStatus, Schedule, Service
from scheduling.domain import (
    AppointmentLike,
    BookingCandidate,
    ScheduleConfig,
    Slot,
    TimeWindow,
    schedule_config_from_model,
    within_booking_horizon,
)
from scheduling.errors import NotFoundError
from scheduling.services.conflict_detector import has_conflict

logger = logging.getLogger(__name__)


def _window_starts(
    config: ScheduleConfig, day: date, window: TimeWindow, duration: timedelta
) -> list[datetime]:
    starts = []
    cursor = config.at(day, window.start)
    window_end = config.at(day, window.end)
    # The buffer after a slot must fit in the window too
    step = duration + timedelta(minutes=config.buffer_time)

    while cursor + step <= window_end:
        starts.append(cursor)
        cursor += step
    return starts


def generate_slots(
    config: ScheduleConfig,
    day: date,
    service_duration: int,
    existing: Iterable[AppointmentLike] = (),
    professional_id: UUID | None = None,
) -> list[Slot]:
    """
    Generate the slot grid of a date.

    Args:
        config: Validated schedule configuration
        day: Date to generate slots for
        service_duration: Minutes occupied by each slot
        existing: Appointments of the day (statuses that do not occupy time are ignored)
        professional_id: Scope occupancy to this professional (plus unassigned appointments)

    Returns:
        Slots in chronological order; empty when the day is closed

    Raises:
        ValueError: If service_duration is not positive

    Example:
        >>> [s.label for s in generate_slots(config, date(2025, 3, 3), 30)][:3]
        ['08:00', '08:30', '09:00']
    """
    if service_duration <= 0:
        raise ValueError(f"service_duration must be positive, got {service_duration}")

    duration = timedelta(minutes=service_duration)
    existing = list(existing)
    slots = []

    for window in config.windows_for(day):
        for start in _window_starts(config, day, window, duration):
            end = start + duration
            candidate = BookingCandidate(
                schedule_id=config.id,
                start_time=start,
                duration_minutes=service_duration,
                professional_id=professional_id,
            )
            blocked = bool(config.blocks_overlapping(start, end))
            available = not blocked and not has_conflict(candidate, existing)
            slots.append(Slot(start=start.time(), available=available))

    return slots


def slot_is_available(
    slots: Iterable[Slot], start: time
) -> bool:
    """Whether a start time is present in the grid and available."""
    return any(slot.start == start and slot.available for slot in slots)


# ============================================================================
# Storage-backed lookups
# ============================================================================


async def load_schedule_config(
    session: AsyncSession,
    tenant_id: UUID,
    schedule_id: UUID,
    timezone: ZoneInfo,
) -> ScheduleConfig:
    """Load an active schedule with overrides and blocks. Raises NotFoundError."""
    stmt = (
        select(Schedule)
        .options(selectinload(Schedule.day_configs), selectinload(Schedule.blocks))
        .where(
            Schedule.id == schedule_id,
            Schedule.tenant_id == tenant_id,
            Schedule.is_active.is_(True),
        )
    )
    result = await session.execute(stmt)
    schedule = result.scalar_one_or_none()
    if schedule is None:
        raise NotFoundError(
            "Schedule not found", details={"schedule_id": str(schedule_id)}
        )
    return schedule_config_from_model(schedule, timezone=timezone)


async def load_service(
    session: AsyncSession, tenant_id: UUID, service_id: UUID
) -> Service:
    """Load an active service of the tenant. Raises NotFoundError."""
    result = await session.execute(
        select(Service).where(
            Service.id == service_id,
            Service.tenant_id == tenant_id,
            Service.is_active.is_(True),
        )
    )
    service = result.scalar_one_or_none()
    if service is None:
        raise NotFoundError("Service not found", details={"service_id": str(service_id)})
    return service


def effective_duration(config: ScheduleConfig, service: Service | None) -> int:
    """Service duration when positive, otherwise the schedule slot duration."""
    if service is not None and service.duration_minutes and service.duration_minutes > 0:
        return service.duration_minutes
    return config.slot_duration


async def load_day_appointments(
    session: AsyncSession,
    tenant_id: UUID,
    config: ScheduleConfig,
    day: date,
) -> list[Appointment]:
    day_start = config.at(day, time.min)
    day_end = day_start + timedelta(days=1)
    result = await session.execute(
        select(Appointment).where(
            Appointment.tenant_id == tenant_id,
            Appointment.schedule_id == config.id,
            Appointment.status.in_(AppointmentStatus.occupying()),
            Appointment.start_time < day_end,
            Appointment.start_time + Appointment.duration_minutes * timedelta(minutes=1)
            > day_start,
        )
    )
    return list(result.scalars().all())


async def get_available_slots(
    session: AsyncSession,
    tenant_id: UUID,
    schedule_id: UUID,
    service_id: UUID | None,
    day: date,
    professional_id: UUID | None = None,
    timezone: ZoneInfo | None = None,
    now: datetime | None = None,
) -> list[Slot]:
    """
    Slot grid of a schedule for a date, with occupancy from storage.

    Returns an empty list when the whole day lies outside the schedule's
    booking horizon (minimum notice / advance booking days).

    Raises:
        NotFoundError: Schedule or service missing for the tenant
    """
    timezone = timezone or ZoneInfo("UTC")
    config = await load_schedule_config(session, tenant_id, schedule_id, timezone)
    service = await load_service(session, tenant_id, service_id) if service_id else None
    duration = effective_duration(config, service)

    now = now or datetime.now(timezone)
    existing = await load_day_appointments(session, tenant_id, config, day)
    slots = generate_slots(config, day, duration, existing, professional_id)

    in_horizon = [within_booking_horizon(config, config.at(day, s.start), now) for s in slots]
    if slots and not any(in_horizon):
        logger.info(
            f"Date {day} outside booking horizon",
            extra={"tenant_id": str(tenant_id), "schedule_id": str(schedule_id)},
        )
        return []
    slots = [
        slot if ok else Slot(start=slot.start, available=False)
        for slot, ok in zip(slots, in_horizon)
    ]

    logger.info(
        f"Generated {len(slots)} slots for {day} "
        f"({sum(1 for s in slots if s.available)} available)",
        extra={"tenant_id": str(tenant_id), "schedule_id": str(schedule_id)},
    )
    return slots
