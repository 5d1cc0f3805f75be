"""
Conflict Detector.

Pure overlap checks between a booking candidate and existing appointments,
plus the locking storage read used by the booking transaction.

Rules:
- Intervals are half-open: back-to-back bookings do not conflict
- Only appointments on the same schedule are compared
- A candidate with a professional is compared against that professional's
  appointments and against appointments with no professional assigned
- Appointments whose status does not occupy time (cancelled, no-show) are ignored

Usage:
    from scheduling.services.conflict_detector import find_conflict, load_conflict_candidates

    async with get_async_session() as session:
        await session.execute(text("SET TRANSACTION ISOLATION LEVEL SERIALIZABLE"))
        existing = await load_conflict_candidates(session, tenant_id, candidate)
        conflict = find_conflict(candidate, existing)
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta
from typing import TypeVar
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Appointment, AppointmentStatus
from scheduling.domain import AppointmentLike

logger = logging.getLogger(__name__)

A = TypeVar("A", bound=AppointmentLike)


def _end_of(appointment: AppointmentLike) -> datetime:
    return appointment.start_time + timedelta(minutes=appointment.duration_minutes)


def intervals_overlap(
    start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime
) -> bool:
    """Half-open interval intersection."""
    return start_a < end_b and end_a > start_b


def in_scope(
    candidate: AppointmentLike,
    existing: AppointmentLike,
) -> bool:
    """Whether an existing appointment competes with the candidate for time."""
    if not AppointmentStatus(existing.status).occupies_time:
        return False
    if existing.schedule_id != candidate.schedule_id:
        return False
    if candidate.professional_id is not None:
        return existing.professional_id in (None, candidate.professional_id)
    return True


def find_conflict(candidate: AppointmentLike, existing: Iterable[A]) -> A | None:
    """
    Return the first existing appointment overlapping the candidate, or None.

    Args:
        candidate: Interval to book (BookingCandidate or appointment)
        existing: Appointments to check against

    Example:
        >>> find_conflict(candidate_10_15, [scheduled_10_00])
        <Appointment 10:00-10:30>
    """
    candidate_end = _end_of(candidate)
    for appointment in existing:
        if appointment is candidate:
            continue
        if not in_scope(candidate, appointment):
            continue
        if intervals_overlap(
            candidate.start_time, candidate_end, appointment.start_time, _end_of(appointment)
        ):
            return appointment
    return None


def has_conflict(candidate: AppointmentLike, existing: Iterable[AppointmentLike]) -> bool:
    return find_conflict(candidate, existing) is not None


def find_overlaps(appointments: Sequence[A]) -> list[tuple[A, A]]:
    """Every conflicting pair within a set of appointments."""
    pairs = []
    for i, first in enumerate(appointments):
        if not AppointmentStatus(first.status).occupies_time:
            continue
        for second in appointments[i + 1:]:
            if not in_scope(first, second):
                continue
            if intervals_overlap(
                first.start_time, _end_of(first), second.start_time, _end_of(second)
            ):
                pairs.append((first, second))
    return pairs


async def load_conflict_candidates(
    session: AsyncSession,
    tenant_id: UUID,
    schedule_id: UUID,
    start_time: datetime,
    end_time: datetime,
    professional_id: UUID | None = None,
    exclude_id: UUID | None = None,
    lock: bool = True,
) -> list[Appointment]:
    """
    Load occupying appointments overlapping [start_time, end_time) with row locks.

    Must run inside the same SERIALIZABLE transaction as the insert so the
    check and the write form one atomic unit. lock=False serves read-only
    pre-checks.
    """
    conditions = [
        Appointment.tenant_id == tenant_id,
        Appointment.schedule_id == schedule_id,
        Appointment.status.in_(AppointmentStatus.occupying()),
        Appointment.start_time < end_time,
        Appointment.start_time + Appointment.duration_minutes * timedelta(minutes=1)
        > start_time,
    ]
    if professional_id is not None:
        conditions.append(
            or_(
                Appointment.professional_id == professional_id,
                Appointment.professional_id.is_(None),
            )
        )
    if exclude_id is not None:
        conditions.append(Appointment.id != exclude_id)

    stmt = select(Appointment).where(*conditions)
    if lock:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    appointments = list(result.scalars().all())

    logger.debug(
        f"Loaded {len(appointments)} conflict candidates between {start_time} and {end_time}",
        extra={"tenant_id": str(tenant_id), "schedule_id": str(schedule_id)},
    )
    return appointments
