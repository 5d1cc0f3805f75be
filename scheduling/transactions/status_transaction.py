"""
Appointment status transitions and administrative delete.

Any status may be set by an operator. Moving a cancelled or no-show
appointment back to a time-occupying status re-runs the conflict check under
SERIALIZABLE isolation, since the slot may have been taken meanwhile.

Post-commit events:
- cancelled -> "cancelled" notification

An operator confirmation sends nothing; the pre-visit "confirmed" message
is sent by the reminder worker.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import select, text
from sqlalchemy.exc import DBAPIError

from database.connection import get_async_session
from database.models import AlertType, Appointment, AppointmentStatus, Client
from scheduling.domain import AppointmentSnapshot
from scheduling.errors import BookingConflictError, NotFoundError
from scheduling.events import EventPublisher
from scheduling.services.alert_service import record_alert
from scheduling.services.conflict_detector import find_conflict, load_conflict_candidates
from scheduling.services.notification_dispatcher import NotificationEvent
from scheduling.transactions.booking_transaction import (
    build_notification_context,
    is_serialization_failure,
)

logger = logging.getLogger(__name__)

STATUS_EVENTS: dict[AppointmentStatus, NotificationEvent] = {
    AppointmentStatus.CANCELLED: NotificationEvent.CANCELLED,
}


class StatusTransaction:
    """Lifecycle transitions of an existing appointment."""

    def __init__(
        self,
        publisher: EventPublisher | None = None,
        session_factory: Callable = get_async_session,
    ):
        self.publisher = publisher
        self.session_factory = session_factory

    async def change_status(
        self,
        tenant_id: UUID,
        appointment_id: UUID,
        new_status: AppointmentStatus,
    ) -> tuple[Appointment, Client | None]:
        """
        Set an appointment's status.

        Returns:
            (appointment, client) after commit

        Raises:
            NotFoundError: Appointment missing for the tenant
            BookingConflictError: Reactivation overlaps another booking
        """
        new_status = AppointmentStatus(new_status)
        trace_id = f"{tenant_id}_{appointment_id}"

        async with self.session_factory() as session:
            try:
                await session.execute(text("SET TRANSACTION ISOLATION LEVEL SERIALIZABLE"))

                result = await session.execute(
                    select(Appointment)
                    .where(Appointment.id == appointment_id, Appointment.tenant_id == tenant_id)
                    .with_for_update()
                )
                appointment = result.scalar_one_or_none()
                if appointment is None:
                    raise NotFoundError(
                        "Appointment not found", details={"appointment_id": str(appointment_id)}
                    )

                client = await session.get(Client, appointment.client_id)
                old_status = appointment.status
                if old_status == new_status:
                    logger.info(f"[{trace_id}] Status unchanged ({new_status.value})")
                    return appointment, client

                reactivating = new_status.occupies_time and not old_status.occupies_time
                if reactivating and appointment.schedule_id:
                    existing = await load_conflict_candidates(
                        session,
                        tenant_id,
                        appointment.schedule_id,
                        appointment.start_time,
                        appointment.end_time,
                        appointment.professional_id,
                        exclude_id=appointment.id,
                    )
                    conflict = find_conflict(appointment, existing)
                    if conflict is not None:
                        raise BookingConflictError(
                            "Time slot already booked",
                            details={
                                "conflicting_appointment_id": str(conflict.id),
                                "conflicting_start": conflict.start_time.isoformat(),
                                "conflicting_end": conflict.end_time.isoformat(),
                            },
                        )

                appointment.status = new_status
                if new_status == AppointmentStatus.CANCELLED:
                    appointment.cancelled_at = datetime.now(UTC)
                    record_alert(
                        session,
                        tenant_id,
                        AlertType.APPOINTMENT_CANCELLED,
                        "Appointment cancelled",
                        f"{client.name if client else 'Client'} cancelled "
                        f"{appointment.start_time.strftime('%d/%m/%Y %H:%M')}",
                        appointment_id=appointment.id,
                    )
                elif old_status == AppointmentStatus.CANCELLED:
                    appointment.cancelled_at = None

                context = await build_notification_context(session, appointment)

                await session.commit()
            except DBAPIError as e:
                await session.rollback()
                if is_serialization_failure(e):
                    raise BookingConflictError(
                        "Appointment changed concurrently",
                        details={"appointment_id": str(appointment_id)},
                    ) from e
                raise

        logger.info(
            f"[{trace_id}] Status changed {old_status.value} -> {new_status.value}",
            extra={"tenant_id": str(tenant_id), "appointment_id": str(appointment_id)},
        )

        event = STATUS_EVENTS.get(new_status)
        if event is not None and self.publisher is not None:
            self.publisher.publish(event, AppointmentSnapshot.from_model(appointment), context)

        return appointment, client

    async def delete(self, tenant_id: UUID, appointment_id: UUID) -> None:
        """Administrative delete. No notification is sent."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Appointment).where(
                    Appointment.id == appointment_id, Appointment.tenant_id == tenant_id
                )
            )
            appointment = result.scalar_one_or_none()
            if appointment is None:
                raise NotFoundError(
                    "Appointment not found", details={"appointment_id": str(appointment_id)}
                )
            await session.delete(appointment)
            await session.commit()

        logger.info(
            f"Appointment {appointment_id} deleted",
            extra={"tenant_id": str(tenant_id), "appointment_id": str(appointment_id)},
        )
