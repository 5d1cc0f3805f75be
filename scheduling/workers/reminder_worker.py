"""
Reminder and pre-visit confirmation sweeps.

One-shot jobs triggered externally (cron calling POST /api/internal/reminders);
there is no in-process scheduler.

Jobs:
1. send_reminders: appointments starting in reminder_hours (±30 min)
2. send_confirmations: appointments starting in confirmation_days days (±30 min)

Each job only considers tenants whose notification config is enabled,
connected and has the matching toggle on. Appointments are marked with
reminder_sent_at / confirmation_sent_at once delivered, so overlapping cron
runs do not message twice.
"""

import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from sqlalchemy import select

from database.connection import get_async_session
from database.models import Appointment, AppointmentStatus, ConnectionState, NotificationConfig
from scheduling.services.notification_dispatcher import (
    DispatchStatus,
    NotificationDispatcher,
    NotificationEvent,
)
from scheduling.transactions.booking_transaction import build_notification_context

logger = logging.getLogger(__name__)

# Half-width of the matching window around the target time
WINDOW_MINUTES = 30

# Statuses that still expect the client to show up
PENDING_STATUSES = [AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED]


@dataclass
class SweepResult:
    """Counters of one sweep."""

    job: str
    processed_configs: int = 0
    triggered: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class _Job:
    name: str
    event: NotificationEvent
    toggle: str
    sent_marker: str
    lead_time: Callable[[NotificationConfig], timedelta]
    statuses: tuple[AppointmentStatus, ...]


REMINDER_JOB = _Job(
    name="send_reminders",
    event=NotificationEvent.REMINDER,
    toggle="notify_reminder",
    sent_marker="reminder_sent_at",
    lead_time=lambda config: timedelta(hours=config.reminder_hours or 24),
    statuses=tuple(PENDING_STATUSES),
)

CONFIRMATION_JOB = _Job(
    name="send_confirmations",
    event=NotificationEvent.CONFIRMED,
    toggle="notify_confirmation",
    sent_marker="confirmation_sent_at",
    lead_time=lambda config: timedelta(days=config.confirmation_days or 1),
    statuses=(AppointmentStatus.SCHEDULED,),
)


class ReminderWorker:
    """Runs the reminder and confirmation sweeps through the dispatcher."""

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        session_factory: Callable = get_async_session,
    ):
        self.dispatcher = dispatcher
        self.session_factory = session_factory

    async def _run(self, job: _Job, now: datetime) -> SweepResult:
        result = SweepResult(job=job.name)
        logger.info(f"Starting {job.name} job at {now.isoformat()}")

        async with self.session_factory() as session:
            configs = (
                await session.execute(
                    select(NotificationConfig).where(
                        NotificationConfig.enabled.is_(True),
                        NotificationConfig.connection_state == ConnectionState.CONNECTED,
                        getattr(NotificationConfig, job.toggle).is_(True),
                    )
                )
            ).scalars().all()
            result.processed_configs = len(configs)

            for config in configs:
                target = now + job.lead_time(config)
                window_start = target - timedelta(minutes=WINDOW_MINUTES)
                window_end = target + timedelta(minutes=WINDOW_MINUTES)

                appointments = (
                    await session.execute(
                        select(Appointment).where(
                            Appointment.tenant_id == config.tenant_id,
                            Appointment.status.in_(job.statuses),
                            getattr(Appointment, job.sent_marker).is_(None),
                            Appointment.start_time >= window_start,
                            Appointment.start_time <= window_end,
                        )
                    )
                ).scalars().all()

                for appointment in appointments:
                    result.triggered += 1
                    context = await build_notification_context(session, appointment)
                    outcome = await self.dispatcher.dispatch(job.event, appointment, context)

                    if outcome.status == DispatchStatus.SENT:
                        result.sent += 1
                        setattr(appointment, job.sent_marker, now)
                        await session.commit()
                    elif outcome.status == DispatchStatus.SKIPPED:
                        result.skipped += 1
                    else:
                        result.failed += 1
                        logger.warning(
                            f"{job.name}: delivery failed ({outcome.reason})",
                            extra={
                                "tenant_id": str(config.tenant_id),
                                "appointment_id": str(appointment.id),
                            },
                        )

        logger.info(
            f"{job.name} completed: {result.sent} sent, {result.skipped} skipped, "
            f"{result.failed} failed"
        )
        return result

    async def send_reminders(self, now: datetime) -> SweepResult:
        return await self._run(REMINDER_JOB, now)

    async def send_confirmations(self, now: datetime) -> SweepResult:
        return await self._run(CONFIRMATION_JOB, now)

    async def run_all(self, now: datetime) -> dict[str, dict]:
        """Run both sweeps; returns counters keyed by job name."""
        reminders = await self.send_reminders(now)
        confirmations = await self.send_confirmations(now)
        return {
            reminders.job: reminders.to_dict(),
            confirmations.job: confirmations.to_dict(),
        }
