"""
Post-commit event publishing.

The booking and status transactions publish appointment events only after
their database commit. Each event runs as a background asyncio task so the
HTTP response never waits on the messaging gateway.

Events of the same appointment are chained: a task waits for the previous
task of that appointment before dispatching, so "created" is always sent
before "cancelled". Different appointments run concurrently.
"""

import asyncio
import logging
from uuid import UUID

from scheduling.services.notification_dispatcher import (
    DispatchOutcome,
    NotificationContext,
    NotificationDispatcher,
    NotificationEvent,
)

logger = logging.getLogger(__name__)


class EventPublisher:
    """Fire-and-forget publisher with per-appointment ordering."""

    def __init__(self, dispatcher: NotificationDispatcher):
        self.dispatcher = dispatcher
        self._tasks: set[asyncio.Task] = set()
        self._last_by_appointment: dict[UUID, asyncio.Task] = {}

    def publish(
        self,
        event: NotificationEvent,
        appointment,
        context: NotificationContext,
    ) -> asyncio.Task:
        """Schedule dispatch of an event. Must be called from a running event loop."""
        previous = self._last_by_appointment.get(appointment.id)
        task = asyncio.create_task(self._run(previous, event, appointment, context))

        self._tasks.add(task)
        self._last_by_appointment[appointment.id] = task
        task.add_done_callback(lambda t: self._forget(appointment.id, t))

        logger.info(
            f"Published {NotificationEvent(event).value} event",
            extra={
                "appointment_id": str(appointment.id),
                "tenant_id": str(appointment.tenant_id),
                "event": NotificationEvent(event).value,
            },
        )
        return task

    async def _run(
        self,
        previous: asyncio.Task | None,
        event: NotificationEvent,
        appointment,
        context: NotificationContext,
    ) -> DispatchOutcome:
        if previous is not None and not previous.done():
            # Outcome of the previous event does not matter, only its completion
            await asyncio.wait([previous])
        return await self.dispatcher.dispatch(event, appointment, context)

    def _forget(self, appointment_id: UUID, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if self._last_by_appointment.get(appointment_id) is task:
            del self._last_by_appointment[appointment_id]

        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"Event task failed: {exc}",
                exc_info=exc,
                extra={"appointment_id": str(appointment_id)},
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every in-flight event (used on shutdown and in tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
