"""Unit tests for events.py - Post-commit publishing with per-appointment ordering."""

import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from scheduling.events import EventPublisher
from scheduling.services.notification_dispatcher import (
    DispatchOutcome,
    NotificationContext,
    NotificationEvent,
)


class RecordingDispatcher:
    """Dispatcher double; the first event of each appointment is slow."""

    def __init__(self):
        self.order: list[tuple] = []
        self.slow_first = True

    async def dispatch(self, event, appointment, context):
        if self.slow_first and event == NotificationEvent.CREATED:
            await asyncio.sleep(0.05)
        self.order.append((appointment.id, NotificationEvent(event)))
        return DispatchOutcome.sent()


def make_appointment():
    return SimpleNamespace(id=uuid4(), tenant_id=uuid4())


@pytest.mark.asyncio
async def test_same_appointment_events_keep_publish_order():
    dispatcher = RecordingDispatcher()
    publisher = EventPublisher(dispatcher)
    appointment = make_appointment()
    context = NotificationContext(client_name="Ana")

    publisher.publish(NotificationEvent.CREATED, appointment, context)
    publisher.publish(NotificationEvent.CANCELLED, appointment, context)
    await publisher.drain()

    assert dispatcher.order == [
        (appointment.id, NotificationEvent.CREATED),
        (appointment.id, NotificationEvent.CANCELLED),
    ]
    assert publisher.pending == 0


@pytest.mark.asyncio
async def test_different_appointments_run_concurrently():
    dispatcher = RecordingDispatcher()
    publisher = EventPublisher(dispatcher)
    slow, fast = make_appointment(), make_appointment()
    context = NotificationContext(client_name="Ana")

    publisher.publish(NotificationEvent.CREATED, slow, context)
    publisher.publish(NotificationEvent.CONFIRMED, fast, context)
    await publisher.drain()

    assert dispatcher.order[0] == (fast.id, NotificationEvent.CONFIRMED)


@pytest.mark.asyncio
async def test_publish_returns_task_with_outcome():
    publisher = EventPublisher(RecordingDispatcher())

    task = publisher.publish(
        NotificationEvent.REMINDER, make_appointment(), NotificationContext(client_name="Ana")
    )

    outcome = await task
    assert outcome == DispatchOutcome.sent()


@pytest.mark.asyncio
async def test_failed_task_is_logged_not_raised():
    dispatcher = MagicMock()

    async def boom(*args):
        raise RuntimeError("unexpected")

    dispatcher.dispatch = boom
    publisher = EventPublisher(dispatcher)

    publisher.publish(
        NotificationEvent.CREATED, make_appointment(), NotificationContext(client_name="Ana")
    )
    await publisher.drain()

    assert publisher.pending == 0
