"""
Unit tests for reminder_worker.py - Reminder and confirmation sweeps.
"""

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from scheduling.services.notification_dispatcher import (
    DispatchOutcome,
    NotificationContext,
    NotificationEvent,
)
from scheduling.workers.reminder_worker import ReminderWorker

MODULE = "scheduling.workers.reminder_worker"
NOW = datetime(2025, 3, 3, 12, 0, tzinfo=UTC)


def make_appointment(start):
    return SimpleNamespace(
        id=uuid4(),
        tenant_id=uuid4(),
        start_time=start,
        reminder_sent_at=None,
        confirmation_sent_at=None,
    )


@pytest.fixture
def dispatcher():
    dispatcher = MagicMock()
    dispatcher.dispatch = AsyncMock(return_value=DispatchOutcome.sent())
    return dispatcher


@pytest.fixture(autouse=True)
def notification_context():
    with patch(
        f"{MODULE}.build_notification_context",
        AsyncMock(return_value=NotificationContext(client_name="Ana", client_phone="11987654321")),
    ):
        yield


class TestSendReminders:
    @pytest.mark.asyncio
    async def test_sends_and_marks(self, dispatcher, session_factory, mock_session, result_factory):
        config = SimpleNamespace(tenant_id=uuid4(), reminder_hours=24)
        appointment = make_appointment(NOW + timedelta(hours=24, minutes=10))
        mock_session.execute.side_effect = [
            result_factory(scalars=[config]),
            result_factory(scalars=[appointment]),
        ]

        result = await ReminderWorker(dispatcher, session_factory).send_reminders(NOW)

        assert result.processed_configs == 1
        assert result.sent == 1
        assert appointment.reminder_sent_at == NOW
        assert dispatcher.dispatch.await_args.args[0] == NotificationEvent.REMINDER
        mock_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_delivery_not_marked(
        self, dispatcher, session_factory, mock_session, result_factory
    ):
        dispatcher.dispatch.return_value = DispatchOutcome.failed("gateway delivery failed")
        appointment = make_appointment(NOW + timedelta(hours=24))
        mock_session.execute.side_effect = [
            result_factory(scalars=[SimpleNamespace(tenant_id=uuid4(), reminder_hours=24)]),
            result_factory(scalars=[appointment]),
        ]

        result = await ReminderWorker(dispatcher, session_factory).send_reminders(NOW)

        assert result.failed == 1
        assert result.sent == 0
        assert appointment.reminder_sent_at is None
        mock_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_skipped_counted(self, dispatcher, session_factory, mock_session, result_factory):
        dispatcher.dispatch.return_value = DispatchOutcome.skipped("client has no phone number")
        mock_session.execute.side_effect = [
            result_factory(scalars=[SimpleNamespace(tenant_id=uuid4(), reminder_hours=2)]),
            result_factory(scalars=[make_appointment(NOW + timedelta(hours=2))]),
        ]

        result = await ReminderWorker(dispatcher, session_factory).send_reminders(NOW)

        assert result.skipped == 1

    @pytest.mark.asyncio
    async def test_no_configs(self, dispatcher, session_factory, mock_session, result_factory):
        mock_session.execute.side_effect = [result_factory(scalars=[])]

        result = await ReminderWorker(dispatcher, session_factory).send_reminders(NOW)

        assert result.to_dict() == {
            "job": "send_reminders",
            "processed_configs": 0,
            "triggered": 0,
            "sent": 0,
            "skipped": 0,
            "failed": 0,
        }
        dispatcher.dispatch.assert_not_awaited()


@pytest.mark.asyncio
async def test_confirmation_sweep_marks_confirmation(
    dispatcher, session_factory, mock_session, result_factory
):
    appointment = make_appointment(NOW + timedelta(days=2))
    mock_session.execute.side_effect = [
        result_factory(scalars=[SimpleNamespace(tenant_id=uuid4(), confirmation_days=2)]),
        result_factory(scalars=[appointment]),
    ]

    result = await ReminderWorker(dispatcher, session_factory).send_confirmations(NOW)

    assert result.sent == 1
    assert appointment.confirmation_sent_at == NOW
    assert dispatcher.dispatch.await_args.args[0] == NotificationEvent.CONFIRMED


@pytest.mark.asyncio
async def test_run_all_reports_both_jobs(dispatcher, session_factory, mock_session, result_factory):
    mock_session.execute.side_effect = [result_factory(scalars=[]), result_factory(scalars=[])]

    results = await ReminderWorker(dispatcher, session_factory).run_all(NOW)

    assert set(results) == {"send_reminders", "send_confirmations"}
