"""
Unit tests for notification_dispatcher.py - Event dispatch preconditions and rendering.
"""

from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4
from zoneinfo import ZoneInfo

import pytest

from database.models import ConnectionState
from scheduling.services.notification_dispatcher import (
    DispatchStatus,
    NotificationContext,
    NotificationDispatcher,
    NotificationEvent,
)


def make_config(**overrides):
    values = dict(
        instance_name="tenant-agenda",
        enabled=True,
        connection_state=ConnectionState.CONNECTED,
        notify_on_create=True,
        create_delay_minutes=0,
        create_message="Hi {{client_name}}, see you {{date}} at {{time}}",
        notify_on_cancel=True,
        cancel_delay_minutes=5,
        cancel_message=None,
        notify_confirmation=False,
        confirmation_message=None,
        notify_reminder=True,
        reminder_message=None,
    )
    values.update(overrides)
    config = SimpleNamespace(**values)
    config.is_connected = config.connection_state == ConnectionState.CONNECTED
    return config


@pytest.fixture
def appointment():
    return SimpleNamespace(
        id=uuid4(),
        tenant_id=uuid4(),
        start_time=datetime(2025, 3, 7, 17, 30, tzinfo=UTC),
    )


@pytest.fixture
def context():
    return NotificationContext(client_name="Ana", client_phone="11987654321")


def make_dispatcher(config, delivered=True):
    gateway = MagicMock()
    gateway.send = AsyncMock(return_value=delivered)
    dispatcher = NotificationDispatcher(gateway, timezone=ZoneInfo("America/Sao_Paulo"))
    dispatcher.load_config = AsyncMock(return_value=config)
    return dispatcher, gateway


class TestPreconditions:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "config,reason",
        [
            (None, "no notification config"),
            (make_config(enabled=False), "notifications disabled"),
            (make_config(connection_state=ConnectionState.DISCONNECTED), "gateway not connected"),
            (make_config(notify_on_create=False), "notify_on_create is off"),
        ],
    )
    async def test_skipped_without_network_call(self, appointment, context, config, reason):
        dispatcher, gateway = make_dispatcher(config)

        outcome = await dispatcher.dispatch(NotificationEvent.CREATED, appointment, context)

        assert outcome.status == DispatchStatus.SKIPPED
        assert outcome.reason == reason
        gateway.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_client_without_phone_skipped(self, appointment):
        dispatcher, gateway = make_dispatcher(make_config())

        outcome = await dispatcher.dispatch(
            NotificationEvent.CREATED, appointment, NotificationContext(client_name="Ana")
        )

        assert outcome.status == DispatchStatus.SKIPPED
        gateway.send.assert_not_awaited()


class TestDispatch:
    @pytest.mark.asyncio
    async def test_renders_in_local_timezone(self, appointment, context):
        dispatcher, gateway = make_dispatcher(make_config())

        outcome = await dispatcher.dispatch(NotificationEvent.CREATED, appointment, context)

        assert outcome.status == DispatchStatus.SENT
        gateway.send.assert_awaited_once_with(
            "tenant-agenda",
            "11987654321",
            "Hi Ana, see you 07/03/2025 at 14:30",
            tenant_id=str(appointment.tenant_id),
            delay_minutes=0,
        )

    @pytest.mark.asyncio
    async def test_default_template_and_delay(self, appointment, context):
        dispatcher, gateway = make_dispatcher(make_config())

        await dispatcher.dispatch(NotificationEvent.CANCELLED, appointment, context)

        message = gateway.send.await_args.args[2]
        assert "was cancelled" in message
        assert gateway.send.await_args.kwargs["delay_minutes"] == 5

    @pytest.mark.asyncio
    async def test_event_accepts_plain_string(self, appointment, context):
        dispatcher, gateway = make_dispatcher(make_config())

        outcome = await dispatcher.dispatch("reminder", appointment, context)

        assert outcome.status == DispatchStatus.SENT

    @pytest.mark.asyncio
    async def test_delivery_failure_reported(self, appointment, context):
        dispatcher, _ = make_dispatcher(make_config(), delivered=False)

        outcome = await dispatcher.dispatch(NotificationEvent.CREATED, appointment, context)

        assert outcome.status == DispatchStatus.FAILED

    @pytest.mark.asyncio
    async def test_never_raises(self, appointment, context):
        dispatcher, _ = make_dispatcher(make_config())
        dispatcher.load_config = AsyncMock(side_effect=RuntimeError("db down"))

        outcome = await dispatcher.dispatch(NotificationEvent.CREATED, appointment, context)

        assert outcome.status == DispatchStatus.FAILED
        assert "db down" in outcome.reason


@pytest.mark.asyncio
async def test_load_config_reads_through_session(session_factory, mock_session, result_factory):
    config = make_config()
    mock_session.execute.return_value = result_factory(scalar=config)
    dispatcher = NotificationDispatcher(MagicMock(), session_factory=session_factory)

    assert await dispatcher.load_config(uuid4()) is config
