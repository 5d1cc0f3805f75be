"""
Unit tests for booking_transaction.py - Atomic booking transaction handler.

Tests coverage:
- BookingTransaction.execute() success path (insert, alerts, commit, publish)
- Slot grid and booking horizon rejections
- Conflict rejection under SERIALIZABLE isolation
- Monthly quota rejection and limit warning
- Statuses that do not occupy time skip conflict and quota checks
- Serialization failure on commit reported as a conflict
- check_availability() pre-check
"""

from datetime import datetime, time, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.exc import DBAPIError

from database.models import Alert, AlertType, Appointment, AppointmentStatus, PlanTier
from scheduling.domain import ScheduleConfig
from scheduling.errors import (
    BookingConflictError,
    BookingValidationError,
    NotFoundError,
    QuotaExceededError,
    SlotUnavailableError,
)
from scheduling.services.notification_dispatcher import NotificationContext, NotificationEvent
from scheduling.transactions.booking_transaction import (
    BookingTransaction,
    check_availability,
    is_serialization_failure,
)
from scheduling.validators.booking_validators import AvailabilityCheckRequest, BookingRequest

TZ = ZoneInfo("America/Sao_Paulo")
MODULE = "scheduling.transactions.booking_transaction"

# Wednesday
START = datetime(2025, 3, 5, 10, 0, tzinfo=TZ)
NOW = datetime(2025, 3, 3, 8, 0, tzinfo=TZ)


class SerializationFailure(Exception):
    sqlstate = "40001"


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def config(schedule_id, tenant_id):
    return ScheduleConfig(
        id=schedule_id,
        tenant_id=tenant_id,
        working_days={1, 2, 3, 4, 5},
        start_time=time(8, 0),
        end_time=time(18, 0),
        slot_duration=30,
        lunch_start=time(12, 0),
        lunch_end=time(13, 0),
        timezone=TZ,
    )


@pytest.fixture
def tenant(tenant_id):
    return SimpleNamespace(id=tenant_id, plan_tier=PlanTier.FREE, business_name="Studio B")


@pytest.fixture
def client():
    return SimpleNamespace(id=uuid4(), name="Ana", email="ana@example.com", phone="11987654321")


@pytest.fixture
def publisher():
    return MagicMock()


@pytest.fixture
def transaction(session_factory, publisher):
    return BookingTransaction(
        timezone=TZ, publisher=publisher, session_factory=session_factory, clock=lambda: NOW
    )


@pytest.fixture
def storage(mock_session, tenant, client, config):
    """Patch the storage lookups used by execute()."""
    mock_session.get = AsyncMock(return_value=tenant)
    mocks = SimpleNamespace(
        get_owned=AsyncMock(return_value=client),
        load_schedule_config=AsyncMock(return_value=config),
        load_service=AsyncMock(return_value=None),
        load_conflict_candidates=AsyncMock(return_value=[]),
        count_month_appointments=AsyncMock(return_value=10),
        build_notification_context=AsyncMock(
            return_value=NotificationContext(client_name="Ana", client_phone="11987654321")
        ),
    )
    with patch(f"{MODULE}._get_owned", mocks.get_owned), \
         patch(f"{MODULE}.load_schedule_config", mocks.load_schedule_config), \
         patch(f"{MODULE}.load_service", mocks.load_service), \
         patch(f"{MODULE}.load_conflict_candidates", mocks.load_conflict_candidates), \
         patch(f"{MODULE}.count_month_appointments", mocks.count_month_appointments), \
         patch(f"{MODULE}.build_notification_context", mocks.build_notification_context):
        yield mocks


def make_request(schedule_id, start=START, **overrides):
    return BookingRequest(client_id=uuid4(), schedule_id=schedule_id, start=start, **overrides)


def added(mock_session, model):
    return [c.args[0] for c in mock_session.add.call_args_list if isinstance(c.args[0], model)]


# ============================================================================
# Test Success Path
# ============================================================================


class TestBookingTransactionSuccess:
    @pytest.mark.asyncio
    async def test_successful_booking(
        self, transaction, storage, mock_session, publisher, schedule_id, tenant_id
    ):
        result = await transaction.execute(tenant_id, make_request(schedule_id))

        appointment = result.appointment
        assert appointment.start_time == START
        assert appointment.duration_minutes == 30
        assert appointment.status == AppointmentStatus.SCHEDULED
        assert added(mock_session, Appointment) == [appointment]

        alerts = added(mock_session, Alert)
        assert [a.type for a in alerts] == [AlertType.APPOINTMENT_CREATED]

        mock_session.commit.assert_awaited_once()
        publisher.publish.assert_called_once()
        event, snapshot, _ = publisher.publish.call_args.args
        assert event == NotificationEvent.CREATED
        assert snapshot.start_time == START
        assert result.limit_warning is False
        assert result.to_dict()["client"]["name"] == "Ana"

    @pytest.mark.asyncio
    async def test_serializable_isolation_set_first(
        self, transaction, storage, mock_session, schedule_id, tenant_id
    ):
        await transaction.execute(tenant_id, make_request(schedule_id))

        first_statement = mock_session.execute.await_args_list[0].args[0]
        assert "SERIALIZABLE" in str(first_statement)

    @pytest.mark.asyncio
    async def test_publish_happens_after_commit(
        self, transaction, storage, mock_session, publisher, schedule_id, tenant_id
    ):
        publisher.publish.side_effect = lambda *args: (
            mock_session.commit.assert_awaited_once()
        )
        await transaction.execute(tenant_id, make_request(schedule_id))
        publisher.publish.assert_called_once()

    @pytest.mark.asyncio
    async def test_explicit_duration_used(
        self, transaction, storage, schedule_id, tenant_id
    ):
        result = await transaction.execute(tenant_id, make_request(schedule_id, duration=45))
        assert result.appointment.duration_minutes == 45

    @pytest.mark.asyncio
    async def test_limit_warning_alert(
        self, transaction, storage, mock_session, schedule_id, tenant_id
    ):
        """55th booking on FREE leaves 5: warn once."""
        storage.count_month_appointments.return_value = 54

        result = await transaction.execute(tenant_id, make_request(schedule_id))

        assert result.limit_warning is True
        assert result.quota.to_dict()["remaining"] == 5
        types = [a.type for a in added(mock_session, Alert)]
        assert AlertType.PLAN_LIMIT_APPROACHING in types

    @pytest.mark.asyncio
    async def test_no_publisher_no_notification(
        self, session_factory, storage, schedule_id, tenant_id
    ):
        transaction = BookingTransaction(
            timezone=TZ, publisher=None, session_factory=session_factory, clock=lambda: NOW
        )
        result = await transaction.execute(tenant_id, make_request(schedule_id))
        assert result.appointment is not None


# ============================================================================
# Test Rejections
# ============================================================================


class TestBookingTransactionRejections:
    @pytest.mark.asyncio
    async def test_conflict_rejected(
        self, transaction, storage, mock_session, publisher, schedule_id, tenant_id
    ):
        existing = SimpleNamespace(
            id=uuid4(),
            schedule_id=schedule_id,
            professional_id=None,
            start_time=START,
            duration_minutes=30,
            status=AppointmentStatus.CONFIRMED,
            end_time=START + timedelta(minutes=30),
        )
        storage.load_conflict_candidates.return_value = [existing]

        with pytest.raises(BookingConflictError) as exc_info:
            await transaction.execute(tenant_id, make_request(schedule_id))

        error = exc_info.value
        assert error.status_code == 409
        assert error.details["conflicting_appointment_id"] == str(existing.id)
        mock_session.commit.assert_not_awaited()
        publisher.publish.assert_not_called()

    @pytest.mark.asyncio
    async def test_lunch_slot_unavailable(self, transaction, storage, schedule_id, tenant_id):
        with pytest.raises(SlotUnavailableError) as exc_info:
            await transaction.execute(
                tenant_id, make_request(schedule_id, start=datetime(2025, 3, 5, 12, 0, tzinfo=TZ))
            )
        assert exc_info.value.error_code == "SLOT_NOT_AVAILABLE"

    @pytest.mark.asyncio
    async def test_off_grid_start_unavailable(self, transaction, storage, schedule_id, tenant_id):
        with pytest.raises(SlotUnavailableError):
            await transaction.execute(
                tenant_id, make_request(schedule_id, start=datetime(2025, 3, 5, 10, 10, tzinfo=TZ))
            )

    @pytest.mark.asyncio
    async def test_past_start_outside_horizon(self, transaction, storage, schedule_id, tenant_id):
        with pytest.raises(SlotUnavailableError):
            await transaction.execute(
                tenant_id, make_request(schedule_id, start=datetime(2025, 2, 26, 10, 0, tzinfo=TZ))
            )

    @pytest.mark.asyncio
    async def test_quota_exceeded(
        self, transaction, storage, mock_session, schedule_id, tenant_id
    ):
        storage.count_month_appointments.return_value = 60

        with pytest.raises(QuotaExceededError) as exc_info:
            await transaction.execute(tenant_id, make_request(schedule_id))

        error = exc_info.value
        assert error.status_code == 403
        assert error.error_code == "APPOINTMENT_LIMIT_REACHED"
        assert error.details == {"current_count": 60, "remaining": 0}
        mock_session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_sub_minute_start_rejected(
        self, transaction, storage, mock_session, schedule_id, tenant_id
    ):
        with pytest.raises(BookingValidationError):
            await transaction.execute(
                tenant_id, make_request(schedule_id, start=START + timedelta(seconds=30))
            )
        mock_session.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_tenant(self, transaction, storage, mock_session, schedule_id, tenant_id):
        mock_session.get = AsyncMock(return_value=None)
        with pytest.raises(NotFoundError):
            await transaction.execute(tenant_id, make_request(schedule_id))

    @pytest.mark.asyncio
    async def test_missing_professional(
        self, transaction, storage, client, schedule_id, tenant_id
    ):
        storage.get_owned.side_effect = [client, NotFoundError("Professional not found")]
        with pytest.raises(NotFoundError):
            await transaction.execute(
                tenant_id, make_request(schedule_id, professional_id=uuid4())
            )

    @pytest.mark.asyncio
    async def test_serialization_failure_is_conflict(
        self, transaction, storage, mock_session, publisher, schedule_id, tenant_id
    ):
        mock_session.commit.side_effect = DBAPIError("COMMIT", {}, SerializationFailure())

        with pytest.raises(BookingConflictError):
            await transaction.execute(tenant_id, make_request(schedule_id))

        mock_session.rollback.assert_awaited_once()
        publisher.publish.assert_not_called()

    @pytest.mark.asyncio
    async def test_serialization_failure_on_flush_is_conflict(
        self, transaction, storage, mock_session, publisher, schedule_id, tenant_id
    ):
        mock_session.flush.side_effect = DBAPIError("INSERT", {}, SerializationFailure())

        with pytest.raises(BookingConflictError) as exc_info:
            await transaction.execute(tenant_id, make_request(schedule_id))

        assert exc_info.value.status_code == 409
        mock_session.rollback.assert_awaited_once()
        mock_session.commit.assert_not_awaited()
        publisher.publish.assert_not_called()

    @pytest.mark.asyncio
    async def test_serialization_failure_on_quota_count_is_conflict(
        self, transaction, storage, mock_session, schedule_id, tenant_id
    ):
        storage.count_month_appointments.side_effect = DBAPIError(
            "SELECT", {}, SerializationFailure()
        )

        with pytest.raises(BookingConflictError):
            await transaction.execute(tenant_id, make_request(schedule_id))

        mock_session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_other_database_error_propagates(
        self, transaction, storage, mock_session, schedule_id, tenant_id
    ):
        mock_session.flush.side_effect = DBAPIError("INSERT", {}, Exception("disk full"))

        with pytest.raises(DBAPIError):
            await transaction.execute(tenant_id, make_request(schedule_id))

        mock_session.rollback.assert_awaited_once()


class TestNonOccupyingStatus:
    @pytest.mark.asyncio
    async def test_cancelled_booking_skips_conflict_and_quota(
        self, transaction, storage, schedule_id, tenant_id
    ):
        storage.count_month_appointments.return_value = 60

        result = await transaction.execute(
            tenant_id, make_request(schedule_id, status=AppointmentStatus.CANCELLED)
        )

        assert result.appointment.status == AppointmentStatus.CANCELLED
        storage.load_conflict_candidates.assert_not_awaited()
        assert result.limit_warning is False


def test_is_serialization_failure():
    assert is_serialization_failure(DBAPIError("COMMIT", {}, SerializationFailure()))
    assert not is_serialization_failure(DBAPIError("COMMIT", {}, Exception("other")))


# ============================================================================
# check_availability
# ============================================================================


class TestCheckAvailability:
    @pytest.mark.asyncio
    async def test_available(self, mock_session, result_factory, tenant_id, schedule_id):
        mock_session.execute.return_value = result_factory(scalars=[])
        request = AvailabilityCheckRequest(schedule_id=schedule_id, start=START, duration=30)

        with patch(f"{MODULE}._get_owned", AsyncMock()):
            assert await check_availability(mock_session, tenant_id, request) == {"available": True}

    @pytest.mark.asyncio
    async def test_conflict(self, mock_session, result_factory, tenant_id, schedule_id):
        existing = SimpleNamespace(
            id=uuid4(),
            schedule_id=schedule_id,
            professional_id=None,
            start_time=START,
            duration_minutes=30,
            status=AppointmentStatus.SCHEDULED,
            end_time=START + timedelta(minutes=30),
        )
        mock_session.execute.return_value = result_factory(scalars=[existing])
        request = AvailabilityCheckRequest(
            schedule_id=schedule_id, start=START + timedelta(minutes=15), duration=30
        )

        with patch(f"{MODULE}._get_owned", AsyncMock()):
            with pytest.raises(BookingConflictError):
                await check_availability(mock_session, tenant_id, request)
