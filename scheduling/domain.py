"""
Scheduling domain types.

Plain dataclasses decoupled from the ORM so slot generation and conflict
detection stay pure and testable without a database. Builders at the bottom
convert ORM rows (database.models) into these types.

Weekday numbering follows the stored configuration: 0=Sunday ... 6=Saturday.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Protocol
from uuid import UUID
from zoneinfo import ZoneInfo

from database.models import AppointmentStatus
from scheduling.errors import ScheduleConfigError


def weekday_number(day: date) -> int:
    """Weekday of a date with 0=Sunday, matching Schedule.working_days."""
    return (day.weekday() + 1) % 7


def parse_hhmm(value: str | time) -> time:
    """Parse an "HH:MM" string (or pass through a time)."""
    if isinstance(value, time):
        return value
    try:
        hours, minutes = value.split(":")[:2]
        return time(int(hours), int(minutes))
    except (ValueError, AttributeError) as e:
        raise ScheduleConfigError(
            f"Invalid time value: {value!r}", details={"value": str(value)}
        ) from e


def minutes_of(value: time) -> int:
    return value.hour * 60 + value.minute


@dataclass(frozen=True)
class TimeWindow:
    """Working window within a day, [start, end)."""

    start: time
    end: time

    def __post_init__(self):
        if self.start >= self.end:
            raise ScheduleConfigError(
                "Working window start must be before its end",
                details={"start": self.start.isoformat(), "end": self.end.isoformat()},
            )


@dataclass(frozen=True)
class DayOverride:
    """Per-weekday replacement of the schedule hours."""

    weekday: int
    is_open: bool = True
    windows: tuple[TimeWindow, ...] = ()

    def __post_init__(self):
        if not 0 <= self.weekday <= 6:
            raise ScheduleConfigError(
                f"Invalid weekday {self.weekday}", details={"weekday": self.weekday}
            )


@dataclass(frozen=True)
class DateBlock:
    """Range of time during which the schedule accepts no bookings."""

    start: datetime
    end: datetime
    reason: str | None = None

    @classmethod
    def for_dates(
        cls,
        first: date,
        last: date,
        reason: str | None = None,
        tzinfo: ZoneInfo | None = None,
    ) -> "DateBlock":
        """Block whole days, first through last inclusive."""
        return cls(
            start=datetime.combine(first, time.min, tzinfo=tzinfo),
            end=datetime.combine(last + timedelta(days=1), time.min, tzinfo=tzinfo),
            reason=reason,
        )

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return start < self.end and end > self.start


@dataclass(frozen=True)
class Slot:
    """Candidate start time of a booking."""

    start: time
    available: bool = True

    @property
    def label(self) -> str:
        return self.start.strftime("%H:%M")

    def to_dict(self) -> dict:
        return {"time": self.label, "available": self.available}


@dataclass(frozen=True)
class ScheduleConfig:
    """
    Working-hour configuration of a schedule.

    Validated at construction; an invalid configuration raises
    ScheduleConfigError.
    """

    working_days: frozenset[int]
    start_time: time
    end_time: time
    slot_duration: int
    buffer_time: int = 0
    lunch_start: time | None = None
    lunch_end: time | None = None
    use_custom_day_config: bool = False
    overrides: tuple[DayOverride, ...] = ()
    blocks: tuple[DateBlock, ...] = ()
    min_notice_hours: int = 0
    advance_booking_days: int | None = None
    timezone: ZoneInfo | None = None
    id: UUID | None = None
    tenant_id: UUID | None = None

    def __post_init__(self):
        object.__setattr__(self, "working_days", frozenset(self.working_days))

        if self.start_time >= self.end_time:
            raise ScheduleConfigError(
                "Schedule start time must be before end time",
                details={
                    "start_time": self.start_time.isoformat(),
                    "end_time": self.end_time.isoformat(),
                },
            )
        if self.slot_duration <= 0:
            raise ScheduleConfigError(
                "Slot duration must be positive",
                details={"slot_duration": self.slot_duration},
            )
        if self.buffer_time < 0:
            raise ScheduleConfigError(
                "Buffer time cannot be negative",
                details={"buffer_time": self.buffer_time},
            )
        if any(not 0 <= day <= 6 for day in self.working_days):
            raise ScheduleConfigError(
                "Working days must be between 0 (Sunday) and 6 (Saturday)",
                details={"working_days": sorted(self.working_days)},
            )
        if (self.lunch_start is None) != (self.lunch_end is None):
            raise ScheduleConfigError("Lunch window requires both start and end")
        if self.lunch_start is not None:
            if not (
                self.start_time <= self.lunch_start < self.lunch_end <= self.end_time
            ):
                raise ScheduleConfigError(
                    "Lunch window must lie within working hours",
                    details={
                        "lunch_start": self.lunch_start.isoformat(),
                        "lunch_end": self.lunch_end.isoformat(),
                    },
                )

    def at(self, day: date, moment: time) -> datetime:
        """Datetime of a wall-clock time on a date, in the schedule timezone."""
        return datetime.combine(day, moment, tzinfo=self.timezone)

    @property
    def has_lunch(self) -> bool:
        return self.lunch_start is not None

    def override_for(self, weekday: int) -> DayOverride | None:
        for override in self.overrides:
            if override.weekday == weekday:
                return override
        return None

    def windows_for(self, day: date) -> list[TimeWindow]:
        """
        Working windows of a date; empty when the day is closed.

        Default hours are split around the lunch window. Custom day windows
        already define the day's gaps and ignore the schedule lunch.
        """
        weekday = weekday_number(day)

        if self.use_custom_day_config:
            override = self.override_for(weekday)
            if override is None or not override.is_open:
                return []
            return list(override.windows)

        if weekday not in self.working_days:
            return []
        if not self.has_lunch:
            return [TimeWindow(self.start_time, self.end_time)]

        windows = []
        if self.start_time < self.lunch_start:
            windows.append(TimeWindow(self.start_time, self.lunch_start))
        if self.lunch_end < self.end_time:
            windows.append(TimeWindow(self.lunch_end, self.end_time))
        return windows

    def blocks_overlapping(self, start: datetime, end: datetime) -> list[DateBlock]:
        return [block for block in self.blocks if block.overlaps(start, end)]


class AppointmentLike(Protocol):
    """Shape required by the conflict detector; satisfied by database.models.Appointment."""

    schedule_id: UUID | None
    professional_id: UUID | None
    start_time: datetime
    duration_minutes: int
    status: AppointmentStatus


@dataclass
class BookingCandidate:
    """Interval a caller wants to book."""

    schedule_id: UUID | None
    start_time: datetime
    duration_minutes: int
    professional_id: UUID | None = None
    status: AppointmentStatus = AppointmentStatus.SCHEDULED

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration_minutes)


def within_booking_horizon(config: ScheduleConfig, start: datetime, now: datetime) -> bool:
    """Whether a start time respects the schedule's minimum notice and advance limit."""
    if start < now + timedelta(hours=config.min_notice_hours):
        return False
    if config.advance_booking_days is not None:
        return start <= now + timedelta(days=config.advance_booking_days)
    return True


# ============================================================================
# ORM -> domain builders
# ============================================================================


def schedule_config_from_model(
    schedule, day_configs=None, blocks=None, timezone: ZoneInfo | None = None
) -> ScheduleConfig:
    """
    Build a ScheduleConfig from a Schedule row and its child rows.

    day_configs / blocks default to the loaded relationships of the schedule.
    """
    if day_configs is None:
        day_configs = schedule.day_configs
    if blocks is None:
        blocks = schedule.blocks

    overrides = tuple(
        DayOverride(
            weekday=dc.day_of_week,
            is_open=dc.is_active,
            windows=tuple(
                TimeWindow(parse_hhmm(w["startTime"]), parse_hhmm(w["endTime"]))
                for w in (dc.time_slots or [])
            ),
        )
        for dc in day_configs
    )

    return ScheduleConfig(
        id=schedule.id,
        tenant_id=schedule.tenant_id,
        working_days=frozenset(schedule.working_days or []),
        start_time=schedule.start_time,
        end_time=schedule.end_time,
        slot_duration=schedule.slot_duration,
        buffer_time=schedule.buffer_time or 0,
        lunch_start=schedule.lunch_start,
        lunch_end=schedule.lunch_end,
        use_custom_day_config=schedule.use_custom_day_config,
        overrides=overrides,
        blocks=tuple(
            DateBlock(start=b.start_date, end=b.end_date, reason=b.reason) for b in blocks
        ),
        min_notice_hours=schedule.min_notice_hours or 0,
        advance_booking_days=schedule.advance_booking_days,
        timezone=timezone,
    )


@dataclass
class AppointmentSnapshot:
    """Detached copy of the appointment fields needed after the session closes."""

    id: UUID
    tenant_id: UUID
    schedule_id: UUID | None
    professional_id: UUID | None
    client_id: UUID
    service_id: UUID | None
    start_time: datetime
    duration_minutes: int
    status: AppointmentStatus

    @classmethod
    def from_model(cls, appointment) -> "AppointmentSnapshot":
        return cls(
            id=appointment.id,
            tenant_id=appointment.tenant_id,
            schedule_id=appointment.schedule_id,
            professional_id=appointment.professional_id,
            client_id=appointment.client_id,
            service_id=appointment.service_id,
            start_time=appointment.start_time,
            duration_minutes=appointment.duration_minutes,
            status=appointment.status,
        )
