"""
SQLAlchemy ORM models for the scheduling core.

This module defines the tables the core reads and writes:
- tenants: business accounts with their plan tier
- schedules / schedule_day_configs / schedule_blocks: working-hour configuration
- services: bookable offerings with duration and price
- clients / professionals: referenced by appointments (id lookup only)
- appointments: bookings with lifecycle status
- notification_configs: per-tenant messaging gateway settings and templates
- alerts: in-app notifications for the tenant dashboard

All models use:
- UUID primary keys (auto-generated)
- TIMESTAMP WITH TIME ZONE for datetime fields
- tenant_id on every tenant-owned row
"""

from datetime import datetime, time, timedelta
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    ARRAY,
    TIME,
    TIMESTAMP,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy import (
    Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# ============================================================================
# Base Class
# ============================================================================


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


# ============================================================================
# Enums
# ============================================================================


class AppointmentStatus(PyEnum):
    """Appointment lifecycle status."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    def __str__(self):
        return self.value

    @property
    def occupies_time(self) -> bool:
        """Whether an appointment in this status blocks its interval."""
        return STATUS_OCCUPIES_TIME[self]

    @classmethod
    def occupying(cls) -> list["AppointmentStatus"]:
        """Statuses counted for conflicts and monthly quota."""
        return [status for status in cls if status.occupies_time]


# Cancelled and no-show bookings release their slot and do not count toward quota
STATUS_OCCUPIES_TIME: dict[AppointmentStatus, bool] = {
    AppointmentStatus.SCHEDULED: True,
    AppointmentStatus.CONFIRMED: True,
    AppointmentStatus.IN_PROGRESS: True,
    AppointmentStatus.COMPLETED: True,
    AppointmentStatus.CANCELLED: False,
    AppointmentStatus.NO_SHOW: False,
}


class PlanTier(str, PyEnum):
    """Subscription level of a tenant."""

    FREE = "FREE"
    STANDARD = "STANDARD"
    PREMIUM = "PREMIUM"


class ModalityType(str, PyEnum):
    """Where the appointment takes place."""

    IN_PERSON = "in_person"
    ONLINE = "online"


class ConnectionState(str, PyEnum):
    """Connection state of a tenant's messaging gateway instance."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


# ============================================================================
# Core Models
# ============================================================================


class Tenant(Base):
    """Business account owning schedules, services and appointments."""

    __tablename__ = "tenants"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    business_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    plan_tier: Mapped[PlanTier] = mapped_column(
        SQLEnum(PlanTier, name="plan_tier", create_type=True),
        default=PlanTier.FREE,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=datetime.utcnow, nullable=False
    )

    def __repr__(self) -> str:
        return f"<Tenant(id={self.id}, plan='{self.plan_tier.value}')>"


class Schedule(Base):
    """
    Schedule model - Working-hour configuration of a bookable agenda.

    working_days uses 0=Sunday ... 6=Saturday.
    Times are wall-clock times in the application timezone.
    """

    __tablename__ = "schedules"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    tenant_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    working_days: Mapped[list[int]] = mapped_column(
        ARRAY(Integer), default=list, nullable=False
    )
    start_time: Mapped[time] = mapped_column(TIME, nullable=False)
    end_time: Mapped[time] = mapped_column(TIME, nullable=False)
    slot_duration: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    buffer_time: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    lunch_start: Mapped[time | None] = mapped_column(TIME, nullable=True)
    lunch_end: Mapped[time | None] = mapped_column(TIME, nullable=True)
    use_custom_day_config: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    min_notice_hours: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    advance_booking_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    day_configs: Mapped[list["ScheduleDayConfig"]] = relationship(
        "ScheduleDayConfig", back_populates="schedule", cascade="all, delete-orphan"
    )
    blocks: Mapped[list["ScheduleBlock"]] = relationship(
        "ScheduleBlock", back_populates="schedule", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="check_schedule_hours"),
        CheckConstraint("slot_duration > 0", name="check_slot_duration_positive"),
        CheckConstraint("buffer_time >= 0", name="check_buffer_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Schedule(id={self.id}, name='{self.name}')>"


class ScheduleDayConfig(Base):
    """
    Per-weekday override of a schedule's hours.

    time_slots holds a list of {"startTime": "HH:MM", "endTime": "HH:MM"} windows.
    """

    __tablename__ = "schedule_day_configs"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    schedule_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("schedules.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    day_of_week: Mapped[int] = mapped_column(
        Integer,
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="valid_override_day"),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    time_slots: Mapped[list[dict]] = mapped_column(JSONB, default=list, nullable=False)

    schedule: Mapped["Schedule"] = relationship("Schedule", back_populates="day_configs")

    def __repr__(self) -> str:
        return f"<ScheduleDayConfig(schedule={self.schedule_id}, day={self.day_of_week})>"


class ScheduleBlock(Base):
    """Date range during which a schedule accepts no bookings."""

    __tablename__ = "schedule_blocks"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    schedule_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("schedules.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    start_date: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(200), nullable=True)

    schedule: Mapped["Schedule"] = relationship("Schedule", back_populates="blocks")

    __table_args__ = (
        CheckConstraint("start_date <= end_date", name="check_block_range"),
    )


class Service(Base):
    """Service model - Bookable offering with duration and price."""

    __tablename__ = "services"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    tenant_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    schedule_ids: Mapped[list[UUID]] = mapped_column(
        ARRAY(PGUUID(as_uuid=True)), default=list, nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="check_duration_positive"),
    )

    def __repr__(self) -> str:
        return f"<Service(id={self.id}, name='{self.name}')>"


class Client(Base):
    """Client of a tenant; phone is stored as typed by the operator."""

    __tablename__ = "clients"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    tenant_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)

    def __repr__(self) -> str:
        return f"<Client(id={self.id}, name='{self.name}')>"


class Professional(Base):
    """Professional who can be assigned to appointments on a shared schedule."""

    __tablename__ = "professionals"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    tenant_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


# ============================================================================
# Transactional Models
# ============================================================================


class Appointment(Base):
    """
    Appointment model - Booking with lifecycle status.

    References client, service, professional and schedule by id only.
    Occupancy for conflicts and quota is derived from AppointmentStatus.occupies_time.
    """

    __tablename__ = "appointments"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    tenant_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    schedule_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("schedules.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    professional_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("professionals.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    client_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("clients.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    service_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("services.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Scheduling
    start_time: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), nullable=False, index=True
    )
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    # Note: values_callable ensures SQLAlchemy stores enum .value ("scheduled")
    status: Mapped[AppointmentStatus] = mapped_column(
        SQLEnum(
            AppointmentStatus,
            name="appointment_status",
            create_type=True,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=AppointmentStatus.SCHEDULED,
        nullable=False,
        index=True,
    )
    modality: Mapped[ModalityType] = mapped_column(
        SQLEnum(
            ModalityType,
            name="modality_type",
            create_type=True,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=ModalityType.IN_PERSON,
        nullable=False,
    )
    price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Notification tracking
    confirmation_sent_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    reminder_sent_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    client: Mapped["Client"] = relationship("Client", foreign_keys=[client_id])
    service: Mapped[Optional["Service"]] = relationship("Service", foreign_keys=[service_id])
    professional: Mapped[Optional["Professional"]] = relationship(
        "Professional", foreign_keys=[professional_id]
    )
    tenant: Mapped["Tenant"] = relationship("Tenant", foreign_keys=[tenant_id])

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="check_appointment_duration_positive"),
        # Conflict lookups: schedule + professional + start
        Index(
            "idx_appointments_schedule_professional_start",
            "schedule_id",
            "professional_id",
            "start_time",
        ),
        # Quota counting per tenant and month
        Index("idx_appointments_tenant_start", "tenant_id", "start_time"),
    )

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration_minutes)

    def __repr__(self) -> str:
        return f"<Appointment(id={self.id}, tenant_id={self.tenant_id}, status='{self.status.value}')>"


class NotificationConfig(Base):
    """
    Messaging gateway configuration of a tenant.

    One row per tenant. Holds the gateway instance, its connection state and
    toggle/delay/template for each notification event.
    """

    __tablename__ = "notification_configs"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    tenant_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    instance_name: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(30), nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    connection_state: Mapped[ConnectionState] = mapped_column(
        SQLEnum(
            ConnectionState,
            name="connection_state",
            create_type=True,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=ConnectionState.DISCONNECTED,
        nullable=False,
    )
    qr_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    qr_code_expires_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    notify_on_create: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    create_delay_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    create_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    notify_on_cancel: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    cancel_delay_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cancel_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    notify_confirmation: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    confirmation_days: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    confirmation_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    notify_reminder: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    reminder_hours: Mapped[int] = mapped_column(Integer, default=24, nullable=False)
    reminder_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
        nullable=False,
    )

    @property
    def is_connected(self) -> bool:
        return self.connection_state == ConnectionState.CONNECTED

    def __repr__(self) -> str:
        return f"<NotificationConfig(tenant_id={self.tenant_id}, state='{self.connection_state.value}')>"


class AlertType(str, PyEnum):
    """Type of in-app notification shown to the tenant."""

    APPOINTMENT_CREATED = "appointment_created"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    PLAN_LIMIT_APPROACHING = "plan_limit_approaching"
    GATEWAY_DISCONNECTED = "gateway_disconnected"


class Alert(Base):
    """
    In-app notification for the tenant's dashboard.

    Written inside the same transaction as the change it reports.
    """

    __tablename__ = "alerts"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    tenant_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[AlertType] = mapped_column(
        SQLEnum(
            AlertType,
            name="alert_type",
            create_type=True,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    appointment_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("appointments.id", ondelete="SET NULL"),
        nullable=True,
    )
    metadata_: Mapped[dict] = mapped_column("metadata", JSONB, default=dict, nullable=False)

    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index("idx_alerts_tenant_unread", "tenant_id", "is_read"),
    )
