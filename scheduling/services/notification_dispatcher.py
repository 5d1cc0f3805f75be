"""
Notification Dispatch Engine.

Decides whether an appointment event produces an outbound message, renders
the tenant's template and hands it to the messaging gateway.

Preconditions, checked in order before any network call:
1. the tenant has a notification config
2. the config is enabled
3. the gateway instance is connected
4. the toggle for the event is on
5. the client has a phone number

dispatch() never raises: every failure is logged and reported as a
DispatchOutcome with status "failed".
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import select

from database.connection import get_async_session
from database.models import NotificationConfig
from scheduling.services.template_renderer import (
    TemplateContext,
    render_template,
    template_or_default,
)
from shared.gateway_client import MessagingGatewayClient

logger = logging.getLogger(__name__)


class NotificationEvent(str, Enum):
    """Appointment events that can trigger a message."""

    CREATED = "created"
    CANCELLED = "cancelled"
    CONFIRMED = "confirmed"
    REMINDER = "reminder"


@dataclass(frozen=True)
class EventFields:
    toggle: str
    template: str
    delay: str | None = None


EVENT_FIELDS: dict[NotificationEvent, EventFields] = {
    NotificationEvent.CREATED: EventFields(
        "notify_on_create", "create_message", "create_delay_minutes"
    ),
    NotificationEvent.CANCELLED: EventFields(
        "notify_on_cancel", "cancel_message", "cancel_delay_minutes"
    ),
    NotificationEvent.CONFIRMED: EventFields("notify_confirmation", "confirmation_message"),
    NotificationEvent.REMINDER: EventFields("notify_reminder", "reminder_message"),
}


class DispatchStatus(str, Enum):
    SENT = "sent"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class DispatchOutcome:
    """Result of one dispatch attempt."""

    status: DispatchStatus
    reason: str | None = None

    @classmethod
    def sent(cls) -> "DispatchOutcome":
        return cls(DispatchStatus.SENT)

    @classmethod
    def skipped(cls, reason: str) -> "DispatchOutcome":
        return cls(DispatchStatus.SKIPPED, reason)

    @classmethod
    def failed(cls, reason: str) -> "DispatchOutcome":
        return cls(DispatchStatus.FAILED, reason)


@dataclass
class NotificationContext:
    """Data about the appointment's parties, captured when the event is published."""

    client_name: str
    client_phone: str | None = None
    service_name: str | None = None
    professional_name: str | None = None
    business_name: str | None = None

    def template_context(self, start_time: datetime) -> TemplateContext:
        return TemplateContext(
            client_name=self.client_name,
            start_time=start_time,
            service_name=self.service_name,
            professional_name=self.professional_name,
            business_name=self.business_name,
        )


class NotificationDispatcher:
    """
    Dispatches appointment events to the messaging gateway.

    Args:
        gateway: Messaging gateway client
        timezone: Timezone used to render {{date}} and {{time}}
        session_factory: Async context manager yielding a session; the config
            is read through it on every dispatch
    """

    def __init__(
        self,
        gateway: MessagingGatewayClient,
        timezone: ZoneInfo | None = None,
        session_factory: Callable = get_async_session,
    ):
        self.gateway = gateway
        self.timezone = timezone
        self.session_factory = session_factory

    async def load_config(self, tenant_id: UUID) -> NotificationConfig | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(NotificationConfig).where(NotificationConfig.tenant_id == tenant_id)
            )
            return result.scalar_one_or_none()

    def _check_preconditions(
        self,
        config: NotificationConfig | None,
        fields: EventFields,
        context: NotificationContext,
    ) -> str | None:
        if config is None:
            return "no notification config"
        if not config.enabled:
            return "notifications disabled"
        if not config.is_connected:
            return "gateway not connected"
        if not getattr(config, fields.toggle):
            return f"{fields.toggle} is off"
        if not context.client_phone:
            return "client has no phone number"
        return None

    async def dispatch(
        self,
        event: NotificationEvent,
        appointment,
        context: NotificationContext,
    ) -> DispatchOutcome:
        """
        Dispatch one event for an appointment.

        Args:
            event: created | cancelled | confirmed | reminder
            appointment: Appointment or AppointmentSnapshot (id, tenant_id, start_time)
            context: Client, service, professional and business names

        Returns:
            DispatchOutcome (sent / skipped / failed)
        """
        log_extra = {
            "tenant_id": str(appointment.tenant_id),
            "appointment_id": str(appointment.id),
            "event": getattr(event, "value", str(event)),
        }

        try:
            event = NotificationEvent(event)
            fields = EVENT_FIELDS[event]
            config = await self.load_config(appointment.tenant_id)

            reason = self._check_preconditions(config, fields, context)
            if reason:
                logger.info(f"Notification skipped: {reason}", extra=log_extra)
                return DispatchOutcome.skipped(reason)

            template = template_or_default(getattr(config, fields.template), fields.template)
            start_time = appointment.start_time
            if self.timezone is not None and start_time.tzinfo is not None:
                start_time = start_time.astimezone(self.timezone)
            message = render_template(template, context.template_context(start_time))
            delay = getattr(config, fields.delay) if fields.delay else 0

            delivered = await self.gateway.send(
                config.instance_name,
                context.client_phone,
                message,
                tenant_id=str(appointment.tenant_id),
                delay_minutes=delay or 0,
            )
        except Exception as e:
            logger.error(f"Notification dispatch error: {e}", exc_info=True, extra=log_extra)
            return DispatchOutcome.failed(str(e))

        if not delivered:
            logger.error("Notification delivery failed", extra=log_extra)
            return DispatchOutcome.failed("gateway delivery failed")

        logger.info("Notification sent", extra=log_extra)
        return DispatchOutcome.sent()
