"""
Gateway instance lifecycle for a tenant.

Each paying tenant owns one messaging gateway instance, paired with a phone by
scanning a QR code. This service provisions the instance, tracks its
connection state (through the gateway and its connection.update webhook),
edits the notification settings and sends test messages.

Instance states shown to the tenant:
- none: no notification config
- pending: QR code issued and not yet expired
- qr_expired: QR code expired before pairing
- connected: paired and online
- error: config exists but has neither connection nor QR code
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.connection import get_async_session
from database.models import AlertType, ConnectionState, NotificationConfig, PlanTier, Tenant
from scheduling.errors import (
    BookingValidationError,
    GatewayUnavailableError,
    InstanceConflictError,
    NotFoundError,
    PlanUpgradeRequiredError,
)
from scheduling.services.alert_service import record_alert
from scheduling.services.template_renderer import (
    DEFAULT_TEMPLATES,
    render_template,
    sample_context,
    template_or_default,
)
from scheduling.validators.notification_validators import NotificationSettingsUpdate, TemplateKind
from shared.gateway_client import CONNECTED_STATES, MessagingGatewayClient, normalize_phone

logger = logging.getLogger(__name__)

INSTANCE_SUFFIX = "agenda"
MAX_NAME_ATTEMPTS = 10

# Lifetime assumed when the gateway does not report qrCodeExpiresAt
QR_CODE_TTL = timedelta(minutes=2)

TEST_MESSAGE_PREFIX = "TEST MESSAGE:"

# Pairing in progress; the stored QR code stays valid
TRANSITIONAL_STATES = {"connecting"}

SETTINGS_FIELDS = (
    "enabled",
    "notify_on_create",
    "create_delay_minutes",
    "create_message",
    "notify_on_cancel",
    "cancel_delay_minutes",
    "cancel_message",
    "notify_confirmation",
    "confirmation_days",
    "confirmation_message",
    "notify_reminder",
    "reminder_hours",
    "reminder_message",
)


def instance_name_candidates(tenant_id: UUID) -> list[str]:
    """{tenant_id}-agenda, then -2 ... -10 suffixes."""
    base = f"{tenant_id}-{INSTANCE_SUFFIX}"
    return [base] + [f"{base}-{n}" for n in range(2, MAX_NAME_ATTEMPTS + 1)]


def instance_state(config: NotificationConfig | None, now: datetime) -> str:
    if config is None:
        return "none"
    if config.is_connected:
        return "connected"
    if config.qr_code:
        if config.qr_code_expires_at is not None and config.qr_code_expires_at <= now:
            return "qr_expired"
        return "pending"
    return "error"


def _parse_expiry(value: Any, now: datetime) -> datetime:
    if isinstance(value, str):
        try:
            expires = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Unparseable qrCodeExpiresAt: {value!r}")
        else:
            return expires if expires.tzinfo else expires.replace(tzinfo=UTC)
    return now + QR_CODE_TTL


def settings_to_dict(config: NotificationConfig) -> dict[str, Any]:
    return {name: getattr(config, name) for name in SETTINGS_FIELDS}


def config_to_dict(config: NotificationConfig | None, now: datetime) -> dict[str, Any]:
    state = instance_state(config, now)
    if config is None:
        return {"state": state}
    return {
        "state": state,
        "instance_name": config.instance_name,
        "phone_number": config.phone_number,
        "qr_code": config.qr_code if state == "pending" else None,
        "qr_code_expires_at": (
            config.qr_code_expires_at.isoformat() if config.qr_code_expires_at else None
        ),
        "settings": settings_to_dict(config),
    }


class GatewayInstanceService:
    """
    Provisioning and settings of a tenant's gateway instance.

    Args:
        gateway: Messaging gateway client
        webhook_url: Callback registered with the gateway for connection events
        timezone: Timezone of the sample date in test messages
        session_factory: Async context manager yielding a session
        clock: Returns the current time (tests pin it)
    """

    def __init__(
        self,
        gateway: MessagingGatewayClient,
        webhook_url: str,
        timezone: ZoneInfo | None = None,
        session_factory: Callable = get_async_session,
        clock: Callable[[], datetime] | None = None,
    ):
        self.gateway = gateway
        self.webhook_url = webhook_url
        self.timezone = timezone
        self.session_factory = session_factory
        self.clock = clock or (lambda: datetime.now(UTC))

    async def _get_config(
        self, session: AsyncSession, tenant_id: UUID
    ) -> NotificationConfig | None:
        result = await session.execute(
            select(NotificationConfig).where(NotificationConfig.tenant_id == tenant_id)
        )
        return result.scalar_one_or_none()

    async def _require_config(self, session: AsyncSession, tenant_id: UUID) -> NotificationConfig:
        config = await self._get_config(session, tenant_id)
        if config is None:
            raise NotFoundError(
                "Messaging instance not configured", details={"tenant_id": str(tenant_id)}
            )
        return config

    async def _unique_instance_name(self, session: AsyncSession, tenant_id: UUID) -> str:
        candidates = instance_name_candidates(tenant_id)
        result = await session.execute(
            select(NotificationConfig.instance_name).where(
                NotificationConfig.instance_name.in_(candidates)
            )
        )
        taken = set(result.scalars().all())
        for name in candidates:
            if name not in taken:
                return name
        raise InstanceConflictError(
            "No instance name available",
            details={"attempts": MAX_NAME_ATTEMPTS},
        )

    async def _provision(
        self,
        session: AsyncSession,
        tenant_id: UUID,
        config: NotificationConfig,
        phone_number: str,
    ) -> NotificationConfig:
        response = await self.gateway.create_instance(
            str(tenant_id), config.instance_name, phone_number, self.webhook_url
        )
        if not response.success:
            raise GatewayUnavailableError(
                "Failed to create messaging instance",
                details={"reason": response.error},
            )

        now = self.clock()
        config.phone_number = phone_number
        if response.is_connected:
            config.connection_state = ConnectionState.CONNECTED
            config.qr_code = None
            config.qr_code_expires_at = None
        else:
            config.connection_state = ConnectionState.DISCONNECTED
            config.qr_code = response.data.get("qrCode")
            config.qr_code_expires_at = _parse_expiry(response.data.get("qrCodeExpiresAt"), now)

        for field_name, default in DEFAULT_TEMPLATES.items():
            if not getattr(config, field_name):
                setattr(config, field_name, default)

        await session.commit()
        return config

    async def provision(self, tenant_id: UUID, phone_number: str) -> dict[str, Any]:
        """
        Create the tenant's gateway instance and return its QR code.

        Raises:
            NotFoundError: Unknown tenant
            PlanUpgradeRequiredError: FREE plan
            BookingValidationError: Invalid phone number
            InstanceConflictError: Already connected, or no free instance name
            GatewayUnavailableError: Gateway rejected the call
        """
        async with self.session_factory() as session:
            tenant = await session.get(Tenant, tenant_id)
            if tenant is None:
                raise NotFoundError("Tenant not found", details={"tenant_id": str(tenant_id)})
            if tenant.plan_tier == PlanTier.FREE:
                raise PlanUpgradeRequiredError(
                    "Messaging notifications are available on paid plans only",
                    details={"plan_tier": tenant.plan_tier.value},
                )

            number = normalize_phone(phone_number, self.gateway.config.default_region)
            if number is None:
                raise BookingValidationError(
                    "Invalid phone number",
                    details={"fields": {"phone_number": "not a valid phone number"}},
                )

            config = await self._get_config(session, tenant_id)
            if config is not None and config.is_connected:
                raise InstanceConflictError(
                    "Messaging instance already connected",
                    details={"instance_name": config.instance_name},
                )
            if config is None:
                config = NotificationConfig(
                    tenant_id=tenant_id,
                    instance_name=await self._unique_instance_name(session, tenant_id),
                    enabled=True,
                    connection_state=ConnectionState.DISCONNECTED,
                )
                session.add(config)

            config = await self._provision(session, tenant_id, config, number)

        logger.info(
            f"Messaging instance {config.instance_name} provisioned",
            extra={"tenant_id": str(tenant_id), "instance_name": config.instance_name},
        )
        return config_to_dict(config, self.clock())

    async def refresh_qr(self, tenant_id: UUID) -> dict[str, Any]:
        """Issue a new QR code for an existing, unpaired instance."""
        async with self.session_factory() as session:
            config = await self._require_config(session, tenant_id)
            if config.is_connected:
                raise InstanceConflictError(
                    "Messaging instance already connected",
                    details={"instance_name": config.instance_name},
                )
            if not config.phone_number:
                raise BookingValidationError(
                    "Instance has no phone number",
                    details={"fields": {"phone_number": "missing"}},
                )
            config = await self._provision(session, tenant_id, config, config.phone_number)
        return config_to_dict(config, self.clock())

    async def get_status(self, tenant_id: UUID) -> dict[str, Any]:
        async with self.session_factory() as session:
            config = await self._get_config(session, tenant_id)
        return config_to_dict(config, self.clock())

    async def sync_status(self, tenant_id: UUID) -> dict[str, Any]:
        """
        Ask the gateway for the connection state and persist a change.

        Gateway failures keep the stored state.
        """
        async with self.session_factory() as session:
            config = await self._get_config(session, tenant_id)
            if config is None:
                return config_to_dict(None, self.clock())

            response = await self.gateway.get_connection_state(
                str(tenant_id), config.instance_name
            )
            if response.success and response.state is not None:
                new_state = (
                    ConnectionState.CONNECTED
                    if response.is_connected
                    else ConnectionState.DISCONNECTED
                )
                if new_state != config.connection_state:
                    logger.info(
                        f"Instance {config.instance_name}: {config.connection_state.value} "
                        f"-> {new_state.value}",
                        extra={"tenant_id": str(tenant_id)},
                    )
                    config.connection_state = new_state
                    if new_state == ConnectionState.CONNECTED:
                        config.qr_code = None
                        config.qr_code_expires_at = None
                    await session.commit()

        return config_to_dict(config, self.clock())

    async def delete(self, tenant_id: UUID) -> None:
        """Remove the gateway instance, then the config."""
        async with self.session_factory() as session:
            config = await self._require_config(session, tenant_id)

            response = await self.gateway.delete_instance(str(tenant_id), config.instance_name)
            if not response.success:
                raise GatewayUnavailableError(
                    "Failed to delete messaging instance",
                    details={"reason": response.error},
                )

            await session.delete(config)
            await session.commit()

        logger.info(
            f"Messaging instance {config.instance_name} deleted",
            extra={"tenant_id": str(tenant_id)},
        )

    async def update_settings(
        self, tenant_id: UUID, update: NotificationSettingsUpdate
    ) -> dict[str, Any]:
        async with self.session_factory() as session:
            config = await self._require_config(session, tenant_id)
            for name, value in update.model_dump().items():
                if name.endswith("_message") and isinstance(value, str):
                    value = value.strip() or None
                setattr(config, name, value)
            await session.commit()
        return config_to_dict(config, self.clock())

    async def send_test_message(self, tenant_id: UUID, kind: TemplateKind) -> dict[str, Any]:
        """
        Render a template with sample data and send it to the tenant's own number.

        Raises:
            NotFoundError: No config
            InstanceConflictError: Instance not connected
            GatewayUnavailableError: Delivery failed after retries
        """
        async with self.session_factory() as session:
            config = await self._require_config(session, tenant_id)

        if not config.is_connected:
            raise InstanceConflictError(
                "Messaging instance not connected",
                details={"instance_name": config.instance_name},
                error_code="GATEWAY_NOT_CONNECTED",
            )

        field_name = f"{kind}_message"
        template = template_or_default(getattr(config, field_name), field_name)
        sample_start = datetime.now(self.timezone) + timedelta(days=1)
        message = f"{TEST_MESSAGE_PREFIX} {render_template(template, sample_context(sample_start))}"

        delivered = await self.gateway.send(
            config.instance_name,
            config.phone_number or "",
            message,
            tenant_id=str(tenant_id),
        )
        if not delivered:
            raise GatewayUnavailableError(
                "Failed to send test message",
                details={"instance_name": config.instance_name},
            )
        return {"sent": True, "message": message}

    async def handle_connection_update(
        self, instance_name: str, state: str | None
    ) -> NotificationConfig | None:
        """
        Apply a connection.update event from the gateway webhook.

        open/connected marks the instance connected; connecting is ignored.
        Anything else marks it
        disconnected and drops the stored QR code; an enabled instance that was
        connected also records a gateway_disconnected alert.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(NotificationConfig).where(NotificationConfig.instance_name == instance_name)
            )
            config = result.scalar_one_or_none()
            if config is None:
                logger.warning(f"connection.update for unknown instance {instance_name}")
                return None

            normalized = (state or "").lower()
            if normalized in TRANSITIONAL_STATES:
                logger.debug(f"Instance {instance_name} is {normalized}")
                return config

            was_connected = config.is_connected
            config.qr_code = None
            config.qr_code_expires_at = None

            if normalized in CONNECTED_STATES:
                config.connection_state = ConnectionState.CONNECTED
            else:
                config.connection_state = ConnectionState.DISCONNECTED
                if was_connected and config.enabled:
                    record_alert(
                        session,
                        config.tenant_id,
                        AlertType.GATEWAY_DISCONNECTED,
                        "Messaging disconnected",
                        "Your messaging instance was disconnected. "
                        "Reconnect it to keep sending notifications.",
                        metadata={"instance_name": instance_name, "state": state},
                    )

            await session.commit()

        logger.info(
            f"Instance {instance_name} connection update: {state}",
            extra={"tenant_id": str(config.tenant_id), "instance_name": instance_name},
        )
        return config
