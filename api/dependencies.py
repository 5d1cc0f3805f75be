"""
FastAPI dependency providers.

The composition root: settings are read here and turned into explicit
collaborators (gateway client, dispatcher, publisher, transactions). Tests
replace any of them through app.dependency_overrides.
"""

import logging
from functools import lru_cache
from typing import Annotated
from uuid import UUID
from zoneinfo import ZoneInfo

from fastapi import Depends, Header, HTTPException, status

from scheduling.events import EventPublisher
from scheduling.services.gateway_instance_service import GatewayInstanceService
from scheduling.services.notification_dispatcher import NotificationDispatcher
from scheduling.transactions.booking_transaction import BookingTransaction
from scheduling.transactions.status_transaction import StatusTransaction
from scheduling.workers.reminder_worker import ReminderWorker
from shared.config import Settings, get_settings
from shared.gateway_client import MessagingGatewayClient

logger = logging.getLogger(__name__)


async def get_tenant_id(
    x_tenant_id: Annotated[str | None, Header(alias="X-Tenant-ID")] = None,
) -> UUID:
    """Tenant of the request, resolved upstream by the session layer."""
    if not x_tenant_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing tenant")
    try:
        return UUID(x_tenant_id)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid tenant"
        ) from e


def get_app_settings() -> Settings:
    return get_settings()


def get_timezone(settings: Annotated[Settings, Depends(get_app_settings)]) -> ZoneInfo:
    return ZoneInfo(settings.TIMEZONE)


@lru_cache
def get_gateway_client() -> MessagingGatewayClient:
    return MessagingGatewayClient(get_settings().gateway_config())


@lru_cache
def get_event_publisher() -> EventPublisher:
    """Process-wide publisher; per-appointment ordering needs a single instance."""
    dispatcher = NotificationDispatcher(
        get_gateway_client(), timezone=ZoneInfo(get_settings().TIMEZONE)
    )
    return EventPublisher(dispatcher)


def get_booking_transaction(
    timezone: Annotated[ZoneInfo, Depends(get_timezone)],
    publisher: Annotated[EventPublisher, Depends(get_event_publisher)],
) -> BookingTransaction:
    return BookingTransaction(timezone=timezone, publisher=publisher)


def get_status_transaction(
    publisher: Annotated[EventPublisher, Depends(get_event_publisher)],
) -> StatusTransaction:
    return StatusTransaction(publisher=publisher)


def get_instance_service(
    gateway: Annotated[MessagingGatewayClient, Depends(get_gateway_client)],
    timezone: Annotated[ZoneInfo, Depends(get_timezone)],
) -> GatewayInstanceService:
    return GatewayInstanceService(
        gateway, webhook_url=gateway.config.webhook_url, timezone=timezone
    )


def get_reminder_worker(
    publisher: Annotated[EventPublisher, Depends(get_event_publisher)],
) -> ReminderWorker:
    return ReminderWorker(publisher.dispatcher)
