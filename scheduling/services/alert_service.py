"""
In-app alerts for the tenant dashboard.

record_alert() only adds the row to the caller's session so the alert
commits (or rolls back) together with the change it reports.
"""

import logging
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import Alert, AlertType

logger = logging.getLogger(__name__)

# Listing cap for the dashboard
MAX_ALERTS = 50


def record_alert(
    session: AsyncSession,
    tenant_id: UUID,
    alert_type: AlertType,
    title: str,
    message: str,
    appointment_id: UUID | None = None,
    metadata: dict[str, Any] | None = None,
) -> Alert:
    alert = Alert(
        tenant_id=tenant_id,
        type=alert_type,
        title=title,
        message=message,
        appointment_id=appointment_id,
        metadata_=metadata or {},
    )
    session.add(alert)
    logger.debug(
        f"Alert recorded: {alert_type.value}",
        extra={"tenant_id": str(tenant_id)},
    )
    return alert


async def list_alerts(
    session: AsyncSession, tenant_id: UUID, unread_only: bool = False
) -> list[Alert]:
    stmt = select(Alert).where(Alert.tenant_id == tenant_id)
    if unread_only:
        stmt = stmt.where(Alert.is_read.is_(False))
    stmt = stmt.order_by(Alert.created_at.desc()).limit(MAX_ALERTS)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def mark_read(session: AsyncSession, tenant_id: UUID, alert_id: UUID) -> bool:
    """Mark one alert as read. Returns False when it does not belong to the tenant."""
    result = await session.execute(
        update(Alert)
        .where(Alert.id == alert_id, Alert.tenant_id == tenant_id)
        .values(is_read=True, read_at=datetime.now(UTC))
    )
    await session.commit()
    return result.rowcount > 0


async def mark_all_read(session: AsyncSession, tenant_id: UUID) -> int:
    result = await session.execute(
        update(Alert)
        .where(Alert.tenant_id == tenant_id, Alert.is_read.is_(False))
        .values(is_read=True, read_at=datetime.now(UTC))
    )
    await session.commit()
    return result.rowcount


def alert_to_dict(alert: Alert) -> dict[str, Any]:
    return {
        "id": str(alert.id),
        "type": alert.type.value,
        "title": alert.title,
        "message": alert.message,
        "appointment_id": str(alert.appointment_id) if alert.appointment_id else None,
        "metadata": alert.metadata_ or {},
        "is_read": alert.is_read,
        "created_at": alert.created_at.isoformat() if alert.created_at else None,
    }
