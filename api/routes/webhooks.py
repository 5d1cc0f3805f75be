"""
Messaging gateway webhook.

Receives connection.update events for gateway instances. Other events are
acknowledged and ignored.
"""

import hmac
import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Header, HTTPException, status

from api.dependencies import get_app_settings, get_instance_service
from api.models.gateway_webhook import GatewayWebhookPayload
from scheduling.services.gateway_instance_service import GatewayInstanceService
from shared.config import Settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

CONNECTION_UPDATE = "connection.update"


def verify_webhook_secret(
    settings: Annotated[Settings, Depends(get_app_settings)],
    x_webhook_secret: Annotated[str | None, Header(alias="x-webhook-secret")] = None,
) -> None:
    expected = settings.GATEWAY_WEBHOOK_SECRET
    if not expected:
        return
    if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret, expected):
        logger.warning("Gateway webhook received with invalid secret")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid secret")


@router.post("/gateway", dependencies=[Depends(verify_webhook_secret)])
async def gateway_webhook(
    payload: GatewayWebhookPayload,
    service: Annotated[GatewayInstanceService, Depends(get_instance_service)],
):
    if payload.normalized_event != CONNECTION_UPDATE:
        logger.debug(f"Ignoring gateway event {payload.event}")
        return {"status": "ignored"}

    if not payload.instance_name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing instance")

    config = await service.handle_connection_update(payload.instance_name, payload.state)
    if config is None:
        return {"status": "unknown_instance"}
    return {"status": "ok", "connection_state": config.connection_state.value}
