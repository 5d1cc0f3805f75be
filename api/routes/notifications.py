"""
Messaging notification endpoints.

Instance provisioning (QR pairing), connection status, settings and test
messages for the tenant's gateway instance.
"""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status

from api.dependencies import get_instance_service, get_tenant_id
from scheduling.services.gateway_instance_service import GatewayInstanceService
from scheduling.validators.notification_validators import (
    CreateInstanceRequest,
    NotificationSettingsUpdate,
    SampleMessageRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


@router.post("/instance")
async def create_instance(
    tenant_id: Annotated[UUID, Depends(get_tenant_id)],
    service: Annotated[GatewayInstanceService, Depends(get_instance_service)],
    request: CreateInstanceRequest,
):
    """
    Provision the tenant's gateway instance.

    **Returns:** instance status with the QR code to scan (state "pending").

    **Errors:**
    - **400**: Invalid phone number
    - **403**: PLAN_UPGRADE_REQUIRED
    - **409**: Instance already connected
    - **502**: Gateway failure
    """
    return await service.provision(tenant_id, request.phone_number)


@router.post("/instance/refresh")
async def refresh_qr_code(
    tenant_id: Annotated[UUID, Depends(get_tenant_id)],
    service: Annotated[GatewayInstanceService, Depends(get_instance_service)],
):
    return await service.refresh_qr(tenant_id)


@router.get("/status")
async def get_status(
    tenant_id: Annotated[UUID, Depends(get_tenant_id)],
    service: Annotated[GatewayInstanceService, Depends(get_instance_service)],
    sync: bool = True,
):
    """Instance state; with sync=true the gateway is asked first."""
    if sync:
        return await service.sync_status(tenant_id)
    return await service.get_status(tenant_id)


@router.delete("/instance", status_code=status.HTTP_204_NO_CONTENT)
async def delete_instance(
    tenant_id: Annotated[UUID, Depends(get_tenant_id)],
    service: Annotated[GatewayInstanceService, Depends(get_instance_service)],
) -> Response:
    await service.delete(tenant_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/settings")
async def update_settings(
    tenant_id: Annotated[UUID, Depends(get_tenant_id)],
    service: Annotated[GatewayInstanceService, Depends(get_instance_service)],
    request: NotificationSettingsUpdate,
):
    return await service.update_settings(tenant_id, request)


@router.post("/test")
async def send_test_message(
    tenant_id: Annotated[UUID, Depends(get_tenant_id)],
    service: Annotated[GatewayInstanceService, Depends(get_instance_service)],
    request: SampleMessageRequest,
):
    return await service.send_test_message(tenant_id, request.type)
