"""
Messaging gateway client.

The gateway is a webhook relay in front of the WhatsApp provider. Every call
posts a JSON action envelope:

    {"action": "sendMessage", "tenantId": "...", "payload": {...}}

and receives:

    {"success": true, "data": {"qrCode": "...", "state": "open"}, "error": null}

Delivery (send) retries transport failures with exponential backoff via
tenacity. Instance provisioning is a single attempt with a hard timeout.

The client never reads settings itself; build it with a GatewayConfig:

    client = MessagingGatewayClient(get_settings().gateway_config())
"""

import asyncio
import base64
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx
import phonenumbers
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shared.config import GatewayConfig

logger = logging.getLogger(__name__)

# Gateway states meaning the instance is paired and online
CONNECTED_STATES = {"open", "connected"}


class GatewayError(Exception):
    """Base class for messaging gateway failures."""


class GatewayNotConfiguredError(GatewayError):
    """Gateway endpoint URL is missing."""


class GatewayTransportError(GatewayError):
    """Timeout, connection error, non-2xx status or success=false envelope."""


@dataclass
class GatewayResponse:
    """Parsed inbound envelope."""

    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "GatewayResponse":
        # Relay workflows sometimes wrap the envelope in a one-item list
        if isinstance(payload, list):
            payload = payload[0] if payload else {}
        if not isinstance(payload, dict):
            return cls(success=False, error="Unexpected gateway response")
        if isinstance(payload.get("success"), bool):
            data = payload.get("data")
            return cls(
                success=payload["success"],
                data=data if isinstance(data, dict) else {},
                error=payload.get("error"),
            )
        # No envelope: treat the body itself as data
        return cls(success=True, data=payload)

    @property
    def state(self) -> str | None:
        state = self.data.get("state")
        if state is None and isinstance(self.data.get("instance"), dict):
            state = self.data["instance"].get("state")
        return state

    @property
    def is_connected(self) -> bool:
        return self.state in CONNECTED_STATES


def normalize_phone(phone: str, region: str = "BR") -> str | None:
    """
    Normalize a phone number to E.164.

    Numbers typed without "+" but already carrying the country code are
    accepted too.

    Examples:
        "(11) 98765-4321" -> "+5511987654321"
        "5511987654321" -> "+5511987654321"
        "invalid" -> None
    """
    if not phone:
        return None

    candidates = [phone]
    digits = "".join(ch for ch in phone if ch.isdigit())
    if not phone.strip().startswith("+") and digits:
        candidates.append(f"+{digits}")

    for candidate in candidates:
        try:
            parsed = phonenumbers.parse(candidate, region)
        except phonenumbers.NumberParseException:
            continue
        if phonenumbers.is_valid_number(parsed):
            return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)

    logger.warning(f"Invalid phone number: {phone}")
    return None


class MessagingGatewayClient:
    """
    Client for the messaging gateway.

    Args:
        config: Endpoint URLs, timeouts and retry parameters
        transport: Optional httpx transport (tests pass httpx.MockTransport)
        sleep: Coroutine used between retry attempts
    """

    def __init__(
        self,
        config: GatewayConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep=asyncio.sleep,
    ):
        self.config = config
        self._transport = transport
        self._sleep = sleep

    @property
    def is_configured(self) -> bool:
        return bool(self.config.base_url)

    async def _post(self, url: str, body: dict[str, Any], timeout: float) -> GatewayResponse:
        if not url:
            raise GatewayNotConfiguredError("Gateway endpoint URL not configured")

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=timeout) as client:
                response = await client.post(url, json=body)
        except httpx.TimeoutException as e:
            raise GatewayTransportError(f"Gateway timeout after {timeout:.0f}s") from e
        except httpx.HTTPError as e:
            raise GatewayTransportError(f"Gateway connection error: {e}") from e

        if response.is_error:
            raise GatewayTransportError(f"Gateway HTTP error: {response.status_code}")

        content_type = response.headers.get("content-type", "")
        if content_type.startswith("image/"):
            # QR code returned as a raw image
            encoded = base64.b64encode(response.content).decode("ascii")
            return GatewayResponse(
                success=True, data={"qrCode": f"data:{content_type};base64,{encoded}"}
            )

        if not response.content.strip():
            raise GatewayTransportError("Gateway returned an empty body")

        try:
            payload = response.json()
        except ValueError as e:
            raise GatewayTransportError(
                f"Invalid gateway response: {response.text[:100]}"
            ) from e

        return GatewayResponse.from_payload(payload)

    async def call_action(
        self,
        action: str,
        tenant_id: str,
        payload: dict[str, Any],
        timeout: float | None = None,
    ) -> GatewayResponse:
        """
        Post one action envelope. Single attempt; failures become success=False.

        Args:
            action: createInstance | getQRCode | getConnectionState | sendMessage | deleteInstance
            tenant_id: Tenant the action belongs to
            payload: Action payload (instanceName, phoneNumber, webhookUrl, ...)
            timeout: Seconds; defaults to the provisioning timeout
        """
        timeout = timeout if timeout is not None else self.config.provision_timeout
        body = {"action": action, "tenantId": str(tenant_id), "payload": payload}

        try:
            response = await self._post(self.config.base_url, body, timeout)
        except GatewayNotConfiguredError as e:
            logger.error(f"Gateway not configured for action {action}")
            return GatewayResponse(success=False, error=str(e))
        except GatewayTransportError as e:
            logger.error(
                f"Gateway action {action} failed: {e}",
                extra={"tenant_id": str(tenant_id)},
            )
            return GatewayResponse(success=False, error=str(e))

        if not response.success:
            logger.warning(
                f"Gateway action {action} rejected: {response.error}",
                extra={"tenant_id": str(tenant_id)},
            )
        return response

    async def send(
        self,
        instance_id: str,
        recipient: str,
        message: str,
        tenant_id: str | None = None,
        delay_minutes: int = 0,
    ) -> bool:
        """
        Deliver a text message with retry.

        Up to config.max_attempts attempts; the wait before attempt n+1 is
        base_delay * 2**(n-1). Returns False after the last failure instead
        of raising.

        Args:
            instance_id: Gateway instance name of the tenant
            recipient: Phone number in any format
            message: Rendered text
            tenant_id: Tenant for the envelope and logs
            delay_minutes: Delivery delay honoured by the gateway
        """
        url = self.config.send_message_url or self.config.base_url
        if not url:
            logger.error(
                "Gateway send endpoint not configured; message dropped",
                extra={"instance_name": instance_id},
            )
            return False

        number = normalize_phone(recipient, self.config.default_region)
        if number is None:
            logger.warning(
                f"Cannot send to invalid recipient {recipient!r}",
                extra={"instance_name": instance_id},
            )
            return False

        payload: dict[str, Any] = {
            "instanceName": instance_id,
            "number": number,
            "message": message,
        }
        if delay_minutes:
            payload["delayMinutes"] = delay_minutes
        body = {"action": "sendMessage", "tenantId": str(tenant_id or ""), "payload": payload}

        def _log_retry(retry_state):
            logger.warning(
                f"Send attempt {retry_state.attempt_number} failed: "
                f"{retry_state.outcome.exception()}. "
                f"Retrying in {retry_state.next_action.sleep:.1f}s",
                extra={"instance_name": instance_id, "attempt": retry_state.attempt_number},
            )

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.config.max_attempts),
                wait=wait_exponential(multiplier=self.config.base_delay, min=0),
                retry=retry_if_exception_type(GatewayTransportError),
                sleep=self._sleep,
                before_sleep=_log_retry,
                reraise=True,
            ):
                with attempt:
                    response = await self._post(url, body, self.config.send_timeout)
                    if not response.success:
                        raise GatewayTransportError(response.error or "Gateway rejected message")
        except GatewayTransportError as e:
            logger.error(
                f"Failed to send message after {self.config.max_attempts} attempts: {e}",
                extra={"instance_name": instance_id, "tenant_id": tenant_id},
            )
            return False

        logger.info(
            f"Message sent to {number}",
            extra={"instance_name": instance_id, "tenant_id": tenant_id},
        )
        return True

    async def create_instance(
        self,
        tenant_id: str,
        instance_name: str,
        phone_number: str,
        webhook_url: str,
    ) -> GatewayResponse:
        """Create or refresh an instance; data carries qrCode and optional qrCodeExpiresAt."""
        return await self.call_action(
            "createInstance",
            tenant_id,
            {
                "instanceName": instance_name,
                "phoneNumber": phone_number,
                "webhookUrl": webhook_url,
            },
            timeout=self.config.provision_timeout,
        )

    async def get_qr_code(self, tenant_id: str, instance_name: str) -> GatewayResponse:
        return await self.call_action(
            "getQRCode", tenant_id, {"instanceName": instance_name}
        )

    async def get_connection_state(self, tenant_id: str, instance_name: str) -> GatewayResponse:
        return await self.call_action(
            "getConnectionState", tenant_id, {"instanceName": instance_name}
        )

    async def delete_instance(self, tenant_id: str, instance_name: str) -> GatewayResponse:
        return await self.call_action(
            "deleteInstance", tenant_id, {"instanceName": instance_name}
        )
