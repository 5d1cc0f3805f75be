"""
Unit tests for gateway_client.py - Messaging gateway HTTP client.

Uses httpx.MockTransport so no network is touched, and a recording sleep so
backoff delays are asserted without waiting.
"""

import json

import httpx
import pytest

from shared.config import GatewayConfig
from shared.gateway_client import (
    GatewayResponse,
    MessagingGatewayClient,
    normalize_phone,
)

ACTION_URL = "https://gateway.test/actions"
SEND_URL = "https://gateway.test/send"


def make_client(handler, **config_overrides):
    values = dict(base_url=ACTION_URL, send_message_url=SEND_URL, base_delay=1.0, max_attempts=3)
    values.update(config_overrides)
    delays: list[float] = []

    async def record_sleep(seconds):
        delays.append(float(seconds))

    client = MessagingGatewayClient(
        GatewayConfig(**values), transport=httpx.MockTransport(handler), sleep=record_sleep
    )
    return client, delays


class TestNormalizePhone:
    def test_national_format(self):
        assert normalize_phone("(11) 98765-4321") == "+5511987654321"

    def test_country_code_without_plus(self):
        assert normalize_phone("5511987654321") == "+5511987654321"

    def test_invalid(self):
        assert normalize_phone("invalid") is None
        assert normalize_phone("") is None


class TestGatewayResponse:
    def test_envelope(self):
        response = GatewayResponse.from_payload(
            {"success": True, "data": {"state": "open"}, "error": None}
        )
        assert response.success
        assert response.is_connected

    def test_list_wrapped_envelope(self):
        response = GatewayResponse.from_payload([{"success": False, "error": "boom"}])
        assert not response.success
        assert response.error == "boom"

    def test_bare_body_is_data(self):
        response = GatewayResponse.from_payload({"instance": {"state": "close"}})
        assert response.success
        assert response.state == "close"
        assert not response.is_connected


class TestSend:
    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        """Fails twice then succeeds: 3 attempts with 1s and 2s backoff."""
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(json.loads(request.content))
            if len(calls) < 3:
                return httpx.Response(503)
            return httpx.Response(200, json={"success": True})

        client, delays = make_client(handler)
        delivered = await client.send("tenant-agenda", "(11) 98765-4321", "Hello", tenant_id="t1")

        assert delivered is True
        assert len(calls) == 3
        assert delays == [1.0, 2.0]
        assert calls[0] == {
            "action": "sendMessage",
            "tenantId": "t1",
            "payload": {
                "instanceName": "tenant-agenda",
                "number": "+5511987654321",
                "message": "Hello",
            },
        }

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectTimeout("timed out", request=request)

        client, delays = make_client(handler)
        delivered = await client.send("tenant-agenda", "11987654321", "Hello")

        assert delivered is False
        assert len(calls) == 3
        assert delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_rejected_envelope_is_retried(self):
        responses = iter(
            [
                httpx.Response(200, json={"success": False, "error": "instance busy"}),
                httpx.Response(200, json={"success": True}),
            ]
        )

        client, delays = make_client(lambda request: next(responses))
        assert await client.send("tenant-agenda", "11987654321", "Hello") is True
        assert delays == [1.0]

    @pytest.mark.asyncio
    async def test_delay_minutes_forwarded(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True})

        client, _ = make_client(handler)
        await client.send("tenant-agenda", "11987654321", "Hello", delay_minutes=10)

        assert bodies[0]["payload"]["delayMinutes"] == 10

    @pytest.mark.asyncio
    async def test_invalid_recipient_not_sent(self):
        calls = []
        client, _ = make_client(lambda request: calls.append(request) or httpx.Response(200))

        assert await client.send("tenant-agenda", "not a phone", "Hello") is False
        assert calls == []

    @pytest.mark.asyncio
    async def test_unconfigured_gateway_drops_message(self):
        calls = []
        client, _ = make_client(
            lambda request: calls.append(request) or httpx.Response(200),
            base_url="",
            send_message_url="",
        )

        assert await client.send("tenant-agenda", "11987654321", "Hello") is False
        assert calls == []


class TestActions:
    @pytest.mark.asyncio
    async def test_create_instance_envelope(self):
        bodies = []

        def handler(request):
            assert str(request.url) == ACTION_URL
            bodies.append(json.loads(request.content))
            return httpx.Response(200, json={"success": True, "data": {"qrCode": "data:qr"}})

        client, _ = make_client(handler)
        response = await client.create_instance("t1", "t1-agenda", "+5511987654321", "https://app/hook")

        assert response.success
        assert response.data["qrCode"] == "data:qr"
        assert bodies[0] == {
            "action": "createInstance",
            "tenantId": "t1",
            "payload": {
                "instanceName": "t1-agenda",
                "phoneNumber": "+5511987654321",
                "webhookUrl": "https://app/hook",
            },
        }

    @pytest.mark.asyncio
    async def test_action_failure_is_single_attempt(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        client, delays = make_client(handler)
        response = await client.get_connection_state("t1", "t1-agenda")

        assert response.success is False
        assert "500" in response.error
        assert len(calls) == 1
        assert delays == []

    @pytest.mark.asyncio
    async def test_image_response_becomes_data_url(self):
        client, _ = make_client(
            lambda request: httpx.Response(
                200, content=b"\x89PNG", headers={"content-type": "image/png"}
            )
        )
        response = await client.get_qr_code("t1", "t1-agenda")

        assert response.success
        assert response.data["qrCode"].startswith("data:image/png;base64,")

    @pytest.mark.asyncio
    async def test_empty_body_is_failure(self):
        client, _ = make_client(lambda request: httpx.Response(200, content=b""))
        response = await client.delete_instance("t1", "t1-agenda")
        assert response.success is False
