"""Pydantic models for messaging gateway webhook payloads."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class GatewayWebhookPayload(BaseModel):
    """
    Gateway webhook payload.

    Format: {
        "event": "connection.update",   // also CONNECTION_UPDATE
        "instance": "<instance name>",
        "data": {"state": "open"}       // or {"status": "close"}
    }
    """
    model_config = ConfigDict(extra="allow")

    event: str
    instance: str | dict[str, Any] | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def normalized_event(self) -> str:
        return self.event.lower().replace("_", ".")

    @property
    def instance_name(self) -> str | None:
        if isinstance(self.instance, dict):
            return self.instance.get("instanceName") or self.instance.get("name")
        return self.instance or self.data.get("instance")

    @property
    def state(self) -> str | None:
        return self.data.get("state") or self.data.get("status")
