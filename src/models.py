"""Shared Pydantic data models for the ADX import mediator."""

from __future__ import annotations

import time
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

OPENHIM_CONTENT_TYPE = "application/json+openhim"

# --- Relay configuration ---


class RelayConfig(BaseModel):
    """One immutable snapshot of the mediator's relay configuration.

    Keys arrive camelCased from the control plane (``upstreamURL``,
    ``dhisAsync``...), both spellings are accepted.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    upstream_url: str = Field(alias="upstreamURL")
    upstream_task_url: str = Field(alias="upstreamTaskURL")
    receiver_url: str = Field(alias="receiverURL")
    upstream_async: bool = Field(default=False, alias="upstreamAsync")
    dhis_async: bool = Field(default=False, alias="dhisAsync")
    polling_interval: int = Field(default=1000, gt=0, alias="pollingInterval")  # ms

    @property
    def polling_interval_seconds(self) -> float:
        return self.polling_interval / 1000


class MediatorConfig(BaseModel):
    """OpenHIM mediator descriptor, as registered with the control plane."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    urn: str
    version: str
    name: str
    description: str = ""
    default_channel_config: list[dict[str, Any]] = Field(
        default_factory=list, alias="defaultChannelConfig",
    )
    endpoints: list[dict[str, Any]] = Field(default_factory=list)
    config_defs: list[dict[str, Any]] = Field(default_factory=list, alias="configDefs")
    config: dict[str, Any] = Field(default_factory=dict)

    def registration_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


# --- Upstream results ---


def _now_ms() -> int:
    return int(time.time() * 1000)


class UpstreamResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: int
    headers: dict[str, str] = Field(default_factory=dict)
    body: Any = None
    timestamp: int = Field(default_factory=_now_ms)


class AcknowledgementEnvelope(BaseModel):
    """OpenHIM mediator response returned to the original caller."""

    model_config = ConfigDict(populate_by_name=True)

    mediator_urn: str = Field(alias="x-mediator-urn")
    status: str = "Successful"
    response: UpstreamResponse
    orchestrations: list[dict[str, Any]] = Field(default_factory=list)
    properties: dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")
