"""Shared test fixtures for the ADX import mediator."""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from src.config.provider import ConfigProvider
from src.models import MediatorConfig, RelayConfig
from src.relay.controller import RelayController
from src.relay.delivery import ResultDelivery
from src.relay.poller import CompletionPoller
from src.transport.client import SecureTransportClient

UPSTREAM_URL = "https://dhis.test/api/dataValueSets"
TASK_URL = "https://dhis.test/api/system/tasks/DATAVALUE_IMPORT"
RECEIVER_URL = "https://receiver.test/adx"
MEDIATOR_URN = "urn:mediator:test"


# --- Factory functions for test data ---


def make_relay_config(**kwargs: Any) -> RelayConfig:
    """Factory for RelayConfig with sensible defaults."""
    defaults: dict[str, Any] = {
        "upstream_url": UPSTREAM_URL,
        "upstream_task_url": TASK_URL,
        "receiver_url": RECEIVER_URL,
        "upstream_async": False,
        "dhis_async": False,
        "polling_interval": 1,
    }
    defaults.update(kwargs)
    return RelayConfig(**defaults)


def make_mediator_config(**kwargs: Any) -> MediatorConfig:
    defaults: dict[str, Any] = {
        "urn": MEDIATOR_URN,
        "version": "0.0.1",
        "name": "Test mediator",
        "config": make_relay_config().model_dump(by_alias=True),
    }
    defaults.update(kwargs)
    return MediatorConfig(**defaults)


class FakeServices:
    """``httpx.MockTransport`` handler standing in for upstream, task endpoint and receiver.

    ``task_statuses`` entries are served in order (the last one repeats):
    JSON-able values are returned as JSON, ``bytes`` as a raw body and
    exceptions are raised.
    """

    def __init__(
        self,
        upstream_status: int = 200,
        upstream_body: Any = None,
        task_statuses: list[Any] | None = None,
        receiver_status: int = 200,
        upstream_error: Exception | None = None,
        receiver_error: Exception | None = None,
    ) -> None:
        self.upstream_status = upstream_status
        self.upstream_body = {"ok": True} if upstream_body is None else upstream_body
        self.task_statuses = list(task_statuses or [[{"completed": True}]])
        self.receiver_status = receiver_status
        self.upstream_error = upstream_error
        self.receiver_error = receiver_error
        self.on_upstream: Callable[[], None] | None = None
        self.requests: list[httpx.Request] = []
        self.tick_times: list[float] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST":
            if self.on_upstream is not None:
                self.on_upstream()
            if self.upstream_error is not None:
                raise self.upstream_error
            if isinstance(self.upstream_body, bytes):
                return httpx.Response(self.upstream_status, content=self.upstream_body)
            return httpx.Response(self.upstream_status, json=self.upstream_body)
        if request.method == "GET":
            self.tick_times.append(time.monotonic())
            status = self.task_statuses.pop(0) if len(self.task_statuses) > 1 else self.task_statuses[0]
            if isinstance(status, Exception):
                raise status
            if isinstance(status, bytes):
                return httpx.Response(200, content=status)
            return httpx.Response(200, json=status)
        if self.receiver_error is not None:
            raise self.receiver_error
        return httpx.Response(self.receiver_status)

    def by_method(self, method: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method]

    def puts(self) -> list[tuple[str, Any]]:
        return [(str(r.url), json.loads(r.content)) for r in self.by_method("PUT")]

    def client(self) -> SecureTransportClient:
        return SecureTransportClient(transport=httpx.MockTransport(self))


def make_controller(
    services: FakeServices, config: RelayConfig | None = None,
) -> tuple[RelayController, CompletionPoller, ConfigProvider]:
    transport = services.client()
    delivery = ResultDelivery(transport)
    poller = CompletionPoller(transport, delivery)
    provider = ConfigProvider(config or make_relay_config())
    controller = RelayController(provider, transport, delivery, poller, MEDIATOR_URN)
    return controller, poller, provider


async def wait_for_idle(poller: CompletionPoller, timeout: float = 2.0) -> None:
    """Block until every polling session of ``poller`` has finished."""

    async def _idle() -> None:
        while poller.active_sessions:
            await asyncio.sleep(0.001)

    await asyncio.wait_for(_idle(), timeout)


@pytest.fixture
def services() -> FakeServices:
    return FakeServices()


@pytest.fixture
def mediator_config() -> MediatorConfig:
    return make_mediator_config()
