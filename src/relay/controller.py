"""Relay controller: forwards one inbound POST upstream and settles its outcome.

Steps per request:
1. Read one config snapshot
2. Strip ``adxAdapterID`` from the query (and inject ``async=true`` when configured)
3. Stream the body to the upstream via the mutual-TLS client
4. Sync upstream: notify the receiver out-of-band;
   async upstream (HTTP 200): start a completion polling session
5. Build the OpenHIM acknowledgement envelope for the caller
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from src.models import AcknowledgementEnvelope, UpstreamResponse
from src.transport.client import TransportError

if TYPE_CHECKING:
    from src.config.provider import ConfigProvider
    from src.models import RelayConfig
    from src.relay.delivery import ResultDelivery
    from src.relay.poller import CompletionPoller, PollingSession
    from src.transport.client import SecureTransportClient, TransportResponse

logger = logging.getLogger(__name__)

ADAPTER_ID_PARAM = "adxAdapterID"
ASYNC_PARAM = "async"


@dataclass
class InboundRequest:
    """One inbound POST, as handed over by the HTTP layer."""

    path: str = "/"
    query: list[tuple[str, str]] = field(default_factory=list)
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes | AsyncIterable[bytes] = b""


def split_query(
    query: Iterable[tuple[str, str]], upstream_async: bool,
) -> tuple[str | None, list[tuple[str, str]]]:
    """Pull the adapter id out of the query and build the forwarded parameters."""
    adapter_id: str | None = None
    forwarded: list[tuple[str, str]] = []
    for name, value in query:
        if name == ADAPTER_ID_PARAM:
            adapter_id = value or adapter_id
            continue
        if upstream_async and name == ASYNC_PARAM:
            continue
        forwarded.append((name, value))
    if upstream_async:
        forwarded.append((ASYNC_PARAM, "true"))
    return adapter_id, forwarded


def build_envelope(urn: str, upstream: TransportResponse) -> AcknowledgementEnvelope:
    return AcknowledgementEnvelope(
        mediator_urn=urn,
        response=UpstreamResponse(
            status=upstream.status_code,
            headers=upstream.headers,
            body=upstream.body(),
        ),
    )


class RelayController:
    """Drives one inbound request from upstream forward to terminal delivery."""

    def __init__(
        self,
        config_provider: ConfigProvider,
        transport: SecureTransportClient,
        delivery: ResultDelivery,
        poller: CompletionPoller,
        mediator_urn: str,
    ) -> None:
        self._config = config_provider
        self._transport = transport
        self._delivery = delivery
        self._poller = poller
        self._urn = mediator_urn
        self._pending: set[asyncio.Task[bool]] = set()

    async def handle(self, inbound: InboundRequest) -> AcknowledgementEnvelope | None:
        """Relay ``inbound`` upstream.

        Returns the acknowledgement envelope, or ``None`` when the upstream
        could not be reached; in that case nothing is sent back to the caller.
        """
        config = self._config.current()
        adapter_id, params = split_query(inbound.query, config.upstream_async)

        logger.info("Forwarding %s to %s", inbound.path, config.upstream_url)
        try:
            upstream = await self._transport.post(
                config.upstream_url, params=params, content=inbound.body,
                headers=inbound.headers,
            )
        except TransportError as exc:
            logger.error("Upstream forward failed: %s", exc)
            return None

        if config.dhis_async:
            if upstream.status_code == 200:
                self._start_polling(adapter_id, config)
        else:
            self._schedule_delivery(upstream.status_code, upstream.body(), adapter_id, config)

        return build_envelope(self._urn, upstream)

    def _start_polling(self, adapter_id: str | None, config: RelayConfig) -> PollingSession | None:
        if not adapter_id:
            logger.warning(
                "Not polling %s: no adxAdapterID in the request, so the import result "
                "has no receiver to be delivered to",
                config.upstream_task_url,
            )
            return None
        return self._poller.start(adapter_id, config)

    def _schedule_delivery(
        self, status_code: int, body: Any, adapter_id: str | None, config: RelayConfig,
    ) -> None:
        task = asyncio.create_task(
            self._delivery.deliver(status_code, body, adapter_id, config),
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for receiver notifications already in flight."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def shutdown(self) -> None:
        await self.drain()
        await self._poller.shutdown()
