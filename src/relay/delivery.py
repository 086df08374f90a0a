"""Out-of-band result delivery to the receiver endpoint."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from src.transport.client import TransportError

if TYPE_CHECKING:
    from src.models import RelayConfig
    from src.transport.client import SecureTransportClient

logger = logging.getLogger(__name__)


def receiver_url_for(config: RelayConfig, adapter_id: str) -> str:
    return f"{config.receiver_url.rstrip('/')}/{quote(adapter_id, safe='')}"


class ResultDelivery:
    """PUTs ``{code, message}`` to ``receiverURL/<adxAdapterID>``. Best effort, no retry."""

    def __init__(self, transport: SecureTransportClient) -> None:
        self._transport = transport

    async def deliver(
        self,
        status_code: int,
        body: Any,
        adapter_id: str | None,
        config: RelayConfig,
    ) -> bool:
        if not adapter_id:
            logger.warning("No adxAdapterID on request, skipping receiver notification")
            return False

        url = receiver_url_for(config, adapter_id)
        try:
            resp = await self._transport.put(url, json={"code": status_code, "message": body})
        except TransportError as exc:
            logger.error("Receiver notification failed: %s", exc)
            return False

        logger.info("Message received by receiver %s (status %d)", url, resp.status_code)
        return True
