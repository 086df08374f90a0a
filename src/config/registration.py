"""OpenHIM control-plane client: mediator registration, config fetch and heartbeat.

Registered startup mode:
1. Authenticate (salt + timestamp challenge)
2. Register the mediator descriptor
3. Fetch the initial relay config (heartbeat with ``config: true``)
4. Keep heartbeating; any non-empty heartbeat response is a config update
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import httpx

from src.config.settings import ConfigError

if TYPE_CHECKING:
    from src.config.provider import ConfigProvider
    from src.config.settings import MediatorSettings
    from src.models import MediatorConfig

logger = logging.getLogger(__name__)


def auth_headers(username: str, password: str, salt: str, ts: str) -> dict[str, str]:
    """OpenHIM token auth: sha512(sha512(salt + password) + salt + ts)."""
    passhash = hashlib.sha512((salt + password).encode()).hexdigest()
    token = hashlib.sha512((passhash + salt + ts).encode()).hexdigest()
    return {
        "auth-username": username,
        "auth-ts": ts,
        "auth-salt": salt,
        "auth-token": token,
    }


class ControlPlaneClient:
    def __init__(
        self,
        settings: MediatorSettings,
        mediator: MediatorConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._mediator = mediator
        self._transport = transport
        self._api_url = settings.api_url.rstrip("/")
        self._started = time.monotonic()
        self._salt: str | None = None

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            verify=not self._settings.trust_self_signed,
            timeout=30.0,
            transport=self._transport,
        )

    async def _headers(self, client: httpx.AsyncClient) -> dict[str, str]:
        if self._salt is None:
            resp = await client.get(f"{self._api_url}/authenticate/{self._settings.username}")
            if resp.status_code != 200:
                raise ConfigError(
                    f"Authentication with {self._api_url} failed (status {resp.status_code})",
                )
            try:
                self._salt = resp.json()["salt"]
            except (ValueError, KeyError) as exc:
                raise ConfigError("Authentication response carried no salt") from exc
        ts = datetime.now(UTC).isoformat()
        return auth_headers(self._settings.username, self._settings.password, self._salt, ts)

    async def register(self) -> None:
        try:
            async with self._client() as client:
                headers = await self._headers(client)
                resp = await client.post(
                    f"{self._api_url}/mediators",
                    json=self._mediator.registration_payload(),
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            raise ConfigError(f"Failed to register mediator: {exc}") from exc
        if resp.status_code not in (200, 201):
            raise ConfigError(
                f"Failed to register mediator (status {resp.status_code}): {resp.text}",
            )
        logger.info("Successfully registered mediator %s", self._mediator.urn)

    async def heartbeat(self, force_config: bool = False) -> dict[str, Any] | None:
        """Send one heartbeat; return the config in the response body, if any."""
        payload: dict[str, Any] = {"uptime": time.monotonic() - self._started}
        if force_config:
            payload["config"] = True
        async with self._client() as client:
            headers = await self._headers(client)
            resp = await client.post(
                f"{self._api_url}/mediators/{self._mediator.urn}/heartbeat",
                json=payload,
                headers=headers,
            )
        if resp.status_code != 200:
            raise httpx.HTTPStatusError(
                f"Heartbeat rejected with status {resp.status_code}",
                request=resp.request,
                response=resp,
            )
        if not resp.content:
            return None
        body = resp.json()
        return body or None

    async def fetch_config(self) -> dict[str, Any]:
        try:
            config = await self.heartbeat(force_config=True)
        except (httpx.HTTPError, ValueError) as exc:
            raise ConfigError(f"Failed to fetch initial config: {exc}") from exc
        if not config:
            raise ConfigError("Control plane returned no initial config")
        return config

    async def bootstrap(self, provider: ConfigProvider) -> None:
        """Register, then install the initial config in ``provider``."""
        await self.register()
        config = await self.fetch_config()
        logger.info("Received initial config: %s", config)
        provider.update_from_mapping(config)

    async def run_heartbeat(self, provider: ConfigProvider) -> None:
        """Heartbeat forever, hot-swapping the provider's config on updates."""
        while True:
            await asyncio.sleep(self._settings.heartbeat_interval)
            try:
                config = await self.heartbeat()
            except (httpx.HTTPError, ValueError, ConfigError) as exc:
                logger.error("Heartbeat failed: %s", exc)
                continue
            if config is None:
                continue
            logger.info("Received updated config: %s", config)
            try:
                provider.update_from_mapping(config)
            except ConfigError as exc:
                logger.error("Ignoring updated config: %s", exc)
