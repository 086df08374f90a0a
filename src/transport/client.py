"""Mutual-TLS HTTP client shared by every outbound call.

The client certificate, key and CA bundle are loaded once at startup and
reused for the lifetime of the process; there is no per-request override.
"""

from __future__ import annotations

import json
import logging
import ssl
from collections.abc import AsyncIterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx

from src.config.settings import ConfigError

logger = logging.getLogger(__name__)

_JSON_MARKERS = ("application/json", "+json")


class TransportError(Exception):
    """Network or TLS failure while talking to the upstream, task endpoint or receiver."""

    def __init__(self, method: str, url: str, cause: Exception) -> None:
        self.method = method
        self.url = url
        self.cause = cause
        super().__init__(f"{method} {url} failed: {cause!r}")


@dataclass(frozen=True)
class TLSCredentials:
    key_path: str
    cert_path: str
    ca_path: str

    def ssl_context(self) -> ssl.SSLContext:
        """Build an SSL context that trusts the CA bundle and presents our certificate."""
        for path in (self.key_path, self.cert_path, self.ca_path):
            if not Path(path).is_file():
                raise ConfigError(f"TLS file not found: {path}")
        try:
            context = ssl.create_default_context(cafile=self.ca_path)
            context.load_cert_chain(certfile=self.cert_path, keyfile=self.key_path)
        except (ssl.SSLError, OSError) as exc:
            raise ConfigError(f"Cannot load TLS credentials: {exc}") from exc
        return context


@dataclass
class TransportResponse:
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    content: bytes = b""

    @property
    def text(self) -> str:
        return self.content.decode(errors="replace")

    def json(self) -> Any:
        return json.loads(self.content)

    def body(self) -> Any:
        """Parsed JSON for JSON content types, decoded text otherwise."""
        content_type = self.headers.get("content-type", "").lower()
        if self.content and any(marker in content_type for marker in _JSON_MARKERS):
            try:
                return self.json()
            except (json.JSONDecodeError, UnicodeDecodeError):
                pass
        return self.text


class SecureTransportClient:
    """Thin async wrapper over one ``httpx.AsyncClient`` configured for mutual TLS."""

    def __init__(
        self,
        credentials: TLSCredentials | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        verify: ssl.SSLContext | bool = True
        if credentials is not None:
            verify = credentials.ssl_context()
        self._client = httpx.AsyncClient(
            verify=verify,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: list[tuple[str, str]] | None = None,
        content: bytes | AsyncIterable[bytes] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> TransportResponse:
        try:
            resp = await self._client.request(
                method, url, params=params, content=content, json=json, headers=headers,
            )
        except httpx.HTTPError as exc:
            raise TransportError(method, url, exc) from exc
        return TransportResponse(
            status_code=resp.status_code,
            headers=dict(resp.headers),
            content=resp.content,
        )

    async def post(
        self,
        url: str,
        *,
        params: list[tuple[str, str]] | None = None,
        content: bytes | AsyncIterable[bytes] | None = None,
        headers: dict[str, str] | None = None,
    ) -> TransportResponse:
        return await self.request(
            "POST", url, params=params, content=content, headers=headers,
        )

    async def get(self, url: str) -> TransportResponse:
        return await self.request("GET", url)

    async def put(self, url: str, *, json: Any = None) -> TransportResponse:
        return await self.request("PUT", url, json=json)

    async def aclose(self) -> None:
        await self._client.aclose()
