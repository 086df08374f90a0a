"""FastAPI application exposing the mediator's relay endpoint."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.datastructures import Headers
from starlette.requests import ClientDisconnect

from src.config.provider import ConfigProvider
from src.config.registration import ControlPlaneClient
from src.config.settings import ConfigError, MediatorSettings, load_mediator_config
from src.models import OPENHIM_CONTENT_TYPE, MediatorConfig
from src.relay.controller import InboundRequest, RelayController
from src.relay.delivery import ResultDelivery
from src.relay.poller import CompletionPoller
from src.transport.client import SecureTransportClient, TLSCredentials

logger = logging.getLogger(__name__)

_DISCONNECT_CHECK_SECONDS = 1.0

# Hop-by-hop headers, plus those httpx recomputes for the upstream call.
_DROPPED_REQUEST_HEADERS = frozenset({
    "host", "content-length", "transfer-encoding",
    "connection", "keep-alive", "upgrade", "te", "trailer",
    "proxy-connection", "proxy-authorization",
})


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    return build_app(MediatorSettings.from_env())


def build_app(settings: MediatorSettings) -> FastAPI:
    """Wire the transport, config provider and control plane for ``settings``."""
    mediator = load_mediator_config(settings.mediator_config_path)
    credentials = TLSCredentials(
        key_path=settings.tls_key_path,
        cert_path=settings.tls_cert_path,
        ca_path=settings.tls_ca_path,
    )
    transport = SecureTransportClient(credentials, timeout=settings.http_timeout)

    provider = ConfigProvider()
    control_plane: ControlPlaneClient | None = None
    if settings.register:
        control_plane = ControlPlaneClient(settings, mediator)
    else:
        provider.update_from_mapping(mediator.config)
    return create_app(provider, transport, mediator, control_plane)


def create_app(
    config_provider: ConfigProvider,
    transport: SecureTransportClient,
    mediator: MediatorConfig,
    control_plane: ControlPlaneClient | None = None,
) -> FastAPI:
    """Create the mediator app around an already configured transport."""
    delivery = ResultDelivery(transport)
    poller = CompletionPoller(transport, delivery)
    controller = RelayController(
        config_provider, transport, delivery, poller, mediator.urn,
    )

    @contextlib.asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        heartbeat: asyncio.Task[None] | None = None
        if control_plane is not None:
            try:
                await control_plane.bootstrap(config_provider)
            except ConfigError:
                logger.error("Failed to register this mediator, check your config")
                raise
            heartbeat = asyncio.create_task(control_plane.run_heartbeat(config_provider))
        logger.info(
            "%s started with config: %s",
            mediator.name, config_provider.current().model_dump(by_alias=True),
        )
        try:
            yield
        finally:
            if heartbeat is not None:
                heartbeat.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await heartbeat
            await controller.shutdown()
            await transport.aclose()

    app = FastAPI(docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.controller = controller
    app.state.poller = poller

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/{path:path}")
    async def relay(request: Request, path: str) -> Response:
        inbound = InboundRequest(
            path=f"/{path}",
            query=request.query_params.multi_items(),
            headers=_forwardable_headers(request.headers),
            body=request.stream(),
        )
        try:
            envelope = await controller.handle(inbound)
        except ClientDisconnect:
            logger.info("Caller disconnected while /%s was being forwarded", path)
            return Response()

        if envelope is None:
            # Forward failed: the caller gets no response until it hangs up.
            await _hold_until_disconnect(request)
            return Response()

        return JSONResponse(envelope.to_wire(), media_type=OPENHIM_CONTENT_TYPE)

    return app


def _forwardable_headers(headers: Headers) -> dict[str, str]:
    return {
        k: v for k, v in headers.items()
        if k.lower() not in _DROPPED_REQUEST_HEADERS
    }


async def _hold_until_disconnect(request: Request) -> None:
    while not await request.is_disconnected():
        await asyncio.sleep(_DISCONNECT_CHECK_SECONDS)
