#!/usr/bin/env python3
"""Fake DHIS2 upstream and ADX receiver for running the mediator locally.

The upstream accepts imports on ``*/dataValueSets`` and serves a task-status
list on ``*/tasks/*`` that reports ``completed`` on every third check.
The receiver accepts anything and logs it.

Usage:
    python scripts/fake_servers.py [--upstream-port 8081] [--receiver-port 8082]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Any

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

logger = logging.getLogger("fake_servers")

TASK_TEMPLATE: dict[str, Any] = {
    "uid": "hpiaeMy7wFX",
    "level": "INFO",
    "category": "DATAVALUE_IMPORT",
    "time": "2015-09-02T07:43:14.595+0000",
    "message": "Import done",
}


async def _log_request(request: Request) -> bytes:
    body = await request.body()
    logger.info("Received %s %s", request.method, request.url)
    logger.info("  with headers: %s", dict(request.headers))
    logger.info("  with body: %s", body.decode(errors="replace"))
    return body


def create_upstream_app(complete_every: int = 3) -> FastAPI:
    app = FastAPI(docs_url=None, redoc_url=None)
    app.state.task_requests = 0
    app.state.imports = []

    @app.post("/{path:path}")
    async def import_data(request: Request, path: str) -> Response:
        body = await _log_request(request)
        if "dataValueSets" not in path:
            return Response(status_code=404)
        app.state.imports.append(body)
        return Response(status_code=200, media_type="application/xml")

    @app.get("/{path:path}")
    async def task_status(request: Request, path: str) -> Response:
        await _log_request(request)
        if "tasks" not in path:
            return Response(status_code=404)
        app.state.task_requests += 1
        completed = app.state.task_requests % complete_every == 0
        return JSONResponse([{**TASK_TEMPLATE, "completed": completed}])

    return app


def create_receiver_app() -> FastAPI:
    app = FastAPI(docs_url=None, redoc_url=None)
    app.state.received = []

    @app.api_route("/{path:path}", methods=["GET", "POST", "PUT"])
    async def receive(request: Request, path: str) -> Response:
        body = await _log_request(request)
        app.state.received.append((request.method, f"/{path}", body))
        return Response(status_code=200)

    return app


async def _serve(upstream_port: int, receiver_port: int) -> None:
    servers = [
        uvicorn.Server(uvicorn.Config(create_upstream_app(), port=upstream_port)),
        uvicorn.Server(uvicorn.Config(create_receiver_app(), port=receiver_port)),
    ]
    await asyncio.gather(*(server.serve() for server in servers))


def main() -> int:
    parser = argparse.ArgumentParser(description="Fake upstream and receiver servers")
    parser.add_argument("--upstream-port", type=int, default=8081)
    parser.add_argument("--receiver-port", type=int, default=8082)
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")
    asyncio.run(_serve(args.upstream_port, args.receiver_port))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
