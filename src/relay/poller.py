"""Completion poller. Tracks an asynchronous upstream import until it finishes.

Each session is a single asyncio task: sleep one polling interval, check
the task-status endpoint, repeat. Ticks never overlap, transport and parse
errors are logged and retried on the next tick, and the session ends only
when the first task record reports ``completed`` (or when it is cancelled
at shutdown).
"""

from __future__ import annotations

import asyncio
import json
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any

from src.transport.client import TransportError

if TYPE_CHECKING:
    from src.models import RelayConfig
    from src.relay.delivery import ResultDelivery
    from src.transport.client import SecureTransportClient

logger = logging.getLogger(__name__)


class ParseError(Exception):
    """Task-status body is not a non-empty JSON list of task records."""


class SessionState(str, Enum):
    SCHEDULED = "scheduled"
    CHECKING = "checking"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def parse_task_status(content: bytes) -> dict[str, Any]:
    """Return the first task record of a task-status response body, as sent."""
    try:
        data = json.loads(content)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ParseError(f"Task status is not valid JSON: {exc}") from exc
    if not isinstance(data, list) or not data:
        raise ParseError("Task status is not a non-empty list")
    record = data[0]
    if not isinstance(record, dict):
        raise ParseError(f"Task record is not an object: {record!r}")
    return record


class PollingSession:
    """Handle for one adapter's polling task."""

    def __init__(self, adapter_id: str, config: RelayConfig) -> None:
        self.adapter_id = adapter_id
        self.config = config
        self.state = SessionState.SCHEDULED
        self.ticks = 0
        self._task: asyncio.Task[None] | None = None

    def _attach(self, task: asyncio.Task[None]) -> None:
        self._task = task

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            if self.state != SessionState.COMPLETED:
                self.state = SessionState.CANCELLED

    async def wait(self) -> None:
        if self._task is None:
            return
        try:
            await self._task
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise


class CompletionPoller:
    def __init__(
        self,
        transport: SecureTransportClient,
        delivery: ResultDelivery,
    ) -> None:
        self._transport = transport
        self._delivery = delivery
        self._sessions: set[PollingSession] = set()

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)

    def start(self, adapter_id: str, config: RelayConfig) -> PollingSession:
        """Schedule a polling session using the caller's config snapshot."""
        session = PollingSession(adapter_id, config)
        task = asyncio.create_task(self._run(session))
        session._attach(task)
        self._sessions.add(session)
        task.add_done_callback(lambda _t: self._sessions.discard(session))
        logger.info(
            "Polling %s every %dms for adapter %s",
            config.upstream_task_url, config.polling_interval, adapter_id,
        )
        return session

    async def _run(self, session: PollingSession) -> None:
        config = session.config
        try:
            while True:
                await asyncio.sleep(config.polling_interval_seconds)
                session.state = SessionState.CHECKING
                session.ticks += 1
                try:
                    record = await self._check(config)
                except (TransportError, ParseError) as exc:
                    logger.error("Task status check failed for %s: %s", session.adapter_id, exc)
                    session.state = SessionState.SCHEDULED
                    continue

                # Truthy, not necessarily a JSON boolean.
                if record.get("completed"):
                    logger.info("Completed, stopping polling for adapter %s", session.adapter_id)
                    session.state = SessionState.COMPLETED
                    await self._delivery.deliver(
                        200, record, session.adapter_id, config,
                    )
                    return
                session.state = SessionState.SCHEDULED
        except asyncio.CancelledError:
            if session.state != SessionState.COMPLETED:
                session.state = SessionState.CANCELLED
            raise

    async def _check(self, config: RelayConfig) -> dict[str, Any]:
        resp = await self._transport.get(config.upstream_task_url)
        logger.info("Received task status: %s", resp.text)
        return parse_task_status(resp.content)

    async def shutdown(self) -> None:
        sessions = list(self._sessions)
        for session in sessions:
            session.cancel()
        for session in sessions:
            await session.wait()
