"""Fire-and-forget audit dispatch.

Audit writes run as background tasks. A failing sink is logged here and
never reaches the caller or delays the response.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from auto_eval.models import AuditLogEntry, EvaluationRequest, InvocationContext

logger = logging.getLogger(__name__)


class AuditSink(Protocol):
    async def write(self, entry: AuditLogEntry) -> None: ...


class LoggingAuditSink:
    """Fallback sink used when no audit store is configured."""

    async def write(self, entry: AuditLogEntry) -> None:
        logger.info(
            "audit %s %s -> %s (session=%s)",
            entry.method,
            entry.endpoint,
            entry.status_code,
            entry.session_id,
        )


def build_entry(
    context: InvocationContext,
    request: EvaluationRequest | dict[str, Any] | None,
    response: dict[str, Any],
    status_code: int,
) -> AuditLogEntry:
    if isinstance(request, EvaluationRequest):
        snapshot = request.snapshot()
    else:
        snapshot = dict(request or {})
    return AuditLogEntry(
        endpoint=context.endpoint,
        method=context.method,
        status_code=status_code,
        request_snapshot=snapshot,
        response_snapshot=response,
        session_id=context.session_id,
        user_agent=context.user_agent,
        ip=context.ip,
    )


class AuditDispatcher:
    """Schedules sink writes without awaiting them on the response path."""

    def __init__(self, sink: AuditSink) -> None:
        self.sink = sink
        self._pending: set[asyncio.Task[None]] = set()

    def submit(self, entry: AuditLogEntry) -> None:
        task = asyncio.get_running_loop().create_task(self._write(entry))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write(self, entry: AuditLogEntry) -> None:
        try:
            await self.sink.write(entry)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Failed to log traffic for %s %s: %s", entry.method, entry.endpoint, exc
            )

    async def drain(self) -> None:
        """Wait for in-flight writes (shutdown and tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending))
