"""Tests for fire-and-forget audit dispatch."""

from __future__ import annotations

import asyncio
import logging

from auto_eval.audit import AuditDispatcher, LoggingAuditSink, build_entry
from auto_eval.models import EvaluationRequest, InvocationContext, Role


class _RecordingSink:
    def __init__(self, delay: float = 0.0, exc: Exception | None = None):
        self.delay = delay
        self.exc = exc
        self.entries = []

    async def write(self, entry):
        await asyncio.sleep(self.delay)
        if self.exc is not None:
            raise self.exc
        self.entries.append(entry)


def _entry(status: int = 200):
    context = InvocationContext(session_id="s-1", user_agent="pytest", ip="198.51.100.4")
    request = EvaluationRequest(role=Role.SELLER, make="Ford", asking_price=8000)
    return build_entry(context, request, {"report": {"verdict": "Talk"}}, status)


class TestBuildEntry:
    def test_snapshot_and_row(self):
        entry = _entry()
        row = entry.to_row()
        assert row["endpoint"] == "/api/submitEvaluation"
        assert row["request_body"]["role"] == "Seller"
        assert row["request_body"]["price"] == 8000
        assert row["response_body"] == {"report": {"verdict": "Talk"}}
        assert row["ip_address"] == "198.51.100.4"
        assert row["session_id"] == "s-1"
        assert row["created_at"]

    def test_raw_fields_snapshot(self):
        entry = build_entry(InvocationContext(), {"role": "Dealer"}, {"error": "bad"}, 400)
        assert entry.request_snapshot == {"role": "Dealer"}
        assert entry.status_code == 400


class TestAuditDispatcher:
    async def test_submit_does_not_wait_for_the_sink(self):
        sink = _RecordingSink(delay=0.05)
        dispatcher = AuditDispatcher(sink)
        dispatcher.submit(_entry())
        assert sink.entries == []
        await dispatcher.drain()
        assert len(sink.entries) == 1

    async def test_sink_failure_is_logged_not_raised(self, caplog):
        dispatcher = AuditDispatcher(_RecordingSink(exc=RuntimeError("db down")))
        with caplog.at_level(logging.ERROR, logger="auto_eval.audit"):
            dispatcher.submit(_entry(502))
            await dispatcher.drain()
        assert "Failed to log traffic" in caplog.text

    async def test_logging_sink(self, caplog):
        with caplog.at_level(logging.INFO, logger="auto_eval.audit"):
            await LoggingAuditSink().write(_entry())
        assert "/api/submitEvaluation" in caplog.text
