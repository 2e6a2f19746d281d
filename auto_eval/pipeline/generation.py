"""Generation job runner: submit, start, poll to a terminal state.

The poll loop carries the only global time budget in the pipeline. It stops
on ``completed``, on an explicit service failure, or once the wall-clock
budget or the poll count is exhausted. Nothing partial is ever returned.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, BinaryIO, Protocol

from auto_eval.clients.assistants import message_text
from auto_eval.constants import MAX_PHOTOS
from auto_eval.errors import (
    GenerationFailedError,
    GenerationTimeoutError,
    ServiceClientError,
)
from auto_eval.models import GenerationJob, JobStatus, PhotoUpload, RawOutput
from auto_eval.pipeline.prompt import Payload

logger = logging.getLogger(__name__)

_IN_PROGRESS = frozenset({"queued", "in_progress", "cancelling"})
_FAILED = frozenset({"failed", "cancelled", "expired", "requires_action", "incomplete"})


class GenerationService(Protocol):
    async def create_thread(self) -> str: ...

    async def add_message(
        self, thread_id: str, text: str, *, image_file_ids: list[str] | None = None
    ) -> str: ...

    async def upload_file(self, filename: str, stream: BinaryIO, content_type: str) -> str: ...

    async def create_run(self, thread_id: str, *, instructions: str) -> dict[str, Any]: ...

    async def get_run(self, thread_id: str, run_id: str) -> dict[str, Any]: ...

    async def cancel_run(self, thread_id: str, run_id: str) -> None: ...

    async def list_messages(
        self, thread_id: str, *, run_id: str | None = None
    ) -> list[dict[str, Any]]: ...


def select_photos(photos: list[PhotoUpload]) -> list[PhotoUpload]:
    """Non-empty image attachments in submission order, at most two."""
    valid = [
        p
        for p in photos
        if p.size > 0 and (p.content_type or "").lower().startswith("image/")
    ]
    return valid[:MAX_PHOTOS]


class GenerationJobRunner:
    def __init__(
        self,
        service: GenerationService,
        *,
        poll_interval: float = 1.5,
        timeout: float = 60.0,
        max_polls: int = 30,
    ) -> None:
        self.service = service
        self.poll_interval = poll_interval
        self.timeout = timeout
        self.max_polls = max_polls

    async def _submit(self, payload: Payload, photos: list[PhotoUpload]) -> GenerationJob:
        thread_id = await self.service.create_thread()
        job = GenerationJob(id=thread_id, submitted_payload=payload.to_dict())

        await self.service.add_message(thread_id, payload.context_message())
        await self.service.add_message(thread_id, payload.notes_message())
        for photo in photos:
            if photo.stream is None:
                logger.warning("Skipping photo %s with no readable stream", photo.filename)
                continue
            file_id = await self.service.upload_file(
                photo.filename, photo.stream, photo.content_type
            )
            job.attached_asset_ids.append(file_id)
            await self.service.add_message(
                thread_id,
                "Attached vehicle photo for evaluation.",
                image_file_ids=[file_id],
            )

        run = await self.service.create_run(thread_id, instructions=payload.instructions)
        job.run_id = str(run["id"])
        job.advance(JobStatus.RUNNING)
        return job

    async def _cancel(self, job: GenerationJob) -> None:
        try:
            await asyncio.wait_for(self.service.cancel_run(job.id, job.run_id or ""), 5.0)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Could not cancel run %s on thread %s: %s", job.run_id, job.id, exc)

    async def _collect(self, job: GenerationJob) -> str:
        messages = await self.service.list_messages(job.id, run_id=job.run_id)
        messages = sorted(messages, key=lambda m: m.get("created_at") or 0)
        texts = [t for t in (message_text(m).strip() for m in messages) if t]
        if not texts:
            job.advance(JobStatus.FAILED)
            job.error = "run completed without any generated message"
            raise GenerationFailedError("Evaluation failed: empty generation output.", job=job)
        return "\n\n".join(texts)

    async def run(self, payload: Payload, photos: list[PhotoUpload]) -> RawOutput:
        loop = asyncio.get_running_loop()
        started = loop.time()
        assets = select_photos(photos)

        try:
            job = await self._submit(payload, assets)
        except ServiceClientError as exc:
            logger.error("Generation submit failed: %s", exc)
            raise GenerationFailedError(
                "Evaluation failed: could not submit the generation job.",
                details={"code": exc.code},
            ) from exc

        while True:
            job.elapsed = loop.time() - started
            if job.elapsed >= self.timeout or job.retries >= self.max_polls:
                job.advance(JobStatus.TIMEOUT)
                job.error = (
                    f"no terminal state after {job.retries} polls / {job.elapsed:.1f}s"
                )
                logger.error("Generation run %s timed out: %s", job.run_id, job.error)
                await self._cancel(job)
                raise GenerationTimeoutError("Evaluation timed out.", job=job)

            remaining = self.timeout - job.elapsed
            await asyncio.sleep(min(self.poll_interval, remaining))
            job.retries += 1
            try:
                run = await asyncio.wait_for(
                    self.service.get_run(job.id, job.run_id or ""),
                    max(self.timeout - (loop.time() - started), 0.001),
                )
            except (ServiceClientError, asyncio.TimeoutError) as exc:
                # A single failed poll is not terminal; the budget still bounds us.
                logger.warning("Poll %d for run %s failed: %s", job.retries, job.run_id, exc)
                continue

            status = str(run.get("status") or "")
            if status == "completed":
                try:
                    text = await self._collect(job)
                except ServiceClientError as exc:
                    job.advance(JobStatus.FAILED)
                    job.error = str(exc)
                    raise GenerationFailedError(
                        "Evaluation failed: could not fetch the generated report.", job=job
                    ) from exc
                job.elapsed = loop.time() - started
                job.advance(JobStatus.COMPLETED)
                return RawOutput(text=text, job=job)
            if status in _FAILED:
                last_error = run.get("last_error") or {}
                job.advance(JobStatus.FAILED)
                job.error = (
                    str(last_error.get("message"))
                    if isinstance(last_error, dict) and last_error.get("message")
                    else status
                )
                logger.error("Generation run %s ended %s: %s", job.run_id, status, job.error)
                if status == "requires_action":
                    await self._cancel(job)
                raise GenerationFailedError("Evaluation failed.", job=job)
            if status not in _IN_PROGRESS:
                logger.warning("Unexpected run status %r for %s", status, job.run_id)
