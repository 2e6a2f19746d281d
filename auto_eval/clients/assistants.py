"""Async client for an OpenAI Assistants-compatible generation service.

Only the thread/message/run/file calls the job runner needs are wrapped.
"""

from __future__ import annotations

import json
import logging
from typing import Any, BinaryIO

import aiohttp

from auto_eval.errors import ServiceClientError

logger = logging.getLogger(__name__)

_REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=30)


def message_text(message: dict[str, Any]) -> str:
    """Join the text parts of one thread message."""
    parts = []
    for part in message.get("content") or []:
        if not isinstance(part, dict) or part.get("type") != "text":
            continue
        text = part.get("text")
        value = text.get("value") if isinstance(text, dict) else text
        if value:
            parts.append(str(value))
    return "\n".join(parts)


class AssistantsClient:
    """Threads, messages, runs and file uploads over plain HTTP."""

    def __init__(
        self,
        api_key: str,
        assistant_id: str,
        *,
        base_url: str = "https://api.openai.com/v1",
    ) -> None:
        self.api_key = api_key.strip()
        self.assistant_id = assistant_id.strip()
        self.base_url = base_url.rstrip("/")
        self.session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> AssistantsClient:
        self.session = aiohttp.ClientSession(
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "OpenAI-Beta": "assistants=v2",
            },
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self.session:
            await self.session.close()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        data: Any = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        if not self.session:
            raise RuntimeError("Client not entered as context manager")
        if not self.api_key:
            raise ServiceClientError(
                "OPENAI_API_KEY is not configured.", code="MISSING_API_KEY"
            )
        if not self.assistant_id:
            raise ServiceClientError(
                "OPENAI_ASSISTANT_ID is not configured.", code="MISSING_ASSISTANT_ID"
            )

        url = f"{self.base_url}{path}"
        try:
            async with self.session.request(
                method,
                url,
                json=json_body,
                data=data,
                params=params,
                timeout=_REQUEST_TIMEOUT,
            ) as resp:
                raw_text = await resp.text()
                try:
                    payload = json.loads(raw_text) if raw_text else {}
                except json.JSONDecodeError:
                    payload = {"raw": raw_text}

                if resp.status >= 400:
                    message = f"Generation service request failed with HTTP {resp.status}."
                    error = payload.get("error") if isinstance(payload, dict) else None
                    if isinstance(error, dict) and error.get("message"):
                        message = str(error["message"])
                    raise ServiceClientError(
                        message,
                        code="GENERATION_HTTP_ERROR",
                        status=resp.status,
                        details={"path": path},
                    )
                return payload if isinstance(payload, dict) else {"data": payload}
        except ServiceClientError:
            raise
        except TimeoutError as exc:
            raise ServiceClientError(
                "Generation service request timed out.",
                code="TIMEOUT",
                details={"path": path},
            ) from exc
        except aiohttp.ClientError as exc:
            logger.error("Generation service client error (%s): %s", path, exc)
            raise ServiceClientError(
                "Generation service request failed due to a network/client error.",
                code="NETWORK_ERROR",
                details={"path": path, "error": str(exc)},
            ) from exc

    # ── Threads & messages ──────────────────────────────────────────

    async def create_thread(self) -> str:
        data = await self._request("POST", "/threads", json_body={})
        return str(data["id"])

    async def add_message(
        self,
        thread_id: str,
        text: str,
        *,
        image_file_ids: list[str] | None = None,
    ) -> str:
        content: list[dict[str, Any]] = [{"type": "text", "text": text}]
        for file_id in image_file_ids or []:
            content.append({"type": "image_file", "image_file": {"file_id": file_id}})
        data = await self._request(
            "POST",
            f"/threads/{thread_id}/messages",
            json_body={"role": "user", "content": content},
        )
        return str(data.get("id", ""))

    async def list_messages(
        self, thread_id: str, *, run_id: str | None = None
    ) -> list[dict[str, Any]]:
        """Assistant-authored messages in creation order."""
        params = {"order": "asc", "limit": "100"}
        if run_id:
            params["run_id"] = run_id
        data = await self._request(
            "GET", f"/threads/{thread_id}/messages", params=params
        )
        messages = [m for m in data.get("data") or [] if isinstance(m, dict)]
        messages = [m for m in messages if m.get("role") == "assistant"]
        messages.sort(key=lambda m: m.get("created_at") or 0)
        return messages

    # ── Files ───────────────────────────────────────────────────────

    async def upload_file(
        self, filename: str, stream: BinaryIO, content_type: str
    ) -> str:
        form = aiohttp.FormData()
        form.add_field("purpose", "vision")
        form.add_field("file", stream, filename=filename, content_type=content_type)
        data = await self._request("POST", "/files", data=form)
        return str(data["id"])

    # ── Runs ────────────────────────────────────────────────────────

    async def create_run(self, thread_id: str, *, instructions: str) -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/threads/{thread_id}/runs",
            json_body={
                "assistant_id": self.assistant_id,
                "additional_instructions": instructions,
            },
        )

    async def get_run(self, thread_id: str, run_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/threads/{thread_id}/runs/{run_id}")

    async def cancel_run(self, thread_id: str, run_id: str) -> None:
        await self._request("POST", f"/threads/{thread_id}/runs/{run_id}/cancel")
