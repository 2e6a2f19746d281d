"""Append-only writer for the Supabase ``api_logs`` table (PostgREST)."""

from __future__ import annotations

import json
from typing import Any

import aiohttp

from auto_eval.errors import ServiceClientError
from auto_eval.models import AuditLogEntry

_REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=5)


class SupabaseAuditStore:
    TABLE = "api_logs"

    def __init__(self, url: str, api_key: str) -> None:
        self.url = url.rstrip("/")
        self.api_key = api_key.strip()

    async def write(self, entry: AuditLogEntry) -> None:
        if not self.url or not self.api_key:
            raise ServiceClientError(
                "SUPABASE_URL / SUPABASE_ANON_KEY are not configured.",
                code="MISSING_API_KEY",
            )
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Prefer": "return=minimal",
        }
        body: Any = json.dumps(entry.to_row(), default=str)
        async with aiohttp.ClientSession(headers=headers) as session:
            async with session.post(
                f"{self.url}/rest/v1/{self.TABLE}",
                data=body,
                timeout=_REQUEST_TIMEOUT,
            ) as resp:
                if resp.status >= 400:
                    raise ServiceClientError(
                        f"Audit insert failed with HTTP {resp.status}.",
                        code="AUDIT_HTTP_ERROR",
                        status=resp.status,
                        details={"response": await resp.text()},
                    )
