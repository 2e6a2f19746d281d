"""Async NHTSA client for VIN decoding and recall lookups.

Both endpoints are free and require no authentication. They are also
unreliable enough that every caller must expect timeouts and errors.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import aiohttp

from auto_eval.clients.cache import TTLCache, cache_key

logger = logging.getLogger(__name__)

_MAX_SUMMARIES = 10
_SUMMARY_CHARS = 280
_REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=8)
_CURRENT_YEAR = datetime.now(timezone.utc).year


def _validate_model_year(model_year: int) -> None:
    if not (1886 <= model_year <= _CURRENT_YEAR + 1):
        raise ValueError(
            f"model_year must be between 1886 and {_CURRENT_YEAR + 1}, got {model_year}"
        )


def _normalize_input(value: str) -> str:
    """Title-case free text but leave short all-caps acronyms (BMW, GMC) alone."""
    text = value.strip()
    if text.isupper() and len(text) <= 4:
        return text
    return text.title()


def _date_sort_key(value: str) -> float:
    """Return a comparable timestamp for mixed date formats; unknown dates sort last."""
    text = value.strip()
    if not text:
        return 0.0

    for fmt in ("%d/%m/%Y", "%m/%d/%Y", "%Y-%m-%d"):
        try:
            dt = datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
            return dt.timestamp()
        except ValueError:
            continue
    return 0.0


def _summarize_recall(record: dict[str, Any]) -> str:
    component = str(record.get("Component") or "").strip()
    summary = " ".join(str(record.get("Summary") or "").split())
    if len(summary) > _SUMMARY_CHARS:
        summary = summary[: _SUMMARY_CHARS - 3].rstrip() + "..."
    campaign = str(record.get("NHTSACampaignNumber") or "").strip()
    head = f"[{campaign}] " if campaign else ""
    if component and summary:
        return f"{head}{component}: {summary}"
    return f"{head}{component or summary}".strip()


class NHTSAClient:
    """Async client for NHTSA public APIs (VIN decode, recalls)."""

    VPIC_BASE = "https://vpic.nhtsa.dot.gov/api/vehicles"
    API_BASE = "https://api.nhtsa.gov"

    def __init__(self, *, cache: TTLCache | None = None) -> None:
        self.session: aiohttp.ClientSession | None = None
        self._cache = cache or TTLCache()

    async def __aenter__(self) -> NHTSAClient:
        self.session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self.session:
            await self.session.close()

    async def _request(self, url: str, params: dict[str, str] | None = None) -> Any:
        """Make a GET request with one retry on transient failures."""
        if not self.session:
            raise RuntimeError("Client not entered as context manager")

        key = cache_key(url, params)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        last_exc: Exception | None = None
        for attempt in range(2):
            try:
                async with self.session.get(
                    url, params=params, timeout=_REQUEST_TIMEOUT
                ) as resp:
                    if resp.status >= 500:
                        last_exc = aiohttp.ClientResponseError(
                            resp.request_info,
                            resp.history,
                            status=resp.status,
                        )
                        if attempt == 0:
                            continue
                        raise last_exc
                    resp.raise_for_status()
                    data = await resp.json(content_type=None)
                    self._cache.set(key, data)
                    return data
            except (aiohttp.ClientError, TimeoutError) as exc:
                last_exc = exc
                if attempt == 0:
                    continue
                raise

        raise last_exc  # type: ignore[misc]  # pragma: no cover

    # ── VIN Decode ──────────────────────────────────────────────────

    async def decode_vin(self, vin: str) -> dict[str, Any] | None:
        """Decode a VIN via the NHTSA vPIC API; ``None`` on any failure."""
        try:
            data = await self._request(
                f"{self.VPIC_BASE}/DecodeVINValuesExtended/{vin}",
                params={"format": "json"},
            )
        except (aiohttp.ClientError, TimeoutError) as exc:
            logger.error("NHTSA VIN decode error for %s: %s", vin, exc)
            return None
        results = data.get("Results", []) if isinstance(data, dict) else []
        return results[0] if results and isinstance(results[0], dict) else None

    # ── Recalls ─────────────────────────────────────────────────────

    async def get_recalls(
        self, make: str, model: str, model_year: int
    ) -> dict[str, Any]:
        """Get recall data for a vehicle by make/model/year.

        Returns ``{"count", "summaries", "records"}``; on transport failure the
        dict also carries an ``"error"`` key and empty data.
        """
        make = _normalize_input(make)
        model = _normalize_input(model)
        _validate_model_year(model_year)

        try:
            data = await self._request(
                f"{self.API_BASE}/recalls/recallsByVehicle",
                params={"make": make, "model": model, "modelYear": str(model_year)},
            )
        except (aiohttp.ClientError, TimeoutError) as exc:
            logger.error("NHTSA recalls error: %s", exc)
            return {"count": 0, "summaries": [], "records": [], "error": str(exc)}

        raw_results = data.get("results", []) if isinstance(data, dict) else []
        results = [dict(r) for r in raw_results if isinstance(r, dict)]
        count = data.get("Count", len(results)) if isinstance(data, dict) else 0

        results.sort(
            key=lambda r: _date_sort_key(str(r.get("ReportReceivedDate", ""))),
            reverse=True,
        )
        summaries = [s for s in (_summarize_recall(r) for r in results) if s]
        return {
            "count": int(count or 0),
            "summaries": summaries[:_MAX_SUMMARIES],
            "records": results[:_MAX_SUMMARIES],
        }
