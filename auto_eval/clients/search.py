"""Async web search client (Google Custom Search JSON API)."""

from __future__ import annotations

import logging
from typing import Any

import aiohttp

from auto_eval.clients.cache import TTLCache, cache_key
from auto_eval.constants import MAX_SNIPPETS
from auto_eval.errors import ServiceClientError
from auto_eval.models import SearchSnippet

logger = logging.getLogger(__name__)

_REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=8)


def parse_search_items(payload: dict[str, Any], limit: int = MAX_SNIPPETS) -> list[SearchSnippet]:
    items = payload.get("items") if isinstance(payload, dict) else None
    if not isinstance(items, list):
        return []
    snippets = []
    for item in items:
        if not isinstance(item, dict):
            continue
        link = str(item.get("link") or "").strip()
        if not link:
            continue
        snippets.append(
            SearchSnippet(
                title=str(item.get("title") or "").strip(),
                snippet=" ".join(str(item.get("snippet") or "").split()),
                link=link,
            )
        )
        if len(snippets) >= limit:
            break
    return snippets


class SearchClient:
    """Ranked web search returning the top results as ``SearchSnippet``s."""

    BASE_URL = "https://www.googleapis.com/customsearch/v1"

    def __init__(
        self, api_key: str, cx: str, *, cache: TTLCache | None = None
    ) -> None:
        self.api_key = api_key.strip()
        self.cx = cx.strip()
        self.session: aiohttp.ClientSession | None = None
        self._cache = cache or TTLCache(ttl=300)

    async def __aenter__(self) -> SearchClient:
        self.session = aiohttp.ClientSession()
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self.session:
            await self.session.close()

    async def search(self, query: str, *, limit: int = MAX_SNIPPETS) -> list[SearchSnippet]:
        if not self.session:
            raise RuntimeError("Client not entered as context manager")
        if not self.api_key or not self.cx:
            raise ServiceClientError(
                "GOOGLE_SEARCH_API_KEY / GOOGLE_SEARCH_CX are not configured.",
                code="MISSING_API_KEY",
            )

        key = cache_key(self.BASE_URL, {"q": query, "num": limit})
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        params = {"key": self.api_key, "cx": self.cx, "q": query, "num": str(limit)}
        try:
            async with self.session.get(
                self.BASE_URL, params=params, timeout=_REQUEST_TIMEOUT
            ) as resp:
                if resp.status >= 400:
                    raise ServiceClientError(
                        f"Search request failed with HTTP {resp.status}.",
                        code="SEARCH_HTTP_ERROR",
                        status=resp.status,
                        details={"query": query},
                    )
                payload = await resp.json(content_type=None)
        except ServiceClientError:
            raise
        except TimeoutError as exc:
            raise ServiceClientError(
                "Search request timed out.",
                code="TIMEOUT",
                details={"query": query},
            ) from exc
        except aiohttp.ClientError as exc:
            logger.error("Search client error (%s): %s", query, exc)
            raise ServiceClientError(
                "Search request failed due to a network/client error.",
                code="NETWORK_ERROR",
                details={"query": query, "error": str(exc)},
            ) from exc

        snippets = parse_search_items(payload, limit)
        self._cache.set(key, snippets)
        return snippets
