"""Concurrent enrichment fan-out over independent, unreliable sources.

Each source is a small strategy object. The fan-out runs every applicable
source at once under its own timeout and folds failures into empty values,
so one slow or broken provider never takes the others down with it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Protocol

from auto_eval.clients.scraper import is_marketplace_url
from auto_eval.constants import MAX_SNIPPETS, URL_RE
from auto_eval.errors import ServiceClientError
from auto_eval.models import (
    EnrichmentBundle,
    EvaluationRequest,
    RecallData,
    ScrapedListing,
    SearchSnippet,
    VehicleIdentity,
)

logger = logging.getLogger(__name__)


@dataclass
class EnrichmentContext:
    identity: VehicleIdentity
    vin: str | None = None
    notes: str = ""
    zip_code: str = ""
    listing_url: str | None = None


class EnrichmentSource(Protocol):
    """A single fan-out branch; ``name`` is the bundle attribute it fills."""

    name: str

    def applies(self, ctx: EnrichmentContext) -> bool: ...

    async def fetch(self, ctx: EnrichmentContext) -> Any: ...

    def empty(self) -> Any: ...


# ── Collaborator shapes ─────────────────────────────────────────────


class RecallLookup(Protocol):
    async def get_recalls(self, make: str, model: str, model_year: int) -> dict[str, Any]: ...


class WebSearch(Protocol):
    async def search(self, query: str, *, limit: int = MAX_SNIPPETS) -> list[SearchSnippet]: ...


class PageScraper(Protocol):
    async def scrape(self, url: str) -> ScrapedListing: ...


# ── Sources ─────────────────────────────────────────────────────────


class RecallSource:
    name = "recalls"

    def __init__(self, lookup: RecallLookup) -> None:
        self.lookup = lookup

    def applies(self, ctx: EnrichmentContext) -> bool:
        return bool(ctx.identity.make and ctx.identity.model)

    async def fetch(self, ctx: EnrichmentContext) -> RecallData:
        identity = ctx.identity
        data = await self.lookup.get_recalls(
            identity.make, identity.model, int(identity.year)
        )
        if data.get("error"):
            raise ServiceClientError(
                f"recall lookup failed: {data['error']}", code="RECALLS_UNAVAILABLE"
            )
        return RecallData(
            count=int(data.get("count") or 0),
            summaries=[str(s) for s in data.get("summaries") or []],
            available=True,
        )

    def empty(self) -> RecallData:
        return RecallData()


class _SearchSource:
    name = ""

    def __init__(self, search: WebSearch) -> None:
        self.search = search

    def applies(self, ctx: EnrichmentContext) -> bool:
        return bool(ctx.identity.make or ctx.identity.model)

    def query(self, ctx: EnrichmentContext) -> str:
        raise NotImplementedError

    async def fetch(self, ctx: EnrichmentContext) -> list[SearchSnippet]:
        results = await self.search.search(self.query(ctx), limit=MAX_SNIPPETS)
        return list(results)[:MAX_SNIPPETS]

    def empty(self) -> list[SearchSnippet]:
        return []


class RetailSearchSource(_SearchSource):
    name = "retail"

    def query(self, ctx: EnrichmentContext) -> str:
        near = f" near {ctx.zip_code}" if ctx.zip_code else ""
        return f"{ctx.identity.label} used for sale price{near}"


class AuctionSearchSource(_SearchSource):
    name = "auction"

    def query(self, ctx: EnrichmentContext) -> str:
        return f"{ctx.identity.label} auction sold price results"


class VinSearchSource(_SearchSource):
    name = "vin"

    def applies(self, ctx: EnrichmentContext) -> bool:
        return bool(ctx.vin)

    def query(self, ctx: EnrichmentContext) -> str:
        return f'"{ctx.vin}"'


class ListingScrapeSource:
    name = "listing"

    def __init__(self, scraper: PageScraper) -> None:
        self.scraper = scraper

    def applies(self, ctx: EnrichmentContext) -> bool:
        return bool(ctx.listing_url)

    async def fetch(self, ctx: EnrichmentContext) -> ScrapedListing | None:
        assert ctx.listing_url
        listing = await self.scraper.scrape(ctx.listing_url)
        return None if listing.is_empty() else listing

    def empty(self) -> None:
        return None


# ── Listing URL detection ───────────────────────────────────────────


def find_listing_urls(request: EvaluationRequest) -> list[str]:
    """Recognized marketplace URLs from the notes and listing field, de-duplicated."""
    candidates = URL_RE.findall(request.condition_notes or "")
    if request.listing_url:
        candidates.append(request.listing_url.strip())
    seen: list[str] = []
    for url in candidates:
        url = url.rstrip(".,;)")
        if is_marketplace_url(url) and url not in seen:
            seen.append(url)
    return seen


def detect_listing_only(request: EvaluationRequest) -> str | None:
    """Return the URL when a lone listing link is the only meaningful input."""
    urls = find_listing_urls(request)
    if len(urls) != 1:
        return None
    leftover_notes = URL_RE.sub("", request.condition_notes or "")
    if any(ch.isalnum() for ch in leftover_notes):
        return None
    other_input = (
        request.year,
        request.make,
        request.model,
        request.vin,
        request.asking_price,
        request.photos,
    )
    if any(value not in (None, "", []) and str(value).strip() for value in other_input):
        return None
    return urls[0]


# ── Fan-out ─────────────────────────────────────────────────────────


class EnrichmentFanout:
    def __init__(
        self, sources: list[EnrichmentSource], *, branch_timeout: float = 5.0
    ) -> None:
        self.sources = list(sources)
        self.branch_timeout = branch_timeout

    async def _run_branch(
        self, source: EnrichmentSource, ctx: EnrichmentContext
    ) -> tuple[str, Any, str | None]:
        try:
            value = await asyncio.wait_for(source.fetch(ctx), self.branch_timeout)
            return source.name, value, None
        except asyncio.TimeoutError:
            reason = f"timed out after {self.branch_timeout:.1f}s"
        except Exception as exc:  # noqa: BLE001
            reason = str(exc) or type(exc).__name__
        logger.warning("Enrichment branch %s degraded: %s", source.name, reason)
        return source.name, source.empty(), reason

    async def enrich(
        self,
        identity: VehicleIdentity,
        vin: str | None,
        notes: str,
        *,
        zip_code: str = "",
        listing_url: str | None = None,
    ) -> EnrichmentBundle:
        ctx = EnrichmentContext(
            identity=identity,
            vin=vin,
            notes=notes,
            zip_code=zip_code,
            listing_url=listing_url,
        )
        bundle = EnrichmentBundle()
        branches = [s for s in self.sources if s.applies(ctx)]
        results = await asyncio.gather(*(self._run_branch(s, ctx) for s in branches))
        for name, value, failure in results:
            setattr(bundle, name, value)
            if failure is not None:
                bundle.failures[name] = failure
        return bundle

    async def scrape_only(self, url: str) -> tuple[ScrapedListing | None, str | None]:
        """Run just the listing branch for the link-only short-circuit."""
        scraper = next((s for s in self.sources if s.name == "listing"), None)
        if scraper is None:
            return None, "no listing scraper configured"
        identity = VehicleIdentity(year="", make="", model="", provenance={})
        _, value, failure = await self._run_branch(
            scraper, EnrichmentContext(identity=identity, listing_url=url)
        )
        return value, failure
