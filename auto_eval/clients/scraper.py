"""Best-effort listing page scraper.

Marketplaces change their markup constantly, so extraction tries structured
data first (JSON-LD, OpenGraph) and falls back to text patterns. Any field
may come back empty; only transport failures raise.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any
from urllib.parse import urlparse

import aiohttp
from bs4 import BeautifulSoup

from auto_eval.constants import MARKETPLACE_HOSTS, MARKETPLACE_PATH_HINTS
from auto_eval.errors import ServiceClientError
from auto_eval.models import ScrapedListing
from auto_eval.normalization import parse_int, parse_price

logger = logging.getLogger(__name__)

_REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=10)
_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml",
}

_PRICE_RE = re.compile(r"\$\s?\d{1,3}(?:,\d{3})+|\$\s?\d{3,6}")
_MILEAGE_RE = re.compile(
    r"(\d{1,3}(?:,\d{3})+|\d{1,7}|\d{1,3}(?:\.\d)?\s?[kK])\s*(?:miles|mi\b)",
    re.IGNORECASE,
)
_CONDITION_RE = re.compile(
    r"\b(?:condition|title(?: status)?)\s*[:\-]\s*([A-Za-z][A-Za-z /]{2,40})",
    re.IGNORECASE,
)


def _host_key(url: str) -> tuple[str, str]:
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    for known in MARKETPLACE_HOSTS:
        if host == known or host.endswith("." + known):
            return known, parsed.path or "/"
    return "", parsed.path or "/"


def is_marketplace_url(url: str) -> bool:
    """True when *url* points at a recognized marketplace or auction site."""
    host, path = _host_key(url)
    if not host:
        return False
    hints = MARKETPLACE_PATH_HINTS.get(host)
    if hints is None:
        return True
    return any(path.lower().startswith(h) for h in hints)


def _iter_json_ld(soup: BeautifulSoup):
    for tag in soup.find_all("script", attrs={"type": "application/ld+json"}):
        try:
            data = json.loads(tag.string or "")
        except (TypeError, ValueError):
            continue
        items = data if isinstance(data, list) else [data]
        for item in items:
            if isinstance(item, dict):
                yield item
                graph = item.get("@graph")
                if isinstance(graph, list):
                    yield from (g for g in graph if isinstance(g, dict))


def _meta(soup: BeautifulSoup, prop: str) -> str:
    tag = soup.find("meta", attrs={"property": prop}) or soup.find(
        "meta", attrs={"name": prop}
    )
    if tag is None:
        return ""
    return str(tag.get("content") or "").strip()


def extract_listing(url: str, html: str) -> ScrapedListing:
    """Pull title/price/mileage/condition out of a listing page."""
    soup = BeautifulSoup(html or "", "html.parser")
    listing = ScrapedListing(url=url)

    for item in _iter_json_ld(soup):
        if not listing.title and item.get("name"):
            listing.title = str(item["name"]).strip()
        offers: Any = item.get("offers")
        if isinstance(offers, list):
            offers = offers[0] if offers else None
        if listing.price is None and isinstance(offers, dict):
            listing.price = parse_price(offers.get("price"))
        odometer = item.get("mileageFromOdometer")
        if listing.mileage is None and odometer is not None:
            value = odometer.get("value") if isinstance(odometer, dict) else odometer
            listing.mileage = parse_int(value)
        condition = item.get("itemCondition") or item.get("vehicleCondition")
        if not listing.condition and condition:
            listing.condition = str(condition).rsplit("/", 1)[-1].strip()

    if not listing.title:
        listing.title = _meta(soup, "og:title") or (
            soup.title.get_text(strip=True) if soup.title else None
        ) or None
    if listing.price is None:
        listing.price = parse_price(_meta(soup, "product:price:amount")) or None

    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = " ".join(soup.get_text(" ", strip=True).split())

    if listing.price is None:
        match = _PRICE_RE.search(text)
        if match:
            listing.price = parse_price(match.group(0))
    if listing.mileage is None:
        match = _MILEAGE_RE.search(text)
        if match:
            listing.mileage = parse_int(match.group(1).replace(" ", ""))
    if not listing.condition:
        match = _CONDITION_RE.search(text)
        if match:
            listing.condition = match.group(1).strip()
    return listing


class ListingScraper:
    """Fetch a listing page and extract what it can."""

    def __init__(self) -> None:
        self.session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> ListingScraper:
        self.session = aiohttp.ClientSession(headers=_HEADERS)
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self.session:
            await self.session.close()

    async def scrape(self, url: str) -> ScrapedListing:
        if not self.session:
            raise RuntimeError("Client not entered as context manager")
        try:
            async with self.session.get(url, timeout=_REQUEST_TIMEOUT) as resp:
                if resp.status >= 400:
                    raise ServiceClientError(
                        f"Listing page returned HTTP {resp.status}.",
                        code="SCRAPE_HTTP_ERROR",
                        status=resp.status,
                        details={"url": url},
                    )
                html = await resp.text()
        except ServiceClientError:
            raise
        except TimeoutError as exc:
            raise ServiceClientError(
                "Listing page request timed out.", code="TIMEOUT", details={"url": url}
            ) from exc
        except aiohttp.ClientError as exc:
            logger.warning("Listing scrape failed for %s: %s", url, exc)
            raise ServiceClientError(
                "Listing page request failed.",
                code="NETWORK_ERROR",
                details={"url": url, "error": str(exc)},
            ) from exc
        return extract_listing(url, html)
