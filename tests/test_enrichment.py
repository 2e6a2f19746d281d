"""Tests for the enrichment fan-out and listing-link detection."""

from __future__ import annotations

import asyncio

from fakes import FakeRecalls, FakeScraper, FakeSearch, photo

from auto_eval.models import (
    EvaluationRequest,
    Provenance,
    Role,
    ScrapedListing,
    VehicleIdentity,
)
from auto_eval.pipeline.enrichment import (
    AuctionSearchSource,
    EnrichmentFanout,
    ListingScrapeSource,
    RecallSource,
    RetailSearchSource,
    VinSearchSource,
    detect_listing_only,
    find_listing_urls,
)

FORD = VehicleIdentity(
    year="2014",
    make="Ford",
    model="F-150",
    provenance={"year": Provenance.DECODED, "make": Provenance.DECODED, "model": Provenance.DECODED},
    vin="1FTFW1ET1EFA00001",
)


class _HangingSearch:
    async def search(self, query: str, *, limit: int = 3):
        await asyncio.sleep(10)
        return []


def _fanout(recalls=None, search=None, scraper=None, timeout=1.0) -> EnrichmentFanout:
    search = search or FakeSearch()
    return EnrichmentFanout(
        [
            RecallSource(recalls or FakeRecalls({"count": 2, "summaries": ["a", "b"]})),
            RetailSearchSource(search),
            AuctionSearchSource(search),
            VinSearchSource(search),
            ListingScrapeSource(scraper or FakeScraper()),
        ],
        branch_timeout=timeout,
    )


class TestEnrichmentFanout:
    async def test_all_branches_succeed(self):
        search = FakeSearch()
        recalls = FakeRecalls({"count": 2, "summaries": ["Latch", "Airbag"]})
        bundle = await _fanout(recalls, search).enrich(FORD, FORD.vin, "", zip_code="30301")
        assert bundle.recalls.available
        assert bundle.recalls.count == 2
        assert len(bundle.retail) == 3
        assert len(bundle.auction) == 3
        assert len(bundle.vin) == 3
        assert bundle.listing is None
        assert bundle.failures == {}
        assert recalls.calls == [("Ford", "F-150", 2014)]
        assert "2014 Ford F-150 used for sale price near 30301" in search.queries
        assert '"1FTFW1ET1EFA00001"' in search.queries

    async def test_recall_failure_leaves_other_branches_intact(self):
        recalls = FakeRecalls(exc=RuntimeError("NHTSA 503"))
        bundle = await _fanout(recalls).enrich(FORD, FORD.vin, "")
        assert not bundle.recalls.available
        assert bundle.recalls.count == 0
        assert bundle.retail and bundle.auction
        assert "NHTSA 503" in bundle.failures["recalls"]

    async def test_recall_error_payload_counts_as_failure(self):
        recalls = FakeRecalls({"count": 0, "summaries": [], "error": "timeout"})
        bundle = await _fanout(recalls).enrich(FORD, FORD.vin, "")
        assert not bundle.recalls.available
        assert "recalls" in bundle.failures

    async def test_slow_branch_times_out_without_blocking_siblings(self):
        fanout = EnrichmentFanout(
            [RecallSource(FakeRecalls({"count": 1, "summaries": ["x"]})), RetailSearchSource(_HangingSearch())],
            branch_timeout=0.05,
        )
        bundle = await asyncio.wait_for(fanout.enrich(FORD, None, ""), 1.0)
        assert bundle.recalls.count == 1
        assert bundle.retail == []
        assert "timed out" in bundle.failures["retail"]

    async def test_recalls_skipped_without_make_model(self):
        recalls = FakeRecalls()
        identity = VehicleIdentity(year="2014", make="", model="", provenance={})
        bundle = await _fanout(recalls).enrich(identity, None, "")
        assert recalls.calls == []
        assert not bundle.recalls.available
        assert "recalls" not in bundle.failures

    async def test_vin_search_only_with_vin(self):
        search = FakeSearch()
        await _fanout(search=search).enrich(FORD, None, "")
        assert not any(q.startswith('"') for q in search.queries)

    async def test_listing_branch_runs_with_url(self):
        listing = ScrapedListing(url="https://offerup.com/item/detail/1", title="F-150", price=9000)
        bundle = await _fanout(scraper=FakeScraper(listing)).enrich(
            FORD, None, "", listing_url=listing.url
        )
        assert bundle.listing == listing

    async def test_empty_scrape_is_none(self):
        bundle = await _fanout(scraper=FakeScraper()).enrich(
            FORD, None, "", listing_url="https://offerup.com/item/detail/1"
        )
        assert bundle.listing is None

    async def test_scrape_only(self):
        listing = ScrapedListing(url="https://offerup.com/item/detail/1", title="F-150")
        scraper = FakeScraper(listing)
        value, failure = await _fanout(scraper=scraper).scrape_only(listing.url)
        assert value == listing
        assert failure is None
        assert scraper.urls == [listing.url]

    async def test_scrape_only_without_scraper(self):
        value, failure = await EnrichmentFanout([]).scrape_only("https://offerup.com/x")
        assert value is None
        assert failure


class TestListingDetection:
    def test_lone_link_in_notes(self):
        request = EvaluationRequest(
            role=Role.BUYER,
            condition_notes="https://www.facebook.com/marketplace/item/123/",
        )
        assert detect_listing_only(request) == "https://www.facebook.com/marketplace/item/123/"

    def test_lone_link_in_listing_field(self):
        request = EvaluationRequest(role=Role.BUYER, listing_url="https://www.copart.com/lot/1")
        assert detect_listing_only(request) == "https://www.copart.com/lot/1"

    def test_notes_text_disables_short_circuit(self):
        request = EvaluationRequest(
            role=Role.BUYER,
            condition_notes="check this https://www.copart.com/lot/1 runs rough",
        )
        assert detect_listing_only(request) is None
        assert find_listing_urls(request) == ["https://www.copart.com/lot/1"]

    def test_other_fields_disable_short_circuit(self):
        base = {"role": Role.BUYER, "condition_notes": "https://www.copart.com/lot/1"}
        assert detect_listing_only(EvaluationRequest(**base, make="Ford")) is None
        assert detect_listing_only(EvaluationRequest(**base, asking_price=5000)) is None
        assert detect_listing_only(EvaluationRequest(**base, photos=[photo("a.jpg")])) is None

    def test_two_links_are_not_link_only(self):
        request = EvaluationRequest(
            role=Role.BUYER,
            condition_notes="https://www.copart.com/lot/1 https://www.iaai.com/vehicle/2",
        )
        assert detect_listing_only(request) is None

    def test_same_link_twice_counts_once(self):
        request = EvaluationRequest(
            role=Role.BUYER,
            condition_notes="https://www.copart.com/lot/1.",
            listing_url="https://www.copart.com/lot/1",
        )
        assert detect_listing_only(request) == "https://www.copart.com/lot/1"

    def test_unrecognized_host(self):
        request = EvaluationRequest(role=Role.BUYER, condition_notes="https://example.com/car")
        assert detect_listing_only(request) is None
        assert find_listing_urls(request) == []
