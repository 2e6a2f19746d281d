"""Tests for the NHTSA client and the decode/recall tool implementations."""

from __future__ import annotations

import json
import time
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest
from fakes import make_response_ctx

from auto_eval.clients.cache import TTLCache, cache_key
from auto_eval.clients.nhtsa import (
    NHTSAClient,
    _date_sort_key,
    _normalize_input,
    _summarize_recall,
    _validate_model_year,
)
from auto_eval.tools.evaluate import decode_vin_impl, lookup_recalls_impl

# ── Fixtures ──────────────────────────────────────────────────────


def _make_recalls_response(count: int = 3) -> dict[str, Any]:
    return {
        "Count": count,
        "results": [
            {
                "NHTSACampaignNumber": f"24V{i:03d}000",
                "Component": "AIR BAGS" if i % 2 == 0 else "ELECTRICAL SYSTEM",
                "Summary": f"Recall summary {i}",
                "ReportReceivedDate": f"0{i + 1}/01/2024",
                "Manufacturer": "Test Manufacturer",
            }
            for i in range(count)
        ],
    }


def _make_vin_decode_response() -> dict[str, Any]:
    return {
        "Results": [
            {
                "Make": "FORD",
                "Model": "F-150",
                "ModelYear": "2014",
                "Trim": "XLT",
                "BodyClass": "Pickup",
                "FuelTypePrimary": "Gasoline",
                "PlantCountry": "Not Applicable",
            }
        ]
    }


def _client_with(*contexts: AsyncMock) -> NHTSAClient:
    client = NHTSAClient(cache=TTLCache())
    client.session = MagicMock()
    client.session.get = MagicMock(side_effect=list(contexts))
    return client


def _patched_client(client: NHTSAClient):
    """Patch the tool module's NHTSAClient so ``async with`` yields *client*."""
    mock_cls = MagicMock()
    mock_cls.return_value.__aenter__ = AsyncMock(return_value=client)
    mock_cls.return_value.__aexit__ = AsyncMock(return_value=False)
    return patch("auto_eval.tools.evaluate.NHTSAClient", mock_cls)


# ── TTLCache tests ────────────────────────────────────────────────


class TestTTLCache:
    def test_set_and_get(self):
        cache = TTLCache(ttl=60)
        cache.set("key1", "value1")
        assert cache.get("key1") == "value1"

    def test_miss_returns_none(self):
        assert TTLCache(ttl=60).get("missing") is None

    def test_expired_entry_returns_none(self):
        cache = TTLCache(ttl=0)
        cache.set("key1", "value1")
        time.sleep(0.01)
        assert cache.get("key1") is None

    def test_clear(self):
        cache = TTLCache(ttl=60)
        cache.set("key1", "value1")
        cache.clear()
        assert cache.get("key1") is None

    def test_oldest_entry_evicted_past_capacity(self):
        cache = TTLCache(ttl=60, max_entries=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)
        assert len(cache) == 2
        assert cache.get("b") is None
        assert cache.get("a") == 1

    def test_key_ignores_param_order(self):
        assert cache_key("u", {"make": "Ford", "modelYear": "2014"}) == cache_key(
            "u", {"modelYear": "2014", "make": "Ford"}
        )
        assert cache_key("u") == "u"


# ── Validation / helpers ──────────────────────────────────────────


class TestValidation:
    def test_valid_model_year(self):
        _validate_model_year(2014)

    def test_model_year_too_low(self):
        with pytest.raises(ValueError, match="1886"):
            _validate_model_year(1800)

    def test_model_year_too_high(self):
        with pytest.raises(ValueError, match="model_year"):
            _validate_model_year(3000)

    def test_normalize_input_preserves_acronyms(self):
        assert _normalize_input(" BMW ") == "BMW"
        assert _normalize_input("GMC") == "GMC"
        assert _normalize_input("ford") == "Ford"

    def test_date_sort_key_unknown_sorts_last(self):
        assert _date_sort_key("") == 0.0
        assert _date_sort_key("not a date") == 0.0
        assert _date_sort_key("2024-03-01") > _date_sort_key("2023-03-01")

    def test_summarize_recall_truncates(self):
        summary = _summarize_recall(
            {"NHTSACampaignNumber": "14V001000", "Component": "LATCH", "Summary": "x" * 500}
        )
        assert summary.startswith("[14V001000] LATCH: ")
        assert summary.endswith("...")
        assert len(summary) < 320


# ── Client tests ──────────────────────────────────────────────────


class TestNHTSAClient:
    async def test_decode_vin(self):
        client = _client_with(make_response_ctx(json_data=_make_vin_decode_response()))
        result = await client.decode_vin("1FTFW1ET1EFA00001")
        assert result is not None
        assert result["Make"] == "FORD"

    async def test_decode_vin_error_returns_none(self):
        client = NHTSAClient(cache=TTLCache())
        client.session = MagicMock()
        client.session.get = MagicMock(side_effect=aiohttp.ClientError("boom"))
        assert await client.decode_vin("1FTFW1ET1EFA00001") is None

    async def test_decode_vin_empty_results(self):
        client = _client_with(make_response_ctx(json_data={"Results": []}))
        assert await client.decode_vin("1FTFW1ET1EFA00001") is None

    async def test_get_recalls_sorted_newest_first(self):
        client = _client_with(make_response_ctx(json_data=_make_recalls_response(3)))
        result = await client.get_recalls("ford", "F-150", 2014)
        assert result["count"] == 3
        assert result["summaries"][0].startswith("[24V002000]")
        assert len(result["records"]) == 3
        assert "error" not in result
        _, kwargs = client.session.get.call_args
        assert kwargs["params"]["make"] == "Ford"

    async def test_get_recalls_transport_error_is_reported(self):
        client = NHTSAClient(cache=TTLCache())
        client.session = MagicMock()
        client.session.get = MagicMock(side_effect=aiohttp.ClientError("down"))
        result = await client.get_recalls("Ford", "F-150", 2014)
        assert result["count"] == 0
        assert result["error"] == "down"

    async def test_retries_once_on_server_error(self):
        client = _client_with(
            make_response_ctx(status=503),
            make_response_ctx(json_data=_make_recalls_response(1)),
        )
        result = await client.get_recalls("Ford", "F-150", 2014)
        assert result["count"] == 1
        assert client.session.get.call_count == 2

    async def test_results_are_cached(self):
        client = _client_with(make_response_ctx(json_data=_make_recalls_response(2)))
        first = await client.get_recalls("Ford", "F-150", 2014)
        second = await client.get_recalls("Ford", "F-150", 2014)
        assert first == second
        assert client.session.get.call_count == 1

    async def test_request_requires_context_manager(self):
        with pytest.raises(RuntimeError, match="context manager"):
            await NHTSAClient().get_recalls("Ford", "F-150", 2014)


# ── Tool implementation tests ─────────────────────────────────────


class TestDecodeVinImpl:
    async def test_invalid_vin(self):
        result = await decode_vin_impl(vin="NOTAVIN")
        assert "Invalid VIN" in result

    async def test_decoded_fields_rendered(self):
        client = _client_with(make_response_ctx(json_data=_make_vin_decode_response()))
        with _patched_client(client):
            result = await decode_vin_impl(vin="1ftfw1et1efa00001")
        assert "VIN 1FTFW1ET1EFA00001" in result
        assert "- Make: FORD" in result
        assert "Plant country" not in result

    async def test_raw_payload(self):
        client = _client_with(make_response_ctx(json_data=_make_vin_decode_response()))
        with _patched_client(client):
            result = await decode_vin_impl(vin="1FTFW1ET1EFA00001", raw=True)
        payload = json.loads(result)
        assert payload["_raw"] is True
        assert payload["_tool"] == "decode_vin"
        assert payload["data"]["decoded"]["Model"] == "F-150"

    async def test_decode_failure(self):
        client = _client_with(make_response_ctx(json_data={"Results": []}))
        with _patched_client(client):
            result = await decode_vin_impl(vin="1FTFW1ET1EFA00001", raw=True)
        payload = json.loads(result)
        assert payload["data"]["code"] == "VIN_DECODE_FAILED"


class TestLookupRecallsImpl:
    async def test_lists_recalls(self):
        client = _client_with(make_response_ctx(json_data=_make_recalls_response(2)))
        with _patched_client(client):
            result = await lookup_recalls_impl(make="Ford", model="F-150", model_year=2014)
        assert result.startswith("2 NHTSA recall(s) for the 2014 Ford F-150")

    async def test_no_recalls(self):
        client = _client_with(make_response_ctx(json_data={"Count": 0, "results": []}))
        with _patched_client(client):
            result = await lookup_recalls_impl(make="Ford", model="F-150", model_year=2014)
        assert result == "No NHTSA recalls found for the 2014 Ford F-150."

    async def test_invalid_year(self):
        client = _client_with()
        with _patched_client(client):
            result = await lookup_recalls_impl(
                make="Ford", model="F-150", model_year=1700, raw=True
            )
        assert json.loads(result)["data"]["code"] == "INVALID_INPUT"

    async def test_missing_make(self):
        result = await lookup_recalls_impl(make=" ", model="F-150", model_year=2014)
        assert result == "make and model are required."

    async def test_service_down_is_explicit(self):
        client = NHTSAClient(cache=TTLCache())
        client.session = MagicMock()
        client.session.get = MagicMock(side_effect=aiohttp.ClientError("down"))
        with _patched_client(client):
            result = await lookup_recalls_impl(make="Ford", model="F-150", model_year=2014)
        assert result.startswith("No recall data")
