"""Shared test fixtures: request builders, fake services, cache clearing."""

from __future__ import annotations

import pytest
from fakes import FakeGenerationService

from auto_eval.clients.cache import SHARED_NHTSA_CACHE, SHARED_SEARCH_CACHE
from auto_eval.models import EvaluationRequest, Role


@pytest.fixture()
def flipper_request() -> EvaluationRequest:
    return EvaluationRequest(
        role=Role.FLIPPER,
        zip_code="30301",
        vin="1FTFW1ET1EFA00001",
        condition_notes="cosmetic damage only",
        asking_price=9000,
    )


@pytest.fixture()
def generation_service() -> FakeGenerationService:
    return FakeGenerationService()


@pytest.fixture(autouse=True)
def _clear_shared_caches():
    """Shared client caches must not leak responses between tests."""
    SHARED_NHTSA_CACHE.clear()
    SHARED_SEARCH_CACHE.clear()
    yield
    SHARED_NHTSA_CACHE.clear()
    SHARED_SEARCH_CACHE.clear()
