"""Single-slot recommendation cache tests."""

from __future__ import annotations

import pytest

from app.services.recommendation_cache import CacheFingerprint, RecommendationCache
from app.services.recommendations import RecommendationEngine


@pytest.fixture
def catalog(make_title, fake_catalog_factory):
    return fake_catalog_factory(
        {
            1: [make_title(100, {1: "Action"}), make_title(101, {1: "Action"})],
            8: [make_title(200, {8: "Drama"})],
        }
    )


@pytest.mark.anyio("asyncio")
async def test_identical_inputs_hit_the_cache(catalog, make_title, make_rating) -> None:
    cache = RecommendationCache(RecommendationEngine(catalog), limit=5)
    watched = [make_title(1, {1: "Action"}), make_title(2, {8: "Drama"})]
    watchlist = [make_title(3, {1: "Action"})]
    ratings = [make_rating(1, 90)]

    first = await cache.get_or_compute(watchlist, watched, ratings)
    calls_after_first = catalog.call_count
    second = await cache.get_or_compute(watchlist, list(reversed(watched)), ratings)

    assert first == second
    assert cache.computations == 1
    assert catalog.call_count == calls_after_first


@pytest.mark.anyio("asyncio")
async def test_new_rating_forces_recomputation(catalog, make_title, make_rating) -> None:
    cache = RecommendationCache(RecommendationEngine(catalog), limit=5)
    watched = [make_title(1, {1: "Action"}), make_title(2, {8: "Drama"})]

    await cache.get_or_compute([], watched, [make_rating(1, 90)])
    await cache.get_or_compute([], watched, [make_rating(1, 90), make_rating(2, 30)])

    assert cache.computations == 2


@pytest.mark.anyio("asyncio")
async def test_watchlist_change_replaces_the_single_entry(catalog, make_title) -> None:
    cache = RecommendationCache(RecommendationEngine(catalog), limit=5)
    watched = [make_title(1, {1: "Action"})]

    await cache.get_or_compute([], watched, [])
    await cache.get_or_compute([make_title(9)], watched, [])
    await cache.get_or_compute([], watched, [])

    assert cache.computations == 3
    assert cache.entry is not None
    assert cache.entry.fingerprint == CacheFingerprint.from_state([], watched, [])


@pytest.mark.anyio("asyncio")
async def test_invalidate_clears_the_slot(catalog, make_title) -> None:
    cache = RecommendationCache(RecommendationEngine(catalog), limit=5)
    watched = [make_title(1, {1: "Action"})]

    await cache.get_or_compute([], watched, [])
    cache.invalidate()
    await cache.get_or_compute([], watched, [])

    assert cache.computations == 2


def test_fingerprint_ignores_order_but_not_membership(make_title, make_rating) -> None:
    a, b = make_title(1), make_title(2)

    forward = CacheFingerprint.from_state([a, b], [b], [make_rating(1, 10)])
    backward = CacheFingerprint.from_state([b, a], [b], [make_rating(1, 50)])
    different = CacheFingerprint.from_state([a], [b], [make_rating(1, 10)])

    assert forward == backward
    assert forward != different
