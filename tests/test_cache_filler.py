# tests/test_cache_filler.py
import asyncio

import pytest

from geoguess.services.cache_filler import CacheFillEngine
from geoguess.services.image_cache import DiversityCache
from tests.fakes import COUNTRY_NAMES, FakeLocator, FakeResolver, counting_images


ALL_CODES = list(COUNTRY_NAMES)


def _engine(locator, resolver, *, concurrency=4, quota=2, **kwargs) -> CacheFillEngine:
    cache = DiversityCache(quota=quota, name="test")
    return CacheFillEngine(cache, locator, resolver, concurrency=concurrency, **kwargs)


@pytest.mark.asyncio
async def test_fill_reaches_target_when_nothing_fails():
    engine = _engine(FakeLocator([counting_images()]), FakeResolver(ALL_CODES))

    report = await engine.fill(6)

    assert report.target_met
    assert (report.added, report.cache_size) == (6, 6)
    # Workers already past the check when the target is hit still spend their attempt.
    assert 6 <= report.attempts <= 30


@pytest.mark.asyncio
async def test_fill_never_adds_more_than_target():
    engine = _engine(FakeLocator([counting_images()]), FakeResolver(ALL_CODES), concurrency=5)

    report = await engine.fill(2)

    assert report.added == 2
    assert engine.cache.size() == 2


@pytest.mark.asyncio
async def test_attempts_are_capped_when_locator_finds_nothing():
    locator = FakeLocator([None])
    engine = _engine(locator, FakeResolver())

    report = await engine.fill(3)

    assert not report.target_met
    assert report.added == 0
    assert report.attempts == 15
    assert locator.calls == 15


@pytest.mark.asyncio
async def test_quota_limits_a_single_country_fill():
    engine = _engine(FakeLocator([counting_images()]), FakeResolver(["FR"]))

    report = await engine.fill(4)

    assert report.added == 2
    assert report.attempts == 20
    assert engine.cache.country_counts() == {"FR": 2}


@pytest.mark.asyncio
async def test_pipeline_errors_count_as_wasted_attempts():
    locator = FakeLocator([RuntimeError("boom")])
    engine = _engine(locator, FakeResolver())

    report = await engine.fill(2)

    assert report.added == 0
    assert report.attempts == 10


@pytest.mark.asyncio
async def test_unresolved_country_is_stored_as_unknown():
    engine = _engine(FakeLocator([counting_images()]), FakeResolver([None]))

    report = await engine.fill(1)

    assert report.added == 1
    assert engine.cache.country_counts() == {"UNKNOWN": 1}


@pytest.mark.asyncio
async def test_fill_without_credential_is_a_noop():
    locator = FakeLocator([counting_images()], access_token=None)
    engine = _engine(locator, FakeResolver())

    report = await engine.fill(5)

    assert (report.added, report.attempts) == (0, 0)
    assert locator.calls == 0


@pytest.mark.asyncio
async def test_fill_with_non_positive_target_is_a_noop():
    locator = FakeLocator([counting_images()])
    engine = _engine(locator, FakeResolver())

    report = await engine.fill(0)

    assert report.added == 0
    assert locator.calls == 0


# ──────────────────────────────────────────────────────────────────────────────
#                               Background refill
# ──────────────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_only_one_background_refill_runs_at_a_time():
    engine = _engine(FakeLocator([counting_images()]), FakeResolver(ALL_CODES))

    assert engine.background_refill() is True
    assert engine.refill_in_flight
    assert engine.background_refill() is False

    await engine.wait_for_refill()
    await asyncio.sleep(0)

    assert not engine.refill_in_flight
    assert engine.cache.size() == 5


@pytest.mark.asyncio
async def test_no_refill_when_cache_is_full_enough():
    engine = _engine(FakeLocator([counting_images()]), FakeResolver(ALL_CODES))
    await engine.fill(5)

    assert engine.background_refill() is False
    assert not engine.refill_in_flight


@pytest.mark.asyncio
async def test_failed_refill_clears_the_guard(monkeypatch):
    engine = _engine(FakeLocator([counting_images()]), FakeResolver(ALL_CODES))

    async def _broken_fill(target):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(engine, "fill", _broken_fill)

    assert engine.background_refill() is True
    await engine.wait_for_refill()
    await asyncio.sleep(0)

    assert not engine.refill_in_flight
    assert engine.background_refill() is True
    await engine.wait_for_refill()
