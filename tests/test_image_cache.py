# tests/test_image_cache.py
import random
from concurrent.futures import ThreadPoolExecutor

import pytest

from geoguess.services.geocoding import CountryInfo
from geoguess.services.image_cache import CacheEntry, DiversityCache, make_country_key
from geoguess.services.mapillary_client import Coordinate
from tests.fakes import country, make_image


def _entry(n: int, code: str | None = "FR", name: str = "France") -> CacheEntry:
    return CacheEntry(
        image_url=f"https://img/{n}.jpg",
        image_id=str(n),
        coordinate=Coordinate(lat=1.0, lon=2.0),
        country_name=name,
        country_code=code,
    )


@pytest.mark.parametrize(
    "code, name, expected",
    [("fr", "France", "FR"), (None, " Kosovo ", "KOSOVO"), ("", "", "UNKNOWN"), (None, None, "UNKNOWN")],
)
def test_country_key(code, name, expected):
    assert make_country_key(code, name) == expected


def test_entry_from_image_and_payload():
    entry = CacheEntry.from_image(make_image(1), country("FR"))

    assert entry.country_key == "FR"
    assert entry.to_payload() == {
        "imageUrl": "https://img.example/1.jpg",
        "imageId": "img-1",
        "coordinates": {"lat": 48.8566, "lon": 2.3522},
        "countryName": "France",
        "countryCode": "FR",
        "contributor": "alice",
    }


def test_unknown_country_entry():
    entry = CacheEntry.from_image(make_image(2), CountryInfo.unknown())

    assert entry.country_key == "UNKNOWN"
    assert entry.to_payload()["countryName"] == "Unknown"
    assert entry.to_payload()["countryCode"] is None


def test_third_entry_for_same_country_is_rejected():
    cache = DiversityCache(quota=2)

    assert cache.admit(_entry(1))
    assert cache.admit(_entry(2))
    assert not cache.can_admit("FR")
    assert not cache.admit(_entry(3))
    assert cache.size() == 2
    assert cache.country_counts() == {"FR": 2}


def test_unknown_entries_share_one_quota():
    cache = DiversityCache(quota=2)

    results = [cache.admit(_entry(i, code=None, name="")) for i in range(4)]

    assert results == [True, True, False, False]


def test_pop_frees_quota_slot():
    cache = DiversityCache(quota=2, eviction="lifo")
    cache.admit(_entry(1))
    cache.admit(_entry(2))

    popped = cache.pop_one()

    assert popped.image_id == "2"
    assert cache.can_admit("FR")
    assert cache.admit(_entry(3))


def test_lifo_pops_most_recent_first():
    cache = DiversityCache(eviction="lifo")
    for i, code in enumerate(["FR", "DE", "JP"]):
        cache.admit(_entry(i, code=code))

    assert [cache.pop_one().image_id for _ in range(3)] == ["2", "1", "0"]
    assert cache.pop_one() is None


def test_random_eviction_drains_every_entry():
    cache = DiversityCache(eviction="random", rng=random.Random(5))
    codes = ["FR", "DE", "JP", "US", "BR"]
    for i, code in enumerate(codes):
        cache.admit(_entry(i, code=code))

    popped = {cache.pop_one().image_id for _ in range(len(codes))}

    assert popped == {str(i) for i in range(len(codes))}
    assert cache.size() == 0
    assert cache.country_counts() == {}


def test_invalid_configuration_is_rejected():
    with pytest.raises(ValueError):
        DiversityCache(eviction="fifo")
    with pytest.raises(ValueError):
        DiversityCache(quota=0)


def test_quota_holds_under_concurrent_admits():
    cache = DiversityCache(quota=2)
    codes = ["FR", "DE", "JP", "FR", "FR", "DE"]

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda i: cache.admit(_entry(i, code=codes[i % len(codes)])), range(300)))

    assert cache.country_counts() == {"FR": 2, "DE": 2, "JP": 2}
    assert cache.size() == 6
