# tests/fakes.py
"""Network-free stand-ins for the fetcher, locator and resolver."""

import asyncio
import itertools
from typing import Any, Callable, Iterable, Optional

from geoguess.services.geocoding import CountryInfo
from geoguess.services.mapillary_client import Coordinate, RawImage


COUNTRY_NAMES = {
    "FR": "France",
    "DE": "Germany",
    "JP": "Japan",
    "US": "United States",
    "BR": "Brazil",
    "AU": "Australia",
    "IN": "India",
    "ZA": "South Africa",
    "CA": "Canada",
    "MX": "Mexico",
}


def make_image(n: int = 0, lat: float = 48.8566, lon: float = 2.3522) -> RawImage:
    return RawImage(id=f"img-{n}", url=f"https://img.example/{n}.jpg", coordinate=Coordinate(lat=lat, lon=lon), contributor="alice")


def country(code: str) -> CountryInfo:
    name = COUNTRY_NAMES.get(code, code)
    return CountryInfo(country=name.lower(), country_code=code, display_name=name)


class FakeLocator:
    """
    ``locate()`` returns the next scripted outcome. An outcome can be a RawImage,
    None, or an exception instance (raised). The last outcome repeats forever.
    """

    def __init__(self, outcomes: Iterable[Any] = (), *, access_token: Optional[str] = "token"):
        self._outcomes = list(outcomes) or [None]
        self.access_token = access_token
        self.calls = 0

    @property
    def has_credential(self) -> bool:
        return bool(self.access_token)

    async def locate(self) -> Optional[RawImage]:
        await asyncio.sleep(0)
        idx = min(self.calls, len(self._outcomes) - 1)
        self.calls += 1
        outcome = self._outcomes[idx]
        if isinstance(outcome, BaseException):
            raise outcome
        if callable(outcome):
            return outcome(self.calls)
        return outcome


def counting_images(lat: float = 48.8566, lon: float = 2.3522) -> Callable[[int], RawImage]:
    """Locator outcome producing a fresh image id on each call."""
    return lambda n: make_image(n, lat, lon)


class FakeResolver:
    """Cycles through ``codes``; a None code means "unresolved"."""

    def __init__(self, codes: Iterable[Optional[str]] = ("FR",)):
        self._codes = itertools.cycle(list(codes))
        self.calls: list[tuple[float, float]] = []

    async def resolve(self, latitude: float, longitude: float) -> Optional[CountryInfo]:
        await asyncio.sleep(0)
        self.calls.append((latitude, longitude))
        code = next(self._codes)
        return country(code) if code else None


class FakeFetcher:
    """
    Records every ``get_json`` call. ``responder(url, params)`` returns the
    payload, or raises to simulate a failed request.
    """

    def __init__(self, responder: Callable[[str, dict], Any]):
        self._responder = responder
        self.calls: list[dict] = []

    async def get_json(self, url, *, params=None, headers=None, timeout=10.0, attempts=1, label=None):
        await asyncio.sleep(0)
        self.calls.append(
            {"url": url, "params": dict(params or {}), "headers": dict(headers or {}), "timeout": timeout, "attempts": attempts}
        )
        return self._responder(url, dict(params or {}))

    def urls(self) -> list[str]:
        return [call["url"] for call in self.calls]
