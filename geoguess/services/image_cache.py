"""
In-memory pool of ready-to-serve images with a per-country quota.

Entries are admitted only while fewer than ``quota`` entries share their
country key; anything over the quota is dropped, never queued. Flask request
threads and the background event loop both touch the pool, so every
operation holds a ``threading.Lock``.
"""

from __future__ import annotations

import logging
import random
import threading
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional

from geoguess.services.geocoding import UNKNOWN_COUNTRY, CountryInfo
from geoguess.services.mapillary_client import Coordinate, RawImage

log = logging.getLogger(__name__)

UNKNOWN_COUNTRY_KEY = "UNKNOWN"
EVICTION_POLICIES = ("random", "lifo")
EvictionPolicy = Literal["random", "lifo"]


def make_country_key(country_code: Optional[str], country_name: Optional[str]) -> str:
    """Upper-cased ISO code, else upper-cased name, else ``UNKNOWN``."""
    code = (country_code or "").strip()
    if code:
        return code.upper()
    name = (country_name or "").strip()
    if name:
        return name.upper()
    return UNKNOWN_COUNTRY_KEY


@dataclass(frozen=True, slots=True)
class CacheEntry:
    image_url: str
    image_id: str
    coordinate: Coordinate
    country_name: str
    contributor: Optional[str] = None
    country_code: Optional[str] = None
    country: Optional[str] = None

    @classmethod
    def from_image(cls, image: RawImage, info: CountryInfo) -> "CacheEntry":
        return cls(
            image_url=image.url,
            image_id=image.id,
            coordinate=image.coordinate,
            country_name=info.display_name,
            contributor=image.contributor,
            country_code=info.country_code,
            country=info.country,
        )

    @property
    def country_key(self) -> str:
        return make_country_key(self.country_code, self.country_name)

    def to_payload(self) -> Dict[str, Any]:
        """JSON body served to the game client."""
        return {
            "imageUrl": self.image_url,
            "imageId": self.image_id,
            "coordinates": {"lat": self.coordinate.lat, "lon": self.coordinate.lon},
            "countryName": self.country_name or UNKNOWN_COUNTRY,
            "countryCode": self.country_code,
            "contributor": self.contributor,
        }


class DiversityCache:
    """Unordered multiset of CacheEntry with at most ``quota`` entries per country key."""

    def __init__(
        self,
        quota: int = 2,
        eviction: EvictionPolicy = "random",
        rng: random.Random | None = None,
        name: str = "images",
    ):
        if quota <= 0:
            raise ValueError("quota must be > 0")
        if eviction not in EVICTION_POLICIES:
            raise ValueError(f"eviction must be one of {EVICTION_POLICIES}, got {eviction!r}")
        self.quota = quota
        self.eviction = eviction
        self.name = name
        self._rng = rng or random.Random()
        self._entries: list[CacheEntry] = []
        self._counts: Counter[str] = Counter()
        self._lock = threading.Lock()

    def can_admit(self, country_key: str) -> bool:
        with self._lock:
            return self._counts[country_key] < self.quota

    def admit(self, entry: CacheEntry) -> bool:
        """Insert ``entry`` unless its country is already at quota. Returns whether it was added."""
        key = entry.country_key
        with self._lock:
            if self._counts[key] >= self.quota:
                log.debug("[%s] Skipping image %s: %s already has %s entries", self.name, entry.image_id, key, self.quota)
                return False
            self._entries.append(entry)
            self._counts[key] += 1
            size = len(self._entries)
        log.debug("[%s] Cached image %s (%s); size=%s", self.name, entry.image_id, key, size)
        return True

    def pop_one(self) -> Optional[CacheEntry]:
        """Remove and return one entry according to the eviction policy, or None when empty."""
        with self._lock:
            if not self._entries:
                return None
            if self.eviction == "lifo":
                entry = self._entries.pop()
            else:
                idx = self._rng.randrange(len(self._entries))
                self._entries[idx], self._entries[-1] = self._entries[-1], self._entries[idx]
                entry = self._entries.pop()
            key = entry.country_key
            self._counts[key] -= 1
            if self._counts[key] <= 0:
                del self._counts[key]
            return entry

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def __len__(self) -> int:
        return self.size()

    def country_counts(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)
