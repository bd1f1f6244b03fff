"""
Reverse geocoding to a normalized country, with a provider fallback chain.

Usage::

    from geoguess.services.geocoding import GeocodeResolver

    resolver = GeocodeResolver.default(fetcher)
    info = await resolver.resolve(48.8566, 2.3522)   # CountryInfo | None

Providers are tried in order: Nominatim (zoom 3, 5, 10), BigDataCloud,
Geocode.xyz, GeoNames, then a static table of rough country bounding boxes.
A provider that errors, times out or answers with garbage counts as "no
match"; the resolver only returns None once every provider has failed.
"""

from __future__ import annotations

import csv
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence

from geoguess.services.geo_boxes import GeoBox, normalize_longitude
from geoguess.services.http_client import RetryingFetcher, describe_error

log = logging.getLogger(__name__)

_COUNTRY_NAMES_CSV = Path(__file__).resolve().parents[1] / "static" / "data" / "iso3166_country_names.csv"

# Codes missing from the ISO table (user-assigned or recently added territories).
COUNTRY_NAME_OVERRIDES: Dict[str, str] = {
    "XK": "Kosovo",
    "PS": "Palestine",
    "BL": "Saint Barthélemy",
    "BQ": "Bonaire",
    "CW": "Curaçao",
    "SX": "Sint Maarten",
    "TL": "Timor-Leste",
}

UNKNOWN_COUNTRY = "Unknown"
MAX_COUNTRY_NAME_LENGTH = 60
_WATER_BODY_WORDS = ("ocean", "sea", "bay", "gulf")


@dataclass(frozen=True, slots=True)
class CountryInfo:
    """Normalized country for a coordinate. ``display_name`` is never empty."""

    country: Optional[str]
    country_code: Optional[str]
    display_name: str

    @classmethod
    def unknown(cls) -> "CountryInfo":
        return cls(country=None, country_code=None, display_name=UNKNOWN_COUNTRY)

    def as_dict(self) -> Dict[str, Optional[str]]:
        return {
            "country": self.country,
            "countryCode": self.country_code,
            "displayName": self.display_name,
        }


# ── Normalization ───────────────────────────────────────────────────────────

def _clean_str(value: Any) -> str:
    """Strip strings; anything that is not a string counts as absent."""
    return value.strip() if isinstance(value, str) else ""


def _is_unknown(value: str) -> bool:
    return value.lower() == "unknown"


@cache
def _load_country_names(csv_path: Path | str = _COUNTRY_NAMES_CSV) -> Dict[str, str]:
    """Load ISO 3166-1 alpha-2 code -> English country name from CSV."""
    csv_path = Path(csv_path)

    if not csv_path.exists():
        log.error("Expected country name file at %s but it is missing", csv_path)
        raise FileNotFoundError(f"Country name file missing: {csv_path}")

    mapping: Dict[str, str] = {}
    with csv_path.open(newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        for idx, row in enumerate(reader, start=2):  # start=2 accounts for header row
            code = (row.get("Two_Letter_Country_Code") or "").strip().upper()
            country = (row.get("Country_Name") or "").strip()
            if not code or not country:
                log.debug("Skipping row %s with incomplete data: %s", idx, row)
                continue
            mapping[code] = country

    if not mapping:
        raise ValueError(f"No country names found in {csv_path}")

    log.debug("Loaded %s country names from %s", len(mapping), csv_path)
    return mapping


def country_name_from_iso(country_code: str | None) -> Optional[str]:
    """Return the English name for a two-letter country code, if known."""
    code = (country_code or "").strip().upper()
    if not code:
        return None
    return _load_country_names().get(code) or COUNTRY_NAME_OVERRIDES.get(code)


def country_from_display_name(display_name: Any) -> Optional[str]:
    """
    Take the last comma-separated segment of a formatted address as the country.

    Rejects segments that look like water bodies, are implausibly long, or
    read "unknown".
    """
    text = _clean_str(display_name)
    if not text:
        return None
    candidate = text.split(",")[-1].strip()
    lowercase = candidate.lower()
    if not candidate or len(candidate) > MAX_COUNTRY_NAME_LENGTH or _is_unknown(candidate):
        return None
    if any(word in lowercase for word in _WATER_BODY_WORDS):
        return None
    return candidate


def build_country_info(
    country_name: Any,
    country_code: Any,
    display_name: Any = None,
) -> Optional[CountryInfo]:
    """
    Normalize raw provider fields into a CountryInfo.

    Name resolution order: provider name, ISO code lookup, trailing segment of
    ``display_name``, then the bare ISO code. "unknown" is treated as absent.
    """
    name = _clean_str(country_name)
    code = _clean_str(country_code).upper()
    if _is_unknown(code):
        code = ""
    if _is_unknown(name):
        name = ""

    if not name and code:
        name = country_name_from_iso(code) or ""
    if not name and display_name is not None:
        name = country_from_display_name(display_name) or ""
    if not name and code:
        name = code
    if not name:
        return None

    return CountryInfo(country=name.lower(), country_code=code or None, display_name=name)


def extract_nominatim_country(payload: Any) -> Optional[CountryInfo]:
    """Normalize a Nominatim ``/reverse`` jsonv2 payload."""
    if not isinstance(payload, Mapping):
        return None
    address = payload.get("address")
    if not isinstance(address, Mapping):
        address = {}
    return build_country_info(
        address.get("country") or address.get("country_name"),
        address.get("country_code"),
        payload.get("display_name"),
    )


# ── Providers ───────────────────────────────────────────────────────────────

class ReverseGeocoder(ABC):
    """One tier of the fallback chain."""

    name = "geocoder"

    @abstractmethod
    async def try_resolve(self, latitude: float, longitude: float) -> Optional[CountryInfo]:
        """Return a CountryInfo, or None for "no match"."""


class _HttpGeocoder(ReverseGeocoder):
    timeout = 10.0

    def __init__(self, fetcher: RetryingFetcher):
        self.fetcher = fetcher


class NominatimGeocoder(_HttpGeocoder):
    """OpenStreetMap Nominatim, queried from coarse to fine zoom."""

    name = "Nominatim"
    URL = "https://nominatim.openstreetmap.org/reverse"

    def __init__(self, fetcher: RetryingFetcher, zoom_levels: Sequence[int] = (3, 5, 10)):
        super().__init__(fetcher)
        self.zoom_levels = tuple(zoom_levels)

    async def try_resolve(self, latitude: float, longitude: float) -> Optional[CountryInfo]:
        for zoom in self.zoom_levels:
            try:
                payload = await self.fetcher.get_json(
                    self.URL,
                    params={
                        "format": "jsonv2",
                        "lat": latitude,
                        "lon": longitude,
                        "zoom": zoom,
                        "addressdetails": 1,
                        "accept-language": "en",
                    },
                    timeout=self.timeout,
                    label=f"nominatim zoom {zoom}",
                )
            except Exception as exc:
                log.warning("Reverse geocode error (Nominatim zoom %s): %s", zoom, describe_error(exc))
                continue

            info = extract_nominatim_country(payload)
            if info:
                log.debug("Geocoded (%s, %s) using Nominatim zoom %s", latitude, longitude, zoom)
                return info
            log.debug("Nominatim zoom %s gave no country for (%s, %s)", zoom, latitude, longitude)
        return None


class BigDataCloudGeocoder(_HttpGeocoder):
    name = "BigDataCloud"
    URL = "https://api.bigdatacloud.net/data/reverse-geocode-client"

    async def try_resolve(self, latitude: float, longitude: float) -> Optional[CountryInfo]:
        payload = await self.fetcher.get_json(
            self.URL,
            params={"latitude": latitude, "longitude": longitude, "localityLanguage": "en"},
            timeout=self.timeout,
            label="bigdatacloud",
        )
        if not isinstance(payload, Mapping):
            return None
        return build_country_info(payload.get("countryName"), payload.get("countryCode"))


class GeocodeXyzGeocoder(_HttpGeocoder):
    """Geocode.xyz. Throttled requests come back as 200s with the message in ``country``."""

    name = "Geocode.xyz"
    URL = "https://geocode.xyz/{latitude},{longitude}"
    timeout = 12.0
    THROTTLE_PATTERN = re.compile(r"throttled|error", re.IGNORECASE)

    def is_throttled(self, payload: Mapping[str, Any]) -> bool:
        if payload.get("error"):
            return True
        return bool(self.THROTTLE_PATTERN.search(_clean_str(payload.get("country"))))

    async def try_resolve(self, latitude: float, longitude: float) -> Optional[CountryInfo]:
        payload = await self.fetcher.get_json(
            self.URL.format(latitude=latitude, longitude=longitude),
            params={"json": 1, "geoit": "json"},
            timeout=self.timeout,
            label="geocode.xyz",
        )
        if not isinstance(payload, Mapping):
            return None
        if self.is_throttled(payload):
            log.info("Geocode.xyz throttled or error response for (%s, %s)", latitude, longitude)
            return None
        return build_country_info(payload.get("country"), payload.get("prov") or payload.get("countrycode"))


class GeoNamesGeocoder(_HttpGeocoder):
    name = "GeoNames"
    URL = "http://api.geonames.org/countryCodeJSON"

    def __init__(self, fetcher: RetryingFetcher, username: str = "demo"):
        super().__init__(fetcher)
        self.username = username

    async def try_resolve(self, latitude: float, longitude: float) -> Optional[CountryInfo]:
        payload = await self.fetcher.get_json(
            self.URL,
            params={"lat": latitude, "lng": longitude, "username": self.username, "radius": 10},
            timeout=self.timeout,
            label="geonames",
        )
        if not isinstance(payload, Mapping):
            return None
        return build_country_info(payload.get("countryName"), payload.get("countryCode"))


# (code, bounds) — first match wins, so order matters where boxes overlap.
COUNTRY_BOUNDS: tuple[tuple[str, GeoBox], ...] = (
    ("US", GeoBox(left=-125, bottom=24, right=-66, top=50, name="United States")),
    ("CA", GeoBox(left=-141, bottom=42, right=-52, top=84, name="Canada")),
    ("MX", GeoBox(left=-118, bottom=14, right=-86, top=33, name="Mexico")),
    ("BR", GeoBox(left=-74, bottom=-34, right=-34, top=6, name="Brazil")),
    ("AR", GeoBox(left=-73, bottom=-55, right=-53, top=-21, name="Argentina")),
    ("GB", GeoBox(left=-8, bottom=49.5, right=2, top=61, name="United Kingdom")),
    ("FR", GeoBox(left=-5, bottom=41, right=10, top=51, name="France")),
    ("DE", GeoBox(left=5, bottom=47, right=15, top=55, name="Germany")),
    ("ES", GeoBox(left=-10, bottom=36, right=4, top=44, name="Spain")),
    ("IT", GeoBox(left=6, bottom=36, right=19, top=47, name="Italy")),
    ("PL", GeoBox(left=14, bottom=49, right=24, top=55, name="Poland")),
    ("RU", GeoBox(left=19, bottom=41, right=180, top=82, name="Russia")),
    ("CN", GeoBox(left=73, bottom=18, right=135, top=54, name="China")),
    ("JP", GeoBox(left=123, bottom=24, right=146, top=46, name="Japan")),
    ("IN", GeoBox(left=68, bottom=6, right=97, top=36, name="India")),
    ("AU", GeoBox(left=113, bottom=-44, right=154, top=-10, name="Australia")),
    ("ZA", GeoBox(left=16, bottom=-35, right=33, top=-22, name="South Africa")),
    ("EG", GeoBox(left=24, bottom=22, right=37, top=32, name="Egypt")),
    ("TR", GeoBox(left=26, bottom=36, right=45, top=42, name="Turkey")),
    ("TH", GeoBox(left=97, bottom=5, right=106, top=21, name="Thailand")),
    ("ID", GeoBox(left=95, bottom=-11, right=141, top=6, name="Indonesia")),
    ("SE", GeoBox(left=11, bottom=55, right=24, top=69, name="Sweden")),
    ("NO", GeoBox(left=4, bottom=58, right=31, top=71, name="Norway")),
    ("FI", GeoBox(left=20, bottom=60, right=32, top=70, name="Finland")),
    ("NZ", GeoBox(left=166, bottom=-47, right=179, top=-34, name="New Zealand")),
)


class BoundingBoxGeocoder(ReverseGeocoder):
    """Offline last resort: rough rectangular country bounds."""

    name = "bounding boxes"

    def __init__(self, bounds: Sequence[tuple[str, GeoBox]] = COUNTRY_BOUNDS):
        self.bounds = tuple(bounds)

    async def try_resolve(self, latitude: float, longitude: float) -> Optional[CountryInfo]:
        lon = normalize_longitude(longitude)
        for code, box in self.bounds:
            if box.contains(latitude, lon):
                log.debug("Matched (%s, %s) to %s using bounding box", latitude, longitude, box.name)
                name = box.name or code
                return CountryInfo(country=name.lower(), country_code=code, display_name=name)
        return None


# ── Resolver ────────────────────────────────────────────────────────────────

class GeocodeResolver:
    """Try each provider in order until one yields a country."""

    def __init__(self, providers: Sequence[ReverseGeocoder]):
        self.providers = tuple(providers)

    @classmethod
    def default(cls, fetcher: RetryingFetcher, geonames_username: str = "demo") -> "GeocodeResolver":
        return cls(
            [
                NominatimGeocoder(fetcher),
                BigDataCloudGeocoder(fetcher),
                GeocodeXyzGeocoder(fetcher),
                GeoNamesGeocoder(fetcher, username=geonames_username),
                BoundingBoxGeocoder(),
            ]
        )

    async def resolve(self, latitude: float, longitude: float) -> Optional[CountryInfo]:
        try:
            lat = float(latitude)
            lon = float(longitude)
        except (TypeError, ValueError):
            log.warning("Invalid coordinate (%s, %s); expected numbers", latitude, longitude)
            return None
        if not -90.0 <= lat <= 90.0:
            log.warning("Latitude out of bounds: %s", lat)
            return None

        for provider in self.providers:
            try:
                info = await provider.try_resolve(lat, lon)
            except Exception as exc:
                log.warning("%s reverse geocode error for (%s, %s): %s", provider.name, lat, lon, describe_error(exc))
                continue
            if info:
                log.debug("Geocoded (%s, %s) -> %s using %s", lat, lon, info.display_name, provider.name)
                return info
            log.debug("%s found no country for (%s, %s); falling back", provider.name, lat, lon)

        log.warning("All reverse geocode attempts failed to resolve country for (%s, %s)", lat, lon)
        return None
