"""
Bounding-box generation for Mapillary searches.

Three sources of search centres:
  1. a static gazetteer of large cities (``static/data/city_centers.csv``),
  2. coarse land regions (continents / subcontinents),
  3. a uniform random point on the globe.

Every box is a small square (``BOX_SIZE_DEGREES``) around the chosen centre.
"""

from __future__ import annotations

import csv
import logging
import random
from dataclasses import dataclass
from functools import cache
from pathlib import Path

log = logging.getLogger(__name__)

BOX_SIZE_DEGREES = 0.09
_CITY_CENTERS_CSV = Path(__file__).resolve().parents[1] / "static" / "data" / "city_centers.csv"


@dataclass(frozen=True, slots=True)
class GeoBox:
    """Search rectangle in degrees, ``bottom <= top`` and ``left <= right``."""

    left: float
    bottom: float
    right: float
    top: float
    name: str | None = None

    def as_bbox_param(self) -> str:
        """Format as Mapillary's ``bbox`` query parameter."""
        return f"{self.left:.6f},{self.bottom:.6f},{self.right:.6f},{self.top:.6f}"

    def contains(self, latitude: float, longitude: float) -> bool:
        return self.bottom <= latitude <= self.top and self.left <= longitude <= self.right


@dataclass(frozen=True, slots=True)
class CityCenter:
    name: str
    latitude: float
    longitude: float
    region: str = ""


LAND_REGIONS: tuple[GeoBox, ...] = (
    GeoBox(left=-168, bottom=7, right=-52, top=83, name="North America"),
    GeoBox(left=-82, bottom=-56, right=-34, top=13, name="South America"),
    GeoBox(left=-31, bottom=34, right=40, top=72, name="Europe"),
    GeoBox(left=-18, bottom=-35, right=52, top=38, name="Africa"),
    GeoBox(left=25, bottom=5, right=75, top=45, name="West Asia"),
    GeoBox(left=75, bottom=18, right=140, top=55, name="East Asia"),
    GeoBox(left=90, bottom=-12, right=150, top=25, name="SE Asia"),
    GeoBox(left=68, bottom=6, right=97, top=36, name="India"),
    GeoBox(left=110, bottom=-45, right=155, top=-10, name="Australia"),
)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def normalize_longitude(longitude: float) -> float:
    """Wrap a longitude into [-180, 180]."""
    lon = longitude
    while lon < -180:
        lon += 360
    while lon > 180:
        lon -= 360
    return lon


def bbox_from_center(
    latitude: float,
    longitude: float,
    size: float = BOX_SIZE_DEGREES,
    name: str | None = None,
) -> GeoBox:
    """
    Build a square box of side ``size`` centred on (latitude, longitude).

    Latitude is clamped to [-90, 90]. If the longitude edges would cross the
    antimeridian, the box is rebuilt around the normalized centre longitude
    (edges clamped to [-180, 180]) rather than shifting one edge by 360°.
    """
    half = size / 2
    bottom = clamp(latitude - half, -90, 90)
    top = clamp(latitude + half, -90, 90)

    left = longitude - half
    right = longitude + half
    if left < -180:
        left += 360
    if right > 180:
        right -= 360
    if left > right:
        center = normalize_longitude(longitude)
        left = clamp(center - half, -180, 180)
        right = clamp(center + half, -180, 180)

    return GeoBox(left=left, bottom=bottom, right=right, top=top, name=name)


@cache
def load_city_centers(csv_path: Path | str = _CITY_CENTERS_CSV) -> tuple[CityCenter, ...]:
    """Load the city gazetteer from CSV (name, latitude, longitude, region)."""
    csv_path = Path(csv_path)
    if not csv_path.exists():
        log.error("Expected city gazetteer at %s but it is missing", csv_path)
        raise FileNotFoundError(f"City gazetteer missing: {csv_path}")

    cities: list[CityCenter] = []
    with csv_path.open(newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        for idx, row in enumerate(reader, start=2):  # start=2 accounts for header row
            try:
                cities.append(
                    CityCenter(
                        name=(row.get("name") or "").strip(),
                        latitude=float(row["latitude"]),
                        longitude=float(row["longitude"]),
                        region=(row.get("region") or "").strip(),
                    )
                )
            except (KeyError, TypeError, ValueError):
                log.debug("Skipping gazetteer row %s with invalid data: %s", idx, row)

    if not cities:
        raise ValueError(f"No city centres found in {csv_path}")

    log.debug("Loaded %s city centres from %s", len(cities), csv_path)
    return tuple(cities)


def city_boxes(cities: tuple[CityCenter, ...] | None = None) -> list[GeoBox]:
    """Return one search box per gazetteer city, in gazetteer order."""
    return [
        bbox_from_center(city.latitude, city.longitude, name=city.name)
        for city in (cities if cities is not None else load_city_centers())
    ]


def random_city_boxes(count: int, rng: random.Random | None = None) -> list[GeoBox]:
    """
    Draw ``count`` distinct city boxes from a uniform random permutation.

    ``count`` of 0 or more than the gazetteer size returns every city, shuffled.
    """
    rng = rng or random
    boxes = city_boxes()
    rng.shuffle(boxes)
    if not count or count >= len(boxes):
        return boxes
    return boxes[:count]


def random_land_box(rng: random.Random | None = None) -> GeoBox:
    """Pick a random land region, then a uniform point inside it."""
    rng = rng or random
    region = rng.choice(LAND_REGIONS)
    latitude = region.bottom + rng.random() * (region.top - region.bottom)
    longitude = region.left + rng.random() * (region.right - region.left)
    return bbox_from_center(latitude, longitude, name=region.name)


def random_land_boxes(count: int, rng: random.Random | None = None) -> list[GeoBox]:
    return [random_land_box(rng) for _ in range(count)]


def random_box(rng: random.Random | None = None) -> GeoBox:
    """Uniform random centre, latitude kept within [-85, 85]."""
    rng = rng or random
    latitude = rng.random() * 170 - 85
    longitude = rng.random() * 360 - 180
    return bbox_from_center(latitude, longitude)


def random_boxes(count: int, rng: random.Random | None = None) -> list[GeoBox]:
    return [random_box(rng) for _ in range(count)]
