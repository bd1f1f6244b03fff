# mapillary_client.py

"""
Random street-level image lookup on Mapillary's Graph API.

``ImageLocator.locate()`` walks an ordered list of search tiers. Each tier
draws a few bounding boxes (random cities, random land regions or uniform
random points), searches each box and returns the first image that has both a
thumbnail URL and a computed geometry. Running out of tiers is a normal
outcome and yields ``None``.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

from geoguess.services.errors import MissingCredential, UpstreamUnavailable
from geoguess.services.geo_boxes import GeoBox, random_boxes, random_city_boxes, random_land_boxes
from geoguess.services.http_client import RetryingFetcher, describe_error

log = logging.getLogger(__name__)

GRAPH_MAPILLARY_URL = "https://graph.mapillary.com"
IMAGE_FIELDS = "id,computed_geometry,thumb_1024_url,thumb_2048_url,thumb_256_url,thumb_original_url,creator"
THUMBNAIL_FIELDS = ("thumb_1024_url", "thumb_2048_url", "thumb_256_url", "thumb_original_url")
DETAIL_TIMEOUT_SECONDS = 25.0
DETAIL_ATTEMPTS = 3


@dataclass(frozen=True, slots=True)
class Coordinate:
    lat: float
    lon: float


@dataclass(frozen=True, slots=True)
class RawImage:
    """A Mapillary image that can be served: it has a URL and a location."""

    id: str
    url: str
    coordinate: Coordinate
    contributor: str | None = None


@dataclass(frozen=True)
class SearchTier:
    """One stage of the search strategy."""

    name: str
    box_source: Callable[[int, random.Random | None], list[GeoBox]] = field(repr=False)
    boxes: int
    limit: int
    timeout: float  # seconds
    attempts: int

    def draw_boxes(self, rng: random.Random | None = None) -> list[GeoBox]:
        return self.box_source(self.boxes, rng)


DEFAULT_SEARCH_TIERS: tuple[SearchTier, ...] = (
    SearchTier("city", random_city_boxes, boxes=3, limit=50, timeout=4.0, attempts=2),
    SearchTier("land (fast)", random_land_boxes, boxes=2, limit=35, timeout=2.5, attempts=1),
    SearchTier("city (second draw)", random_city_boxes, boxes=3, limit=50, timeout=4.0, attempts=2),
    SearchTier("land (normal)", random_land_boxes, boxes=2, limit=50, timeout=8.0, attempts=3),
    SearchTier("random", random_boxes, boxes=3, limit=50, timeout=20.0, attempts=3),
)


def item_to_raw_image(item: Mapping[str, Any] | None) -> RawImage | None:
    """Map a Graph API image payload to a RawImage, or None when it lacks a URL or geometry."""
    if not isinstance(item, Mapping):
        return None

    url = next((item[key] for key in THUMBNAIL_FIELDS if item.get(key)), None)
    geometry = item.get("computed_geometry")
    coordinates = geometry.get("coordinates") if isinstance(geometry, Mapping) else None
    if not url or not coordinates:
        return None

    try:
        lon, lat = float(coordinates[0]), float(coordinates[1])
    except (TypeError, ValueError, IndexError):
        log.debug("Unusable geometry for image %s: %s", item.get("id"), coordinates)
        return None

    creator = item.get("creator")
    contributor = creator.get("username") if isinstance(creator, Mapping) else None
    return RawImage(
        id=str(item.get("id") or ""),
        url=str(url),
        coordinate=Coordinate(lat=lat, lon=lon),
        contributor=contributor or None,
    )


class ImageLocator:
    """Find one random, usable Mapillary image."""

    def __init__(
        self,
        fetcher: RetryingFetcher,
        access_token: str | None,
        pano: bool = False,
        tiers: Sequence[SearchTier] = DEFAULT_SEARCH_TIERS,
        rng: random.Random | None = None,
    ):
        self.fetcher = fetcher
        self.access_token = access_token
        self.pano = pano
        self.tiers = tuple(tiers)
        self._rng = rng or random.Random()

    @property
    def has_credential(self) -> bool:
        return bool(self.access_token)

    async def search_box(self, tier: SearchTier, box: GeoBox) -> list[dict[str, Any]]:
        """Run one ``/images`` bbox search and return the raw ``data`` list."""
        params = {
            "access_token": self.access_token,
            "fields": IMAGE_FIELDS,
            "bbox": box.as_bbox_param(),
            "is_pano": "true" if self.pano else "false",
            "limit": str(tier.limit),
        }
        payload = await self.fetcher.get_json(
            f"{GRAPH_MAPILLARY_URL}/images",
            params=params,
            timeout=tier.timeout,
            attempts=tier.attempts,
            label=f"mapillary search [{tier.name}]",
        )
        data = payload.get("data") if isinstance(payload, Mapping) else None
        if not isinstance(data, list):
            raise UpstreamUnavailable(f"Unexpected Mapillary search payload: {str(payload)[:200]}")
        return data

    async def get_image_details(self, image_id: str) -> RawImage | None:
        """Fetch a single image by id, for search hits missing thumbnail or geometry."""
        payload = await self.fetcher.get_json(
            f"{GRAPH_MAPILLARY_URL}/{image_id}",
            params={"fields": IMAGE_FIELDS},
            headers={"Authorization": f"OAuth {self.access_token}"},
            timeout=DETAIL_TIMEOUT_SECONDS,
            attempts=DETAIL_ATTEMPTS,
            label="mapillary detail",
        )
        return item_to_raw_image(payload)

    async def _try_box(self, tier: SearchTier, box: GeoBox) -> RawImage | None:
        try:
            results = await self.search_box(tier, box)
            log.debug("Mapillary [%s] %s bbox %s -> %s result(s)", tier.name, box.name or "", box.as_bbox_param(), len(results))
            if not results:
                return None

            choice = self._rng.choice(results)
            image = item_to_raw_image(choice)
            if image:
                return image

            image_id = choice.get("id") if isinstance(choice, Mapping) else None
            if not image_id:
                return None
            log.debug("Mapillary [%s] image %s incomplete; fetching details", tier.name, image_id)
            return await self.get_image_details(str(image_id))
        except Exception as exc:
            log.warning("Mapillary [%s] search error for %s: %s", tier.name, box.name or box.as_bbox_param(), describe_error(exc))
            return None

    async def locate(self) -> RawImage | None:
        """Return the first usable image across all tiers, or None when every tier comes up empty."""
        if not self.has_credential:
            raise MissingCredential()

        for tier in self.tiers:
            log.debug("Trying Mapillary tier '%s' (%s box(es))", tier.name, tier.boxes)
            for box in tier.draw_boxes(self._rng):
                image = await self._try_box(tier, box)
                if image:
                    log.debug("Mapillary [%s] chose image %s", tier.name, image.id)
                    return image

        log.info("No usable Mapillary image found after %s tier(s)", len(self.tiers))
        return None
