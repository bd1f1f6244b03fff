"""
Consumer-facing image service: one cache, its fill engine and the on-demand path.

Two services run side by side, ``images`` (standard photos) and ``panoramas``
(``is_pano=true`` searches). Each owns its own DiversityCache and fill engine
and shares the HTTP fetcher and the geocode resolver.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping

from geoguess.services.cache_filler import CacheFillEngine, FillReport
from geoguess.services.errors import MissingCredential, Unavailable
from geoguess.services.geocoding import GeocodeResolver
from geoguess.services.http_client import RetryingFetcher
from geoguess.services.image_cache import CacheEntry, DiversityCache
from geoguess.services.mapillary_client import ImageLocator
from geoguess.services.rate_limiter import SlidingWindowRateLimiter

log = logging.getLogger(__name__)

IMAGES = "images"
PANORAMAS = "panoramas"


@dataclass(frozen=True, slots=True)
class CacheSettings:
    name: str
    pano: bool
    concurrency: int
    prefill: int
    quota: int = 2
    eviction: str = "random"
    refill_threshold: int = 5
    refill_batch: int = 5
    attempts_per_target: int = 5

    @classmethod
    def from_config(cls, config: Mapping[str, Any], *, pano: bool) -> "CacheSettings":
        """Build the settings of the panorama or standard cache from Flask config."""
        prefix = "PANO_CACHE" if pano else "IMAGE_CACHE"
        return cls(
            name=PANORAMAS if pano else IMAGES,
            pano=pano,
            concurrency=int(config.get(f"{prefix}_CONCURRENCY", 5 if pano else 4)),
            prefill=int(config.get(f"{prefix}_PREFILL", 10 if pano else 15)),
            quota=int(config.get("CACHE_COUNTRY_QUOTA", 2)),
            eviction=str(config.get("CACHE_EVICTION", "random")),
            refill_threshold=int(config.get("CACHE_REFILL_THRESHOLD", 5)),
            refill_batch=int(config.get("CACHE_REFILL_BATCH", 5)),
            attempts_per_target=int(config.get("CACHE_ATTEMPTS_PER_TARGET", 5)),
        )


class ImageService:
    def __init__(
        self,
        settings: CacheSettings,
        locator: ImageLocator,
        resolver: GeocodeResolver,
        cache: DiversityCache | None = None,
    ):
        self.settings = settings
        self.locator = locator
        self.cache = cache or DiversityCache(quota=settings.quota, eviction=settings.eviction, name=settings.name)
        self.engine = CacheFillEngine(
            self.cache,
            locator,
            resolver,
            concurrency=settings.concurrency,
            attempts_per_target=settings.attempts_per_target,
            refill_threshold=settings.refill_threshold,
            refill_batch=settings.refill_batch,
        )

    @property
    def name(self) -> str:
        return self.settings.name

    async def prefill(self) -> FillReport:
        return await self.engine.fill(self.settings.prefill)

    async def get_next_entry(self) -> CacheEntry:
        """
        Pop a cached entry, or locate one on demand when the cache is empty.

        Raises MissingCredential without a Mapillary token and Unavailable when
        the cache is empty and the on-demand lookup finds nothing.
        """
        if not self.locator.has_credential:
            raise MissingCredential()

        entry = self.cache.pop_one()
        if entry is not None:
            log.debug("[%s] Served cached image %s (%s); %s left", self.name, entry.image_id, entry.country_key, self.cache.size())
            self.engine.background_refill()
            return entry

        log.info("[%s] Cache empty; fetching an image on demand", self.name)
        self.engine.background_refill()
        entry = await self.engine.build_entry()
        if entry is None:
            raise Unavailable()
        return entry

    def status(self) -> Dict[str, Any]:
        return {
            "size": self.cache.size(),
            "countries": self.cache.country_counts(),
            "refillInFlight": self.engine.refill_in_flight,
            "eviction": self.cache.eviction,
        }


def build_fetcher(config: Mapping[str, Any]) -> RetryingFetcher:
    limiter = SlidingWindowRateLimiter(
        capacity=int(config.get("MAPILLARY_RATE_LIMIT", 900)),
        window_seconds=float(config.get("MAPILLARY_RATE_WINDOW_SECONDS", 60.0)),
    )
    return RetryingFetcher(
        rate_limiter=limiter,
        user_agent=str(config.get("HTTP_USER_AGENT") or "geoguess-api/1.0"),
        pool_size=int(config.get("HTTP_POOL_SIZE", 10)),
        backoff_step=float(config.get("HTTP_BACKOFF_STEP_SECONDS", 0.3)),
    )


def build_image_services(config: Mapping[str, Any], fetcher: RetryingFetcher) -> Dict[str, ImageService]:
    """Create the standard and panorama services sharing one fetcher and resolver."""
    access_token = config.get("MAPILLARY_ACCESS_TOKEN")
    if not access_token:
        log.warning("MAPILLARY_ACCESS_TOKEN is not set; image endpoints will fail until it is configured")

    resolver = GeocodeResolver.default(fetcher, geonames_username=str(config.get("GEONAMES_USERNAME") or "demo"))
    services: Dict[str, ImageService] = {}
    for pano in (False, True):
        settings = CacheSettings.from_config(config, pano=pano)
        locator = ImageLocator(fetcher, access_token, pano=pano)
        services[settings.name] = ImageService(settings, locator, resolver)
    return services
