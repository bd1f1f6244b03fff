"""
Concurrent fill of a DiversityCache.

``fill(target)`` runs a small pool of workers. Each worker repeatedly claims an
attempt, locates a random image, reverse-geocodes it and offers the entry to
the cache. Workers stop once ``target`` entries were added or
``target * attempts_per_target`` attempts were spent, whichever comes first.

``background_refill()`` schedules a small fill on the running loop when the
cache is low, with at most one refill in flight per engine.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass

from geoguess.services.geocoding import CountryInfo, GeocodeResolver
from geoguess.services.image_cache import CacheEntry, DiversityCache
from geoguess.services.mapillary_client import ImageLocator

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FillReport:
    target: int
    added: int
    attempts: int
    cache_size: int

    @property
    def target_met(self) -> bool:
        return self.added >= self.target


class _FillProgress:
    """Counters shared by the workers of one fill; guarded by ``lock``."""

    def __init__(self, target: int, max_attempts: int):
        self.target = target
        self.max_attempts = max_attempts
        self.attempts = 0
        self.added = 0
        self.lock = asyncio.Lock()

    def done(self) -> bool:
        return self.added >= self.target or self.attempts >= self.max_attempts


class CacheFillEngine:
    def __init__(
        self,
        cache: DiversityCache,
        locator: ImageLocator,
        resolver: GeocodeResolver,
        concurrency: int = 4,
        attempts_per_target: int = 5,
        refill_threshold: int = 5,
        refill_batch: int = 5,
    ):
        self.cache = cache
        self.locator = locator
        self.resolver = resolver
        self.concurrency = max(1, concurrency)
        self.attempts_per_target = max(1, attempts_per_target)
        self.refill_threshold = refill_threshold
        self.refill_batch = refill_batch

        self._refill_lock = threading.Lock()
        self._refill_in_flight = False
        self._refill_task: asyncio.Task | None = None

    @property
    def refill_in_flight(self) -> bool:
        with self._refill_lock:
            return self._refill_in_flight

    async def build_entry(self) -> CacheEntry | None:
        """Locate one image and attach its country. None when no image was found."""
        image = await self.locator.locate()
        if image is None:
            return None
        info = await self.resolver.resolve(image.coordinate.lat, image.coordinate.lon)
        if info is None:
            log.info("[%s] Country unresolved for image %s; storing as Unknown", self.cache.name, image.id)
            info = CountryInfo.unknown()
        return CacheEntry.from_image(image, info)

    async def _worker(self, progress: _FillProgress) -> None:
        while True:
            async with progress.lock:
                if progress.done():
                    return
                progress.attempts += 1
                attempt = progress.attempts

            try:
                entry = await self.build_entry()
            except Exception:
                log.exception("[%s] Fill attempt %s failed", self.cache.name, attempt)
                continue
            if entry is None:
                continue

            async with progress.lock:
                if progress.added >= progress.target:
                    return
                if self.cache.admit(entry):
                    progress.added += 1

    async def fill(self, target: int) -> FillReport:
        """Try to add ``target`` entries. Never raises; returns what was achieved."""
        if target <= 0:
            return FillReport(target=target, added=0, attempts=0, cache_size=self.cache.size())
        if not self.locator.has_credential:
            log.warning("[%s] Skipping cache fill: Mapillary access token is not configured", self.cache.name)
            return FillReport(target=target, added=0, attempts=0, cache_size=self.cache.size())

        progress = _FillProgress(target, target * self.attempts_per_target)
        workers = min(self.concurrency, target)
        log.info("[%s] Filling cache with %s image(s) using %s worker(s)", self.cache.name, target, workers)

        await asyncio.gather(*(self._worker(progress) for _ in range(workers)))

        report = FillReport(
            target=target,
            added=progress.added,
            attempts=progress.attempts,
            cache_size=self.cache.size(),
        )
        if report.target_met:
            log.info("[%s] Cache fill complete: %s added in %s attempt(s); size=%s", self.cache.name, report.added, report.attempts, report.cache_size)
        else:
            log.warning(
                "[%s] Cache fill stopped early: %s/%s added after %s attempt(s); size=%s",
                self.cache.name,
                report.added,
                target,
                report.attempts,
                report.cache_size,
            )
        return report

    def background_refill(self) -> bool:
        """
        Schedule ``fill(refill_batch)`` on the running loop if the cache is low
        and no refill is already running. Returns whether a refill was started.
        """
        with self._refill_lock:
            if self._refill_in_flight:
                return False
            size = self.cache.size()
            if size >= self.refill_threshold:
                return False
            self._refill_in_flight = True
            try:
                self._refill_task = asyncio.get_running_loop().create_task(self.fill(self.refill_batch))
            except RuntimeError:
                self._refill_in_flight = False
                raise
            self._refill_task.add_done_callback(self._on_refill_done)

        log.info("[%s] Background refill started (size=%s)", self.cache.name, size)
        return True

    def _on_refill_done(self, task: asyncio.Task) -> None:
        with self._refill_lock:
            self._refill_in_flight = False
            self._refill_task = None

        if task.cancelled():
            log.warning("[%s] Background refill cancelled", self.cache.name)
            return
        exc = task.exception()
        if exc is not None:
            log.error("[%s] Background refill failed: %s", self.cache.name, exc, exc_info=exc)
            return
        report = task.result()
        log.debug("[%s] Background refill settled: %s", self.cache.name, report)

    async def wait_for_refill(self) -> None:
        """Wait for the in-flight refill, if any."""
        with self._refill_lock:
            task = self._refill_task
        if task is not None:
            await asyncio.wait({task})
