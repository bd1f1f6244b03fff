"""
Image retrieval services.

Workflow:
1. Draw search boxes (cities, land regions, random points) and ask Mapillary for an image.
2. Reverse-geocode the image location to a country through a chain of providers.
3. Keep a small pool of ready images per service, at most 2 per country.
4. Serve from the pool and refill it in the background when it runs low.

``init_services(app)`` builds the runtime (event-loop thread, HTTP fetcher,
both image services) and stores it under ``app.extensions["geoguess"]``.
"""

from __future__ import annotations

import asyncio
import atexit
import logging
from dataclasses import dataclass, field
from typing import Any, Coroutine, Dict, Optional, TypeVar

from flask import Flask, current_app

from geoguess.services.http_client import RetryingFetcher
from geoguess.services.image_service import ImageService, build_fetcher, build_image_services
from geoguess.workers.event_loop import BackgroundLoop

__all__ = ["ServiceRuntime", "init_services", "get_runtime"]

log = logging.getLogger(__name__)
EXTENSION_KEY = "geoguess"

T = TypeVar("T")


@dataclass
class ServiceRuntime:
    loop: BackgroundLoop
    fetcher: RetryingFetcher
    services: Dict[str, ImageService] = field(default_factory=dict)
    closed: bool = False

    def service(self, name: str) -> ImageService:
        return self.services[name]

    def run(self, coro: Coroutine[Any, Any, T], timeout: Optional[float] = None) -> T:
        return self.loop.run(coro, timeout)

    def prefill(self) -> None:
        """Blocking startup fill of every cache, all services in parallel."""
        log.info("Prefilling image caches. \033[31mThis may take a minute.\033[0m")

        async def _prefill_all():
            return await asyncio.gather(*(svc.prefill() for svc in self.services.values()))

        for name, report in zip(self.services, self.run(_prefill_all())):
            log.info("[%s] Prefill finished: %s/%s added, size=%s", name, report.added, report.target, report.cache_size)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        atexit.unregister(self.close)
        if self.loop.is_running:
            try:
                self.run(self.fetcher.close(), timeout=5.0)
            except Exception:
                log.exception("Failed to close HTTP session.")
        self.loop.stop()


def init_services(app: Flask) -> ServiceRuntime:
    log.debug("Initializing image services.")
    loop = BackgroundLoop()
    loop.start()

    fetcher = build_fetcher(app.config)
    runtime = ServiceRuntime(loop=loop, fetcher=fetcher, services=build_image_services(app.config, fetcher))
    app.extensions[EXTENSION_KEY] = runtime
    atexit.register(runtime.close)

    if app.config.get("CACHE_PREFILL_ON_STARTUP", True):
        runtime.prefill()
    else:
        log.debug("Startup prefill disabled; caches start empty.")
    return runtime


def get_runtime(app: Flask | None = None) -> ServiceRuntime:
    return (app or current_app).extensions[EXTENSION_KEY]
