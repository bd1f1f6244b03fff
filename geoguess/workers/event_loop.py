"""
A single asyncio event loop running in a daemon thread.

Flask handles requests on plain threads; all upstream I/O, cache fills and
background refills live on this loop. Request handlers hand coroutines over
with ``run()`` and block on the result.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from typing import Any, Coroutine, Optional, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")


class BackgroundLoop:
    def __init__(self, name: str = "geoguess-loop"):
        self.name = name
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.is_running:
                log.debug("Event loop thread '%s' already running.", self.name)
                return
            self._ready.clear()
            self._loop = asyncio.new_event_loop()
            self._thread = threading.Thread(target=self._run_forever, name=self.name, daemon=True)
            self._thread.start()
        self._ready.wait()
        log.debug("Event loop thread '%s' started.", self.name)

    def _run_forever(self) -> None:
        loop = self._loop
        asyncio.set_event_loop(loop)
        loop.call_soon(self._ready.set)
        try:
            loop.run_forever()
        finally:
            pending = [task for task in asyncio.all_tasks(loop) if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()
            log.debug("Event loop thread '%s' stopped (%s pending task(s) cancelled).", self.name, len(pending))

    def submit(self, coro: Coroutine[Any, Any, T]) -> concurrent.futures.Future[T]:
        """Schedule ``coro`` on the loop from any other thread."""
        if not self.is_running or self._loop is None:
            coro.close()
            raise RuntimeError(f"Event loop '{self.name}' is not running")
        return asyncio.run_coroutine_threadsafe(coro, self._loop)

    def run(self, coro: Coroutine[Any, Any, T], timeout: Optional[float] = None) -> T:
        """Run ``coro`` on the loop and block the calling thread until it finishes."""
        return self.submit(coro).result(timeout)

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            if not self.is_running or self._loop is None:
                return
            self._loop.call_soon_threadsafe(self._loop.stop)
            thread = self._thread
        thread.join(timeout)
        if thread.is_alive():
            log.warning("Event loop thread '%s' did not stop within %.1fs", self.name, timeout)
