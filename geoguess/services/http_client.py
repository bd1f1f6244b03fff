"""
Shared async HTTP access for the upstream providers.

All GETs go through one ``aiohttp.ClientSession`` (a small keep-alive pool).
Calls to rate-limited hosts (Mapillary) wait on the sliding-window limiter
before every attempt. Failed attempts are retried with a linear backoff of
``backoff_step * attempt_number``; the last error is re-raised.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Awaitable, Callable, Iterable, Mapping
from urllib.parse import urlparse

import aiohttp
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from geoguess.services.rate_limiter import SlidingWindowRateLimiter

log = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "geoguess-api/1.0"
RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    aiohttp.ClientError,
    asyncio.TimeoutError,
    ValueError,  # undecodable JSON body
)
_SECRET_PARAM = re.compile(r"((?:access_token|username)=)[^&\s'\"]+", re.IGNORECASE)


def describe_error(exc: BaseException | None) -> str:
    """
    Loggable one-line description of a failed request.

    aiohttp response errors embed the full request URL, query string included,
    so only their status and reason are kept. Credentials left anywhere else
    in the text are masked.
    """
    if exc is None:
        return "unknown error"
    if isinstance(exc, aiohttp.ClientResponseError):
        text = f"HTTP {exc.status} {exc.message or ''}".rstrip()
    else:
        text = f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
    return _SECRET_PARAM.sub(r"\1***", text)


class RetryingFetcher:
    """Bounded-retry JSON GETs over a shared connection pool."""

    def __init__(
        self,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        rate_limited_hosts: Iterable[str] = ("mapillary.com",),
        user_agent: str = DEFAULT_USER_AGENT,
        pool_size: int = 10,
        backoff_step: float = 0.3,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ):
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter()
        self.rate_limited_hosts = tuple(h.lower().lstrip(".") for h in rate_limited_hosts)
        self.user_agent = user_agent
        self.pool_size = pool_size
        self.backoff_step = backoff_step
        self._sleep = sleep
        self._session: aiohttp.ClientSession | None = None

    def is_rate_limited(self, url: str) -> bool:
        host = (urlparse(url).hostname or "").lower()
        return any(host == h or host.endswith(f".{h}") for h in self.rate_limited_hosts)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(limit=self.pool_size)
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers={"User-Agent": self.user_agent},
            )
        return self._session

    async def _request_json(
        self,
        url: str,
        params: Mapping[str, Any] | None,
        headers: Mapping[str, str] | None,
        timeout: float,
    ) -> Any:
        session = await self._get_session()
        async with session.get(
            url,
            params=params,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as resp:
            resp.raise_for_status()
            return await resp.json(content_type=None)

    def _after_failed_attempt(self, label: str, attempts: int) -> Callable[[RetryCallState], None]:
        def _log(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            log.warning(
                "HTTP GET %s failed (attempt %s/%s): %s",
                label,
                retry_state.attempt_number,
                attempts,
                describe_error(exc),
            )

        return _log

    async def get_json(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: float = 10.0,
        attempts: int = 1,
        label: str | None = None,
    ) -> Any:
        """
        GET ``url`` and decode the JSON body, retrying up to ``attempts`` times.

        Raises the last error once every attempt has failed.
        """
        attempts = max(1, int(attempts))
        label = label or url
        retrying = AsyncRetrying(
            sleep=self._sleep,
            stop=stop_after_attempt(attempts),
            wait=wait_incrementing(start=self.backoff_step, increment=self.backoff_step),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            after=self._after_failed_attempt(label, attempts),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                if self.is_rate_limited(url):
                    await self.rate_limiter.acquire()
                return await self._request_json(url, params, headers, timeout)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
