"""Short link redirect resolution with an in-memory cache."""

import asyncio
import logging
import threading
import time
from typing import Optional

import aiohttp
from aiohttp import ClientTimeout, TCPConnector

from data.config import config

from .exceptions import DouyinTimeoutError

logger = logging.getLogger(__name__)


class RedirectCache:
    """Thread-safe map of short link -> resolved URL.

    Entries expire after ``ttl`` seconds and the oldest entry is evicted once
    ``max_size`` is reached. ``ttl=None`` keeps entries for the life of the
    process.

    Example:
        >>> cache = RedirectCache(max_size=2, ttl=60)
        >>> cache.set("https://v.douyin.com/a", "https://www.douyin.com/video/1")
        >>> cache.get("https://v.douyin.com/a")
        'https://www.douyin.com/video/1'
    """

    def __init__(self, max_size: int = 2048, ttl: Optional[float] = None):
        self.max_size = max_size
        self.ttl = ttl
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, url: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(url)
            if entry is None:
                return None
            resolved, stored_at = entry
            if self.ttl is not None and time.monotonic() - stored_at > self.ttl:
                del self._entries[url]
                return None
            return resolved

    def set(self, url: str, resolved: str) -> None:
        with self._lock:
            # Re-inserting moves the key to the end so eviction stays oldest-first
            self._entries.pop(url, None)
            while self._entries and len(self._entries) >= self.max_size:
                oldest = next(iter(self._entries))
                del self._entries[oldest]
            self._entries[url] = (resolved, time.monotonic())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def _default_cache() -> RedirectCache:
    cache_config = config.get("cache", {})
    ttl = cache_config.get("redirect_ttl", 0)
    return RedirectCache(
        max_size=cache_config.get("redirect_max_size", 2048),
        ttl=ttl if ttl and ttl > 0 else None,
    )


class RedirectResolver:
    """Follows HTTP redirects for v.douyin.com links without a browser.

    Args:
        cache: Cache to use; defaults to the process-wide cache
        timeout: Total request timeout in seconds (default from config)
        max_redirects: Maximum redirect hops to follow (default from config)
    """

    _shared_cache: Optional[RedirectCache] = None
    _cache_lock = threading.Lock()

    _aiohttp_connector: Optional[TCPConnector] = None
    _connector_lock = threading.Lock()

    @classmethod
    def shared_cache(cls) -> RedirectCache:
        with cls._cache_lock:
            if cls._shared_cache is None:
                cls._shared_cache = _default_cache()
            return cls._shared_cache

    @classmethod
    def _get_connector(cls) -> TCPConnector:
        with cls._connector_lock:
            if cls._aiohttp_connector is None or cls._aiohttp_connector.closed:
                cls._aiohttp_connector = TCPConnector(
                    limit=100,
                    ttl_dns_cache=300,
                    enable_cleanup_closed=True,
                )
            return cls._aiohttp_connector

    @classmethod
    async def close_connector(cls) -> None:
        """Close shared aiohttp connector. Call on application shutdown."""
        with cls._connector_lock:
            connector = cls._aiohttp_connector
            cls._aiohttp_connector = None
        if connector and not connector.closed:
            await connector.close()

    def __init__(
        self,
        cache: Optional[RedirectCache] = None,
        timeout: Optional[float] = None,
        max_redirects: Optional[int] = None,
    ):
        self.cache = cache if cache is not None else self.shared_cache()
        self.timeout = timeout or config.get("timeouts", {}).get("redirect", 10.0)
        self.max_redirects = max_redirects or config.get("retry", {}).get(
            "redirect_max_hops", 5
        )
        self.user_agent = config.get("douyin", {}).get("user_agent", "")

    async def _fetch_final_url(self, url: str) -> str:
        """Issue the GET and return the URL the redirect chain ended on."""
        async with aiohttp.ClientSession(
            connector=self._get_connector(),
            timeout=ClientTimeout(total=self.timeout),
            headers={"User-Agent": self.user_agent},
            connector_owner=False,
        ) as session:
            async with session.get(
                url, allow_redirects=True, max_redirects=self.max_redirects
            ) as response:
                return str(response.url)

    async def resolve(self, url: str) -> Optional[str]:
        """Resolve a short link to its terminal URL.

        Args:
            url: Short (or any) Douyin URL

        Returns:
            Terminal URL, or None if the request failed.

        Raises:
            DouyinTimeoutError: The request did not finish within the timeout
        """
        cached = self.cache.get(url)
        if cached is not None:
            logger.debug(f"Redirect cache hit: {url} -> {cached}")
            return cached

        try:
            final_url = await self._fetch_final_url(url)
        except asyncio.TimeoutError as e:
            logger.warning(f"Redirect resolution timed out after {self.timeout}s for {url}")
            raise DouyinTimeoutError(f"Redirect resolution timed out for {url}") from e
        except (aiohttp.ClientError, ValueError) as e:
            logger.warning(f"Failed to resolve redirect for {url}: {e}")
            return None

        logger.info(f"URL after redirect: {url} -> {final_url}")
        self.cache.set(url, final_url)
        return final_url
