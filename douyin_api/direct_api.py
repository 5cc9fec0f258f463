"""Direct queries against Douyin's web detail API."""

import asyncio
import json
import logging
import threading
from typing import Any, Optional
from urllib.parse import urlencode

from curl_cffi import CurlError
from curl_cffi.requests import AsyncSession as CurlAsyncSession

from data.config import config

from .exceptions import DouyinTimeoutError
from .models import DetailPayload
from .urls import generate_ms_token

logger = logging.getLogger(__name__)

DETAIL_API_URL = "https://www.douyin.com/aweme/v1/web/aweme/detail/"
ITEM_INFO_API_URL = "https://www.douyin.com/web/api/v2/aweme/iteminfo/"

# Query parameters a Chrome 120 desktop web client sends to the detail API
WEB_CLIENT_PARAMS = {
    "device_platform": "webapp",
    "aid": "6383",
    "channel": "channel_pc_web",
    "pc_client_type": "1",
    "version_code": "170400",
    "version_name": "17.4.0",
    "cookie_enabled": "true",
    "screen_width": "1920",
    "screen_height": "1080",
    "browser_language": "en-US",
    "browser_platform": "Win32",
    "browser_name": "Chrome",
    "browser_version": "120.0.0.0",
    "browser_online": "true",
    "engine_name": "Blink",
    "engine_version": "120.0.0.0",
    "os_name": "Windows",
    "os_version": "10",
    "cpu_core_num": "16",
    "device_memory": "8",
    "platform": "PC",
    "downlink": "10",
    "effective_type": "4g",
    "round_trip_time": "50",
    "webid": "7129360599857284651",
}


def build_detail_api_url(video_id: str, ms_token: Optional[str] = None) -> str:
    """Build the detail API URL with the web client fingerprint.

    Args:
        video_id: Douyin post ID
        ms_token: Session token; a fresh one is generated when omitted

    Returns:
        Fully parameterized detail API URL
    """
    params = dict(WEB_CLIENT_PARAMS)
    params["aweme_id"] = video_id
    params["msToken"] = ms_token or generate_ms_token()
    return f"{DETAIL_API_URL}?{urlencode(params)}"


def build_item_info_url(video_id: str) -> str:
    return f"{ITEM_INFO_API_URL}?{urlencode({'item_ids': video_id})}"


class DirectApiStrategy:
    """Fetch post details straight from the web API, no browser involved.

    Requests go through curl_cffi with Chrome TLS impersonation so the
    handshake matches the forged User-Agent.

    Args:
        timeout: Per-request timeout in seconds (default from config)
        session: Optional session object with an async ``get`` (used in tests)

    Example:
        >>> strategy = DirectApiStrategy()
        >>> payload = await strategy.fetch("7301234567890123456")
        >>> payload.detail["desc"] if payload else None
    """

    _curl_session: Optional[CurlAsyncSession] = None
    _curl_session_lock = threading.Lock()

    @classmethod
    def shared_session(cls) -> CurlAsyncSession:
        """Get or create the curl_cffi session shared by API calls and downloads."""
        with cls._curl_session_lock:
            if cls._curl_session is None:
                impersonate = config.get("douyin", {}).get("impersonate", "chrome120")
                cls._curl_session = CurlAsyncSession(impersonate=impersonate)
                logger.info(f"Created curl_cffi session with impersonate={impersonate}")
            return cls._curl_session

    @classmethod
    async def close_session(cls) -> None:
        """Close shared curl_cffi session. Call on application shutdown."""
        with cls._curl_session_lock:
            session = cls._curl_session
            cls._curl_session = None
        if session is not None:
            try:
                await session.close()
            except Exception as e:
                logger.debug(f"Error closing curl_cffi session: {e}")

    def __init__(self, timeout: Optional[float] = None, session: Any = None):
        self.timeout = timeout or config.get("timeouts", {}).get("direct_api", 10.0)
        self._session = session

    def _get_headers(self) -> dict[str, str]:
        douyin_config = config.get("douyin", {})
        return {
            "User-Agent": douyin_config.get("user_agent", ""),
            "Referer": douyin_config.get("referer", "https://www.douyin.com/"),
            "Accept": "application/json, text/plain, */*",
            "Accept-Language": "en-US,en;q=0.9",
            "Cookie": douyin_config.get("cookie", ""),
        }

    async def _get_json(self, url: str) -> Optional[Any]:
        """GET a URL and decode its JSON body.

        Returns:
            Decoded JSON, or None on transport error, non-2xx status or bad JSON.

        Raises:
            DouyinTimeoutError: The request exceeded the timeout
        """
        session = self._session or self.shared_session()
        response = None
        try:
            async with asyncio.timeout(self.timeout):
                response = await session.get(
                    url,
                    headers=self._get_headers(),
                    timeout=self.timeout,
                    allow_redirects=True,
                )
            if not 200 <= response.status_code < 300:
                logger.warning(f"Detail API returned status {response.status_code} for {url}")
                return None
            text = response.text
            if not text or not text.strip():
                # Douyin answers 200 with an empty body when it rejects the signature
                logger.debug(f"Detail API returned an empty body for {url}")
                return None
            return json.loads(text)
        except asyncio.TimeoutError as e:
            raise DouyinTimeoutError(f"Detail API timed out after {self.timeout}s") from e
        except CurlError as e:
            logger.warning(f"Detail API request failed for {url}: {e}")
            return None
        except ValueError as e:
            logger.warning(f"Detail API returned invalid JSON for {url}: {e}")
            return None
        finally:
            if response is not None:
                try:
                    response.close()
                except Exception:
                    pass

    async def fetch(self, video_id: str) -> Optional[DetailPayload]:
        """Query the detail API, then the item info API, for a post.

        Args:
            video_id: Douyin post ID

        Returns:
            DetailPayload, or None if neither endpoint returned usable data.

        Raises:
            DouyinTimeoutError: No usable data and at least one endpoint timed out
        """
        logger.info(f"Directly querying API for video ID: {video_id}")
        endpoints = (
            (build_detail_api_url(video_id), "detail_api"),
            (build_item_info_url(video_id), "iteminfo_api"),
        )
        timeout_error: Optional[DouyinTimeoutError] = None

        for url, source in endpoints:
            try:
                data = await self._get_json(url)
            except DouyinTimeoutError as e:
                logger.warning(f"{source} timed out for video ID {video_id}")
                timeout_error = e
                continue
            payload = DetailPayload.from_response(data, source)
            if payload is not None:
                logger.info(f"Got video data from {source} for video ID: {video_id}")
                return payload

        if timeout_error is not None:
            raise timeout_error

        logger.info(f"Direct API returned no usable data for video ID: {video_id}")
        return None
