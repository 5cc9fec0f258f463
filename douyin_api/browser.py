"""Headless browser strategy: load the post page and intercept its API calls."""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from data.config import config

from .embedded_state import extract_render_data, find_detail
from .exceptions import DouyinBrowserLaunchError, DouyinTimeoutError
from .models import DetailPayload
from .urls import video_page_url

logger = logging.getLogger(__name__)

# Responses from these endpoints carry the post detail
DETAIL_API_PATTERNS = (
    "aweme/v1/web/aweme/detail",
    "aweme/v1/web/detail",
    "/web/api/v2/aweme/iteminfo",
)

BLOCKED_RESOURCE_TYPES = frozenset({"image", "stylesheet", "font", "media"})

TRACKING_HOSTS = (
    "google-analytics.com",
    "googletagmanager.com",
    "doubleclick.net",
    "mcs.zijieapi.com",
    "mon.zijieapi.com",
    "mssdk.bytedance.com",
    "verify.snssdk.com",
)

LOCAL_ARGS = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
)

SERVER_ARGS = LOCAL_ARGS + (
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-zygote",
    "--single-process",
    "--disable-extensions",
)

STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', {get: () => undefined});
Object.defineProperty(navigator, 'languages', {get: () => ['zh-CN', 'zh', 'en']});
"""

DOM_SOURCES_SCRIPT = """
() => {
    const results = [];
    document.querySelectorAll('video').forEach(video => {
        if (video.src) results.push(video.src);
        video.querySelectorAll('source').forEach(source => {
            if (source.src) results.push(source.src);
        });
    });
    document.querySelectorAll('[data-src]').forEach(el => {
        if (el.dataset.src) results.push(el.dataset.src);
    });
    return results;
}
"""


@dataclass(frozen=True)
class BrowserProfile:
    """Deployment-specific browser settings.

    Attributes:
        name: Profile name, used in logs and launch errors
        args: Chromium command line switches
        navigation_timeout: Page navigation timeout in seconds
        deadline: Overall wait for the detail response in seconds
        executable_path: Chromium binary to use instead of Playwright's bundled one
        headless: Run without a window
        max_retries: Extra attempts (each with a fresh browser) after a failure
        settle_time: How long to keep listening after navigation settles
        fallback_timeout: Budget for the in-page fallbacks after the wait ends
    """

    name: str
    args: tuple[str, ...]
    navigation_timeout: float
    deadline: float
    executable_path: Optional[str] = None
    headless: bool = True
    max_retries: int = 2
    settle_time: float = 2.0
    fallback_timeout: float = 10.0

    @property
    def attempt_timeout(self) -> float:
        """Hard cap for one launch-to-teardown attempt."""
        return self.deadline + self.fallback_timeout

    @classmethod
    def local(cls) -> BrowserProfile:
        return cls(name="local", args=LOCAL_ARGS, navigation_timeout=30.0, deadline=25.0)

    @classmethod
    def server(cls) -> BrowserProfile:
        return cls(name="server", args=SERVER_ARGS, navigation_timeout=12.0, deadline=15.0)

    @classmethod
    def from_config(cls) -> BrowserProfile:
        """Build the profile selected in config, applying any overrides."""
        browser_config = config.get("browser", {})
        timeouts = config.get("timeouts", {})
        retry_config = config.get("retry", {})

        profile = cls.server() if browser_config.get("profile") == "server" else cls.local()
        overrides: dict[str, Any] = {
            "headless": browser_config.get("headless", True),
            "max_retries": retry_config.get("browser_max_retries", profile.max_retries),
            "executable_path": browser_config.get("executable_path") or None,
        }
        if timeouts.get("navigation"):
            overrides["navigation_timeout"] = float(timeouts["navigation"])
        if timeouts.get("deadline"):
            overrides["deadline"] = float(timeouts["deadline"])
        return dataclasses.replace(profile, **overrides)


class _PageCapture:
    """Per-page interception state.

    ``captured`` is the single stop signal: the response observer sets it and
    the request filter aborts everything once it is set.
    """

    def __init__(self, video_id: str):
        self.video_id = video_id
        self.captured = asyncio.Event()
        self.payload: Optional[DetailPayload] = None

    async def handle_route(self, route: Any) -> None:
        request = route.request
        try:
            if (
                self.captured.is_set()
                or request.resource_type in BLOCKED_RESOURCE_TYPES
                or any(host in request.url for host in TRACKING_HOSTS)
            ):
                await route.abort()
            else:
                await route.continue_()
        except PlaywrightError as e:
            # Page already closing
            logger.debug(f"Route handling failed for {request.url}: {e}")

    async def handle_response(self, response: Any) -> None:
        if self.captured.is_set():
            return

        url = response.url
        if not any(pattern in url for pattern in DETAIL_API_PATTERNS):
            return
        if not response.ok:
            logger.debug(f"Ignoring detail response with status {response.status}: {url}")
            return
        content_type = response.headers.get("content-type", "")
        if "json" not in content_type and "text" not in content_type:
            return

        try:
            text = await response.text()
        except PlaywrightError as e:
            logger.debug(f"Could not read response body from {url}: {e}")
            return
        if not text or not text.strip():
            return

        try:
            data = json.loads(text)
        except ValueError as e:
            logger.debug(f"Could not parse JSON from {url}: {e}")
            return

        payload = DetailPayload.from_response(data, "intercepted")
        if payload is not None and not self.captured.is_set():
            self.payload = payload
            self.captured.set()
            logger.info(f"Captured video data from API response for video ID: {self.video_id}")


class BrowserInterceptionStrategy:
    """Load the canonical post page in headless Chromium and capture its data.

    The page fetches post details over XHR; the strategy listens for those
    responses. If none arrive before the deadline it falls back to the
    server-rendered RENDER_DATA state, then to <video> sources in the DOM.
    Every attempt gets its own browser, closed on every exit path.

    Args:
        profile: Browser profile (default built from config)

    Example:
        >>> strategy = BrowserInterceptionStrategy(BrowserProfile.server())
        >>> payload = await strategy.fetch("7301234567890123456")
    """

    def __init__(self, profile: Optional[BrowserProfile] = None):
        self.profile = profile or BrowserProfile.from_config()
        self.user_agent = config.get("douyin", {}).get("user_agent", "")

    def _launch_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {
            "headless": self.profile.headless,
            "args": list(self.profile.args),
        }
        if self.profile.executable_path:
            options["executable_path"] = self.profile.executable_path
        return options

    async def _start_playwright(self) -> Any:
        return await async_playwright().start()

    @asynccontextmanager
    async def _open_page(self) -> AsyncIterator[Any]:
        """Launch a browser and yield a fresh page; tear everything down after.

        Raises:
            DouyinBrowserLaunchError: Playwright or Chromium failed to start
        """
        try:
            playwright = await self._start_playwright()
        except PlaywrightError as e:
            logger.error(f"Failed to start Playwright (profile={self.profile.name}): {e}")
            raise DouyinBrowserLaunchError(
                f"Failed to start Playwright: {e}", profile=self.profile.name
            ) from e

        browser = None
        page = None
        try:
            try:
                browser = await playwright.chromium.launch(**self._launch_options())
            except PlaywrightError as e:
                logger.error(
                    f"Failed to launch browser (profile={self.profile.name}, "
                    f"executable={self.profile.executable_path or 'bundled'}, "
                    f"args={' '.join(self.profile.args)}): {e}"
                )
                raise DouyinBrowserLaunchError(
                    f"Failed to launch browser: {e}", profile=self.profile.name
                ) from e

            context = await browser.new_context(
                user_agent=self.user_agent,
                locale="zh-CN",
                viewport={"width": 1920, "height": 1080},
            )
            await context.add_init_script(STEALTH_SCRIPT)
            page = await context.new_page()
            yield page
        finally:
            if page is not None:
                try:
                    await page.close()
                except Exception as e:
                    logger.debug(f"Error closing page: {e}")
            if browser is not None:
                try:
                    await browser.close()
                except Exception as e:
                    logger.debug(f"Error closing browser: {e}")
            try:
                await playwright.stop()
            except Exception as e:
                logger.debug(f"Error stopping Playwright: {e}")

    async def _navigate(self, page: Any, url: str) -> None:
        """Open the post page, then give late XHRs a moment to land.

        Navigation errors are not fatal; whatever loaded is still searched.
        """
        try:
            await page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self.profile.navigation_timeout * 1000,
            )
            logger.debug(f"Accessed video page: {url}")
        except PlaywrightError as e:
            logger.warning(f"Navigation to {url} did not complete: {e}")
        await asyncio.sleep(self.profile.settle_time)

    async def _wait_for_capture(self, page: Any, capture: _PageCapture) -> None:
        """Wait for navigation, a captured response or the deadline, whichever is first."""
        navigation = asyncio.create_task(
            self._navigate(page, video_page_url(capture.video_id))
        )
        captured = asyncio.create_task(capture.captured.wait())
        try:
            done, _ = await asyncio.wait(
                {navigation, captured},
                timeout=self.profile.deadline,
                return_when=asyncio.FIRST_COMPLETED,
            )
            if not done:
                logger.warning(
                    f"No video data within {self.profile.deadline}s for video ID: {capture.video_id}"
                )
        finally:
            for task in (navigation, captured):
                if not task.done():
                    task.cancel()
            await asyncio.gather(navigation, captured, return_exceptions=True)

    async def _extract_embedded_state(self, page: Any, video_id: str) -> Optional[DetailPayload]:
        html = await page.content()
        state = extract_render_data(html)
        if state is None:
            return None
        detail = find_detail(state)
        if detail is None:
            logger.debug(f"RENDER_DATA present but holds no detail for video ID: {video_id}")
            return None
        logger.info(f"Found video data in RENDER_DATA for video ID: {video_id}")
        return DetailPayload(detail=detail, source="render_data")

    async def _extract_dom_sources(self, page: Any, video_id: str) -> Optional[DetailPayload]:
        sources = await page.evaluate(DOM_SOURCES_SCRIPT)
        # blob: URLs only exist inside the page
        urls = list(dict.fromkeys(
            src for src in sources or [] if isinstance(src, str) and src and not src.startswith("blob:")
        ))
        if not urls:
            return None

        logger.info(f"Found {len(urls)} video sources in page for video ID: {video_id}")
        title = await page.title()
        return DetailPayload(
            detail={
                "aweme_id": video_id,
                "desc": title,
                "video": {"play_addr": {"url_list": urls}},
                "author": {"nickname": "Unknown"},
            },
            source="dom",
        )

    async def _attempt(self, video_id: str) -> Optional[DetailPayload]:
        async with self._open_page() as page:
            capture = _PageCapture(video_id)
            await page.route("**/*", capture.handle_route)
            page.on("response", capture.handle_response)

            await self._wait_for_capture(page, capture)
            if capture.payload is not None:
                return capture.payload

            logger.info(f"No API response captured, searching page content for video ID: {video_id}")
            payload = await self._extract_embedded_state(page, video_id)
            if payload is not None:
                return payload

            return await self._extract_dom_sources(page, video_id)

    async def fetch(self, video_id: str) -> Optional[DetailPayload]:
        """Get post details by rendering the post page.

        Args:
            video_id: Douyin post ID

        Returns:
            DetailPayload, or None if the page yielded nothing usable.

        Raises:
            DouyinBrowserLaunchError: Browser could not be started (not retried)
            DouyinTimeoutError: Every attempt ran past its time budget
        """
        max_attempts = self.profile.max_retries + 1
        last_error: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            logger.debug(
                f"Browser attempt {attempt}/{max_attempts} for video ID {video_id} "
                f"(profile={self.profile.name})"
            )
            try:
                async with asyncio.timeout(self.profile.attempt_timeout):
                    return await self._attempt(video_id)
            except DouyinBrowserLaunchError:
                raise
            except asyncio.TimeoutError as e:
                logger.warning(
                    f"Browser attempt {attempt}/{max_attempts} timed out after "
                    f"{self.profile.attempt_timeout}s for video ID {video_id}"
                )
                last_error = e
            except Exception as e:
                logger.warning(
                    f"Browser attempt {attempt}/{max_attempts} failed for video ID {video_id}: {e}"
                )
                last_error = e

        logger.error(
            f"Browser strategy failed after {max_attempts} attempts "
            f"for video ID {video_id}: {last_error}"
        )
        if isinstance(last_error, asyncio.TimeoutError):
            raise DouyinTimeoutError(
                f"Browser timed out after {max_attempts} attempts"
            ) from last_error
        return None
