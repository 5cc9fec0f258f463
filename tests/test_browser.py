from __future__ import annotations

import asyncio
import json
import unittest
from typing import Any, Callable, Optional
from urllib.parse import quote

from playwright.async_api import Error as PlaywrightError

from douyin_api.browser import BrowserInterceptionStrategy, BrowserProfile, _PageCapture
from douyin_api.exceptions import DouyinBrowserLaunchError, DouyinTimeoutError

DETAIL_URL = "https://www.douyin.com/aweme/v1/web/aweme/detail/?aweme_id=1"


class _FakeResponse:
    def __init__(self, url: str, body: Any, status: int = 200, content_type: str = "application/json") -> None:
        self.url = url
        self.status = status
        self.ok = 200 <= status < 300
        self.headers = {"content-type": content_type}
        self._body = body if isinstance(body, str) else json.dumps(body)

    async def text(self) -> str:
        return self._body


class _FakeRequest:
    def __init__(self, url: str, resource_type: str) -> None:
        self.url = url
        self.resource_type = resource_type


class _FakeRoute:
    def __init__(self, url: str, resource_type: str = "document") -> None:
        self.request = _FakeRequest(url, resource_type)
        self.outcome: Optional[str] = None

    async def abort(self) -> None:
        self.outcome = "abort"

    async def continue_(self) -> None:
        self.outcome = "continue"


class _Script:
    """What one browser attempt's page does."""

    def __init__(
        self,
        responses: Optional[list[_FakeResponse]] = None,
        hang_navigation: bool = False,
        html: str = "<html></html>",
        sources: Optional[list[str]] = None,
        title: str = "",
        content_error: Optional[BaseException] = None,
        hang_content: bool = False,
    ) -> None:
        self.responses = responses or []
        self.hang_navigation = hang_navigation
        self.html = html
        self.sources = sources or []
        self.title = title
        self.content_error = content_error
        self.hang_content = hang_content


class _FakePage:
    def __init__(self, script: _Script) -> None:
        self.script = script
        self.route_handler: Optional[Callable] = None
        self.response_handler: Optional[Callable] = None
        self.visited: list[str] = []
        self.close_calls = 0

    async def route(self, pattern: str, handler: Callable) -> None:
        self.route_handler = handler

    def on(self, event: str, handler: Callable) -> None:
        if event == "response":
            self.response_handler = handler

    async def goto(self, url: str, wait_until: str = "load", timeout: float = 0) -> None:
        self.visited.append(url)
        for response in self.script.responses:
            await self.response_handler(response)
        if self.script.hang_navigation:
            await asyncio.sleep(10)

    async def content(self) -> str:
        if self.script.content_error is not None:
            raise self.script.content_error
        if self.script.hang_content:
            await asyncio.sleep(10)
        return self.script.html

    async def evaluate(self, expression: str) -> list[str]:
        return list(self.script.sources)

    async def title(self) -> str:
        return self.script.title

    async def close(self) -> None:
        self.close_calls += 1


class _FakeContext:
    def __init__(self, page: _FakePage) -> None:
        self.page = page
        self.options: dict[str, Any] = {}

    async def add_init_script(self, script: str) -> None:
        pass

    async def new_page(self) -> _FakePage:
        return self.page


class _FakeBrowser:
    def __init__(self, page: _FakePage) -> None:
        self.context = _FakeContext(page)
        self.close_calls = 0

    async def new_context(self, **options: Any) -> _FakeContext:
        self.context.options = options
        return self.context

    async def close(self) -> None:
        self.close_calls += 1


class _FakeChromium:
    def __init__(self, owner: "_FakePlaywright") -> None:
        self.owner = owner

    async def launch(self, **options: Any) -> _FakeBrowser:
        self.owner.launch_options.append(options)
        if self.owner.launch_error is not None:
            raise self.owner.launch_error
        script = self.owner.scripts[min(len(self.owner.browsers), len(self.owner.scripts) - 1)]
        browser = _FakeBrowser(_FakePage(script))
        self.owner.browsers.append(browser)
        return browser


class _FakePlaywright:
    def __init__(self, scripts: list[_Script], launch_error: Optional[BaseException] = None) -> None:
        self.scripts = scripts
        self.launch_error = launch_error
        self.launch_options: list[dict[str, Any]] = []
        self.browsers: list[_FakeBrowser] = []
        self.stop_calls = 0
        self.chromium = _FakeChromium(self)

    async def stop(self) -> None:
        self.stop_calls += 1


class _FakeStrategy(BrowserInterceptionStrategy):
    def __init__(self, playwright: _FakePlaywright, profile: BrowserProfile) -> None:
        super().__init__(profile)
        self.playwright = playwright

    async def _start_playwright(self) -> Any:
        return self.playwright


def _profile(**overrides: Any) -> BrowserProfile:
    options: dict[str, Any] = {
        "name": "server",
        "args": ("--no-sandbox", "--disable-dev-shm-usage"),
        "navigation_timeout": 1.0,
        "deadline": 1.0,
        "max_retries": 1,
        "settle_time": 0.01,
        "fallback_timeout": 1.0,
    }
    options.update(overrides)
    return BrowserProfile(**options)


class TestBrowserInterceptionStrategy(unittest.IsolatedAsyncioTestCase):
    def assertTornDown(self, playwright: _FakePlaywright) -> None:
        for browser in playwright.browsers:
            self.assertEqual(browser.close_calls, 1)
            self.assertEqual(browser.context.page.close_calls, 1)
        self.assertEqual(playwright.stop_calls, len(playwright.launch_options))

    async def test_captured_response_ends_wait_early(self) -> None:
        response = _FakeResponse(DETAIL_URL, {"aweme_detail": {"aweme_id": "1", "desc": "hi"}})
        playwright = _FakePlaywright([_Script(responses=[response], hang_navigation=True)])
        strategy = _FakeStrategy(playwright, _profile(deadline=5.0))

        payload = await asyncio.wait_for(strategy.fetch("1"), timeout=2.0)

        self.assertEqual(payload.source, "intercepted")
        self.assertEqual(payload.detail["desc"], "hi")
        self.assertEqual(len(playwright.browsers), 1)
        self.assertEqual(
            playwright.browsers[0].context.page.visited, ["https://www.douyin.com/video/1"]
        )
        self.assertTornDown(playwright)

    async def test_launch_options_follow_profile(self) -> None:
        playwright = _FakePlaywright([_Script()])
        strategy = _FakeStrategy(playwright, _profile(executable_path="/usr/bin/chromium"))

        await strategy.fetch("1")

        options = playwright.launch_options[0]
        self.assertEqual(options["args"], ["--no-sandbox", "--disable-dev-shm-usage"])
        self.assertEqual(options["executable_path"], "/usr/bin/chromium")
        self.assertTrue(options["headless"])

    async def test_render_data_fallback(self) -> None:
        state = {"app": {"videoDetail": {"aweme": {"detail": {"aweme_id": "1"}}}}}
        html = f'<script id="RENDER_DATA" type="application/json">{quote(json.dumps(state))}</script>'
        playwright = _FakePlaywright([_Script(html=html)])
        strategy = _FakeStrategy(playwright, _profile())

        payload = await strategy.fetch("1")

        self.assertEqual(payload.source, "render_data")
        self.assertEqual(payload.detail, {"aweme_id": "1"})
        self.assertTornDown(playwright)

    async def test_dom_scrape_fallback(self) -> None:
        script = _Script(
            sources=["blob:https://www.douyin.com/x", "https://cdn/a.mp4", "https://cdn/a.mp4", ""],
            title="Page title",
        )
        playwright = _FakePlaywright([script])
        strategy = _FakeStrategy(playwright, _profile())

        payload = await strategy.fetch("1")

        self.assertTrue(payload.degraded)
        self.assertEqual(payload.detail["desc"], "Page title")
        self.assertEqual(payload.detail["video"]["play_addr"]["url_list"], ["https://cdn/a.mp4"])
        self.assertEqual(payload.detail["author"]["nickname"], "Unknown")

    async def test_empty_page_returns_none_without_retry(self) -> None:
        playwright = _FakePlaywright([_Script()])
        strategy = _FakeStrategy(playwright, _profile(max_retries=2))

        self.assertIsNone(await strategy.fetch("1"))
        self.assertEqual(len(playwright.browsers), 1)
        self.assertTornDown(playwright)

    async def test_unexpected_failure_retries_with_fresh_browser(self) -> None:
        response = _FakeResponse(DETAIL_URL, {"aweme_detail": {"aweme_id": "1"}})
        playwright = _FakePlaywright([
            _Script(content_error=RuntimeError("target crashed")),
            _Script(responses=[response]),
        ])
        strategy = _FakeStrategy(playwright, _profile(max_retries=1))

        payload = await strategy.fetch("1")

        self.assertEqual(payload.source, "intercepted")
        self.assertEqual(len(playwright.browsers), 2)
        self.assertIsNot(playwright.browsers[0], playwright.browsers[1])
        self.assertTornDown(playwright)

    async def test_failures_exhaust_retries(self) -> None:
        playwright = _FakePlaywright([_Script(content_error=RuntimeError("target crashed"))])
        strategy = _FakeStrategy(playwright, _profile(max_retries=2))

        self.assertIsNone(await strategy.fetch("1"))
        self.assertEqual(len(playwright.browsers), 3)
        self.assertTornDown(playwright)

    async def test_overrunning_attempts_raise_timeout(self) -> None:
        playwright = _FakePlaywright([_Script(hang_navigation=True, hang_content=True)])
        strategy = _FakeStrategy(
            playwright, _profile(deadline=0.05, fallback_timeout=0.05, max_retries=1)
        )

        with self.assertRaises(DouyinTimeoutError):
            await strategy.fetch("1")
        self.assertEqual(len(playwright.browsers), 2)
        self.assertTornDown(playwright)

    async def test_launch_failure_is_not_retried(self) -> None:
        playwright = _FakePlaywright([_Script()], launch_error=PlaywrightError("Executable doesn't exist"))
        strategy = _FakeStrategy(playwright, _profile(max_retries=2))

        with self.assertRaises(DouyinBrowserLaunchError) as ctx:
            await strategy.fetch("1")
        self.assertEqual(ctx.exception.profile, "server")
        self.assertEqual(len(playwright.launch_options), 1)
        self.assertEqual(playwright.stop_calls, 1)


class TestPageCapture(unittest.IsolatedAsyncioTestCase):
    async def test_request_filter(self) -> None:
        capture = _PageCapture("1")
        routes = {
            "image": _FakeRoute("https://p3.douyinpic.com/a.jpeg", "image"),
            "font": _FakeRoute("https://lf.douyinstatic.com/a.woff", "font"),
            "tracker": _FakeRoute("https://mcs.zijieapi.com/list", "xhr"),
            "document": _FakeRoute("https://www.douyin.com/video/1", "document"),
            "api": _FakeRoute(DETAIL_URL, "xhr"),
        }
        for route in routes.values():
            await capture.handle_route(route)

        self.assertEqual(routes["image"].outcome, "abort")
        self.assertEqual(routes["font"].outcome, "abort")
        self.assertEqual(routes["tracker"].outcome, "abort")
        self.assertEqual(routes["document"].outcome, "continue")
        self.assertEqual(routes["api"].outcome, "continue")

    async def test_everything_aborted_after_capture(self) -> None:
        capture = _PageCapture("1")
        capture.captured.set()
        route = _FakeRoute("https://www.douyin.com/video/1", "document")

        await capture.handle_route(route)

        self.assertEqual(route.outcome, "abort")

    async def test_response_observer_filters(self) -> None:
        capture = _PageCapture("1")

        await capture.handle_response(_FakeResponse("https://www.douyin.com/other", {"aweme_detail": {"aweme_id": "x"}}))
        await capture.handle_response(_FakeResponse(DETAIL_URL, {"aweme_detail": {"aweme_id": "x"}}, status=403))
        await capture.handle_response(_FakeResponse(DETAIL_URL, "", status=200))
        await capture.handle_response(_FakeResponse(DETAIL_URL, "not json", content_type="text/plain"))
        await capture.handle_response(_FakeResponse(DETAIL_URL, {"aweme_detail": {"aweme_id": "x"}}, content_type="image/png"))
        self.assertFalse(capture.captured.is_set())

        await capture.handle_response(_FakeResponse(DETAIL_URL, {"item_list": [{"aweme_id": "1"}]}))
        await capture.handle_response(_FakeResponse(DETAIL_URL, {"aweme_detail": {"aweme_id": "2"}}))

        self.assertTrue(capture.captured.is_set())
        self.assertEqual(capture.payload.detail, {"aweme_id": "1"})


class TestBrowserProfile(unittest.TestCase):
    def test_server_profile_is_tighter(self) -> None:
        local = BrowserProfile.local()
        server = BrowserProfile.server()

        self.assertIn("--disable-dev-shm-usage", server.args)
        self.assertNotIn("--disable-dev-shm-usage", local.args)
        self.assertLess(server.navigation_timeout, local.navigation_timeout)
        self.assertLess(server.deadline, local.deadline)
        self.assertEqual(server.attempt_timeout, server.deadline + server.fallback_timeout)


if __name__ == "__main__":
    unittest.main()
