from __future__ import annotations

import asyncio
import json
import unittest
from typing import Any
from urllib.parse import parse_qs, urlparse

from curl_cffi import CurlError

from douyin_api.direct_api import (
    DETAIL_API_URL,
    ITEM_INFO_API_URL,
    DirectApiStrategy,
    build_detail_api_url,
)
from douyin_api.exceptions import DouyinTimeoutError


class _FakeResponse:
    def __init__(self, status_code: int, text: str) -> None:
        self.status_code = status_code
        self.text = text
        self.closed = False

    def close(self) -> None:
        self.closed = True


class _FakeSession:
    """Answers each endpoint prefix with a scripted outcome."""

    def __init__(self, outcomes: dict[str, Any]) -> None:
        self._outcomes = outcomes
        self.calls: list[dict[str, Any]] = []
        self.responses: list[_FakeResponse] = []

    async def get(self, url: str, *, headers: Any = None, timeout: Any = None, allow_redirects: Any = None) -> Any:
        self.calls.append({"url": url, "headers": headers, "timeout": timeout})
        for prefix, outcome in self._outcomes.items():
            if url.startswith(prefix):
                if outcome == "hang":
                    await asyncio.sleep(10)
                if isinstance(outcome, BaseException):
                    raise outcome
                response = _FakeResponse(*outcome)
                self.responses.append(response)
                return response
        raise AssertionError(f"unexpected url {url}")


class TestBuildDetailApiUrl(unittest.TestCase):
    def test_carries_id_token_and_fingerprint(self) -> None:
        url = build_detail_api_url("987654321", ms_token="tok")
        params = parse_qs(urlparse(url).query)

        self.assertTrue(url.startswith(DETAIL_API_URL))
        self.assertEqual(params["aweme_id"], ["987654321"])
        self.assertEqual(params["msToken"], ["tok"])
        self.assertEqual(params["aid"], ["6383"])
        self.assertEqual(params["browser_version"], ["120.0.0.0"])


class TestDirectApiStrategy(unittest.IsolatedAsyncioTestCase):
    async def test_detail_shape(self) -> None:
        session = _FakeSession({
            DETAIL_API_URL: (200, json.dumps({"aweme_detail": {"aweme_id": "1"}})),
        })
        strategy = DirectApiStrategy(timeout=1.0, session=session)

        payload = await strategy.fetch("1")

        self.assertEqual(payload.detail, {"aweme_id": "1"})
        self.assertEqual(payload.source, "detail_api")
        self.assertEqual(len(session.calls), 1)
        headers = session.calls[0]["headers"]
        self.assertEqual(headers["Referer"], "https://www.douyin.com/")
        self.assertIn("Chrome/120", headers["User-Agent"])
        self.assertTrue(all(response.closed for response in session.responses))

    async def test_empty_body_falls_back_to_item_info(self) -> None:
        session = _FakeSession({
            DETAIL_API_URL: (200, ""),
            ITEM_INFO_API_URL: (200, json.dumps({"item_list": [{"aweme_id": "1"}, {"aweme_id": "2"}]})),
        })
        strategy = DirectApiStrategy(timeout=1.0, session=session)

        payload = await strategy.fetch("1")

        self.assertEqual(payload.detail, {"aweme_id": "1"})
        self.assertEqual(payload.source, "iteminfo_api")
        self.assertEqual(len(session.calls), 2)

    async def test_nothing_usable_returns_none(self) -> None:
        session = _FakeSession({
            DETAIL_API_URL: (403, "blocked"),
            ITEM_INFO_API_URL: (200, json.dumps({"item_list": []})),
        })
        strategy = DirectApiStrategy(timeout=1.0, session=session)

        self.assertIsNone(await strategy.fetch("1"))

    async def test_invalid_json_and_transport_errors_are_soft(self) -> None:
        session = _FakeSession({
            DETAIL_API_URL: (200, "<html>captcha</html>"),
            ITEM_INFO_API_URL: CurlError("connection reset"),
        })
        strategy = DirectApiStrategy(timeout=1.0, session=session)

        self.assertIsNone(await strategy.fetch("1"))

    async def test_timeout_is_raised_only_without_data(self) -> None:
        session = _FakeSession({DETAIL_API_URL: "hang", ITEM_INFO_API_URL: (200, "")})
        strategy = DirectApiStrategy(timeout=0.05, session=session)

        with self.assertRaises(DouyinTimeoutError):
            await strategy.fetch("1")
        self.assertEqual(len(session.calls), 2)

    async def test_timeout_recovered_by_second_endpoint(self) -> None:
        session = _FakeSession({
            DETAIL_API_URL: "hang",
            ITEM_INFO_API_URL: (200, json.dumps({"item_list": [{"aweme_id": "1"}]})),
        })
        strategy = DirectApiStrategy(timeout=0.05, session=session)

        payload = await strategy.fetch("1")

        self.assertEqual(payload.source, "iteminfo_api")


if __name__ == "__main__":
    unittest.main()
