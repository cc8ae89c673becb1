"""
Unit tests for BrowserCapture.

Playwright is replaced by small fakes injected through the launch hooks, so
no browser is needed.

Run with: pytest tests/unit/test_browser_capture.py -v
"""

import asyncio
import json
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from datascout.crawler.browser_capture import BrowserCapture
from datascout.crawler.navigation import (
    STEALTH_SCRIPT,
    fast_ladder,
    goto_resilient,
    is_dns_error,
    is_protocol_error,
    navigation_ladder,
    storage_seed_script,
)
from datascout.errors import DnsResolutionError, NavigationExhaustedError


SEED = "https://shop.test/search"

HTTP2_ERROR = "page.goto: net::ERR_HTTP2_PROTOCOL_ERROR at https://shop.test/search"
DNS_ERROR = "page.goto: net::ERR_NAME_NOT_RESOLVED at https://shop.test/search"


class FakeRequest:
    def __init__(
        self,
        url: str,
        method: str = "GET",
        resource_type: str = "fetch",
        headers: Optional[Dict[str, str]] = None,
        post_data: Optional[str] = None,
    ):
        self.url = url
        self.method = method
        self.resource_type = resource_type
        self.headers = headers or {}
        self.post_data = post_data
        self.frame = SimpleNamespace(url=SEED)


class FakeResponse:
    def __init__(self, request: FakeRequest, body: Any = None, content_type: str = "application/json", status: int = 200):
        self.request = request
        self.status = status
        self.headers = {"content-type": content_type}
        self._body = body if isinstance(body, str) else json.dumps(body)
        self.text_calls = 0

    async def text(self) -> str:
        self.text_calls += 1
        return self._body


class FakeLocator:
    @property
    def first(self):
        return self

    async def click(self, timeout=None):
        raise TimeoutError("no consent banner")


class FakePage:
    def __init__(self, goto_error: Optional[str] = None, traffic=None, links=None, html: str = "", title: str = "Search"):
        self.goto_error = goto_error
        self.traffic = traffic or []
        self.links = links or []
        self.html = html
        self.title_text = title
        self.handlers: Dict[str, List] = {"request": [], "response": []}
        self.goto_calls: List[Dict[str, Any]] = []

    def on(self, event, handler):
        self.handlers[event].append(handler)

    async def goto(self, url, wait_until=None, timeout=None):
        self.goto_calls.append({"url": url, "wait_until": wait_until, "timeout": timeout})
        if self.goto_error:
            raise RuntimeError(self.goto_error)
        for request, response in self.traffic:
            for handler in self.handlers["request"]:
                handler(request)
            if response is not None:
                for handler in self.handlers["response"]:
                    handler(response)

    def get_by_role(self, role, name=None):
        return FakeLocator()

    def locator(self, selector):
        return FakeLocator()

    async def wait_for_load_state(self, state, timeout=None):
        return None

    async def evaluate(self, script):
        if "shadowRoot" in script:
            return self.links
        return None

    async def content(self):
        return self.html

    async def title(self):
        return self.title_text


class FakeContext:
    def __init__(self, page: FakePage):
        self.page = page
        self.init_scripts: List[str] = []
        self.closed = False

    async def add_init_script(self, script):
        self.init_scripts.append(script)

    async def new_page(self):
        return self.page

    async def close(self):
        self.closed = True


class FakeBrowser:
    def __init__(self, page: FakePage, close_error: Optional[Exception] = None):
        self.context = FakeContext(page)
        self.close_error = close_error
        self.closed = False

    async def new_context(self, **kwargs):
        return self.context

    async def close(self):
        self.closed = True
        if self.close_error:
            raise self.close_error


class FakePlaywright:
    def __init__(self):
        self.stopped = False

    async def stop(self):
        self.stopped = True


class FakeCapture(BrowserCapture):
    """BrowserCapture launching one fake page per launch"""

    def __init__(self, url: str, pages: List[FakePage], close_error: Optional[Exception] = None, **kwargs):
        super().__init__(url, **kwargs)
        self.fake_pages = list(pages)
        self.close_error = close_error
        self.launches: List[Dict[str, Any]] = []
        self.browsers: List[FakeBrowser] = []
        self.fake_playwright = FakePlaywright()

    async def _start_playwright(self):
        self.playwright = self.fake_playwright

    async def _launch_browser(self, headless, args):
        self.launches.append({"headless": headless, "args": list(args)})
        browser = FakeBrowser(self.fake_pages.pop(0), close_error=self.close_error)
        self.browsers.append(browser)
        return browser


def shop_traffic():
    """Same-origin API call, a third-party JSON beacon and a stylesheet"""
    api = FakeRequest("https://shop.test/api/v1/items?page=1")
    beacon = FakeRequest("https://tracker.example/collect", resource_type="fetch")
    css = FakeRequest("https://shop.test/static/app.css", resource_type="stylesheet")
    items = {"data": [{"id": 1, "price": 10.5}, {"id": 2, "price": None}]}
    return [
        (api, FakeResponse(api, items)),
        (beacon, FakeResponse(beacon, {"events": [{"id": "x"}]})),
        (css, FakeResponse(css, "body{}", content_type="text/css")),
    ]


class TestNavigationHelpers:
    """Test suite for the navigation helpers"""

    def test_error_classification(self):
        """Test DNS and protocol errors are told apart"""
        assert is_dns_error(RuntimeError(DNS_ERROR))
        assert not is_dns_error(RuntimeError(HTTP2_ERROR))
        assert is_protocol_error(RuntimeError(HTTP2_ERROR))
        assert is_protocol_error(RuntimeError("net::ERR_QUIC_PROTOCOL_ERROR"))
        assert not is_protocol_error(RuntimeError("Timeout 8000ms exceeded"))

    def test_ladders(self):
        """Test ready conditions and their timeouts"""
        ladder = navigation_ladder(35000)
        assert [(s.wait_until, s.timeout_ms) for s in ladder] == [
            ("commit", 8000),
            ("domcontentloaded", 8000),
            ("load", 35000),
        ]
        assert navigation_ladder(1000)[-1].timeout_ms == 8000
        assert [(s.wait_until, s.timeout_ms) for s in fast_ladder(35000)] == [("commit", 5000)]
        assert fast_ladder(2000)[0].timeout_ms == 2000

    @pytest.mark.asyncio
    async def test_goto_resilient_stops_on_dns_error(self):
        """Test a DNS failure is raised without trying later steps"""
        page = FakePage(goto_error=DNS_ERROR)

        with pytest.raises(RuntimeError):
            await goto_resilient(page, SEED, navigation_ladder(25000))

        assert len(page.goto_calls) == 1

    @pytest.mark.asyncio
    async def test_goto_resilient_walks_the_ladder(self):
        """Test every step is tried before giving up"""
        page = FakePage(goto_error="Timeout exceeded")

        with pytest.raises(RuntimeError):
            await goto_resilient(page, SEED, navigation_ladder(25000))

        assert [c["wait_until"] for c in page.goto_calls] == ["commit", "domcontentloaded", "load"]

    def test_storage_seed_script(self):
        """Test seeded values are embedded as strings"""
        script = storage_seed_script({"token": "abc", "prefs": {"lang": "en"}})

        assert "localStorage.setItem" in script
        assert '"token": "abc"' in script
        assert '"prefs": "{\\"lang\\": \\"en\\"}"' in script


class TestBrowserCapture:
    """Test suite for BrowserCapture"""

    @pytest.mark.asyncio
    async def test_primary_capture(self):
        """Test API candidates, summaries, counters and teardown"""
        traffic = shop_traffic()
        capture = FakeCapture(SEED, [FakePage(traffic=traffic)])

        result = await capture.capture()

        assert [c.url for c in result.api_candidates] == ["https://shop.test/api/v1/items?page=1"]
        candidate = result.api_candidates[0]
        assert candidate.is_json and candidate.is_xhr_fetch and candidate.is_api_like_path
        assert candidate.status == 200
        assert candidate.frame_url == SEED
        assert candidate.entity_summary["count"] == 2

        data = next(s for s in result.array_summaries if s.path == "$.data")
        assert data.source_url == "https://shop.test/api/v1/items?page=1"
        assert data.method == "GET"
        assert len(data.sample) == 2
        assert data.field_stats["price"].nullish == 1

        assert result.total_requests == 3
        assert result.by_host == {"shop.test": 1}
        assert result.page_title == "Search"
        assert result.diagnostics == [{
            "stage": "primary",
            "headless": True,
            "disable_http2": False,
            "stealth": False,
            "ok": True,
            "wait_until": "commit",
        }]

        assert traffic[0][1].text_calls == 1
        assert capture.browsers[0].closed
        assert capture.browsers[0].context.closed
        assert capture.get_stats()["requests"] == 3
        assert capture.fake_playwright.stopped

    @pytest.mark.asyncio
    async def test_third_party_json_excluded(self):
        """Test same-origin mode drops third-party responses entirely"""
        traffic = shop_traffic()
        result = await FakeCapture(SEED, [FakePage(traffic=traffic)]).capture()

        assert all("tracker.example" not in c.url for c in result.api_candidates)
        assert all("tracker.example" not in (s.source_url or "") for s in result.array_summaries)
        assert traffic[1][1].text_calls == 0

    @pytest.mark.asyncio
    async def test_any_origin_keeps_third_party_json(self):
        """Test third-party JSON is captured when same-origin is off"""
        result = await FakeCapture(SEED, [FakePage(traffic=shop_traffic())], same_origin=False).capture()

        assert "https://tracker.example/collect" in [c.url for c in result.api_candidates]
        assert result.by_host == {"shop.test": 1, "tracker.example": 1}

    @pytest.mark.asyncio
    async def test_http2_fallback_succeeds_with_diagnostics(self):
        """Test a protocol error on stage 1 recovers on stage 2 without raising"""
        pages = [FakePage(goto_error=HTTP2_ERROR), FakePage(traffic=shop_traffic())]
        capture = FakeCapture(SEED, pages)

        result = await capture.capture()

        assert [d["stage"] for d in result.diagnostics] == ["primary", "disable_http2"]
        assert result.diagnostics[0]["ok"] is False
        assert "ERR_HTTP2_PROTOCOL_ERROR" in result.diagnostics[0]["error"]
        assert result.diagnostics[1]["ok"] is True
        assert capture.launches[1]["args"] == ["--disable-http2"]
        assert capture.browsers[0].closed
        assert len(result.api_candidates) == 1

    @pytest.mark.asyncio
    async def test_exhausted_ladder_keeps_primary_error(self):
        """Test exhaustion reports the stage 1 error and tries headful stealth last"""
        pages = [
            FakePage(goto_error=HTTP2_ERROR),
            FakePage(goto_error="Timeout 8000ms exceeded"),
            FakePage(goto_error="net::ERR_CONNECTION_RESET"),
        ]
        capture = FakeCapture(SEED, pages)

        with pytest.raises(NavigationExhaustedError) as exc_info:
            await capture.capture()

        error = exc_info.value
        assert "ERR_HTTP2_PROTOCOL_ERROR" in str(error)
        assert [a["stage"] for a in error.attempts] == ["primary", "disable_http2", "headful_stealth"]
        assert capture.launches[2]["headless"] is False
        assert "--disable-http2" in capture.launches[2]["args"]
        assert "--disable-blink-features=AutomationControlled" in capture.launches[2]["args"]
        assert STEALTH_SCRIPT in capture.browsers[2].context.init_scripts
        assert all(browser.closed for browser in capture.browsers)
        assert capture.fake_playwright.stopped

    @pytest.mark.asyncio
    async def test_non_protocol_error_has_no_fallback(self):
        """Test other primary failures exhaust the ladder at once"""
        capture = FakeCapture(SEED, [FakePage(goto_error="Timeout 8000ms exceeded")])

        with pytest.raises(NavigationExhaustedError):
            await capture.capture()

        assert len(capture.launches) == 1

    @pytest.mark.asyncio
    async def test_dns_error_short_circuits(self):
        """Test DNS failure raises immediately with no fallback"""
        page = FakePage(goto_error=DNS_ERROR)
        capture = FakeCapture(SEED, [page])

        with pytest.raises(DnsResolutionError) as exc_info:
            await capture.capture()

        assert exc_info.value.url == SEED
        assert len(capture.launches) == 1
        assert len(page.goto_calls) == 1
        assert capture.browsers[0].closed
        assert capture.fake_playwright.stopped

    @pytest.mark.asyncio
    async def test_fast_mode(self):
        """Test fast mode: commit only, no observers, DOM extraction only"""
        links = [{"href": "https://shop.test/item/1", "text": "One", "parent": SEED, "parent_title": "Search"}]
        page = FakePage(traffic=shop_traffic(), links=links)

        result = await FakeCapture(SEED, [page], fast_mode=True, timeout_ms=35000).capture()

        assert page.goto_calls == [{"url": SEED, "wait_until": "commit", "timeout": 5000}]
        assert page.handlers == {"request": [], "response": []}
        assert result.api_candidates == []
        assert result.total_requests == 0
        assert [link.href for link in result.deep_links] == ["https://shop.test/item/1"]

    @pytest.mark.asyncio
    async def test_event_channel_drops_oldest(self):
        """Test a full channel evicts old events and counts them"""
        traffic = [(FakeRequest(f"https://shop.test/r{i}"), None) for i in range(5)]

        result = await FakeCapture(SEED, [FakePage(traffic=traffic)], queue_size=2).capture()

        assert result.dropped_events == 3
        assert result.total_requests == 2

    @pytest.mark.asyncio
    async def test_stop_survives_late_events_on_full_channel(self):
        """Test events arriving during shutdown cannot evict the stop marker"""
        gate = asyncio.Event()

        class SlowResponse(FakeResponse):
            async def text(self):
                await gate.wait()
                return await super().text()

        capture = FakeCapture(SEED, [], queue_size=2)
        capture.events = asyncio.Queue(maxsize=2)
        capture._consumer = asyncio.ensure_future(capture._consume())

        api = FakeRequest("https://shop.test/api/v1/items")
        capture._push(("response", SlowResponse(api, {"data": [{"id": 1}]})))
        for _ in range(3):
            await asyncio.sleep(0)

        # Consumer is parked on the body read; shutdown queues the marker
        stopping = asyncio.ensure_future(capture._stop_consumer())
        for _ in range(3):
            await asyncio.sleep(0)
        for i in range(2):
            capture._push(("request", FakeRequest(f"https://shop.test/late{i}")))

        gate.set()
        await asyncio.wait_for(stopping, timeout=2)

        assert capture._consumer is None
        assert capture.result.dropped_events == 0
        assert capture.requests == []
        assert [c.url for c in capture.result.api_candidates] == ["https://shop.test/api/v1/items"]

    @pytest.mark.asyncio
    async def test_request_index_cap(self):
        """Test requests beyond max_requests are not indexed"""
        traffic = [(FakeRequest(f"https://shop.test/r{i}"), None) for i in range(6)]

        result = await FakeCapture(SEED, [FakePage(traffic=traffic)], max_requests=4).capture()

        assert result.total_requests == 4

    @pytest.mark.asyncio
    async def test_graphql_operation_peek(self):
        """Test GraphQL POST bodies yield operation name and query preview"""
        body = json.dumps({"operationName": "Search", "query": "query Search { items { id } }"})
        request = FakeRequest(
            "https://shop.test/graphql",
            method="POST",
            headers={"content-type": "application/json"},
            post_data=body,
        )
        response = FakeResponse(request, {"data": [{"id": 1}]})

        result = await FakeCapture(SEED, [FakePage(traffic=[(request, response)])]).capture()

        candidate = result.api_candidates[0]
        assert candidate.is_graphql
        assert candidate.op_name == "Search"
        assert candidate.graphql_query == "query Search { items { id } }"
        assert candidate.entity_summary["kind"] == "graphql"
        assert result.array_summaries[0].method == "POST"

    @pytest.mark.asyncio
    async def test_bad_json_body_is_not_fatal(self):
        """Test an unparsable JSON body still yields a candidate"""
        request = FakeRequest("https://shop.test/api/broken")
        response = FakeResponse(request, "{not json")

        result = await FakeCapture(SEED, [FakePage(traffic=[(request, response)])]).capture()

        assert result.api_candidates[0].entity_summary is None
        assert result.array_summaries == []

    @pytest.mark.asyncio
    async def test_deep_links_and_dom_urls(self):
        """Test deep links are absolute, unique and filtered by the allow-list"""
        links = [
            {"href": "https://shop.test/item/1", "text": "One", "parent": SEED, "parent_title": "Search"},
            {"href": "https://shop.test/item/1", "text": "Dup"},
            {"href": "https://shop.test/about", "text": "About"},
            {"href": "mailto:sales@shop.test", "text": "Mail"},
        ]
        html = '<a href="https://shop.test/item/1">x</a> see https://cdn.test/a.png'
        page = FakePage(links=links, html=html)

        result = await FakeCapture(SEED, [page], nav_allow_patterns=["/item/"]).capture()

        assert [(l.href, l.text, l.parent_title) for l in result.deep_links] == [
            ("https://shop.test/item/1", "One", "Search")
        ]
        assert result.dom_urls == ["https://shop.test/item/1", "https://cdn.test/a.png"]

    @pytest.mark.asyncio
    async def test_storage_seed_and_user_agent_context(self):
        """Test the storage seed is installed as an init script"""
        capture = FakeCapture(SEED, [FakePage()], storage_seed={"token": "abc"})

        await capture.capture()

        scripts = capture.browsers[0].context.init_scripts
        assert len(scripts) == 1
        assert '"token": "abc"' in scripts[0]

    @pytest.mark.asyncio
    async def test_teardown_errors_are_swallowed(self):
        """Test a failing browser close does not fail the capture"""
        capture = FakeCapture(SEED, [FakePage()], close_error=RuntimeError("already closed"))

        result = await capture.capture()

        assert result.page_title == "Search"
        assert capture.fake_playwright.stopped


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
