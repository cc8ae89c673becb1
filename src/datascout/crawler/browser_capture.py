"""
Browser Capture - Observe a page's runtime network traffic with Playwright.

This module loads one page in Chromium and records what the page talks to:
every request (up to a cap), every API-like response, the shape of every
JSON payload, and the links present in the rendered DOM.

Features:
1. Resilience ladder (primary, HTTP/2 disabled, headful + stealth)
2. Network observation through a bounded event channel
3. Universal JSON array summaries for captured responses
4. Consent dismissal, network-idle settling and auto-scroll
5. Shadow-root aware deep link collection
6. Fast mode (commit-only navigation, DOM extraction only)

Playwright callbacks never do work themselves: they push onto a bounded
queue that a single consumer task drains in arrival order. When the queue
is full the oldest event is dropped and counted.
"""

import asyncio
import json
import re
from collections import Counter
from typing import Any, Dict, List, Optional

import structlog
from playwright.async_api import async_playwright

from ..analysis.classify import classify_exchange, is_json_content_type, peek_graphql
from ..analysis.summarizer import summarize_arrays, summarize_entity
from ..errors import ConfigError, DnsResolutionError, NavigationExhaustedError
from ..report import ApiCandidate, CaptureResult, DeepLink, hostname_of
from .extractors import URL_RE, absolute_url, same_origin
from .http_crawler import USER_AGENT
from .navigation import (
    AUTO_SCROLL_JS,
    COLLECT_LINKS_JS,
    CONSENT_BUTTON_NAME,
    CONSENT_SELECTORS,
    CONSENT_TIMEOUT_MS,
    DISABLE_HTTP2_ARGS,
    SCROLL_SETTLE_TIMEOUT_MS,
    SETTLE_TIMEOUT_MS,
    STEALTH_ARGS,
    STEALTH_SCRIPT,
    fast_ladder,
    goto_resilient,
    is_dns_error,
    is_protocol_error,
    navigation_ladder,
    storage_seed_script,
)


DEFAULT_TIMEOUT_MS = 35000
DEFAULT_MAX_REQUESTS = 400
DEFAULT_QUEUE_SIZE = 1000

# Seconds; page.evaluate and response.text() take no timeout of their own
BODY_READ_TIMEOUT = 10
SCRIPT_TIMEOUT = 15

# (stage name, headless override, disable http2, stealth)
FALLBACK_STAGES = [
    ("primary", None, False, False),
    ("disable_http2", None, True, False),
    ("headful_stealth", False, True, True),
]


class BrowserCapture:
    """
    Single-page capture producing a CaptureResult.

    Launch and teardown go through small overridable methods
    (``_start_playwright``, ``_launch_browser``) so the capture logic can run
    against any object exposing the Playwright page API.

    Example:
        >>> capture = BrowserCapture("https://example.com", auto_scroll=False)
        >>> result = await capture.capture()
        >>> print(len(result.api_candidates))
    """

    def __init__(
        self,
        url: str,
        headless: bool = True,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        same_origin: bool = True,
        auto_scroll: bool = True,
        storage_seed: Optional[Dict[str, Any]] = None,
        nav_allow_patterns: Optional[List[str]] = None,
        fast_mode: bool = False,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
    ):
        """
        Initialize the capture.

        Args:
            url: Page to load
            headless: Run Chromium headless (the last fallback stage never is)
            timeout_ms: Navigation budget in milliseconds
            same_origin: Ignore responses from other origins
            auto_scroll: Scroll the page to trigger lazy loading
            storage_seed: Key/value pairs written to localStorage before any page script
            nav_allow_patterns: Keep only deep links containing one of these substrings
            fast_mode: Commit-only navigation and DOM extraction, no observation
            max_requests: Cap on the request index
            queue_size: Capacity of the event channel

        Raises:
            ConfigError: If the URL is missing
        """
        if not url:
            raise ConfigError("url is required")

        self.url = url
        self.headless = headless
        self.timeout_ms = timeout_ms
        self.same_origin = same_origin
        self.auto_scroll = auto_scroll
        self.storage_seed = dict(storage_seed or {})
        self.nav_allow_patterns = list(nav_allow_patterns or [])
        self.fast_mode = fast_mode
        self.max_requests = max_requests
        self.queue_size = queue_size

        self.result = CaptureResult(seed_url=url)
        self.requests: List[Dict[str, Any]] = []

        # Event channel
        self.events: Optional[asyncio.Queue] = None
        self._consumer: Optional[asyncio.Task] = None
        self._closing = False

        # Playwright instances
        self.playwright = None
        self.browser = None
        self.context = None
        self.page = None

        # Logging
        self.logger = structlog.get_logger(__name__)

    async def capture(self) -> CaptureResult:
        """
        Load the page and collect everything it exposes.

        Returns:
            CaptureResult for this page

        Raises:
            DnsResolutionError: If the host does not resolve
            NavigationExhaustedError: If every navigation stage failed
        """
        self.logger.info(
            "capture_started",
            url=self.url,
            headless=self.headless,
            fast_mode=self.fast_mode,
            timeout_ms=self.timeout_ms,
        )

        try:
            await self._start_playwright()
            if not self.fast_mode:
                self.events = asyncio.Queue(maxsize=self.queue_size)
                self._consumer = asyncio.ensure_future(self._consume())

            page = await self._navigate()

            if not self.fast_mode:
                await self._settle(page)

            await self._extract_dom(page)
        finally:
            await self._stop_consumer()
            await self._teardown()

        self._finalize()

        self.logger.info(
            "capture_completed",
            url=self.url,
            api_candidates=len(self.result.api_candidates),
            array_summaries=len(self.result.array_summaries),
            deep_links=len(self.result.deep_links),
            total_requests=self.result.total_requests,
            dropped_events=self.result.dropped_events,
        )
        return self.result

    # ------------------------------------------------------------------
    # Browser lifecycle
    # ------------------------------------------------------------------

    async def _start_playwright(self):
        self.playwright = await async_playwright().start()

    async def _launch_browser(self, headless: bool, args: List[str]):
        return await self.playwright.chromium.launch(headless=headless, args=args)

    async def _open_page(self, headless: bool, disable_http2: bool = False, stealth: bool = False):
        """
        Launch a browser and open the capture page.

        Args:
            headless: Run headless
            disable_http2: Launch with ``--disable-http2``
            stealth: Hide automation markers (launch flag + init script)

        Returns:
            The new page, with observers attached unless in fast mode
        """
        args: List[str] = []
        if disable_http2:
            args.extend(DISABLE_HTTP2_ARGS)
        if stealth:
            args.extend(STEALTH_ARGS)

        self.browser = await self._launch_browser(headless, args)
        self.context = await self.browser.new_context(user_agent=USER_AGENT)
        if stealth:
            await self.context.add_init_script(STEALTH_SCRIPT)
        if self.storage_seed:
            await self.context.add_init_script(storage_seed_script(self.storage_seed))

        self.page = await self.context.new_page()
        if not self.fast_mode:
            self._attach_listeners(self.page)
        return self.page

    async def _close_browser(self):
        for resource in (self.context, self.browser):
            if resource is None:
                continue
            try:
                await resource.close()
            except Exception as e:
                self.logger.warning("browser_close_failed", url=self.url, error=str(e))
        self.page = None
        self.context = None
        self.browser = None

    async def _teardown(self):
        """Release browser and Playwright; errors are logged, never raised"""
        await self._close_browser()
        if self.playwright is not None:
            try:
                await self.playwright.stop()
            except Exception as e:
                self.logger.warning("playwright_stop_failed", url=self.url, error=str(e))
            self.playwright = None

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    async def _navigate(self):
        """
        Run the resilience ladder.

        1. Primary launch with the ready-condition ladder
        2. Only after an HTTP/2 / QUIC protocol error: relaunch with HTTP/2 disabled
        3. If that fails too: relaunch headful with stealth, HTTP/2 disabled

        Every stage tried is recorded in ``result.diagnostics``.

        Returns:
            Page that finished navigating
        """
        if self.fast_mode:
            stages = FALLBACK_STAGES[:1]
            ladder = fast_ladder(self.timeout_ms)
        else:
            stages = FALLBACK_STAGES
            ladder = navigation_ladder(self.timeout_ms)

        primary_error: Optional[BaseException] = None
        attempts: List[Dict[str, Any]] = []

        for index, (stage, headless, disable_http2, stealth) in enumerate(stages):
            if index == 1 and not is_protocol_error(primary_error):
                break
            if index > 0:
                await self._close_browser()
                self.logger.warning("navigation_fallback", url=self.url, stage=stage)

            headless = self.headless if headless is None else headless
            attempt = {
                "stage": stage,
                "headless": headless,
                "disable_http2": disable_http2,
                "stealth": stealth,
            }
            try:
                page = await self._open_page(headless, disable_http2=disable_http2, stealth=stealth)
                step = await goto_resilient(page, self.url, ladder)
            except Exception as e:
                attempt.update(ok=False, error=str(e))
                attempts.append(attempt)
                if is_dns_error(e):
                    self.result.diagnostics.extend(attempts)
                    self.logger.error("dns_resolution_failed", url=self.url, error=str(e))
                    raise DnsResolutionError(self.url, str(e)) from e
                if primary_error is None:
                    primary_error = e
                self.logger.warning("navigation_failed", url=self.url, stage=stage, error=str(e))
                continue

            attempt.update(ok=True, wait_until=step.wait_until)
            attempts.append(attempt)
            self.result.diagnostics.extend(attempts)
            if index > 0:
                self.logger.info("navigation_recovered", url=self.url, stage=stage)
            return page

        self.result.diagnostics.extend(attempts)
        self.logger.error("navigation_exhausted", url=self.url, error=str(primary_error))
        raise NavigationExhaustedError(self.url, primary_error, attempts)

    async def _settle(self, page):
        await self._dismiss_consent(page)
        await self._wait_idle(page, SETTLE_TIMEOUT_MS)

        if self.auto_scroll:
            try:
                await asyncio.wait_for(page.evaluate(AUTO_SCROLL_JS), SCRIPT_TIMEOUT)
            except Exception as e:
                self.logger.debug("auto_scroll_failed", url=self.url, error=str(e))
            await self._wait_idle(page, SCROLL_SETTLE_TIMEOUT_MS)

    async def _dismiss_consent(self, page):
        """Best-effort click on a cookie/consent banner"""
        try:
            button = page.get_by_role("button", name=re.compile(CONSENT_BUTTON_NAME, re.IGNORECASE))
            await button.first.click(timeout=CONSENT_TIMEOUT_MS)
            self.logger.debug("consent_dismissed", url=self.url, via="role")
        except Exception:
            pass
        try:
            await page.locator(CONSENT_SELECTORS).first.click(timeout=CONSENT_TIMEOUT_MS)
            self.logger.debug("consent_dismissed", url=self.url, via="selector")
        except Exception:
            pass

    async def _wait_idle(self, page, timeout_ms: int):
        try:
            await page.wait_for_load_state("networkidle", timeout=timeout_ms)
        except Exception:
            self.logger.debug("network_not_idle", url=self.url, timeout_ms=timeout_ms)

    # ------------------------------------------------------------------
    # Event channel
    # ------------------------------------------------------------------

    def _attach_listeners(self, page):
        page.on("request", lambda request: self._push(("request", request)))
        page.on("response", lambda response: self._push(("response", response)))

    def _push(self, event):
        """Enqueue without ever blocking; evict the oldest event when full"""
        if self._closing or self.events is None:
            return
        try:
            self.events.put_nowait(event)
        except asyncio.QueueFull:
            self.events.get_nowait()
            self.result.dropped_events += 1
            self.events.put_nowait(event)

    async def _consume(self):
        while True:
            event = await self.events.get()
            if event is None:
                return
            kind, payload = event
            try:
                if kind == "request":
                    self._handle_request(payload)
                else:
                    await self._handle_response(payload)
            except Exception as e:
                self.logger.warning("event_handling_failed", kind=kind, error=str(e))

    async def _stop_consumer(self):
        """Drain the channel and wait for the consumer to finish"""
        if self._consumer is None:
            return
        consumer, self._consumer = self._consumer, None
        # Late listener events must not evict the stop marker
        self._closing = True
        if not consumer.done():
            await self.events.put(None)
        try:
            await consumer
        except Exception as e:
            self.logger.warning("event_consumer_failed", error=str(e))

    def _handle_request(self, request):
        if len(self.requests) >= self.max_requests:
            return
        self.requests.append({
            "url": request.url,
            "method": request.method,
            "resource_type": request.resource_type,
            "frame_url": _frame_url(request),
        })

    async def _handle_response(self, response):
        """
        Record one response.

        JSON bodies are read once and summarized; the exchange becomes an
        ApiCandidate when it classifies as API-like.
        """
        request = response.request
        url = request.url
        if self.same_origin and not same_origin(self.url, url):
            return

        headers = response.headers or {}
        content_type = (headers.get("content-type") or "").lower()

        entity_summary = None
        if is_json_content_type(content_type):
            entity_summary = await self._summarize_body(response, request)

        request_headers = request.headers or {}
        exchange = classify_exchange(
            url,
            request.method,
            request.resource_type,
            content_type=content_type,
            request_content_type=request_headers.get("content-type", ""),
        )
        if not exchange.api_candidate:
            return

        op_name = graphql_query = None
        if exchange.is_graphql and request.method.upper() == "POST":
            op_name, graphql_query = peek_graphql(request.post_data)

        self.result.api_candidates.append(ApiCandidate(
            url=url,
            method=request.method,
            resource_type=request.resource_type,
            status=response.status,
            content_type=exchange.content_type or None,
            frame_url=_frame_url(request),
            is_json=exchange.is_json,
            is_graphql=exchange.is_graphql,
            is_xhr_fetch=exchange.is_xhr_fetch,
            is_api_like_path=exchange.is_api_like_path,
            op_name=op_name,
            graphql_query=graphql_query,
            entity_summary=entity_summary,
        ))

    async def _summarize_body(self, response, request) -> Optional[Dict[str, Any]]:
        try:
            text = await asyncio.wait_for(response.text(), BODY_READ_TIMEOUT)
            data = json.loads(text)
        except Exception as e:
            self.logger.debug("response_body_unreadable", url=request.url, error=str(e))
            return None

        for summary in summarize_arrays(data, min_array_length=1, max_sample_size=5):
            summary.source_url = request.url
            summary.method = request.method
            self.result.array_summaries.append(summary)

        return summarize_entity(data, request.url)

    # ------------------------------------------------------------------
    # DOM extraction
    # ------------------------------------------------------------------

    async def _extract_dom(self, page):
        try:
            html = await asyncio.wait_for(page.content(), SCRIPT_TIMEOUT)
            self.result.dom_urls = list(dict.fromkeys(URL_RE.findall(html or "")))
        except Exception as e:
            self.logger.warning("dom_content_failed", url=self.url, error=str(e))

        try:
            raw_links = await asyncio.wait_for(page.evaluate(COLLECT_LINKS_JS), SCRIPT_TIMEOUT)
            self.result.deep_links = self._filter_links(raw_links or [])
        except Exception as e:
            self.logger.warning("deep_link_collection_failed", url=self.url, error=str(e))

        try:
            self.result.page_title = await asyncio.wait_for(page.title(), SCRIPT_TIMEOUT) or ""
        except Exception as e:
            self.logger.debug("page_title_failed", url=self.url, error=str(e))

    def _filter_links(self, raw_links: List[Dict[str, Any]]) -> List[DeepLink]:
        """Absolute http(s) links, unique by href, narrowed by the allow-list"""
        links: Dict[str, DeepLink] = {}
        for raw in raw_links:
            href = absolute_url(self.url, raw.get("href")) if isinstance(raw, dict) else None
            if not href or href in links:
                continue
            if self.nav_allow_patterns and not any(p in href for p in self.nav_allow_patterns):
                continue
            links[href] = DeepLink(
                href=href,
                text=raw.get("text") or "",
                parent=raw.get("parent") or "",
                parent_title=raw.get("parent_title") or "",
            )
        return list(links.values())

    def _finalize(self):
        self.result.total_requests = len(self.requests)
        self.result.by_host = dict(Counter(
            hostname_of(candidate.url) or "unknown" for candidate in self.result.api_candidates
        ))

    def get_stats(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "requests": len(self.requests),
            "api_candidates": len(self.result.api_candidates),
            "array_summaries": len(self.result.array_summaries),
            "dropped_events": self.result.dropped_events,
        }


def _frame_url(request) -> Optional[str]:
    try:
        return request.frame.url
    except Exception:
        return None


async def capture(
    url: str,
    headless: bool = True,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    same_origin: bool = True,
    auto_scroll: bool = True,
    storage_seed: Optional[Dict[str, Any]] = None,
    nav_allow_patterns: Optional[List[str]] = None,
    fast_mode: bool = False,
    max_requests: int = DEFAULT_MAX_REQUESTS,
) -> CaptureResult:
    """Capture ``url`` in a fresh browser and return the CaptureResult"""
    browser_capture = BrowserCapture(
        url,
        headless=headless,
        timeout_ms=timeout_ms,
        same_origin=same_origin,
        auto_scroll=auto_scroll,
        storage_seed=storage_seed,
        nav_allow_patterns=nav_allow_patterns,
        fast_mode=fast_mode,
        max_requests=max_requests,
    )
    return await browser_capture.capture()
