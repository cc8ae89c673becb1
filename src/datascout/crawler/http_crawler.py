"""
HTTP Crawler - Breadth-limited concurrent crawl over plain HTTP.

Fetches pages with aiohttp, dispatches each response to the HTML, JSON or
XML extractor and follows same-site links up to a depth and page budget.

Scheduling:
1. The frontier is cut into batches of at most ``batch_size`` jobs
2. Each batch is run on a fixed pool of ``concurrency`` workers
3. Links found by a batch feed the next batches

A page that fails to fetch or parse is logged and skipped; it never stops
the crawl.
"""

import asyncio
from collections import Counter
from dataclasses import dataclass
from typing import List, Optional, Set, Tuple

import aiohttp
import structlog

from ..errors import ConfigError
from ..report import DiscoveredEndpoint, DiscoveryReport, ReportSummary, hostname_of
from .extractors import EXTRACTORS, CrawlContext, classify_content, same_origin


USER_AGENT = "datascout/1.0 (+https://localhost)"

DEFAULT_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "text/html,application/json,application/ld+json,application/xml;q=0.9,*/*;q=0.8",
}

DEFAULT_TIMEOUT_MS = 15000
DEFAULT_CONCURRENCY = 4
DEFAULT_BATCH_SIZE = 8


@dataclass
class FetchResult:
    """Body and headers of one fetched page"""
    url: str
    status: int
    content_type: str
    text: str


class SiteCrawler:
    """
    Concurrent crawler producing a DiscoveryReport.

    Example:
        >>> crawler = SiteCrawler("https://example.com", max_depth=1, max_pages=20)
        >>> report = await crawler.scan()
        >>> print(report.summary.pages_scanned)
    """

    def __init__(
        self,
        seed_url: str,
        max_depth: int = 1,
        same_origin: bool = True,
        max_pages: int = 20,
        timeout_ms: int = DEFAULT_TIMEOUT_MS,
        concurrency: int = DEFAULT_CONCURRENCY,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        """
        Initialize the crawler.

        Args:
            seed_url: First page to fetch
            max_depth: Link hops followed from the seed (0 = seed only)
            same_origin: Only follow links sharing the seed's origin
            max_pages: Page budget (size of the visited set)
            timeout_ms: Per-request timeout in milliseconds (0 = default)
            concurrency: Number of parallel fetch workers
            batch_size: Frontier jobs submitted per round

        Raises:
            ConfigError: If the seed URL is missing or limits are invalid
        """
        if not seed_url:
            raise ConfigError("seed_url is required")
        if max_depth < 0 or max_pages < 1 or timeout_ms < 0:
            raise ConfigError("max_depth must be >= 0, max_pages >= 1 and timeout_ms >= 0")

        self.seed_url = seed_url
        self.max_depth = max_depth
        self.same_origin = same_origin
        self.max_pages = max_pages
        self.timeout_ms = timeout_ms or DEFAULT_TIMEOUT_MS
        self.concurrency = max(1, concurrency)
        self.batch_size = max(1, batch_size)

        # State tracking
        self.visited: Set[str] = set()
        self.queued: Set[str] = set()
        self.frontier: List[Tuple[str, int]] = []
        self.pages_fetched = 0
        self.context = CrawlContext()
        self.report = DiscoveryReport(summary=ReportSummary(seed_url=seed_url))

        # Logging
        self.logger = structlog.get_logger(__name__)

    def _log(self, level: str, event: str, **fields):
        getattr(self.logger, level)(event, **fields)
        self.report.log(level, event, **fields)

    async def scan(self) -> DiscoveryReport:
        """
        Crawl from the seed until the frontier empties or the budget is spent.

        Returns:
            DiscoveryReport for this crawl
        """
        self.logger.info(
            "crawl_started",
            seed=self.seed_url,
            max_depth=self.max_depth,
            max_pages=self.max_pages,
            same_origin=self.same_origin,
        )

        self.frontier = [(self.seed_url, 0)]
        self.queued.add(self.seed_url)
        workers = asyncio.Semaphore(self.concurrency)
        timeout = aiohttp.ClientTimeout(total=self.timeout_ms / 1000)

        async with aiohttp.ClientSession(headers=DEFAULT_HEADERS, timeout=timeout) as session:
            while self.frontier:
                batch = self.frontier[:self.batch_size]
                del self.frontier[:self.batch_size]
                await asyncio.gather(*(
                    self._run_job(session, workers, url, depth) for url, depth in batch
                ))

        report = self._build_report()

        self.logger.info(
            "crawl_completed",
            seed=self.seed_url,
            pages=self.pages_fetched,
            endpoints=len(report.endpoints),
            images=len(report.images),
            arrays=len(report.arrays),
        )
        return report

    async def _run_job(self, session: aiohttp.ClientSession, workers: asyncio.Semaphore, url: str, depth: int):
        async with workers:
            await self._handle(session, url, depth)

    async def _handle(self, session: aiohttp.ClientSession, url: str, depth: int):
        """
        Fetch and extract one page, then enqueue its children.

        Args:
            session: Shared HTTP session
            url: Page URL
            depth: Hops from the seed
        """
        # Check-and-insert with no await in between
        if url in self.visited or len(self.visited) >= self.max_pages:
            return
        self.visited.add(url)

        self._log("info", "fetching", url=url, depth=depth)
        try:
            result = await self._fetch(session, url)
        except Exception as e:
            self._log("error", "fetch_failed", url=url, error=str(e) or type(e).__name__)
            return

        self.pages_fetched += 1
        self.context.scan_text_urls(result.text)

        kind = classify_content(result.content_type, result.text)
        try:
            links = EXTRACTORS[kind](url, result.text, self.context) if kind else []
        except Exception as e:
            self._log("error", "extract_failed", url=url, kind=kind, error=str(e) or type(e).__name__)
            links = []
        self.logger.debug(
            "page_extracted",
            url=url,
            status=result.status,
            kind=kind,
            links=len(links),
        )

        if depth < self.max_depth:
            self._enqueue(links, depth + 1)

    def _enqueue(self, links: List[str], depth: int):
        for link in links:
            if len(self.visited) + len(self.frontier) >= self.max_pages:
                break
            if link in self.visited or link in self.queued:
                continue
            if self.same_origin and not same_origin(self.seed_url, link):
                continue
            self.queued.add(link)
            self.frontier.append((link, depth))

    async def _fetch(self, session: aiohttp.ClientSession, url: str) -> FetchResult:
        async with session.get(url, allow_redirects=True) as response:
            text = await response.text(errors="replace")
            return FetchResult(
                url=url,
                status=response.status,
                content_type=response.headers.get("Content-Type", ""),
                text=text,
            )

    def _build_report(self) -> DiscoveryReport:
        report = self.report
        ctx = self.context

        report.endpoints = [
            DiscoveredEndpoint(url=url, host=hostname_of(url)) for url in ctx.endpoints
        ]
        report.images = list(ctx.images)
        report.provenance = {image: list(sources) for image, sources in ctx.provenance.items()}
        report.self_describing = list(ctx.self_describing)
        report.arrays = list(ctx.arrays)
        report.by_host = dict(Counter(e.host or "unknown" for e in report.endpoints))

        report.summary.pages_scanned = self.pages_fetched
        report.summary.endpoints_found = len(report.endpoints)
        report.summary.images_found = len(report.images)
        return report

    def get_stats(self) -> dict:
        return {
            "seed": self.seed_url,
            "visited": len(self.visited),
            "pages_fetched": self.pages_fetched,
            "frontier": len(self.frontier),
            "max_depth": self.max_depth,
            "max_pages": self.max_pages,
        }


async def scan_site(
    seed_url: str,
    max_depth: int = 1,
    same_origin: bool = True,
    max_pages: int = 20,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
) -> DiscoveryReport:
    """Crawl ``seed_url`` and return its DiscoveryReport"""
    crawler = SiteCrawler(
        seed_url,
        max_depth=max_depth,
        same_origin=same_origin,
        max_pages=max_pages,
        timeout_ms=timeout_ms,
    )
    return await crawler.scan()
