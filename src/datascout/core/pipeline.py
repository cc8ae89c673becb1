"""
Discovery Pipeline - Runs the crawl and capture passes and merges them.

Usage:
    request = DiscoveryRequest.build(seed_url="https://example.com", mode="both")
    pipeline = DiscoveryPipeline(request)
    report = await pipeline.run()

Modes:
- http: plain HTTP crawl only
- browser: headless capture only
- both: crawl, then capture, merged into one report

``follow_links`` runs the same passes over deep links taken from an earlier
report and appends one navigation edge per link.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Literal, Optional, Sequence, Tuple, Union

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..crawler.browser_capture import BrowserCapture
from ..crawler.http_crawler import SiteCrawler
from ..errors import ConfigError
from ..report import CaptureResult, DeepLink, DiscoveryReport, NavEdge, ReportSummary
from .merge import merge_reports


# Captures get at least this much navigation budget
MIN_CAPTURE_BUDGET_MS = 25000

FOLLOW_LINK_CAP = 25
FOLLOW_MAX_DEPTH = 0
FOLLOW_MAX_PAGES = 6


class DiscoveryRequest(BaseModel):
    """Validated input of a discovery run"""

    seed_url: str = Field(..., min_length=1, description="URL the run starts from")
    mode: Literal["http", "browser", "both"] = Field("http", description="Which passes to run")
    max_depth: int = Field(1, ge=0, description="Link hops followed by the crawl")
    same_origin: bool = Field(True, description="Stay on the seed's origin")
    max_pages: int = Field(20, ge=1, description="Crawl page budget")
    timeout_ms: int = Field(15000, ge=0, description="Per-request timeout in milliseconds")

    # Capture options
    auto_scroll: bool = True
    nav_allow_patterns: List[str] = Field(default_factory=list)
    storage_seed: Optional[Dict[str, Any]] = None
    headless: bool = True
    fast_mode: bool = False

    @field_validator("seed_url")
    @classmethod
    def validate_seed_url(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("seed_url must not be blank")
        return v

    @classmethod
    def build(cls, **values) -> "DiscoveryRequest":
        """
        Validate ``values`` into a request.

        Raises:
            ConfigError: If any value is missing or invalid
        """
        try:
            return cls(**values)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
                for error in e.errors()
            )
            raise ConfigError(f"invalid discovery request: {problems}") from e


LinkTarget = Union[str, DeepLink, Dict[str, Any]]


class DiscoveryPipeline:
    """
    Orchestrates the discovery passes for one request.

    Crawler and capture classes can be swapped through the constructor.

    Example:
        >>> pipeline = DiscoveryPipeline(DiscoveryRequest.build(seed_url="https://example.com"))
        >>> report = await pipeline.run()
        >>> print(report.summary.endpoints_found)
    """

    def __init__(
        self,
        request: DiscoveryRequest,
        crawler_factory: Callable[..., SiteCrawler] = SiteCrawler,
        capture_factory: Callable[..., BrowserCapture] = BrowserCapture,
    ):
        self.request = request
        self.crawler_factory = crawler_factory
        self.capture_factory = capture_factory

        # Logging
        self.logger = structlog.get_logger(__name__)

    @property
    def mode(self) -> str:
        return self.request.mode

    async def run(self) -> DiscoveryReport:
        """
        Run the passes selected by the request mode.

        Returns:
            Merged DiscoveryReport; ``browser`` is set only when a capture ran

        Raises:
            DnsResolutionError: If the seed host does not resolve
            NavigationExhaustedError: If the capture could not load the seed
        """
        seed = self.request.seed_url
        self.logger.info("discovery_started", seed=seed, mode=self.mode)

        try:
            report = await self._discover(seed)
        except Exception as e:
            self.logger.error("discovery_failed", seed=seed, mode=self.mode, error=str(e))
            raise

        self.logger.info(
            "discovery_completed",
            seed=seed,
            mode=self.mode,
            endpoints=len(report.endpoints),
            images=len(report.images),
            api_candidates=report.summary.api_candidates,
        )
        return report

    async def follow_links(self, base: DiscoveryReport, links: Sequence[LinkTarget]) -> DiscoveryReport:
        """
        Scan deep links one after another and merge them into ``base``.

        At most 25 links are followed. Each contributes a per-link report and
        one navigation edge. A capture failure only costs that link its
        browser part.

        Args:
            base: Report the links came from
            links: URLs, DeepLink records or dicts with ``href`` (and optional ``from``)

        Returns:
            New merged report
        """
        merged = base
        followed = 0

        for raw in list(links)[:FOLLOW_LINK_CAP]:
            href, origin = _link_target(raw, base.seed_url)
            if not href:
                continue

            self.logger.info("following_link", url=href, origin=origin, mode=self.mode)
            per_link, page_title = await self._discover_link(href)
            per_link.nav_trail.append(NavEdge(
                from_url=origin,
                to_url=href,
                page_title=page_title,
                kind=self.mode,
                when=datetime.now(timezone.utc).isoformat(),
            ))
            merged = merge_reports(merged, per_link)
            followed += 1

        self.logger.info("links_followed", count=followed, nav_trail=len(merged.nav_trail))
        return merged

    async def _discover(self, url: str) -> DiscoveryReport:
        report = DiscoveryReport(summary=ReportSummary(seed_url=url))
        if self.mode in ("http", "both"):
            report = await self._scan_http(url)
        if self.mode in ("browser", "both"):
            capture = await self._capture(url)
            report = self._fold_capture(report, capture)
        return report

    async def _discover_link(self, href: str) -> Tuple[DiscoveryReport, str]:
        if self.mode == "browser":
            report = DiscoveryReport(summary=ReportSummary(seed_url=href))
        else:
            report = await self._scan_http(href)

        if self.mode == "http":
            return report, ""

        try:
            capture = await self._capture(href)
        except Exception as e:
            self.logger.warning("follow_capture_failed", url=href, error=str(e))
            report.log("warning", "follow_capture_failed", url=href, error=str(e))
            return report, ""

        return self._fold_capture(report, capture), capture.page_title

    async def _scan_http(self, url: str) -> DiscoveryReport:
        crawler = self.crawler_factory(
            url,
            max_depth=self.request.max_depth,
            same_origin=self.request.same_origin,
            max_pages=self.request.max_pages,
            timeout_ms=self.request.timeout_ms,
        )
        return await crawler.scan()

    async def _capture(self, url: str) -> CaptureResult:
        browser_capture = self.capture_factory(
            url,
            headless=self.request.headless,
            timeout_ms=max(self.request.timeout_ms, MIN_CAPTURE_BUDGET_MS),
            same_origin=self.request.same_origin,
            auto_scroll=self.request.auto_scroll,
            storage_seed=self.request.storage_seed,
            nav_allow_patterns=self.request.nav_allow_patterns,
            fast_mode=self.request.fast_mode,
        )
        return await browser_capture.capture()

    def _fold_capture(self, report: DiscoveryReport, capture: CaptureResult) -> DiscoveryReport:
        merged = merge_reports(report, capture)
        if merged.browser is None:
            merged.browser = CaptureResult.from_dict(capture.to_dict())
        for attempt in capture.diagnostics:
            level = "info" if attempt.get("ok") else "warning"
            merged.log(level, "navigation_stage", url=capture.seed_url, **attempt)
        if capture.dropped_events:
            merged.log("warning", "capture_events_dropped", url=capture.seed_url, dropped=capture.dropped_events)
        return merged


def _link_target(raw: LinkTarget, default_origin: str) -> Tuple[Optional[str], str]:
    """Return ``(href, from_url)`` for one link"""
    if isinstance(raw, str):
        return raw.strip() or None, default_origin
    if isinstance(raw, DeepLink):
        return raw.href or None, raw.parent or default_origin
    if isinstance(raw, dict):
        return raw.get("href") or None, raw.get("from") or raw.get("parent") or default_origin
    return None, default_origin
