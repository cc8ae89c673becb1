"""
Crawler module - Static and browser-driven discovery passes.

This package contains the two discovery engines:
- SiteCrawler: Concurrent HTTP crawl with content-type dispatch
- BrowserCapture: Playwright network capture with a resilience ladder
- Extractors: HTML, JSON and XML content extraction
"""

from .http_crawler import SiteCrawler, scan_site
from .browser_capture import BrowserCapture, capture
from .extractors import EXTRACTORS, CrawlContext, classify_content
from .navigation import goto_resilient, is_dns_error, is_protocol_error


__all__ = [
    # Crawlers
    "SiteCrawler",
    "scan_site",
    "BrowserCapture",
    "capture",
    # Extraction
    "EXTRACTORS",
    "CrawlContext",
    "classify_content",
    # Navigation
    "goto_resilient",
    "is_dns_error",
    "is_protocol_error",
]
