"""
Content Extractors - Pull links, images, endpoints and JSON structure out of
fetched pages.

Three extractors, selected by content type:
- HTML: links, images (src + srcset), JSON-LD blocks, bare URLs in text
- JSON: array summaries, URL-valued strings, self-describing envelopes
- XML: URL-valued element text and attributes

Extractors write into a CrawlContext owned by one crawl run and never raise:
a page that cannot be parsed simply contributes nothing.
"""

import json
import re
import xml.etree.ElementTree as ET
from typing import Dict, List, Optional
from urllib.parse import urldefrag, urljoin, urlparse

import structlog
from bs4 import BeautifulSoup

from ..analysis.detectors import (
    ABSOLUTE_URL_RE,
    detect_self_describing,
    is_image_url,
    json_string_urls,
)
from ..analysis.summarizer import summarize_arrays
from ..report import ArraySummary, SelfDescribingRecord


URL_RE = re.compile(
    r"https?://[\w.-]+(?::[0-9]+)?(?:/[\w\-._~!$&'()*+,;=:@%/?#]*)?",
    re.IGNORECASE,
)
XML_SNIFF_RE = re.compile(r"^\s*(<\?xml|<feed|<entry|<rss)", re.IGNORECASE)

logger = structlog.get_logger(__name__)


class CrawlContext:
    """
    Mutable accumulator for one crawl run.

    Ordered dicts are used as ordered sets so that output order follows
    discovery order.
    """

    def __init__(self):
        self.endpoints: Dict[str, None] = {}
        self.images: Dict[str, None] = {}
        self.provenance: Dict[str, Dict[str, None]] = {}
        self.self_describing: List[SelfDescribingRecord] = []
        self.arrays: List[ArraySummary] = []

    def add_endpoint(self, url: str):
        self.endpoints.setdefault(url, None)

    def add_image(self, url: str, source: str):
        self.images.setdefault(url, None)
        self.provenance.setdefault(url, {}).setdefault(source, None)

    def add_self_describing(self, page_url: str, value) -> bool:
        hit = detect_self_describing(value)
        if hit is None:
            return False
        self.self_describing.append(
            SelfDescribingRecord(page_url=page_url, kind=hit["kind"], meta=hit["meta"])
        )
        return True

    def scan_text_urls(self, text: str):
        """Record bare URLs found anywhere in ``text`` as weak endpoint signals"""
        for match in URL_RE.finditer(text or ""):
            self.add_endpoint(match.group(0))


def absolute_url(base: str, href: Optional[str]) -> Optional[str]:
    """
    Resolve ``href`` against ``base``.

    Returns:
        Absolute http(s) URL without fragment, or None
    """
    if not href:
        return None
    try:
        resolved, _fragment = urldefrag(urljoin(base, href.strip()))
        scheme = urlparse(resolved).scheme
    except ValueError:
        return None
    if scheme not in ("http", "https"):
        return None
    return resolved


DEFAULT_PORTS = {"http": 80, "https": 443}


def origin_of(url: str) -> Optional[str]:
    """Return ``scheme://host:port`` for ``url`` (default ports made explicit)"""
    try:
        parsed = urlparse(url)
        port = parsed.port
    except ValueError:
        return None
    if not parsed.scheme or not parsed.hostname:
        return None
    scheme = parsed.scheme.lower()
    return f"{scheme}://{parsed.hostname}:{port or DEFAULT_PORTS.get(scheme, 0)}"


def same_origin(first: str, second: str) -> bool:
    origin = origin_of(first)
    return origin is not None and origin == origin_of(second)


def classify_content(content_type: str, text: str) -> Optional[str]:
    """
    Decide which extractor handles a response.

    The declared content type wins; otherwise the body is sniffed.

    Returns:
        "json", "html", "xml" or None
    """
    declared = (content_type or "").lower()
    if "json" in declared:
        return "json"
    if "html" in declared:
        return "html"
    if "xml" in declared or "rss" in declared or "atom" in declared:
        return "xml"

    head = (text or "").lstrip()[:1]
    if head in ("{", "["):
        return "json"
    if "<html" in (text or "").lower():
        return "html"
    if XML_SNIFF_RE.match(text or ""):
        return "xml"
    return None


def _srcset_urls(srcset: str) -> List[str]:
    urls = []
    for candidate in srcset.split(","):
        parts = candidate.strip().split()
        if parts:
            urls.append(parts[0])
    return urls


def _ld_images(node) -> List[str]:
    image = node.get("image") if isinstance(node, dict) else None
    items = image if isinstance(image, list) else [image]
    urls = []
    for item in items:
        if isinstance(item, str):
            urls.append(item)
        elif isinstance(item, dict) and isinstance(item.get("url"), str):
            urls.append(item["url"])
    return urls


def extract_html(page_url: str, html: str, ctx: CrawlContext) -> List[str]:
    """
    Extract from an HTML page.

    Args:
        page_url: URL the page was fetched from (base for relative URLs)
        html: Page source
        ctx: Run accumulator

    Returns:
        Absolute links found on the page, in document order, unique
    """
    links: Dict[str, None] = {}
    try:
        soup = BeautifulSoup(html, "html.parser")

        for anchor in soup.find_all("a", href=True):
            url = absolute_url(page_url, anchor.get("href"))
            if url:
                links.setdefault(url, None)

        for img in soup.find_all("img", src=True):
            url = absolute_url(page_url, img.get("src"))
            if url:
                ctx.add_image(url, f"html @ {page_url}")

        for tag in soup.find_all(["img", "source"], srcset=True):
            for raw in _srcset_urls(tag.get("srcset") or ""):
                url = absolute_url(page_url, raw)
                if url:
                    ctx.add_image(url, f"html/srcset @ {page_url}")

        for script in soup.find_all("script", type="application/ld+json"):
            try:
                parsed = json.loads(script.string or script.get_text() or "")
            except ValueError:
                logger.debug("jsonld_parse_failed", url=page_url)
                continue
            nodes = parsed if isinstance(parsed, list) else [parsed]
            for node in nodes:
                ctx.add_self_describing(page_url, node)
                for raw in _ld_images(node):
                    url = absolute_url(page_url, raw)
                    if url:
                        ctx.add_image(url, f"jsonld @ {page_url}")

        ctx.scan_text_urls(soup.get_text(" "))

    except Exception as e:
        logger.warning("html_extraction_failed", url=page_url, error=str(e))

    return list(links)


def extract_json(page_url: str, text: str, ctx: CrawlContext) -> List[str]:
    """
    Extract from a JSON document.

    Every array in the document becomes an ArraySummary (empty ones
    included); URL-valued strings become endpoints, image URLs also images.

    Returns:
        Always an empty list (JSON documents are not followed)
    """
    try:
        data = json.loads(text)
    except (ValueError, RecursionError) as e:
        logger.debug("json_parse_failed", url=page_url, error=str(e))
        return []

    try:
        ctx.add_self_describing(page_url, data)

        for summary in summarize_arrays(data, min_array_length=0):
            summary.source_url = page_url
            ctx.arrays.append(summary)

        for url, path in json_string_urls(data):
            ctx.add_endpoint(url)
            if is_image_url(url):
                ctx.add_image(url, f"json@{page_url} {path}")

    except Exception as e:
        logger.warning("json_extraction_failed", url=page_url, error=str(e))

    return []


def extract_xml(page_url: str, text: str, ctx: CrawlContext) -> List[str]:
    """
    Extract from an XML document (sitemaps, RSS, Atom, ...).

    Element text and attribute values holding absolute URLs are recorded.
    XML has no first-class arrays, so nothing is summarized.
    """
    try:
        root = ET.fromstring(text)
    except (ET.ParseError, ValueError) as e:
        logger.debug("xml_parse_failed", url=page_url, error=str(e))
        return []

    try:
        for element in root.iter():
            tag = element.tag.split("}")[-1] if isinstance(element.tag, str) else ""
            values = [element.text] + list(element.attrib.values())
            for value in values:
                value = (value or "").strip()
                if not ABSOLUTE_URL_RE.match(value):
                    continue
                ctx.add_endpoint(value)
                if is_image_url(value):
                    ctx.add_image(value, f"xml@{page_url} {tag}")

    except Exception as e:
        logger.warning("xml_extraction_failed", url=page_url, error=str(e))

    return []


EXTRACTORS = {
    "html": extract_html,
    "json": extract_json,
    "xml": extract_xml,
}
