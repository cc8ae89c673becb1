"""
Provider Adapters - Interface for site-specific interpretation of reports.

A discovery report is site-agnostic. Adapters turn it into something a
particular provider understands:
1. ``match`` decides whether the adapter handles a URL
2. ``discover_candidates`` picks and scores URLs worth fetching again
3. ``interpret`` reads a fetched payload

Candidates may only be drawn from the report's endpoints, the browser API
candidates and the browser deep links.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

import structlog

from ..report import ApiCandidate, DiscoveryReport


class CandidateSource(Enum):
    """Report section a candidate was drawn from"""
    ENDPOINT = "endpoint"
    API_CANDIDATE = "api_candidate"
    DEEP_LINK = "deep_link"


@dataclass
class Candidate:
    """A URL an adapter wants to fetch, with its score"""
    url: str
    method: str = "GET"
    score: float = 0.0
    source: CandidateSource = CandidateSource.ENDPOINT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "method": self.method,
            "score": self.score,
            "source": self.source.value,
        }


@dataclass
class Interpretation:
    """What an adapter understood from one payload"""
    adapter: str
    entity_summary: Optional[Dict[str, Any]] = None
    arrays: List[Dict[str, Any]] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "adapter": self.adapter,
            "entity_summary": self.entity_summary,
            "arrays": list(self.arrays),
            "details": dict(self.details),
        }


@dataclass(frozen=True)
class ReportLink:
    """One URL found in a report, with the evidence behind it"""
    url: str
    method: str
    source: CandidateSource
    evidence: Optional[ApiCandidate] = None


def report_links(report: DiscoveryReport) -> Iterator[ReportLink]:
    """Yield every URL an adapter is allowed to draw candidates from"""
    for endpoint in report.endpoints:
        if endpoint.url:
            yield ReportLink(endpoint.url, "GET", CandidateSource.ENDPOINT)

    if report.browser is None:
        return

    for candidate in report.browser.api_candidates:
        if candidate.url:
            yield ReportLink(candidate.url, candidate.method or "GET", CandidateSource.API_CANDIDATE, candidate)

    for link in report.browser.deep_links:
        if link.href:
            yield ReportLink(link.href, "GET", CandidateSource.DEEP_LINK)


class ProviderAdapter(ABC):
    """
    Abstract base class for provider adapters.

    Example:
        >>> class ShopAdapter(ProviderAdapter):
        ...     name = "shop"
        ...     def match(self, url):
        ...         return "shop.example" in url
        ...     ...

        >>> AdapterRegistry.register(ShopAdapter())
        >>> adapter = AdapterRegistry.for_url("https://shop.example/api/items")
    """

    name: str = "unknown"

    def __init__(self):
        self.logger = structlog.get_logger(__name__).bind(adapter=self.name)

    @abstractmethod
    def match(self, url: str) -> bool:
        """Return True if this adapter handles ``url``"""

    @abstractmethod
    def discover_candidates(self, report: DiscoveryReport) -> List[Candidate]:
        """
        Pick the URLs worth fetching from a report.

        Args:
            report: A discovery report

        Returns:
            Candidates sorted by descending score
        """

    @abstractmethod
    def interpret(self, payload: Any) -> Interpretation:
        """
        Read one fetched payload.

        Args:
            payload: Parsed JSON value (or its text)

        Returns:
            Interpretation of the payload
        """

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r})"


class AdapterRegistry:
    """
    Process-wide list of adapters.

    ``for_url`` returns the first registered adapter matching the URL, or
    the fallback adapter when none does.
    """

    _adapters: List[ProviderAdapter] = []
    _fallback: Optional[ProviderAdapter] = None

    @classmethod
    def register(cls, adapter: ProviderAdapter) -> ProviderAdapter:
        if any(existing.name == adapter.name for existing in cls._adapters):
            raise ValueError(f"adapter already registered: {adapter.name}")
        cls._adapters.append(adapter)
        return adapter

    @classmethod
    def unregister(cls, name: str):
        cls._adapters = [adapter for adapter in cls._adapters if adapter.name != name]

    @classmethod
    def set_fallback(cls, adapter: Optional[ProviderAdapter]):
        cls._fallback = adapter

    @classmethod
    def adapters(cls) -> List[ProviderAdapter]:
        return list(cls._adapters)

    @classmethod
    def for_url(cls, url: str) -> Optional[ProviderAdapter]:
        for adapter in cls._adapters:
            try:
                if adapter.match(url):
                    return adapter
            except Exception as e:
                structlog.get_logger(__name__).warning(
                    "adapter_match_failed", adapter=adapter.name, url=url, error=str(e)
                )
        return cls._fallback
