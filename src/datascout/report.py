"""
Discovery Report - Shared data model of the discovery pipeline.

Both the HTTP crawler and the browser capture produce these records, and the
merge engine folds them together. Every record serializes to JSON-safe dicts
through ``to_dict()`` and can be rebuilt with ``from_dict()``.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set
from urllib.parse import urlparse


def hostname_of(url: str) -> Optional[str]:
    """Return the hostname of ``url`` or None when it cannot be parsed."""
    try:
        return urlparse(url).hostname
    except ValueError:
        return None


@dataclass
class FieldStat:
    """Profile of one (flattened) field across the scanned array elements"""
    present: int = 0
    nullish: int = 0
    types: Dict[str, int] = field(default_factory=dict)
    numeric: Optional[Dict[str, float]] = None
    examples: List[Any] = field(default_factory=list)
    unique: Optional[int] = None
    unique_capped: bool = False
    has_date_like: bool = False

    _unique_values: Set[str] = field(default_factory=set, repr=False, compare=False)

    def observe_unique(self, value: str, ceiling: int):
        """
        Count a distinct string/number value.

        Once ``ceiling`` distinct values are held, new values are no longer
        counted and ``unique`` becomes a lower bound.
        """
        if value in self._unique_values:
            return
        if len(self._unique_values) >= ceiling:
            self.unique_capped = True
            return
        self._unique_values.add(value)
        self.unique = len(self._unique_values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "present": self.present,
            "nullish": self.nullish,
            "types": dict(self.types),
            "numeric": dict(self.numeric) if self.numeric is not None else None,
            "examples": list(self.examples),
            "unique": self.unique,
            "unique_capped": self.unique_capped,
            "has_date_like": self.has_date_like,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldStat":
        return cls(
            present=data.get("present", 0),
            nullish=data.get("nullish", 0),
            types=dict(data.get("types") or {}),
            numeric=data.get("numeric"),
            examples=list(data.get("examples") or []),
            unique=data.get("unique"),
            unique_capped=data.get("unique_capped", False),
            has_date_like=data.get("has_date_like", False),
        )


@dataclass
class ArraySummary:
    """Describes one JSON array found inside a payload"""
    path: str
    length: int
    scanned: int
    columns: List[str] = field(default_factory=list)
    field_stats: Dict[str, FieldStat] = field(default_factory=dict)
    sample: List[Any] = field(default_factory=list)
    unique_keys: List[str] = field(default_factory=list)
    source_url: Optional[str] = None
    method: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "length": self.length,
            "scanned": self.scanned,
            "columns": list(self.columns),
            "field_stats": {name: stat.to_dict() for name, stat in self.field_stats.items()},
            "sample": list(self.sample),
            "unique_keys": list(self.unique_keys),
            "source_url": self.source_url,
            "method": self.method,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArraySummary":
        return cls(
            path=data["path"],
            length=data.get("length", 0),
            scanned=data.get("scanned", 0),
            columns=list(data.get("columns") or []),
            field_stats={
                name: FieldStat.from_dict(stat)
                for name, stat in (data.get("field_stats") or {}).items()
            },
            sample=list(data.get("sample") or []),
            unique_keys=list(data.get("unique_keys") or []),
            source_url=data.get("source_url"),
            method=data.get("method"),
        )


@dataclass(frozen=True)
class ApiCandidate:
    """A network exchange classified as API-like. Immutable once created."""
    url: str
    method: str
    resource_type: str
    status: Optional[int] = None
    content_type: Optional[str] = None
    frame_url: Optional[str] = None
    is_json: bool = False
    is_graphql: bool = False
    is_xhr_fetch: bool = False
    is_api_like_path: bool = False
    op_name: Optional[str] = None
    graphql_query: Optional[str] = None
    entity_summary: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "method": self.method,
            "resource_type": self.resource_type,
            "status": self.status,
            "content_type": self.content_type,
            "frame_url": self.frame_url,
            "is_json": self.is_json,
            "is_graphql": self.is_graphql,
            "is_xhr_fetch": self.is_xhr_fetch,
            "is_api_like_path": self.is_api_like_path,
            "op_name": self.op_name,
            "graphql_query": self.graphql_query,
            "entity_summary": self.entity_summary,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ApiCandidate":
        return cls(
            url=data["url"],
            method=data.get("method", "GET"),
            resource_type=data.get("resource_type", ""),
            status=data.get("status"),
            content_type=data.get("content_type"),
            frame_url=data.get("frame_url"),
            is_json=data.get("is_json", False),
            is_graphql=data.get("is_graphql", False),
            is_xhr_fetch=data.get("is_xhr_fetch", False),
            is_api_like_path=data.get("is_api_like_path", False),
            op_name=data.get("op_name"),
            graphql_query=data.get("graphql_query"),
            entity_summary=data.get("entity_summary"),
        )


@dataclass
class DeepLink:
    """An absolute link collected from the rendered DOM"""
    href: str
    text: str = ""
    parent: str = ""
    parent_title: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "href": self.href,
            "text": self.text,
            "parent": self.parent,
            "parent_title": self.parent_title,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeepLink":
        return cls(
            href=data["href"],
            text=data.get("text", ""),
            parent=data.get("parent", ""),
            parent_title=data.get("parent_title", ""),
        )


@dataclass
class DiscoveredEndpoint:
    url: str
    host: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"url": self.url, "host": self.host}


@dataclass
class SelfDescribingRecord:
    page_url: str
    kind: str
    meta: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return {"page_url": self.page_url, "kind": self.kind, "meta": self.meta}


@dataclass
class NavEdge:
    """One step of a navigation history between discovery passes"""
    from_url: str
    to_url: str
    page_title: str = ""
    kind: str = "http"
    when: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_url": self.from_url,
            "to_url": self.to_url,
            "page_title": self.page_title,
            "kind": self.kind,
            "when": self.when,
        }


@dataclass
class CaptureResult:
    """
    Output of one browser capture run (the ``browser`` subtree of a report).

    ``diagnostics`` records the navigation stages that were tried, including
    fallbacks that ended up succeeding.
    """
    seed_url: str = ""
    api_candidates: List[ApiCandidate] = field(default_factory=list)
    array_summaries: List[ArraySummary] = field(default_factory=list)
    by_host: Dict[str, int] = field(default_factory=dict)
    deep_links: List[DeepLink] = field(default_factory=list)
    page_title: str = ""
    dom_urls: List[str] = field(default_factory=list)
    total_requests: int = 0
    dropped_events: int = 0
    diagnostics: List[Dict[str, Any]] = field(default_factory=list)

    def has_browser_data(self) -> bool:
        return bool(self.api_candidates or self.array_summaries or self.deep_links
                    or self.by_host or self.page_title or self.total_requests)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seed_url": self.seed_url,
            "api_candidates": [c.to_dict() for c in self.api_candidates],
            "array_summaries": [a.to_dict() for a in self.array_summaries],
            "by_host": dict(self.by_host),
            "deep_links": [link.to_dict() for link in self.deep_links],
            "page_title": self.page_title,
            "dom_urls": list(self.dom_urls),
            "total_requests": self.total_requests,
            "dropped_events": self.dropped_events,
            "diagnostics": list(self.diagnostics),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CaptureResult":
        return cls(
            seed_url=data.get("seed_url", ""),
            api_candidates=[ApiCandidate.from_dict(c) for c in data.get("api_candidates") or []],
            array_summaries=[ArraySummary.from_dict(a) for a in data.get("array_summaries") or []],
            by_host=dict(data.get("by_host") or {}),
            deep_links=[DeepLink.from_dict(link) for link in data.get("deep_links") or []],
            page_title=data.get("page_title", ""),
            dom_urls=list(data.get("dom_urls") or []),
            total_requests=data.get("total_requests", 0),
            dropped_events=data.get("dropped_events", 0),
            diagnostics=list(data.get("diagnostics") or []),
        )


@dataclass
class ReportSummary:
    seed_url: str = ""
    pages_scanned: int = 0
    endpoints_found: int = 0
    images_found: int = 0
    api_candidates: int = 0
    total_requests: int = 0

    COUNTERS = (
        "pages_scanned",
        "endpoints_found",
        "images_found",
        "api_candidates",
        "total_requests",
    )

    def to_dict(self) -> Dict[str, Any]:
        data = {"seed_url": self.seed_url}
        for name in self.COUNTERS:
            data[name] = getattr(self, name)
        return data


@dataclass
class DiscoveryReport:
    """
    Root aggregate produced by a discovery pass.

    Example:
        >>> report = DiscoveryReport(summary=ReportSummary(seed_url="https://example.com"))
        >>> report.log("info", "fetching", url="https://example.com")
        >>> report.to_dict()["summary"]["seed_url"]
        'https://example.com'
    """
    summary: ReportSummary = field(default_factory=ReportSummary)
    endpoints: List[DiscoveredEndpoint] = field(default_factory=list)
    images: List[str] = field(default_factory=list)
    provenance: Dict[str, List[str]] = field(default_factory=dict)
    self_describing: List[SelfDescribingRecord] = field(default_factory=list)
    arrays: List[ArraySummary] = field(default_factory=list)
    by_host: Dict[str, int] = field(default_factory=dict)
    logs: List[Dict[str, Any]] = field(default_factory=list)
    browser: Optional[CaptureResult] = None
    nav_trail: List[NavEdge] = field(default_factory=list)

    @property
    def seed_url(self) -> str:
        return self.summary.seed_url

    def log(self, level: str, event: str, **fields):
        """Append a diagnostic event to the report"""
        entry = {"level": level, "event": event}
        entry.update(fields)
        self.logs.append(entry)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary.to_dict(),
            "endpoints": [e.to_dict() for e in self.endpoints],
            "images": list(self.images),
            "provenance": {image: list(sources) for image, sources in self.provenance.items()},
            "self_describing": [s.to_dict() for s in self.self_describing],
            "arrays": [a.to_dict() for a in self.arrays],
            "by_host": dict(self.by_host),
            "logs": list(self.logs),
            "browser": self.browser.to_dict() if self.browser is not None else None,
            "nav_trail": [edge.to_dict() for edge in self.nav_trail],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DiscoveryReport":
        summary_data = data.get("summary") or {}
        summary = ReportSummary(seed_url=summary_data.get("seed_url", ""))
        for name in ReportSummary.COUNTERS:
            setattr(summary, name, summary_data.get(name, 0))

        browser = data.get("browser")
        return cls(
            summary=summary,
            endpoints=[
                DiscoveredEndpoint(url=e["url"], host=e.get("host"))
                for e in data.get("endpoints") or []
            ],
            images=list(data.get("images") or []),
            provenance={
                image: list(sources)
                for image, sources in (data.get("provenance") or {}).items()
            },
            self_describing=[
                SelfDescribingRecord(page_url=s["page_url"], kind=s["kind"], meta=s.get("meta"))
                for s in data.get("self_describing") or []
            ],
            arrays=[ArraySummary.from_dict(a) for a in data.get("arrays") or []],
            by_host=dict(data.get("by_host") or {}),
            logs=list(data.get("logs") or []),
            browser=CaptureResult.from_dict(browser) if browser else None,
            nav_trail=[
                NavEdge(
                    from_url=edge.get("from_url", ""),
                    to_url=edge.get("to_url", ""),
                    page_title=edge.get("page_title", ""),
                    kind=edge.get("kind", "http"),
                    when=edge.get("when", ""),
                )
                for edge in data.get("nav_trail") or []
            ],
        )
