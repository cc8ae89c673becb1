"""
Report Merge - Fold discovery passes into one report.

Every collection in a DiscoveryReport is keyed, so merging is a keyed union:
base records come first and an addition record replaces a base record with
the same key. Counters and per-host maps are summed, logs and the
navigation trail are appended.

Merging the same addition twice leaves every keyed collection unchanged;
counters keep growing since they describe work done, not distinct records.
"""

import copy
import json
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, TypeVar, Union

import structlog

from ..report import (
    ApiCandidate,
    ArraySummary,
    CaptureResult,
    DeepLink,
    DiscoveredEndpoint,
    DiscoveryReport,
    ReportSummary,
    SelfDescribingRecord,
)


T = TypeVar("T")

logger = structlog.get_logger(__name__)


def union_by(base_items: Iterable[T], added_items: Iterable[T], key: Callable[[T], Hashable]) -> List[T]:
    """
    Keyed union preserving first-seen order.

    Args:
        base_items: Existing records
        added_items: New records; they win on key collision
        key: Record -> dedup key

    Returns:
        New list with one record per key
    """
    merged: Dict[Hashable, T] = {}
    for item in base_items:
        merged[key(item)] = item
    for item in added_items:
        merged[key(item)] = item
    return list(merged.values())


def sum_by_host(base: Dict[str, int], added: Optional[Dict[str, int]]) -> Dict[str, int]:
    merged = dict(base or {})
    for host, count in (added or {}).items():
        merged[host] = merged.get(host, 0) + count
    return merged


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


# Dedup keys
def endpoint_key(endpoint: DiscoveredEndpoint) -> str:
    return endpoint.url


def self_describing_key(record: SelfDescribingRecord):
    return (record.page_url, record.kind, canonical_json(record.meta))


def array_key(summary: ArraySummary):
    return (summary.source_url or "", summary.path)


def api_candidate_key(candidate: ApiCandidate):
    return (candidate.method, candidate.url, candidate.status)


def deep_link_key(link: DeepLink) -> str:
    return link.href


def merge_provenance(base: Dict[str, List[str]], added: Dict[str, List[str]]) -> Dict[str, List[str]]:
    """Union the source lists of each image, keeping first-seen order"""
    merged = {image: list(sources) for image, sources in (base or {}).items()}
    for image, sources in (added or {}).items():
        current = merged.setdefault(image, [])
        for source in sources:
            if source not in current:
                current.append(source)
    return merged


def merge_capture(base: Optional[CaptureResult], added: CaptureResult) -> CaptureResult:
    """
    Merge two browser subtrees.

    ``seed_url`` and ``page_title`` keep the base value when it is set.
    """
    if base is None:
        return copy.deepcopy(added)

    return CaptureResult(
        seed_url=base.seed_url or added.seed_url,
        api_candidates=union_by(base.api_candidates, added.api_candidates, api_candidate_key),
        array_summaries=union_by(base.array_summaries, added.array_summaries, array_key),
        by_host=sum_by_host(base.by_host, added.by_host),
        deep_links=union_by(base.deep_links, added.deep_links, deep_link_key),
        page_title=base.page_title or added.page_title,
        dom_urls=union_by(base.dom_urls, added.dom_urls, lambda url: url),
        total_requests=base.total_requests + added.total_requests,
        dropped_events=base.dropped_events + added.dropped_events,
        diagnostics=list(base.diagnostics) + list(added.diagnostics),
    )


def merge_reports(base: DiscoveryReport, addition: Union[DiscoveryReport, CaptureResult]) -> DiscoveryReport:
    """
    Merge ``addition`` into ``base``.

    Neither input is modified.

    Args:
        base: Report accumulated so far
        addition: Another report, or a bare browser capture

    Returns:
        New merged DiscoveryReport
    """
    base = copy.deepcopy(base)
    addition = copy.deepcopy(addition)

    if isinstance(addition, CaptureResult):
        added_report = DiscoveryReport(
            summary=ReportSummary(
                seed_url=addition.seed_url,
                api_candidates=len(addition.api_candidates),
                total_requests=addition.total_requests,
            ),
            browser=addition,
        )
    else:
        added_report = addition

    summary = ReportSummary(seed_url=base.summary.seed_url or added_report.summary.seed_url)
    for name in ReportSummary.COUNTERS:
        setattr(summary, name, getattr(base.summary, name) + getattr(added_report.summary, name))

    merged = DiscoveryReport(
        summary=summary,
        endpoints=union_by(base.endpoints, added_report.endpoints, endpoint_key),
        images=union_by(base.images, added_report.images, lambda image: image),
        provenance=merge_provenance(base.provenance, added_report.provenance),
        self_describing=union_by(base.self_describing, added_report.self_describing, self_describing_key),
        arrays=union_by(base.arrays, added_report.arrays, array_key),
        by_host=sum_by_host(base.by_host, added_report.by_host),
        logs=list(base.logs) + list(added_report.logs),
        browser=base.browser,
        nav_trail=list(base.nav_trail) + list(added_report.nav_trail),
    )

    added_browser = added_report.browser
    if added_browser is not None and added_browser.has_browser_data():
        merged.browser = merge_capture(base.browser, added_browser)

    logger.debug(
        "reports_merged",
        seed=merged.seed_url,
        endpoints=len(merged.endpoints),
        images=len(merged.images),
        nav_trail=len(merged.nav_trail),
    )
    return merged
