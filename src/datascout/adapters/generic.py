"""
Generic Adapter - Provider-agnostic fallback adapter.

Scores every URL in a report by how likely it is to return structured
data, and interprets any JSON payload with the universal summarizer.
"""

import json
from typing import Any, Dict, List, Tuple
from urllib.parse import parse_qs, urlparse

from ..analysis.classify import API_PATH_RE
from ..analysis.summarizer import summarize_arrays, summarize_entity
from ..report import DiscoveryReport
from .base import Candidate, CandidateSource, Interpretation, ProviderAdapter, ReportLink, report_links


METHOD_SCORES = {
    "POST": 20,
    "PUT": 15,
    "PATCH": 15,
    "DELETE": 10,
    "GET": 5,
}

# Captured traffic is stronger evidence than a URL seen in a page
SOURCE_SCORES = {
    CandidateSource.API_CANDIDATE: 15,
    CandidateSource.ENDPOINT: 10,
    CandidateSource.DEEP_LINK: 5,
}


class GenericAdapter(ProviderAdapter):
    """
    Fallback adapter matching every URL.

    Example:
        >>> adapter = GenericAdapter()
        >>> top = adapter.discover_candidates(report)[:10]
        >>> adapter.interpret({"data": [{"id": 1}]}).entity_summary["count"]
        1
    """

    name = "generic"

    def match(self, url: str) -> bool:
        return True

    def discover_candidates(self, report: DiscoveryReport) -> List[Candidate]:
        best: Dict[Tuple[str, str], Candidate] = {}
        for link in report_links(report):
            candidate = Candidate(
                url=link.url,
                method=link.method,
                score=self.score(link),
                source=link.source,
            )
            key = (candidate.method, candidate.url)
            if key not in best or candidate.score > best[key].score:
                best[key] = candidate

        candidates = sorted(best.values(), key=lambda c: c.score, reverse=True)
        self.logger.debug("candidates_discovered", count=len(candidates))
        return candidates

    def score(self, link: ReportLink) -> float:
        """
        Score a report link.

        Based on:
        1. API-ish path keywords
        2. JSON / XHR / GraphQL evidence from the capture
        3. Query parameter count
        4. HTTP method and report section
        """
        score = 0.0
        try:
            parsed = urlparse(link.url)
        except ValueError:
            return score

        if API_PATH_RE.search(parsed.path):
            score += 10

        evidence = link.evidence
        if evidence is not None:
            if evidence.is_json:
                score += 10
            if evidence.is_graphql:
                score += 10
            if evidence.is_xhr_fetch:
                score += 5

        score += len(parse_qs(parsed.query, keep_blank_values=True)) * 2
        score += METHOD_SCORES.get(link.method.upper(), 0)
        score += SOURCE_SCORES.get(link.source, 0)
        return score

    def interpret(self, payload: Any) -> Interpretation:
        if isinstance(payload, (str, bytes)):
            try:
                payload = json.loads(payload)
            except (ValueError, RecursionError) as e:
                self.logger.debug("payload_not_json", error=str(e))
                return Interpretation(adapter=self.name, details={"error": "payload is not JSON"})

        arrays = summarize_arrays(payload, min_array_length=1, max_sample_size=5)
        return Interpretation(
            adapter=self.name,
            entity_summary=summarize_entity(payload),
            arrays=[summary.to_dict() for summary in arrays],
        )
