"""
Exchange classifier - Decides whether an observed network exchange is API-like.

An exchange is API-like when any of these hold:
1. The response content type is JSON-like
2. The request was a programmatic fetch (xhr / fetch resource types)
3. The URL path contains an API-ish keyword
4. It looks like GraphQL (URL mentions graphql/gql, or a POST with a
   JSON/GraphQL request body)
"""

import json
import re
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urlparse


API_PATH_RE = re.compile(
    r"\b(api|graphql|gql|search|results|availability|gateway|v\d+)\b",
    re.IGNORECASE,
)
GRAPHQL_URL_RE = re.compile(r"graphql|gql", re.IGNORECASE)
GRAPHQL_BODY_TYPE_RE = re.compile(r"application/(json|graphql)", re.IGNORECASE)
GRAPHQL_TEXT_RE = re.compile(r"\bquery\s+|\bmutation\s+", re.IGNORECASE)

FETCH_RESOURCE_TYPES = ("xhr", "fetch")
GRAPHQL_QUERY_PREVIEW = 120


@dataclass(frozen=True)
class ExchangeClass:
    """Result of classifying one request/response pair"""
    api_candidate: bool
    is_json: bool
    is_graphql: bool
    is_xhr_fetch: bool
    is_api_like_path: bool
    content_type: str


def is_json_content_type(content_type: str) -> bool:
    return "json" in (content_type or "").lower()


def classify_exchange(
    url: str,
    method: str,
    resource_type: str,
    content_type: str = "",
    request_content_type: str = "",
) -> ExchangeClass:
    """
    Classify a network exchange.

    Args:
        url: Request URL
        method: HTTP method
        resource_type: Browser resource type (document, xhr, fetch, ...)
        content_type: Response content type
        request_content_type: Request body content type

    Returns:
        ExchangeClass with the individual signals and the verdict
    """
    content_type = (content_type or "").lower()
    try:
        path = urlparse(url).path
    except ValueError:
        path = ""

    is_json = is_json_content_type(content_type)
    is_api_like_path = API_PATH_RE.search(path) is not None
    is_xhr_fetch = resource_type in FETCH_RESOURCE_TYPES
    is_graphql = bool(GRAPHQL_URL_RE.search(url)) or (
        method.upper() == "POST"
        and GRAPHQL_BODY_TYPE_RE.search(request_content_type or "") is not None
    )

    return ExchangeClass(
        api_candidate=is_json or is_xhr_fetch or is_api_like_path or is_graphql,
        is_json=is_json,
        is_graphql=is_graphql,
        is_xhr_fetch=is_xhr_fetch,
        is_api_like_path=is_api_like_path,
        content_type=content_type,
    )


def peek_graphql(body: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Best-effort extraction of a GraphQL operation name and query preview.

    Handles JSON bodies (single operation or batched list) and raw
    ``query``/``mutation`` text. Never raises.

    Returns:
        Tuple of (operation name, first 120 characters of the query)
    """
    text = (body or "").strip()
    if not text:
        return None, None

    if text[0] in "[{":
        try:
            parsed = json.loads(text)
        except ValueError:
            return None, None
        first = parsed[0] if isinstance(parsed, list) and parsed else parsed
        if not isinstance(first, dict):
            return None, None
        op_name = first.get("operationName")
        query = first.get("query")
        return (
            op_name if isinstance(op_name, str) else None,
            query[:GRAPHQL_QUERY_PREVIEW] if isinstance(query, str) else None,
        )

    if GRAPHQL_TEXT_RE.search(text):
        return None, text[:GRAPHQL_QUERY_PREVIEW]

    return None, None
