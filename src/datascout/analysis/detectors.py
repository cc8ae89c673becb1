"""
Self-describing format detection and URL mining over JSON values.

A self-describing document declares its own schema or vocabulary inline:
JSON Schema, Snowplow Iglu envelopes, OpenAPI/Swagger descriptions, JSON-LD
(optionally with the Hydra vocabulary) and HAL hypermedia documents.
"""

import re
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .summarizer import child_path, json_type


ABSOLUTE_URL_RE = re.compile(r"^https?://", re.IGNORECASE)
IMAGE_URL_RE = re.compile(r"\.(?:jpe?g|png|webp|gif|avif|svg)(?:[?#]|$)", re.IGNORECASE)


def _context_strings(context: Any) -> List[str]:
    if isinstance(context, str):
        return [context]
    if isinstance(context, list):
        return [item for item in context if isinstance(item, str)]
    return []


def _is_hydra_context(context: Any) -> bool:
    if any("hydra" in item.lower() for item in _context_strings(context)):
        return True
    if isinstance(context, list):
        for item in context:
            if isinstance(item, dict) and "hydra" in str(item.get("@vocab") or "").lower():
                return True
    return False


def detect_self_describing(value: Any) -> Optional[Dict[str, Any]]:
    """
    Classify a JSON value as a known self-describing envelope.

    Checks run in a fixed priority order and the first match wins:
    JSON Schema, Iglu, Iglu schema self-reference, OpenAPI/Swagger,
    JSON-LD/Hydra, HAL.

    Args:
        value: Decoded JSON value

    Returns:
        ``{"kind": ..., "meta": ...}`` or None
    """
    if json_type(value) != "object":
        return None

    if value.get("$schema") or value.get("$id"):
        return {"kind": "json-schema", "meta": value.get("$schema") or value.get("$id")}

    schema = value.get("schema")
    if isinstance(schema, str) and schema.startswith("iglu:"):
        return {"kind": "iglu", "meta": schema}

    self_ref = value.get("self")
    if isinstance(self_ref, dict) and self_ref.get("vendor") and self_ref.get("name"):
        return {"kind": "iglu-schema", "meta": f"{self_ref['vendor']}/{self_ref['name']}"}

    if value.get("openapi") or value.get("swagger"):
        if value.get("openapi"):
            return {"kind": "openapi", "meta": value["openapi"]}
        return {"kind": "swagger", "meta": value["swagger"]}

    if "@context" in value:
        context = value["@context"]
        kind = "hydra" if _is_hydra_context(context) else "json-ld"
        return {"kind": kind, "meta": context}

    links = value.get("_links")
    if isinstance(links, dict):
        return {"kind": "hal", "meta": ", ".join(list(links)[:3])}

    return None


def json_string_urls(root: Any) -> Iterator[Tuple[str, str]]:
    """
    Yield ``(url, path)`` for every string value that is an absolute URL.

    Example:
        >>> list(json_string_urls({"a": ["https://x.test/1.png"]}))
        [('https://x.test/1.png', '$.a[0]')]
    """
    stack: List[Tuple[Any, str]] = [(root, "$")]
    while stack:
        value, path = stack.pop()
        tag = json_type(value)
        if tag == "string":
            if ABSOLUTE_URL_RE.match(value):
                yield value, path
        elif tag == "array":
            for index, child in enumerate(value):
                stack.append((child, child_path(path, index)))
        elif tag == "object":
            for key, child in value.items():
                stack.append((child, child_path(path, key)))


def is_image_url(url: str) -> bool:
    return IMAGE_URL_RE.search(url) is not None
