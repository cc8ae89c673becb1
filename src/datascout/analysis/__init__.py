"""
Analysis module - Pure, schema-less inspection of JSON payloads.

This package contains the leaf components of the discovery pipeline:
- summarize_arrays: Array and per-field statistical profiling
- detect_self_describing: Known self-describing JSON envelopes
- classify_exchange: API-likeness of observed network traffic
"""

from .summarizer import (
    FieldStatsBuilder,
    json_type,
    summarize_array,
    summarize_arrays,
    summarize_entity,
)
from .detectors import detect_self_describing, is_image_url, json_string_urls
from .classify import ExchangeClass, classify_exchange, peek_graphql


__all__ = [
    # Summarizer
    "FieldStatsBuilder",
    "json_type",
    "summarize_array",
    "summarize_arrays",
    "summarize_entity",
    # Detectors
    "detect_self_describing",
    "is_image_url",
    "json_string_urls",
    # Classification
    "ExchangeClass",
    "classify_exchange",
    "peek_graphql",
]
