"""
Core module - Pipeline orchestration and report merging.

This package contains the components that combine discovery passes.
"""

from .merge import merge_reports, sum_by_host, union_by
from .pipeline import DiscoveryPipeline, DiscoveryRequest


__all__ = [
    # Merging
    "merge_reports",
    "sum_by_host",
    "union_by",
    # Pipeline
    "DiscoveryPipeline",
    "DiscoveryRequest",
]
