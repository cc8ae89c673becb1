"""
Adapters module - Site-specific interpretation of discovery reports.

This package contains the adapter interface and the built-in fallback:
- ProviderAdapter: Interface every provider adapter implements
- AdapterRegistry: Lookup of the adapter responsible for a URL
- GenericAdapter: Provider-agnostic fallback
"""

from .base import (
    AdapterRegistry,
    Candidate,
    CandidateSource,
    Interpretation,
    ProviderAdapter,
    report_links,
)
from .generic import GenericAdapter


AdapterRegistry.set_fallback(GenericAdapter())


__all__ = [
    # Interface
    "ProviderAdapter",
    "AdapterRegistry",
    "Candidate",
    "CandidateSource",
    "Interpretation",
    "report_links",
    # Built-in adapters
    "GenericAdapter",
]
