"""
Discovery errors - The failures a discovery run can surface to its caller.

Per-page and per-response problems never become exceptions outside the
component that saw them. Only these categories stop a run:

- ConfigError: invalid or missing input, raised before any work begins
- DnsResolutionError: the target host does not resolve, no fallback can help
- NavigationExhaustedError: every stage of the navigation ladder failed
"""

from typing import Any, Dict, List, Optional


class DiscoveryError(Exception):
    """Base exception for discovery failures"""

    kind = "unknown"

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.kind, "message": str(self)}


class ConfigError(DiscoveryError):
    """Raised when the discovery request is invalid"""

    kind = "config"


class DnsResolutionError(DiscoveryError):
    """Raised when the seed host cannot be resolved"""

    kind = "dns"

    def __init__(self, url: str, detail: str = ""):
        self.url = url
        self.detail = detail
        message = f"DNS resolution failed for {url}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class NavigationExhaustedError(DiscoveryError):
    """
    Raised when the navigation resilience ladder has no stage left.

    The message is the error of the first (primary) stage. Later stages only
    exist to recover, so their errors are kept in ``attempts`` for
    diagnostics without replacing it.
    """

    kind = "navigation"

    def __init__(
        self,
        url: str,
        primary_error: BaseException,
        attempts: Optional[List[Dict[str, Any]]] = None,
    ):
        self.url = url
        self.primary_error = primary_error
        self.attempts = attempts or []
        super().__init__(str(primary_error))

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["url"] = self.url
        data["attempts"] = list(self.attempts)
        return data


def describe_error(error: BaseException) -> Dict[str, Any]:
    """
    Turn any exception into the structured error payload shown to callers.

    Returns:
        Dictionary with ``error`` (config, dns, navigation or unknown) and
        ``message`` keys
    """
    if isinstance(error, DiscoveryError):
        return error.to_dict()
    return {"error": "unknown", "message": str(error) or type(error).__name__}
