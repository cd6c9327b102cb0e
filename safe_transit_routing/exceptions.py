"""
Error kinds raised by the safe transit routing core.
"""

from typing import Optional


class TransitRoutingError(Exception):
    """Base exception for all safe transit routing errors."""


class TopologyLoadError(TransitRoutingError):
    """Static stop/route topology could not be loaded. Fatal at startup."""


class ProviderUnavailable(TransitRoutingError):
    """An upstream provider timed out, returned 5xx or sent an unreadable payload."""

    def __init__(self, message: str, provider: str = "", status_code: Optional[int] = None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)


class InvalidQuery(TransitRoutingError):
    """Missing or malformed query input, rejected before any graph work."""


class NoRouteFound(TransitRoutingError):
    """Search deadline expired before a single label was relaxed."""


class InsufficientSafetyData(TransitRoutingError):
    """No incident data covers the requested geometry."""

    def __init__(self, message: str, score: float = 0.0):
        self.score = score
        super().__init__(message)
