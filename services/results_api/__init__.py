"""Results HTTP API package."""

from .server import ResultsApiServer, status_for

__all__ = ["ResultsApiServer", "status_for"]
