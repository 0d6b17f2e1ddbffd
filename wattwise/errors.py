"""
Exception hierarchy for the WattWise analysis pipeline.

Retryable failures (rate limits, network blips, unparseable model output)
are absorbed by the retry orchestrator; everything else propagates.
"""

from typing import Optional


class WattWiseError(Exception):
    """Base class for all pipeline errors."""
    pass


class ConfigurationError(WattWiseError):
    """Missing or rejected credentials / settings. Never retried."""
    pass


class EmptyInput(WattWiseError):
    """The BOM produced zero rows."""
    pass


class BOMReadError(WattWiseError):
    """The BOM file could not be read."""
    pass


class RateLimited(WattWiseError):
    """The backend answered HTTP 429."""

    def __init__(self, message: str, status_code: int = 429):
        super().__init__(message)
        self.status_code = status_code


class NetworkError(WattWiseError):
    """Connection-level or transient server failure."""
    pass


class BackendError(WattWiseError):
    """Non-retryable HTTP error from the backend."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ResponseError(WattWiseError):
    """Model output could not be turned into items."""
    pass


class MalformedResponse(ResponseError):
    """Model output is not parseable JSON, even after repair."""

    def __init__(self, message: str, raw: str = "", cleaned: str = ""):
        super().__init__(message)
        self.raw = raw
        self.cleaned = cleaned


class EmptyResponse(ResponseError):
    """Model returned no content."""
    pass


class SessionStateError(WattWiseError):
    """Operation not allowed in the session's current state."""
    pass


class SessionBusyError(SessionStateError):
    """Another analysis operation is already in flight."""
    pass
