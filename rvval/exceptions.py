"""
Error taxonomy for property resolution.

Only ConfigurationError and ContextValidationError are allowed to reach the
caller. ProviderUnavailable and DisambiguationError are caught inside the
engine and turned into "try the next source" behaviour. A lookup that simply
finds nothing is a normal result, not an exception.
"""
from typing import Optional


class ResolutionError(Exception):
    """Base class for resolution errors."""


class ConfigurationError(ResolutionError):
    """A required credential or secret is missing."""

    def __init__(self, credential: str, provider: Optional[str] = None):
        self.credential = credential
        self.provider = provider
        label = f"{provider}: " if provider else ""
        super().__init__(f"{label}missing required credential {credential}")


class ContextValidationError(ResolutionError):
    """The caller supplied none of APN, address, or coordinates."""

    def __init__(self, message: str = "apn, address or lat/lng are required"):
        super().__init__(message)


class ProviderUnavailable(ResolutionError):
    """Non-2xx response, malformed JSON, or timeout from an external call."""

    def __init__(self, provider: str, stage: str, detail: str = ""):
        self.provider = provider
        self.stage = stage
        self.detail = detail
        message = f"{provider} unavailable during {stage}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class DisambiguationError(ResolutionError):
    """The model returned an unusable candidate index."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class MarketRateError(ResolutionError):
    """The treasury rate could not be fetched."""

    def __init__(self, code: str, message: str, status: Optional[int] = None):
        self.code = code
        self.status = status
        super().__init__(message)
