"""Exception types raised by clients and domain services."""
from typing import Optional


class ConfigurationError(RuntimeError):
    """A required credential or setting is missing."""


class UpstreamError(RuntimeError):
    """An external API returned an error or could not be reached."""

    service = "upstream"

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class EPCAPIError(UpstreamError):
    service = "EPC"


class LandAppAPIError(UpstreamError):
    service = "Land App"


class OSLinksAPIError(UpstreamError):
    service = "OS Linked Identifiers"


class SupabaseError(UpstreamError):
    service = "Supabase"


class ReportParseError(ValueError):
    """An uploaded data layers report could not be interpreted."""


__all__ = [
    "ConfigurationError",
    "EPCAPIError",
    "LandAppAPIError",
    "OSLinksAPIError",
    "ReportParseError",
    "SupabaseError",
    "UpstreamError",
]
