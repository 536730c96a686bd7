"""
Error Types

Fatal catalog errors abort the run; probe errors only drop one candidate.
"""

from typing import Optional


class FastestRelayError(Exception):
    """Base class for all errors raised by fastest-relay."""


class CatalogError(FastestRelayError):
    """The relay catalog could not be obtained. Fatal."""


class CatalogUnavailableError(CatalogError):
    """Neither the API nor the local fallback file could be read."""


class CatalogParseError(CatalogError):
    """The catalog body is not a JSON array of relay objects."""


class ProbeError(FastestRelayError):
    """A single relay could not be measured. The run continues."""

    def __init__(self, message: str, hostname: Optional[str] = None, address: Optional[str] = None):
        super().__init__(message)
        self.hostname = hostname
        self.address = address


class InvalidPingError(ProbeError):
    """The relay replied, but the measured RTT was exactly zero."""
