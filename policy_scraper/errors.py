"""
Custom exceptions for the policy scraper.

Configuration errors abort a request before any network I/O, transport and
parse errors are raised per fetch/document and are either fatal (listing
level) or recorded as failed items (document level).
"""

from typing import Any, Optional


class PolicyScraperError(Exception):
    """Base exception for all policy scraper errors."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None) -> None:
        """
        Initialize the exception.

        Args:
            message: User-readable error message
            details: Optional dictionary with additional error details
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return the user-readable message."""
        return self.message


# =============================================================================
# Configuration / Input Exceptions
# =============================================================================


class ConfigurationError(PolicyScraperError):
    """Invalid caller input; raised before any network I/O."""

    pass


class MissingSourceUrlError(ConfigurationError):
    """No source URL was supplied."""

    pass


class InvalidSourceUrlError(ConfigurationError):
    """The source URL could not be parsed."""

    pass


class UnsupportedPlatformError(ConfigurationError):
    """The platform hint does not name a supported platform."""

    pass


# =============================================================================
# Transport Exceptions
# =============================================================================


class TransportError(PolicyScraperError):
    """A request failed at the network level."""

    def __init__(self, message: str, url: str = "", details: Optional[dict[str, Any]] = None) -> None:
        """Initialize with the URL that failed."""
        super().__init__(message, {"url": url, **(details or {})})
        self.url = url


class HttpStatusError(TransportError):
    """Non-2xx, non-redirect response."""

    def __init__(self, status_code: int, url: str) -> None:
        """Initialize with the numeric status code."""
        super().__init__(
            f"Request failed with status {status_code} for {url}",
            url,
            {"status_code": status_code},
        )
        self.status_code = status_code

    @property
    def is_blocked(self) -> bool:
        """True when the server refused the request (403)."""
        return self.status_code == 403

    @property
    def is_not_found(self) -> bool:
        """True for 404/410 responses."""
        return self.status_code in (404, 410)

    @property
    def is_server_error(self) -> bool:
        """True for 5xx responses."""
        return 500 <= self.status_code < 600


class RequestTimeoutError(TransportError):
    """The request did not complete within its timeout."""

    pass


class TooManyRedirectsError(TransportError):
    """The redirect chain exceeded the configured depth."""

    pass


# =============================================================================
# Parse Exceptions
# =============================================================================


class ParseError(PolicyScraperError):
    """Expected structure (table, heading, payload) was missing."""

    pass


class ListingParseError(ParseError):
    """The listing produced no document references; fatal for the request."""

    pass


class DocumentParseError(ParseError):
    """A single document could not be parsed; recorded as a failed item."""

    pass


class NoPoliciesParsedError(PolicyScraperError):
    """Every discovered document failed."""

    pass
