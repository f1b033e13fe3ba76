"""
Exception taxonomy for a harvest run.

Only SessionConnectionError and NavigationFailed are run-fatal. Every other
error is caught where it happens and degrades to skip-and-continue.
"""

from typing import Optional


class HarvestError(Exception):
    """Base class for all harvest errors."""

    fatal = False

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class SessionConnectionError(HarvestError, ConnectionError):
    """Neither the relayed nor the direct session could be established."""

    fatal = True


class NavigationFailed(HarvestError):
    """The application root was never reached, even after re-navigation."""

    fatal = True


class NavigationTimeout(HarvestError):
    """A single navigation or element wait ran out of time."""


class ConsentUnresolved(HarvestError):
    """No consent strategy managed to dismiss the consent gate."""


class ExtractionFailure(HarvestError):
    """One item page could not be turned into a usable record."""


class EnrichmentTimeout(HarvestError):
    """A secondary lookup did not finish inside its window."""
