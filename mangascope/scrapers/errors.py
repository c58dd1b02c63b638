"""Exceptions raised by provider scrapers and the scraper factory."""


class ScraperError(Exception):
    """Base exception for scraper failures."""


class ConfigurationError(ScraperError, ValueError):
    """Raised when a merged provider configuration fails validation."""


class UnsupportedProviderError(ScraperError, ValueError):
    """Raised when no scraper is registered for a provider identifier."""


class UnsupportedOperationError(ScraperError):
    """Raised when a scraper is called in a mode its provider does not allow."""


class NavigationFailure(ScraperError):
    """A page could not be reached, or landed somewhere other than requested.

    Raised and caught inside retry loops; never escapes a contract operation.
    """


class BlockDetected(NavigationFailure):
    """The page content looks like an anti-automation challenge."""
