"""
Exceptions raised by the downloader.

AuthenticationError and CatalogNotFoundError end the run. Everything else is
caught close to where it happens and turned into a failed outcome.
"""


class ManningDownloadError(Exception):
    """Base exception for all downloader errors."""


class ConfigurationError(ManningDownloadError):
    """Raised for unusable configuration values or credentials."""


class AuthenticationError(ManningDownloadError):
    """Raised when the login form is not recognised or the login is rejected."""


class CatalogNotFoundError(ManningDownloadError):
    """Raised when the product listing never shows up on the dashboard."""


class RowProcessingError(ManningDownloadError):
    """Raised when a single listing row can not be parsed."""


class ResolutionFailure(ManningDownloadError):
    """Raised when no dropdown control exposes the link for a format."""


class TransferTimeout(ManningDownloadError):
    """Raised when the browser never reports a started download."""


class StaleRowError(ManningDownloadError):
    """Raised when a catalog entry can not be found again after a reload."""
