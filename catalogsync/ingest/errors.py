"""Error taxonomy for the ingestion pipeline."""

from __future__ import annotations


class CatalogSyncError(Exception):
    """Base class for every error raised by the sync pipeline."""


class ExternalError(CatalogSyncError):
    """A call to the marketplace API did not produce a usable answer."""


class TransientExternalError(ExternalError):
    """Network failure, timeout or throttling; the same call may be retried."""


class TerminalExternalError(ExternalError):
    """Authentication or quota failure; the current run must be aborted."""


class ItemNotFoundError(ExternalError):
    """The detail API has no record for the requested identifier."""


class NormalizationError(CatalogSyncError):
    """A raw listing could not be turned into a canonical product."""


class PersistenceError(CatalogSyncError):
    """Writing a product to the store failed."""


class ConfigurationError(CatalogSyncError):
    """Invalid category, band or limiter setup."""


class CategoryNotFoundError(ConfigurationError):
    pass


class SyncInProgressError(CatalogSyncError):
    """The category is already claimed by another run."""
