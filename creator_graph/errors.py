"""
errors.py — Exceptions raised by the pipeline.

Only configuration problems and an unusable browser fail a whole run.
Everything else is caught per query / per row and reported in the result.
"""


class CreatorGraphError(Exception):
    """Base class for pipeline errors."""


class ConfigurationError(CreatorGraphError):
    """Missing key, unknown engine/browser, or missing database credentials."""


class ValidationError(CreatorGraphError):
    """Malformed payload at an ingestion or resolution entry point."""


class SearchError(CreatorGraphError):
    """A single search query failed (HTTP error, provider error payload)."""


class BrowserLaunchError(CreatorGraphError):
    """No WebDriver could be started (requested browser and fallback both failed)."""
