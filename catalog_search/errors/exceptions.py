"""Custom exception hierarchy for classification and search errors."""
from typing import Any, Dict, List, Optional


class CatalogSearchError(Exception):
    """Base exception for all catalog search errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        """Initialize error with message and optional structured details."""
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ConfigurationError(CatalogSearchError):
    """Raised when rules, filter definitions or key mappings are invalid.

    ``problems`` lists every detected problem so that a single load reports
    the whole configuration at once.
    """

    def __init__(
        self,
        message: str,
        problems: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.problems = list(problems or [])
        merged = dict(details or {})
        if self.problems:
            merged.setdefault("problems", self.problems)
        super().__init__(message, merged)


class RuleConfigurationError(ConfigurationError):
    """Raised when a classification rule cannot be loaded."""
    pass


class FilterConfigurationError(ConfigurationError):
    """Raised when a filter definition or its attribute mapping is invalid."""
    pass


class ProductDataError(CatalogSearchError):
    """Raised when a single product carries malformed attribute data."""
    pass


class SnapshotGenerationError(CatalogSearchError):
    """Raised when a published snapshot would not advance the generation."""
    pass


class DatabaseError(CatalogSearchError):
    """Raised when database operations fail."""
    pass


class AttributeSourceError(CatalogSearchError):
    """Raised when the attribute source cannot be read at all."""
    pass
