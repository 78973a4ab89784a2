"""Error handling module."""
from catalog_search.errors.exceptions import (
    CatalogSearchError,
    ConfigurationError,
    RuleConfigurationError,
    FilterConfigurationError,
    ProductDataError,
    SnapshotGenerationError,
    DatabaseError,
    AttributeSourceError,
)

__all__ = [
    "CatalogSearchError",
    "ConfigurationError",
    "RuleConfigurationError",
    "FilterConfigurationError",
    "ProductDataError",
    "SnapshotGenerationError",
    "DatabaseError",
    "AttributeSourceError",
]
