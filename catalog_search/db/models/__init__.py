"""Database models for the catalog and search configuration tables."""
from catalog_search.db.models.product_info import ProductInfo
from catalog_search.db.models.classification_rule import ClassificationRuleEntry
from catalog_search.db.models.filter_definition import FilterDefinitionEntry, FilterSourceMapping
from catalog_search.db.models.taxonomy import TaxonomyEntry

__all__ = [
    # Catalog
    "ProductInfo",
    # Search configuration
    "ClassificationRuleEntry",
    "FilterDefinitionEntry",
    "FilterSourceMapping",
    "TaxonomyEntry",
]
