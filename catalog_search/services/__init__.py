"""Classification and faceted search services.

Available Services:
    - classification: Rule-based taxonomy memberships and capability flags
    - indexing: Filter index construction from product attributes
    - facets: Cross-filtered facet counts and numeric summaries
    - query: Filter and text query evaluation
    - config_store: Validated configuration loading
    - snapshot: Immutable published search state
    - search_service: Facade tying build and read paths together
"""
from catalog_search.services.classification import (
    ClassificationResult,
    RuleClassifier,
    classify,
    find_rule_overlaps,
)
from catalog_search.services.indexing import FilterIndex, FilterIndexBuilder, build_index
from catalog_search.services.facets import FacetAggregator, compute_facets
from catalog_search.services.query import QueryEvaluator, SearchPage, SortOrder, query_products
from catalog_search.services.config_store import (
    ConfigurationStore,
    SearchConfiguration,
    build_configuration,
    configuration_from_dict,
    load_configuration_file,
)
from catalog_search.services.snapshot import SearchSnapshot, SnapshotHolder
from catalog_search.services.search_service import BuildReport, ProductTaxonomy, SearchService

__all__ = [
    # Classification
    "ClassificationResult",
    "RuleClassifier",
    "classify",
    "find_rule_overlaps",
    # Index
    "FilterIndex",
    "FilterIndexBuilder",
    "build_index",
    # Facets
    "FacetAggregator",
    "compute_facets",
    # Query
    "QueryEvaluator",
    "SearchPage",
    "SortOrder",
    "query_products",
    # Configuration
    "ConfigurationStore",
    "SearchConfiguration",
    "build_configuration",
    "configuration_from_dict",
    "load_configuration_file",
    # Snapshot and facade
    "SearchSnapshot",
    "SnapshotHolder",
    "BuildReport",
    "ProductTaxonomy",
    "SearchService",
]
