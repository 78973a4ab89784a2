"""Facet aggregation service.

Key Components:
    - FacetAggregator: Cross-filtered per-value counts and numeric summaries
    - build_histogram: Numeric value distribution for range filters
"""
from catalog_search.services.facets.aggregator import (
    FacetAggregator,
    build_histogram,
    compute_facets,
)

__all__ = [
    "FacetAggregator",
    "build_histogram",
    "compute_facets",
]
