"""Filter index construction.

Key Components:
    - FilterIndexBuilder: Flattens product attributes into typed filter entries
    - FilterIndex: Immutable posting sets answering filter selections
    - coerce_value: Value-type coercion used by the builder
"""
from catalog_search.services.indexing.builder import (
    FilterIndexBuilder,
    IndexBuildResult,
    build_index,
    coerce_value,
    source_problems,
    validate_filter_configuration,
)
from catalog_search.services.indexing.index import FilterIndex

__all__ = [
    "FilterIndex",
    "FilterIndexBuilder",
    "IndexBuildResult",
    "build_index",
    "coerce_value",
    "source_problems",
    "validate_filter_configuration",
]
