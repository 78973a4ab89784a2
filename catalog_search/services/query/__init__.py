"""Query evaluation over the filter index."""
from catalog_search.services.query.evaluator import (
    QueryEvaluator,
    SearchPage,
    SortOrder,
    query_products,
    selection_matches,
    tokenize,
)

__all__ = [
    "QueryEvaluator",
    "SearchPage",
    "SortOrder",
    "query_products",
    "selection_matches",
    "tokenize",
]
