"""Multi-filter query evaluation.

Evaluation order:
1. Start from the taxonomy scope (product ids)
2. Intersect with the matching set of every selected filter
   (OR within a filter's values, AND across filters)
3. Optionally require every text query token in the descriptions
4. Rank by rapidfuzz relevance when a text query is present

A selection on a filter key the index does not know (stale UI state after
a configuration change) matches nothing; it never raises.
"""
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, List, Mapping, Optional
import structlog

from rapidfuzz import fuzz, utils

from catalog_search.config import search_settings
from catalog_search.models.filters import FilterSelection
from catalog_search.services.indexing.index import FilterIndex

logger = structlog.get_logger(__name__)

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


class SortOrder(str, Enum):
    """Result orderings supported by search."""
    RELEVANCE = "relevance"
    NAME = "name"
    PRODUCT_ID = "product_id"


@dataclass(frozen=True)
class SearchPage:
    """One page of search results.

    Attributes:
        product_ids: Ordered product ids of this page
        total: Number of products matching the query
        limit: Page size used
        offset: Offset of the first returned product
    """
    product_ids: List[str]
    total: int
    limit: int
    offset: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.product_ids) < self.total


def tokenize(text: str) -> List[str]:
    """Lowercase word tokens of a text query."""
    return _TOKEN_RE.findall(text.lower())


def selection_matches(
    index: FilterIndex,
    scope_ids: FrozenSet[str],
    selections: Mapping[str, FilterSelection],
) -> Dict[str, FrozenSet[str]]:
    """Matching product set per selected filter, restricted to the scope."""
    matches: Dict[str, FrozenSet[str]] = {}
    for filter_key, selection in selections.items():
        if not index.has_filter(filter_key):
            logger.debug("stale_filter_selection", filter_key=filter_key)
            matches[filter_key] = frozenset()
            continue
        matches[filter_key] = index.products_matching(filter_key, selection) & scope_ids
    return matches


class QueryEvaluator:
    """Evaluates filter selections and text queries against a filter index."""

    def __init__(self, score_cutoff: Optional[float] = None):
        """Initialize evaluator.

        Args:
            score_cutoff: Minimum relevance (0-100) kept for text queries
                (default: SEARCH_TEXT_RANK_SCORER_CUTOFF)
        """
        self.score_cutoff = (
            search_settings.text_rank_scorer_cutoff if score_cutoff is None else score_cutoff
        )

    def filter_ids(
        self,
        index: FilterIndex,
        scope_ids: FrozenSet[str],
        selections: Optional[Mapping[str, FilterSelection]] = None,
    ) -> FrozenSet[str]:
        """Apply the exact filter semantics to the scope."""
        result = frozenset(scope_ids)
        for matched in selection_matches(index, result, selections or {}).values():
            result &= matched
            if not result:
                break
        return result

    def text_scores(
        self,
        candidate_ids: FrozenSet[str],
        texts: Mapping[str, str],
        text_query: str,
    ) -> Dict[str, float]:
        """Score candidates that contain every query token.

        Returns:
            product_id -> relevance (0-100) for the candidates kept
        """
        tokens = tokenize(text_query)
        if not tokens:
            return {product_id: 100.0 for product_id in candidate_ids}

        scores: Dict[str, float] = {}
        for product_id in candidate_ids:
            text = texts.get(product_id, "")
            lowered = text.lower()
            if not all(token in lowered for token in tokens):
                continue
            score = fuzz.token_set_ratio(text_query, text, processor=utils.default_process)
            if score >= self.score_cutoff:
                scores[product_id] = score
        return scores

    def query(
        self,
        index: FilterIndex,
        scope_ids: FrozenSet[str],
        selections: Optional[Mapping[str, FilterSelection]] = None,
        text_query: Optional[str] = None,
        texts: Optional[Mapping[str, str]] = None,
    ) -> List[str]:
        """Get matching product ids.

        Without a text query the ids are sorted; with one they are ordered
        by relevance, ties broken by id.
        """
        matched = self.filter_ids(index, scope_ids, selections)
        if text_query and text_query.strip():
            scores = self.text_scores(matched, texts or {}, text_query)
            return sorted(scores, key=lambda pid: (-scores[pid], pid))
        return sorted(matched)


def query_products(
    index: FilterIndex,
    scope_ids: FrozenSet[str],
    selections: Optional[Mapping[str, FilterSelection]] = None,
    text_query: Optional[str] = None,
    texts: Optional[Mapping[str, str]] = None,
) -> List[str]:
    """Evaluate a query with the configured settings."""
    return QueryEvaluator().query(index, scope_ids, selections, text_query, texts)
