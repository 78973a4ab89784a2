"""Facet aggregation with cross-filtering.

For each filter F the counted product set is the scope narrowed by every
active selection on filters other than F. Selecting a value therefore
narrows the counts of all other filters while F keeps offering its own
alternatives, including values whose count dropped to 0.

Counting unit is distinct product ids. Numeric filters are summarized as
observed min/max plus a histogram instead of per-value counts.
"""
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Set
import structlog

from catalog_search.config import search_settings
from catalog_search.models.filters import (
    FacetValue,
    FilterDefinition,
    FilterFacet,
    FilterSelection,
    FilterValueType,
    HistogramBucket,
    NumericFacetSummary,
)
from catalog_search.services.indexing.index import FilterIndex
from catalog_search.services.query.evaluator import selection_matches

logger = structlog.get_logger(__name__)


def build_histogram(
    product_values: Mapping[float, FrozenSet[str]],
    bucket_count: int,
) -> List[HistogramBucket]:
    """Bucket distinct products by value over [min, max].

    Buckets are half-open except the last one, which includes max. A
    product is counted once per bucket it holds a value in.
    """
    if not product_values:
        return []
    low = min(product_values)
    high = max(product_values)
    if low == high:
        ids = frozenset().union(*product_values.values())
        return [HistogramBucket(min=low, max=high, count=len(ids))]

    width = (high - low) / bucket_count
    members: List[Set[str]] = [set() for _ in range(bucket_count)]
    for value, product_ids in product_values.items():
        position = min(int((value - low) / width), bucket_count - 1)
        members[position] |= product_ids
    return [
        HistogramBucket(
            min=low + i * width,
            max=high if i == bucket_count - 1 else low + (i + 1) * width,
            count=len(members[i]),
        )
        for i in range(bucket_count)
    ]


class FacetAggregator:
    """Computes per-filter facet values over a filter index."""

    def __init__(self, histogram_buckets: Optional[int] = None):
        self.histogram_buckets = histogram_buckets or search_settings.histogram_buckets
        self._log = logger.bind(component="FacetAggregator")

    def _counted_set(
        self,
        filter_key: str,
        scope_ids: FrozenSet[str],
        matches: Mapping[str, FrozenSet[str]],
    ) -> FrozenSet[str]:
        counted = scope_ids
        for other_key, matched in matches.items():
            if other_key == filter_key:
                continue
            counted = counted & matched
        return counted

    def _value_facets(
        self,
        index: FilterIndex,
        filter_key: str,
        scope_ids: FrozenSet[str],
        counted: FrozenSet[str],
    ) -> List[FacetValue]:
        values = []
        for value, product_ids in index.postings(filter_key).items():
            if not (product_ids & scope_ids):
                continue
            values.append(FacetValue(filter_key=filter_key, value=value, count=len(product_ids & counted)))
        values.sort(key=lambda v: (-v.count, str(v.value)))
        return values

    def _numeric_summary(
        self,
        index: FilterIndex,
        filter_key: str,
        counted: FrozenSet[str],
    ) -> NumericFacetSummary:
        product_values: Dict[float, FrozenSet[str]] = {}
        for value, product_ids in index.postings(filter_key).items():
            present = product_ids & counted
            if present:
                product_values[value] = present
        if not product_values:
            return NumericFacetSummary(filter_key=filter_key, min=None, max=None, product_count=0)
        return NumericFacetSummary(
            filter_key=filter_key,
            min=min(product_values),
            max=max(product_values),
            product_count=len(frozenset().union(*product_values.values())),
            histogram=build_histogram(product_values, self.histogram_buckets),
        )

    def compute_facets(
        self,
        index: FilterIndex,
        scope_ids: FrozenSet[str],
        selections: Optional[Mapping[str, FilterSelection]],
        definitions: Iterable[FilterDefinition],
    ) -> List[FilterFacet]:
        """Compute facets for the given filter definitions.

        Args:
            index: Filter index of the current snapshot
            scope_ids: Products in the taxonomy scope (already narrowed by any text query)
            selections: Active selections, filter_key -> selection
            definitions: Filters to compute facets for, in display order

        Returns:
            One FilterFacet per definition
        """
        matches = selection_matches(index, scope_ids, selections or {})
        facets: List[FilterFacet] = []
        for definition in definitions:
            counted = self._counted_set(definition.key, scope_ids, matches)
            if definition.value_type == FilterValueType.RANGE:
                facets.append(FilterFacet(
                    filter_key=definition.key,
                    label=definition.label,
                    value_type=definition.value_type,
                    display_category=definition.display_category,
                    summary=self._numeric_summary(index, definition.key, counted),
                ))
            else:
                facets.append(FilterFacet(
                    filter_key=definition.key,
                    label=definition.label,
                    value_type=definition.value_type,
                    display_category=definition.display_category,
                    values=self._value_facets(index, definition.key, scope_ids, counted),
                ))

        self._log.debug(
            "facets_computed",
            scope_size=len(scope_ids),
            selection_keys=sorted(matches),
            facet_count=len(facets),
        )
        return facets


def compute_facets(
    index: FilterIndex,
    scope_ids: FrozenSet[str],
    selections: Optional[Mapping[str, FilterSelection]],
    definitions: Iterable[FilterDefinition],
) -> List[FilterFacet]:
    """Compute facets with the configured histogram settings."""
    return FacetAggregator().compute_facets(index, scope_ids, selections, definitions)
