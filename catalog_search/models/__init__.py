"""Domain models for classification and faceted search."""
from catalog_search.models.product import (
    FeatureValue,
    FeatureValueType,
    ProductRecord,
)
from catalog_search.models.rules import (
    ClassificationRule,
    FeatureCondition,
    FeatureOperator,
    RuleTargetKind,
)
from catalog_search.models.filters import (
    FacetValue,
    FilterDefinition,
    FilterFacet,
    FilterIndexEntry,
    FilterSelection,
    FilterValueType,
    HistogramBucket,
    InvalidSelectionError,
    NumericFacetSummary,
    SelectionKind,
    parse_selections,
)
from catalog_search.models.taxonomy import (
    TaxonomyCount,
    TaxonomyNode,
)

__all__ = [
    "FeatureValue",
    "FeatureValueType",
    "ProductRecord",
    "ClassificationRule",
    "FeatureCondition",
    "FeatureOperator",
    "RuleTargetKind",
    "FacetValue",
    "FilterDefinition",
    "FilterFacet",
    "FilterIndexEntry",
    "FilterSelection",
    "FilterValueType",
    "HistogramBucket",
    "InvalidSelectionError",
    "NumericFacetSummary",
    "SelectionKind",
    "parse_selections",
    "TaxonomyCount",
    "TaxonomyNode",
]
