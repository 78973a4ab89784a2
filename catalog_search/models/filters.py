"""Filter definitions, index entries, selections and facet results.

Definitions and selections are pydantic models (they cross the
configuration and presentation boundaries); index entries and facet
results are plain dataclasses produced in bulk by the build and read
passes.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Union

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator, model_validator

from catalog_search.errors.exceptions import CatalogSearchError
from catalog_search.models.product import format_token


FilterValue = Union[bool, str, float]

FLAG_SOURCE_PREFIX = "flag:"
FIELD_SOURCE_PREFIX = "field:"
PRODUCT_FIELD_SOURCES = frozenset({"group_code", "class_code", "supplier_name"})


class FilterValueType(str, Enum):
    """Value slot a filter stores and queries."""
    BOOLEAN = "boolean"
    MULTI_SELECT = "multi-select"
    RANGE = "range"


class FilterDefinition(BaseModel):
    """Filter shown by the presentation layer.

    Attributes:
        key: Unique filter key (e.g. "ip_rating")
        label: Display label
        value_type: boolean, multi-select or range
        applicable_taxonomy_codes: Taxonomy codes the filter applies to (empty = all)
        display_category: Grouping used by the filter panel (e.g. "light", "location")
        display_order: Ordering within the category
        unit: Optional unit for range filters
        description: Optional help text
        active: Inactive definitions are neither indexed nor listed
    """

    key: str = Field(..., min_length=1, max_length=100)
    label: str = Field(..., min_length=1)
    value_type: FilterValueType
    applicable_taxonomy_codes: FrozenSet[str] = frozenset()
    display_category: str = "other"
    display_order: int = 0
    unit: Optional[str] = None
    description: Optional[str] = None
    active: bool = True

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "example": {
                "key": "cct",
                "label": "Color Temperature",
                "value_type": "range",
                "applicable_taxonomy_codes": ["LUM"],
                "display_category": "light",
                "display_order": 30,
                "unit": "K",
            }
        },
    }

    @field_validator("applicable_taxonomy_codes", mode="before")
    @classmethod
    def null_means_universal(cls, v):
        """NULL/absent applicability means the filter applies universally."""
        return frozenset() if v is None else v

    @property
    def is_universal(self) -> bool:
        return not self.applicable_taxonomy_codes

    def applies_to(self, memberships: FrozenSet[str]) -> bool:
        """Coarse applicability check against a product's memberships."""
        return self.is_universal or bool(self.applicable_taxonomy_codes & memberships)


@dataclass(frozen=True)
class FilterIndexEntry:
    """One normalized (product, filter, value) row of the filter index."""
    product_id: str
    filter_key: str
    value: FilterValue


class InvalidSelectionError(CatalogSearchError):
    """Raised when a raw selection cannot be interpreted."""
    pass


class SelectionKind(str, Enum):
    VALUES = "values"
    RANGE = "range"
    FLAG = "flag"


class FilterSelection(BaseModel):
    """Selected values for one filter.

    Exactly one form is used:
        - values: enumerated tokens, combined with OR
        - min/max: inclusive numeric range, either bound may be open
        - flag: boolean equality
    """

    values: Optional[FrozenSet[str]] = None
    min: Optional[float] = None
    max: Optional[float] = None
    flag: Optional[bool] = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def check_single_form(self) -> "FilterSelection":
        forms = [
            self.values is not None,
            self.min is not None or self.max is not None,
            self.flag is not None,
        ]
        if sum(forms) != 1:
            raise ValueError("selection must use exactly one of values, min/max or flag")
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("selection min must not exceed max")
        return self

    @classmethod
    def of_values(cls, *values: str) -> "FilterSelection":
        return cls(values=frozenset(values))

    @classmethod
    def in_range(cls, min: Optional[float] = None, max: Optional[float] = None) -> "FilterSelection":
        return cls(min=min, max=max)

    @classmethod
    def is_(cls, flag: bool) -> "FilterSelection":
        return cls(flag=flag)

    @property
    def kind(self) -> SelectionKind:
        if self.values is not None:
            return SelectionKind.VALUES
        if self.flag is not None:
            return SelectionKind.FLAG
        return SelectionKind.RANGE

    def matches(self, value: FilterValue) -> bool:
        """Check one index value against this selection."""
        kind = self.kind
        if kind == SelectionKind.FLAG:
            return isinstance(value, bool) and value == self.flag
        if kind == SelectionKind.VALUES:
            return isinstance(value, str) and value in self.values
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        if self.min is not None and value < self.min:
            return False
        if self.max is not None and value > self.max:
            return False
        return True


Selections = Mapping[str, FilterSelection]


def parse_selections(raw: Optional[Mapping[str, Any]]) -> Dict[str, FilterSelection]:
    """Parse the JSON filter shape sent by the presentation layer.

    Example:
        parse_selections({"ip_rating": ["IP65", "IP44"], "cct": {"min": 2700, "max": 3000},
                          "dimmable": True})

    Raises:
        InvalidSelectionError: If a value has an unsupported shape
    """
    selections: Dict[str, FilterSelection] = {}
    for key, value in (raw or {}).items():
        try:
            if isinstance(value, FilterSelection):
                selections[key] = value
            elif isinstance(value, bool):
                selections[key] = FilterSelection(flag=value)
            elif isinstance(value, str):
                selections[key] = FilterSelection(values=frozenset([format_token(value)]))
            elif isinstance(value, (list, tuple, set, frozenset)):
                selections[key] = FilterSelection(values=frozenset(format_token(v) for v in value))
            elif isinstance(value, Mapping):
                selections[key] = FilterSelection(min=value.get("min"), max=value.get("max"))
            else:
                raise InvalidSelectionError(
                    f"Unsupported selection for filter '{key}'",
                    {"filter_key": key, "value": repr(value)},
                )
        except PydanticValidationError as e:
            raise InvalidSelectionError(
                f"Invalid selection for filter '{key}'",
                {"filter_key": key, "errors": e.errors()},
            ) from e
    return selections


@dataclass(frozen=True)
class FacetValue:
    """Distinct-product count for one value of one filter."""
    filter_key: str
    value: FilterValue
    count: int


@dataclass(frozen=True)
class HistogramBucket:
    """Numeric bucket; the last bucket includes its upper bound."""
    min: float
    max: float
    count: int


@dataclass(frozen=True)
class NumericFacetSummary:
    """Observed range of a numeric filter over the counted product set."""
    filter_key: str
    min: Optional[float]
    max: Optional[float]
    product_count: int
    histogram: List[HistogramBucket] = field(default_factory=list)


@dataclass(frozen=True)
class FilterFacet:
    """Facet output for one filter definition."""
    filter_key: str
    label: str
    value_type: FilterValueType
    display_category: str
    values: List[FacetValue] = field(default_factory=list)
    summary: Optional[NumericFacetSummary] = None

    def count_for(self, value: FilterValue) -> int:
        """Count shown for a value, 0 when the value is not offered."""
        for facet_value in self.values:
            if facet_value.value == value and type(facet_value.value) is type(value):
                return facet_value.count
        return 0
