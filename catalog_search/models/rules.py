"""Pydantic models for classification rules.

A rule maps products onto exactly one target, either a taxonomy code
(category membership) or a flag name (boolean capability). Its matchers
form a conjunction; every active rule is evaluated independently and all
matching rules apply.
"""
from enum import Enum
from typing import FrozenSet, Optional, Tuple

from pydantic import BaseModel, Field, field_validator, model_validator

from catalog_search.errors.exceptions import ProductDataError
from catalog_search.models.product import FeatureValue, format_token


class RuleTargetKind(str, Enum):
    """What a matching rule contributes to a product."""
    TAXONOMY = "taxonomy"
    FLAG = "flag"


class FeatureOperator(str, Enum):
    """Operators supported by feature conditions."""
    EXISTS = "exists"
    EQUALS = "equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN_RANGE = "in_range"


_NUMERIC_OPERATORS = {FeatureOperator.GREATER_THAN, FeatureOperator.LESS_THAN}
_VALUE_OPERATORS = {FeatureOperator.EQUALS, FeatureOperator.CONTAINS} | _NUMERIC_OPERATORS


def _as_float(raw, feature_id: str) -> float:
    if isinstance(raw, bool):
        raise ProductDataError(
            f"Feature {feature_id} holds a boolean where a number is expected",
            {"feature_id": feature_id, "value": raw},
        )
    try:
        return float(raw)
    except (TypeError, ValueError) as e:
        raise ProductDataError(
            f"Feature {feature_id} value {raw!r} is not numeric",
            {"feature_id": feature_id, "value": raw},
        ) from e


class FeatureCondition(BaseModel):
    """Condition on one feature of a product.

    Attributes:
        feature_id: Feature the condition applies to
        operator: Comparison operator
        value: Expected value (equals, contains, greater_than, less_than)
        min: Lower bound for in_range (inclusive)
        max: Upper bound for in_range (inclusive)
    """

    feature_id: str = Field(..., min_length=1)
    operator: FeatureOperator = FeatureOperator.EXISTS
    value: Optional[str] = None
    min: Optional[float] = None
    max: Optional[float] = None

    model_config = {"frozen": True}

    @field_validator("value", mode="before")
    @classmethod
    def stringify_value(cls, v):
        """Expected values are compared as text; booleans use lowercase."""
        if v is None:
            return v
        return format_token(v)

    @model_validator(mode="after")
    def check_operands(self) -> "FeatureCondition":
        """Ensure the operator has the operands it needs."""
        if self.operator in _VALUE_OPERATORS and self.value is None:
            raise ValueError(f"operator '{self.operator.value}' requires a value")
        if self.operator in _NUMERIC_OPERATORS:
            try:
                float(self.value)
            except ValueError:
                raise ValueError(
                    f"operator '{self.operator.value}' requires a numeric value, got {self.value!r}"
                )
        if self.operator == FeatureOperator.IN_RANGE:
            if self.min is None or self.max is None:
                raise ValueError("operator 'in_range' requires min and max")
            if self.min > self.max:
                raise ValueError("in_range min must not exceed max")
        return self

    def evaluate(self, feature: FeatureValue) -> bool:
        """Check the condition against a single feature value.

        Raises:
            ProductDataError: If a numeric comparison meets a non-numeric value
        """
        if feature.feature_id != self.feature_id:
            return False

        op = self.operator
        raw = feature.value
        if op == FeatureOperator.EXISTS:
            return True
        if raw is None:
            return False
        if op == FeatureOperator.EQUALS:
            if isinstance(raw, bool):
                return format_token(raw) == self.value.lower()
            return format_token(raw) == self.value
        if op == FeatureOperator.CONTAINS:
            return self.value.lower() in str(raw).lower()
        number = _as_float(raw, self.feature_id)
        if op == FeatureOperator.GREATER_THAN:
            return number > float(self.value)
        if op == FeatureOperator.LESS_THAN:
            return number < float(self.value)
        return self.min <= number <= self.max


class ClassificationRule(BaseModel):
    """A configuration-driven classification rule.

    Attributes:
        id: Unique rule identifier
        name: Human-readable rule name
        description: Optional free text
        priority: Lower = applied first; ordering and tie-break metadata only
        taxonomy_code: Target taxonomy code (exclusive with flag_name)
        flag_name: Target flag name (exclusive with taxonomy_code)
        group_codes: Match products whose group is in this set
        class_codes: Match products whose class is in this allow-list
        excluded_class_codes: Reject products whose class is in this list
        text_pattern: Case-insensitive regex searched in the descriptions
        feature_conditions: Conditions that must all hold on the product features
        active: Inactive rules are ignored by the classifier
    """

    id: str = Field(..., min_length=1)
    name: str = ""
    description: Optional[str] = None
    priority: int = 100
    taxonomy_code: Optional[str] = None
    flag_name: Optional[str] = None
    group_codes: FrozenSet[str] = frozenset()
    class_codes: FrozenSet[str] = frozenset()
    excluded_class_codes: FrozenSet[str] = frozenset()
    text_pattern: Optional[str] = None
    feature_conditions: Tuple[FeatureCondition, ...] = ()
    active: bool = True

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "example": {
                "id": "accessories_root",
                "name": "Lighting accessories (excluding drivers)",
                "priority": 20,
                "taxonomy_code": "ACC",
                "group_codes": ["EG000030"],
                "excluded_class_codes": ["EC002710"],
            }
        },
    }

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        """Database rows use integer ids."""
        return v if v is None else str(v)

    @field_validator("text_pattern")
    @classmethod
    def blank_pattern_is_none(cls, v: Optional[str]) -> Optional[str]:
        """An empty pattern is treated as no text matcher."""
        if v is not None and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def check_single_target(self) -> "ClassificationRule":
        """A rule targets exactly one taxonomy code or one flag."""
        if bool(self.taxonomy_code) == bool(self.flag_name):
            raise ValueError("rule must define exactly one of taxonomy_code or flag_name")
        return self

    @property
    def target_kind(self) -> RuleTargetKind:
        return RuleTargetKind.TAXONOMY if self.taxonomy_code else RuleTargetKind.FLAG

    @property
    def target(self) -> str:
        return self.taxonomy_code or self.flag_name

    @property
    def has_positive_matcher(self) -> bool:
        """True if the rule selects products by at least one positive criterion.

        An exclusion list only narrows other matchers and does not count.
        """
        return bool(
            self.group_codes
            or self.class_codes
            or self.text_pattern
            or self.feature_conditions
        )

    @property
    def sort_key(self) -> Tuple[int, str]:
        return (self.priority, self.id)
