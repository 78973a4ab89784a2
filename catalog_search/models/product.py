"""Pydantic models for catalog products as supplied by the attribute source.

A product is an immutable bag of typed technical features plus free-text
descriptions. Feature values are kept raw: coercion to the type a filter
expects happens in the index builder, so that one malformed value only
affects the filter entries of that product.
"""
from enum import Enum
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator


class FeatureValueType(str, Enum):
    """Declared type of a technical feature value."""
    NUMERIC = "numeric"
    ALPHANUMERIC = "alphanumeric"
    BOOLEAN = "boolean"


def format_token(raw: Any) -> str:
    """Render a raw value as the text token stored in the filter index.

    Integral floats drop their fraction (24.0 -> "24") and booleans are
    lowercase, so equal values always produce equal tokens.
    """
    if isinstance(raw, bool):
        return "true" if raw else "false"
    if isinstance(raw, float) and raw.is_integer():
        return str(int(raw))
    return str(raw).strip()


class FeatureValue(BaseModel):
    """One typed technical attribute of a product.

    Attributes:
        feature_id: Feature identifier from the technical vocabulary (e.g. EF009346)
        value_type: Declared type of the value
        value: Raw value as delivered by the source
        unit: Optional unit abbreviation (e.g. "K", "W")
    """

    feature_id: str = Field(..., min_length=1)
    value_type: FeatureValueType = FeatureValueType.ALPHANUMERIC
    value: Any = None
    unit: Optional[str] = None

    model_config = {"frozen": True}


class ProductRecord(BaseModel):
    """Immutable product attribute record.

    Attributes:
        product_id: Stable opaque identifier
        group_code: Technical group (coarse level of the classification vocabulary)
        class_code: Technical class (subdivision within a group)
        features: Typed feature values, possibly several per feature id
        description_short: Short description text
        description_long: Long description text
        supplier_name: Optional supplier label
    """

    product_id: str = Field(..., min_length=1)
    group_code: Optional[str] = None
    class_code: Optional[str] = None
    features: Tuple[FeatureValue, ...] = ()
    description_short: str = ""
    description_long: str = ""
    supplier_name: Optional[str] = None

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "example": {
                "product_id": "DT-102-0931",
                "group_code": "EG000027",
                "class_code": "EC001744",
                "features": [
                    {"feature_id": "EF009346", "value_type": "numeric", "value": 3000, "unit": "K"},
                    {"feature_id": "EF005474", "value_type": "alphanumeric", "value": "IP65"},
                ],
                "description_short": "Indoor/Outdoor LED spot",
                "description_long": "Recessed downlight, 12W, 3000K",
            }
        },
    }

    @field_validator("product_id", mode="before")
    @classmethod
    def coerce_product_id(cls, v: Any) -> str:
        """Accept integer and UUID identifiers from the catalog."""
        if v is None:
            return v
        return str(v)

    @field_validator("description_short", "description_long", mode="before")
    @classmethod
    def empty_description(cls, v: Any) -> str:
        """Missing descriptions are stored as empty text."""
        return "" if v is None else v

    def feature_values(self, feature_id: str) -> List[FeatureValue]:
        """Get every value this product carries for a feature id."""
        return [f for f in self.features if f.feature_id == feature_id]

    @property
    def descriptions(self) -> Tuple[str, str]:
        """Short and long description fields."""
        return (self.description_short, self.description_long)
