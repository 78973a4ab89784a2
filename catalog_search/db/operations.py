"""Database operations loading catalog products and search configuration.

Rows are translated into the immutable domain records used by the build
pass. A malformed product row is logged and skipped; a malformed
configuration row is rejected like any other invalid rule or filter.
"""
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Any, Dict, List, Optional, Tuple
import structlog

from pydantic import ValidationError as PydanticValidationError

from catalog_search.db.models.classification_rule import ClassificationRuleEntry
from catalog_search.db.models.filter_definition import FilterDefinitionEntry
from catalog_search.db.models.product_info import ProductInfo
from catalog_search.db.models.taxonomy import TaxonomyEntry
from catalog_search.errors.exceptions import (
    DatabaseError,
    FilterConfigurationError,
    RuleConfigurationError,
)
from catalog_search.models.filters import FilterDefinition, FilterValueType
from catalog_search.models.product import FeatureValue, FeatureValueType, ProductRecord
from catalog_search.models.rules import ClassificationRule, FeatureCondition
from catalog_search.models.taxonomy import TaxonomyNode
from catalog_search.services.config_store import SearchConfiguration, build_configuration

logger = structlog.get_logger(__name__)

# Historical filter_type names used by the configuration tables
FILTER_TYPE_MAP = {
    "numeric_range": FilterValueType.RANGE,
    "range": FilterValueType.RANGE,
    "alphanumeric": FilterValueType.MULTI_SELECT,
    "multi-select": FilterValueType.MULTI_SELECT,
    "boolean": FilterValueType.BOOLEAN,
}


def feature_from_json(raw: Dict[str, Any]) -> Optional[FeatureValue]:
    """Translate one element of product_info.features.

    The numeric slot wins over the boolean slot, which wins over text;
    elements without any value are dropped.
    """
    feature_id = raw.get("FEATUREID") or raw.get("id") or raw.get("feature_id")
    if not feature_id:
        return None
    unit = raw.get("unit_abbrev") or raw.get("unit")
    if raw.get("fvalueN") is not None:
        return FeatureValue(
            feature_id=feature_id,
            value_type=FeatureValueType.NUMERIC,
            value=raw["fvalueN"],
            unit=unit,
        )
    if raw.get("fvalueB") is not None:
        return FeatureValue(
            feature_id=feature_id,
            value_type=FeatureValueType.BOOLEAN,
            value=raw["fvalueB"],
            unit=unit,
        )
    text = raw.get("fvalueC_desc") or raw.get("fvalueC")
    if text is not None:
        return FeatureValue(
            feature_id=feature_id,
            value_type=FeatureValueType.ALPHANUMERIC,
            value=text,
            unit=unit,
        )
    if "value" in raw:
        return FeatureValue(
            feature_id=feature_id,
            value_type=raw.get("value_type", FeatureValueType.ALPHANUMERIC),
            value=raw["value"],
            unit=unit,
        )
    return None


def product_from_row(row: ProductInfo) -> ProductRecord:
    """Build a ProductRecord from a product_info row.

    Raises:
        pydantic.ValidationError: If the row cannot form a valid record
    """
    features = []
    for raw in row.features or []:
        if not isinstance(raw, dict):
            continue
        feature = feature_from_json(raw)
        if feature is not None:
            features.append(feature)
    return ProductRecord(
        product_id=row.product_id,
        group_code=row.group_code,
        class_code=row.class_code,
        features=tuple(features),
        description_short=row.description_short,
        description_long=row.description_long,
        supplier_name=row.supplier_name,
    )


def _conditions_from_json(raw: Any) -> List[Dict[str, Any]]:
    """Accept both {"EF006760": {"operator": "exists"}} and a list of conditions."""
    if not raw:
        return []
    if isinstance(raw, dict):
        return [
            {"feature_id": feature_id, **(condition if isinstance(condition, dict) else {"operator": condition})}
            for feature_id, condition in raw.items()
        ]
    return list(raw)


def rule_from_row(row: ClassificationRuleEntry) -> ClassificationRule:
    return ClassificationRule(
        id=row.rule_name,
        name=row.rule_name,
        description=row.description,
        priority=row.priority,
        taxonomy_code=row.taxonomy_code,
        flag_name=row.flag_name,
        group_codes=frozenset(row.group_codes or ()),
        class_codes=frozenset(row.class_codes or ()),
        excluded_class_codes=frozenset(row.excluded_class_codes or ()),
        text_pattern=row.text_pattern,
        feature_conditions=tuple(
            FeatureCondition.model_validate(c)
            for c in _conditions_from_json(row.feature_conditions)
        ),
        active=row.active,
    )


def filter_from_row(row: FilterDefinitionEntry) -> Tuple[FilterDefinition, Tuple[str, ...]]:
    """Build a FilterDefinition and its source identifiers from a row.

    Raises:
        FilterConfigurationError: If filter_type is unknown
    """
    value_type = FILTER_TYPE_MAP.get(row.filter_type)
    if value_type is None:
        raise FilterConfigurationError(
            f"Unknown filter type '{row.filter_type}'",
            problems=[f"filter '{row.filter_key}' has unknown type '{row.filter_type}'"],
            details={"filter_key": row.filter_key},
        )
    ui_config = row.ui_config or {}
    definition = FilterDefinition(
        key=row.filter_key,
        label=row.label,
        value_type=value_type,
        applicable_taxonomy_codes=row.applicable_taxonomy_codes,
        display_category=ui_config.get("filter_category") or "other",
        display_order=row.display_order,
        unit=row.unit or ui_config.get("unit"),
        description=row.description,
        active=row.active,
    )
    return definition, tuple(mapping.source_id for mapping in row.sources)


async def load_product_records(session: AsyncSession) -> List[ProductRecord]:
    """Load every catalog product.

    Raises:
        DatabaseError: If the query fails
    """
    try:
        result = await session.execute(select(ProductInfo).order_by(ProductInfo.product_id))
        rows = result.scalars().all()
    except SQLAlchemyError as e:
        logger.error("load_product_records_failed", error=str(e), error_type=type(e).__name__)
        raise DatabaseError(f"Failed to load product records: {e}") from e

    products: List[ProductRecord] = []
    for row in rows:
        try:
            products.append(product_from_row(row))
        except PydanticValidationError as e:
            logger.warning(
                "product_row_invalid",
                product_id=getattr(row, "product_id", None),
                error=str(e.errors()[0]["msg"]),
            )
    logger.info(
        "product_records_loaded",
        total_rows=len(rows),
        valid_records=len(products),
        failed_rows=len(rows) - len(products),
    )
    return products


async def _fetch_rule_rows(session: AsyncSession) -> List[ClassificationRuleEntry]:
    try:
        result = await session.execute(
            select(ClassificationRuleEntry).order_by(
                ClassificationRuleEntry.priority, ClassificationRuleEntry.rule_name
            )
        )
        return result.scalars().all()
    except SQLAlchemyError as e:
        logger.error("load_classification_rules_failed", error=str(e), error_type=type(e).__name__)
        raise DatabaseError(f"Failed to load classification rules: {e}") from e


def rules_from_rows(rows) -> Tuple[List[ClassificationRule], Dict[str, List[str]]]:
    """Convert rule rows, collecting rows that cannot form a valid rule.

    Returns:
        (valid rules, rule name -> problems)
    """
    rules: List[ClassificationRule] = []
    rejected: Dict[str, List[str]] = {}
    for row in rows:
        try:
            rules.append(rule_from_row(row))
        except PydanticValidationError as e:
            rejected.setdefault(row.rule_name, []).append(
                f"rule '{row.rule_name}': {e.errors()[0]['msg']}"
            )
    return rules, rejected


async def load_classification_rules(session: AsyncSession) -> List[ClassificationRule]:
    """Load every stored classification rule (active and inactive).

    Raises:
        DatabaseError: If the query fails
        RuleConfigurationError: If a row cannot form a valid rule
    """
    rules, rejected = rules_from_rows(await _fetch_rule_rows(session))
    if rejected:
        raise RuleConfigurationError(
            "Invalid classification rule rows",
            problems=[p for problems in rejected.values() for p in problems],
        )
    return rules


async def _fetch_filter_rows(session: AsyncSession) -> List[FilterDefinitionEntry]:
    try:
        result = await session.execute(
            select(FilterDefinitionEntry).order_by(
                FilterDefinitionEntry.display_order, FilterDefinitionEntry.filter_key
            )
        )
        return result.scalars().all()
    except SQLAlchemyError as e:
        logger.error("load_filter_definitions_failed", error=str(e), error_type=type(e).__name__)
        raise DatabaseError(f"Failed to load filter definitions: {e}") from e


def filters_from_rows(
    rows,
) -> Tuple[List[FilterDefinition], Dict[str, Tuple[str, ...]], Dict[str, List[str]]]:
    """Convert filter rows, collecting rows that cannot form a valid definition.

    Returns:
        (definitions, filter key -> source identifiers, filter key -> problems)
    """
    definitions: List[FilterDefinition] = []
    key_map: Dict[str, Tuple[str, ...]] = {}
    rejected: Dict[str, List[str]] = {}
    for row in rows:
        try:
            definition, sources = filter_from_row(row)
        except FilterConfigurationError as e:
            rejected.setdefault(row.filter_key, []).extend(e.problems)
            continue
        except PydanticValidationError as e:
            rejected.setdefault(row.filter_key, []).append(
                f"filter '{row.filter_key}': {e.errors()[0]['msg']}"
            )
            continue
        definitions.append(definition)
        key_map[definition.key] = sources
    return definitions, key_map, rejected


async def load_filter_definitions(
    session: AsyncSession,
) -> Tuple[List[FilterDefinition], Dict[str, Tuple[str, ...]]]:
    """Load filter definitions with their attribute key map.

    Returns:
        (definitions, filter key -> source identifiers)

    Raises:
        DatabaseError: If the query fails
        FilterConfigurationError: If a row cannot form a valid definition
    """
    definitions, key_map, rejected = filters_from_rows(await _fetch_filter_rows(session))
    if rejected:
        raise FilterConfigurationError(
            "Invalid filter definition rows",
            problems=[p for problems in rejected.values() for p in problems],
        )
    return definitions, key_map


async def load_taxonomy(session: AsyncSession) -> List[TaxonomyNode]:
    """Load taxonomy nodes.

    Raises:
        DatabaseError: If the query fails
    """
    try:
        result = await session.execute(
            select(TaxonomyEntry).order_by(TaxonomyEntry.level, TaxonomyEntry.display_order)
        )
        rows = result.scalars().all()
    except SQLAlchemyError as e:
        logger.error("load_taxonomy_failed", error=str(e), error_type=type(e).__name__)
        raise DatabaseError(f"Failed to load taxonomy: {e}") from e

    return [
        TaxonomyNode(
            code=row.code,
            parent_code=row.parent_code,
            level=row.level,
            name=row.name,
            display_order=row.display_order,
            icon=row.icon,
            active=row.active,
        )
        for row in rows
    ]


async def load_search_configuration(
    session: AsyncSession,
    strict: bool = False,
) -> SearchConfiguration:
    """Load rules, filters and taxonomy into one validated configuration.

    Rows that cannot be parsed are treated like any other invalid rule or
    filter: isolated and reported when lenient, raised together when strict.

    Raises:
        DatabaseError: If a query fails
        ConfigurationError: Duplicate identifiers, or any invalid row when strict
    """
    rules, invalid_rules = rules_from_rows(await _fetch_rule_rows(session))
    definitions, key_map, invalid_filters = filters_from_rows(await _fetch_filter_rows(session))
    taxonomy = await load_taxonomy(session)
    if invalid_rules or invalid_filters:
        logger.error(
            "search_configuration_rows_invalid",
            rule_names=sorted(invalid_rules),
            filter_keys=sorted(invalid_filters),
            strict=strict,
        )

    return build_configuration(
        rules,
        definitions,
        key_map,
        taxonomy,
        strict=strict,
        invalid_rules=invalid_rules,
        invalid_filters=invalid_filters,
    )
