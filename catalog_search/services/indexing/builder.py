"""Filter index builder.

Flattens heterogeneous product attributes into uniform filter entries:
one (product, filter_key, value) row per present value, coerced to the
value type declared by the filter definition.

Absence semantics: a product without a mapped attribute contributes no
entry for that filter. Filters are never hidden per taxonomy branch beyond
the coarse applicable_taxonomy_codes check; an empty entry set is what
tells the presentation layer that a filter does not apply.

Source identifiers in the attribute key map:
    - "<feature_id>": technical feature (e.g. EF009346)
    - "flag:<name>": capability flag from classification (boolean filters)
    - "field:<name>": product field (group_code, class_code, supplier_name)
"""
import math
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Set, Tuple
import structlog

from catalog_search.config import search_settings
from catalog_search.errors.exceptions import FilterConfigurationError, ProductDataError
from catalog_search.models.filters import (
    FIELD_SOURCE_PREFIX,
    FLAG_SOURCE_PREFIX,
    PRODUCT_FIELD_SOURCES,
    FilterDefinition,
    FilterIndexEntry,
    FilterValue,
    FilterValueType,
)
from catalog_search.models.product import ProductRecord, format_token
from catalog_search.services.classification.classifier import ClassificationResult
from catalog_search.services.indexing.index import FilterIndex
from catalog_search.services.parallel import map_partitions

logger = structlog.get_logger(__name__)

AttributeKeyMap = Mapping[str, Sequence[str]]

TRUE_TOKENS = {"true", "yes", "1", "y", "on"}
FALSE_TOKENS = {"false", "no", "0", "n", "off"}


def source_problems(definition: FilterDefinition, sources: Optional[Sequence[str]]) -> List[str]:
    """List problems with the attribute mapping of one filter definition."""
    if not sources:
        return [f"filter '{definition.key}' has no source attribute mapping"]
    problems = []
    for source in sources:
        if not source or not source.strip():
            problems.append(f"filter '{definition.key}' has an empty source identifier")
        elif source.startswith(FLAG_SOURCE_PREFIX):
            if definition.value_type != FilterValueType.BOOLEAN:
                problems.append(
                    f"filter '{definition.key}' maps flag source '{source}' but is "
                    f"{definition.value_type.value}, flags need a boolean filter"
                )
            if not source[len(FLAG_SOURCE_PREFIX):]:
                problems.append(f"filter '{definition.key}' has a flag source without a name")
        elif source.startswith(FIELD_SOURCE_PREFIX):
            field_name = source[len(FIELD_SOURCE_PREFIX):]
            if field_name not in PRODUCT_FIELD_SOURCES:
                problems.append(
                    f"filter '{definition.key}' maps unknown product field '{field_name}'"
                )
    return problems


def validate_filter_configuration(
    definitions: Iterable[FilterDefinition],
    key_map: AttributeKeyMap,
) -> Dict[str, List[str]]:
    """Validate definitions against the key map.

    Returns:
        filter key -> problems, for every active definition that cannot be indexed

    Raises:
        FilterConfigurationError: Duplicate filter keys (not isolable)
    """
    definitions = list(definitions)
    keys = [d.key for d in definitions]
    duplicates = sorted({k for k in keys if keys.count(k) > 1})
    if duplicates:
        raise FilterConfigurationError(
            "Duplicate filter keys",
            problems=[f"filter key '{k}' is defined more than once" for k in duplicates],
        )
    rejected: Dict[str, List[str]] = {}
    for definition in definitions:
        if not definition.active:
            continue
        problems = source_problems(definition, key_map.get(definition.key))
        if problems:
            rejected[definition.key] = problems
    return rejected


def coerce_value(raw: Any, value_type: FilterValueType) -> Optional[FilterValue]:
    """Coerce a raw attribute value to a filter value type.

    Returns:
        The coerced value, or None when the value is absent (None or blank)

    Raises:
        ProductDataError: If the value cannot represent the declared type
    """
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None

    if value_type == FilterValueType.RANGE:
        if isinstance(raw, bool):
            raise ProductDataError(f"boolean {raw!r} given for a numeric filter", {"value": raw})
        try:
            number = float(raw.replace(",", ".").strip() if isinstance(raw, str) else raw)
        except (TypeError, ValueError) as e:
            raise ProductDataError(f"value {raw!r} is not numeric", {"value": raw}) from e
        if not math.isfinite(number):
            raise ProductDataError(f"value {raw!r} is not a finite number", {"value": raw})
        return number

    if value_type == FilterValueType.BOOLEAN:
        if isinstance(raw, bool):
            return raw
        if isinstance(raw, (int, float)) and raw in (0, 1):
            return bool(raw)
        token = str(raw).strip().lower()
        if token in TRUE_TOKENS:
            return True
        if token in FALSE_TOKENS:
            return False
        raise ProductDataError(f"value {raw!r} is not a boolean", {"value": raw})

    token = format_token(raw)
    return token or None


@dataclass
class IndexBuildResult:
    """Outcome of one index build pass."""
    index: FilterIndex
    products_indexed: int = 0
    skipped_values: int = 0

    @property
    def entries_created(self) -> int:
        return len(self.index)


@dataclass
class _PartialIndex:
    entries: Set[FilterIndexEntry]
    products_indexed: int = 0
    skipped_values: int = 0


class FilterIndexBuilder:
    """Builds the filter index from products and their classification.

    Attributes:
        definitions: Active, indexable filter definitions
        key_map: filter key -> source identifiers
        rejected: filter key -> problems for definitions left out of the pass
    """

    def __init__(
        self,
        definitions: Iterable[FilterDefinition],
        key_map: AttributeKeyMap,
        workers: Optional[int] = None,
        partition_size: Optional[int] = None,
        index_unclassified: Optional[bool] = None,
        strict: bool = True,
    ):
        """Initialize builder.

        Args:
            definitions: Filter definitions (inactive ones are ignored)
            key_map: filter key -> source identifiers
            workers: Worker threads (default: SEARCH_BUILD_WORKERS)
            partition_size: Products per work unit (default: SEARCH_PARTITION_SIZE)
            index_unclassified: Index products without memberships for universal filters
            strict: Raise on unmapped or badly mapped definitions instead of
                leaving them out of the pass

        Raises:
            FilterConfigurationError: Invalid mappings (strict) or duplicate keys
        """
        definitions = list(definitions)
        self.rejected = validate_filter_configuration(definitions, key_map)
        if self.rejected:
            problems = [p for ps in self.rejected.values() for p in ps]
            if strict:
                raise FilterConfigurationError(
                    "Invalid filter configuration",
                    problems=problems,
                    details={"filter_keys": sorted(self.rejected)},
                )
            logger.error(
                "filter_definitions_rejected",
                filter_keys=sorted(self.rejected),
                problems=problems,
            )
        self.definitions: List[FilterDefinition] = [
            d for d in definitions if d.active and d.key not in self.rejected
        ]
        self.key_map: Dict[str, Tuple[str, ...]] = {
            d.key: tuple(key_map[d.key]) for d in self.definitions
        }
        self.workers = workers or search_settings.build_workers
        self.partition_size = partition_size or search_settings.partition_size
        self.index_unclassified = (
            search_settings.index_unclassified_products
            if index_unclassified is None else index_unclassified
        )
        self._log = logger.bind(component="FilterIndexBuilder")

    def _raw_values(
        self,
        product: ProductRecord,
        source: str,
        flags: FrozenSet[str],
    ) -> List[Any]:
        if source.startswith(FLAG_SOURCE_PREFIX):
            return [source[len(FLAG_SOURCE_PREFIX):] in flags]
        if source.startswith(FIELD_SOURCE_PREFIX):
            return [getattr(product, source[len(FIELD_SOURCE_PREFIX):])]
        return [feature.value for feature in product.feature_values(source)]

    def entries_for_product(
        self,
        product: ProductRecord,
        memberships: FrozenSet[str],
        flags: FrozenSet[str] = frozenset(),
    ) -> Tuple[List[FilterIndexEntry], int]:
        """Build the entries of one product.

        Returns:
            (entries, number of values skipped because they could not be coerced)
        """
        if not memberships and not self.index_unclassified:
            return [], 0

        entries: Dict[Tuple[str, FilterValue, type], FilterIndexEntry] = {}
        skipped = 0
        for definition in self.definitions:
            if not definition.applies_to(memberships):
                continue
            for source in self.key_map[definition.key]:
                for raw in self._raw_values(product, source, flags):
                    try:
                        value = coerce_value(raw, definition.value_type)
                    except ProductDataError as e:
                        skipped += 1
                        self._log.warning(
                            "filter_value_coercion_failed",
                            product_id=product.product_id,
                            filter_key=definition.key,
                            source=source,
                            error=e.message,
                        )
                        continue
                    if value is None:
                        continue
                    entries[(definition.key, value, type(value))] = FilterIndexEntry(
                        product_id=product.product_id,
                        filter_key=definition.key,
                        value=value,
                    )
        return list(entries.values()), skipped

    def _build_partition(
        self,
        chunk: Sequence[Tuple[ProductRecord, FrozenSet[str], FrozenSet[str]]],
    ) -> _PartialIndex:
        partial = _PartialIndex(entries=set())
        for product, memberships, flags in chunk:
            try:
                entries, skipped = self.entries_for_product(product, memberships, flags)
            except Exception as e:
                partial.skipped_values += 1
                self._log.error(
                    "product_indexing_failed",
                    product_id=product.product_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue
            partial.skipped_values += skipped
            if entries:
                partial.products_indexed += 1
                partial.entries.update(entries)
        return partial

    def build(
        self,
        products: Iterable[ProductRecord],
        classification: ClassificationResult,
    ) -> IndexBuildResult:
        """Run the index build pass."""
        work = [
            (
                product,
                classification.memberships_for(product.product_id),
                classification.flags_for(product.product_id),
            )
            for product in products
        ]
        self._log.info(
            "index_build_started",
            product_count=len(work),
            filter_count=len(self.definitions),
        )

        entries: Set[FilterIndexEntry] = set()
        products_indexed = 0
        skipped_values = 0
        for partial in map_partitions(
            self._build_partition, work, self.workers, self.partition_size
        ):
            entries |= partial.entries
            products_indexed += partial.products_indexed
            skipped_values += partial.skipped_values

        result = IndexBuildResult(
            index=FilterIndex(entries),
            products_indexed=products_indexed,
            skipped_values=skipped_values,
        )
        self._log.info(
            "index_build_completed",
            entries_created=result.entries_created,
            products_indexed=products_indexed,
            skipped_values=skipped_values,
        )
        return result


def build_index(
    products: Iterable[ProductRecord],
    classification: ClassificationResult,
    definitions: Iterable[FilterDefinition],
    key_map: AttributeKeyMap,
) -> FilterIndex:
    """Build the filter index with the configured build settings."""
    return FilterIndexBuilder(definitions, key_map).build(products, classification).index
