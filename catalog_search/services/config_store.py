"""Configuration store for rules, filter definitions and taxonomy.

Configuration is data: records are validated when they enter the store,
and a build pass loads them once, wholesale, into an immutable
SearchConfiguration. Mutations never reach readers directly; they become
visible only through the next full rebuild.
"""
import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
import structlog

from pydantic import ValidationError as PydanticValidationError

from catalog_search.errors.exceptions import (
    ConfigurationError,
    FilterConfigurationError,
    RuleConfigurationError,
)
from catalog_search.models.filters import FilterDefinition
from catalog_search.models.rules import ClassificationRule
from catalog_search.models.taxonomy import TaxonomyNode
from catalog_search.services.classification.classifier import (
    CompiledRule,
    compile_rule,
    compile_rules,
)
from catalog_search.services.indexing.builder import (
    source_problems,
    validate_filter_configuration,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SearchConfiguration:
    """Validated configuration used by one build pass.

    Attributes:
        rules: Every rule as loaded, ordered by priority
        compiled_rules: Active rules that passed validation
        filter_definitions: Every definition as loaded
        attribute_key_map: filter key -> source identifiers
        taxonomy: code -> taxonomy node
        rejected_rules: rule id -> problems (isolated from the pass)
        rejected_filters: filter key -> problems (isolated from the pass)
        version: Store version the configuration was loaded from
    """
    rules: Tuple[ClassificationRule, ...] = ()
    compiled_rules: Tuple[CompiledRule, ...] = ()
    filter_definitions: Tuple[FilterDefinition, ...] = ()
    attribute_key_map: Mapping[str, Tuple[str, ...]] = field(
        default_factory=lambda: MappingProxyType({})
    )
    taxonomy: Mapping[str, TaxonomyNode] = field(default_factory=lambda: MappingProxyType({}))
    rejected_rules: Mapping[str, List[str]] = field(default_factory=lambda: MappingProxyType({}))
    rejected_filters: Mapping[str, List[str]] = field(default_factory=lambda: MappingProxyType({}))
    version: int = 0

    @property
    def indexable_definitions(self) -> List[FilterDefinition]:
        """Active definitions that can be indexed."""
        return [
            d for d in self.filter_definitions
            if d.active and d.key not in self.rejected_filters
        ]


def build_configuration(
    rules: Iterable[ClassificationRule],
    filter_definitions: Iterable[FilterDefinition],
    attribute_key_map: Mapping[str, Sequence[str]],
    taxonomy: Iterable[TaxonomyNode] = (),
    strict: bool = True,
    version: int = 0,
    invalid_rules: Optional[Mapping[str, List[str]]] = None,
    invalid_filters: Optional[Mapping[str, List[str]]] = None,
) -> SearchConfiguration:
    """Validate configuration records into a SearchConfiguration.

    Args:
        strict: Raise on any invalid rule or filter; when False, invalid
            rules and filters are isolated and reported on the configuration
        invalid_rules: Rules that could not even be parsed (id -> problems)
        invalid_filters: Filters that could not even be parsed (key -> problems)

    Raises:
        ConfigurationError: Duplicate identifiers (always) or invalid records (strict)
    """
    rules = sorted(rules, key=lambda r: r.sort_key)
    definitions = list(filter_definitions)
    key_map = {key: tuple(sources) for key, sources in attribute_key_map.items()}
    nodes: Dict[str, TaxonomyNode] = {}
    for node in taxonomy:
        if node.code in nodes:
            raise ConfigurationError(
                "Duplicate taxonomy codes",
                problems=[f"taxonomy code '{node.code}' is defined more than once"],
            )
        nodes[node.code] = node

    problems: List[str] = []
    try:
        compiled, rejected_rules = compile_rules(rules, strict=False)
    except RuleConfigurationError as e:
        problems.extend(e.problems)
        compiled, rejected_rules = [], {}
    try:
        rejected_filters = validate_filter_configuration(definitions, key_map)
    except FilterConfigurationError as e:
        problems.extend(e.problems)
        rejected_filters = {}
    if problems:
        raise ConfigurationError("Invalid search configuration", problems=problems)
    rejected_rules = {**(invalid_rules or {}), **rejected_rules}
    rejected_filters = {**(invalid_filters or {}), **rejected_filters}

    if strict and (rejected_rules or rejected_filters):
        raise ConfigurationError(
            "Invalid search configuration",
            problems=[
                *[p for ps in rejected_rules.values() for p in ps],
                *[p for ps in rejected_filters.values() for p in ps],
            ],
            details={
                "rule_ids": sorted(rejected_rules),
                "filter_keys": sorted(rejected_filters),
            },
        )
    if invalid_rules:
        logger.error("classification_rules_rejected", rule_ids=sorted(invalid_rules))
    if rejected_filters:
        logger.error(
            "filter_definitions_rejected",
            filter_keys=sorted(rejected_filters),
        )

    return SearchConfiguration(
        rules=tuple(rules),
        compiled_rules=tuple(compiled),
        filter_definitions=tuple(definitions),
        attribute_key_map=MappingProxyType(key_map),
        taxonomy=MappingProxyType(nodes),
        rejected_rules=MappingProxyType(rejected_rules),
        rejected_filters=MappingProxyType(rejected_filters),
        version=version,
    )


class ConfigurationStore:
    """In-memory CRUD over classification and filter configuration.

    Every mutation validates the record eagerly and bumps ``version``.
    """

    def __init__(
        self,
        rules: Iterable[ClassificationRule] = (),
        filter_definitions: Iterable[Tuple[FilterDefinition, Sequence[str]]] = (),
        taxonomy: Iterable[TaxonomyNode] = (),
    ):
        self._lock = threading.RLock()
        self._rules: Dict[str, ClassificationRule] = {}
        self._definitions: Dict[str, FilterDefinition] = {}
        self._sources: Dict[str, Tuple[str, ...]] = {}
        self._taxonomy: Dict[str, TaxonomyNode] = {}
        self._version = 0
        for rule in rules:
            self.upsert_rule(rule)
        for definition, sources in filter_definitions:
            self.upsert_filter_definition(definition, sources)
        for node in taxonomy:
            self.upsert_taxonomy_node(node)
        self._log = logger.bind(component="ConfigurationStore")

    @property
    def version(self) -> int:
        return self._version

    def _bump(self) -> None:
        self._version += 1

    # ---- Classification rules ----

    def upsert_rule(self, rule: ClassificationRule) -> ClassificationRule:
        """Create or replace a rule.

        Raises:
            RuleConfigurationError: If the rule has no matcher or an invalid pattern
        """
        compile_rule(rule)
        with self._lock:
            self._rules[rule.id] = rule
            self._bump()
        return rule

    def get_rule(self, rule_id: str) -> Optional[ClassificationRule]:
        return self._rules.get(rule_id)

    def list_rules(self) -> List[ClassificationRule]:
        with self._lock:
            return sorted(self._rules.values(), key=lambda r: r.sort_key)

    def delete_rule(self, rule_id: str) -> bool:
        with self._lock:
            removed = self._rules.pop(rule_id, None) is not None
            if removed:
                self._bump()
        return removed

    # ---- Filter definitions ----

    def upsert_filter_definition(
        self,
        definition: FilterDefinition,
        sources: Sequence[str],
    ) -> FilterDefinition:
        """Create or replace a filter definition with its attribute mapping.

        Raises:
            FilterConfigurationError: If the mapping is missing or invalid
        """
        problems = source_problems(definition, sources)
        if problems:
            raise FilterConfigurationError(
                f"Invalid filter definition '{definition.key}'",
                problems=problems,
                details={"filter_key": definition.key},
            )
        with self._lock:
            self._definitions[definition.key] = definition
            self._sources[definition.key] = tuple(sources)
            self._bump()
        return definition

    def get_filter_definition(self, key: str) -> Optional[FilterDefinition]:
        return self._definitions.get(key)

    def get_filter_sources(self, key: str) -> Tuple[str, ...]:
        return self._sources.get(key, ())

    def list_filter_definitions(self) -> List[FilterDefinition]:
        with self._lock:
            return sorted(
                self._definitions.values(),
                key=lambda d: (d.display_category, d.display_order, d.key),
            )

    def delete_filter_definition(self, key: str) -> bool:
        with self._lock:
            removed = self._definitions.pop(key, None) is not None
            self._sources.pop(key, None)
            if removed:
                self._bump()
        return removed

    # ---- Taxonomy ----

    def upsert_taxonomy_node(self, node: TaxonomyNode) -> TaxonomyNode:
        with self._lock:
            self._taxonomy[node.code] = node
            self._bump()
        return node

    def list_taxonomy(self) -> List[TaxonomyNode]:
        with self._lock:
            return list(self._taxonomy.values())

    def delete_taxonomy_node(self, code: str) -> bool:
        with self._lock:
            removed = self._taxonomy.pop(code, None) is not None
            if removed:
                self._bump()
        return removed

    def load(self, strict: bool = True) -> SearchConfiguration:
        """Snapshot the store into a validated configuration."""
        with self._lock:
            rules = list(self._rules.values())
            definitions = list(self._definitions.values())
            key_map = dict(self._sources)
            taxonomy = list(self._taxonomy.values())
            version = self._version
        configuration = build_configuration(
            rules, definitions, key_map, taxonomy, strict=strict, version=version
        )
        self._log.info(
            "configuration_loaded",
            version=version,
            rule_count=len(configuration.compiled_rules),
            filter_count=len(configuration.indexable_definitions),
            rejected_rules=len(configuration.rejected_rules),
            rejected_filters=len(configuration.rejected_filters),
        )
        return configuration


def _parse_records(model, records: Iterable[Dict[str, Any]], error_cls, label: str) -> List:
    parsed = []
    problems = []
    for position, record in enumerate(records):
        try:
            parsed.append(model.model_validate(record))
        except PydanticValidationError as e:
            problems.append(f"{label} #{position}: {e.errors()[0]['msg']}")
    if problems:
        raise error_cls(f"Invalid {label} records", problems=problems)
    return parsed


def configuration_from_dict(document: Mapping[str, Any], strict: bool = True) -> SearchConfiguration:
    """Build a configuration from a JSON-shaped document.

    Expected shape::

        {
            "taxonomy": [{"code": "LUM", "name": "Luminaires"}, ...],
            "rules": [{"id": "luminaires_root", "taxonomy_code": "LUM",
                       "group_codes": ["EG000027"], "priority": 10}, ...],
            "filters": [{"key": "cct", "label": "CCT", "value_type": "range",
                         "sources": ["EF009346"]}, ...]
        }

    Raises:
        ConfigurationError: If any record fails validation
    """
    rules = _parse_records(
        ClassificationRule, document.get("rules", []), RuleConfigurationError, "rule"
    )
    taxonomy = _parse_records(
        TaxonomyNode, document.get("taxonomy", []), ConfigurationError, "taxonomy"
    )
    raw_filters = list(document.get("filters", []))
    definitions = _parse_records(
        FilterDefinition,
        [{k: v for k, v in f.items() if k != "sources"} for f in raw_filters],
        FilterConfigurationError,
        "filter",
    )
    key_map = {
        definition.key: tuple(raw.get("sources") or ())
        for definition, raw in zip(definitions, raw_filters)
    }
    return build_configuration(rules, definitions, key_map, taxonomy, strict=strict)


def load_configuration_file(path: Union[str, Path], strict: bool = True) -> SearchConfiguration:
    """Load a configuration document from a JSON file."""
    path = Path(path)
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(
            f"Cannot read configuration file {path}",
            details={"path": str(path), "error": str(e)},
        ) from e
    logger.info("configuration_file_loaded", path=str(path))
    return configuration_from_dict(document, strict=strict)
