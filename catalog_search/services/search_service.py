"""Search service facade.

Ties the build passes and the read paths together:

    rebuild():  configuration (loaded once) -> classification -> filter index
                -> overlap warnings -> publish snapshot
    reads:      every request grabs the current snapshot once and answers
                entirely from it, so a concurrent rebuild is never observed
                half way

Example:
    service = SearchService(store, source=InMemoryAttributeSource(products))
    service.rebuild()
    page = service.search("LUM", {"ip_rating": ["IP65"]}, sort_by="name")
    facets = service.get_facets("LUM", {"ip_rating": ["IP65"]})
"""
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Union
import structlog

from catalog_search.config import SearchSettings, search_settings
from catalog_search.errors.exceptions import AttributeSourceError
from catalog_search.models.filters import (
    FilterDefinition,
    FilterFacet,
    FilterSelection,
    parse_selections,
)
from catalog_search.models.product import ProductRecord
from catalog_search.models.taxonomy import TaxonomyCount, order_tree
from catalog_search.services.classification.classifier import RuleClassifier
from catalog_search.services.classification.validation import (
    ConfigurationWarning,
    find_rule_overlaps,
    observed_class_vocabulary,
)
from catalog_search.services.config_store import ConfigurationStore, SearchConfiguration
from catalog_search.services.facets.aggregator import FacetAggregator
from catalog_search.services.indexing.builder import FilterIndexBuilder
from catalog_search.services.query.evaluator import QueryEvaluator, SearchPage, SortOrder
from catalog_search.services.snapshot import Scope, SearchSnapshot, SnapshotHolder

logger = structlog.get_logger(__name__)

RawSelections = Optional[Mapping[str, Any]]


@dataclass
class BuildReport:
    """Summary of one rebuild."""
    generation: int
    configuration_version: int
    products_total: int = 0
    products_classified: int = 0
    skipped_products: int = 0
    skipped_evaluations: int = 0
    duplicate_products: int = 0
    index_entries: int = 0
    products_indexed: int = 0
    skipped_values: int = 0
    warnings: List[ConfigurationWarning] = field(default_factory=list)
    rejected_rules: Dict[str, List[str]] = field(default_factory=dict)
    rejected_filters: Dict[str, List[str]] = field(default_factory=dict)
    duration_seconds: float = 0.0


@dataclass(frozen=True)
class ProductTaxonomy:
    """Memberships and flags of one product."""
    product_id: str
    memberships: FrozenSet[str] = frozenset()
    flags: FrozenSet[str] = frozenset()


def _scope_codes(scope: Scope) -> Optional[FrozenSet[str]]:
    if scope is None or scope == "":
        return None
    if isinstance(scope, str):
        return frozenset([scope])
    return frozenset(scope)


class SearchService:
    """Faceted classification and search over a published snapshot."""

    def __init__(
        self,
        store: Optional[ConfigurationStore] = None,
        source: Optional[Any] = None,
        settings: Optional[SearchSettings] = None,
        holder: Optional[SnapshotHolder] = None,
    ):
        """Initialize service.

        Args:
            store: Configuration store read at every rebuild
            source: Default attribute source (anything with iter_products())
            settings: Search settings (default: global search_settings)
            holder: Snapshot holder, shared when several services serve one snapshot;
                rebuilds through any of them are serialized on the holder
        """
        self.store = store or ConfigurationStore()
        self.source = source
        self.settings = settings or search_settings
        self.holder = holder or SnapshotHolder()
        self.evaluator = QueryEvaluator(score_cutoff=self.settings.text_rank_scorer_cutoff)
        self.aggregator = FacetAggregator(histogram_buckets=self.settings.histogram_buckets)
        self._log = logger.bind(component="SearchService")

    @property
    def snapshot(self) -> SearchSnapshot:
        return self.holder.current

    @property
    def generation(self) -> int:
        return self.holder.current.generation

    # ---- Build ----

    def _read_products(self, source: Any) -> List[ProductRecord]:
        if source is None:
            raise AttributeSourceError("No attribute source configured for rebuild")
        if hasattr(source, "iter_products"):
            return list(source.iter_products())
        return list(source)

    def rebuild(
        self,
        source: Optional[Union[Any, Iterable[ProductRecord]]] = None,
        configuration: Optional[SearchConfiguration] = None,
    ) -> BuildReport:
        """Recompute classification and filter index, then publish.

        Configuration is loaded once for the whole pass; invalid rules and
        filters are isolated and reported instead of failing the build.

        Args:
            source: Attribute source or product iterable (default: self.source)
            configuration: Pre-loaded configuration (default: store.load(strict=False))

        Raises:
            ConfigurationError: Duplicate rule ids or filter keys
            AttributeSourceError: If no source is available
            SnapshotGenerationError: If publication would not advance the generation
        """
        with self.holder.build_lock:
            started = time.monotonic()
            configuration = configuration or self.store.load(strict=False)
            generation = self.holder.next_generation()
            log = self._log.bind(generation=generation, configuration_version=configuration.version)
            log.info("search_rebuild_started")

            products: List[ProductRecord] = []
            seen = set()
            duplicates = 0
            for product in self._read_products(source if source is not None else self.source):
                if product.product_id in seen:
                    duplicates += 1
                    log.warning("duplicate_product_skipped", product_id=product.product_id)
                    continue
                seen.add(product.product_id)
                products.append(product)

            classifier = RuleClassifier(
                configuration.compiled_rules,
                workers=self.settings.build_workers,
                partition_size=self.settings.partition_size,
            )
            classification = classifier.classify(products)

            builder = FilterIndexBuilder(
                configuration.indexable_definitions,
                configuration.attribute_key_map,
                workers=self.settings.build_workers,
                partition_size=self.settings.partition_size,
                index_unclassified=self.settings.index_unclassified_products,
            )
            index_result = builder.build(products, classification)

            warnings = find_rule_overlaps(
                [compiled.rule for compiled in configuration.compiled_rules],
                vocabulary=observed_class_vocabulary(products),
                taxonomy=configuration.taxonomy,
            )

            snapshot = SearchSnapshot(
                generation=generation,
                built_at=datetime.now(timezone.utc),
                configuration=configuration,
                product_ids=frozenset(seen),
                texts=MappingProxyType({
                    p.product_id: f"{p.description_short}\n{p.description_long}".strip()
                    for p in products
                }),
                names=MappingProxyType({p.product_id: p.description_short for p in products}),
                classification=classification,
                index=index_result.index,
                members_by_code=MappingProxyType(classification.members_by_code()),
            )
            self.holder.publish(snapshot)

            report = BuildReport(
                generation=generation,
                configuration_version=configuration.version,
                products_total=len(products),
                products_classified=classification.classified_count,
                skipped_products=classification.skipped_products,
                skipped_evaluations=classification.skipped_evaluations,
                duplicate_products=duplicates,
                index_entries=index_result.entries_created,
                products_indexed=index_result.products_indexed,
                skipped_values=index_result.skipped_values,
                warnings=warnings,
                rejected_rules=dict(configuration.rejected_rules),
                rejected_filters=dict(configuration.rejected_filters),
                duration_seconds=round(time.monotonic() - started, 3),
            )
            log.info(
                "search_rebuild_completed",
                products_total=report.products_total,
                products_classified=report.products_classified,
                index_entries=report.index_entries,
                warnings=len(report.warnings),
                rejected_rules=len(report.rejected_rules),
                rejected_filters=len(report.rejected_filters),
                duration_seconds=report.duration_seconds,
            )
            return report

    # ---- Reads ----

    def _selections(self, raw: RawSelections) -> Dict[str, FilterSelection]:
        return parse_selections(raw)

    def _scope_ids(self, snap: SearchSnapshot, scope: Scope, text_query: Optional[str]) -> FrozenSet[str]:
        scope_ids = snap.scope_ids(scope)
        if text_query and text_query.strip():
            scope_ids = frozenset(self.evaluator.text_scores(scope_ids, snap.texts, text_query))
        return scope_ids

    def _definitions(self, snap: SearchSnapshot, scope: Scope) -> List[FilterDefinition]:
        codes = _scope_codes(scope)
        definitions = [
            d for d in snap.configuration.indexable_definitions
            if codes is None or d.applies_to(codes)
        ]
        return sorted(definitions, key=lambda d: (d.display_category, d.display_order, d.key))

    def list_filter_definitions(self, scope: Scope = None) -> List[FilterDefinition]:
        """Filters offered for a taxonomy scope, ordered by category then order.

        Only the coarse applicability check is applied; a filter with no
        values in the scope is still listed.
        """
        return self._definitions(self.holder.current, scope)

    def get_facets(
        self,
        scope: Scope = None,
        active_selections: RawSelections = None,
        text_query: Optional[str] = None,
    ) -> List[FilterFacet]:
        """Cross-filtered facet counts for every filter offered in the scope."""
        snap = self.holder.current
        selections = self._selections(active_selections)
        scope_ids = self._scope_ids(snap, scope, text_query)
        return self.aggregator.compute_facets(
            snap.index, scope_ids, selections, self._definitions(snap, scope)
        )

    def _ordered_ids(
        self,
        snap: SearchSnapshot,
        scope: Scope,
        selections: RawSelections,
        text_query: Optional[str],
        sort_by: SortOrder,
    ) -> List[str]:
        ids = self.evaluator.query(
            snap.index,
            snap.scope_ids(scope),
            self._selections(selections),
            text_query=text_query,
            texts=snap.texts,
        )
        if sort_by == SortOrder.NAME:
            return sorted(ids, key=lambda pid: (snap.names.get(pid, "").lower(), pid))
        if sort_by == SortOrder.PRODUCT_ID:
            return sorted(ids)
        return ids

    def search(
        self,
        scope: Scope = None,
        selections: RawSelections = None,
        text_query: Optional[str] = None,
        sort_by: Union[SortOrder, str] = SortOrder.RELEVANCE,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> SearchPage:
        """Find products in a scope matching the selections and text query.

        Args:
            scope: Taxonomy code, codes, or None for the whole catalog
            selections: filter_key -> FilterSelection or raw JSON filter values
            text_query: Optional free text; every token must occur in the descriptions
            sort_by: relevance (default), name or product_id
            limit: Page size (default SEARCH_DEFAULT_PAGE_SIZE, capped at SEARCH_MAX_PAGE_SIZE)
            offset: Offset of the first result

        Raises:
            InvalidSelectionError: If a raw selection cannot be interpreted
            ValueError: If sort_by is unknown
        """
        sort_by = SortOrder(sort_by)
        if limit is None:
            limit = self.settings.default_page_size
        limit = max(1, min(limit, self.settings.max_page_size))
        offset = max(0, offset)

        snap = self.holder.current
        ids = self._ordered_ids(snap, scope, selections, text_query, sort_by)
        page = SearchPage(
            product_ids=ids[offset:offset + limit],
            total=len(ids),
            limit=limit,
            offset=offset,
        )
        self._log.debug(
            "search_executed",
            generation=snap.generation,
            scope=scope if isinstance(scope, (str, type(None))) else sorted(scope),
            total=page.total,
            returned=len(page.product_ids),
        )
        return page

    def count(
        self,
        scope: Scope = None,
        selections: RawSelections = None,
        text_query: Optional[str] = None,
    ) -> int:
        """Number of products a search would return."""
        snap = self.holder.current
        return len(self.evaluator.query(
            snap.index,
            snap.scope_ids(scope),
            self._selections(selections),
            text_query=text_query,
            texts=snap.texts,
        ))

    def get_taxonomy_flags(self, product_id: str) -> ProductTaxonomy:
        """Memberships and flags of a product; empty for unknown products."""
        snap = self.holder.current
        product_id = str(product_id)
        return ProductTaxonomy(
            product_id=product_id,
            memberships=snap.classification.memberships_for(product_id),
            flags=snap.classification.flags_for(product_id),
        )

    def get_taxonomy_tree(self, include_empty: bool = True) -> List[TaxonomyCount]:
        """Active taxonomy nodes with their member product counts."""
        snap = self.holder.current
        counts = []
        for node in order_tree(snap.configuration.taxonomy.values()):
            if not node.active:
                continue
            product_count = len(snap.members_by_code.get(node.code, frozenset()))
            if product_count == 0 and not include_empty:
                continue
            counts.append(TaxonomyCount(node=node, product_count=product_count))
        return counts

    def get_statistics(self) -> Dict[str, int]:
        """Totals of the published snapshot."""
        snap = self.holder.current
        configuration = snap.configuration
        flagged = sum(1 for flags in snap.classification.flags.values() if flags)
        return {
            "generation": snap.generation,
            "total_products": len(snap.product_ids),
            "classified_products": snap.classification.classified_count,
            "flagged_products": flagged,
            "indexed_products": len(frozenset(e.product_id for e in snap.index)),
            "index_entries": len(snap.index),
            "taxonomy_nodes": sum(1 for n in configuration.taxonomy.values() if n.active),
            "active_rules": len(configuration.compiled_rules),
            "filter_definitions": len(configuration.indexable_definitions),
        }
