"""Unit tests for the search service facade.

Tests cover:
- Rebuild reports and generation numbering
- Configuration changes becoming visible only through a rebuild
- Filter listing, facets, search, count and taxonomy reads
- Facet counts agreeing with query results
- Snapshot publication rules
"""
from concurrent.futures import ThreadPoolExecutor

import pytest

from catalog_search.config import SearchSettings
from catalog_search.errors.exceptions import (
    AttributeSourceError,
    ConfigurationError,
    SnapshotGenerationError,
)
from catalog_search.models import ClassificationRule, FilterSelection, TaxonomyNode
from catalog_search.models.filters import InvalidSelectionError
from catalog_search.services.config_store import build_configuration
from catalog_search.services.search_service import SearchService
from catalog_search.services.snapshot import SearchSnapshot, SnapshotHolder
from catalog_search.sources import InMemoryAttributeSource


@pytest.fixture
def search_settings():
    return SearchSettings(build_workers=2, partition_size=3, default_page_size=24, max_page_size=50)


@pytest.fixture
def service(store, catalog, search_settings):
    return SearchService(store, source=InMemoryAttributeSource(catalog), settings=search_settings)


@pytest.fixture
def built(service):
    service.rebuild()
    return service


class TestRebuild:
    """Test build passes and publication."""

    def test_report_totals(self, service, store):
        report = service.rebuild()

        assert report.generation == 1
        assert report.configuration_version == store.version
        assert report.products_total == 7
        assert report.products_classified == 6
        assert report.products_indexed == 6
        assert report.index_entries == 22
        assert report.skipped_values == 0
        assert report.warnings == []
        assert report.rejected_rules == {}

    def test_generation_increases(self, service):
        assert service.generation == 0

        service.rebuild()
        service.rebuild()

        assert service.generation == 2

    def test_explicit_source_overrides_default(self, service, catalog):
        report = service.rebuild(catalog[:2])

        assert report.products_total == 2

    def test_missing_source_raises(self, store):
        with pytest.raises(AttributeSourceError):
            SearchService(store).rebuild()

    def test_duplicate_products_are_skipped(self, service, catalog):
        report = service.rebuild(catalog + [catalog[0]])

        assert report.duplicate_products == 1
        assert report.products_total == 7

    def test_invalid_rule_is_isolated(self, service, rules, definitions, key_map, taxonomy):
        bad = ClassificationRule(id="broken", flag_name="indoor", text_pattern="indoor(")
        configuration = build_configuration(
            rules + [bad], definitions, key_map, taxonomy, strict=False
        )

        report = service.rebuild(configuration=configuration)

        assert list(report.rejected_rules) == ["broken"]
        assert report.products_classified == 6

    def test_duplicate_rule_ids_fail_the_build(self, rules, definitions, key_map):
        with pytest.raises(ConfigurationError):
            build_configuration(rules + [rules[0]], definitions, key_map, strict=False)

    def test_overlap_warning_is_reported(self, service, rules, definitions, key_map, taxonomy):
        broken = [
            ClassificationRule(id="accessories", taxonomy_code="ACC", group_codes=["EG000030"])
            if r.id == "accessories" else r
            for r in rules
        ]
        configuration = build_configuration(broken, definitions, key_map, taxonomy)

        report = service.rebuild(configuration=configuration)

        assert [w.rule_ids for w in report.warnings] == [("accessories", "drivers")]
        assert service.get_taxonomy_flags("DRV-1").memberships == frozenset({"DRV", "ACC"})

    def test_configuration_change_needs_rebuild(self, built, store):
        store.delete_filter_definition("cct")

        assert "cct" in [d.key for d in built.list_filter_definitions()]

        built.rebuild()

        assert "cct" not in [d.key for d in built.list_filter_definitions()]

    def test_reader_snapshot_is_unaffected_by_rebuild(self, built, store):
        snapshot = built.snapshot
        store.delete_filter_definition("cct")

        built.rebuild()

        assert snapshot.generation == 1
        assert snapshot.index.has_filter("cct")
        assert not built.snapshot.index.has_filter("cct")

    def test_concurrent_rebuilds_are_serialized(self, service):
        with ThreadPoolExecutor(max_workers=4) as pool:
            reports = list(pool.map(lambda _: service.rebuild(), range(5)))

        assert sorted(r.generation for r in reports) == [1, 2, 3, 4, 5]
        assert service.generation == 5

    def test_services_sharing_a_holder_never_collide(self, store, catalog, search_settings):
        """Test rebuilds through two services on one holder all publish."""
        holder = SnapshotHolder()
        services = [
            SearchService(store, source=InMemoryAttributeSource(catalog), settings=search_settings, holder=holder)
            for _ in range(2)
        ]

        with ThreadPoolExecutor(max_workers=4) as pool:
            reports = list(pool.map(lambda i: services[i % 2].rebuild(), range(6)))

        assert sorted(r.generation for r in reports) == [1, 2, 3, 4, 5, 6]
        assert services[0].generation == services[1].generation == 6
        assert services[0].snapshot is services[1].snapshot


class TestFilterListing:
    """Test list_filter_definitions."""

    def test_ordered_by_category_then_order(self, built):
        keys = [d.key for d in built.list_filter_definitions()]

        assert keys == ["cct", "dimmable", "indoor", "outdoor", "ip_rating"]

    def test_coarse_applicability_only(self, built):
        keys = [d.key for d in built.list_filter_definitions("DRV")]

        assert keys == ["dimmable", "indoor", "outdoor"]

    def test_filter_without_values_in_scope_is_listed(self, built):
        facets = built.get_facets("DRV")

        assert "dimmable" in [f.filter_key for f in facets]
        assert next(f for f in facets if f.filter_key == "dimmable").values == []


class TestFacetsAndSearch:
    """Test read operations on the published snapshot."""

    def test_facets_cross_filter(self, built):
        facets = {f.filter_key: f for f in built.get_facets("LUM", {"ip_rating": ["IP65"]})}

        assert facets["ip_rating"].count_for("IP44") == 1
        assert facets["outdoor"].count_for(True) == 2
        assert facets["cct"].summary.min == 3000.0

    def test_facet_counts_match_query_counts(self, built):
        active = {"ip_rating": ["IP65", "IP20"], "indoor": True}

        for facet in built.get_facets("LUM", active):
            others = {k: v for k, v in active.items() if k != facet.filter_key}
            for facet_value in facet.values:
                selection = facet_value.value if isinstance(facet_value.value, bool) else [facet_value.value]
                expected = built.count("LUM", {**others, facet.filter_key: selection})
                assert facet_value.count == expected, (facet.filter_key, facet_value.value)

    def test_facets_respect_text_query(self, built):
        facets = {f.filter_key: f for f in built.get_facets("LUM", text_query="outdoor")}

        assert [(v.value, v.count) for v in facets["ip_rating"].values] == [("IP65", 2)]

    def test_search_with_raw_selections(self, built):
        page = built.search("LUM", {"cct": {"min": 2700, "max": 3000}, "ip_rating": ["IP65"]})

        assert page.product_ids == ["DL-1", "DL-4"]
        assert page.total == 2

    def test_search_accepts_selection_objects(self, built):
        page = built.search("LUM", {"dimmable": FilterSelection.is_(True)})

        assert page.product_ids == ["DL-1"]

    def test_search_pagination(self, built):
        first = built.search("LUM", limit=2)
        second = built.search("LUM", limit=2, offset=2)

        assert first.product_ids == ["DL-1", "DL-2"]
        assert first.has_more
        assert second.product_ids == ["DL-3", "DL-4"]
        assert not second.has_more

    def test_limit_is_clamped(self, built):
        assert built.search(limit=0).limit == 1
        assert built.search(limit=10_000).limit == 50
        assert built.search().limit == 24
        assert built.search(offset=-5).offset == 0

    def test_sort_by_name(self, built):
        page = built.search("LUM", sort_by="name")

        assert page.product_ids == ["DL-3", "DL-2", "DL-1", "DL-4"]

    def test_unknown_sort_order_raises(self, built):
        with pytest.raises(ValueError):
            built.search(sort_by="price")

    def test_text_search(self, built):
        assert built.search(text_query="downlight").product_ids == ["DL-1", "DL-2"]

    def test_invalid_raw_selection_raises(self, built):
        with pytest.raises(InvalidSelectionError):
            built.search("LUM", {"cct": 3000})

    def test_scope_union_and_unknown_scope(self, built):
        assert built.count(["DRV", "ACC"]) == 2
        assert built.count("NOPE") == 0
        assert built.count() == 7

    def test_stale_selection_yields_empty_result(self, built):
        assert built.search("LUM", {"beam_angle": ["30"]}).product_ids == []

    def test_reads_before_first_build_are_empty(self, service):
        assert service.search().product_ids == []
        assert service.get_facets() == []
        assert service.get_statistics()["total_products"] == 0


class TestTaxonomyReads:
    """Test taxonomy tree, flags and statistics."""

    def test_taxonomy_flags(self, built):
        result = built.get_taxonomy_flags("DL-1")

        assert result.memberships == frozenset({"LUM", "LUM_DOWN"})
        assert result.flags == frozenset({"indoor", "outdoor"})

    def test_unknown_product_has_no_flags(self, built):
        result = built.get_taxonomy_flags("NOPE")

        assert result.memberships == frozenset()
        assert result.flags == frozenset()

    def test_taxonomy_tree_counts(self, built):
        tree = [(c.node.code, c.product_count) for c in built.get_taxonomy_tree()]

        assert tree == [("LUM", 4), ("DRV", 1), ("ACC", 1), ("LUM_DOWN", 2), ("LUM_CEIL", 2)]

    def test_taxonomy_tree_hides_empty_and_inactive_nodes(self, service, store):
        store.upsert_taxonomy_node(TaxonomyNode(code="EMPTY", level=0, name="Empty", display_order=9))
        store.upsert_taxonomy_node(TaxonomyNode(code="OLD", level=0, name="Old", active=False))
        service.rebuild()

        with_empty = [c.node.code for c in service.get_taxonomy_tree()]
        without_empty = [c.node.code for c in service.get_taxonomy_tree(include_empty=False)]

        assert "EMPTY" in with_empty
        assert "EMPTY" not in without_empty
        assert "OLD" not in with_empty

    def test_statistics(self, built):
        assert built.get_statistics() == {
            "generation": 1,
            "total_products": 7,
            "classified_products": 6,
            "flagged_products": 4,
            "indexed_products": 6,
            "index_entries": 22,
            "taxonomy_nodes": 5,
            "active_rules": 7,
            "filter_definitions": 5,
        }


class TestSnapshotHolder:
    """Test snapshot publication rules."""

    def test_publish_returns_previous(self):
        holder = SnapshotHolder()
        first = SearchSnapshot(generation=1, built_at=holder.current.built_at, configuration=holder.current.configuration)

        previous = holder.publish(first)

        assert previous.generation == 0
        assert holder.current is first
        assert holder.next_generation() == 2

    def test_generation_must_increase(self):
        holder = SnapshotHolder()

        with pytest.raises(SnapshotGenerationError) as exc_info:
            holder.publish(SearchSnapshot.empty())

        assert exc_info.value.details["current_generation"] == 0
        assert holder.current.generation == 0
