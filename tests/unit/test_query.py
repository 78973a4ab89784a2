"""Unit tests for query evaluation.

Tests cover:
- OR within a filter, AND across filters
- Inclusive numeric ranges and open bounds
- Stale filter keys failing soft
- Text queries (token containment and relevance ordering)
"""
import pytest

from catalog_search.models import FilterSelection
from catalog_search.services.classification import classify
from catalog_search.services.indexing import FilterIndex, build_index
from catalog_search.services.query import QueryEvaluator, SearchPage, query_products, tokenize


@pytest.fixture
def indexed(catalog, rules, definitions, key_map):
    classification = classify(catalog, rules)
    index = build_index(catalog, classification, definitions, key_map)
    texts = {
        p.product_id: f"{p.description_short}\n{p.description_long}".strip() for p in catalog
    }
    return index, classification.members_by_code(), texts


class TestFilterSemantics:
    """Test exact filter matching."""

    def test_values_combine_with_or(self, indexed):
        index, members, _ = indexed

        result = query_products(index, members["LUM"], {"ip_rating": FilterSelection.of_values("IP65", "IP44")})

        assert result == ["DL-1", "DL-2", "DL-4"]

    def test_range_is_inclusive(self, indexed):
        index, members, _ = indexed

        result = query_products(index, members["LUM"], {"cct": FilterSelection.in_range(2700, 3000)})

        assert result == ["DL-1", "DL-3", "DL-4"]

    def test_open_range_bound(self, indexed):
        index, members, _ = indexed

        assert query_products(index, members["LUM"], {"cct": FilterSelection.in_range(min=3500)}) == ["DL-2"]
        assert query_products(index, members["LUM"], {"cct": FilterSelection.in_range(max=2700)}) == ["DL-3"]

    def test_filters_combine_with_and(self, indexed):
        index, members, _ = indexed

        result = query_products(index, members["LUM"], {
            "ip_rating": FilterSelection.of_values("IP65", "IP44"),
            "cct": FilterSelection.in_range(2700, 3000),
        })

        assert result == ["DL-1", "DL-4"]

    def test_boolean_equality(self, indexed):
        index, members, _ = indexed

        assert query_products(index, members["LUM"], {"dimmable": FilterSelection.is_(True)}) == ["DL-1"]
        assert query_products(index, members["LUM"], {"dimmable": FilterSelection.is_(False)}) == ["DL-2"]

    def test_products_without_entry_never_match(self, indexed):
        index, members, _ = indexed

        result = query_products(index, members["LUM"], {"dimmable": FilterSelection.is_(False)})

        assert "DL-3" not in result

    def test_scope_restricts_result(self, indexed):
        index, members, _ = indexed

        result = query_products(index, members["LUM_CEIL"], {"ip_rating": FilterSelection.of_values("IP65")})

        assert result == ["DL-4"]

    def test_no_selections_returns_scope(self, indexed):
        index, members, _ = indexed

        assert query_products(index, members["LUM"]) == ["DL-1", "DL-2", "DL-3", "DL-4"]

    def test_stale_filter_key_matches_nothing(self, indexed):
        index, members, _ = indexed

        result = query_products(index, members["LUM"], {"beam_angle": FilterSelection.of_values("30")})

        assert result == []

    def test_adding_selections_never_widens_the_result(self, indexed):
        index, members, _ = indexed
        steps = [
            ("outdoor", FilterSelection.is_(True)),
            ("ip_rating", FilterSelection.of_values("IP65", "IP20")),
            ("cct", FilterSelection.in_range(2700, 3000)),
            ("dimmable", FilterSelection.is_(True)),
        ]

        selections = {}
        previous = set(query_products(index, members["LUM"]))
        for key, selection in steps:
            selections[key] = selection
            current = set(query_products(index, members["LUM"], selections))
            assert current <= previous
            previous = current

        assert previous == {"DL-1"}


class TestTextQuery:
    """Test free-text matching and ranking."""

    def test_every_token_must_be_present(self, indexed):
        index, _, texts = indexed
        scope = frozenset(texts)

        assert query_products(index, scope, text_query="outdoor ceiling", texts=texts) == ["DL-4"]

    def test_ties_are_broken_by_id(self, indexed):
        index, _, texts = indexed

        result = query_products(index, frozenset(texts), text_query="downlight", texts=texts)

        assert result == ["DL-1", "DL-2"]

    def test_long_description_is_searched(self, indexed):
        index, _, texts = indexed

        assert query_products(index, frozenset(texts), text_query="Interior", texts=texts) == ["DL-3"]

    def test_text_query_combines_with_filters(self, indexed):
        index, members, texts = indexed

        result = query_products(
            index, members["LUM"], {"dimmable": FilterSelection.is_(False)},
            text_query="downlight", texts=texts,
        )

        assert result == ["DL-2"]

    def test_blank_text_query_is_ignored(self, indexed):
        index, members, texts = indexed

        assert query_products(index, members["DRV"], text_query="   ", texts=texts) == ["DRV-1"]

    def test_better_match_ranks_first(self):
        texts = {
            "A": "LED driver constant current 350mA dimmable module for panels",
            "B": "LED driver",
        }

        result = QueryEvaluator(score_cutoff=0).query(
            index=FilterIndex([]),
            scope_ids=frozenset(texts),
            text_query="led drive",
            texts=texts,
        )

        assert result[0] == "B"
        assert set(result) == {"A", "B"}

    def test_score_cutoff_drops_weak_matches(self):
        texts = {"A": "Driver housing", "B": "Driver housing kit with screws"}
        evaluator = QueryEvaluator(score_cutoff=80)

        scores = evaluator.text_scores(frozenset(texts), texts, "drive hous")

        assert list(scores) == ["A"]


class TestHelpers:
    def test_tokenize(self):
        assert tokenize("LED-Driver 350mA") == ["led", "driver", "350ma"]

    def test_search_page_has_more(self):
        assert SearchPage(product_ids=["a", "b"], total=5, limit=2, offset=0).has_more
        assert not SearchPage(product_ids=["e"], total=5, limit=2, offset=4).has_more
