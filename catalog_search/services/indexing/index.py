"""Immutable filter index with per-value posting sets."""
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Iterator, Mapping, Set, Tuple

from catalog_search.models.filters import FilterIndexEntry, FilterSelection, FilterValue


class FilterIndex:
    """Read-only view over the entries of one build pass.

    Entries are grouped as filter_key -> value -> product ids so that a
    selection is answered by a union of posting sets.
    """

    def __init__(self, entries: Iterable[FilterIndexEntry]):
        postings: Dict[str, Dict[FilterValue, Set[str]]] = {}
        unique = set()
        for entry in entries:
            unique.add(entry)
            postings.setdefault(entry.filter_key, {}).setdefault(entry.value, set()).add(
                entry.product_id
            )
        self._entries: Tuple[FilterIndexEntry, ...] = tuple(
            sorted(unique, key=lambda e: (e.filter_key, e.product_id, str(e.value)))
        )
        self._postings: Mapping[str, Mapping[FilterValue, FrozenSet[str]]] = MappingProxyType({
            key: MappingProxyType({value: frozenset(ids) for value, ids in by_value.items()})
            for key, by_value in postings.items()
        })
        self._products_by_filter: Mapping[str, FrozenSet[str]] = MappingProxyType({
            key: frozenset().union(*by_value.values())
            for key, by_value in self._postings.items()
        })

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[FilterIndexEntry]:
        return iter(self._entries)

    @property
    def entries(self) -> Tuple[FilterIndexEntry, ...]:
        return self._entries

    @property
    def filter_keys(self) -> FrozenSet[str]:
        return frozenset(self._postings)

    def has_filter(self, filter_key: str) -> bool:
        return filter_key in self._postings

    def postings(self, filter_key: str) -> Mapping[FilterValue, FrozenSet[str]]:
        """value -> product ids for one filter (empty for unknown keys)."""
        return self._postings.get(filter_key, MappingProxyType({}))

    def products_with_filter(self, filter_key: str) -> FrozenSet[str]:
        """Products holding at least one entry for the filter."""
        return self._products_by_filter.get(filter_key, frozenset())

    def products_matching(self, filter_key: str, selection: FilterSelection) -> FrozenSet[str]:
        """Products holding an entry that satisfies the selection.

        Values inside one selection combine with OR. Unknown filter keys
        match nothing.
        """
        by_value = self._postings.get(filter_key)
        if not by_value:
            return frozenset()
        matched: Set[str] = set()
        for value, product_ids in by_value.items():
            if selection.matches(value):
                matched |= product_ids
        return frozenset(matched)

    def values_for_product(self, product_id: str, filter_key: str) -> FrozenSet[FilterValue]:
        return frozenset(
            value for value, ids in self.postings(filter_key).items() if product_id in ids
        )
