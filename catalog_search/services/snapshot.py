"""Immutable search snapshots and atomic publication.

A build pass produces a complete SearchSnapshot (classification, filter
index, configuration) off to the side. Publishing swaps one reference, so
a reader that grabbed ``holder.current`` keeps a consistent view for the
whole request while the next generation is being built.
"""
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import FrozenSet, Iterable, Mapping, Optional, Union
import structlog

from catalog_search.errors.exceptions import SnapshotGenerationError
from catalog_search.services.classification.classifier import ClassificationResult
from catalog_search.services.config_store import SearchConfiguration
from catalog_search.services.indexing.index import FilterIndex

logger = structlog.get_logger(__name__)

Scope = Union[None, str, Iterable[str]]


@dataclass(frozen=True)
class SearchSnapshot:
    """One published generation of derived search state.

    Attributes:
        generation: Monotonically increasing build number (0 = nothing built)
        built_at: Publication time (UTC)
        configuration: Configuration the generation was built from
        product_ids: Every product seen by the build
        texts: product_id -> searchable description text
        names: product_id -> short description, used for name ordering
        classification: Memberships and flags per product
        index: Filter index
        members_by_code: taxonomy code -> member product ids
    """
    generation: int
    built_at: datetime
    configuration: SearchConfiguration
    product_ids: FrozenSet[str] = frozenset()
    texts: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    names: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    classification: ClassificationResult = field(default_factory=ClassificationResult)
    index: FilterIndex = field(default_factory=lambda: FilterIndex(()))
    members_by_code: Mapping[str, FrozenSet[str]] = field(
        default_factory=lambda: MappingProxyType({})
    )

    @classmethod
    def empty(cls) -> "SearchSnapshot":
        """Generation 0: no products, no configuration."""
        return cls(
            generation=0,
            built_at=datetime.now(timezone.utc),
            configuration=SearchConfiguration(),
        )

    def scope_ids(self, scope: Scope = None) -> FrozenSet[str]:
        """Resolve a taxonomy scope to product ids.

        None or "" selects every product; a code selects its members; an
        iterable of codes selects the union. Unknown codes select nothing.
        """
        if scope is None or scope == "":
            return self.product_ids
        if isinstance(scope, str):
            return self.members_by_code.get(scope, frozenset())
        result: FrozenSet[str] = frozenset()
        for code in scope:
            result |= self.members_by_code.get(code, frozenset())
        return result


class SnapshotHolder:
    """Holds the currently published snapshot.

    Builders hold ``build_lock`` from ``next_generation()`` until
    ``publish()``, so services sharing a holder never claim the same
    generation.
    """

    def __init__(self, initial: Optional[SearchSnapshot] = None):
        self._current = initial or SearchSnapshot.empty()
        self._publish_lock = threading.Lock()
        self.build_lock = threading.Lock()

    @property
    def current(self) -> SearchSnapshot:
        return self._current

    def next_generation(self) -> int:
        return self._current.generation + 1

    def publish(self, snapshot: SearchSnapshot) -> SearchSnapshot:
        """Swap in a newer snapshot.

        Raises:
            SnapshotGenerationError: If the generation does not advance
        """
        with self._publish_lock:
            previous = self._current
            if snapshot.generation <= previous.generation:
                logger.critical(
                    "snapshot_generation_regression",
                    current_generation=previous.generation,
                    rejected_generation=snapshot.generation,
                )
                raise SnapshotGenerationError(
                    "Snapshot generation must increase",
                    {
                        "current_generation": previous.generation,
                        "rejected_generation": snapshot.generation,
                    },
                )
            self._current = snapshot
        logger.info(
            "snapshot_published",
            generation=snapshot.generation,
            previous_generation=previous.generation,
            product_count=len(snapshot.product_ids),
            index_entries=len(snapshot.index),
        )
        return previous
