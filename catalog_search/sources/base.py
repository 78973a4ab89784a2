"""Attribute source interface for pluggable product catalogs."""
from typing import Iterable, Iterator, List, Protocol, runtime_checkable

from catalog_search.models.product import ProductRecord


@runtime_checkable
class AttributeSource(Protocol):
    """Anything that can enumerate the full product set.

    Implementations must yield every product once per call; a build pass
    enumerates the source exactly once.
    """

    def iter_products(self) -> Iterator[ProductRecord]:
        ...


class InMemoryAttributeSource:
    """Attribute source over an already materialized product list."""

    def __init__(self, products: Iterable[ProductRecord] = ()):
        self._products: List[ProductRecord] = list(products)

    def __len__(self) -> int:
        return len(self._products)

    def iter_products(self) -> Iterator[ProductRecord]:
        return iter(list(self._products))

    def replace(self, products: Iterable[ProductRecord]) -> None:
        """Swap the whole product set (picked up by the next build)."""
        self._products = list(products)
