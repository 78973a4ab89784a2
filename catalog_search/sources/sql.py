"""Attribute source backed by the catalog database."""
from typing import Callable, Iterator, List, Optional

from catalog_search.errors.exceptions import AttributeSourceError
from catalog_search.models.product import ProductRecord


class SqlAttributeSource:
    """Reads product_info through async SQLAlchemy.

    The build pass is synchronous, so products are fetched with
    ``await source.refresh()`` before ``iter_products()`` is consumed.
    """

    def __init__(self, session_factory: Optional[Callable] = None):
        """Initialize source.

        Args:
            session_factory: Async session factory (default: db.async_session_maker)
        """
        self._session_factory = session_factory
        self._products: Optional[List[ProductRecord]] = None

    async def refresh(self) -> int:
        """Fetch the current product set from the database.

        Returns:
            Number of valid products fetched
        """
        from catalog_search.db.operations import load_product_records

        session_factory = self._session_factory
        if session_factory is None:
            from catalog_search.db.base import async_session_maker
            session_factory = async_session_maker

        async with session_factory() as session:
            self._products = await load_product_records(session)
        return len(self._products)

    def iter_products(self) -> Iterator[ProductRecord]:
        if self._products is None:
            raise AttributeSourceError("SqlAttributeSource.refresh() must run before iteration")
        return iter(list(self._products))
