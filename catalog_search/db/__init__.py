"""Database module."""
from catalog_search.db.base import (
    Base,
    TimestampMixin,
    engine,
    async_session_maker,
    get_session,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "engine",
    "async_session_maker",
    "get_session",
]
