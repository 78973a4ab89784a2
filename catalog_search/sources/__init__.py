"""Product attribute sources.

Key Components:
    - AttributeSource: Protocol enumerating the full product set
    - InMemoryAttributeSource: Materialized product list
    - JsonFileAttributeSource: JSON document on disk
    - SqlAttributeSource: Catalog database via async SQLAlchemy
"""
from catalog_search.sources.base import AttributeSource, InMemoryAttributeSource
from catalog_search.sources.json_file import JsonFileAttributeSource
from catalog_search.sources.sql import SqlAttributeSource

__all__ = [
    "AttributeSource",
    "InMemoryAttributeSource",
    "JsonFileAttributeSource",
    "SqlAttributeSource",
]
