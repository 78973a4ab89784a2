"""Taxonomy ORM model with self-referential hierarchy."""
from sqlalchemy import Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from catalog_search.db.base import Base, TimestampMixin
from typing import Optional


class TaxonomyEntry(Base, TimestampMixin):
    """Navigation taxonomy node (e.g. LUM_CEIL_REC: Luminaires > Ceiling > Recessed)."""

    __tablename__ = "taxonomy"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    parent_code: Mapped[Optional[str]] = mapped_column(
        ForeignKey("search.taxonomy.code"),
        nullable=True,
        index=True,
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    icon: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true")

    def __repr__(self) -> str:
        return f"<TaxonomyEntry(code='{self.code}', level={self.level})>"
