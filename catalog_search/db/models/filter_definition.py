"""Filter definition and attribute mapping tables."""
from sqlalchemy import Boolean, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import Mapped, mapped_column, relationship
from catalog_search.db.base import Base, TimestampMixin
from typing import Any, Dict, List, Optional


class FilterDefinitionEntry(Base, TimestampMixin):
    """Stored filter definition.

    filter_type uses the catalog's historical names:
    numeric_range, alphanumeric, boolean.
    """

    __tablename__ = "filter_definitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    filter_key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    filter_type: Mapped[str] = mapped_column(String(32), nullable=False)
    label: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    unit: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    ui_config: Mapped[Optional[Dict[str, Any]]] = mapped_column(postgresql.JSONB, nullable=True)
    applicable_taxonomy_codes: Mapped[Optional[List[str]]] = mapped_column(
        postgresql.ARRAY(Text), nullable=True
    )
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true", index=True)

    # Relationships
    sources: Mapped[List["FilterSourceMapping"]] = relationship(
        back_populates="filter_definition",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<FilterDefinitionEntry(filter_key='{self.filter_key}', type='{self.filter_type}')>"


class FilterSourceMapping(Base):
    """One source identifier feeding a filter (feature id, flag:<name>, field:<name>)."""

    __tablename__ = "filter_source_mappings"
    __table_args__ = (
        UniqueConstraint("filter_definition_id", "source_id", name="uq_filter_source"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    filter_definition_id: Mapped[int] = mapped_column(
        ForeignKey("search.filter_definitions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    source_id: Mapped[str] = mapped_column(String(100), nullable=False)

    filter_definition: Mapped["FilterDefinitionEntry"] = relationship(back_populates="sources")
