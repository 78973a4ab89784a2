"""Classification rule configuration table."""
from sqlalchemy import Boolean, CheckConstraint, Integer, String, Text
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import Mapped, mapped_column
from catalog_search.db.base import Base, TimestampMixin
from typing import Any, Dict, List, Optional


class ClassificationRuleEntry(Base, TimestampMixin):
    """Stored classification rule.

    Exactly one of taxonomy_code / flag_name is set. feature_conditions is a
    JSONB list of {"feature_id", "operator", "value" | "min"/"max"} objects.
    """

    __tablename__ = "classification_rules"
    __table_args__ = (
        CheckConstraint(
            "(taxonomy_code IS NULL) <> (flag_name IS NULL)",
            name="chk_rule_single_target",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rule_name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    taxonomy_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    flag_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, server_default="100", index=True)
    group_codes: Mapped[Optional[List[str]]] = mapped_column(
        "etim_group_ids", postgresql.ARRAY(Text), nullable=True
    )
    class_codes: Mapped[Optional[List[str]]] = mapped_column(
        "etim_class_ids", postgresql.ARRAY(Text), nullable=True
    )
    excluded_class_codes: Mapped[Optional[List[str]]] = mapped_column(
        "excluded_etim_class_ids", postgresql.ARRAY(Text), nullable=True
    )
    feature_conditions: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(
        "etim_feature_conditions", postgresql.JSONB, nullable=True
    )
    text_pattern: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true", index=True)

    def __repr__(self) -> str:
        target = self.taxonomy_code or f"flag:{self.flag_name}"
        return f"<ClassificationRuleEntry(rule_name='{self.rule_name}', target='{target}')>"
