"""Read model over the catalog's flattened product attribute view."""
from sqlalchemy import String, Text
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import Mapped, mapped_column
from catalog_search.db.base import Base
from typing import Any, Dict, List, Optional


class ProductInfo(Base):
    """One catalog product with its technical features.

    Attributes:
        product_id: Stable product identifier
        group_code: Technical group (column "group")
        class_code: Technical class (column "class")
        features: JSONB array of feature objects, e.g.
            {"FEATUREID": "EF009346", "fvalueN": 3000, "unit_abbrev": "K"}
        description_short: Short description
        description_long: Long description
        supplier_name: Supplier label
    """

    __tablename__ = "product_info"
    __table_args__ = {"schema": "items"}

    product_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    group_code: Mapped[Optional[str]] = mapped_column("group", String(32), nullable=True)
    class_code: Mapped[Optional[str]] = mapped_column("class", String(32), nullable=True)
    features: Mapped[List[Dict[str, Any]]] = mapped_column(
        postgresql.JSONB,
        nullable=False,
        server_default="[]",
    )
    description_short: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    description_long: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    supplier_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<ProductInfo(product_id='{self.product_id}', class='{self.class_code}')>"
