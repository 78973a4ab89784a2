"""JSON file attribute source.

Reads a list of product objects (or {"products": [...]}) shaped like
ProductRecord. Invalid records are logged and skipped; the rest of the
catalog is still served.
"""
import json
from pathlib import Path
from typing import Iterator, List, Union
import structlog

from pydantic import ValidationError as PydanticValidationError

from catalog_search.errors.exceptions import AttributeSourceError
from catalog_search.models.product import ProductRecord

logger = structlog.get_logger(__name__)


class JsonFileAttributeSource:
    """Attribute source backed by a JSON document on disk."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _read_document(self) -> List[dict]:
        if not self.path.exists():
            raise AttributeSourceError(f"Product file not found: {self.path}")
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise AttributeSourceError(
                f"Cannot read product file {self.path}",
                {"path": str(self.path), "error": str(e)},
            ) from e
        if isinstance(document, dict):
            document = document.get("products", [])
        if not isinstance(document, list):
            raise AttributeSourceError(
                "Product file must contain a list of products",
                {"path": str(self.path)},
            )
        return document

    def iter_products(self) -> Iterator[ProductRecord]:
        log = logger.bind(path=str(self.path))
        records = self._read_document()
        valid = 0
        for position, record in enumerate(records):
            try:
                product = ProductRecord.model_validate(record)
            except PydanticValidationError as e:
                log.warning(
                    "product_record_invalid",
                    position=position,
                    error=str(e.errors()[0]["msg"]),
                )
                continue
            valid += 1
            yield product
        log.info(
            "product_file_read",
            total_records=len(records),
            valid_records=valid,
            failed_records=len(records) - valid,
        )
