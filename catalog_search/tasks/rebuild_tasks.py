"""Queue tasks rebuilding the search snapshot.

This module implements:
    - rebuild_from_database: Load configuration and products from the
      database, run the build passes, publish into a given SearchService
    - rebuild_search_index_task: Queue wrapper around rebuild_from_database
      for the worker's own SearchService
    - scheduled_rebuild_task: Cron entry point for periodic rebuilds

A snapshot lives in the process that built it; nothing is shipped between
processes. A process serving reads owns its SearchService and refreshes it
by awaiting rebuild_from_database itself (at startup and on its own
schedule). Both sides read the same tables, so they converge on the same
result; generation numbers are local to each process.
"""
import asyncio
import time
import uuid
from typing import Any, Dict, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError

from catalog_search.config import settings
from catalog_search.db.base import async_session_maker
from catalog_search.db.operations import load_product_records, load_search_configuration
from catalog_search.errors.exceptions import CatalogSearchError
from catalog_search.models.queue_message import RebuildTaskMessage
from catalog_search.services.search_service import BuildReport, SearchService

logger = structlog.get_logger(__name__)


# ============================================================================
# Observability Metrics Logging
# ============================================================================

def emit_metric(metric_name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
    """Emit a metric event as a structured log line.

    Args:
        metric_name: Name of the metric (e.g., "search_rebuild_duration_seconds")
        value: Numeric value of the metric
        labels: Optional labels/tags for the metric
    """
    labels = labels or {}
    logger.info(
        "metric",
        metric_name=metric_name,
        metric_value=value,
        **labels,
    )


def emit_build_metrics(report: BuildReport, trigger: str) -> None:
    """Emit the metrics of one rebuild."""
    labels = {"trigger": trigger}
    emit_metric("search_rebuild_duration_seconds", report.duration_seconds, labels)
    emit_metric("search_products_total", report.products_total, labels)
    emit_metric("search_products_classified", report.products_classified, labels)
    emit_metric("search_index_entries", report.index_entries, labels)
    emit_metric("search_skipped_values", report.skipped_values, labels)
    emit_metric("search_config_warnings", len(report.warnings), labels)
    emit_metric(
        "search_rejected_config",
        len(report.rejected_rules) + len(report.rejected_filters),
        labels,
    )


def get_rebuild_interval_hours() -> int:
    """Get the rebuild interval from settings (REBUILD_INTERVAL_HOURS, default 6)."""
    return settings.rebuild_interval_hours


async def rebuild_from_database(service: SearchService, strict: bool = False) -> BuildReport:
    """Rebuild a service from the catalog database and publish the result.

    Raises:
        DatabaseError: If loading from the database fails
        ConfigurationError: Duplicate identifiers, or invalid records when strict
    """
    async with async_session_maker() as session:
        configuration = await load_search_configuration(session, strict=strict)
        products = await load_product_records(session)

    # Build passes are CPU bound and use their own thread pool
    return await asyncio.to_thread(service.rebuild, products, configuration)


def _service(ctx: Dict[str, Any]) -> SearchService:
    service = ctx.get("search_service")
    if service is None:
        service = SearchService()
        ctx["search_service"] = service
    return service


async def rebuild_search_index_task(ctx: Dict[str, Any], **kwargs) -> Dict[str, Any]:
    """Rebuild and publish the search snapshot.

    Args:
        ctx: Worker context (holds the SearchService under "search_service")
        **kwargs: RebuildTaskMessage fields

    Returns:
        Dictionary with the build report summary

    Raises:
        ValueError: If the message is invalid
        DatabaseError: If loading from the database fails (retried by arq)
        ConfigurationError: If the configuration cannot be loaded
    """
    try:
        message = RebuildTaskMessage.model_validate(kwargs)
    except PydanticValidationError as e:
        logger.error("rebuild_message_invalid", errors=e.errors())
        raise ValueError(f"Invalid rebuild message: {e}") from e

    log = logger.bind(task_id=message.task_id, trigger=message.trigger)
    log.info("rebuild_search_index_task_started", strict=message.strict)
    start_time = time.time()

    service = _service(ctx)
    try:
        report = await rebuild_from_database(service, strict=message.strict)
    except CatalogSearchError as e:
        log.error(
            "rebuild_search_index_task_failed",
            error=e.message,
            error_type=type(e).__name__,
            details=e.details,
        )
        emit_metric("search_rebuild_failures_total", 1, {"trigger": message.trigger})
        raise

    emit_build_metrics(report, message.trigger)
    log.info(
        "rebuild_search_index_task_completed",
        generation=report.generation,
        duration_seconds=round(time.time() - start_time, 3),
    )
    return {
        "task_id": message.task_id,
        "status": "success",
        "generation": report.generation,
        "products_total": report.products_total,
        "products_classified": report.products_classified,
        "index_entries": report.index_entries,
        "skipped_values": report.skipped_values,
        "warnings": [w.message for w in report.warnings],
        "rejected_rules": sorted(report.rejected_rules),
        "rejected_filters": sorted(report.rejected_filters),
    }


async def scheduled_rebuild_task(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Cron entry point: rebuild with isolating configuration errors."""
    task_id = f"scheduled-rebuild-{uuid.uuid4().hex[:12]}"
    return await rebuild_search_index_task(ctx, task_id=task_id, trigger="scheduled")
