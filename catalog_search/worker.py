"""arq worker configuration for search index rebuilds.

This module configures the arq worker with:
    - rebuild_search_index_task: Rebuild and publish the search snapshot
    - scheduled_rebuild_task: Periodic rebuild (cron)
    - monitor_search_snapshot: Periodic snapshot statistics log (cron)

The SearchService in the worker context serves only this process. Reader
processes keep their own SearchService and refresh it with
catalog_search.tasks.rebuild_from_database.
"""
from arq.connections import RedisSettings
from arq import cron
from typing import Dict, Any
import structlog
from catalog_search.config import settings, search_settings, configure_logging

from catalog_search.services.config_store import ConfigurationStore
from catalog_search.services.search_service import SearchService
from catalog_search.tasks.rebuild_tasks import (
    get_rebuild_interval_hours,
    rebuild_search_index_task,
    scheduled_rebuild_task,
)

# Configure logging
configure_logging(settings.log_level)
logger = structlog.get_logger(__name__)


async def startup(ctx: Dict[str, Any]) -> None:
    """Create the SearchService owned by this worker process."""
    ctx["search_service"] = SearchService(ConfigurationStore(), settings=search_settings)
    logger.info(
        "search_worker_started",
        environment=settings.environment,
        queue_name=settings.queue_name,
        build_workers=search_settings.build_workers,
        rebuild_interval_hours=get_rebuild_interval_hours(),
    )


async def shutdown(ctx: Dict[str, Any]) -> None:
    """Log the generation served at shutdown."""
    service = ctx.get("search_service")
    logger.info(
        "search_worker_stopped",
        generation=service.generation if service is not None else None,
    )


async def monitor_search_snapshot(ctx: Dict[str, Any]) -> None:
    """Periodic task logging the statistics of the published snapshot.

    Args:
        ctx: Worker context (holds the SearchService)
    """
    service = ctx.get("search_service")
    if service is None:
        logger.warning("monitor_search_snapshot_no_service")
        return
    logger.info("search_snapshot_monitor", **service.get_statistics())


class WorkerSettings:
    """arq worker configuration settings.

    This class is imported by arq CLI: `arq catalog_search.worker.WorkerSettings`

    Registered Tasks:
        - rebuild_search_index_task: Rebuild the search snapshot on demand
        - scheduled_rebuild_task: Rebuild the search snapshot (cron)

    Cron Jobs:
        - scheduled_rebuild_task: Every REBUILD_INTERVAL_HOURS hours
        - monitor_search_snapshot: Every 15 minutes
    """

    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.queue_name
    max_jobs = 1  # Rebuilds are serialized; one build pass at a time
    job_timeout = settings.job_timeout
    keep_result = 3600  # Keep results for 1 hour
    max_tries = 3

    on_startup = startup
    on_shutdown = shutdown

    # Register all worker functions
    functions = [
        rebuild_search_index_task,
        scheduled_rebuild_task,
    ]

    # Register cron jobs
    cron_jobs = [
        cron(
            scheduled_rebuild_task,
            hour=set(range(0, 24, get_rebuild_interval_hours())),
            minute=0,
            unique=True,
            run_at_startup=True,
        ),
        cron(monitor_search_snapshot, minute={0, 15, 30, 45}),
    ]
