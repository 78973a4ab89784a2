"""Background tasks for the arq worker."""
from catalog_search.tasks.rebuild_tasks import (
    emit_metric,
    get_rebuild_interval_hours,
    rebuild_from_database,
    rebuild_search_index_task,
    scheduled_rebuild_task,
)

__all__ = [
    "emit_metric",
    "get_rebuild_interval_hours",
    "rebuild_from_database",
    "rebuild_search_index_task",
    "scheduled_rebuild_task",
]
