"""Queue message models for background rebuild jobs."""
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field


class RebuildTaskMessage(BaseModel):
    """Message schema for enqueuing a search index rebuild.

    Example:
        await redis.enqueue_job(
            "rebuild_search_index_task",
            **RebuildTaskMessage(task_id="rebuild-42", trigger="config_change").model_dump(mode="json"),
        )
    """

    task_id: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Unique identifier for this rebuild",
    )
    trigger: Literal["manual", "scheduled", "config_change", "catalog_change"] = Field(
        default="manual",
        description="What requested the rebuild",
    )
    strict: bool = Field(
        default=False,
        description="Fail the rebuild on any invalid rule or filter instead of isolating it",
    )
    requested_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the rebuild was requested",
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "task_id": "rebuild-2026-10-18T06:00",
                "trigger": "scheduled",
                "strict": False,
            }
        }
    }
