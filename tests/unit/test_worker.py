"""Unit tests for the rebuild tasks and arq worker settings."""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from catalog_search.config import SearchSettings
from catalog_search.errors.exceptions import DatabaseError
from catalog_search.services.config_store import build_configuration
from catalog_search.services.search_service import SearchService
from catalog_search.tasks.rebuild_tasks import (
    emit_metric,
    rebuild_from_database,
    rebuild_search_index_task,
    scheduled_rebuild_task,
)
from catalog_search.worker import (
    WorkerSettings,
    monitor_search_snapshot,
    shutdown,
    startup,
)

TASKS = "catalog_search.tasks.rebuild_tasks"


@pytest.fixture
def ctx():
    return {"search_service": SearchService(settings=SearchSettings(build_workers=1))}


@pytest.fixture
def configuration(rules, definitions, key_map, taxonomy):
    return build_configuration(rules, definitions, key_map, taxonomy, version=4)


@pytest.fixture
def patched_db(configuration, catalog):
    """Patch the session factory and loaders used by the rebuild task."""
    with patch(f"{TASKS}.async_session_maker", MagicMock()), \
            patch(f"{TASKS}.load_search_configuration", AsyncMock(return_value=configuration)) as load_config, \
            patch(f"{TASKS}.load_product_records", AsyncMock(return_value=catalog)) as load_products:
        yield load_config, load_products


class TestRebuildSearchIndexTask:
    """Test rebuild_search_index_task."""

    @pytest.mark.asyncio
    async def test_rebuild_publishes_snapshot(self, ctx, patched_db):
        """Test a successful rebuild returns the report summary."""
        result = await rebuild_search_index_task(ctx, task_id="rebuild-1")

        assert result["status"] == "success"
        assert result["generation"] == 1
        assert result["products_total"] == 7
        assert result["products_classified"] == 6
        assert result["index_entries"] == 22
        assert result["warnings"] == []
        assert ctx["search_service"].generation == 1

    @pytest.mark.asyncio
    async def test_strict_flag_is_passed_to_loader(self, ctx, patched_db):
        """Test message.strict reaches the configuration loader."""
        load_config, _ = patched_db

        await rebuild_search_index_task(ctx, task_id="rebuild-2", strict=True)

        assert load_config.await_args.kwargs["strict"] is True

    @pytest.mark.asyncio
    async def test_invalid_message_raises_value_error(self, ctx):
        """Test an invalid message is rejected before any work."""
        with pytest.raises(ValueError):
            await rebuild_search_index_task(ctx, task_id="", trigger="manual")

        assert ctx["search_service"].generation == 0

    @pytest.mark.asyncio
    async def test_database_error_is_reraised_and_counted(self, ctx):
        """Test a database failure leaves the published snapshot untouched."""
        with patch(f"{TASKS}.async_session_maker", MagicMock()), \
                patch(f"{TASKS}.load_search_configuration", AsyncMock(side_effect=DatabaseError("down"))), \
                patch(f"{TASKS}.emit_metric") as mock_metric:
            with pytest.raises(DatabaseError):
                await rebuild_search_index_task(ctx, task_id="rebuild-3")

        mock_metric.assert_called_once_with("search_rebuild_failures_total", 1, {"trigger": "manual"})
        assert ctx["search_service"].generation == 0

    @pytest.mark.asyncio
    async def test_service_is_created_when_missing(self, patched_db):
        """Test the task creates a SearchService on an empty context."""
        ctx = {}

        await rebuild_search_index_task(ctx, task_id="rebuild-4")

        assert isinstance(ctx["search_service"], SearchService)

    @pytest.mark.asyncio
    async def test_scheduled_rebuild(self, ctx, patched_db):
        """Test the cron entry point runs a rebuild with the scheduled trigger."""
        with patch(f"{TASKS}.emit_metric") as mock_metric:
            result = await scheduled_rebuild_task(ctx)

        assert result["task_id"].startswith("scheduled-rebuild-")
        assert all(c.args[2] == {"trigger": "scheduled"} for c in mock_metric.call_args_list)


class TestRebuildFromDatabase:
    """Test refreshing a reader-owned service from the database."""

    @pytest.mark.asyncio
    async def test_publishes_into_the_given_service(self, patched_db):
        reader = SearchService(settings=SearchSettings(build_workers=1))

        report = await rebuild_from_database(reader)

        assert report.generation == reader.generation == 1
        assert reader.count(scope="LUM") == 4

    @pytest.mark.asyncio
    async def test_worker_and_reader_converge(self, ctx, patched_db):
        """Test two processes' services built from the same rows serve the same results."""
        reader = SearchService(settings=SearchSettings(build_workers=1))

        await rebuild_search_index_task(ctx, task_id="rebuild-5")
        await rebuild_from_database(reader)

        worker_service = ctx["search_service"]
        assert reader.search(scope="LUM").product_ids == worker_service.search(scope="LUM").product_ids


class TestWorkerLifecycle:
    """Test startup, shutdown and monitoring hooks."""

    @pytest.mark.asyncio
    async def test_startup_creates_service(self):
        ctx = {}

        await startup(ctx)

        assert ctx["search_service"].generation == 0
        await shutdown(ctx)

    @pytest.mark.asyncio
    async def test_monitor_without_service(self):
        await monitor_search_snapshot({})

    @pytest.mark.asyncio
    async def test_monitor_logs_statistics(self):
        service = MagicMock()
        service.get_statistics.return_value = {"generation": 3}

        await monitor_search_snapshot({"search_service": service})

        service.get_statistics.assert_called_once()


class TestWorkerSettings:
    """Test arq worker settings."""

    def test_registered_functions(self):
        assert rebuild_search_index_task in WorkerSettings.functions
        assert scheduled_rebuild_task in WorkerSettings.functions

    def test_rebuilds_are_serialized(self):
        assert WorkerSettings.max_jobs == 1
        assert len(WorkerSettings.cron_jobs) == 2


class TestEmitMetric:
    def test_emit_metric_logs_labels(self):
        with patch(f"{TASKS}.logger") as mock_logger:
            emit_metric("search_index_entries", 22, {"trigger": "manual"})

        mock_logger.info.assert_called_once_with(
            "metric", metric_name="search_index_entries", metric_value=22, trigger="manual"
        )
