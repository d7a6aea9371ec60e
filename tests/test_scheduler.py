"""Tests for the Cleanup Scheduler."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from tiered_memory.config.settings import MemorySettings
from tiered_memory.services.scheduler import CleanupScheduler


@pytest.fixture
def orchestrator():
    memory = MagicMock()
    memory.run_cleanup = AsyncMock(return_value={"long_term": 2, "rag": 1})
    return memory


class TestCleanupScheduler:
    """Test CleanupScheduler class."""

    def test_interval_must_be_positive(self, orchestrator):
        with pytest.raises(ValueError):
            CleanupScheduler(orchestrator, interval_seconds=0)

    def test_from_settings(self, orchestrator):
        config = MemorySettings(_env_file=None, cleanup_interval_hours=2)
        scheduler = CleanupScheduler.from_settings(orchestrator, config)
        assert scheduler.interval_seconds == 7200

    @pytest.mark.asyncio
    async def test_run_once(self, orchestrator):
        scheduler = CleanupScheduler(orchestrator, interval_seconds=60)

        result = await scheduler.run_once()

        assert result == {"long_term": 2, "rag": 1}
        status = scheduler.get_status()
        assert status["run_count"] == 1
        assert status["last_result"] == result
        assert status["last_run"] is not None
        assert scheduler.last_run.tzinfo is None

    @pytest.mark.asyncio
    async def test_run_once_failure_is_recorded(self, orchestrator):
        orchestrator.run_cleanup = AsyncMock(side_effect=RuntimeError("db down"))
        scheduler = CleanupScheduler(orchestrator, interval_seconds=60)

        assert await scheduler.run_once() is None
        assert scheduler.error_count == 1
        assert scheduler.last_error == "db down"

    @pytest.mark.asyncio
    async def test_start_and_stop(self, orchestrator):
        scheduler = CleanupScheduler(orchestrator, interval_seconds=0.01)

        await scheduler.start()
        assert scheduler.running is True
        await scheduler.start()

        await asyncio.sleep(0.1)
        await scheduler.stop()

        assert scheduler.running is False
        assert orchestrator.run_cleanup.await_count >= 1

    @pytest.mark.asyncio
    async def test_loop_survives_failures(self, orchestrator):
        orchestrator.run_cleanup = AsyncMock(side_effect=RuntimeError("db down"))
        scheduler = CleanupScheduler(orchestrator, interval_seconds=0.01)

        await scheduler.start()
        await asyncio.sleep(0.1)
        await scheduler.stop()

        assert scheduler.error_count >= 2

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, orchestrator):
        scheduler = CleanupScheduler(orchestrator)
        await scheduler.stop()
        assert scheduler.running is False
