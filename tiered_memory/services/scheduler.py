"""
Cleanup Scheduler - periodic retention sweeps for the memory tiers.

Runs MemoryOrchestrator.run_cleanup on a fixed interval in a background
task so long-term storage stays within its age, importance and size
limits without manual intervention.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, Optional

from tiered_memory.database.models import utcnow
from tiered_memory.utils.structured_logging import get_logger

logger = get_logger("scheduler")


class CleanupScheduler:
    """
    Async background loop around the orchestrator's cleanup.

    A failing sweep is logged and counted; the loop keeps running.
    """

    def __init__(self, orchestrator, interval_seconds: float = 24 * 3600):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.orchestrator = orchestrator
        self.interval_seconds = interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.run_count = 0
        self.error_count = 0
        self.last_run: Optional[datetime] = None
        self.last_result: Optional[Dict[str, int]] = None
        self.last_error: Optional[str] = None

    @classmethod
    def from_settings(cls, orchestrator, config) -> "CleanupScheduler":
        return cls(orchestrator, interval_seconds=config.cleanup_interval_hours * 3600)

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        """Start the cleanup background loop."""
        if self._running:
            logger.warning("Cleanup scheduler already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Cleanup scheduler started", interval_seconds=self.interval_seconds)

    async def stop(self):
        """Stop the loop gracefully."""
        if not self._running:
            return

        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Cleanup scheduler stopped")

    async def run_once(self) -> Optional[Dict[str, int]]:
        """Run a single sweep now. Returns removal counts, or None on failure."""
        started = utcnow()
        try:
            result = await self.orchestrator.run_cleanup()
        except Exception as e:
            self.error_count += 1
            self.last_error = str(e)
            logger.error("Cleanup sweep failed", error=str(e))
            return None
        finally:
            self.last_run = started

        self.run_count += 1
        self.last_result = result
        logger.info(
            "Cleanup sweep completed",
            duration_ms=(utcnow() - started).total_seconds() * 1000,
            **result
        )
        return result

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "interval_seconds": self.interval_seconds,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_result": self.last_result,
            "last_error": self.last_error,
        }

    async def _run_loop(self):
        while self._running:
            await asyncio.sleep(self.interval_seconds)
            await self.run_once()
