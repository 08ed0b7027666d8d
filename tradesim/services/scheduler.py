"""
Periodic portfolio snapshots for the active competition.
"""

import asyncio
from typing import Optional

from tradesim.services.competition_manager import CompetitionManager
from tradesim.utils.logging import get_logger

logger = get_logger(__name__)


class SnapshotScheduler:
    """
    Snapshots the active competition on a fixed interval.

    Failures are logged and the loop keeps running.
    """

    def __init__(
        self,
        competition_manager: CompetitionManager,
        interval: float = 120.0,
    ):
        self.competition_manager = competition_manager
        self.interval = interval

        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the snapshot loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._snapshot_loop())
        logger.info("Snapshot scheduler started", interval=self.interval)

    async def stop(self) -> None:
        """Stop the snapshot loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Snapshot scheduler stopped")

    async def run_once(self) -> bool:
        """Snapshot the active competition. Returns False when none is active."""
        competition = await self.competition_manager.get_active_competition()
        if not competition:
            logger.debug("No active competition, skipping snapshot")
            return False

        await self.competition_manager.take_portfolio_snapshots(competition.id)
        return True

    async def _snapshot_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval)
            try:
                await self.run_once()
            except Exception as e:
                logger.error("Snapshot error", error=str(e))
