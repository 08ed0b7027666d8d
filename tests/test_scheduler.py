"""
Tests for the snapshot scheduler and the service container.
"""

import asyncio

import pytest

from tradesim.services.scheduler import SnapshotScheduler


class TestSnapshotScheduler:
    """Test periodic snapshots."""

    @pytest.mark.asyncio
    async def test_run_once_without_active_competition(self, services):
        assert await services.scheduler.run_once() is False

    @pytest.mark.asyncio
    async def test_run_once_snapshots_active_competition(self, services):
        manager = services.competition_manager
        competition = await manager.create_competition("Season 1")
        await manager.start_competition(competition.id, ["team-1"])

        assert await services.scheduler.run_once() is True
        assert len(await manager.get_team_portfolio_snapshots(competition.id, "team-1")) == 2

    @pytest.mark.asyncio
    async def test_loop_runs_until_stopped(self, services):
        manager = services.competition_manager
        competition = await manager.create_competition("Season 1")
        await manager.start_competition(competition.id, ["team-1"])
        scheduler = SnapshotScheduler(manager, interval=0.01)

        await scheduler.start()
        assert scheduler.is_running
        await asyncio.sleep(0.2)
        await scheduler.stop()

        assert not scheduler.is_running
        assert len(await manager.get_team_portfolio_snapshots(competition.id, "team-1")) > 1

    @pytest.mark.asyncio
    async def test_loop_survives_errors(self):
        calls = []

        class BrokenManager:
            async def get_active_competition(self):
                calls.append(1)
                raise RuntimeError("database locked")

        scheduler = SnapshotScheduler(BrokenManager(), interval=0.01)
        await scheduler.start()
        await asyncio.sleep(0.1)

        assert scheduler.is_running
        assert len(calls) > 1
        await scheduler.stop()


class TestServices:
    """Test the service container."""

    @pytest.mark.asyncio
    async def test_health(self, services):
        assert await services.is_healthy() == {
            "price_resolver": True,
            "balance_manager": True,
            "trade_simulator": True,
            "competition_manager": True,
        }

    @pytest.mark.asyncio
    async def test_initialize_and_close(self, services):
        await services.initialize()
        await services.scheduler.start()

        await services.close()

        assert not services.scheduler.is_running
