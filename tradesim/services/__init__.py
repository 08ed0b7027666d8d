"""
Service container.
Wires repositories, price sources and services for one database.
"""

from dataclasses import dataclass
from typing import Optional

from tradesim.config import Settings
from tradesim.db.database import Database
from tradesim.db.repositories import (
    BalanceRepository,
    CompetitionRepository,
    PriceRepository,
    TradeRepository,
)
from tradesim.providers import create_price_sources
from tradesim.providers.base import PriceSource
from tradesim.services.balance_manager import BalanceManager
from tradesim.services.cache import TTLCache
from tradesim.services.competition_manager import CompetitionManager
from tradesim.services.price_resolver import PriceResolver
from tradesim.services.scheduler import SnapshotScheduler
from tradesim.services.trade_simulator import TradeSimulator
from tradesim.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Services:
    """Everything an entry point needs, constructed once."""
    database: Database
    sources: list[PriceSource]
    price_resolver: PriceResolver
    balance_manager: BalanceManager
    trade_simulator: TradeSimulator
    competition_manager: CompetitionManager
    scheduler: SnapshotScheduler

    async def initialize(self) -> None:
        """Open price source clients and restore competition state."""
        for source in self.sources:
            try:
                await source.initialize()
            except Exception as e:
                logger.error("Failed to initialize price source", source=source.name, error=str(e))
        await self.competition_manager.initialize()

    async def close(self) -> None:
        """Stop the scheduler and close price source clients."""
        await self.scheduler.stop()
        for source in self.sources:
            try:
                await source.close()
            except Exception as e:
                logger.error("Failed to close price source", source=source.name, error=str(e))

    async def is_healthy(self) -> dict[str, bool]:
        return {
            "price_resolver": await self.price_resolver.is_healthy(),
            "balance_manager": await self.balance_manager.is_healthy(),
            "trade_simulator": await self.trade_simulator.is_healthy(),
            "competition_manager": await self.competition_manager.is_healthy(),
        }


def create_services(
    settings: Settings,
    database: Database,
    sources: Optional[list[PriceSource]] = None,
) -> Services:
    """Build the service graph. `sources` overrides the configured price sources."""
    if sources is None:
        sources = create_price_sources(settings)

    price_repository = PriceRepository(database)
    balance_repository = BalanceRepository(database)
    competition_repository = CompetitionRepository(database)
    trade_repository = TradeRepository(database)

    price_resolver = PriceResolver(
        sources=sources,
        price_repository=price_repository,
        cache=TTLCache(
            ttl_seconds=settings.price_cache_ttl_seconds,
            max_entries=settings.price_cache_max_entries,
        ),
        provider_timeout=settings.provider_timeout_seconds,
    )
    balance_manager = BalanceManager(balance_repository, settings.initial_allocation)
    trade_simulator = TradeSimulator(balance_manager, price_resolver, trade_repository)
    competition_manager = CompetitionManager(
        competition_repository=competition_repository,
        price_repository=price_repository,
        balance_manager=balance_manager,
        trade_simulator=trade_simulator,
        price_resolver=price_resolver,
        price_freshness_seconds=settings.price_freshness_seconds,
    )
    scheduler = SnapshotScheduler(competition_manager, interval=settings.snapshot_interval_seconds)

    return Services(
        database=database,
        sources=sources,
        price_resolver=price_resolver,
        balance_manager=balance_manager,
        trade_simulator=trade_simulator,
        competition_manager=competition_manager,
        scheduler=scheduler,
    )
