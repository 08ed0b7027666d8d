"""
Competition lifecycle, portfolio snapshots and leaderboard.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError

from tradesim.db.models import (
    Competition,
    CompetitionStatus,
    PortfolioSnapshot,
    PriceRecord,
    SpecificChain,
    utcnow,
)
from tradesim.db.repositories import CompetitionRepository, PriceRepository
from tradesim.services.balance_manager import BalanceManager
from tradesim.services.errors import ActiveCompetitionError, InvalidCompetitionStateError
from tradesim.services.price_resolver import PriceResolver
from tradesim.services.trade_simulator import TradeSimulator
from tradesim.utils.logging import LoggerMixin


@dataclass
class LeaderboardEntry:
    team_id: str
    value: Decimal


@dataclass
class TokenValue:
    """One token's share of a portfolio snapshot."""
    amount: Decimal
    value_usd: Decimal
    price: Decimal
    specific_chain: Optional[SpecificChain] = None


@dataclass
class PortfolioValue:
    """A stored portfolio snapshot with its per-token breakdown."""
    team_id: str
    competition_id: str
    timestamp: datetime
    total_value: Decimal
    values_by_token: dict[str, TokenValue] = field(default_factory=dict)


class CompetitionManager(LoggerMixin):
    """Runs competitions: start, snapshot, rank, end."""

    def __init__(
        self,
        competition_repository: CompetitionRepository,
        price_repository: PriceRepository,
        balance_manager: BalanceManager,
        trade_simulator: TradeSimulator,
        price_resolver: PriceResolver,
        price_freshness_seconds: float = 600.0,
    ):
        self.competitions = competition_repository
        self.prices = price_repository
        self.balance_manager = balance_manager
        self.trade_simulator = trade_simulator
        self.price_resolver = price_resolver
        self.price_freshness = timedelta(seconds=price_freshness_seconds)

        self._active_competition_id: Optional[str] = None
        self._loaded = False
        self._lifecycle_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Restore the active competition from the database."""
        try:
            active = await self.competitions.find_active()
        except Exception as e:
            self.log.error("Failed to load active competition", error=str(e))
            return

        self._active_competition_id = active.id if active else None
        self._loaded = True
        if active:
            self.log.info("Active competition loaded", competition_id=active.id, name=active.name)

    # ===================
    # Lifecycle
    # ===================

    async def create_competition(self, name: str, description: Optional[str] = None) -> Competition:
        competition = await self.competitions.create(name, description)
        self.log.info("Competition created", competition_id=competition.id, name=name)
        return competition

    async def start_competition(self, competition_id: str, team_ids: list[str]) -> Competition:
        """
        Start a pending competition with the given teams.

        Every team's balances are reset to the initial allocation and an
        initial portfolio snapshot is taken.

        Raises:
            InvalidCompetitionStateError: competition missing or not PENDING
            ActiveCompetitionError: another competition is already ACTIVE
        """
        async with self._lifecycle_lock:
            competition = await self.competitions.find_by_id(competition_id)
            if not competition:
                raise InvalidCompetitionStateError(f"Competition not found: {competition_id}")
            if competition.status != CompetitionStatus.PENDING:
                raise InvalidCompetitionStateError(
                    f"Competition cannot be started: {competition.status.value}"
                )

            active = await self.competitions.find_active()
            if active:
                raise ActiveCompetitionError(f"Another competition is already active: {active.id}")

            # The partial unique index rejects a second ACTIVE row
            try:
                activated = await self.competitions.activate(competition_id, utcnow())
            except IntegrityError as e:
                raise ActiveCompetitionError("Another competition is already active") from e
            if not activated:
                raise InvalidCompetitionStateError(f"Competition cannot be started: {competition_id}")

            self._active_competition_id = competition_id
            self._loaded = True

            try:
                for team_id in dict.fromkeys(team_ids):
                    await self.balance_manager.reset_team_balances(team_id)
                    await self.competitions.add_team_to_competition(competition_id, team_id)
                await self.take_portfolio_snapshots(competition_id)
            except Exception:
                await self._revert_start(competition_id)
                raise

            self.log.info("Competition started", competition_id=competition_id, teams=len(team_ids))
            return await self.competitions.find_by_id(competition_id)

    async def _revert_start(self, competition_id: str) -> None:
        """Return a half-started competition to PENDING so it can be retried."""
        self._active_competition_id = None
        try:
            await self.competitions.remove_competition_teams(competition_id)
            await self.competitions.update(
                competition_id,
                status=CompetitionStatus.PENDING,
                start_date=None,
            )
        except Exception as e:
            self.log.error("Failed to revert competition start", competition_id=competition_id, error=str(e))
            return
        self.log.warning("Competition start failed, reverted to pending", competition_id=competition_id)

    async def end_competition(self, competition_id: str) -> Competition:
        """
        End the active competition after a final snapshot.

        Raises:
            InvalidCompetitionStateError: competition missing, not ACTIVE,
                or not the competition this manager considers active
        """
        async with self._lifecycle_lock:
            if not self._loaded:
                await self.initialize()

            competition = await self.competitions.find_by_id(competition_id)
            if not competition:
                raise InvalidCompetitionStateError(f"Competition not found: {competition_id}")
            if competition.status != CompetitionStatus.ACTIVE:
                raise InvalidCompetitionStateError(f"Competition is not active: {competition.status.value}")
            if self._active_competition_id != competition_id:
                raise InvalidCompetitionStateError(
                    f"Competition is not the active one: {self._active_competition_id}"
                )

            await self.take_portfolio_snapshots(competition_id)

            competition = await self.competitions.update(
                competition_id,
                status=CompetitionStatus.COMPLETED,
                end_date=utcnow(),
            )
            self._active_competition_id = None
            self.log.info("Competition ended", competition_id=competition_id)
            return competition

    # ===================
    # Queries
    # ===================

    async def get_competition(self, competition_id: str) -> Optional[Competition]:
        return await self.competitions.find_by_id(competition_id)

    async def get_all_competitions(self) -> list[Competition]:
        return await self.competitions.find_all()

    async def is_competition_active(self, competition_id: str) -> bool:
        competition = await self.competitions.find_by_id(competition_id)
        return competition is not None and competition.status == CompetitionStatus.ACTIVE

    async def get_active_competition(self) -> Optional[Competition]:
        if self._active_competition_id:
            competition = await self.competitions.find_by_id(self._active_competition_id)
            if competition and competition.status == CompetitionStatus.ACTIVE:
                return competition
            # Out of sync with the database
            self._active_competition_id = None

        active = await self.competitions.find_active()
        if active:
            self._active_competition_id = active.id
        return active

    # ===================
    # Snapshots
    # ===================

    async def _latest_record(self, token: str) -> Optional[PriceRecord]:
        try:
            return await self.prices.get_latest_price(token)
        except Exception as e:
            self.log.error("Failed to read latest price", token=token, error=str(e))
            return None

    async def take_portfolio_snapshots(self, competition_id: str) -> list[PortfolioSnapshot]:
        """Value every participating team's holdings and store a snapshot each."""
        started = time.monotonic()
        timestamp = utcnow()
        teams = await self.competitions.get_competition_teams(competition_id)

        lookups = 0
        history_hits = 0
        reused = 0
        snapshots = []

        for team_id in teams:
            token_values: dict[str, TokenValue] = {}
            total = Decimal("0")

            try:
                balances = await self.balance_manager.get_all_balances(team_id)
            except Exception as e:
                self.log.error("Failed to read balances, team skipped", team_id=team_id, error=str(e))
                continue

            for balance in balances:
                if balance.amount <= 0:
                    continue
                lookups += 1
                token = balance.token_address
                price: Optional[Decimal] = None
                specific_chain = balance.specific_chain

                record = await self._latest_record(token)
                if record is not None:
                    history_hits += 1
                    specific_chain = record.specific_chain or specific_chain

                if record is not None and timestamp - record.timestamp < self.price_freshness:
                    price = record.price
                    reused += 1
                else:
                    if record is not None and record.specific_chain is not None:
                        # Known network skips chain discovery
                        info = await self.price_resolver.get_token_info(
                            token, record.chain, record.specific_chain
                        )
                    else:
                        info = await self.price_resolver.get_token_info(token)
                    if info is not None:
                        price = info.price
                        specific_chain = info.specific_chain or specific_chain

                if price is None:
                    self.log.warning("No price for token, excluded from snapshot", team_id=team_id, token=token)
                    continue

                value_usd = balance.amount * price
                token_values[token] = TokenValue(
                    amount=balance.amount,
                    value_usd=value_usd,
                    price=price,
                    specific_chain=specific_chain,
                )
                total += value_usd

            snapshot = await self.competitions.create_portfolio_snapshot(
                team_id=team_id,
                competition_id=competition_id,
                timestamp=timestamp,
                total_value=total,
            )
            for token, value in token_values.items():
                await self.competitions.create_portfolio_token_value(
                    portfolio_snapshot_id=snapshot.id,
                    token_address=token,
                    amount=value.amount,
                    value_usd=value.value_usd,
                    price=value.price,
                    specific_chain=value.specific_chain,
                )
            snapshots.append(snapshot)

        self.log.info(
            "Portfolio snapshots taken",
            competition_id=competition_id,
            teams=len(teams),
            price_lookups=lookups,
            history_hits=history_hits,
            reused_prices=reused,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return snapshots

    async def get_leaderboard(self, competition_id: str) -> list[LeaderboardEntry]:
        """Teams ranked by portfolio value, highest first."""
        try:
            snapshots = await self.competitions.get_latest_portfolio_snapshots(competition_id)
            if snapshots:
                entries = [LeaderboardEntry(s.team_id, s.total_value) for s in snapshots]
            else:
                # No snapshots yet: value portfolios live
                entries = []
                for team_id in await self.competitions.get_competition_teams(competition_id):
                    value = await self.trade_simulator.calculate_portfolio_value(team_id)
                    entries.append(LeaderboardEntry(team_id, value))
        except Exception as e:
            self.log.error("Failed to build leaderboard", competition_id=competition_id, error=str(e))
            return []

        return sorted(entries, key=lambda e: e.value, reverse=True)

    async def get_team_portfolio_snapshots(self, competition_id: str, team_id: str) -> list[PortfolioValue]:
        """A team's snapshots in a competition, newest first."""
        result = []
        for snapshot in await self.competitions.get_team_portfolio_snapshots(competition_id, team_id):
            token_values = await self.competitions.get_portfolio_token_values(snapshot.id)
            result.append(
                PortfolioValue(
                    team_id=team_id,
                    competition_id=competition_id,
                    timestamp=snapshot.timestamp,
                    total_value=snapshot.total_value,
                    values_by_token={
                        tv.token_address: TokenValue(
                            amount=tv.amount,
                            value_usd=tv.value_usd,
                            price=tv.price,
                            specific_chain=tv.specific_chain,
                        )
                        for tv in token_values
                    },
                )
            )
        return result

    async def is_healthy(self) -> bool:
        try:
            await self.competitions.count()
            return True
        except Exception as e:
            self.log.error("Competition store unavailable", error=str(e))
            return False
