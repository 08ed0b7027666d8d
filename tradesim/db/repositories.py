"""
Repositories: the read/write contracts the core uses against the database.
Each operation runs in its own committed session.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tradesim.chains import classify
from tradesim.db.database import Database, generate_id
from tradesim.db.models import (
    Balance,
    ChainFamily,
    Competition,
    CompetitionStatus,
    CompetitionTeam,
    PortfolioSnapshot,
    PortfolioTokenValue,
    PriceRecord,
    SpecificChain,
    Trade,
    utcnow,
)
from tradesim.utils.logging import get_logger

logger = get_logger(__name__)


async def upsert_balance(
    session: AsyncSession,
    team_id: str,
    token_address: str,
    amount: Decimal,
    specific_chain: Optional[SpecificChain] = None,
) -> Balance:
    """Set a balance inside an open session, inserting the row if needed."""
    result = await session.execute(
        select(Balance).where(
            Balance.team_id == team_id,
            Balance.token_address == token_address,
        )
    )
    balance = result.scalar_one_or_none()
    if balance:
        balance.amount = amount
        if specific_chain is not None:
            balance.specific_chain = specific_chain
    else:
        balance = Balance(
            team_id=team_id,
            token_address=token_address,
            amount=amount,
            specific_chain=specific_chain,
        )
        session.add(balance)
    return balance


# ===================
# Price History
# ===================

class PriceRepository:
    """Append-only store of resolved prices."""

    def __init__(self, db: Database):
        self.db = db

    async def create(
        self,
        token: str,
        price: Decimal,
        chain: ChainFamily,
        specific_chain: Optional[SpecificChain] = None,
        timestamp: Optional[datetime] = None,
    ) -> PriceRecord:
        async with self.db.session() as session:
            record = PriceRecord(
                token=token,
                price=price,
                chain=chain,
                specific_chain=specific_chain,
                timestamp=timestamp or utcnow(),
            )
            session.add(record)
            await session.flush()
            return record

    async def get_latest_price(self, token: str) -> Optional[PriceRecord]:
        async with self.db.session() as session:
            result = await session.execute(
                select(PriceRecord)
                .where(PriceRecord.token == token)
                .order_by(PriceRecord.timestamp.desc(), PriceRecord.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def get_price_history(self, token: str, hours: float) -> list[PriceRecord]:
        """Records for a token within the last `hours`, oldest first."""
        cutoff = datetime.now(timezone.utc) - timedelta(hours=hours)
        async with self.db.session() as session:
            result = await session.execute(
                select(PriceRecord)
                .where(PriceRecord.token == token, PriceRecord.timestamp > cutoff)
                .order_by(PriceRecord.timestamp.asc(), PriceRecord.id.asc())
            )
            return list(result.scalars().all())

    async def count(self) -> int:
        async with self.db.session() as session:
            result = await session.execute(select(func.count()).select_from(PriceRecord))
            return result.scalar_one()


# ===================
# Balances
# ===================

class BalanceRepository:
    """Per-team token balances."""

    def __init__(self, db: Database):
        self.db = db

    async def get_balance(self, team_id: str, token_address: str) -> Optional[Balance]:
        async with self.db.session() as session:
            result = await session.execute(
                select(Balance).where(
                    Balance.team_id == team_id,
                    Balance.token_address == token_address,
                )
            )
            return result.scalar_one_or_none()

    async def get_team_balances(self, team_id: str) -> list[Balance]:
        async with self.db.session() as session:
            result = await session.execute(
                select(Balance).where(Balance.team_id == team_id).order_by(Balance.id)
            )
            return list(result.scalars().all())

    async def save_balance(
        self,
        team_id: str,
        token_address: str,
        amount: Decimal,
        specific_chain: Optional[SpecificChain] = None,
    ) -> Balance:
        """Insert or update a balance row."""
        async with self.db.session() as session:
            balance = await upsert_balance(session, team_id, token_address, amount, specific_chain)
            await session.flush()
            return balance

    async def reset_team_balances(self, team_id: str, allocation: dict[str, Decimal]) -> None:
        """Replace all of a team's balances with `allocation` atomically."""
        async with self.db.session() as session:
            await session.execute(delete(Balance).where(Balance.team_id == team_id))
            for token_address, amount in allocation.items():
                session.add(
                    Balance(
                        team_id=team_id,
                        token_address=token_address,
                        amount=amount,
                        specific_chain=classify(token_address).specific_chain,
                    )
                )

    async def count(self) -> int:
        async with self.db.session() as session:
            result = await session.execute(select(func.count()).select_from(Balance))
            return result.scalar_one()


# ===================
# Competitions & Snapshots
# ===================

class CompetitionRepository:
    """Competitions, participation and portfolio snapshots."""

    def __init__(self, db: Database):
        self.db = db

    async def create(self, name: str, description: Optional[str] = None) -> Competition:
        async with self.db.session() as session:
            competition = Competition(
                id=generate_id(),
                name=name,
                description=description,
                status=CompetitionStatus.PENDING,
            )
            session.add(competition)
            await session.flush()
            return competition

    async def update(self, competition_id: str, **fields) -> Optional[Competition]:
        async with self.db.session() as session:
            competition = await session.get(Competition, competition_id)
            if not competition:
                return None
            for key, value in fields.items():
                setattr(competition, key, value)
            competition.updated_at = utcnow()
            await session.flush()
            return competition

    async def activate(self, competition_id: str, start_date: datetime) -> bool:
        """Flip PENDING -> ACTIVE in a single statement.

        Returns False if the row was not PENDING. Raises IntegrityError when
        another competition is already ACTIVE.
        """
        async with self.db.session() as session:
            result = await session.execute(
                update(Competition)
                .where(
                    Competition.id == competition_id,
                    Competition.status == CompetitionStatus.PENDING,
                )
                .values(
                    status=CompetitionStatus.ACTIVE,
                    start_date=start_date,
                    updated_at=utcnow(),
                )
            )
            return result.rowcount == 1

    async def find_by_id(self, competition_id: str) -> Optional[Competition]:
        async with self.db.session() as session:
            return await session.get(Competition, competition_id)

    async def find_active(self) -> Optional[Competition]:
        async with self.db.session() as session:
            result = await session.execute(
                select(Competition).where(Competition.status == CompetitionStatus.ACTIVE)
            )
            return result.scalars().first()

    async def find_all(self) -> list[Competition]:
        async with self.db.session() as session:
            result = await session.execute(
                select(Competition).order_by(Competition.created_at.desc())
            )
            return list(result.scalars().all())

    async def add_team_to_competition(self, competition_id: str, team_id: str) -> None:
        async with self.db.session() as session:
            existing = await session.get(CompetitionTeam, (competition_id, team_id))
            if not existing:
                session.add(CompetitionTeam(competition_id=competition_id, team_id=team_id))

    async def remove_competition_teams(self, competition_id: str) -> None:
        async with self.db.session() as session:
            await session.execute(
                delete(CompetitionTeam).where(CompetitionTeam.competition_id == competition_id)
            )

    async def get_competition_teams(self, competition_id: str) -> list[str]:
        async with self.db.session() as session:
            result = await session.execute(
                select(CompetitionTeam.team_id)
                .where(CompetitionTeam.competition_id == competition_id)
                .order_by(CompetitionTeam.created_at, CompetitionTeam.team_id)
            )
            return list(result.scalars().all())

    async def create_portfolio_snapshot(
        self,
        team_id: str,
        competition_id: str,
        timestamp: datetime,
        total_value: Decimal,
    ) -> PortfolioSnapshot:
        async with self.db.session() as session:
            snapshot = PortfolioSnapshot(
                team_id=team_id,
                competition_id=competition_id,
                timestamp=timestamp,
                total_value=total_value,
            )
            session.add(snapshot)
            await session.flush()
            return snapshot

    async def create_portfolio_token_value(
        self,
        portfolio_snapshot_id: int,
        token_address: str,
        amount: Decimal,
        value_usd: Decimal,
        price: Decimal,
        specific_chain: Optional[SpecificChain] = None,
    ) -> PortfolioTokenValue:
        async with self.db.session() as session:
            token_value = PortfolioTokenValue(
                portfolio_snapshot_id=portfolio_snapshot_id,
                token_address=token_address,
                amount=amount,
                value_usd=value_usd,
                price=price,
                specific_chain=specific_chain,
            )
            session.add(token_value)
            await session.flush()
            return token_value

    async def get_latest_portfolio_snapshots(self, competition_id: str) -> list[PortfolioSnapshot]:
        """Most recent snapshot of each team in a competition."""
        latest = (
            select(func.max(PortfolioSnapshot.id).label("id"))
            .where(PortfolioSnapshot.competition_id == competition_id)
            .group_by(PortfolioSnapshot.team_id)
            .subquery()
        )
        async with self.db.session() as session:
            result = await session.execute(
                select(PortfolioSnapshot)
                .join(latest, PortfolioSnapshot.id == latest.c.id)
                .order_by(PortfolioSnapshot.id)
            )
            return list(result.scalars().all())

    async def get_team_portfolio_snapshots(
        self, competition_id: str, team_id: str
    ) -> list[PortfolioSnapshot]:
        async with self.db.session() as session:
            result = await session.execute(
                select(PortfolioSnapshot)
                .where(
                    PortfolioSnapshot.competition_id == competition_id,
                    PortfolioSnapshot.team_id == team_id,
                )
                .order_by(PortfolioSnapshot.timestamp.desc(), PortfolioSnapshot.id.desc())
            )
            return list(result.scalars().all())

    async def get_portfolio_token_values(self, snapshot_id: int) -> list[PortfolioTokenValue]:
        async with self.db.session() as session:
            result = await session.execute(
                select(PortfolioTokenValue)
                .where(PortfolioTokenValue.portfolio_snapshot_id == snapshot_id)
                .order_by(PortfolioTokenValue.id)
            )
            return list(result.scalars().all())

    async def count(self) -> int:
        async with self.db.session() as session:
            result = await session.execute(select(func.count()).select_from(Competition))
            return result.scalar_one()


# ===================
# Trades
# ===================

class TradeRepository:
    """Immutable trade log."""

    def __init__(self, db: Database):
        self.db = db

    async def create(self, **fields) -> Trade:
        async with self.db.session() as session:
            trade = Trade(id=fields.pop("id", None) or generate_id(), **fields)
            session.add(trade)
            await session.flush()
            return trade

    async def create_settled(self, balances: dict[str, Decimal], **fields) -> Trade:
        """
        Record an executed trade together with the team's new balances.

        `balances` maps token address to the amount held after the trade.
        Either every balance and the trade row are written, or none are.
        """
        async with self.db.session() as session:
            for token_address, amount in balances.items():
                await upsert_balance(
                    session,
                    fields["team_id"],
                    token_address,
                    amount,
                    classify(token_address).specific_chain,
                )
            trade = Trade(id=fields.pop("id", None) or generate_id(), **fields)
            session.add(trade)
            await session.flush()
            return trade

    async def get_team_trades(
        self,
        team_id: str,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[Trade]:
        """A team's trades, newest first."""
        query = (
            select(Trade)
            .where(Trade.team_id == team_id)
            .order_by(Trade.timestamp.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        if offset is not None:
            query = query.offset(offset)
        async with self.db.session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def get_competition_trades(
        self,
        competition_id: str,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[Trade]:
        query = (
            select(Trade)
            .where(Trade.competition_id == competition_id)
            .order_by(Trade.timestamp.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        if offset is not None:
            query = query.offset(offset)
        async with self.db.session() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def count(self) -> int:
        async with self.db.session() as session:
            result = await session.execute(select(func.count()).select_from(Trade))
            return result.scalar_one()
