"""
SQLAlchemy database models for the trading simulator.
Prices, balances, trades, competitions and portfolio snapshots.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Enum as SQLEnum,
    TypeDecorator,
    func,
    text,
)
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always comes back as UTC.

    SQLite drops tzinfo on the way out; PostgreSQL keeps it.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
            if dialect.name == "sqlite":
                value = value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models."""
    pass


# ===================
# Enums
# ===================

class ChainFamily(str, Enum):
    """Coarse blockchain families."""
    EVM = "evm"
    SVM = "svm"


class SpecificChain(str, Enum):
    """Specific blockchain networks."""
    ETH = "eth"
    POLYGON = "polygon"
    BSC = "bsc"
    ARBITRUM = "arbitrum"
    OPTIMISM = "optimism"
    AVALANCHE = "avalanche"
    BASE = "base"
    LINEA = "linea"
    ZKSYNC = "zksync"
    SCROLL = "scroll"
    MANTLE = "mantle"
    SVM = "svm"  # Solana


class CompetitionStatus(str, Enum):
    """Competition lifecycle states."""
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


# Amount/price column type shared by all tables
Amount = Numeric(30, 15, asdecimal=True)


# ===================
# Models
# ===================

class PriceRecord(Base):
    """Append-only history of resolved token prices."""

    __tablename__ = "prices"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token: Mapped[str] = mapped_column(String(64))
    price: Mapped[Decimal] = mapped_column(Amount)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    chain: Mapped[ChainFamily] = mapped_column(SQLEnum(ChainFamily))
    specific_chain: Mapped[Optional[SpecificChain]] = mapped_column(SQLEnum(SpecificChain), nullable=True)

    __table_args__ = (
        Index("ix_prices_token_timestamp", "token", "timestamp"),
    )


class Balance(Base):
    """A team's holding of one token."""

    __tablename__ = "balances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    team_id: Mapped[str] = mapped_column(String(36), index=True)
    token_address: Mapped[str] = mapped_column(String(64))
    amount: Mapped[Decimal] = mapped_column(Amount)
    specific_chain: Mapped[Optional[SpecificChain]] = mapped_column(SQLEnum(SpecificChain), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    # One row per token per team
    __table_args__ = (
        Index("ix_balances_team_token", "team_id", "token_address", unique=True),
    )


class Competition(Base):
    """Trading competition."""

    __tablename__ = "competitions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(100))
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[CompetitionStatus] = mapped_column(
        SQLEnum(CompetitionStatus),
        default=CompetitionStatus.PENDING,
    )
    start_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    # At most one ACTIVE competition system-wide
    __table_args__ = (
        Index(
            "uq_competitions_single_active",
            "status",
            unique=True,
            sqlite_where=text("status = 'ACTIVE'"),
            postgresql_where=text("status = 'ACTIVE'"),
        ),
    )


class CompetitionTeam(Base):
    """Team participation in a competition."""

    __tablename__ = "competition_teams"

    competition_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("competitions.id", ondelete="CASCADE"), primary_key=True
    )
    team_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class Trade(Base):
    """Simulated swap attempt. Immutable once written."""

    __tablename__ = "trades"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    team_id: Mapped[str] = mapped_column(String(36))
    competition_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("competitions.id", ondelete="CASCADE")
    )

    from_token: Mapped[str] = mapped_column(String(64))
    to_token: Mapped[str] = mapped_column(String(64))
    from_amount: Mapped[Decimal] = mapped_column(Amount)
    to_amount: Mapped[Decimal] = mapped_column(Amount)
    price: Mapped[Decimal] = mapped_column(Amount)  # to_amount / from_amount

    success: Mapped[bool] = mapped_column(Boolean)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    # Chain information
    from_chain: Mapped[Optional[ChainFamily]] = mapped_column(SQLEnum(ChainFamily), nullable=True)
    to_chain: Mapped[Optional[ChainFamily]] = mapped_column(SQLEnum(ChainFamily), nullable=True)
    from_specific_chain: Mapped[Optional[SpecificChain]] = mapped_column(SQLEnum(SpecificChain), nullable=True)
    to_specific_chain: Mapped[Optional[SpecificChain]] = mapped_column(SQLEnum(SpecificChain), nullable=True)

    __table_args__ = (
        Index("ix_trades_team", "team_id"),
        Index("ix_trades_competition", "competition_id"),
        Index("ix_trades_timestamp", "timestamp"),
    )


class PortfolioSnapshot(Base):
    """Point-in-time total value of a team's holdings."""

    __tablename__ = "portfolio_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    team_id: Mapped[str] = mapped_column(String(36))
    competition_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("competitions.id", ondelete="CASCADE")
    )
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    total_value: Mapped[Decimal] = mapped_column(Amount)

    __table_args__ = (
        Index("ix_portfolio_snapshots_team_competition", "team_id", "competition_id"),
    )


class PortfolioTokenValue(Base):
    """Per-token breakdown of a portfolio snapshot."""

    __tablename__ = "portfolio_token_values"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    portfolio_snapshot_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("portfolio_snapshots.id", ondelete="CASCADE"), index=True
    )
    token_address: Mapped[str] = mapped_column(String(64))
    amount: Mapped[Decimal] = mapped_column(Amount)
    value_usd: Mapped[Decimal] = mapped_column(Amount)
    price: Mapped[Decimal] = mapped_column(Amount)
    specific_chain: Mapped[Optional[SpecificChain]] = mapped_column(SQLEnum(SpecificChain), nullable=True)
