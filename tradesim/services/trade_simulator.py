"""
Simulated trade execution.
Prices both legs, enforces size limits, applies slippage and moves balances.
"""

import asyncio
import random
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from tradesim.chains import classify
from tradesim.db.models import Trade
from tradesim.db.repositories import TradeRepository
from tradesim.services.balance_manager import BalanceManager
from tradesim.services.price_resolver import PriceResolver, TokenInfo
from tradesim.utils.logging import LoggerMixin, log_context

MIN_TRADE_AMOUNT = Decimal("0.000001")
MAX_TRADE_PORTFOLIO_FRACTION = Decimal("0.25")

# 0.5% slippage per $10,000 traded, jittered by +/-20%
SLIPPAGE_PER_10K_USD = Decimal("0.005")
SLIPPAGE_JITTER = 0.2
MAX_SLIPPAGE = Decimal("0.95")

# Recent trades kept in memory per team
TRADE_CACHE_SIZE = 100

ERROR_AMOUNT_TOO_SMALL = f"Trade amount too small (minimum: {MIN_TRADE_AMOUNT})"
ERROR_INSUFFICIENT_BALANCE = "Insufficient balance"
ERROR_PRICE_UNAVAILABLE = "Unable to determine price for tokens"
ERROR_MAX_SIZE = "Trade exceeds maximum size (25% of portfolio value)"
ERROR_SLIPPAGE_TOLERANCE = "Slippage exceeds tolerance"


@dataclass
class TradeResult:
    """Outcome of a trade attempt."""
    success: bool
    trade: Optional[Trade] = None
    error: Optional[str] = None


class TradeSimulator(LoggerMixin):
    """Executes simulated swaps between tokens."""

    def __init__(
        self,
        balance_manager: BalanceManager,
        price_resolver: PriceResolver,
        trade_repository: TradeRepository,
        rng: Optional[random.Random] = None,
    ):
        self.balance_manager = balance_manager
        self.price_resolver = price_resolver
        self.trades = trade_repository
        self._rng = rng or random.Random()
        # One lock per team serializes its trades
        self._team_locks: dict[str, asyncio.Lock] = {}
        # team_id -> recent trades, newest first
        self._trade_cache: dict[str, list[Trade]] = {}

    def _lock_for(self, team_id: str) -> asyncio.Lock:
        return self._team_locks.setdefault(team_id, asyncio.Lock())

    async def execute_trade(
        self,
        team_id: str,
        competition_id: str,
        from_token: str,
        to_token: str,
        from_amount: Decimal,
        slippage_tolerance: Optional[Decimal] = None,
    ) -> TradeResult:
        """
        Execute a trade between two tokens.

        Args:
            team_id: Trading team
            competition_id: Competition the trade counts towards
            from_token: Token sold
            to_token: Token bought
            from_amount: Amount of from_token to sell
            slippage_tolerance: Optional maximum slippage, in percent

        Returns:
            TradeResult; failures carry a human-readable error
        """
        with log_context(team_id=team_id, competition_id=competition_id):
            try:
                from_amount = Decimal(str(from_amount))
                if slippage_tolerance is not None:
                    slippage_tolerance = Decimal(str(slippage_tolerance))

                if from_amount < MIN_TRADE_AMOUNT:
                    return TradeResult(success=False, error=ERROR_AMOUNT_TOO_SMALL)

                async with self._lock_for(team_id):
                    return await self._execute(
                        team_id, competition_id, from_token, to_token, from_amount, slippage_tolerance
                    )
            except Exception as e:
                self.log.exception("Trade execution failed", from_token=from_token, to_token=to_token)
                return TradeResult(success=False, error=str(e))

    async def _execute(
        self,
        team_id: str,
        competition_id: str,
        from_token: str,
        to_token: str,
        from_amount: Decimal,
        slippage_tolerance: Optional[Decimal],
    ) -> TradeResult:
        balance = await self.balance_manager.get_balance(team_id, from_token)
        if balance < from_amount:
            return TradeResult(success=False, error=ERROR_INSUFFICIENT_BALANCE)

        from_info = await self.price_resolver.get_token_info(from_token)
        to_info = await self.price_resolver.get_token_info(to_token)
        if from_info is None or to_info is None:
            self.log.warning(
                "Trade rejected, missing price",
                from_priced=from_info is not None,
                to_priced=to_info is not None,
            )
            return await self._reject(
                team_id, competition_id, from_token, to_token, from_amount,
                ERROR_PRICE_UNAVAILABLE, from_info, to_info,
            )

        usd_value = from_amount * from_info.price

        portfolio_value = await self.calculate_portfolio_value(team_id)
        if usd_value > portfolio_value * MAX_TRADE_PORTFOLIO_FRACTION:
            self.log.info(
                "Trade rejected, exceeds size limit",
                usd_value=str(usd_value),
                portfolio_value=str(portfolio_value),
            )
            return await self._reject(
                team_id, competition_id, from_token, to_token, from_amount,
                ERROR_MAX_SIZE, from_info, to_info,
            )

        slippage = self.calculate_slippage(usd_value)
        if slippage_tolerance is not None and slippage * 100 > slippage_tolerance:
            return await self._reject(
                team_id, competition_id, from_token, to_token, from_amount,
                ERROR_SLIPPAGE_TOLERANCE, from_info, to_info,
            )

        to_amount = usd_value * (1 - slippage) / to_info.price

        # Debit, credit and trade row commit together or not at all
        try:
            new_balances = {from_token: balance - from_amount}
            if to_token not in new_balances:
                new_balances[to_token] = await self.balance_manager.get_balance(team_id, to_token)
            new_balances[to_token] += to_amount
            trade = await self.trades.create_settled(
                new_balances,
                team_id=team_id,
                competition_id=competition_id,
                from_token=from_token,
                to_token=to_token,
                from_amount=from_amount,
                to_amount=to_amount,
                price=to_amount / from_amount,
                success=True,
                from_chain=from_info.chain_family,
                to_chain=to_info.chain_family,
                from_specific_chain=from_info.specific_chain,
                to_specific_chain=to_info.specific_chain,
            )
        except Exception as e:
            self.log.exception("Trade settlement failed", from_token=from_token, to_token=to_token)
            return await self._reject(
                team_id, competition_id, from_token, to_token, from_amount,
                str(e), from_info, to_info,
            )

        self.balance_manager.remember_balances(team_id, new_balances)
        self._remember_trade(team_id, trade)

        self.log.info(
            "Trade executed",
            trade_id=trade.id,
            from_token=from_token,
            to_token=to_token,
            from_amount=str(from_amount),
            to_amount=str(to_amount),
            usd_value=str(usd_value),
            slippage_pct=f"{slippage * 100:.4f}",
        )
        return TradeResult(success=True, trade=trade)

    async def _reject(
        self,
        team_id: str,
        competition_id: str,
        from_token: str,
        to_token: str,
        from_amount: Decimal,
        error: str,
        from_info: Optional[TokenInfo],
        to_info: Optional[TokenInfo],
    ) -> TradeResult:
        """Persist a failed attempt and return the failure."""
        from_chain = from_info or classify(from_token)
        to_chain = to_info or classify(to_token)
        try:
            trade = await self.trades.create(
                team_id=team_id,
                competition_id=competition_id,
                from_token=from_token,
                to_token=to_token,
                from_amount=from_amount,
                to_amount=Decimal("0"),
                price=Decimal("0"),
                success=False,
                error=error,
                from_chain=from_chain.chain_family,
                to_chain=to_chain.chain_family,
                from_specific_chain=from_chain.specific_chain,
                to_specific_chain=to_chain.specific_chain,
            )
        except Exception as e:
            self.log.error("Failed to record rejected trade", error=str(e))
            return TradeResult(success=False, error=error)

        self._remember_trade(team_id, trade)
        return TradeResult(success=False, trade=trade, error=error)

    def calculate_slippage(self, usd_value: Decimal) -> Decimal:
        """Fractional slippage for a trade of the given USD value."""
        base = usd_value / Decimal(10_000) * SLIPPAGE_PER_10K_USD
        jitter = Decimal(str(self._rng.uniform(1 - SLIPPAGE_JITTER, 1 + SLIPPAGE_JITTER)))
        return min(base * jitter, MAX_SLIPPAGE)

    async def calculate_portfolio_value(self, team_id: str) -> Decimal:
        """Total USD value of a team's holdings. Unpriced tokens count as zero."""
        total = Decimal("0")
        for balance in await self.balance_manager.get_all_balances(team_id):
            if balance.amount <= 0:
                continue
            price = await self.price_resolver.get_price(
                balance.token_address, specific_chain=balance.specific_chain
            )
            if price is not None:
                total += balance.amount * price
        return total

    # ===================
    # Trade history
    # ===================

    def _remember_trade(self, team_id: str, trade: Trade) -> None:
        cached = self._trade_cache.setdefault(team_id, [])
        cached.insert(0, trade)
        del cached[TRADE_CACHE_SIZE:]

    async def get_team_trades(
        self,
        team_id: str,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[Trade]:
        """A team's trades, newest first."""
        cached = self._trade_cache.get(team_id)
        if limit and limit <= TRADE_CACHE_SIZE and offset is None and cached and len(cached) >= limit:
            return cached[:limit]

        try:
            trades = await self.trades.get_team_trades(team_id, limit, offset)
        except Exception as e:
            self.log.error("Failed to load team trades", team_id=team_id, error=str(e))
            return []

        if not offset and (not limit or limit <= TRADE_CACHE_SIZE):
            self._trade_cache[team_id] = trades[:TRADE_CACHE_SIZE]
        return trades

    async def get_competition_trades(
        self,
        competition_id: str,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> list[Trade]:
        try:
            return await self.trades.get_competition_trades(competition_id, limit, offset)
        except Exception as e:
            self.log.error("Failed to load competition trades", competition_id=competition_id, error=str(e))
            return []

    async def is_healthy(self) -> bool:
        try:
            await self.trades.count()
            return True
        except Exception as e:
            self.log.error("Trade store unavailable", error=str(e))
            return False
