"""
Team balance ledger with an in-memory mirror of stored balances.
"""

from decimal import Decimal
from typing import Optional

from tradesim.chains import classify
from tradesim.db.models import Balance
from tradesim.db.repositories import BalanceRepository
from tradesim.services.errors import InsufficientBalanceError
from tradesim.utils.logging import LoggerMixin

ZERO = Decimal("0")


class BalanceManager(LoggerMixin):
    """Reads and mutates team balances."""

    def __init__(
        self,
        balance_repository: BalanceRepository,
        initial_allocation: dict[str, Decimal],
    ):
        self.balances = balance_repository
        self.initial_allocation = dict(initial_allocation)
        # team_id -> token -> amount
        self._mirror: dict[str, dict[str, Decimal]] = {}

    def _remember(self, team_id: str, token_address: str, amount: Decimal) -> None:
        self._mirror.setdefault(team_id, {})[token_address] = amount

    async def get_balance(self, team_id: str, token_address: str) -> Decimal:
        """
        Amount held, or zero if the team never held the token.

        Store failures propagate; they are not an empty balance.
        """
        cached = self._mirror.get(team_id, {}).get(token_address)
        if cached is not None:
            return cached

        balance = await self.balances.get_balance(team_id, token_address)
        if balance is None:
            return ZERO

        self._remember(team_id, token_address, balance.amount)
        return balance.amount

    async def get_all_balances(self, team_id: str) -> list[Balance]:
        balances = await self.balances.get_team_balances(team_id)
        self._mirror[team_id] = {b.token_address: b.amount for b in balances}
        return balances

    async def update_balance(self, team_id: str, token_address: str, amount: Decimal) -> None:
        """Set a balance to an absolute amount."""
        if amount < 0:
            raise ValueError("Balance cannot be negative")

        await self.balances.save_balance(
            team_id,
            token_address,
            amount,
            specific_chain=classify(token_address).specific_chain,
        )
        self._remember(team_id, token_address, amount)

    def remember_balances(self, team_id: str, amounts: dict[str, Decimal]) -> None:
        """Record balances that were written to the store elsewhere."""
        for token_address, amount in amounts.items():
            self._remember(team_id, token_address, amount)

    async def add_amount(self, team_id: str, token_address: str, amount: Decimal) -> None:
        current = await self.get_balance(team_id, token_address)
        await self.update_balance(team_id, token_address, current + amount)

    async def subtract_amount(self, team_id: str, token_address: str, amount: Decimal) -> None:
        current = await self.get_balance(team_id, token_address)
        if current < amount:
            raise InsufficientBalanceError("Insufficient balance", code="insufficient_balance")
        await self.update_balance(team_id, token_address, current - amount)

    async def has_sufficient_balance(self, team_id: str, token_address: str, amount: Decimal) -> bool:
        return await self.get_balance(team_id, token_address) >= amount

    async def reset_team_balances(
        self,
        team_id: str,
        allocation: Optional[dict[str, Decimal]] = None,
    ) -> None:
        """Replace every balance of a team with the initial allocation."""
        allocation = dict(allocation if allocation is not None else self.initial_allocation)
        await self.balances.reset_team_balances(team_id, allocation)
        self._mirror[team_id] = allocation
        self.log.info("Team balances reset", team_id=team_id, tokens=len(allocation))

    async def is_healthy(self) -> bool:
        try:
            await self.balances.count()
            return True
        except Exception as e:
            self.log.error("Balance store unavailable", error=str(e))
            return False
