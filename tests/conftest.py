"""
Pytest configuration and fixtures.
"""

import random
from decimal import Decimal
from typing import Optional

import pytest

from tradesim.chains import classify
from tradesim.config import SOL_MINT, USDC_MINT, USDT_MINT, Settings
from tradesim.db.database import Database
from tradesim.db.models import ChainFamily, SpecificChain
from tradesim.providers.base import PriceQuote, PriceSource
from tradesim.services import Services, create_services

# Plain strings classify as Solana mints
TOKEN_A = "TokenAaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"
TOKEN_B = "TokenBbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb"
TOKEN_C = "TokenCcccccccccccccccccccccccccccccccccccccc"
EVM_TOKEN = "0x" + "ab" * 20


class FakePriceSource(PriceSource):
    """In-memory price source that counts its calls."""

    def __init__(
        self,
        prices: Optional[dict[str, Decimal]] = None,
        name: str = "fake",
        chain_families: frozenset = frozenset({ChainFamily.SVM, ChainFamily.EVM}),
        specific_chain: Optional[SpecificChain] = None,
        error: Optional[Exception] = None,
    ):
        self.name = name
        self.chain_families = chain_families
        self.prices = dict(prices or {})
        self.specific_chain = specific_chain
        self.error = error
        self.calls: list[tuple] = []

    async def get_price(self, token, chain_family=None, specific_chain=None):
        self.calls.append((token, chain_family, specific_chain))
        if self.error:
            raise self.error
        price = self.prices.get(token)
        if price is None:
            return None
        classification = classify(token, chain_family, specific_chain)
        return PriceQuote(
            token=token,
            price=Decimal(price),
            chain_family=classification.chain_family,
            specific_chain=self.specific_chain or classification.specific_chain,
            source=self.name,
        )


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a throwaway SQLite database."""
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'tradesim.db'}",
        noves_api_key=None,
        initial_sol_balance=Decimal("10"),
        initial_usdc_balance=Decimal("1000"),
        initial_usdt_balance=Decimal("1000"),
        initial_evm_usdc_balance=Decimal("0"),
    )


@pytest.fixture
async def database(settings):
    db = Database(settings.database_url)
    await db.connect()
    await db.create_tables()
    yield db
    await db.close()


@pytest.fixture
def prices() -> dict[str, Decimal]:
    return {
        SOL_MINT: Decimal("100"),
        USDC_MINT: Decimal("1"),
        USDT_MINT: Decimal("1"),
        TOKEN_A: Decimal("10"),
        TOKEN_B: Decimal("5"),
        TOKEN_C: Decimal("1"),
    }


@pytest.fixture
def fake_source(prices) -> FakePriceSource:
    return FakePriceSource(prices)


@pytest.fixture
def services(settings, database, fake_source) -> Services:
    services = create_services(settings, database, sources=[fake_source])
    # Deterministic jitter
    services.trade_simulator._rng = random.Random(42)
    services.price_resolver._rng = random.Random(42)
    return services
