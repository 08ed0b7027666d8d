"""
Price resolution across multiple sources.

Lookups go cache -> sources in priority order -> last persisted price.
Every resolved price is cached for a short TTL and appended to the price
history table.
"""

import asyncio
import random
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from tradesim.chains import classify
from tradesim.config import SOL_MINT
from tradesim.db.models import ChainFamily, SpecificChain, utcnow
from tradesim.db.repositories import PriceRepository
from tradesim.providers.base import PriceQuote, PriceSource
from tradesim.services.cache import TTLCache
from tradesim.utils.logging import LoggerMixin

# Timeframe label -> window in hours
TIMEFRAME_HOURS = {
    "1h": 1,
    "6h": 6,
    "24h": 24,
    "7d": 24 * 7,
    "30d": 24 * 30,
}
DEFAULT_TIMEFRAME = "24h"

# Fewer stored points than this and history is synthesized
MIN_HISTORY_POINTS = 2

SYNTHETIC_POINTS = 24
SYNTHETIC_VARIATION = 0.02


@dataclass
class TokenInfo:
    """Resolved price plus where the token lives."""
    token: str
    price: Decimal
    chain_family: ChainFamily
    specific_chain: Optional[SpecificChain]
    # True when no source answered and the last stored price was used
    stale: bool = False
    source: Optional[str] = None


@dataclass
class PricePoint:
    timestamp: datetime
    price: Decimal


@dataclass
class PriceHistory:
    token: str
    timeframe: str
    points: list[PricePoint] = field(default_factory=list)
    synthetic: bool = False


class PriceResolver(LoggerMixin):
    """Resolves USD prices through an ordered list of sources."""

    def __init__(
        self,
        sources: list[PriceSource],
        price_repository: PriceRepository,
        cache: TTLCache[PriceQuote],
        provider_timeout: float = 10.0,
        rng: Optional[random.Random] = None,
    ):
        self.sources = list(sources)
        self.prices = price_repository
        self.cache = cache
        self.provider_timeout = provider_timeout
        self._rng = rng or random.Random()

    # ===================
    # Current prices
    # ===================

    async def get_price(
        self,
        token: str,
        chain_family: Optional[ChainFamily] = None,
        specific_chain: Optional[SpecificChain] = None,
    ) -> Optional[Decimal]:
        """USD price of a token, or None when nothing knows it."""
        info = await self.get_token_info(token, chain_family, specific_chain)
        return info.price if info else None

    async def get_token_info(
        self,
        token: str,
        chain_family: Optional[ChainFamily] = None,
        specific_chain: Optional[SpecificChain] = None,
    ) -> Optional[TokenInfo]:
        """Price and chain placement of a token."""
        classification = classify(token, chain_family, specific_chain)
        family = classification.chain_family
        cache_key = (family, token)

        cached = self.cache.get(cache_key)
        if cached is not None and not self._other_network(cached, classification.specific_chain):
            return self._info_from_quote(cached, classification.specific_chain)

        quote = await self._query_sources(token, family, classification.specific_chain)
        if quote is not None:
            self.cache.set(cache_key, quote)
            await self._record_price(quote)
            return self._info_from_quote(quote, classification.specific_chain)

        # Nothing live: fall back to the last stored price, whatever its age
        try:
            record = await self.prices.get_latest_price(token)
        except Exception as e:
            self.log.error("Failed to read price history", token=token, error=str(e))
            return None

        if record is None:
            self.log.info("No price available", token=token, chain=family.value)
            return None

        self.log.warning(
            "Using stale price from history",
            token=token,
            price=str(record.price),
            recorded_at=record.timestamp.isoformat(),
        )
        return TokenInfo(
            token=token,
            price=record.price,
            chain_family=family,
            specific_chain=record.specific_chain or classification.specific_chain,
            stale=True,
        )

    @staticmethod
    def _other_network(quote: PriceQuote, hinted_chain: Optional[SpecificChain]) -> bool:
        """True when a quote was priced on a different network than the one asked for."""
        return (
            hinted_chain is not None
            and quote.specific_chain is not None
            and quote.specific_chain != hinted_chain
        )

    def _info_from_quote(
        self, quote: PriceQuote, hinted_chain: Optional[SpecificChain]
    ) -> TokenInfo:
        return TokenInfo(
            token=quote.token,
            price=quote.price,
            chain_family=quote.chain_family,
            specific_chain=quote.specific_chain or hinted_chain,
            source=quote.source,
        )

    async def _query_sources(
        self,
        token: str,
        family: ChainFamily,
        specific_chain: Optional[SpecificChain],
    ) -> Optional[PriceQuote]:
        """Walk applicable sources in order; first answer wins."""
        for source in self.sources:
            if not source.serves(family):
                continue
            try:
                quote = await asyncio.wait_for(
                    source.get_price(token, family, specific_chain),
                    timeout=self.provider_timeout,
                )
            except asyncio.TimeoutError:
                self.log.warning("Price source timed out", source=source.name, token=token)
                continue
            except Exception as e:
                self.log.error("Price source failed", source=source.name, token=token, error=str(e))
                continue

            if quote is not None:
                self.log.debug("Price resolved", source=source.name, token=token, price=str(quote.price))
                return quote

        return None

    async def _record_price(self, quote: PriceQuote) -> None:
        try:
            await self.prices.create(
                token=quote.token,
                price=quote.price,
                chain=quote.chain_family,
                specific_chain=quote.specific_chain,
                timestamp=quote.timestamp,
            )
        except Exception as e:
            self.log.error("Failed to store price", token=quote.token, error=str(e))

    async def is_supported(self, token: str) -> bool:
        """Whether any applicable source can price the token."""
        family = classify(token).chain_family
        for source in self.sources:
            if not source.serves(family):
                continue
            try:
                if await asyncio.wait_for(source.supports(token), timeout=self.provider_timeout):
                    return True
            except Exception as e:
                self.log.debug("Support check failed", source=source.name, token=token, error=str(e))
        return False

    # ===================
    # History
    # ===================

    async def get_price_history(
        self,
        token: str,
        timeframe: str = DEFAULT_TIMEFRAME,
        allow_synthetic: bool = True,
    ) -> Optional[PriceHistory]:
        """
        Price points for a token over a timeframe (1h, 6h, 24h, 7d, 30d).

        Falls back to 24 synthetic hourly points around the current price
        when too little history is stored.
        """
        if timeframe not in TIMEFRAME_HOURS:
            timeframe = DEFAULT_TIMEFRAME

        try:
            records = await self.prices.get_price_history(token, TIMEFRAME_HOURS[timeframe])
        except Exception as e:
            self.log.error("Failed to read price history", token=token, error=str(e))
            records = []

        if len(records) >= MIN_HISTORY_POINTS:
            return PriceHistory(
                token=token,
                timeframe=timeframe,
                points=[PricePoint(timestamp=r.timestamp, price=r.price) for r in records],
            )

        if not allow_synthetic:
            return None

        current = await self.get_price(token)
        if current is None:
            return None

        self.log.info("Generating synthetic price history", token=token, stored_points=len(records))
        now = utcnow()
        points = []
        for hours_ago in range(SYNTHETIC_POINTS - 1, -1, -1):
            variation = Decimal(str(self._rng.uniform(1 - SYNTHETIC_VARIATION, 1 + SYNTHETIC_VARIATION)))
            points.append(PricePoint(timestamp=now - timedelta(hours=hours_ago), price=current * variation))

        return PriceHistory(token=token, timeframe=timeframe, points=points, synthetic=True)

    # ===================
    # Maintenance
    # ===================

    def clear_cache(self) -> None:
        self.cache.clear()

    def get_source(self, name: str) -> Optional[PriceSource]:
        """Look up a source by name (case-insensitive)."""
        for source in self.sources:
            if source.name.lower() == name.lower():
                return source
        return None

    async def is_healthy(self) -> bool:
        """History store reachable and at least one source prices SOL."""
        try:
            await self.prices.count()
        except Exception as e:
            self.log.error("Price history store unavailable", error=str(e))
            return False

        for source in self.sources:
            if not source.serves(ChainFamily.SVM):
                continue
            try:
                quote = await asyncio.wait_for(
                    source.get_price(SOL_MINT, ChainFamily.SVM, SpecificChain.SVM),
                    timeout=self.provider_timeout,
                )
            except Exception as e:
                self.log.debug("Health probe failed", source=source.name, error=str(e))
                continue
            if quote is not None:
                return True

        return False
