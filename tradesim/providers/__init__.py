"""
Price source registry.
Builds the ordered list of sources the resolver walks.
"""

from typing import Optional

import httpx

from tradesim.config import Settings
from tradesim.providers.base import PriceQuote, PriceSource, ProviderError, RateLimitError
from tradesim.providers.dexscreener import DexScreenerProvider
from tradesim.providers.jupiter import JupiterProvider
from tradesim.providers.noves import NovesProvider
from tradesim.providers.raydium import RaydiumProvider
from tradesim.utils.logging import get_logger

logger = get_logger(__name__)

__all__ = [
    "DexScreenerProvider",
    "JupiterProvider",
    "NovesProvider",
    "PriceQuote",
    "PriceSource",
    "ProviderError",
    "RaydiumProvider",
    "RateLimitError",
    "create_price_sources",
]


def create_price_sources(
    settings: Settings,
    client: Optional[httpx.AsyncClient] = None,
) -> list[PriceSource]:
    """
    Build sources in priority order: Noves (only with an API key),
    Jupiter, Raydium, then DexScreener.
    """
    timeout = settings.provider_timeout_seconds
    sources: list[PriceSource] = []

    if settings.noves_api_key:
        sources.append(
            NovesProvider(
                api_key=settings.noves_api_key,
                base_url=settings.noves_api_url,
                chains=settings.evm_chain_list,
                timeout=timeout,
                client=client,
            )
        )
    else:
        logger.warning("NOVES_API_KEY not set, EVM prices limited to DexScreener")

    sources.append(JupiterProvider(settings.jupiter_price_api_url, timeout=timeout, client=client))
    sources.append(RaydiumProvider(settings.raydium_api_url, timeout=timeout, client=client))
    sources.append(DexScreenerProvider(settings.dexscreener_api_url, timeout=timeout, client=client))

    logger.info("Price sources configured", sources=[s.name for s in sources])
    return sources
