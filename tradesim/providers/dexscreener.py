"""
DexScreener tokens API.
Last-resort source for both Solana and EVM tokens.
"""

from typing import Optional

from tradesim.chains import classify
from tradesim.db.models import ChainFamily, SpecificChain
from tradesim.providers.base import HttpPriceSource, PriceQuote, ProviderError, parse_price

# Our network names -> DexScreener chain ids
DEXSCREENER_CHAIN_IDS: dict[SpecificChain, str] = {
    SpecificChain.ETH: "ethereum",
    SpecificChain.POLYGON: "polygon",
    SpecificChain.BSC: "bsc",
    SpecificChain.ARBITRUM: "arbitrum",
    SpecificChain.OPTIMISM: "optimism",
    SpecificChain.AVALANCHE: "avalanche",
    SpecificChain.BASE: "base",
    SpecificChain.LINEA: "linea",
    SpecificChain.ZKSYNC: "zksync",
    SpecificChain.SCROLL: "scroll",
    SpecificChain.MANTLE: "mantle",
    SpecificChain.SVM: "solana",
}

SPECIFIC_CHAINS_BY_DEXSCREENER_ID = {v: k for k, v in DEXSCREENER_CHAIN_IDS.items()}


class DexScreenerProvider(HttpPriceSource):
    """Multi-family price source using DEX pair prices."""

    name = "dexscreener"
    chain_families = frozenset({ChainFamily.SVM, ChainFamily.EVM})

    async def get_price(
        self,
        token: str,
        chain_family: Optional[ChainFamily] = None,
        specific_chain: Optional[SpecificChain] = None,
    ) -> Optional[PriceQuote]:
        classification = classify(token, chain_family, specific_chain)
        if not self.serves(classification.chain_family):
            return None

        # EVM tokens without a known network default to Ethereum
        network = classification.specific_chain or SpecificChain.ETH
        chain_id = DEXSCREENER_CHAIN_IDS[network]

        try:
            pairs = await self._api_request("GET", f"/{chain_id}/{token}")
        except ProviderError as e:
            self.log.warning("DexScreener price request failed", token=token, chain=chain_id, error=e.message)
            return None

        if not isinstance(pairs, list):
            return None

        # First pair with a usable USD price wins
        for pair in pairs:
            if not isinstance(pair, dict):
                continue
            price = parse_price(pair.get("priceUsd"))
            if price is None:
                continue
            priced_on = SPECIFIC_CHAINS_BY_DEXSCREENER_ID.get(pair.get("chainId"), network)
            return PriceQuote(
                token=token,
                price=price,
                chain_family=classification.chain_family,
                specific_chain=priced_on,
                source=self.name,
            )

        return None
