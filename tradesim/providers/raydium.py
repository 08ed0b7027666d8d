"""
Raydium mint price API (Solana).
"""

from typing import Optional

from tradesim.chains import classify
from tradesim.db.models import ChainFamily, SpecificChain
from tradesim.providers.base import HttpPriceSource, PriceQuote, ProviderError, parse_price


class RaydiumProvider(HttpPriceSource):
    """SVM price source backed by Raydium pool prices."""

    name = "raydium"
    chain_families = frozenset({ChainFamily.SVM})

    async def get_price(
        self,
        token: str,
        chain_family: Optional[ChainFamily] = None,
        specific_chain: Optional[SpecificChain] = None,
    ) -> Optional[PriceQuote]:
        if not self.serves(classify(token, chain_family, specific_chain).chain_family):
            return None

        try:
            data = await self._api_request("GET", "/mint/price", params={"mints": token})
        except ProviderError as e:
            self.log.warning("Raydium price request failed", token=token, error=e.message)
            return None

        if not isinstance(data, dict) or data.get("success") is False:
            return None

        price = parse_price((data.get("data") or {}).get(token))
        if price is None:
            return None

        return PriceQuote(
            token=token,
            price=price,
            chain_family=ChainFamily.SVM,
            specific_chain=SpecificChain.SVM,
            source=self.name,
        )
