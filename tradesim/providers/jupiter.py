"""
Jupiter price API (Solana).
"""

from typing import Optional

from tradesim.chains import classify
from tradesim.db.models import ChainFamily, SpecificChain
from tradesim.providers.base import HttpPriceSource, PriceQuote, ProviderError, parse_price


class JupiterProvider(HttpPriceSource):
    """SVM price source."""

    name = "jupiter"
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
            data = await self._api_request("GET", "", params={"ids": token, "showExtraInfo": "true"})
        except ProviderError as e:
            self.log.warning("Jupiter price request failed", token=token, error=e.message)
            return None

        if not isinstance(data, dict):
            return None
        token_data = (data.get("data") or {}).get(token)
        if not isinstance(token_data, dict):
            return None

        price = parse_price(token_data.get("price"))
        if price is None:
            return None

        confidence = ((token_data.get("extraInfo") or {}).get("confidenceLevel") or "unknown").lower()
        self.log.debug("Jupiter price", token=token, price=str(price), confidence=confidence)

        return PriceQuote(
            token=token,
            price=price,
            chain_family=ChainFamily.SVM,
            specific_chain=SpecificChain.SVM,
            source=self.name,
        )
