"""
Noves pricing API.
Multi-network EVM aggregator: probes each configured network until one
prices the token, and remembers which network answered.
"""

from typing import Optional

import httpx

from tradesim.chains import classify
from tradesim.db.models import ChainFamily, SpecificChain
from tradesim.providers.base import HttpPriceSource, PriceQuote, ProviderError, parse_price


class NovesProvider(HttpPriceSource):
    """EVM price source with per-token network discovery."""

    name = "noves"
    chain_families = frozenset({ChainFamily.EVM})

    def __init__(
        self,
        api_key: str,
        base_url: str,
        chains: list[str],
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_key:
            raise ValueError("Noves API key is required")
        super().__init__(base_url, timeout=timeout, client=client)
        self._api_key = api_key
        self._chains = [SpecificChain(c) for c in chains if c != SpecificChain.SVM.value]
        # token (lowercased) -> network that last priced it
        self._token_chains: dict[str, SpecificChain] = {}

    def _headers(self) -> dict[str, str]:
        return {"Accept": "application/json", "apiKey": self._api_key}

    def known_chain(self, token: str) -> Optional[SpecificChain]:
        """Network this source previously found the token on."""
        return self._token_chains.get(token.lower())

    def _chains_to_try(self, token: str) -> list[SpecificChain]:
        chains = list(self._chains)
        cached = self.known_chain(token)
        if cached:
            chains = [cached] + [c for c in chains if c != cached]
        return chains

    async def get_price_on_chain(self, token: str, chain: SpecificChain) -> Optional[PriceQuote]:
        """Price a token on one EVM network."""
        try:
            data = await self._api_request("GET", f"/evm/{chain.value}/price/{token}")
        except ProviderError as e:
            self.log.debug("No price on chain", token=token, chain=chain.value, error=e.message)
            return None

        price_info = data.get("price") if isinstance(data, dict) else None
        price = parse_price(price_info.get("amount") if isinstance(price_info, dict) else None)
        if price is None:
            return None

        self._token_chains[token.lower()] = chain
        return PriceQuote(
            token=token,
            price=price,
            chain_family=ChainFamily.EVM,
            specific_chain=chain,
            source=self.name,
        )

    async def get_price(
        self,
        token: str,
        chain_family: Optional[ChainFamily] = None,
        specific_chain: Optional[SpecificChain] = None,
    ) -> Optional[PriceQuote]:
        classification = classify(token, chain_family, specific_chain)
        if not self.serves(classification.chain_family):
            return None

        # A known network skips discovery
        if classification.specific_chain is not None:
            return await self.get_price_on_chain(token, classification.specific_chain)

        for chain in self._chains_to_try(token):
            quote = await self.get_price_on_chain(token, chain)
            if quote:
                self.log.debug("Discovered token chain", token=token, chain=chain.value)
                return quote

        return None
