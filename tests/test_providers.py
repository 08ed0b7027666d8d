"""
Tests for HTTP price sources using httpx.MockTransport.
"""

from decimal import Decimal

import httpx
import pytest

from tradesim.config import ETH_USDC_ADDRESS, SOL_MINT
from tradesim.db.models import ChainFamily, SpecificChain
from tradesim.providers import (
    DexScreenerProvider,
    JupiterProvider,
    NovesProvider,
    RaydiumProvider,
    create_price_sources,
)


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestNovesProvider:
    """Test multi-network EVM discovery."""

    def _provider(self, handler, chains=("eth", "base")):
        return NovesProvider(
            api_key="test-key",
            base_url="https://pricing.test",
            chains=list(chains),
            client=mock_client(handler),
        )

    @pytest.mark.asyncio
    async def test_discovers_network(self):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            assert request.headers["apiKey"] == "test-key"
            if "/evm/base/" in request.url.path:
                return httpx.Response(200, json={"price": {"amount": "2.5"}})
            return httpx.Response(404, json={"message": "not found"})

        provider = self._provider(handler)
        quote = await provider.get_price(ETH_USDC_ADDRESS)

        assert quote.price == Decimal("2.5")
        assert quote.chain_family == ChainFamily.EVM
        assert quote.specific_chain == SpecificChain.BASE
        assert quote.source == "noves"
        assert paths == [
            f"/evm/eth/price/{ETH_USDC_ADDRESS}",
            f"/evm/base/price/{ETH_USDC_ADDRESS}",
        ]

    @pytest.mark.asyncio
    async def test_remembers_discovered_network(self):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            if "/evm/base/" in request.url.path:
                return httpx.Response(200, json={"price": {"amount": "2.5"}})
            return httpx.Response(404)

        provider = self._provider(handler)
        await provider.get_price(ETH_USDC_ADDRESS)
        paths.clear()

        await provider.get_price(ETH_USDC_ADDRESS)
        assert paths == [f"/evm/base/price/{ETH_USDC_ADDRESS}"]
        assert provider.known_chain(ETH_USDC_ADDRESS.lower()) == SpecificChain.BASE

    @pytest.mark.asyncio
    async def test_network_hint_skips_discovery(self):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(200, json={"price": {"amount": "0.99"}})

        provider = self._provider(handler)
        quote = await provider.get_price(ETH_USDC_ADDRESS, specific_chain=SpecificChain.POLYGON)

        assert quote.specific_chain == SpecificChain.POLYGON
        assert paths == [f"/evm/polygon/price/{ETH_USDC_ADDRESS}"]

    @pytest.mark.asyncio
    async def test_solana_token_out_of_scope(self):
        def handler(request):
            raise AssertionError("no request expected")

        provider = self._provider(handler)
        assert await provider.get_price(SOL_MINT) is None
        assert not provider.serves(ChainFamily.SVM)

    @pytest.mark.asyncio
    async def test_unknown_everywhere(self):
        provider = self._provider(lambda request: httpx.Response(404))
        assert await provider.get_price(ETH_USDC_ADDRESS) is None
        assert not await provider.supports(ETH_USDC_ADDRESS)

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            NovesProvider(api_key="", base_url="https://pricing.test", chains=["eth"])


class TestJupiterProvider:
    """Test Jupiter price parsing."""

    @pytest.mark.asyncio
    async def test_price(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["ids"] == SOL_MINT
            return httpx.Response(200, json={
                "data": {SOL_MINT: {"id": SOL_MINT, "price": "150.25"}},
            })

        provider = JupiterProvider("https://jup.test/price/v2", client=mock_client(handler))
        quote = await provider.get_price(SOL_MINT)

        assert quote.price == Decimal("150.25")
        assert quote.specific_chain == SpecificChain.SVM

    @pytest.mark.asyncio
    async def test_missing_token(self):
        provider = JupiterProvider(
            "https://jup.test/price/v2",
            client=mock_client(lambda request: httpx.Response(200, json={"data": {}})),
        )
        assert await provider.get_price(SOL_MINT) is None

    @pytest.mark.asyncio
    async def test_evm_token_not_requested(self):
        def handler(request):
            raise AssertionError("no request expected")

        provider = JupiterProvider("https://jup.test/price/v2", client=mock_client(handler))
        assert await provider.get_price(ETH_USDC_ADDRESS) is None

    @pytest.mark.asyncio
    async def test_server_error_is_no_answer(self):
        provider = JupiterProvider(
            "https://jup.test/price/v2",
            client=mock_client(lambda request: httpx.Response(500)),
        )
        assert await provider.get_price(SOL_MINT) is None

    @pytest.mark.asyncio
    async def test_connection_error_is_no_answer(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        provider = JupiterProvider("https://jup.test/price/v2", client=mock_client(handler))
        assert await provider.get_price(SOL_MINT) is None


class TestRaydiumProvider:
    """Test Raydium mint price parsing."""

    @pytest.mark.asyncio
    async def test_price(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/mint/price"
            assert request.url.params["mints"] == SOL_MINT
            return httpx.Response(200, json={"success": True, "data": {SOL_MINT: "149.9"}})

        provider = RaydiumProvider("https://raydium.test", client=mock_client(handler))
        quote = await provider.get_price(SOL_MINT)
        assert quote.price == Decimal("149.9")
        assert quote.source == "raydium"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        {"success": False, "data": {}},
        {"success": True, "data": {SOL_MINT: None}},
        {"success": True, "data": {SOL_MINT: "0"}},
        {"success": True, "data": {SOL_MINT: "not-a-number"}},
    ])
    async def test_unusable_payloads(self, payload):
        provider = RaydiumProvider(
            "https://raydium.test",
            client=mock_client(lambda request: httpx.Response(200, json=payload)),
        )
        assert await provider.get_price(SOL_MINT) is None


class TestDexScreenerProvider:
    """Test DexScreener chain mapping."""

    @pytest.mark.asyncio
    async def test_evm_defaults_to_ethereum_and_reports_pair_chain(self):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(200, json=[
                {"chainId": "base", "priceUsd": None},
                {"chainId": "base", "priceUsd": "1.01"},
            ])

        provider = DexScreenerProvider("https://dex.test/tokens/v1", client=mock_client(handler))
        quote = await provider.get_price(ETH_USDC_ADDRESS)

        assert paths == [f"/tokens/v1/ethereum/{ETH_USDC_ADDRESS}"]
        assert quote.price == Decimal("1.01")
        assert quote.chain_family == ChainFamily.EVM
        assert quote.specific_chain == SpecificChain.BASE

    @pytest.mark.asyncio
    async def test_solana(self):
        paths = []

        def handler(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            return httpx.Response(200, json=[{"chainId": "solana", "priceUsd": "148"}])

        provider = DexScreenerProvider("https://dex.test/tokens/v1", client=mock_client(handler))
        quote = await provider.get_price(SOL_MINT)

        assert paths == [f"/tokens/v1/solana/{SOL_MINT}"]
        assert quote.specific_chain == SpecificChain.SVM

    @pytest.mark.asyncio
    async def test_empty_pairs(self):
        provider = DexScreenerProvider(
            "https://dex.test/tokens/v1",
            client=mock_client(lambda request: httpx.Response(200, json=[])),
        )
        assert await provider.get_price(SOL_MINT) is None


class TestCreatePriceSources:
    """Test source ordering."""

    def test_without_noves_key(self, settings):
        sources = create_price_sources(settings)
        assert [s.name for s in sources] == ["jupiter", "raydium", "dexscreener"]

    def test_with_noves_key(self, settings):
        settings = settings.model_copy(update={"noves_api_key": "key"})
        sources = create_price_sources(settings)
        assert [s.name for s in sources] == ["noves", "jupiter", "raydium", "dexscreener"]
        assert sources[0].serves(ChainFamily.EVM)
        assert not sources[1].serves(ChainFamily.EVM)
