"""
Price source abstraction.
Every upstream price API implements this interface.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from tradesim.db.models import ChainFamily, SpecificChain, utcnow
from tradesim.utils.logging import LoggerMixin


@dataclass
class PriceQuote:
    """A USD price for one token as reported by one source."""
    token: str
    price: Decimal
    chain_family: ChainFamily
    specific_chain: Optional[SpecificChain]
    source: str
    timestamp: datetime = field(default_factory=utcnow)


class ProviderError(Exception):
    """Base exception for price source errors."""
    def __init__(self, message: str, source: str, code: Optional[str] = None):
        self.message = message
        self.source = source
        self.code = code
        super().__init__(f"[{source}] {message}")


class RateLimitError(ProviderError):
    """Raised when a source answers HTTP 429."""
    pass


def parse_price(value: Any) -> Optional[Decimal]:
    """Parse a positive USD price from an API field, else None."""
    if value is None:
        return None
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not price.is_finite() or price <= 0:
        return None
    return price


class PriceSource(ABC, LoggerMixin):
    """Abstract base class for price sources."""

    name: str
    chain_families: frozenset[ChainFamily] = frozenset()

    def serves(self, chain_family: ChainFamily) -> bool:
        """Whether this source may be asked about tokens of a family."""
        return chain_family in self.chain_families

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    @abstractmethod
    async def get_price(
        self,
        token: str,
        chain_family: Optional[ChainFamily] = None,
        specific_chain: Optional[SpecificChain] = None,
    ) -> Optional[PriceQuote]:
        """
        Get the USD price of a token.

        Returns None when the token is unknown to this source, outside its
        chain families, or the upstream call failed.
        """
        pass

    async def supports(self, token: str) -> bool:
        """Whether this source can price the token right now."""
        return await self.get_price(token) is not None


class HttpPriceSource(PriceSource):
    """Price source backed by a JSON HTTP API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._http_client = client
        self._owns_client = client is None

    def _headers(self) -> dict[str, str]:
        return {"Accept": "application/json"}

    async def initialize(self) -> None:
        """Initialize the HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=self._timeout,
                headers=self._headers(),
                limits=httpx.Limits(max_connections=50, max_keepalive_connections=10),
            )
            self._owns_client = True
        self.log.info("Price source initialized", source=self.name)

    async def close(self) -> None:
        """Close connections."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(RateLimitError),
        reraise=True,
    )
    async def _api_request(
        self,
        method: str,
        endpoint: str,
        **kwargs,
    ) -> Any:
        """Make a request with retry on rate limit."""
        if not self._http_client:
            await self.initialize()

        url = f"{self._base_url}{endpoint}"
        kwargs.setdefault("headers", self._headers())

        try:
            response = await self._http_client.request(method, url, **kwargs)

            if response.status_code == 429:
                self.log.warning("Rate limited, retrying", source=self.name)
                raise RateLimitError("Rate limit exceeded", self.name, "429")

            response.raise_for_status()
            return response.json()

        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"API error: {e.response.status_code}",
                self.name,
                str(e.response.status_code),
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Request failed: {e}", self.name) from e
        except ValueError as e:
            raise ProviderError("Invalid JSON response", self.name) from e
