"""
Configuration management using Pydantic Settings.
All environment variables are validated at startup.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Well-known Solana mints used for the initial allocation
SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"

# USDC on Ethereum mainnet
ETH_USDC_ADDRESS = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===================
    # Database Configuration
    # ===================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./tradesim.db",
        description="Database connection string (PostgreSQL or SQLite)",
    )

    # ===================
    # Price Providers
    # ===================
    noves_api_key: Optional[str] = Field(default=None, description="Noves pricing API key")
    noves_api_url: str = Field(
        default="https://pricing.noves.fi",
        description="Noves pricing API URL",
    )
    jupiter_price_api_url: str = Field(
        default="https://api.jup.ag/price/v2",
        description="Jupiter price API URL",
    )
    raydium_api_url: str = Field(
        default="https://api-v3.raydium.io",
        description="Raydium API URL",
    )
    dexscreener_api_url: str = Field(
        default="https://api.dexscreener.com/tokens/v1",
        description="DexScreener tokens API URL",
    )
    evm_chains: str = Field(
        default="eth,polygon,bsc,arbitrum,optimism,avalanche,base,linea,zksync,scroll,mantle",
        description="Comma-separated EVM networks probed during chain discovery, in order",
    )
    provider_timeout_seconds: float = Field(default=10.0, gt=0)

    # ===================
    # Price Cache
    # ===================
    price_cache_ttl_seconds: float = Field(default=30.0, gt=0)
    price_cache_max_entries: int = Field(default=10_000, ge=1)

    # ===================
    # Portfolio Snapshots
    # ===================
    snapshot_interval_seconds: float = Field(default=120.0, gt=0)
    price_freshness_seconds: float = Field(
        default=600.0,
        ge=0,
        description="Stored prices younger than this are reused during snapshots",
    )

    # ===================
    # Initial Allocation
    # ===================
    initial_sol_balance: Decimal = Field(default=Decimal("10"), ge=0)
    initial_usdc_balance: Decimal = Field(default=Decimal("1000"), ge=0)
    initial_usdt_balance: Decimal = Field(default=Decimal("1000"), ge=0)
    initial_evm_usdc_balance: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="USDC on Ethereum granted at competition start (0 disables)",
    )

    # ===================
    # Logging
    # ===================
    log_level: str = Field(default="INFO")
    log_format: Literal["auto", "json", "console"] = Field(
        default="auto",
        description="Console output on a TTY when auto, JSON otherwise",
    )

    @field_validator("database_url")
    @classmethod
    def normalize_database_url(cls, v: str) -> str:
        """Convert postgres:// URLs to the asyncpg dialect."""
        if v.startswith("postgres://"):
            return v.replace("postgres://", "postgresql+asyncpg://", 1)
        if v.startswith("postgresql://"):
            return v.replace("postgresql://", "postgresql+asyncpg://", 1)
        return v

    @property
    def evm_chain_list(self) -> list[str]:
        """Parse EVM networks from comma-separated string."""
        return [c.strip().lower() for c in self.evm_chains.split(",") if c.strip()]

    @property
    def initial_allocation(self) -> dict[str, Decimal]:
        """Token address -> amount every team holds when a competition starts."""
        allocation = {
            SOL_MINT: self.initial_sol_balance,
            USDC_MINT: self.initial_usdc_balance,
            USDT_MINT: self.initial_usdt_balance,
        }
        if self.initial_evm_usdc_balance > 0:
            allocation[ETH_USDC_ADDRESS] = self.initial_evm_usdc_balance
        return allocation


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
