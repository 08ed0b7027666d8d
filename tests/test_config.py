"""
Tests for settings and logging setup.
"""

from decimal import Decimal

import pytest
import structlog
from pydantic import ValidationError

from tradesim.config import ETH_USDC_ADDRESS, SOL_MINT, USDC_MINT, USDT_MINT, Settings
from tradesim.utils.logging import get_logger, log_context, setup_logging


class TestSettings:
    """Test settings parsing."""

    def test_postgres_url_uses_asyncpg(self):
        settings = Settings(_env_file=None, database_url="postgres://user:pw@db/tradesim")
        assert settings.database_url == "postgresql+asyncpg://user:pw@db/tradesim"

    def test_sqlite_url_untouched(self, settings):
        assert settings.database_url.startswith("sqlite+aiosqlite:///")

    def test_default_allocation(self, settings):
        assert settings.initial_allocation == {
            SOL_MINT: Decimal("10"),
            USDC_MINT: Decimal("1000"),
            USDT_MINT: Decimal("1000"),
        }

    def test_evm_usdc_in_allocation_when_enabled(self, settings):
        settings = settings.model_copy(update={"initial_evm_usdc_balance": Decimal("500")})
        assert settings.initial_allocation[ETH_USDC_ADDRESS] == Decimal("500")

    def test_evm_chain_list(self):
        settings = Settings(_env_file=None, evm_chains=" ETH, base,,polygon ")
        assert settings.evm_chain_list == ["eth", "base", "polygon"]

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("PRICE_CACHE_TTL_SECONDS", "5")
        monkeypatch.setenv("NOVES_API_KEY", "secret")
        settings = Settings(_env_file=None)
        assert settings.price_cache_ttl_seconds == 5
        assert settings.noves_api_key == "secret"

    @pytest.mark.parametrize("field,value", [
        ("price_cache_ttl_seconds", 0),
        ("provider_timeout_seconds", -1),
        ("initial_sol_balance", Decimal("-1")),
        ("log_format", "xml"),
    ])
    def test_invalid_values_rejected(self, field, value):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, **{field: value})


class TestLogging:
    """Test logging setup."""

    @pytest.mark.parametrize("log_format", ["auto", "json", "console"])
    def test_setup(self, log_format):
        setup_logging("DEBUG", log_format)
        get_logger(__name__).debug("configured", log_format=log_format)

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            setup_logging("INFO", "xml")

    def test_log_context_binds_and_clears(self):
        with log_context(team_id="team-1"):
            assert structlog.contextvars.get_contextvars()["team_id"] == "team-1"
        assert "team_id" not in structlog.contextvars.get_contextvars()
