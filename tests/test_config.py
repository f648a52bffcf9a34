"""Tests for configuration objects and environment settings."""

from decimal import Decimal

import pytest

from payroll_batch.config import (
    CoreConfig,
    FXConfig,
    ReconciliationConfig,
    Settings,
    get_settings,
)


class TestFXConfig:
    def test_defaults(self):
        config = FXConfig()

        assert config.base_currency == "USD"
        assert config.default_lock_ttl_seconds == 900
        assert config.max_lock_ttl_seconds == 3600
        assert config.providers == ("primary", "alternate")

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"base_currency": "usd"},
            {"default_lock_ttl_seconds": 0},
            {"default_lock_ttl_seconds": 900, "max_lock_ttl_seconds": 600},
            {"providers": ("primary", "primary")},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            FXConfig(**kwargs)


class TestReconciliationConfig:
    def test_negative_tolerance_rejected(self):
        with pytest.raises(ValueError):
            ReconciliationConfig(amount_tolerance=Decimal("-0.01"))

    def test_core_config_defaults(self):
        config = CoreConfig()
        assert config.reconciliation.amount_tolerance == Decimal("0.00")
        assert config.fx == FXConfig()


class TestSettings:
    @pytest.fixture(autouse=True)
    def clear_cache(self):
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite://")
        monkeypatch.setenv("PORT", "9001")
        monkeypatch.setenv("DEBUG", "true")
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("FX_BASE_CURRENCY", "EUR")
        monkeypatch.setenv("FX_LOCK_TTL_SECONDS", "600")
        monkeypatch.setenv("RECON_AMOUNT_TOLERANCE", "0.05")

        settings = Settings.from_env()

        assert settings.database_url == "sqlite://"
        assert settings.PORT == 9001
        assert settings.DEBUG is True
        assert settings.log_level == "DEBUG"

        core = settings.core_config()
        assert core.fx.base_currency == "EUR"
        assert core.fx.default_lock_ttl_seconds == 600
        assert core.fx.max_lock_ttl_seconds == 3600
        assert core.reconciliation.amount_tolerance == Decimal("0.05")

    def test_long_lock_raises_ceiling(self, monkeypatch):
        monkeypatch.setenv("FX_LOCK_TTL_SECONDS", "7200")

        core = Settings.from_env().core_config()

        assert core.fx.max_lock_ttl_seconds == 7200

    def test_get_settings_is_cached(self):
        assert get_settings() is get_settings()
