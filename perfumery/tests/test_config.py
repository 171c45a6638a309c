"""Tests for configuration and environment-driven ledger policy."""

from decimal import Decimal

import pytest

from perfumery.utils.config import Config, get_config, reset_config


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "PERFUMERY_ENV",
        "PERFUMERY_MARKUP_FACTOR",
        "PERFUMERY_ALLOW_NEGATIVE_SALES",
        "PERFUMERY_DB_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestConfig:
    def test_defaults(self, clean_env):
        config = Config()
        assert config.markup_factor == Decimal("3.0")
        assert config.allow_negative_on_sale is False
        assert config.transaction_timeout_seconds == 30
        assert config.database_url.startswith("sqlite:///")
        assert config.database_path.name == "perfumery_ledger.db"

    def test_development_uses_project_data_dir(self, clean_env):
        config = Config("development")
        assert config.is_development
        assert config.database_path.parent.name == "data"

    def test_environment_overrides(self, clean_env):
        clean_env.setenv("PERFUMERY_MARKUP_FACTOR", "2.5")
        clean_env.setenv("PERFUMERY_ALLOW_NEGATIVE_SALES", "Yes")
        clean_env.setenv("PERFUMERY_DB_TIMEOUT", "5")

        config = Config()

        assert config.markup_factor == Decimal("2.5")
        assert config.allow_negative_on_sale is True
        assert config.transaction_timeout_seconds == 5

    @pytest.mark.parametrize("raw", ["abc", "0", "-2", "NaN", "sNaN", "Infinity", "-Infinity"])
    def test_invalid_markup_falls_back(self, clean_env, raw, caplog):
        clean_env.setenv("PERFUMERY_MARKUP_FACTOR", raw)
        assert Config().markup_factor == Decimal("3.0")
        assert "PERFUMERY_MARKUP_FACTOR" in caplog.text

    def test_invalid_timeout_falls_back(self, clean_env):
        clean_env.setenv("PERFUMERY_DB_TIMEOUT", "soon")
        assert Config().transaction_timeout_seconds == 30


class TestSingleton:
    def test_get_config_returns_same_instance(self, clean_env):
        assert get_config() is get_config()

    def test_environment_from_variable(self, clean_env):
        clean_env.setenv("PERFUMERY_ENV", "development")
        assert get_config().environment == "development"

    def test_reset_rereads_environment(self, clean_env):
        first = get_config()
        clean_env.setenv("PERFUMERY_MARKUP_FACTOR", "4")
        assert get_config().markup_factor == first.markup_factor

        reset_config()
        assert get_config().markup_factor == Decimal("4")

    def test_conflicting_environment_keeps_singleton(self, clean_env, caplog):
        config = get_config("production")
        assert get_config("development") is config
        assert "singleton" in caplog.text
