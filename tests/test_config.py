"""Tests for settings loading."""

import json

import pytest

from config import MarketplaceConfig
from marketplace.config import load_env, refresh_non_sensitive, requires_restart, validate_currency

from conftest import make_config


class TestLoadEnv:
    def test_defaults(self, tmp_path, monkeypatch):
        for key in ("CURRENCY", "LOW_STOCK_THRESHOLD", "WAREHOUSE_LAT", "WAREHOUSE_LON", "ENVIRONMENT"):
            monkeypatch.delenv(key, raising=False)
        cfg = load_env(tmp_path / "missing.json")
        assert cfg.currency == "TND"
        assert cfg.low_stock_threshold == 10
        assert cfg.warehouse_origin is None
        assert cfg.is_production is False

    def test_settings_file_wins_over_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps({"CURRENCY": "eur", "LOW_STOCK_THRESHOLD": 4}), encoding="utf-8")
        monkeypatch.setenv("CURRENCY", "USD")
        monkeypatch.setenv("WAREHOUSE_LAT", "36.8")
        monkeypatch.setenv("WAREHOUSE_LON", "10.18")
        cfg = load_env(path)
        assert cfg.currency == "EUR"
        assert cfg.low_stock_threshold == 4
        assert cfg.warehouse_origin == {"lat": 36.8, "lon": 10.18}

    def test_broken_settings_file(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(ValueError):
            load_env(path)

    def test_currency_validation(self):
        assert validate_currency(" usd ") == "USD"
        with pytest.raises(ValueError):
            validate_currency("EURO")


class TestHotReload:
    def test_only_allowed_keys_apply(self):
        cfg = make_config()
        updated = refresh_non_sensitive({"CURRENCY": "eur", "JWT_SECRET": "stolen", "LOW_STOCK_THRESHOLD": "8"}, cfg)
        assert updated.currency == "EUR"
        assert updated.low_stock_threshold == 8
        assert updated.jwt_secret == cfg.jwt_secret

    def test_restart_needed_for_secrets(self):
        assert requires_restart(["PAYMENT_WEBHOOK_SECRET"])
        assert not requires_restart(["CURRENCY"])
        assert not requires_restart([])


class TestMarketplaceConfig:
    def test_load_seeds_settings_file(self, tmp_path):
        cfg = MarketplaceConfig.load(tmp_path)
        assert cfg.settings_file.exists()
        seeded = json.loads(cfg.settings_file.read_text(encoding="utf-8"))
        assert "JWT_SECRET" not in seeded
        assert cfg.app.currency == seeded["CURRENCY"]

    def test_existing_settings_file_is_kept(self, tmp_path):
        (tmp_path / "data").mkdir()
        (tmp_path / "data" / "settings.json").write_text(json.dumps({"CURRENCY": "MAD"}), encoding="utf-8")
        assert MarketplaceConfig.load(tmp_path).app.currency == "MAD"
