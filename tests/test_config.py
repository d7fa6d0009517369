"""Configuration loading: YAML merge over default calibrations, env overrides."""

from __future__ import annotations

from datetime import date

import pytest

from core.config import AppConfig, load_config
from core.duration import duration_seconds
from core.errors import ConfigMissing


def test_defaults_cover_configured_assets():
    config = AppConfig()

    btc = config.asset("btc")
    assert btc.origin_date == date(2009, 1, 3)
    assert btc.deviation_bounds == (-0.8, 0.8)
    assert btc.indicator_symbol == "BTC/USDT"
    assert config.asset("ONDO").confidence_level == 3


def test_unknown_asset_raises_config_missing():
    with pytest.raises(ConfigMissing):
        AppConfig().asset("DOGE")


def test_duration_strings():
    assert duration_seconds("1500ms") == 1.5
    assert duration_seconds("15m") == 900
    assert duration_seconds("2h") == 7200
    with pytest.raises(ValueError):
        duration_seconds("soon")


def test_load_config_merges_yaml_over_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("VALUERISK_HOME", str(tmp_path))
    monkeypatch.setenv("MY_TAAPI", "from-env")
    (tmp_path / "config.yaml").write_text(
        "providers:\n"
        "  taapi_api_key: ${MY_TAAPI}\n"
        "assets:\n"
        "  btc:\n"
        "    confidence_level: 7\n"
        "  ondo: null\n"
        "  pepe:\n"
        "    gecko_id: pepe\n"
        "    origin_date: 2023-04-17\n"
        "    deviation_low: -0.4\n"
        "    deviation_high: 0.4\n"
        "cache:\n"
        "  max_points: 50\n"
    )

    config = load_config(env_path=tmp_path / "missing.env")

    assert config.providers.taapi_api_key == "from-env"
    assert config.asset("BTC").confidence_level == 7
    assert config.asset("BTC").gecko_id == "bitcoin"
    assert "ONDO" not in config.assets
    assert config.asset("PEPE").binance_symbol is None
    assert config.asset("PEPE").confidence_level == 5
    assert config.cache.max_points == 50
    assert (tmp_path / "cache" / "price_history").is_dir()


def test_taapi_key_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("VALUERISK_HOME", str(tmp_path))
    monkeypatch.setenv("TAAPI_API_KEY", "env-key")

    config = load_config(env_path=tmp_path / "missing.env")

    assert config.providers.taapi_api_key == "env-key"
    assert config.home_path == tmp_path
