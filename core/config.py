"""Configuration loader -- reads config.yaml + .env, validates with Pydantic.

Resolves ${ENV_VAR} references in YAML values from environment variables.
Per-asset calibration (origin date, deviation bounds, static confidence,
provider symbols) lives here; nothing downstream computes it.
"""

from __future__ import annotations

import logging
import os
import re
from datetime import date
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from core.duration import duration_seconds
from core.errors import ConfigMissing
from core.models.risk import RiskFactorWeights

logger = logging.getLogger(__name__)

# Default home directory for all state files
DEFAULT_HOME = Path.home() / ".valuerisk"


def _resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ${ENV_VAR} references in config values."""
    if isinstance(value, str):
        pattern = re.compile(r"\$\{(\w+)\}")
        def replacer(match: re.Match) -> str:
            var_name = match.group(1)
            env_value = os.environ.get(var_name)
            if env_value is None:
                logger.warning("Environment variable %s not set", var_name)
                return match.group(0)  # leave unresolved
            return env_value
        return pattern.sub(replacer, value)
    elif isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]
    return value


# ---------------------------------------------------------------------------
# Config models (Pydantic)
# ---------------------------------------------------------------------------

class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8321


class AssetConfig(BaseModel):
    """Calibration for one asset."""

    asset_id: str
    gecko_id: str
    origin_date: date
    deviation_low: float
    deviation_high: float
    confidence_level: int = Field(default=5, ge=1, le=9)
    display_name: str = ""
    # None when the asset is not listed on the candle exchange
    binance_symbol: str | None = None

    @property
    def deviation_bounds(self) -> tuple[float, float]:
        return (self.deviation_low, self.deviation_high)

    @property
    def indicator_symbol(self) -> str:
        """Symbol format used by the indicator provider, e.g. BTC/USDT."""
        return f"{self.asset_id}/USDT"


def _default_assets() -> dict[str, AssetConfig]:
    rows = [
        ("BTC", "bitcoin", date(2009, 1, 3), 0.8, 9, "Bitcoin", "BTCUSDT"),
        ("ETH", "ethereum", date(2015, 7, 30), 0.7, 8, "Ethereum", "ETHUSDT"),
        ("SOL", "solana", date(2020, 4, 10), 0.6, 6, "Solana", "SOLUSDT"),
        ("BNB", "binancecoin", date(2017, 7, 25), 0.65, 7, "BNB", "BNBUSDT"),
        ("SUI", "sui", date(2023, 5, 3), 0.50, 4, "Sui", "SUIUSDT"),
        ("UNI", "uniswap", date(2020, 9, 17), 0.55, 5, "Uniswap", "UNIUSDT"),
        ("ONDO", "ondo-finance", date(2024, 1, 18), 0.45, 3, "Ondo", "ONDOUSDT"),
        ("RENDER", "render-token", date(2020, 6, 10), 0.55, 5, "Render", "RENDERUSDT"),
    ]
    return {
        asset_id: AssetConfig(
            asset_id=asset_id,
            gecko_id=gecko_id,
            origin_date=origin,
            deviation_low=-bound,
            deviation_high=bound,
            confidence_level=confidence,
            display_name=name,
            binance_symbol=symbol,
        )
        for asset_id, gecko_id, origin, bound, confidence, name, symbol in rows
    }


class ProvidersConfig(BaseModel):
    taapi_api_key: str = ""
    coingecko_api_key: str = ""
    request_timeout: str = "30s"
    user_agent: str = "valuerisk/0.1"
    # Perpetual symbols averaged for the funding factor
    funding_symbols: list[str] = Field(default_factory=lambda: ["BTCUSDT", "ETHUSDT"])


class RateLimitsConfig(BaseModel):
    indicator_interval: str = "15s"
    factor_cache_ttl: str = "5m"
    macro_cache_ttl: str = "2h"
    incremental_cooldown: str = "15m"
    bootstrap_failure_cooldown: str = "30s"
    bootstrap_page_interval: str = "1500ms"
    provider_call_timeout: str = "45s"


class CacheConfig(BaseModel):
    current_ttl: str = "1h"
    history_ttl: str = "24h"
    max_points: int = 100


class WeightsConfig(BaseModel):
    preset: str = "default"
    custom: RiskFactorWeights | None = None

    def resolve(self) -> RiskFactorWeights:
        if self.custom is not None:
            return self.custom
        return RiskFactorWeights.preset(self.preset)


class RefreshConfig(BaseModel):
    enabled: bool = False
    interval: str = "30m"
    assets: list[str] = Field(default_factory=lambda: ["BTC"])


class LoggingConfig(BaseModel):
    level: str = "INFO"


class AppConfig(BaseModel):
    """Top-level application configuration."""

    home_dir: str = str(DEFAULT_HOME)
    # Read-only directory of embedded {ASSET}.json baselines; empty disables it
    baseline_dir: str = ""
    server: ServerConfig = Field(default_factory=ServerConfig)
    assets: dict[str, AssetConfig] = Field(default_factory=_default_assets)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    rate_limits: RateLimitsConfig = Field(default_factory=RateLimitsConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    weights: WeightsConfig = Field(default_factory=WeightsConfig)
    refresh: RefreshConfig = Field(default_factory=RefreshConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def home_path(self) -> Path:
        """Resolved home directory as a Path."""
        return Path(self.home_dir).expanduser()

    @property
    def cache_path(self) -> Path:
        return self.home_path / "cache"

    @property
    def baseline_path(self) -> Path | None:
        if not self.baseline_dir:
            return None
        return Path(self.baseline_dir).expanduser()

    def asset(self, asset_id: str) -> AssetConfig:
        """Calibration for `asset_id` (case-insensitive). Raises ConfigMissing."""
        key = asset_id.upper()
        if key not in self.assets:
            raise ConfigMissing(key)
        return self.assets[key]

    def seconds(self, value: str) -> float:
        return duration_seconds(value)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def _normalize_assets(raw: dict) -> dict:
    """Let YAML asset entries omit `asset_id` and merge over the defaults."""
    assets = raw.get("assets")
    if not isinstance(assets, dict):
        return raw
    merged = {k: v.model_dump() for k, v in _default_assets().items()}
    for key, entry in assets.items():
        asset_id = str(key).upper()
        if entry is None:
            merged.pop(asset_id, None)
            continue
        base = merged.get(asset_id, {})
        merged[asset_id] = {**base, **entry, "asset_id": asset_id}
    return {**raw, "assets": merged}


def load_config(
    config_path: str | Path | None = None,
    env_path: str | Path | None = None,
) -> AppConfig:
    """Load configuration from YAML + .env files.

    1. Load .env into environment variables
    2. Load config.yaml and resolve ${ENV_VAR} references
    3. Validate against Pydantic models
    4. Create home directory structure if needed
    """
    home = Path(os.environ.get("VALUERISK_HOME", str(DEFAULT_HOME))).expanduser()

    if env_path is None:
        env_path = home / ".env"
    if config_path is None:
        config_path = home / "config.yaml"

    env_path = Path(env_path)
    config_path = Path(config_path)

    if env_path.exists():
        load_dotenv(env_path)
        logger.info("Loaded environment from %s", env_path)
    else:
        logger.debug("No .env file at %s", env_path)

    raw_config: dict = {}
    if config_path.exists():
        with open(config_path) as f:
            raw_config = yaml.safe_load(f) or {}
        logger.info("Loaded config from %s", config_path)
    else:
        logger.warning("No config file at %s, using defaults", config_path)

    resolved = _normalize_assets(_resolve_env_vars(raw_config))

    if "VALUERISK_HOME" in os.environ:
        resolved["home_dir"] = os.environ["VALUERISK_HOME"]

    providers = resolved.setdefault("providers", {})
    if not providers.get("taapi_api_key") and os.environ.get("TAAPI_API_KEY"):
        providers["taapi_api_key"] = os.environ["TAAPI_API_KEY"]

    config = AppConfig(**resolved)

    _ensure_directories(config.cache_path)

    return config


def _ensure_directories(cache: Path) -> None:
    """Create the cache directory structure if it doesn't exist."""
    dirs = [
        cache,
        cache / "price_history",
        cache / "confidence",
        cache / "risk_cache",
        cache / "events",
    ]
    for d in dirs:
        d.mkdir(parents=True, exist_ok=True)
