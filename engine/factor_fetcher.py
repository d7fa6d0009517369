"""Risk factor fetcher -- supplementary signals under per-provider rate limits.

Three provider tiers:

1. Indicator provider (RSI, SMA200, price): hard limit of one request per
   interval. Every call goes through one process-wide MinIntervalGate and
   the calls for a bundle are issued strictly one after another. When the
   provider fails (or has no API key) the values are recomputed locally
   from daily exchange candles.
2. Macro indices (VIX, DXY): share a daily quota, so they are fetched as a
   pair and cached together for a couple of hours.
3. Funding rate, sentiment and weekly candles: unrestricted, fetched
   concurrently.

The whole bundle is cached per asset for a few minutes. `fetch_factors`
never raises: a failing provider leaves its factor empty.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable

from core.config import AppConfig, AssetConfig
from core.errors import ProviderUnavailable
from core.models.market import RiskFactorData, WeeklyBands
from core.registry import PluginRegistry
from core.time_context import TimeContext
from engine.rate_gate import MinIntervalGate
from risk import indicators

logger = logging.getLogger(__name__)

EXCHANGE = "binance"
INTERVAL = "1d"
RSI_PERIOD = 14
SMA_PERIOD = 200
# Enough daily candles for SMA200 plus slack
FALLBACK_CANDLES = 250
# 20w SMA / 21w EMA need 21 closed weeks; the newest candle is still open
WEEKLY_CANDLES = 25


class RiskFactorFetcher:
    """Fetches and caches `RiskFactorData` bundles per asset."""

    def __init__(
        self,
        config: AppConfig,
        registry: PluginRegistry,
        time_context: TimeContext,
        indicator_gate: MinIntervalGate | None = None,
    ) -> None:
        self._config = config
        self._registry = registry
        self._time = time_context

        limits = config.rate_limits
        self._bundle_ttl = timedelta(seconds=config.seconds(limits.factor_cache_ttl))
        self._macro_ttl = timedelta(seconds=config.seconds(limits.macro_cache_ttl))
        self._call_timeout = config.seconds(limits.provider_call_timeout)
        self._gate = indicator_gate or MinIntervalGate(
            config.seconds(limits.indicator_interval), name="indicators"
        )

        self._bundles: dict[str, RiskFactorData] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._macro: tuple[float | None, float | None] | None = None
        self._macro_fetched_at: datetime | None = None
        self._macro_lock = asyncio.Lock()

    @property
    def indicator_gate(self) -> MinIntervalGate:
        return self._gate

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_factors(self, asset_id: str, force_refresh: bool = False) -> RiskFactorData:
        """Current factor bundle for `asset_id`.

        `force_refresh` skips the bundle cache but still honours the macro cache.
        """
        asset = self._config.asset(asset_id)
        key = asset.asset_id
        async with self._lock_for(key):
            cached = self._bundles.get(key)
            if (
                not force_refresh
                and cached is not None
                and self._time.now() - cached.fetched_at < self._bundle_ttl
            ):
                logger.debug("Factor bundle cache hit for %s", key)
                return cached

            data = await self._fetch_bundle(asset)
            self._bundles[key] = data
            logger.info(
                "Fetched %d/7 risk factors for %s%s",
                data.available_count,
                key,
                f" (local fallback: {', '.join(data.local_fallback)})" if data.local_fallback else "",
            )
            return data

    async def refresh_macro(self) -> tuple[float | None, float | None]:
        """Refetch VIX and DXY regardless of the macro cache."""
        async with self._macro_lock:
            return await self._fetch_macro_pair()

    def clear(self, asset_id: str | None = None) -> None:
        """Drop cached bundles for one asset, or bundles and the macro pair for all.

        The indicator gate keeps its last permit time: the provider's quota
        does not reset with our caches.
        """
        if asset_id is None:
            self._bundles.clear()
            self._macro = None
            self._macro_fetched_at = None
        else:
            self._bundles.pop(asset_id.upper(), None)

    def cached(self, asset_id: str) -> RiskFactorData | None:
        return self._bundles.get(asset_id.upper())

    # ------------------------------------------------------------------
    # Bundle
    # ------------------------------------------------------------------

    async def _fetch_bundle(self, asset: AssetConfig) -> RiskFactorData:
        technical, macro, funding, sentiment, weekly = await asyncio.gather(
            self._technical(asset),
            self._macro_values(),
            self._call("funding", self._funding()),
            self._call("sentiment", self._sentiment()),
            self._call("weekly candles", self._weekly_closes(asset)),
        )
        rsi, sma_200, price, fallback = technical
        vix, dxy = macro

        bands: WeeklyBands | None = None
        if weekly:
            bands = indicators.weekly_bands(weekly, price)

        return RiskFactorData(
            rsi=rsi,
            sma_200=sma_200,
            current_price=price,
            weekly_bands=bands,
            funding_rate=funding,
            fear_greed=sentiment,
            vix=vix,
            dxy=dxy,
            fetched_at=self._time.now(),
            local_fallback=fallback,
        )

    async def _call(self, label: str, aw: Awaitable[Any]) -> Any:
        """Await one provider call with a timeout; any failure becomes None."""
        try:
            return await asyncio.wait_for(aw, timeout=self._call_timeout)
        except ProviderUnavailable as e:
            logger.warning("%s unavailable: %s", label, e)
        except asyncio.TimeoutError:
            logger.warning("%s timed out after %.0fs", label, self._call_timeout)
        except Exception:
            logger.exception("Unexpected error fetching %s", label)
        return None

    # -- Tier 1: indicators ------------------------------------------------

    async def _technical(
        self, asset: AssetConfig,
    ) -> tuple[float | None, float | None, float | None, list[str]]:
        """(rsi, sma200, price, names recomputed locally)."""
        provider = self._registry.first("indicators")
        values: dict[str, float | None] = {"rsi": None, "sma_200": None, "price": None}

        if provider is not None and self._config.providers.taapi_api_key:
            symbol = asset.indicator_symbol
            values["rsi"] = await self._gated(provider, "rsi", symbol, RSI_PERIOD)
            values["sma_200"] = await self._gated(provider, "sma", symbol, SMA_PERIOD)
            values["price"] = await self._gated(provider, "price", symbol, None)

        missing = [name for name, v in values.items() if v is None]
        fallback: list[str] = []
        if missing:
            closes = await self._call(
                "daily candles", self._daily_closes(asset),
            ) or []
            local = {
                "rsi": indicators.wilder_rsi(closes, RSI_PERIOD),
                "sma_200": indicators.sma(closes, SMA_PERIOD),
                "price": closes[-1] if closes else None,
            }
            for name in missing:
                if local[name] is not None:
                    values[name] = local[name]
                    fallback.append(name)

        return values["rsi"], values["sma_200"], values["price"], fallback

    async def _gated(self, provider: Any, indicator: str, symbol: str, period: int | None) -> float | None:
        async with self._gate:
            return await self._call(
                f"{provider.name} {indicator}",
                provider.fetch_indicator(
                    indicator, symbol, exchange=EXCHANGE, interval=INTERVAL, period=period,
                ),
            )

    async def _daily_closes(self, asset: AssetConfig) -> list[float]:
        candles = self._registry.first("candles")
        if candles is None or not asset.binance_symbol:
            return []
        rows = await candles.fetch_candles(asset.binance_symbol, "1d", limit=FALLBACK_CANDLES)
        return [c.close for c in rows]

    # -- Tier 2: macro -----------------------------------------------------

    async def _macro_values(self) -> tuple[float | None, float | None]:
        async with self._macro_lock:
            if (
                self._macro is not None
                and self._macro_fetched_at is not None
                and self._time.now() - self._macro_fetched_at < self._macro_ttl
            ):
                return self._macro
            return await self._fetch_macro_pair()

    async def _fetch_macro_pair(self) -> tuple[float | None, float | None]:
        vix_provider = self._registry.first("macro", "vix")
        dxy_provider = self._registry.first("macro", "dxy")

        async def latest(provider: Any, label: str) -> float | None:
            if provider is None:
                return None
            return await self._call(label, provider.fetch_latest())

        vix, dxy = await asyncio.gather(latest(vix_provider, "vix"), latest(dxy_provider, "dxy"))
        # Only a pair with at least one value is worth holding for hours
        if vix is not None or dxy is not None:
            self._macro = (vix, dxy)
            self._macro_fetched_at = self._time.now()
        return vix, dxy

    # -- Tier 3: unrestricted ----------------------------------------------

    async def _funding(self) -> float | None:
        provider = self._registry.first("funding")
        if provider is None:
            return None
        return await provider.fetch_funding_rate()

    async def _sentiment(self) -> float | None:
        provider = self._registry.first("sentiment")
        if provider is None:
            return None
        return await provider.fetch_sentiment()

    async def _weekly_closes(self, asset: AssetConfig) -> list[float]:
        candles = self._registry.first("candles")
        if candles is None or not asset.binance_symbol:
            return []
        rows = await candles.fetch_candles(asset.binance_symbol, "1w", limit=WEEKLY_CANDLES)
        return [c.close for c in rows[:-1]]

    # ------------------------------------------------------------------

    def _lock_for(self, asset_id: str) -> asyncio.Lock:
        lock = self._locks.get(asset_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[asset_id] = lock
        return lock
