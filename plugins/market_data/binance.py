"""Binance market data provider -- spot klines and perpetual funding rates.

Public endpoints, no API key required.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

import httpx

from core.errors import ProviderUnavailable
from core.models.market import Candle
from plugins.market_data.http import get_json, make_client

logger = logging.getLogger(__name__)

PLUGIN_META = {
    "name": "binance",
    "display_name": "Binance",
    "description": "Spot candles and futures funding rates -- free, no API key required",
    "category": "market_data",
    "protocols": ["candles", "funding"],
    "class_name": "BinanceProvider",
}

_KLINES_URL = "https://api.binance.com/api/v3/klines"
_PREMIUM_INDEX_URL = "https://fapi.binance.com/fapi/v1/premiumIndex"

MAX_LIMIT = 1000


class BinanceProvider:
    """Implements the CandleProvider and FundingProvider protocols."""

    def __init__(
        self,
        funding_symbols: list[str] | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        user_agent: str = "valuerisk/0.1",
    ) -> None:
        self._funding_symbols = funding_symbols or ["BTCUSDT"]
        self._client = client or make_client(timeout=timeout, user_agent=user_agent)

    @property
    def name(self) -> str:
        return "binance"

    async def fetch_candles(
        self,
        symbol: str,
        interval: str,
        start: datetime | None = None,
        limit: int = 500,
    ) -> list[Candle]:
        params: dict = {
            "symbol": symbol.upper(),
            "interval": interval,
            "limit": max(1, min(limit, MAX_LIMIT)),
        }
        if start is not None:
            params["startTime"] = int(start.timestamp() * 1000)

        rows = await get_json(self._client, self.name, _KLINES_URL, params)
        if not isinstance(rows, list):
            raise ProviderUnavailable(self.name, f"unexpected klines payload for {symbol}")

        candles: list[Candle] = []
        for row in rows:
            try:
                candles.append(Candle(
                    open_time=datetime.fromtimestamp(int(row[0]) / 1000, tz=timezone.utc),
                    open=float(row[1]),
                    high=float(row[2]),
                    low=float(row[3]),
                    close=float(row[4]),
                    volume=float(row[5]),
                ))
            except (IndexError, TypeError, ValueError) as e:
                raise ProviderUnavailable(self.name, f"malformed kline: {row!r}") from e
        return candles

    async def fetch_funding_rate(self) -> float:
        """Average of the last funding rate across the configured perpetuals."""
        results = await asyncio.gather(
            *(self._funding_rate(s) for s in self._funding_symbols),
            return_exceptions=True,
        )
        rates = [r for r in results if isinstance(r, float)]
        for symbol, r in zip(self._funding_symbols, results):
            if isinstance(r, BaseException):
                logger.warning("Funding rate for %s unavailable: %s", symbol, r)
        if not rates:
            raise ProviderUnavailable(self.name, "no funding rates returned")
        return sum(rates) / len(rates)

    async def _funding_rate(self, symbol: str) -> float:
        data = await get_json(self._client, self.name, _PREMIUM_INDEX_URL, {"symbol": symbol})
        try:
            return float(data["lastFundingRate"])
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderUnavailable(self.name, f"no funding rate for {symbol}") from e

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
