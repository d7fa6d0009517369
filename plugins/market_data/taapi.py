"""Taapi.io indicator provider -- RSI, SMA and price computed server-side.

The free plan allows one request every 15 seconds. This client does not
throttle itself; the engine routes every call through its shared gate.
"""

from __future__ import annotations

import logging

import httpx

from core.errors import ProviderUnavailable
from plugins.market_data.http import get_json, make_client

logger = logging.getLogger(__name__)

PLUGIN_META = {
    "name": "taapi",
    "display_name": "Taapi.io",
    "description": "Technical indicators (RSI, SMA, price) -- API key required, 1 req/15s on free plan",
    "category": "market_data",
    "protocols": ["indicators"],
    "class_name": "TaapiProvider",
    "env_var": "TAAPI_API_KEY",
}

_BASE_URL = "https://api.taapi.io"

SUPPORTED_INDICATORS = {"rsi", "sma", "ema", "price"}


class TaapiProvider:
    """Implements the IndicatorProvider protocol."""

    def __init__(
        self,
        api_key: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        user_agent: str = "valuerisk/0.1",
    ) -> None:
        self._api_key = api_key
        self._client = client or make_client(timeout=timeout, user_agent=user_agent)

    @property
    def name(self) -> str:
        return "taapi"

    async def fetch_indicator(
        self,
        indicator: str,
        symbol: str,
        exchange: str = "binance",
        interval: str = "1d",
        period: int | None = None,
    ) -> float:
        if not self._api_key:
            raise ProviderUnavailable(self.name, "no API key configured")
        if indicator not in SUPPORTED_INDICATORS:
            raise ValueError(f"Unsupported indicator '{indicator}'")

        params: dict = {
            "secret": self._api_key,
            "exchange": exchange,
            "symbol": symbol,
            "interval": interval,
        }
        if period is not None:
            params["period"] = period

        data = await get_json(self._client, self.name, f"{_BASE_URL}/{indicator}", params)
        try:
            return float(data["value"])
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderUnavailable(self.name, f"no value in {indicator} response") from e

    async def close(self) -> None:
        await self._client.aclose()
