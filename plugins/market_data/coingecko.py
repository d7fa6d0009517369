"""CoinGecko market data provider -- full daily price history by coin id.

Used to bootstrap a baseline for assets without one, and for incremental
days when the asset has no exchange symbol.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

import httpx

from core.errors import ProviderUnavailable
from plugins.market_data.http import get_json, make_client

logger = logging.getLogger(__name__)

PLUGIN_META = {
    "name": "coingecko",
    "display_name": "CoinGecko",
    "description": "Daily crypto price history -- free tier, optional demo API key",
    "category": "market_data",
    "protocols": ["history"],
    "class_name": "CoinGeckoProvider",
}

_BASE_URL = "https://api.coingecko.com/api/v3"


class CoinGeckoProvider:
    """Implements the HistoryProvider protocol."""

    def __init__(
        self,
        api_key: str = "",
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        user_agent: str = "valuerisk/0.1",
    ) -> None:
        headers = {"x-cg-demo-api-key": api_key} if api_key else {}
        self._client = client or make_client(timeout=timeout, user_agent=user_agent, headers=headers)

    @property
    def name(self) -> str:
        return "coingecko"

    async def fetch_history(
        self, coin_id: str, currency: str, days: int,
    ) -> list[tuple[datetime, float]]:
        url = f"{_BASE_URL}/coins/{coin_id}/market_chart"
        data = await get_json(
            self._client, self.name, url, {"vs_currency": currency, "days": max(1, days)},
        )
        return self._parse_prices(data, coin_id)

    async def fetch_range(
        self, coin_id: str, currency: str, start: datetime, end: datetime,
    ) -> list[tuple[datetime, float]]:
        url = f"{_BASE_URL}/coins/{coin_id}/market_chart/range"
        params = {
            "vs_currency": currency,
            "from": int(start.timestamp()),
            "to": int(end.timestamp()),
        }
        data = await get_json(self._client, self.name, url, params)
        return self._parse_prices(data, coin_id)

    def _parse_prices(self, data: dict, coin_id: str) -> list[tuple[datetime, float]]:
        """`prices` is a list of [unix_ms, price] pairs."""
        if not isinstance(data, dict) or not isinstance(data.get("prices"), list):
            raise ProviderUnavailable(self.name, f"unexpected payload for {coin_id}")

        rows: list[tuple[datetime, float]] = []
        for pair in data["prices"]:
            try:
                ts = datetime.fromtimestamp(float(pair[0]) / 1000, tz=timezone.utc)
                price = float(pair[1])
            except (IndexError, TypeError, ValueError):
                logger.debug("Skipping malformed price pair for %s: %r", coin_id, pair)
                continue
            rows.append((ts, price))
        rows.sort(key=lambda r: r[0])
        return rows

    async def close(self) -> None:
        await self._client.aclose()
