"""Yahoo Finance macro index provider -- latest value via the public chart API.

One instance per index. The engine looks them up by name:

    YahooIndexProvider("vix", "^VIX")
    YahooIndexProvider("dxy", "DX-Y.NYB")
"""

from __future__ import annotations

import logging

import httpx

from core.errors import ProviderUnavailable
from plugins.market_data.http import get_json, make_client

logger = logging.getLogger(__name__)

PLUGIN_META = {
    "name": "yahoo_finance",
    "display_name": "Yahoo Finance",
    "description": "Macro indices (VIX, DXY) -- free, no API key required",
    "category": "market_data",
    "protocols": ["macro"],
    "class_name": "YahooIndexProvider",
    "indices": {"vix": "^VIX", "dxy": "DX-Y.NYB"},
}

# Yahoo Finance chart API endpoint
_CHART_URL = "https://query1.finance.yahoo.com/v8/finance/chart/{ticker}"


class YahooIndexProvider:
    """Fetches the latest value of one index.

    Implements the MacroIndexProvider protocol.
    """

    def __init__(
        self,
        index_name: str,
        ticker: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        user_agent: str = "valuerisk/0.1",
    ) -> None:
        self._index_name = index_name
        self._ticker = ticker
        self._client = client or make_client(timeout=timeout, user_agent=user_agent)

    @property
    def name(self) -> str:
        return self._index_name

    @property
    def ticker(self) -> str:
        return self._ticker

    async def fetch_latest(self) -> float:
        url = _CHART_URL.format(ticker=self._ticker)
        data = await get_json(
            self._client, f"yahoo_finance:{self._ticker}", url, {"range": "5d", "interval": "1d"},
        )

        chart = data.get("chart", {}) if isinstance(data, dict) else {}
        result = chart.get("result")
        if not result:
            error = chart.get("error", {})
            logger.warning("Yahoo Finance error for %s: %s", self._ticker, error)
            raise ProviderUnavailable("yahoo_finance", f"no chart result for {self._ticker}")

        return self._latest_value(result[0])

    def _latest_value(self, result: dict) -> float:
        """Prefer the live market price, else the last non-null daily close."""
        price = (result.get("meta") or {}).get("regularMarketPrice")
        if isinstance(price, (int, float)) and price > 0:
            return float(price)

        quote = ((result.get("indicators") or {}).get("quote") or [{}])[0]
        closes = [c for c in quote.get("close", []) if c is not None]
        if not closes:
            raise ProviderUnavailable("yahoo_finance", f"no closes for {self._ticker}")
        return float(closes[-1])

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
