"""Alternative.me Fear & Greed Index provider."""

from __future__ import annotations

import httpx

from core.errors import ProviderUnavailable
from plugins.market_data.http import get_json, make_client

PLUGIN_META = {
    "name": "alternative_me",
    "display_name": "Alternative.me Fear & Greed",
    "description": "Crypto Fear & Greed Index (0-100) -- free, no API key required",
    "category": "market_data",
    "protocols": ["sentiment"],
    "class_name": "AlternativeMeProvider",
}

_FNG_URL = "https://api.alternative.me/fng/"


class AlternativeMeProvider:
    """Implements the SentimentProvider protocol."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        user_agent: str = "valuerisk/0.1",
    ) -> None:
        self._client = client or make_client(timeout=timeout, user_agent=user_agent)

    @property
    def name(self) -> str:
        return "alternative_me"

    async def fetch_sentiment(self) -> float:
        data = await get_json(self._client, self.name, _FNG_URL, {"limit": 1})
        try:
            return float(data["data"][0]["value"])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ProviderUnavailable(self.name, "no index value in response") from e

    async def close(self) -> None:
        await self._client.aclose()
