"""Shared httpx plumbing for the market data providers."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from core.errors import ProviderUnavailable

logger = logging.getLogger(__name__)


def make_client(timeout: float = 30.0, user_agent: str = "valuerisk/0.1", **kwargs: Any) -> httpx.AsyncClient:
    headers = {"User-Agent": user_agent, "Accept": "application/json"}
    headers.update(kwargs.pop("headers", {}) or {})
    return httpx.AsyncClient(timeout=timeout, headers=headers, **kwargs)


async def get_json(
    client: httpx.AsyncClient,
    provider: str,
    url: str,
    params: dict[str, Any] | None = None,
) -> Any:
    """GET `url` and decode JSON. Every failure is raised as ProviderUnavailable."""
    try:
        response = await client.get(url, params=params)
    except httpx.HTTPError as e:
        raise ProviderUnavailable(provider, f"{type(e).__name__}: {e}") from e

    if response.status_code != 200:
        logger.warning("%s returned %d for %s", provider, response.status_code, url)
        raise ProviderUnavailable(provider, f"HTTP {response.status_code}")

    try:
        return response.json()
    except ValueError as e:
        raise ProviderUnavailable(provider, "invalid JSON") from e
