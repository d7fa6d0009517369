"""Core protocols -- the extension points that define the system.

The core imports these protocols. Plugins implement them.
The core NEVER imports concrete implementations.

All protocols use Python's structural subtyping (typing.Protocol):
if your class has the right methods, it implements the protocol.
No inheritance required.

Providers signal every failure (network, HTTP status, malformed payload)
by raising core.errors.ProviderUnavailable.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Coroutine, Protocol, runtime_checkable

from core.models.events import Event
from core.models.market import Candle


# ---------------------------------------------------------------------------
# 1. EventBus -- inter-store communication
# ---------------------------------------------------------------------------

@runtime_checkable
class EventBus(Protocol):
    """Publish/subscribe event bus.

    Default implementation: AsyncIOBus (in-process pub/sub with JSONL audit).
    """

    async def publish(self, event: Event) -> None:
        """Publish an event to all subscribers of its type."""
        ...

    def subscribe(self, event_type: str, callback: Callable[[Event], Coroutine[Any, Any, None]]) -> None:
        """Register a callback for events of the given type."""
        ...

    def unsubscribe(self, event_type: str, callback: Callable[[Event], Coroutine[Any, Any, None]]) -> None:
        """Remove a previously registered callback."""
        ...


# ---------------------------------------------------------------------------
# 2. CandleProvider -- exchange OHLC candles
# ---------------------------------------------------------------------------

@runtime_checkable
class CandleProvider(Protocol):
    """Exchange candles. Used for gap filling, weekly bands and the
    local indicator fallback."""

    @property
    def name(self) -> str:
        ...

    async def fetch_candles(
        self,
        symbol: str,
        interval: str,
        start: datetime | None = None,
        limit: int = 500,
    ) -> list[Candle]:
        """Candles oldest first. `start` is inclusive; None means the latest `limit`."""
        ...


# ---------------------------------------------------------------------------
# 3. IndicatorProvider -- hard rate-limited momentum/trend values
# ---------------------------------------------------------------------------

@runtime_checkable
class IndicatorProvider(Protocol):
    """Computes technical indicators server-side (rsi, sma, price).

    Callers must route every request through the process-wide rate gate.
    """

    @property
    def name(self) -> str:
        ...

    async def fetch_indicator(
        self,
        indicator: str,
        symbol: str,
        exchange: str = "binance",
        interval: str = "1d",
        period: int | None = None,
    ) -> float:
        ...


# ---------------------------------------------------------------------------
# 4. SentimentProvider -- 0..100 sentiment index
# ---------------------------------------------------------------------------

@runtime_checkable
class SentimentProvider(Protocol):

    @property
    def name(self) -> str:
        ...

    async def fetch_sentiment(self) -> float:
        ...


# ---------------------------------------------------------------------------
# 5. FundingProvider -- perpetual futures funding rate
# ---------------------------------------------------------------------------

@runtime_checkable
class FundingProvider(Protocol):

    @property
    def name(self) -> str:
        ...

    async def fetch_funding_rate(self) -> float:
        """Current funding rate as a decimal (0.0001 == 0.01%)."""
        ...


# ---------------------------------------------------------------------------
# 6. MacroIndexProvider -- one macro index (VIX, DXY)
# ---------------------------------------------------------------------------

@runtime_checkable
class MacroIndexProvider(Protocol):
    """Latest value of a single macro index. Registered once per index,
    under the index's name ("vix", "dxy")."""

    @property
    def name(self) -> str:
        ...

    async def fetch_latest(self) -> float:
        ...


# ---------------------------------------------------------------------------
# 7. HistoryProvider -- full daily history for bootstrap
# ---------------------------------------------------------------------------

@runtime_checkable
class HistoryProvider(Protocol):
    """Alternate full-history source keyed by an asset identifier
    (e.g. a CoinGecko coin id)."""

    @property
    def name(self) -> str:
        ...

    async def fetch_history(
        self, coin_id: str, currency: str, days: int,
    ) -> list[tuple[datetime, float]]:
        """(timestamp, price) pairs covering the last `days` days, oldest first."""
        ...

    async def fetch_range(
        self, coin_id: str, currency: str, start: datetime, end: datetime,
    ) -> list[tuple[datetime, float]]:
        """(timestamp, price) pairs between `start` and `end`, oldest first."""
        ...
