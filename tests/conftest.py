import asyncio
import inspect
import pathlib
import sys
from datetime import date, datetime, timedelta, timezone

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from core.bus import AsyncIOBus  # noqa: E402
from core.config import AppConfig, RateLimitsConfig  # noqa: E402
from core.data.store import Store  # noqa: E402
from core.errors import ProviderUnavailable  # noqa: E402
from core.models.market import Candle  # noqa: E402
from core.registry import PluginRegistry  # noqa: E402
from core.time_context import TimeContext  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used in the suite."""

    config.addinivalue_line("markers", "asyncio: mark test as running in an asyncio event loop")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Execute async test functions without requiring pytest-asyncio."""

    test_function = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_function):
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            # funcargs also holds fixtures pulled in transitively; pass only the named ones
            kwargs = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
            loop.run_until_complete(test_function(**kwargs))
        finally:
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None


# ---------------------------------------------------------------------------
# Provider stubs
# ---------------------------------------------------------------------------

def _utc(d: date) -> datetime:
    return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)


class StubCandles:
    """Daily candles with close = 100 + day index, one per day starting at `start`."""

    name = "stub_candles"

    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.fail = False
        self.empty = False
        self.weekly_closes: list[float] = [float(100 + i) for i in range(25)]
        self.daily_closes: list[float] = [float(100 + i) for i in range(250)]

    async def fetch_candles(self, symbol, interval, start=None, limit=500):
        self.calls.append({"symbol": symbol, "interval": interval, "start": start, "limit": limit})
        if self.fail:
            raise ProviderUnavailable(self.name, "stubbed failure")
        if self.empty:
            return []
        if interval == "1w":
            closes = self.weekly_closes[-limit:]
            first = date(2023, 1, 2)
            return [
                Candle(open_time=_utc(first + timedelta(weeks=i)), open=c, high=c, low=c, close=c)
                for i, c in enumerate(closes)
            ]
        if start is None:
            closes = self.daily_closes[-limit:]
            first = date(2023, 1, 1)
            return [
                Candle(open_time=_utc(first + timedelta(days=i)), open=c, high=c, low=c, close=c)
                for i, c in enumerate(closes)
            ]
        return [
            Candle(
                open_time=start + timedelta(days=i),
                open=100.0 + i, high=100.0 + i, low=100.0 + i, close=100.0 + i,
            )
            for i in range(limit)
        ]


class StubHistory:
    """Serves a fixed list of (timestamp, price) rows."""

    name = "stub_history"

    def __init__(self, rows: list[tuple[datetime, float]] | None = None) -> None:
        self.rows = rows or []
        self.range_calls: list[tuple[datetime, datetime]] = []
        self.history_calls: list[int] = []
        self.fail = False

    async def fetch_history(self, coin_id, currency, days):
        self.history_calls.append(days)
        if self.fail:
            raise ProviderUnavailable(self.name, "stubbed failure")
        return list(self.rows[-days:]) if days else []

    async def fetch_range(self, coin_id, currency, start, end):
        self.range_calls.append((start, end))
        if self.fail:
            raise ProviderUnavailable(self.name, "stubbed failure")
        return [(ts, p) for ts, p in self.rows if start <= ts <= end]


class StubIndicators:
    name = "stub_indicators"

    def __init__(self, values: dict[str, float] | None = None) -> None:
        self.values = values if values is not None else {"rsi": 75.0, "sma": 90.0, "price": 100.0}
        self.calls: list[str] = []
        self.fail = False

    async def fetch_indicator(self, indicator, symbol, exchange="binance", interval="1d", period=None):
        self.calls.append(indicator)
        if self.fail or indicator not in self.values:
            raise ProviderUnavailable(self.name, f"no {indicator}")
        return self.values[indicator]


class StubScalar:
    """A provider returning one number; used for sentiment, funding and macro."""

    def __init__(self, name: str, value: float | None) -> None:
        self._name = name
        self.value = value
        self.calls = 0

    @property
    def name(self) -> str:
        return self._name

    async def _get(self) -> float:
        self.calls += 1
        if self.value is None:
            raise ProviderUnavailable(self._name, "stubbed failure")
        return self.value

    async def fetch_sentiment(self) -> float:
        return await self._get()

    async def fetch_funding_rate(self) -> float:
        return await self._get()

    async def fetch_latest(self) -> float:
        return await self._get()


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def time_context() -> TimeContext:
    return TimeContext.at(datetime(2024, 1, 5, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def config(tmp_path) -> AppConfig:
    return AppConfig(
        home_dir=str(tmp_path),
        rate_limits=RateLimitsConfig(
            bootstrap_page_interval="0s",
            indicator_interval="0s",
            provider_call_timeout="5s",
        ),
    )


@pytest.fixture
def store(config) -> Store:
    return Store(config.cache_path)


@pytest.fixture
def bus() -> AsyncIOBus:
    return AsyncIOBus()


@pytest.fixture
def candles() -> StubCandles:
    return StubCandles()


@pytest.fixture
def history_provider() -> StubHistory:
    return StubHistory()


@pytest.fixture
def registry(candles, history_provider) -> PluginRegistry:
    registry = PluginRegistry()
    registry.register("candles", candles)
    registry.register("history", history_provider)
    return registry


def daily_rows(start: date, end: date, price=lambda i: 100.0 + i) -> list[tuple[datetime, float]]:
    """One (midnight UTC, price) row per day from `start` to `end` inclusive."""
    rows = []
    day, i = start, 0
    while day <= end:
        rows.append((_utc(day), price(i)))
        day += timedelta(days=1)
        i += 1
    return rows


def write_baseline(store: Store, asset_id: str, start: date, end: date, price=lambda i: 100.0 + i) -> None:
    """Persist a baseline price file as if it had been bootstrapped earlier."""
    from core.data.store import PRICE_HISTORY
    from core.models.market import PriceFile, PricePoint

    points = [PricePoint(date=ts.date(), close=p) for ts, p in daily_rows(start, end, price)]
    store.write_json(PRICE_HISTORY, f"{asset_id}_baseline.json", PriceFile(prices=points))
