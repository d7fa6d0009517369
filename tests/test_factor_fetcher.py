"""RiskFactorFetcher tests: tiers, fallback and caching."""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import StubIndicators, StubScalar
from core.registry import PluginRegistry
from engine.factor_fetcher import RiskFactorFetcher


@pytest.fixture
def providers(candles):
    return {
        "candles": candles,
        "indicators": StubIndicators(),
        "sentiment": StubScalar("fng", 60.0),
        "funding": StubScalar("funding", 0.0005),
        "vix": StubScalar("vix", 20.0),
        "dxy": StubScalar("dxy", 104.0),
    }


@pytest.fixture
def factor_registry(providers) -> PluginRegistry:
    registry = PluginRegistry()
    registry.register("candles", providers["candles"])
    registry.register("indicators", providers["indicators"])
    registry.register("sentiment", providers["sentiment"])
    registry.register("funding", providers["funding"])
    registry.register("macro", providers["vix"])
    registry.register("macro", providers["dxy"])
    return registry


@pytest.fixture
def fetcher(config, factor_registry, time_context) -> RiskFactorFetcher:
    config.providers.taapi_api_key = "secret"
    return RiskFactorFetcher(config, factor_registry, time_context)


@pytest.mark.asyncio
async def test_fetches_every_tier(fetcher, providers):
    data = await fetcher.fetch_factors("BTC")

    assert data.rsi == 75.0
    assert data.sma_200 == 90.0
    assert data.current_price == 100.0
    assert data.fear_greed == 60.0
    assert data.funding_rate == 0.0005
    assert data.vix == 20.0
    assert data.dxy == 104.0
    assert data.local_fallback == []
    assert data.available_count == 7
    assert providers["indicators"].calls == ["rsi", "sma", "price"]


@pytest.mark.asyncio
async def test_weekly_bands_drop_the_open_candle(fetcher, candles):
    data = await fetcher.fetch_factors("BTC")

    bands = data.weekly_bands
    assert bands is not None
    # closed weeks are 100..123; the 124 candle is still open
    assert bands.sma_20w == pytest.approx(sum(range(104, 124)) / 20)
    assert bands.current_price == 100.0
    assert bands.position == "below_both"
    weekly_call = next(c for c in candles.calls if c["interval"] == "1w")
    assert weekly_call["limit"] == 25


@pytest.mark.asyncio
async def test_indicator_failure_falls_back_to_candles(fetcher, providers):
    providers["indicators"].fail = True

    data = await fetcher.fetch_factors("BTC")

    closes = providers["candles"].daily_closes
    assert data.sma_200 == pytest.approx(sum(closes[-200:]) / 200)
    # a steadily rising series has no losses
    assert data.rsi == 100.0
    assert data.current_price == closes[-1]
    assert set(data.local_fallback) == {"rsi", "sma_200", "price"}


@pytest.mark.asyncio
async def test_missing_api_key_skips_indicator_provider(config, factor_registry, providers, time_context):
    config.providers.taapi_api_key = ""
    fetcher = RiskFactorFetcher(config, factor_registry, time_context)

    data = await fetcher.fetch_factors("BTC")

    assert providers["indicators"].calls == []
    assert data.rsi is not None
    assert "rsi" in data.local_fallback


@pytest.mark.asyncio
async def test_partial_indicator_failure_only_replaces_missing_value(fetcher, providers):
    providers["indicators"].values = {"rsi": 40.0, "price": 123.0}

    data = await fetcher.fetch_factors("BTC")

    assert data.rsi == 40.0
    assert data.current_price == 123.0
    assert data.local_fallback == ["sma_200"]


@pytest.mark.asyncio
async def test_provider_failures_degrade_to_missing_factors(fetcher, providers):
    providers["sentiment"].value = None
    providers["funding"].value = None
    providers["vix"].value = None

    data = await fetcher.fetch_factors("BTC")

    assert data.fear_greed is None
    assert data.funding_rate is None
    assert data.vix is None
    assert data.dxy == 104.0
    assert data.has_any_data


@pytest.mark.asyncio
async def test_bundle_cache_and_force_refresh(fetcher, providers, time_context):
    first = await fetcher.fetch_factors("BTC")
    time_context.advance(timedelta(minutes=2))
    second = await fetcher.fetch_factors("BTC")

    assert second is first
    assert providers["sentiment"].calls == 1

    third = await fetcher.fetch_factors("BTC", force_refresh=True)
    assert third is not first
    assert providers["sentiment"].calls == 2
    # the macro pair is cached separately and survives a forced refresh
    assert providers["vix"].calls == 1
    assert providers["dxy"].calls == 1


@pytest.mark.asyncio
async def test_macro_cache_expires_after_two_hours(fetcher, providers, time_context):
    await fetcher.fetch_factors("BTC")
    time_context.advance(timedelta(hours=1))
    await fetcher.fetch_factors("BTC")
    assert providers["vix"].calls == 1

    time_context.advance(timedelta(hours=1, seconds=1))
    await fetcher.fetch_factors("BTC")
    assert providers["vix"].calls == 2
    assert providers["dxy"].calls == 2


@pytest.mark.asyncio
async def test_refresh_macro_and_clear(fetcher, providers):
    await fetcher.fetch_factors("BTC")
    providers["vix"].value = 30.0

    vix, dxy = await fetcher.refresh_macro()
    assert (vix, dxy) == (30.0, 104.0)

    fetcher.clear("btc")
    assert fetcher.cached("BTC") is None
    data = await fetcher.fetch_factors("BTC")
    assert data.vix == 30.0


@pytest.mark.asyncio
async def test_clear_one_asset_keeps_macro_but_clear_all_drops_it(fetcher, providers):
    await fetcher.fetch_factors("BTC")
    await fetcher.fetch_factors("ETH")
    assert providers["vix"].calls == 1

    fetcher.clear("BTC")
    await fetcher.fetch_factors("BTC")
    assert providers["vix"].calls == 1

    providers["vix"].value = 25.0
    fetcher.clear()
    assert fetcher.cached("ETH") is None
    data = await fetcher.fetch_factors("ETH")
    assert providers["vix"].calls == 2
    assert data.vix == 25.0


@pytest.mark.asyncio
async def test_indicator_calls_go_through_the_gate(config, factor_registry, time_context):
    from engine.rate_gate import MinIntervalGate

    sleeps = []
    clock = [0.0]

    async def fake_sleep(seconds):
        sleeps.append(seconds)
        clock[0] += seconds

    config.providers.taapi_api_key = "secret"
    gate = MinIntervalGate(15.0, clock=lambda: clock[0], sleep=fake_sleep)
    fetcher = RiskFactorFetcher(config, factor_registry, time_context, indicator_gate=gate)

    await fetcher.fetch_factors("BTC")

    assert sleeps == [15.0, 15.0]
