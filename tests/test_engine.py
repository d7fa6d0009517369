"""RiskEngine tests: the full request path over stubbed providers."""

from __future__ import annotations

from datetime import date, timedelta

import pytest

from conftest import StubScalar, write_baseline
from core.errors import ConfigMissing, DataInsufficient
from core.models.events import EventTypes
from core.models.risk import RiskFactorType
from engine.refresher import RiskRefresher
from main import build_engine


@pytest.fixture
def engine(config, registry, time_context):
    registry.register("sentiment", StubScalar("fng", 55.0))
    registry.register("funding", StubScalar("funding", 0.0001))
    registry.register("macro", StubScalar("vix", 18.0))
    registry.register("macro", StubScalar("dxy", 101.0))
    return build_engine(config, registry, time_context)


def _seed_btc(store) -> None:
    write_baseline(
        store,
        "BTC",
        date(2023, 1, 1),
        date(2024, 1, 1),
        price=lambda i: 20000.0 * (1.002 ** i),
    )


@pytest.mark.asyncio
async def test_risk_history_is_sampled_and_ends_yesterday(engine, store):
    _seed_btc(store)

    history = await engine.request_risk_history("btc", max_points=50)

    assert 0 < len(history) <= 50
    assert history[-1].date == date(2024, 1, 4)
    assert all(0.0 <= p.risk_level <= 1.0 for p in history)
    assert [p.date for p in history] == sorted(p.date for p in history)


@pytest.mark.asyncio
async def test_second_request_is_served_from_cache(engine, store, registry):
    _seed_btc(store)
    events = []

    async def collect(event):
        events.append(event)

    registry.first("event_bus").subscribe(EventTypes.RISK_CALCULATED, collect)

    first = await engine.request_risk_history("BTC")
    second = await engine.request_risk_history("BTC")

    assert first == second
    assert len(events) == 1
    assert "BTC_all" in engine.result_cache.memory_keys()
    assert len(engine.confidence.metrics("BTC").r_squared_history) == 1


@pytest.mark.asyncio
async def test_bounded_window_filters_by_days(engine, store, time_context):
    _seed_btc(store)

    history = await engine.request_risk_history("BTC", days=30, max_points=0)

    cutoff = time_context.today() - timedelta(days=30)
    assert history[0].date >= cutoff
    assert history[-1].date == date(2024, 1, 4)
    assert "BTC_30" in engine.result_cache.memory_keys()


@pytest.mark.asyncio
async def test_unknown_asset_raises_config_missing(engine):
    with pytest.raises(ConfigMissing):
        await engine.request_risk_history("DOGE")


@pytest.mark.asyncio
async def test_short_history_raises_data_insufficient(engine, store):
    write_baseline(store, "BTC", date(2023, 12, 28), date(2024, 1, 1))

    with pytest.raises(DataInsufficient) as exc:
        await engine.request_risk_history("BTC")

    assert exc.value.points == 8


@pytest.mark.asyncio
async def test_multi_factor_uses_every_factor(engine, store):
    _seed_btc(store)

    point = await engine.request_multi_factor_risk("BTC")

    assert point.available_factor_count == 6
    assert 0.0 <= point.risk_level <= 1.0
    assert sum(f.weight for f in point.factors) == pytest.approx(1.0)
    assert point.factor(RiskFactorType.FEAR_GREED).raw_value == 55.0


@pytest.mark.asyncio
async def test_multi_factor_request_feeds_confidence(engine, store, time_context):
    _seed_btc(store)

    point = await engine.request_multi_factor_risk("BTC")

    metrics = engine.confidence.metrics("BTC")
    assert metrics is not None
    assert metrics.data_point_counts[-1].count == 369
    assert metrics.last_updated == time_context.now()
    if point.risk_level < 0.45 or point.risk_level > 0.55:
        assert metrics.prediction_snapshots[-1].risk_level == point.risk_level


@pytest.mark.asyncio
async def test_adaptive_confidence_after_calculation(engine, store):
    _seed_btc(store)
    await engine.request_risk_history("BTC")

    result = await engine.request_adaptive_confidence("btc")

    assert result.asset_id == "BTC"
    assert result.static_confidence == 9
    assert 8 <= result.adaptive_confidence <= 9
    assert result.data_point_count == 369


@pytest.mark.asyncio
async def test_clear_cache_keeps_confidence_unless_asked(engine, store):
    _seed_btc(store)
    await engine.request_risk_history("BTC")

    await engine.clear_cache("btc")
    assert engine.result_cache.memory_keys() == []
    assert engine.confidence.metrics("BTC") is not None

    await engine.clear_all_caches(include_confidence=True)
    assert engine.confidence.metrics("BTC") is None


@pytest.mark.asyncio
async def test_refresher_reports_failures_per_asset(engine, store):
    _seed_btc(store)
    refresher = RiskRefresher(engine, ["btc", "nope"], interval_seconds=60)

    results = await refresher.refresh_once()

    assert results["NOPE"] is None
    assert 0.0 <= results["BTC"] <= 1.0


@pytest.mark.asyncio
async def test_refresher_survives_unexpected_errors(engine, store, monkeypatch):
    _seed_btc(store)
    real_request = engine.request_risk_history

    async def flaky(asset_id, *args, **kwargs):
        if asset_id == "ETH":
            raise RuntimeError("unexpected payload")
        return await real_request(asset_id, *args, **kwargs)

    monkeypatch.setattr(engine, "request_risk_history", flaky)
    refresher = RiskRefresher(engine, ["eth", "btc"], interval_seconds=60)

    results = await refresher.refresh_once()

    assert results["ETH"] is None
    assert 0.0 <= results["BTC"] <= 1.0
