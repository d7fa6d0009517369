"""Store and event bus plumbing."""

from __future__ import annotations

import json

import pytest

from core.bus import AsyncIOBus
from core.data.store import PRICE_HISTORY, Store
from core.errors import CacheCorrupt
from core.models.events import Event
from core.models.market import PriceFile


def test_load_json_raises_on_corruption(tmp_path):
    store = Store(tmp_path)
    path = store.path_for(PRICE_HISTORY, "BTC_baseline.json")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"prices": [{"date": "not a date", "close": 1}]}))

    with pytest.raises(CacheCorrupt):
        store.load_json(PRICE_HISTORY, "BTC_baseline.json", PriceFile)
    assert path.exists()

    assert store.read_json(PRICE_HISTORY, "BTC_baseline.json", PriceFile) is None
    assert not path.exists()


def test_prefix_delete(tmp_path):
    store = Store(tmp_path)
    for name in ("BTC_all", "BTC_30", "ETH_all"):
        store.write_json("risk_cache", f"{name}.json", PriceFile())

    assert store.delete_prefix("risk_cache", "BTC_") == 2
    assert store.list_files("risk_cache") == ["ETH_all.json"]


@pytest.mark.asyncio
async def test_bus_dispatches_and_persists(tmp_path, time_context):
    bus = AsyncIOBus(events_dir=tmp_path / "events", time_context=time_context)
    seen: list[str] = []

    async def specific(event):
        seen.append(f"specific:{event.type}")

    async def wildcard(event):
        seen.append(f"any:{event.type}")

    async def broken(event):
        raise RuntimeError("handler bug")

    bus.subscribe("prices.updated", specific)
    bus.subscribe("prices.updated", broken)
    bus.subscribe("*", wildcard)

    await bus.publish(Event(type="prices.updated", source="test", payload={"asset_id": "BTC"}))
    bus.unsubscribe("prices.updated", specific)
    await bus.publish(Event(type="prices.updated", source="test"))

    assert seen == ["specific:prices.updated", "any:prices.updated", "any:prices.updated"]
    lines = (tmp_path / "events" / "2024-01-05.jsonl").read_text().splitlines()
    assert len(lines) == 2
    assert json.loads(lines[0])["payload"] == {"asset_id": "BTC"}
