"""Price history store -- frozen baseline plus incremental daily closes, per asset.

The baseline comes from an embedded file shipped with the deployment or, for
assets without one, is bootstrapped once from the full-history provider and
persisted. Days after the baseline are fetched incrementally (candle provider
first, full-history provider otherwise) and persisted separately. Callers
only see the merged, ascending, date-unique series.

The current UTC day is still trading, so its close is never stored.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Iterable

from core.bus import AsyncIOBus
from core.config import AppConfig, AssetConfig
from core.data.store import PRICE_HISTORY, Store
from core.errors import CacheCorrupt, ProviderUnavailable
from core.models.events import Event, EventTypes
from core.models.market import PriceFile, PricePoint
from core.registry import PluginRegistry
from core.time_context import TimeContext
from engine.rate_gate import MinIntervalGate

logger = logging.getLogger(__name__)

# Bootstrap pages through the history provider one year at a time
BOOTSTRAP_PAGE_DAYS = 365
MAX_BOOTSTRAP_PAGES = 40
MAX_CANDLE_LIMIT = 1000


def _day_start(d: date) -> datetime:
    return datetime.combine(d, time.min, tzinfo=timezone.utc)


def _daily_closes(rows: Iterable[tuple[datetime, float]]) -> dict[date, float]:
    """Collapse (timestamp, price) rows to one price per UTC date (last one wins)."""
    closes: dict[date, float] = {}
    for ts, price in rows:
        if price is None or price <= 0:
            continue
        if ts.tzinfo is not None:
            ts = ts.astimezone(timezone.utc)
        closes[ts.date()] = float(price)
    return closes


class PriceHistoryStore:
    """Per-asset daily price series. `full_history` is idempotent and restartable.

    All work for one asset runs under that asset's lock, so concurrent
    callers share a single fetch instead of issuing duplicates.
    """

    def __init__(
        self,
        config: AppConfig,
        store: Store,
        bus: AsyncIOBus,
        registry: PluginRegistry,
        time_context: TimeContext,
        page_gate: MinIntervalGate | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._bus = bus
        self._registry = registry
        self._time = time_context

        limits = config.rate_limits
        self._cooldown = timedelta(seconds=config.seconds(limits.incremental_cooldown))
        self._bootstrap_cooldown = timedelta(
            seconds=config.seconds(limits.bootstrap_failure_cooldown)
        )
        self._call_timeout = config.seconds(limits.provider_call_timeout)
        self._page_gate = page_gate or MinIntervalGate(
            config.seconds(limits.bootstrap_page_interval), name="bootstrap_pages"
        )

        self._locks: dict[str, asyncio.Lock] = {}
        self._baselines: dict[str, PriceFile] = {}
        self._incremental: dict[str, PriceFile] = {}
        self._merged: dict[str, list[PricePoint]] = {}
        self._last_fetch_attempt: dict[str, datetime] = {}
        self._bootstrap_failed_at: dict[str, datetime] = {}

        bus.subscribe(EventTypes.CACHE_CLEARED, self._on_cache_cleared)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def full_history(self, asset_id: str) -> list[PricePoint]:
        """Baseline plus incremental closes, ascending, one point per date.

        Empty when no baseline exists and it cannot be bootstrapped yet.
        """
        asset = self._config.asset(asset_id)
        key = asset.asset_id
        async with self._lock_for(key):
            baseline = await self._ensure_baseline(asset)
            if baseline is None:
                return []
            await self._fill_gap(asset, baseline)
            return list(self._merge(key, baseline))

    def invalidate(self, asset_id: str | None = None) -> None:
        """Drop the merged-series memo for one asset (or all); files are kept."""
        if asset_id is None:
            self._merged.clear()
        else:
            self._merged.pop(asset_id.upper(), None)

    def last_fetch_attempt(self, asset_id: str) -> datetime | None:
        return self._last_fetch_attempt.get(asset_id.upper())

    # ------------------------------------------------------------------
    # Baseline
    # ------------------------------------------------------------------

    async def _ensure_baseline(self, asset: AssetConfig) -> PriceFile | None:
        key = asset.asset_id
        baseline = self._baselines.get(key)
        if baseline is not None:
            return baseline

        baseline = self._load_embedded(key)
        if baseline is None:
            baseline = self._store.read_json(PRICE_HISTORY, f"{key}_baseline.json", PriceFile)
            if baseline is not None and not baseline.prices:
                baseline = None
        if baseline is None:
            baseline = await self._bootstrap(asset)
        if baseline is not None:
            self._baselines[key] = baseline
        return baseline

    def _load_embedded(self, asset_id: str) -> PriceFile | None:
        path: Path | None = self._config.baseline_path
        if path is None or not (path / f"{asset_id}.json").exists():
            return None
        try:
            baseline = Store(path).load_json("", f"{asset_id}.json", PriceFile)
        except CacheCorrupt as e:
            # Embedded files are read-only; report and fall through to bootstrap
            logger.error("Embedded baseline unusable: %s", e)
            return None
        if baseline is None or not baseline.prices:
            return None
        logger.info(
            "Loaded embedded baseline for %s (%d points, ends %s)",
            asset_id, len(baseline.prices), baseline.end_date,
        )
        return baseline

    async def _bootstrap(self, asset: AssetConfig) -> PriceFile | None:
        """Page the history provider from the origin date up to yesterday.

        Nothing is persisted unless the whole run succeeds.
        """
        key = asset.asset_id
        provider = self._registry.first("history")
        if provider is None:
            logger.warning("No history provider registered; cannot bootstrap %s", key)
            return None

        now = self._time.now()
        failed_at = self._bootstrap_failed_at.get(key)
        if failed_at is not None and now - failed_at < self._bootstrap_cooldown:
            logger.debug("Bootstrap for %s cooling down after failure", key)
            return None

        today = now.date()
        cursor = _day_start(asset.origin_date)
        closes: dict[date, float] = {}
        pages = 0

        logger.info("Bootstrapping %s history from %s", key, asset.origin_date)
        try:
            while cursor.date() < today and pages < MAX_BOOTSTRAP_PAGES:
                page_end = min(cursor + timedelta(days=BOOTSTRAP_PAGE_DAYS), now)
                async with self._page_gate:
                    rows = await asyncio.wait_for(
                        provider.fetch_range(asset.gecko_id, "usd", cursor, page_end),
                        timeout=self._call_timeout,
                    )
                pages += 1
                if not rows:
                    if closes:
                        break
                    # Provider has no data this early; keep walking forward
                    cursor = page_end
                    continue
                for d, price in _daily_closes(rows).items():
                    if d < today:
                        closes.setdefault(d, price)
                cursor = page_end
        except (ProviderUnavailable, asyncio.TimeoutError) as e:
            logger.warning("Bootstrap for %s failed after %d page(s): %s", key, pages, e)
            self._bootstrap_failed_at[key] = now
            return None

        if not closes:
            logger.warning("Bootstrap for %s returned no data", key)
            self._bootstrap_failed_at[key] = now
            return None

        baseline = PriceFile(
            prices=[PricePoint(date=d, close=closes[d]) for d in sorted(closes)],
            last_updated=now,
        )
        self._store.write_json(PRICE_HISTORY, f"{key}_baseline.json", baseline)
        self._bootstrap_failed_at.pop(key, None)
        self._merged.pop(key, None)
        logger.info(
            "Bootstrapped %s: %d points through %s", key, len(baseline.prices), baseline.end_date
        )
        await self._bus.publish(Event(
            type=EventTypes.PRICES_UPDATED,
            source="price_store",
            payload={"asset_id": key, "kind": "baseline", "added": len(baseline.prices)},
        ))
        return baseline

    # ------------------------------------------------------------------
    # Incremental
    # ------------------------------------------------------------------

    def _load_incremental(self, asset_id: str) -> PriceFile:
        incremental = self._incremental.get(asset_id)
        if incremental is None:
            incremental = self._store.read_json(
                PRICE_HISTORY, f"{asset_id}_incremental.json", PriceFile
            ) or PriceFile(prices=[])
            self._incremental[asset_id] = incremental
        return incremental

    async def _fill_gap(self, asset: AssetConfig, baseline: PriceFile) -> None:
        """Fetch the closed days between the series end and yesterday."""
        key = asset.asset_id
        now = self._time.now()
        today = now.date()
        yesterday = today - timedelta(days=1)

        incremental = self._load_incremental(key)
        series_end = baseline.end_date
        if incremental.end_date is not None and incremental.end_date > series_end:
            series_end = incremental.end_date
        next_day = series_end + timedelta(days=1)
        if next_day > yesterday:
            return

        last = self._last_fetch_attempt.get(key)
        if last is not None and now - last < self._cooldown:
            logger.debug("Incremental fetch for %s cooling down", key)
            return
        # Stamped before the fetch so failures are throttled too
        self._last_fetch_attempt[key] = now

        missing = (yesterday - next_day).days + 1
        try:
            closes = await self._fetch_daily(asset, next_day, missing)
        except (ProviderUnavailable, asyncio.TimeoutError) as e:
            logger.warning("Incremental fetch for %s failed: %s", key, e)
            return

        existing = incremental.dates()
        added = [
            PricePoint(date=d, close=price)
            for d, price in sorted(closes.items())
            if d > baseline.end_date and d not in existing and d < today
        ]
        if not added:
            logger.debug("No new closes for %s since %s", key, series_end)
            return

        updated = PriceFile(
            prices=sorted(incremental.prices + added, key=lambda p: p.date),
            last_updated=now,
        )
        self._store.write_json(PRICE_HISTORY, f"{key}_incremental.json", updated)
        self._incremental[key] = updated
        self._merged.pop(key, None)
        logger.info("Added %d close(s) for %s through %s", len(added), key, updated.end_date)

        await self._bus.publish(Event(
            type=EventTypes.PRICES_UPDATED,
            source="price_store",
            payload={"asset_id": key, "kind": "incremental", "added": len(added)},
        ))

    async def _fetch_daily(self, asset: AssetConfig, start: date, days: int) -> dict[date, float]:
        candles = self._registry.first("candles")
        if asset.binance_symbol and candles is not None:
            try:
                rows = await asyncio.wait_for(
                    candles.fetch_candles(
                        asset.binance_symbol,
                        "1d",
                        start=_day_start(start),
                        limit=min(days + 1, MAX_CANDLE_LIMIT),
                    ),
                    timeout=self._call_timeout,
                )
                closes = _daily_closes((c.open_time, c.close) for c in rows)
                if closes:
                    return closes
                logger.warning(
                    "Candle fetch for %s returned no data; trying history provider", asset.asset_id
                )
            except (ProviderUnavailable, asyncio.TimeoutError) as e:
                logger.warning(
                    "Candle fetch for %s failed (%s); trying history provider", asset.asset_id, e
                )

        history = self._registry.first("history")
        if history is None:
            raise ProviderUnavailable("history", "no provider registered")
        rows = await asyncio.wait_for(
            history.fetch_history(asset.gecko_id, "usd", days + 1),
            timeout=self._call_timeout,
        )
        return _daily_closes(rows)

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def _merge(self, asset_id: str, baseline: PriceFile) -> list[PricePoint]:
        merged = self._merged.get(asset_id)
        if merged is not None:
            return merged

        baseline_end = baseline.end_date
        incremental = self._load_incremental(asset_id)
        tail = [p for p in incremental.prices if baseline_end is None or p.date > baseline_end]

        by_date = {p.date: p for p in baseline.prices}
        for p in tail:
            by_date[p.date] = p
        merged = [by_date[d] for d in sorted(by_date)]
        self._merged[asset_id] = merged
        return merged

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_for(self, asset_id: str) -> asyncio.Lock:
        lock = self._locks.get(asset_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[asset_id] = lock
        return lock

    async def _on_cache_cleared(self, event: Event) -> None:
        # Plain dict ops: must not take an asset lock, the publisher may hold it
        if event.payload.get("all"):
            self.invalidate()
        elif event.payload.get("asset_id"):
            self.invalidate(event.payload["asset_id"])
