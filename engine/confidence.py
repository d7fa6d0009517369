"""Adaptive confidence tracker.

Every risk calculation leaves a trail per asset: the regression R², the
number of price points it was fitted on, and (for directional calls) a
prediction snapshot that is checked against the real price 30, 60 and 90
days later. The published confidence is the asset's static confidence
nudged up or down by that trail.
"""

from __future__ import annotations

import asyncio
import logging
import math
from datetime import datetime, timezone

from core.bus import AsyncIOBus
from core.config import AppConfig
from core.data.store import CONFIDENCE, Store
from core.models.confidence import (
    AdaptiveConfidenceResult,
    ConfidenceMetrics,
    DataPointSnapshot,
    PredictionSnapshot,
    RSquaredSnapshot,
)
from core.models.events import Event, EventTypes
from core.models.risk import NEUTRAL_HIGH, NEUTRAL_LOW, risk_category
from core.time_context import TimeContext

logger = logging.getLogger(__name__)

MAX_R_SQUARED_HISTORY = 180
MAX_DATA_POINT_HISTORY = 180
MAX_PREDICTION_SNAPSHOTS = 365

VALIDATION_HORIZONS = (30, 60, 90)
# Price move a directional call needs to count as correct
CORRECTNESS_THRESHOLD = 0.05
MIN_VALIDATED_FOR_ACCURACY = 5
DEFAULT_STATIC_CONFIDENCE = 5
MAX_CONFIDENCE = 9


def is_directional(risk_level: float) -> bool:
    return risk_level < NEUTRAL_LOW or risk_level > NEUTRAL_HIGH


def evaluate_prediction(risk_level: float, price_then: float, price_now: float) -> bool:
    """High-risk calls are right if price fell 5%+, low-risk calls if it rose 5%+."""
    if price_then <= 0:
        return False
    change = (price_now - price_then) / price_then
    if risk_level >= NEUTRAL_HIGH:
        return change <= -CORRECTNESS_THRESHOLD
    if risk_level < NEUTRAL_LOW:
        return change >= CORRECTNESS_THRESHOLD
    return False


def _clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class ConfidenceTracker:
    """Persists ConfidenceMetrics per asset and derives adaptive confidence."""

    def __init__(
        self,
        config: AppConfig,
        store: Store,
        bus: AsyncIOBus,
        time_context: TimeContext,
    ) -> None:
        self._config = config
        self._store = store
        self._bus = bus
        self._time = time_context
        self._metrics: dict[str, ConfidenceMetrics] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load_all(self) -> int:
        """Eagerly load metrics for every configured asset. Returns how many existed."""
        loaded = 0
        for asset_id in self._config.assets:
            metrics = self._read(asset_id)
            if metrics is not None:
                self._metrics[asset_id] = metrics
                loaded += 1
        logger.info("Loaded confidence metrics for %d asset(s)", loaded)
        return loaded

    def metrics(self, asset_id: str) -> ConfidenceMetrics | None:
        key = asset_id.upper()
        if key not in self._metrics:
            metrics = self._read(key)
            if metrics is not None:
                self._metrics[key] = metrics
        return self._metrics.get(key)

    def _read(self, asset_id: str) -> ConfidenceMetrics | None:
        return self._store.read_json(CONFIDENCE, f"{asset_id}_confidence.json", ConfidenceMetrics)

    def _write(self, metrics: ConfidenceMetrics) -> None:
        self._store.write_json(CONFIDENCE, f"{metrics.asset_id}_confidence.json", metrics)

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    async def record_calculation(
        self,
        asset_id: str,
        r_squared: float,
        data_point_count: int,
        risk_level: float,
        price: float,
        at: datetime | None = None,
    ) -> ConfidenceMetrics:
        """Append fit snapshots, maybe open a prediction, re-validate old ones, persist."""
        key = asset_id.upper()
        at = at or self._time.now()
        if at.tzinfo is None:
            at = at.replace(tzinfo=timezone.utc)

        async with self._lock:
            # Work on a copy so a failed write leaves the cached metrics untouched
            current = self.metrics(key)
            if current is not None:
                metrics = current.model_copy(deep=True)
            else:
                metrics = ConfidenceMetrics(asset_id=key, last_updated=at)

            metrics.r_squared_history.append(
                RSquaredSnapshot(date=at, r_squared=r_squared, data_point_count=data_point_count)
            )
            metrics.r_squared_history = metrics.r_squared_history[-MAX_R_SQUARED_HISTORY:]
            metrics.data_point_counts.append(DataPointSnapshot(date=at, count=data_point_count))
            metrics.data_point_counts = metrics.data_point_counts[-MAX_DATA_POINT_HISTORY:]

            created = False
            if is_directional(risk_level) and not any(
                s.snapshot_date.date() == at.date() for s in metrics.prediction_snapshots
            ):
                metrics.prediction_snapshots.append(PredictionSnapshot(
                    asset_id=key,
                    snapshot_date=at,
                    risk_level=risk_level,
                    risk_category=risk_category(risk_level),
                    price_at_snapshot=price,
                ))
                metrics.prediction_snapshots = metrics.prediction_snapshots[-MAX_PREDICTION_SNAPSHOTS:]
                created = True

            validated = self._validate(metrics, price, at)

            metrics.last_updated = at
            self._write(metrics)
            self._metrics[key] = metrics

        if created or validated:
            logger.info(
                "%s confidence: snapshot %s, %d horizon(s) validated",
                key, "created" if created else "skipped", validated,
            )
        await self._bus.publish(Event(
            type=EventTypes.CONFIDENCE_RECORDED,
            source="confidence_tracker",
            payload={
                "asset_id": key,
                "r_squared": r_squared,
                "risk_level": risk_level,
                "snapshot_created": created,
                "horizons_validated": validated,
            },
        ))
        return metrics

    def _validate(self, metrics: ConfidenceMetrics, price: float, at: datetime) -> int:
        """Fill outcome prices for horizons that have elapsed. Returns fields set."""
        filled = 0
        for snapshot in metrics.prediction_snapshots:
            if snapshot.is_fully_validated:
                continue
            age = (at - snapshot.snapshot_date).days
            for horizon in VALIDATION_HORIZONS:
                if age < horizon:
                    break
                price_field = f"price_at_{horizon}_days"
                if getattr(snapshot, price_field) is not None:
                    continue
                setattr(snapshot, price_field, price)
                setattr(
                    snapshot,
                    f"is_correct_{horizon}_day",
                    evaluate_prediction(snapshot.risk_level, snapshot.price_at_snapshot, price),
                )
                filled += 1
                if horizon == VALIDATION_HORIZONS[-1]:
                    snapshot.validated_at = at
        return filled

    # ------------------------------------------------------------------
    # Adaptive confidence
    # ------------------------------------------------------------------

    def static_confidence(self, asset_id: str) -> int:
        asset = self._config.assets.get(asset_id.upper())
        return asset.confidence_level if asset is not None else DEFAULT_STATIC_CONFIDENCE

    async def compute_adaptive_confidence(self, asset_id: str) -> AdaptiveConfidenceResult:
        key = asset_id.upper()
        static = self.static_confidence(key)

        async with self._lock:
            metrics = self.metrics(key)

        if metrics is None:
            return AdaptiveConfidenceResult(
                asset_id=key,
                static_confidence=static,
                adaptive_confidence=static,
                last_updated=self._time.now(),
            )

        r_squared = metrics.r_squared_history[-1].r_squared if metrics.r_squared_history else None
        r_squared_bonus = 0.0
        if r_squared is not None:
            r_squared_bonus = _clamp((r_squared - 0.85) * 5.0, -0.5, 1.0)

        count = metrics.data_point_counts[-1].count if metrics.data_point_counts else 0
        data_point_bonus = 0.0
        if count > 365:
            data_point_bonus = _clamp(math.log2(count / 365) / 4.0, 0.0, 1.0)

        validated = [s for s in metrics.prediction_snapshots if s.is_correct_30_day is not None]
        accuracy: float | None = None
        accuracy_bonus = 0.0
        if len(validated) >= MIN_VALIDATED_FOR_ACCURACY:
            accuracy = sum(1 for s in validated if s.is_correct_30_day) / len(validated)
            accuracy_bonus = _clamp((accuracy - 0.5) * 2.0, -1.0, 1.0)

        floor = max(1, static - 1)
        raw = static + r_squared_bonus + data_point_bonus + accuracy_bonus
        adaptive = _round_half_up(_clamp(raw, floor, MAX_CONFIDENCE))

        return AdaptiveConfidenceResult(
            asset_id=key,
            static_confidence=static,
            adaptive_confidence=adaptive,
            r_squared=r_squared,
            data_point_count=count,
            prediction_accuracy=accuracy,
            validated_prediction_count=len(validated),
            total_prediction_count=len(metrics.prediction_snapshots),
            r_squared_bonus=r_squared_bonus,
            data_point_bonus=data_point_bonus,
            accuracy_bonus=accuracy_bonus,
            last_updated=metrics.last_updated,
        )

    # ------------------------------------------------------------------
    # Clearing
    # ------------------------------------------------------------------

    async def clear(self, asset_id: str) -> None:
        key = asset_id.upper()
        async with self._lock:
            self._metrics.pop(key, None)
            self._store.delete_file(CONFIDENCE, f"{key}_confidence.json")
        logger.info("Cleared confidence metrics for %s", key)

    async def clear_all(self) -> None:
        async with self._lock:
            self._metrics.clear()
            self._store.clear_dir(CONFIDENCE)
        logger.info("Cleared all confidence metrics")
