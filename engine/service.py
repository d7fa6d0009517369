"""RiskEngine -- the request/response facade over the risk pipeline.

Owns no state of its own: it wires the price store, factor fetcher,
calculator, result cache and confidence tracker together for one request.
This is the only layer that lets domain errors (ConfigMissing,
DataInsufficient) reach callers.
"""

from __future__ import annotations

import asyncio
import logging

from core.bus import AsyncIOBus
from core.config import AppConfig
from core.errors import DataInsufficient
from core.models.confidence import AdaptiveConfidenceResult
from core.models.events import Event, EventTypes
from core.models.market import RiskFactorData
from core.models.risk import MultiFactorRiskPoint, RiskFactorWeights, RiskHistoryPoint
from core.time_context import TimeContext
from engine.confidence import ConfidenceTracker
from engine.factor_fetcher import RiskFactorFetcher
from engine.price_store import PriceHistoryStore
from engine.result_cache import RiskResultCache
from risk.calculator import RiskCalculator, sample_history

logger = logging.getLogger(__name__)


class RiskEngine:
    """Entry point for risk requests. Construct once and inject where needed."""

    def __init__(
        self,
        config: AppConfig,
        bus: AsyncIOBus,
        time_context: TimeContext,
        price_store: PriceHistoryStore,
        factor_fetcher: RiskFactorFetcher,
        calculator: RiskCalculator,
        result_cache: RiskResultCache,
        confidence: ConfidenceTracker,
    ) -> None:
        self._config = config
        self._bus = bus
        self._time = time_context
        self.price_store = price_store
        self.factor_fetcher = factor_fetcher
        self.calculator = calculator
        self.result_cache = result_cache
        self.confidence = confidence

    # ------------------------------------------------------------------
    # Regression risk
    # ------------------------------------------------------------------

    async def request_risk_history(
        self,
        asset_id: str,
        days: int | None = None,
        max_points: int | None = None,
    ) -> list[RiskHistoryPoint]:
        """Sampled regression risk history, latest point always included.

        `days=None` means the whole history. Raises ConfigMissing for an
        unknown asset and DataInsufficient when no regression can be fitted.
        """
        asset = self._config.asset(asset_id)
        key = asset.asset_id
        if max_points is None:
            max_points = self._config.cache.max_points

        cached = await self.result_cache.get(key, days)
        if cached is not None:
            return sample_history(cached, max_points=max_points)

        prices = await self.price_store.full_history(key)
        history = self.calculator.calculate_risk_history(asset, prices)
        if not history:
            raise DataInsufficient(key, len(prices))

        model = self.calculator.regression_for(asset, prices)
        latest = history[-1]
        if model is not None:
            await self.confidence.record_calculation(
                key,
                r_squared=model.r_squared,
                data_point_count=len(prices),
                risk_level=latest.risk_level,
                price=latest.price,
                at=self._time.now(),
            )

        window = sample_history(history, days=days, max_points=0, today=self._time.today())
        await self.result_cache.store(key, days, window)
        await self._bus.publish(Event(
            type=EventTypes.RISK_CALCULATED,
            source="risk_engine",
            payload={
                "asset_id": key,
                "kind": "regression",
                "days": days,
                "risk_level": latest.risk_level,
                "points": len(window),
            },
        ))
        return sample_history(window, max_points=max_points)

    async def current_risk(self, asset_id: str) -> RiskHistoryPoint:
        """Latest regression-only risk point."""
        history = await self.request_risk_history(asset_id, days=None)
        return history[-1]

    # ------------------------------------------------------------------
    # Composite risk
    # ------------------------------------------------------------------

    async def risk_breakdown(
        self,
        asset_id: str,
        weights: RiskFactorWeights | None = None,
        force_refresh: bool = False,
    ) -> tuple[MultiFactorRiskPoint, RiskFactorData]:
        """Composite risk together with the raw factor bundle it was built from."""
        asset = self._config.asset(asset_id)
        key = asset.asset_id

        prices, factors = await asyncio.gather(
            self.price_store.full_history(key),
            self.factor_fetcher.fetch_factors(key, force_refresh=force_refresh),
        )
        point = self.calculator.calculate_multi_factor_risk(asset, prices, factors, weights)
        if point is None:
            raise DataInsufficient(key, len(prices))

        model = self.calculator.regression_for(asset, prices)
        if model is not None:
            await self.confidence.record_calculation(
                key,
                r_squared=model.r_squared,
                data_point_count=len(prices),
                risk_level=point.risk_level,
                price=point.price,
                at=self._time.now(),
            )

        logger.info(
            "%s composite risk %.3f (%s) from %d factor(s)",
            key, point.risk_level, point.risk_category, point.available_factor_count,
        )
        await self._bus.publish(Event(
            type=EventTypes.RISK_CALCULATED,
            source="risk_engine",
            payload={
                "asset_id": key,
                "kind": "multi_factor",
                "risk_level": point.risk_level,
                "factors": point.available_factor_count,
            },
        ))
        return point, factors

    async def request_multi_factor_risk(
        self,
        asset_id: str,
        weights: RiskFactorWeights | None = None,
        force_refresh: bool = False,
    ) -> MultiFactorRiskPoint:
        point, _ = await self.risk_breakdown(asset_id, weights, force_refresh)
        return point

    # ------------------------------------------------------------------
    # Confidence
    # ------------------------------------------------------------------

    async def request_adaptive_confidence(self, asset_id: str) -> AdaptiveConfidenceResult:
        asset = self._config.asset(asset_id)
        return await self.confidence.compute_adaptive_confidence(asset.asset_id)

    # ------------------------------------------------------------------
    # Cache control
    # ------------------------------------------------------------------

    async def clear_cache(self, asset_id: str, include_confidence: bool = False) -> None:
        """Drop computed results for one asset. Price files are kept."""
        asset = self._config.asset(asset_id)
        key = asset.asset_id
        await self.result_cache.clear(key)
        self.calculator.clear_regression(key)
        self.factor_fetcher.clear(key)
        if include_confidence:
            await self.confidence.clear(key)

    async def clear_all_caches(self, include_confidence: bool = False) -> None:
        await self.result_cache.clear_all()
        self.calculator.clear_regression()
        self.factor_fetcher.clear()
        if include_confidence:
            await self.confidence.clear_all()
