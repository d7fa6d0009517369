"""Risk calculator -- regression-only risk history and the multi-factor composite.

Stateless apart from a per-asset cache of fitted regression models. The
cache is keyed by the shape of the price series it was fitted on, so a
caller that supplies new price data gets a fresh fit and a caller that
repeats the same series reuses the old one.
"""

from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Sequence

from core.config import AssetConfig
from core.models.market import PricePoint, RiskFactorData
from core.models.risk import (
    MultiFactorRiskPoint,
    RegressionModel,
    RiskFactor,
    RiskFactorType,
    RiskFactorWeights,
    RiskHistoryPoint,
)
from risk import normalization, regression

logger = logging.getLogger(__name__)

_Fingerprint = tuple[int, date, date]


class RiskCalculator:
    """Turns price series (and optionally a factor bundle) into risk points."""

    def __init__(self, weights: RiskFactorWeights | None = None) -> None:
        self._weights = weights or RiskFactorWeights()
        self._models: dict[str, tuple[_Fingerprint, RegressionModel]] = {}

    @property
    def weights(self) -> RiskFactorWeights:
        return self._weights

    # ------------------------------------------------------------------
    # Regression
    # ------------------------------------------------------------------

    def regression_for(
        self, asset: AssetConfig, prices: Sequence[PricePoint],
    ) -> RegressionModel | None:
        """Cached fit for `asset`; refits only when given a different series."""
        if not prices:
            return None
        fingerprint = (len(prices), prices[0].date, prices[-1].date)
        cached = self._models.get(asset.asset_id)
        if cached is not None and cached[0] == fingerprint:
            return cached[1]

        model = regression.fit(prices, asset.origin_date)
        if model is None:
            logger.info(
                "Regression fit failed for %s (%d points)", asset.asset_id, len(prices)
            )
            self._models.pop(asset.asset_id, None)
            return None

        self._models[asset.asset_id] = (fingerprint, model)
        logger.debug(
            "Fitted %s: slope=%.4f intercept=%.4f r2=%.4f n=%d",
            asset.asset_id, model.slope, model.intercept, model.r_squared, model.point_count,
        )
        return model

    def clear_regression(self, asset_id: str | None = None) -> None:
        """Forget the cached fit for one asset, or for all of them."""
        if asset_id is None:
            self._models.clear()
        else:
            self._models.pop(asset_id.upper(), None)

    def risk_point(
        self, asset: AssetConfig, model: RegressionModel, point: PricePoint,
    ) -> RiskHistoryPoint:
        fair = model.fair_value_at(point.date)
        dev = regression.deviation(point.close, fair)
        return RiskHistoryPoint(
            date=point.date,
            risk_level=regression.normalize_deviation(dev, asset.deviation_bounds),
            price=point.close,
            fair_value=fair,
            deviation=dev,
        )

    def calculate_risk_history(
        self, asset: AssetConfig, prices: Sequence[PricePoint],
    ) -> list[RiskHistoryPoint]:
        """Regression risk for every point with a defined fair value.

        Empty when the regression cannot be fitted.
        """
        model = self.regression_for(asset, prices)
        if model is None:
            return []
        return [
            self.risk_point(asset, model, p)
            for p in prices
            if p.close > 0 and model.days_since_origin(p.date) > 0
        ]

    # ------------------------------------------------------------------
    # Composite
    # ------------------------------------------------------------------

    def calculate_multi_factor_risk(
        self,
        asset: AssetConfig,
        prices: Sequence[PricePoint],
        factors: RiskFactorData,
        weights: RiskFactorWeights | None = None,
    ) -> MultiFactorRiskPoint | None:
        """Blend the latest regression risk with the supplementary factors.

        Returns None when the regression cannot be fitted: the composite is
        never computed without its regression factor.
        """
        weights = weights or self._weights
        model = self.regression_for(asset, prices)
        if model is None:
            return None

        latest = next(
            (p for p in reversed(prices) if p.close > 0 and model.days_since_origin(p.date) > 0),
            None,
        )
        if latest is None:
            return None
        base = self.risk_point(asset, model, latest)

        built = build_factors(base, factors, weights)
        renormalized = normalization.renormalize(built)
        score = normalization.composite_score(renormalized)

        return MultiFactorRiskPoint(
            date=base.date,
            risk_level=score,
            price=base.price,
            fair_value=base.fair_value,
            deviation=base.deviation,
            factors=renormalized,
            weights=weights,
        )


def build_factors(
    base: RiskHistoryPoint,
    data: RiskFactorData,
    weights: RiskFactorWeights,
) -> list[RiskFactor]:
    """The six composite factors, with configured (not yet renormalized) weights."""
    factors = [
        RiskFactor(
            type=RiskFactorType.LOG_REGRESSION,
            raw_value=base.deviation,
            normalized_value=base.risk_level,
            weight=weights.log_regression,
        ),
    ]

    if data.rsi is not None:
        factors.append(RiskFactor(
            type=RiskFactorType.RSI,
            raw_value=data.rsi,
            normalized_value=normalization.normalize_rsi(data.rsi),
            weight=weights.rsi,
        ))
    else:
        factors.append(RiskFactor.unavailable(RiskFactorType.RSI, weights.rsi))

    price = data.current_price if data.current_price is not None else base.price
    if data.sma_200 is not None:
        factors.append(RiskFactor(
            type=RiskFactorType.SMA_POSITION,
            # 0.3 above the trend line, 0.7 below it
            raw_value=0.3 if price > data.sma_200 else 0.7,
            normalized_value=normalization.normalize_sma_position(price, data.sma_200),
            weight=weights.sma_position,
        ))
    else:
        factors.append(RiskFactor.unavailable(RiskFactorType.SMA_POSITION, weights.sma_position))

    if data.funding_rate is not None:
        factors.append(RiskFactor(
            type=RiskFactorType.FUNDING_RATE,
            raw_value=data.funding_rate,
            normalized_value=normalization.normalize_funding_rate(data.funding_rate),
            weight=weights.funding_rate,
        ))
    else:
        factors.append(RiskFactor.unavailable(RiskFactorType.FUNDING_RATE, weights.funding_rate))

    if data.fear_greed is not None:
        factors.append(RiskFactor(
            type=RiskFactorType.FEAR_GREED,
            raw_value=data.fear_greed,
            normalized_value=normalization.normalize_fear_greed(data.fear_greed),
            weight=weights.fear_greed,
        ))
    else:
        factors.append(RiskFactor.unavailable(RiskFactorType.FEAR_GREED, weights.fear_greed))

    macro = normalization.normalize_macro(data.vix, data.dxy)
    if macro is not None:
        raw = [v for v in (data.vix, data.dxy) if v is not None]
        factors.append(RiskFactor(
            type=RiskFactorType.MACRO_RISK,
            raw_value=sum(raw) / len(raw),
            normalized_value=macro,
            weight=weights.macro_risk,
        ))
    else:
        factors.append(RiskFactor.unavailable(RiskFactorType.MACRO_RISK, weights.macro_risk))

    return factors


def sample_history(
    history: Sequence[RiskHistoryPoint],
    days: int | None = None,
    max_points: int = 100,
    today: date | None = None,
) -> list[RiskHistoryPoint]:
    """Restrict to the last `days` days and stride-sample down to about `max_points`.

    The most recent point is always included.
    """
    points = list(history)
    if not points:
        return []

    if days is not None:
        anchor = today or points[-1].date
        cutoff = anchor - timedelta(days=days)
        points = [p for p in points if p.date >= cutoff]
        if not points:
            return []

    if max_points <= 0 or len(points) <= max_points:
        return points

    step = -(-len(points) // max_points)
    sampled = points[::step]
    if sampled[-1] is not points[-1]:
        if len(sampled) >= max_points:
            sampled[-1] = points[-1]
        else:
            sampled.append(points[-1])
    return sampled
