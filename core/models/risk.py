"""Risk models -- regression fits, factor breakdowns and risk history points."""

from __future__ import annotations

import math
from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field

NEUTRAL_LOW = 0.45
NEUTRAL_HIGH = 0.55


def risk_category(level: float) -> str:
    """Human-readable band for a risk level."""
    if level < 0.20:
        return "Very Low Risk"
    if level < 0.40:
        return "Low Risk"
    if level < 0.55:
        return "Neutral"
    if level < 0.70:
        return "Elevated Risk"
    if level < 0.90:
        return "High Risk"
    return "Extreme Risk"


class RegressionModel(BaseModel):
    """Fitted log-log fair value curve: log10(price) = intercept + slope * log10(days)."""

    slope: float
    intercept: float
    r_squared: float
    origin_date: date
    point_count: int = 0

    def days_since_origin(self, day: date) -> int:
        return (day - self.origin_date).days

    def fair_value_at(self, day: date) -> float:
        """Fair value at `day`; 0.0 on or before the origin date."""
        days = self.days_since_origin(day)
        if days <= 0:
            return 0.0
        return 10 ** (self.intercept + self.slope * math.log10(days))


class RiskHistoryPoint(BaseModel):
    """Regression-only risk at one date."""

    date: date
    risk_level: float
    price: float
    fair_value: float
    deviation: float

    @property
    def risk_category(self) -> str:
        return risk_category(self.risk_level)

    @property
    def is_overvalued(self) -> bool:
        return self.deviation > 0

    @property
    def deviation_percentage(self) -> float:
        if self.fair_value <= 0:
            return 0.0
        return (self.price - self.fair_value) / self.fair_value * 100


class RiskFactorType(str, Enum):
    LOG_REGRESSION = "log_regression"
    RSI = "rsi"
    SMA_POSITION = "sma_position"
    FUNDING_RATE = "funding_rate"
    FEAR_GREED = "fear_greed"
    MACRO_RISK = "macro_risk"

    @property
    def description(self) -> str:
        return _FACTOR_DESCRIPTIONS[self]


_FACTOR_DESCRIPTIONS = {
    RiskFactorType.LOG_REGRESSION: "Fair value deviation based on logarithmic regression",
    RiskFactorType.RSI: "Relative Strength Index (14-period, daily)",
    RiskFactorType.SMA_POSITION: "Price position relative to the 200-day SMA",
    RiskFactorType.FUNDING_RATE: "Perpetual futures funding rate",
    RiskFactorType.FEAR_GREED: "Fear & Greed Index",
    RiskFactorType.MACRO_RISK: "Macro indicators (VIX + DXY average)",
}


class RiskFactor(BaseModel):
    """A single factor in the composite: raw value, normalized value and weight."""

    type: RiskFactorType
    raw_value: float | None = None
    normalized_value: float | None = None
    weight: float

    @property
    def is_available(self) -> bool:
        return self.normalized_value is not None

    @property
    def weighted_contribution(self) -> float | None:
        if self.normalized_value is None:
            return None
        return self.normalized_value * self.weight

    @classmethod
    def unavailable(cls, factor_type: RiskFactorType, weight: float) -> RiskFactor:
        return cls(type=factor_type, weight=weight)


class RiskFactorWeights(BaseModel):
    """Configured (pre-renormalization) factor weights."""

    log_regression: float = 0.40
    rsi: float = 0.12
    sma_position: float = 0.12
    funding_rate: float = 0.12
    fear_greed: float = 0.12
    macro_risk: float = 0.12

    @classmethod
    def preset(cls, name: str) -> RiskFactorWeights:
        try:
            return WEIGHT_PRESETS[name].model_copy()
        except KeyError:
            raise ValueError(
                f"Unknown weight preset '{name}'. Must be one of: {list(WEIGHT_PRESETS)}"
            ) from None

    def weight_for(self, factor_type: RiskFactorType) -> float:
        return getattr(self, factor_type.value)

    @property
    def total(self) -> float:
        return sum(self.weight_for(t) for t in RiskFactorType)

    @property
    def is_valid(self) -> bool:
        return abs(self.total - 1.0) < 0.001


WEIGHT_PRESETS: dict[str, RiskFactorWeights] = {
    "default": RiskFactorWeights(),
    # More emphasis on the regression
    "conservative": RiskFactorWeights(
        log_regression=0.50,
        rsi=0.10,
        sma_position=0.10,
        funding_rate=0.10,
        fear_greed=0.10,
        macro_risk=0.10,
    ),
    "sentiment_focused": RiskFactorWeights(
        log_regression=0.30,
        rsi=0.12,
        sma_position=0.12,
        funding_rate=0.18,
        fear_greed=0.18,
        macro_risk=0.10,
    ),
}


class MultiFactorRiskPoint(BaseModel):
    """Composite risk with the full factor breakdown used to compute it."""

    date: date
    risk_level: float
    price: float
    fair_value: float
    deviation: float
    factors: list[RiskFactor] = Field(default_factory=list)
    weights: RiskFactorWeights = Field(default_factory=RiskFactorWeights)

    @property
    def risk_category(self) -> str:
        return risk_category(self.risk_level)

    @property
    def available_factor_count(self) -> int:
        return sum(1 for f in self.factors if f.is_available)

    @property
    def available_weight(self) -> float:
        return sum(f.weight for f in self.factors if f.is_available)

    @property
    def has_supplementary_factors(self) -> bool:
        return any(
            f.is_available and f.type != RiskFactorType.LOG_REGRESSION for f in self.factors
        )

    def factor(self, factor_type: RiskFactorType) -> RiskFactor | None:
        for f in self.factors:
            if f.type == factor_type:
                return f
        return None

    def to_risk_history_point(self) -> RiskHistoryPoint:
        return RiskHistoryPoint(
            date=self.date,
            risk_level=self.risk_level,
            price=self.price,
            fair_value=self.fair_value,
            deviation=self.deviation,
        )


class RiskCacheEntry(BaseModel):
    """A cached risk history. `days=None` marks an unbounded ("current") request."""

    history: list[RiskHistoryPoint] = Field(default_factory=list)
    timestamp: datetime
    days: int | None = None
