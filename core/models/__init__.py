"""Pydantic data models shared across all components."""

from core.models.events import Event, EventTypes
from core.models.market import Candle, PriceFile, PricePoint, RiskFactorData, WeeklyBands
from core.models.risk import (
    MultiFactorRiskPoint,
    RegressionModel,
    RiskCacheEntry,
    RiskFactor,
    RiskFactorType,
    RiskFactorWeights,
    RiskHistoryPoint,
    risk_category,
)
from core.models.confidence import (
    AdaptiveConfidenceResult,
    ConfidenceMetrics,
    DataPointSnapshot,
    PredictionSnapshot,
    RSquaredSnapshot,
)

__all__ = [
    "Event",
    "EventTypes",
    "Candle",
    "PriceFile",
    "PricePoint",
    "RiskFactorData",
    "WeeklyBands",
    "MultiFactorRiskPoint",
    "RegressionModel",
    "RiskCacheEntry",
    "RiskFactor",
    "RiskFactorType",
    "RiskFactorWeights",
    "RiskHistoryPoint",
    "risk_category",
    "AdaptiveConfidenceResult",
    "ConfidenceMetrics",
    "DataPointSnapshot",
    "PredictionSnapshot",
    "RSquaredSnapshot",
]
