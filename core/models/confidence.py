"""Confidence tracking models -- persisted per asset."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class RSquaredSnapshot(BaseModel):
    date: datetime
    r_squared: float
    data_point_count: int


class DataPointSnapshot(BaseModel):
    date: datetime
    count: int


class PredictionSnapshot(BaseModel):
    """A directional risk call awaiting validation at 30/60/90 days."""

    asset_id: str
    snapshot_date: datetime
    risk_level: float
    risk_category: str
    price_at_snapshot: float

    price_at_30_days: float | None = None
    price_at_60_days: float | None = None
    price_at_90_days: float | None = None
    validated_at: datetime | None = None
    is_correct_30_day: bool | None = None
    is_correct_60_day: bool | None = None
    is_correct_90_day: bool | None = None

    @property
    def id(self) -> str:
        return f"{self.asset_id}_{int(self.snapshot_date.timestamp())}"

    @property
    def is_fully_validated(self) -> bool:
        return self.is_correct_90_day is not None


class ConfidenceMetrics(BaseModel):
    asset_id: str
    r_squared_history: list[RSquaredSnapshot] = Field(default_factory=list)
    data_point_counts: list[DataPointSnapshot] = Field(default_factory=list)
    prediction_snapshots: list[PredictionSnapshot] = Field(default_factory=list)
    last_updated: datetime


class AdaptiveConfidenceResult(BaseModel):
    asset_id: str
    static_confidence: int
    adaptive_confidence: int
    r_squared: float | None = None
    data_point_count: int = 0
    prediction_accuracy: float | None = None
    validated_prediction_count: int = 0
    total_prediction_count: int = 0
    r_squared_bonus: float = 0.0
    data_point_bonus: float = 0.0
    accuracy_bonus: float = 0.0
    last_updated: datetime
