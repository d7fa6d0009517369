"""Market data models -- daily closes, candles and the supplementary factor bundle."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field


class PricePoint(BaseModel):
    """One daily close. Series of these are ascending with unique dates."""

    date: date
    close: float


class PriceFile(BaseModel):
    """Persisted price series (baseline or incremental) for one asset."""

    prices: list[PricePoint] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def end_date(self) -> date | None:
        return self.prices[-1].date if self.prices else None

    def dates(self) -> set[date]:
        return {p.date for p in self.prices}


class Candle(BaseModel):
    """An OHLCV candle as returned by an exchange."""

    open_time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0


class WeeklyBands(BaseModel):
    """Weekly support bands: 20-week SMA and 21-week EMA against the current price."""

    sma_20w: float
    ema_21w: float
    current_price: float

    @property
    def position(self) -> Literal["above_both", "in_band", "below_both"]:
        upper = max(self.sma_20w, self.ema_21w)
        lower = min(self.sma_20w, self.ema_21w)
        if self.current_price > upper:
            return "above_both"
        if self.current_price < lower:
            return "below_both"
        return "in_band"

    @property
    def percent_from_average(self) -> float:
        avg = (self.sma_20w + self.ema_21w) / 2.0
        if avg <= 0:
            return 0.0
        return (self.current_price - avg) / avg


class RiskFactorData(BaseModel):
    """Raw supplementary values from one fetch. Any field may be missing."""

    rsi: float | None = None
    sma_200: float | None = None
    current_price: float | None = None
    weekly_bands: WeeklyBands | None = None
    funding_rate: float | None = None
    fear_greed: float | None = None
    vix: float | None = None
    dxy: float | None = None
    fetched_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    # Factors that were recomputed from candles after the indicator provider failed
    local_fallback: list[str] = Field(default_factory=list)

    @property
    def has_any_data(self) -> bool:
        return self.available_count > 0

    @property
    def available_count(self) -> int:
        values = [self.rsi, self.sma_200, self.funding_rate, self.fear_greed, self.vix, self.dxy]
        count = sum(1 for v in values if v is not None)
        if self.weekly_bands is not None:
            count += 1
        return count

    @classmethod
    def empty(cls, fetched_at: datetime | None = None) -> RiskFactorData:
        if fetched_at is None:
            return cls()
        return cls(fetched_at=fetched_at)
