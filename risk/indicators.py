"""Local indicator math -- used when the indicator provider is unavailable
and for the weekly support bands.
"""

from __future__ import annotations

from typing import Sequence

from core.models.market import WeeklyBands


def sma(values: Sequence[float], period: int) -> float | None:
    """Arithmetic mean of the trailing `period` values."""
    if period <= 0 or len(values) < period:
        return None
    window = values[-period:]
    return sum(window) / period


def ema(values: Sequence[float], period: int) -> float | None:
    """Exponential moving average seeded with the first value.

    Multiplier is 2 / (period + 1).
    """
    if period <= 0 or not values:
        return None
    k = 2.0 / (period + 1)
    result = values[0]
    for v in values[1:]:
        result = (v - result) * k + result
    return result


def wilder_rsi(closes: Sequence[float], period: int = 14) -> float | None:
    """Relative Strength Index with Wilder smoothing.

    The first average gain/loss is a simple mean over `period` changes; each
    later change updates them as avg = (avg * (period - 1) + x) / period.
    """
    if period <= 0 or len(closes) < period + 1:
        return None

    gains: list[float] = []
    losses: list[float] = []
    for prev, cur in zip(closes, closes[1:]):
        change = cur - prev
        gains.append(max(change, 0.0))
        losses.append(max(-change, 0.0))

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period
    for gain, loss in zip(gains[period:], losses[period:]):
        avg_gain = (avg_gain * (period - 1) + gain) / period
        avg_loss = (avg_loss * (period - 1) + loss) / period

    if avg_loss == 0:
        return 100.0 if avg_gain > 0 else 50.0
    rs = avg_gain / avg_loss
    return 100.0 - 100.0 / (1.0 + rs)


def weekly_bands(weekly_closes: Sequence[float], current_price: float | None = None) -> WeeklyBands | None:
    """20-week SMA and 21-week EMA from closed weekly candles (oldest first)."""
    sma_20 = sma(weekly_closes, 20)
    ema_21 = ema(weekly_closes, 21) if len(weekly_closes) >= 21 else None
    if sma_20 is None or ema_21 is None:
        return None
    price = current_price if current_price is not None else weekly_closes[-1]
    return WeeklyBands(sma_20w=sma_20, ema_21w=ema_21, current_price=price)
