"""Factor normalization -- maps raw supplementary values onto [0, 1].

0.0 means "undervalued / low risk", 1.0 means "overvalued / high risk".
The calibrations are asset-independent.
"""

from __future__ import annotations

from core.models.risk import RiskFactor


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return min(max(value, low), high)


def normalize_rsi(rsi: float) -> float:
    """RSI 30 -> 0.0, RSI 70 -> 1.0, linear in between."""
    return clamp((rsi - 30.0) / 40.0)


def normalize_sma_position(price: float, sma: float) -> float:
    """Step function on the percent distance from the 200-day SMA.

    Far above the trend line is low risk (uptrend intact), far below is
    elevated risk (trend broken).
    """
    if sma <= 0:
        return 0.5
    pct = (price - sma) / sma
    if pct > 0.20:
        return 0.2
    if pct > 0.10:
        return 0.3
    if pct > 0.0:
        return 0.4
    if pct > -0.10:
        return 0.6
    if pct > -0.20:
        return 0.7
    return 0.8


def normalize_funding_rate(rate: float) -> float:
    """-0.1% -> 0.0, 0 -> 0.5, +0.1% -> 1.0."""
    return clamp((rate + 0.001) / 0.002)


def normalize_fear_greed(value: float) -> float:
    return clamp(value / 100.0)


def normalize_vix(vix: float) -> float:
    """Low VIX means complacency (higher risk): VIX 10 -> 0.7, VIX 40 -> 0.3."""
    return clamp(0.3 + ((40.0 - vix) / 30.0) * 0.4)


def normalize_dxy(dxy: float) -> float:
    """A strong dollar is risk-off for crypto: DXY 90 -> 0.0, DXY 110 -> 1.0."""
    return clamp((dxy - 90.0) / 20.0)


def normalize_macro(vix: float | None, dxy: float | None) -> float | None:
    """Average of whichever macro indices are present; None if neither."""
    parts = []
    if vix is not None:
        parts.append(normalize_vix(vix))
    if dxy is not None:
        parts.append(normalize_dxy(dxy))
    if not parts:
        return None
    return sum(parts) / len(parts)


def renormalize(factors: list[RiskFactor]) -> list[RiskFactor]:
    """Rescale available weights by 1 / sum(available weights).

    Unavailable factors keep their configured weight for display but are
    excluded from the sum, so the available ones add up to 1.0.
    """
    total = sum(f.weight for f in factors if f.is_available)
    if total <= 0:
        return factors
    scale = 1.0 / total
    return [
        f.model_copy(update={"weight": f.weight * scale}) if f.is_available else f
        for f in factors
    ]


def composite_score(factors: list[RiskFactor]) -> float:
    """Weighted sum of available factors, clamped to [0, 1]."""
    total = sum(f.weighted_contribution or 0.0 for f in factors if f.is_available)
    return clamp(total)
