"""Log-log regression fair value model.

Fits log10(price) = a + b * log10(days since origin) by ordinary least
squares. Everything here is pure: no I/O, no state.
"""

from __future__ import annotations

import math
from datetime import date
from typing import Iterable

from core.models.market import PricePoint
from core.models.risk import RegressionModel

MIN_POINTS = 10


def fit(prices: Iterable[PricePoint], origin_date: date) -> RegressionModel | None:
    """Fit the fair value curve. Returns None with fewer than MIN_POINTS usable points.

    A point is usable when its price is positive and it falls strictly after
    the origin date.
    """
    xs: list[float] = []
    ys: list[float] = []
    for p in prices:
        days = (p.date - origin_date).days
        if days <= 0 or p.close <= 0:
            continue
        xs.append(math.log10(days))
        ys.append(math.log10(p.close))

    n = len(xs)
    if n < MIN_POINTS:
        return None

    sum_x = sum(xs)
    sum_y = sum(ys)
    sum_xy = sum(x * y for x, y in zip(xs, ys))
    sum_x2 = sum(x * x for x in xs)

    denominator = n * sum_x2 - sum_x * sum_x
    if abs(denominator) < 1e-10:
        return None

    slope = (n * sum_xy - sum_x * sum_y) / denominator
    intercept = (sum_y - slope * sum_x) / n

    mean_y = sum_y / n
    ss_tot = sum((y - mean_y) ** 2 for y in ys)
    ss_res = sum((y - (intercept + slope * x)) ** 2 for x, y in zip(xs, ys))
    r_squared = 1.0 - ss_res / ss_tot if ss_tot > 0 else 0.0

    return RegressionModel(
        slope=slope,
        intercept=intercept,
        # Floating noise can nudge an in-sample OLS fit a hair outside [0, 1]
        r_squared=min(max(r_squared, 0.0), 1.0),
        origin_date=origin_date,
        point_count=n,
    )


def deviation(price: float, fair_value: float) -> float:
    """Log-scale distance between price and fair value; 0.0 if either is non-positive."""
    if price <= 0 or fair_value <= 0:
        return 0.0
    return math.log10(price) - math.log10(fair_value)


def normalize_deviation(value: float, bounds: tuple[float, float]) -> float:
    """Map a deviation onto [0, 1] using the asset's (low, high) calibration."""
    low, high = bounds
    span = high - low
    if span <= 0:
        return 0.5
    return min(max((value - low) / span, 0.0), 1.0)
