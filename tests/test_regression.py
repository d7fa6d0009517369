"""Regression fair value model tests."""

from __future__ import annotations

import math
from datetime import date, timedelta

import pytest

from core.models.market import PricePoint
from core.models.risk import RegressionModel
from risk import regression

ORIGIN = date(2009, 1, 3)


def _power_law(n: int, slope: float = 2.0, intercept: float = -3.0, start: int = 100) -> list[PricePoint]:
    points = []
    for i in range(n):
        days = start + i * 10
        price = 10 ** (intercept + slope * math.log10(days))
        points.append(PricePoint(date=ORIGIN + timedelta(days=days), close=price))
    return points


def test_fit_recovers_exact_power_law():
    model = regression.fit(_power_law(50), ORIGIN)

    assert model is not None
    assert model.slope == pytest.approx(2.0, rel=1e-6)
    assert model.intercept == pytest.approx(-3.0, rel=1e-6)
    assert model.r_squared == pytest.approx(1.0)
    assert model.point_count == 50


def test_fit_needs_ten_valid_points():
    assert regression.fit(_power_law(9), ORIGIN) is None
    assert regression.fit(_power_law(10), ORIGIN) is not None


def test_fit_ignores_points_on_or_before_origin_and_non_positive_prices():
    points = _power_law(9)
    points.append(PricePoint(date=ORIGIN, close=50.0))
    points.append(PricePoint(date=ORIGIN - timedelta(days=5), close=50.0))
    points.append(PricePoint(date=ORIGIN + timedelta(days=5000), close=0.0))

    assert regression.fit(points, ORIGIN) is None


def test_r_squared_stays_in_unit_interval_for_noisy_series():
    points = []
    for i, p in enumerate(_power_law(200)):
        wobble = 1.0 + 0.6 * math.sin(i * 1.7)
        points.append(PricePoint(date=p.date, close=p.close * wobble))

    model = regression.fit(points, ORIGIN)

    assert model is not None
    assert 0.0 <= model.r_squared <= 1.0
    assert model.r_squared < 1.0


def test_fair_value_is_zero_on_or_before_origin():
    model = RegressionModel(slope=2.0, intercept=-3.0, r_squared=1.0, origin_date=ORIGIN)

    assert model.fair_value_at(ORIGIN) == 0.0
    assert model.fair_value_at(ORIGIN - timedelta(days=1)) == 0.0
    assert model.fair_value_at(ORIGIN + timedelta(days=1000)) == pytest.approx(1000.0)


def test_deviation_is_log_distance():
    assert regression.deviation(1000.0, 100.0) == pytest.approx(1.0)
    assert regression.deviation(10.0, 100.0) == pytest.approx(-1.0)
    assert regression.deviation(0.0, 100.0) == 0.0
    assert regression.deviation(100.0, 0.0) == 0.0


def test_normalize_deviation_clamps_to_bounds():
    bounds = (-0.8, 0.8)

    assert regression.normalize_deviation(0.0, bounds) == pytest.approx(0.5)
    assert regression.normalize_deviation(0.4, bounds) == pytest.approx(0.75)
    assert regression.normalize_deviation(2.0, bounds) == 1.0
    assert regression.normalize_deviation(-2.0, bounds) == 0.0
    assert regression.normalize_deviation(0.3, (0.5, 0.5)) == 0.5
