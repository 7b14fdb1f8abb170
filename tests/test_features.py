"""Tests for regime feature extraction."""

import math
import sys
from datetime import date, timedelta
from pathlib import Path

import numpy as np
import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from data.pipeline.models import DailyCandle
from regime.features import FEATURE_NAMES, FeatureExtractor, is_trending
from regime.labels import LabeledPeriod, Regime

from conftest import make_record, make_series

FEATURE = {name: i for i, name in enumerate(FEATURE_NAMES)}


def geometric(start: float, rate: float, n: int):
    return [start * (rate ** i) for i in range(n)]


class TestExtract:
    """Test cases for FeatureExtractor.extract()."""

    def test_flat_series(self):
        """Constant closes: no change, no volatility, no direction."""
        vector = FeatureExtractor().extract(make_series([100.0] * 270))

        assert vector.shape == (9,)
        assert vector[FEATURE["long_term_change"]] == 0.0
        assert vector[FEATURE["volatility"]] == 0.0
        assert vector[FEATURE["direction"]] == 0.0
        assert vector[FEATURE["trend_strength"]] == 0.0
        assert vector[FEATURE["trend_consistency"]] == 0.0

    def test_flat_series_continuity_counts_trailing_streak(self):
        """
        Eight identical 30-day samples form one trailing streak: continuity 1.0.

        The streak still running at the end of the window is counted, so an
        unbroken trend scores 1.0 rather than 0.
        """
        vector = FeatureExtractor().extract(make_series([100.0] * 270))

        assert vector[FEATURE["trend_continuity"]] == pytest.approx(1.0)

    def test_short_window_is_zeros(self):
        """Fewer than 30 usable closes gives exactly nine zeros."""
        vector = FeatureExtractor().extract(make_series([100.0 + i for i in range(29)]))

        assert vector.tolist() == [0.0] * 9

    def test_other_exchange_missing(self):
        """A window without the requested exchange gives zeros."""
        vector = FeatureExtractor().extract(make_series([100.0] * 100, exchange="OKX"))

        assert not vector.any()

    def test_unparseable_closes_dropped(self):
        """NaN closes are filtered before the minimum-length check."""
        series = make_series([100.0] * 40)
        day = series[5].date
        series[5] = make_record(day, Binance=DailyCandle(day, 1, 1, 1, math.nan, 1))

        vector = FeatureExtractor().extract(series)

        assert np.all(np.isfinite(vector))

    def test_uptrend(self):
        """Steady growth: full trend strength, consistent terciles, positive sign."""
        vector = FeatureExtractor().extract(make_series(geometric(100.0, 1.01, 270)))

        assert vector[FEATURE["long_term_change"]] == pytest.approx(1.01 ** 269 - 1)
        assert vector[FEATURE["trend_strength"]] == pytest.approx(1.0)
        assert vector[FEATURE["trend_consistency"]] == 1.0
        assert vector[FEATURE["direction"]] == 1.0
        assert vector[FEATURE["momentum"]] == pytest.approx(0.0, abs=1e-9)
        assert vector[FEATURE["price_position"]] > 0

    def test_downtrend(self):
        """Steady decline mirrors the uptrend signs."""
        vector = FeatureExtractor().extract(make_series(geometric(100.0, 0.99, 270)))

        assert vector[FEATURE["trend_strength"]] == pytest.approx(-1.0)
        assert vector[FEATURE["trend_consistency"]] == -1.0
        assert vector[FEATURE["direction"]] == -1.0

    def test_long_term_change_needs_full_window(self):
        """Long-term change is 0 below 270 prices."""
        vector = FeatureExtractor().extract(make_series(geometric(100.0, 1.01, 200)))

        assert vector[FEATURE["long_term_change"]] == 0.0
        assert vector[FEATURE["direction"]] == 1.0

    def test_order_independent(self):
        """The window is sorted by date before extraction."""
        series = make_series(geometric(100.0, 1.01, 120))

        forward = FeatureExtractor().extract(series)
        backward = FeatureExtractor().extract(list(reversed(series)))

        assert np.allclose(forward, backward)


class TestSubFeatures:
    """Test cases for individual feature calculations."""

    def test_continuity_without_long_streak(self):
        """Alternating 30-day classes never reach a streak of three."""
        extractor = FeatureExtractor()
        prices = []
        level = 100.0
        for month in range(7):
            prices.extend([level] * 30)
            level = level * 1.6 if month % 2 == 0 else level / 1.6
        prices.append(level)

        assert extractor.trend_continuity(prices) == 0.0

    def test_single_uptrend_is_fully_continuous(self):
        """One unbroken rise counts its trailing streak: continuity 1.0."""
        prices = geometric(100.0, 1.015, 270)

        assert FeatureExtractor().trend_continuity(prices) == pytest.approx(1.0)

    def test_consistency_zero_start_is_guarded(self):
        """A tercile starting at 0 contributes no change instead of infinity."""
        extractor = FeatureExtractor()
        prices = [float(p) for p in range(30)]

        assert extractor.trend_consistency([0.0] * 10 + [1.0] * 20) == 0.0
        assert extractor.trend_consistency(prices) == 0.0
        assert extractor.trend_consistency(prices[1:] + [30.0]) == 1.0

    def test_consistency_negative_start_is_guarded(self):
        """A tercile starting below zero contributes no change."""
        extractor = FeatureExtractor()
        falling = list(np.linspace(100.0, 50.0, 10)) + list(np.linspace(50.0, 20.0, 10))

        assert extractor.trend_consistency(list(np.linspace(-10.0, -1.0, 10)) + falling) == 0.0
        assert extractor.trend_consistency(list(np.linspace(200.0, 110.0, 10)) + falling) == -1.0

    def test_trend_strength_short_run(self):
        """Runs shorter than three buckets give zero strength."""
        extractor = FeatureExtractor()
        prices = []
        for bucket in range(9):
            step = 1.0 if bucket % 2 == 0 else -1.0
            prices.extend([100.0 + step * i for i in range(10)])

        assert extractor.trend_strength(prices) == 0.0

    def test_is_trending(self):
        """Strong strength with high continuity is a trend."""
        vector = np.zeros(9)
        vector[FEATURE["trend_strength"]] = -0.7
        vector[FEATURE["trend_continuity"]] = 0.8

        assert is_trending(vector) == (True, -1)
        vector[FEATURE["trend_continuity"]] = 0.6
        assert is_trending(vector) == (False, 0)


class TestCreateTrainingData:
    """Test cases for create_training_data()."""

    def test_samples_inside_periods(self):
        """One sample per index >= 270 whose date lies in a period."""
        start = date(2020, 1, 1)
        series = make_series(geometric(100.0, 1.001, 280), start=start)
        periods = [LabeledPeriod(start + timedelta(days=275), start + timedelta(days=279), Regime.DOWNTREND)]

        X, y = FeatureExtractor().create_training_data(series, periods)

        assert X.shape == (5, 9)
        assert y.tolist() == [2] * 5

    def test_window_precedes_labeled_day(self):
        """The sample for index i uses series[i-270:i], excluding day i."""
        start = date(2020, 1, 1)
        closes = [100.0] * 270 + [1000.0]
        series = make_series(closes, start=start)
        periods = [LabeledPeriod(start + timedelta(days=270), start + timedelta(days=270), Regime.UPTREND)]

        X, y = FeatureExtractor().create_training_data(series, periods)

        assert y.tolist() == [1]
        assert X[0][FEATURE["long_term_change"]] == 0.0

    def test_no_periods(self):
        """No matching periods yields empty arrays."""
        X, y = FeatureExtractor().create_training_data(make_series([100.0] * 300), [])

        assert X.shape == (0, 9)
        assert len(y) == 0
