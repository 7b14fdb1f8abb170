"""
Regime Feature Extraction

Turns a 270-day window of merged records into a 9-value feature vector:

    0  long_term_change     first→last change (needs a full window)
    1  volatility           population stdev of day-over-day changes
    2  price_position       last close relative to the window mean
    3  trend_strength       longest run of same-sign "monthly" changes / 9
    4  volume_change        first→last volume change
    5  momentum             difference of the last two 30-day changes
    6  trend_continuity     share of 30-day samples inside runs of 3+
    7  trend_consistency    +1 / -1 when all three terciles move > 1/6
    8  direction            sign of the first→last change

Every ratio goes through safe_divide and non-finite values become 0, so the
vector is always finite.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

import structlog

from data.pipeline.models import MergedDayRecord
from data.pipeline.numeric import is_finite, safe_change, safe_divide
from regime.labels import LabeledPeriod, find_period

logger = structlog.get_logger()

FEATURE_NAMES = [
    "long_term_change",
    "volatility",
    "price_position",
    "trend_strength",
    "volume_change",
    "momentum",
    "trend_continuity",
    "trend_consistency",
    "direction",
]
NUM_FEATURES = len(FEATURE_NAMES)

TREND_STRENGTH_INDEX = FEATURE_NAMES.index("trend_strength")
TREND_CONTINUITY_INDEX = FEATURE_NAMES.index("trend_continuity")


@dataclass
class FeatureConfig:
    """Configuration for feature extraction."""

    window_size: int = 270  # ~9 months
    min_trend_days: int = 30
    trend_threshold: float = 0.5
    exchange: str = "Binance"

    # Sub-feature minimums
    strength_buckets: int = 9
    strength_min_prices: int = 90
    strength_min_run: int = 3
    continuity_step: int = 30
    continuity_min_prices: int = 60
    continuity_min_streak: int = 3


class FeatureExtractor:
    """
    Extracts regime features from a window of merged records.

    Usage:
        extractor = FeatureExtractor()
        vector = extractor.extract(series[-270:])
    """

    def __init__(self, config: Optional[FeatureConfig] = None):
        self.config = config or FeatureConfig()

    # =========================================================================
    # PUBLIC
    # =========================================================================

    def extract(
        self,
        window: Sequence[MergedDayRecord],
        exchange: Optional[str] = None,
    ) -> np.ndarray:
        """
        Compute the feature vector for one window.

        Fewer than min_trend_days usable closes yields nine zeros.
        """
        exchange = exchange or self.config.exchange
        ordered = sorted(window, key=lambda r: r.date)

        prices: List[float] = []
        volumes: List[float] = []
        for record in ordered:
            candle = record.get(exchange)
            if candle is None:
                continue
            if is_finite(candle.close) and candle.close > 0:
                prices.append(float(candle.close))
            if is_finite(candle.volume) and candle.volume > 0:
                volumes.append(float(candle.volume))

        if len(prices) < self.config.min_trend_days:
            logger.warning("Not enough prices for feature extraction", prices=len(prices))
            return np.zeros(NUM_FEATURES, dtype=np.float64)

        values = [
            self.long_term_change(prices),
            self.volatility(prices),
            self.price_position(prices),
            self.trend_strength(prices),
            self.volume_change(volumes),
            self.momentum(prices),
            self.trend_continuity(prices),
            self.trend_consistency(prices),
            float(np.sign(safe_change(prices[0], prices[-1]))),
        ]

        cleaned = []
        for name, value in zip(FEATURE_NAMES, values):
            if not is_finite(value):
                logger.warning("Invalid feature value replaced with 0", feature=name, value=value)
                value = 0.0
            cleaned.append(float(value))

        return np.asarray(cleaned, dtype=np.float64)

    # =========================================================================
    # INDIVIDUAL FEATURES
    # =========================================================================

    def long_term_change(self, prices: Sequence[float]) -> float:
        if len(prices) < self.config.window_size:
            return 0.0
        return safe_change(prices[0], prices[-1])

    def volatility(self, prices: Sequence[float]) -> float:
        if len(prices) < 2:
            return 0.0
        changes = [safe_change(a, b) for a, b in zip(prices, prices[1:])]
        changes = [c for c in changes if is_finite(c)]
        if not changes:
            return 0.0
        return float(np.std(changes))

    def price_position(self, prices: Sequence[float]) -> float:
        if not prices:
            return 0.0
        avg = sum(prices) / len(prices)
        return safe_divide(prices[-1] - avg, avg)

    def trend_strength(self, prices: Sequence[float]) -> float:
        """Longest run of same-direction bucket changes, signed, over 9."""
        buckets = self.config.strength_buckets
        if len(prices) < self.config.strength_min_prices:
            return 0.0

        size = len(prices) // buckets
        changes = []
        for i in range(buckets):
            chunk = prices[i * size:(i + 1) * size]
            if len(chunk) < 2:
                continue
            changes.append(safe_change(chunk[0], chunk[-1]))

        if not changes:
            return 0.0

        up = down = max_up = max_down = 0
        for change in changes:
            if change > 0:
                up += 1
                down = 0
                max_up = max(max_up, up)
            elif change < 0:
                down += 1
                up = 0
                max_down = max(max_down, down)
            # Flat buckets leave both runs untouched

        if max_up >= self.config.strength_min_run:
            return max_up / buckets
        if max_down >= self.config.strength_min_run:
            return -max_down / buckets
        return 0.0

    def volume_change(self, volumes: Sequence[float]) -> float:
        if len(volumes) < 2:
            return 0.0
        return safe_change(volumes[0], volumes[-1])

    def _stepped_changes(self, prices: Sequence[float]) -> List[float]:
        step = self.config.continuity_step
        changes = [
            safe_change(prices[i - step], prices[i])
            for i in range(step, len(prices), step)
        ]
        return [c for c in changes if is_finite(c)]

    def momentum(self, prices: Sequence[float]) -> float:
        changes = self._stepped_changes(prices)
        if len(changes) < 2:
            return 0.0
        return changes[-1] - changes[-2]

    def trend_continuity(self, prices: Sequence[float]) -> float:
        """Fraction of 30-day samples that belong to a streak of 3+ same-class samples."""
        if len(prices) < self.config.continuity_min_prices:
            return 0.0

        changes = self._stepped_changes(prices)
        if not changes:
            return 0.0

        threshold = self.config.trend_threshold
        min_streak = self.config.continuity_min_streak

        score = 0
        streak = 0
        previous = None
        for change in changes:
            trend = 1 if change > threshold else -1 if change < -threshold else 0
            if previous is None or trend == previous:
                streak += 1
            else:
                if streak >= min_streak:
                    score += streak
                streak = 1
            previous = trend

        if streak >= min_streak:
            score += streak

        return safe_divide(score, len(changes))

    def trend_consistency(self, prices: Sequence[float]) -> float:
        """+1 if every tercile rose more than threshold/3, -1 if every one fell."""
        size = len(prices) // 3
        if size == 0:
            return 0.0

        bound = self.config.trend_threshold / 3
        changes = []
        for i in range(3):
            chunk = prices[i * size:(i + 1) * size]
            changes.append(safe_change(chunk[0], chunk[-1]))

        if all(c > bound for c in changes):
            return 1.0
        if all(c < -bound for c in changes):
            return -1.0
        return 0.0

    # =========================================================================
    # TRAINING DATA
    # =========================================================================

    def create_training_data(
        self,
        series: Sequence[MergedDayRecord],
        periods: Sequence[LabeledPeriod],
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Build (features, labels) from a date-sorted series.

        Each index i >= window_size whose date lies in a labeled period yields
        the features of series[i - window_size:i] and that period's label.

        Returns:
            Tuple of (X with shape (n, 9), y with labels in {1, 2, 3}).
        """
        window_size = self.config.window_size
        features: List[np.ndarray] = []
        labels: List[int] = []

        for i in range(window_size, len(series)):
            period = find_period(series[i].date, periods)
            if period is None:
                continue
            features.append(self.extract(series[i - window_size:i]))
            labels.append(period.regime.label)

        logger.info(
            "Training data created",
            samples=len(labels),
            series_length=len(series),
        )

        if not features:
            return np.zeros((0, NUM_FEATURES)), np.zeros(0, dtype=int)

        return np.vstack(features), np.asarray(labels, dtype=int)


def extract_features(
    window: Sequence[MergedDayRecord],
    exchange: str = "Binance",
) -> np.ndarray:
    """Functional shortcut for FeatureExtractor().extract(...)."""
    return FeatureExtractor().extract(window, exchange=exchange)


def is_trending(features: np.ndarray, strength: float = 0.5, continuity: float = 0.6) -> Tuple[bool, int]:
    """
    Whether the vector describes a sustained trend.

    Returns:
        (trending, direction) with direction +1, -1 or 0.
    """
    trend = float(features[TREND_STRENGTH_INDEX])
    cont = float(features[TREND_CONTINUITY_INDEX])
    if math.isfinite(trend) and math.isfinite(cont) and abs(trend) > strength and cont > continuity:
        return True, 1 if trend > 0 else -1
    return False, 0
