"""Tests for the data validator."""

import math
import sys
from datetime import date, timedelta
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from data.pipeline.config import ValidationConfig
from data.pipeline.merge import merge_exchange_data
from data.pipeline.models import DailyCandle
from data.pipeline.quality import DataValidator, IssueType

from conftest import make_candle, make_record

DAY = date(2024, 1, 1)


def validate(records):
    return DataValidator(ValidationConfig()).validate(records)


class TestPriceDivergence:
    """Test cases for the cross-exchange divergence check."""

    def test_above_threshold_flagged(self):
        """Closes 100/102 diverge by 2/101 = 1.98% and are flagged."""
        record = make_record(DAY, Binance=make_candle(DAY, close=100), OKX=make_candle(DAY, close=102))

        result = validate([record])

        assert len(result.anomalies.price_diff) == 1
        issue = result.anomalies.price_diff[0]
        assert issue.magnitude == pytest.approx(2 / 101 * 100)
        assert issue.details["prices"] == {"Binance": 100, "OKX": 102}

    def test_below_threshold_not_flagged(self):
        """Closes 100/100.5 diverge by 0.498% and pass."""
        record = make_record(DAY, Binance=make_candle(DAY, close=100), OKX=make_candle(DAY, close=100.5))

        result = validate([record])

        assert result.anomalies.price_diff == []

    def test_single_exchange_skipped(self):
        """Divergence needs at least two closes."""
        result = validate([make_record(DAY, Binance=make_candle(DAY, close=100))])

        assert result.anomalies.price_diff == []


class TestCompleteness:
    """Test cases for the completeness check."""

    def test_non_numeric_invalidates_day(self):
        """A NaN field removes the day from the valid output."""
        bad = DailyCandle(date=DAY, open=1, high=2, low=0.5, close=math.nan, volume=1)
        record = make_record(DAY, Binance=make_candle(DAY), OKX=bad)

        result = validate([record])

        assert result.valid == []
        assert len(result.anomalies.data_missing) == 1
        assert result.anomalies.data_missing[0].details["reason"] == "non_numeric"
        assert result.stats.total_days == 1
        assert result.stats.valid_days == 0

    def test_inconsistent_ohlc_invalidates_day(self):
        """low above close is excluded from the valid output."""
        bad = DailyCandle(date=DAY, open=100, high=110, low=105, close=101, volume=1)
        result = validate([make_record(DAY, Binance=bad)])

        assert result.valid == []
        assert result.anomalies.data_missing[0].details["reason"] == "ohlc_inconsistent"

    def test_coverage_counts_invalid_days(self):
        """exchangeCoverage counts every day an exchange appears in."""
        bad = DailyCandle(date=DAY, open=1, high=2, low=0.5, close=math.nan, volume=1)
        next_day = DAY + timedelta(days=1)
        result = validate([
            make_record(DAY, Binance=bad),
            make_record(next_day, Binance=make_candle(next_day), OKX=make_candle(next_day)),
        ])

        assert result.stats.exchange_coverage == {"Binance": 2, "OKX": 1}
        assert result.stats.completeness_pct == pytest.approx(50.0)


class TestVolumeSpikes:
    """Test cases for the volume-spike check."""

    def volumes(self, values):
        return [
            make_record(DAY + timedelta(days=i), Binance=make_candle(DAY + timedelta(days=i), volume=v))
            for i, v in enumerate(values)
        ]

    def test_spike_flagged(self):
        """Volume 400 against neighbours averaging 100 is a 300% deviation."""
        result = validate(self.volumes([100, 400, 100]))

        assert len(result.anomalies.volume_spikes) == 1
        issue = result.anomalies.volume_spikes[0]
        assert issue.date == DAY + timedelta(days=1)
        assert issue.magnitude == pytest.approx(300.0)
        assert issue.to_dict()["exchange"] == "Binance"

    def test_exactly_threshold_not_flagged(self):
        """A deviation of exactly 200% does not exceed the threshold."""
        result = validate(self.volumes([100, 300, 100]))

        assert result.anomalies.volume_spikes == []

    def test_edges_skipped(self):
        """First and last days have no two neighbours."""
        result = validate(self.volumes([1000, 100, 1000]))

        assert result.anomalies.volume_spikes == []


class TestPriceGaps:
    """Test cases for the price-gap check."""

    def test_gap_flagged(self):
        """A 25% close-to-close move is a gap."""
        second = DAY + timedelta(days=1)
        result = validate([
            make_record(DAY, Binance=make_candle(DAY, close=100)),
            make_record(second, Binance=make_candle(second, close=125)),
        ])

        assert len(result.anomalies.price_gaps) == 1
        assert result.anomalies.price_gaps[0].magnitude == pytest.approx(25.0)

    def test_index_adjacency_across_calendar_hole(self):
        """Neighbours are taken by position: a 10-day hole still compares the two records."""
        later = DAY + timedelta(days=10)
        result = validate([
            make_record(DAY, Binance=make_candle(DAY, close=100)),
            make_record(later, Binance=make_candle(later, close=130)),
        ])

        assert len(result.anomalies.price_gaps) == 1
        assert result.anomalies.price_gaps[0].date == later
        assert result.anomalies.price_gaps[0].details["previousClose"] == 100


class TestEndToEnd:
    """Merge plus validation over three sources."""

    def test_three_sources_one_outlier(self):
        """A 5% outlier on one exchange gives exactly one priceDiff entry."""
        merged = merge_exchange_data({
            "Binance": [make_candle(DAY, close=100)],
            "OKX": [make_candle(DAY, close=100.2)],
            "Huobi": [make_candle(DAY, close=105)],
        })

        result = validate(merged)

        assert len(merged) == 1
        assert len(merged[0].exchanges) == 3
        assert len(result.anomalies.price_diff) == 1
        assert result.anomalies.price_diff[0].date == DAY
        assert result.anomalies.data_missing == []
        assert len(result.valid) == 1

    def test_report_keys(self):
        """The serialized report carries the four anomaly lists."""
        report = validate([]).anomalies.to_dict()

        assert set(report) == {
            IssueType.PRICE_DIFF.value,
            IssueType.VOLUME_SPIKE.value,
            IssueType.DATA_MISSING.value,
            IssueType.PRICE_GAP.value,
        }
