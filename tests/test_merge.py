"""Tests for the merge engine."""

import sys
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from data.pipeline.merge import merge_exchange_data
from data.pipeline.models import MergedDayRecord

from conftest import make_candle


def days(start: date, count: int):
    return [start + timedelta(days=i) for i in range(count)]


class TestMergeExchangeData:
    """Test cases for merge_exchange_data."""

    def test_disjoint_dates_union(self):
        """Disjoint single-exchange series produce one record per date in the union."""
        a = [make_candle(d) for d in days(date(2024, 1, 1), 3)]
        b = [make_candle(d) for d in days(date(2024, 1, 10), 4)]

        merged = merge_exchange_data({"Binance": a, "OKX": b})

        assert len(merged) == 7
        assert [r.date for r in merged] == sorted(r.date for r in merged)

    def test_overlap_keeps_every_exchange(self):
        """Overlapping dates carry one candle per exchange."""
        shared = days(date(2024, 1, 1), 3)
        merged = merge_exchange_data({
            "Binance": [make_candle(d, close=100) for d in shared],
            "OKX": [make_candle(d, close=101) for d in shared],
            "Huobi": [make_candle(shared[1], close=102)],
        })

        assert len(merged) == 3
        assert set(merged[1].exchanges) == {"Binance", "OKX", "Huobi"}
        assert set(merged[0].exchanges) == {"Binance", "OKX"}
        assert merged[1].get("OKX").close == 101

    def test_arrival_order_irrelevant(self):
        """Shuffled input still yields an ascending, unique-date series."""
        ordered = days(date(2024, 1, 1), 5)
        shuffled = [ordered[3], ordered[0], ordered[4], ordered[1], ordered[2]]

        merged = merge_exchange_data({"OKX": [make_candle(d) for d in shuffled]})

        assert [r.date for r in merged] == ordered

    def test_datetime_dates_normalised(self):
        """Candles stamped with an aware datetime are keyed by their UTC day."""
        stamp = datetime(2024, 1, 2, 23, 0, tzinfo=timezone(timedelta(hours=-3)))
        candle = replace(make_candle(date(2024, 1, 3)), date=stamp)

        merged = merge_exchange_data({"Binance": [candle]})

        assert merged[0].date == date(2024, 1, 3)
        assert merged[0].get("Binance").date == date(2024, 1, 3)

    def test_empty_inputs(self):
        """Empty or missing series merge to nothing."""
        assert merge_exchange_data({}) == []
        assert merge_exchange_data({"Binance": [], "OKX": []}) == []


class TestMergedDayRecord:
    """Test cases for MergedDayRecord."""

    def test_rejects_other_dates(self):
        """A candle from a different day cannot join the record."""
        record = MergedDayRecord(date=date(2024, 1, 1))

        with pytest.raises(ValueError):
            record.add("Binance", make_candle(date(2024, 1, 2)))

    def test_dict_roundtrip_preserves_exchanges(self):
        """to_dict/from_dict keep every exchange entry."""
        day = date(2024, 1, 1)
        record = MergedDayRecord(date=day)
        record.add("OKX", make_candle(day, close=101, trades=5))
        record.add("Binance", make_candle(day, close=100))

        data = record.to_dict()
        restored = MergedDayRecord.from_dict(data)

        assert list(data["exchanges"]) == ["Binance", "OKX"]
        assert restored == record
