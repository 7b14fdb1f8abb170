"""Shared fixtures and builders for the pipeline tests."""

import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional
from unittest.mock import Mock

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from data.pipeline.config import SourceConfig, StorageConfig
from data.pipeline.models import DailyCandle, MergedDayRecord

DAY_MS = 86_400_000


def day_ms(day: date) -> int:
    """Epoch milliseconds of UTC midnight for a date."""
    return int(datetime(day.year, day.month, day.day, tzinfo=timezone.utc).timestamp() * 1000)


def utc(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def make_candle(
    day: date,
    close: float = 100.0,
    volume: float = 10.0,
    open_: Optional[float] = None,
    high: Optional[float] = None,
    low: Optional[float] = None,
    trades: Optional[int] = None,
) -> DailyCandle:
    open_ = close if open_ is None else open_
    return DailyCandle(
        date=day,
        open=open_,
        high=max(open_, close) if high is None else high,
        low=min(open_, close) if low is None else low,
        close=close,
        volume=volume,
        trades=trades,
    )


def make_record(day: date, **candles: DailyCandle) -> MergedDayRecord:
    record = MergedDayRecord(date=day)
    for exchange, candle in candles.items():
        record.add(exchange, candle)
    return record


def make_series(
    closes: List[float],
    start: date = date(2024, 1, 1),
    exchange: str = "Binance",
    volume: float = 10.0,
) -> List[MergedDayRecord]:
    """One record per consecutive day with a single exchange."""
    series = []
    for i, close in enumerate(closes):
        day = start + timedelta(days=i)
        series.append(make_record(day, **{exchange: make_candle(day, close=close, volume=volume)}))
    return series


def json_response(payload) -> Mock:
    response = Mock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    return response


def fast_source(name: str, endpoints: List[str], max_failures: int = 3, **kwargs) -> SourceConfig:
    """SourceConfig with every delay disabled."""
    return SourceConfig(
        name=name,
        endpoints=endpoints,
        max_failures=max_failures,
        retry_initial_delay=0.0,
        retry_max_delay=0.0,
        page_delay=0.0,
        pause_seconds=0.0,
        **kwargs,
    )


@pytest.fixture
def storage_config(tmp_path) -> StorageConfig:
    return StorageConfig(data_dir=str(tmp_path / "data"), save_raw=True)


@pytest.fixture
def no_sleep():
    return lambda seconds: None


@pytest.fixture
def session():
    return Mock()
