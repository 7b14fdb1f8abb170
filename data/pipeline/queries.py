"""
Series Queries

Read-only views over the persisted ValidatedSeries, shaped for an HTTP layer:
klines (1D/1W/1M), same-day exchange comparison, period statistics and the
latest regime prediction.

Every function raises QueryError on bad input; error_envelope() converts it
to the {"success": false, "error": {...}} response body.
"""

import math
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

import structlog

from data.pipeline.errors import PersistenceMissing, PipelineError
from data.pipeline.models import DailyCandle, MergedDayRecord, to_utc_date
from data.pipeline.numeric import safe_divide
from data.pipeline.storage import DataStorage

logger = structlog.get_logger()

KNOWN_EXCHANGES = ("Binance", "OKX", "Huobi")
TIMEFRAMES = ("1D", "1W", "1M")
PERIOD_MONTHS = {"1M": 1, "3M": 3, "6M": 6, "1Y": 12}
TREND_DAY_THRESHOLD = 0.01
PREDICTION_WINDOW = 270


class QueryError(PipelineError):
    """Client-facing query failure with a stable error code."""

    INVALID_EXCHANGE = "INVALID_EXCHANGE"
    INVALID_TIMEFRAME = "INVALID_TIMEFRAME"
    INVALID_PERIOD = "INVALID_PERIOD"
    INVALID_PARAMS = "INVALID_PARAMS"
    DATA_NOT_FOUND = "DATA_NOT_FOUND"

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"{code}: {message}")


def error_envelope(error: QueryError) -> Dict[str, Any]:
    return {
        "success": False,
        "error": {"code": error.code, "message": error.message},
    }


def success_envelope(data: Any, warning: Optional[str] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": True, "data": data}
    if warning:
        body["warning"] = warning
    return body


def load_series(storage: Optional[DataStorage] = None) -> List[MergedDayRecord]:
    """Persisted series, or an empty list when nothing has been saved yet."""
    storage = storage or DataStorage()
    try:
        return storage.load_series()
    except PersistenceMissing as e:
        logger.warning("No validated series available", path=e.path)
        return []


def resolve_exchange(name: Optional[str]) -> str:
    """Canonical exchange name, matched case-insensitively."""
    if not name:
        raise QueryError(QueryError.INVALID_PARAMS, "exchange is required")
    for known in KNOWN_EXCHANGES:
        if known.lower() == name.strip().lower():
            return known
    raise QueryError(QueryError.INVALID_EXCHANGE, f"unknown exchange: {name}")


def _candle_for(record: MergedDayRecord, exchange: str) -> Optional[DailyCandle]:
    candle = record.get(exchange)
    if candle is not None:
        return candle
    for name, value in record.exchanges.items():
        if name.lower() == exchange.lower():
            return value
    return None


def _bucket_key(day: date, timeframe: str) -> date:
    if timeframe == "1W":
        # Weeks start on Sunday
        return day - timedelta(days=(day.weekday() + 1) % 7)
    if timeframe == "1M":
        return day.replace(day=1)
    return day


# =============================================================================
# KLINES
# =============================================================================

def get_klines(
    series: Sequence[MergedDayRecord],
    exchange: str,
    timeframe: str = "1D",
    start=None,
    end=None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """
    OHLCV bars for one exchange.

    Args:
        series: Date-sorted validated series.
        exchange: Exchange name (case-insensitive).
        timeframe: "1D", "1W" (Sunday weeks) or "1M" (calendar months).
        start: Inclusive lower bound (date, datetime, ISO string or epoch ms).
        end: Inclusive upper bound.
        limit: Keep only the last N bars.

    Returns:
        List of bar dicts sorted by date.
    """
    exchange = resolve_exchange(exchange)
    if timeframe not in TIMEFRAMES:
        raise QueryError(QueryError.INVALID_TIMEFRAME, f"unknown timeframe: {timeframe}")

    start_day = to_utc_date(start) if start is not None else None
    end_day = to_utc_date(end) if end is not None else None

    buckets: Dict[date, Dict[str, Any]] = {}
    for record in series:
        if start_day and record.date < start_day:
            continue
        if end_day and record.date > end_day:
            continue
        candle = _candle_for(record, exchange)
        if candle is None:
            continue

        key = _bucket_key(record.date, timeframe)
        bar = buckets.get(key)
        if bar is None:
            buckets[key] = {
                "date": key.isoformat(),
                "open": candle.open,
                "high": candle.high,
                "low": candle.low,
                "close": candle.close,
                "volume": candle.volume or 0.0,
                "trades": candle.trades or 0,
            }
        else:
            bar["high"] = max(bar["high"], candle.high)
            bar["low"] = min(bar["low"], candle.low)
            bar["close"] = candle.close
            bar["volume"] += candle.volume or 0.0
            bar["trades"] += candle.trades or 0

    bars = [buckets[k] for k in sorted(buckets)]
    if limit:
        if int(limit) < 0:
            raise QueryError(QueryError.INVALID_PARAMS, "limit must be positive")
        bars = bars[-int(limit):]

    if not bars:
        logger.warning(f"No klines found for {exchange}", timeframe=timeframe)

    return bars


# =============================================================================
# COMPARE
# =============================================================================

def price_deviation(prices: Sequence[float]) -> float:
    """Coefficient of variation (population std / mean) of the prices."""
    if len(prices) < 2:
        return 0.0
    values = np.asarray(prices, dtype=float)
    return safe_divide(float(np.std(values)), float(np.mean(values)))


def compare_exchanges(
    series: Sequence[MergedDayRecord],
    exchanges,
    on_date=None,
) -> Dict[str, Any]:
    """
    Same-day comparison of close, volume and volume share.

    Args:
        series: Date-sorted validated series.
        exchanges: Exchange names, as a list or a comma-separated string.
        on_date: Day to compare; defaults to the last day of the series.
    """
    if isinstance(exchanges, str):
        exchanges = [e.strip() for e in exchanges.split(",") if e.strip()]
    if not exchanges:
        raise QueryError(QueryError.INVALID_PARAMS, "exchanges are required")
    if not series:
        raise QueryError(QueryError.DATA_NOT_FOUND, "no data available")

    target = to_utc_date(on_date) if on_date is not None else series[-1].date
    record = next((r for r in series if r.date == target), None)
    if record is None:
        raise QueryError(QueryError.DATA_NOT_FOUND, f"no data for {target.isoformat()}")

    comparisons: Dict[str, Dict[str, float]] = {}
    volume_total = 0.0
    for name in exchanges:
        candle = _candle_for(record, name)
        if candle is None:
            continue
        volume_total += candle.volume
        comparisons[name] = {"price": candle.close, "volume": candle.volume, "marketShare": 0.0}

    for values in comparisons.values():
        values["marketShare"] = safe_divide(values["volume"], volume_total)

    return {
        "date": target.isoformat(),
        "comparisons": comparisons,
        "priceDeviation": price_deviation([c["price"] for c in comparisons.values()]),
        "volumeTotal": volume_total,
    }


# =============================================================================
# STATS
# =============================================================================

def _empty_stats() -> Dict[str, Any]:
    return {
        "highest": 0.0,
        "lowest": 0.0,
        "average": 0.0,
        "volatility": 0.0,
        "volumeAvg": 0.0,
        "trendsCount": {"uptrend": 0, "downtrend": 0, "sideways": 0},
    }


def period_stats(
    series: Sequence[MergedDayRecord],
    exchange: str,
    period: str = "1M",
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """
    Statistics for one exchange over the trailing period.

    Volatility is std/mean of closes; trendsCount classifies each day's
    close-to-close change against a ±1% band.
    """
    exchange = resolve_exchange(exchange)
    if period not in PERIOD_MONTHS:
        raise QueryError(QueryError.INVALID_PERIOD, f"unknown period: {period}")

    today = today or datetime.now(timezone.utc).date()
    start = (pd.Timestamp(today) - pd.DateOffset(months=PERIOD_MONTHS[period])).date()

    candles = [
        c for c in (_candle_for(r, exchange) for r in series if r.date >= start)
        if c is not None
    ]
    if not candles:
        return {"period": period, "stats": _empty_stats()}

    closes = np.asarray([c.close for c in candles], dtype=float)
    average = float(np.mean(closes))

    trends = {"uptrend": 0, "downtrend": 0, "sideways": 0}
    for prev, curr in zip(candles, candles[1:]):
        change = safe_divide(curr.close - prev.close, prev.close)
        if change > TREND_DAY_THRESHOLD:
            trends["uptrend"] += 1
        elif change < -TREND_DAY_THRESHOLD:
            trends["downtrend"] += 1
        else:
            trends["sideways"] += 1

    stats = {
        "highest": max(c.high for c in candles),
        "lowest": min(c.low for c in candles),
        "average": average,
        "volatility": safe_divide(float(np.std(closes)), average),
        "volumeAvg": sum(c.volume for c in candles) / len(candles),
        "trendsCount": trends,
    }
    return {"period": period, "stats": stats}


# =============================================================================
# PREDICT
# =============================================================================

def predict_latest(
    series: Sequence[MergedDayRecord],
    classifier,
    exchange: str = "Binance",
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """Classify the most recent window of the series."""
    exchange = resolve_exchange(exchange)
    if not series:
        raise QueryError(QueryError.DATA_NOT_FOUND, "no data available")

    window = list(series)[-PREDICTION_WINDOW:]
    prediction = classifier.predict(window, exchange=exchange)
    today = today or datetime.now(timezone.utc).date()

    confidence = prediction.confidence
    if not math.isfinite(confidence):
        confidence = 0.0

    return {
        "date": today.isoformat(),
        "asOf": window[-1].date.isoformat(),
        "exchange": exchange,
        "prediction": prediction.probabilities(),
        "confidence": confidence,
    }
