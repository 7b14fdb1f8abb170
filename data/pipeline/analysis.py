"""
Series Analysis

Descriptive statistics over a merged/validated series:
- Price extremes, per-exchange average close and annualised volatility
- Volume extremes, per-exchange average/total volume and market share
- Up/down/flat day counts and longest streaks
- Calendar buckets (year, month, weekday)
"""

import math
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

import structlog

from data.pipeline.models import MergedDayRecord
from data.pipeline.numeric import safe_divide

logger = structlog.get_logger()

TRADING_PERIODS_PER_YEAR = 252


def _to_frame(series: Sequence[MergedDayRecord]) -> pd.DataFrame:
    """Long format: one row per (date, exchange) with numeric close/volume."""
    rows = []
    for record in series:
        for exchange, candle in sorted(record.exchanges.items()):
            if not candle.is_numeric():
                continue
            rows.append({
                "date": pd.Timestamp(record.date),
                "exchange": exchange,
                "close": float(candle.close),
                "volume": float(candle.volume),
            })
    return pd.DataFrame(rows, columns=["date", "exchange", "close", "volume"])


def _extreme(df: pd.DataFrame, column: str, highest: bool) -> Optional[Dict[str, Any]]:
    if df.empty:
        return None
    idx = df[column].idxmax() if highest else df[column].idxmin()
    row = df.loc[idx]
    return {
        "value": float(row[column]),
        "date": row["date"].date().isoformat(),
        "exchange": row["exchange"],
    }


def annualized_volatility(closes: Sequence[float]) -> float:
    """Population stdev of log returns x sqrt(252) x 100."""
    prices = np.asarray([p for p in closes if p and p > 0], dtype=float)
    if len(prices) < 2:
        return 0.0
    returns = np.log(prices[1:] / prices[:-1])
    value = float(np.std(returns)) * math.sqrt(TRADING_PERIODS_PER_YEAR) * 100
    return value if math.isfinite(value) else 0.0


def trend_counts(series: Sequence[MergedDayRecord]) -> Dict[str, Dict[str, int]]:
    """
    Up/down/flat days per exchange, comparing each record with the previous
    record of the series (index neighbour) for the same exchange.
    """
    up: Dict[str, int] = {}
    down: Dict[str, int] = {}
    flat: Dict[str, int] = {}
    max_up: Dict[str, int] = {}
    max_down: Dict[str, int] = {}
    streak_up: Dict[str, int] = {}
    streak_down: Dict[str, int] = {}

    for index, record in enumerate(series):
        for exchange, candle in sorted(record.exchanges.items()):
            for table in (up, down, flat, max_up, max_down, streak_up, streak_down):
                table.setdefault(exchange, 0)

            if index == 0:
                continue

            prev_day = series[index - 1].get(exchange)
            if prev_day is None or not (candle.is_numeric() and prev_day.is_numeric()):
                streak_up[exchange] = streak_down[exchange] = 0
                continue

            change = candle.close - prev_day.close
            if change > 0:
                up[exchange] += 1
                streak_up[exchange] += 1
                streak_down[exchange] = 0
            elif change < 0:
                down[exchange] += 1
                streak_down[exchange] += 1
                streak_up[exchange] = 0
            else:
                flat[exchange] += 1
                streak_up[exchange] = streak_down[exchange] = 0

            max_up[exchange] = max(max_up[exchange], streak_up[exchange])
            max_down[exchange] = max(max_down[exchange], streak_down[exchange])

    return {
        "upDays": up,
        "downDays": down,
        "flatDays": flat,
        "maxUpStreak": max_up,
        "maxDownStreak": max_down,
    }


def _bucket(df: pd.DataFrame, key: pd.Series) -> Dict[str, Dict[str, Any]]:
    grouped = df.groupby(key, sort=True).agg(
        avgPrice=("close", "mean"),
        totalVolume=("volume", "sum"),
        samples=("close", "size"),
    )
    return {
        str(name): {
            "avgPrice": float(row["avgPrice"]),
            "totalVolume": float(row["totalVolume"]),
            "samples": int(row["samples"]),
        }
        for name, row in grouped.iterrows()
    }


def analyze(series: Sequence[MergedDayRecord]) -> Dict[str, Any]:
    """
    Compute aggregate statistics for a series.

    Args:
        series: Date-sorted merged records.

    Returns:
        Nested dict with "price", "volume", "trends" and "timeStats" sections.
    """
    df = _to_frame(series)

    analysis: Dict[str, Any] = {
        "price": {"highest": None, "lowest": None, "averages": {}, "volatility": {}},
        "volume": {"highest": None, "daily": {}, "total": {}, "marketShare": {}},
        "trends": trend_counts(series),
        "timeStats": {"byYear": {}, "byMonth": {}, "byWeekday": {}},
    }

    if df.empty:
        logger.warning("Nothing to analyze")
        return analysis

    price = analysis["price"]
    volume = analysis["volume"]

    price["highest"] = _extreme(df, "close", highest=True)
    price["lowest"] = _extreme(df, "close", highest=False)
    volume["highest"] = _extreme(df, "volume", highest=True)

    grand_total = float(df["volume"].sum())

    for exchange, group in df.groupby("exchange", sort=True):
        closes = group.sort_values("date")["close"].tolist()
        price["averages"][exchange] = safe_divide(sum(closes), len(closes))
        price["volatility"][exchange] = annualized_volatility(closes)

        total = float(group["volume"].sum())
        volume["total"][exchange] = total
        volume["daily"][exchange] = safe_divide(total, len(group))
        volume["marketShare"][exchange] = round(safe_divide(total, grand_total) * 100, 2)

    time_stats = analysis["timeStats"]
    time_stats["byYear"] = _bucket(df, df["date"].dt.strftime("%Y"))
    time_stats["byMonth"] = _bucket(df, df["date"].dt.strftime("%Y-%m"))
    time_stats["byWeekday"] = _bucket(df, df["date"].dt.day_name())

    logger.info(
        "Analysis complete",
        exchanges=len(price["averages"]),
        highest=price["highest"]["value"],
        lowest=price["lowest"]["value"],
    )

    return analysis


def summarize(analysis: Dict[str, Any]) -> List[str]:
    """Human-readable lines for the CLI summary."""
    lines = []
    price = analysis["price"]
    if price["highest"]:
        h, lo = price["highest"], price["lowest"]
        lines.append(f"All-time high: ${h['value']:,.2f} ({h['date']} on {h['exchange']})")
        lines.append(f"All-time low:  ${lo['value']:,.2f} ({lo['date']} on {lo['exchange']})")

    for exchange, vol in price["volatility"].items():
        lines.append(f"Volatility {exchange}: {vol:.2f}%")
    for exchange, share in analysis["volume"]["marketShare"].items():
        lines.append(f"Market share {exchange}: {share:.2f}%")

    trends = analysis["trends"]
    for exchange in trends["upDays"]:
        total = (
            trends["upDays"][exchange]
            + trends["downDays"][exchange]
            + trends["flatDays"][exchange]
        )
        lines.append(
            f"{exchange}: up {trends['upDays'][exchange]} "
            f"({safe_divide(trends['upDays'][exchange], total) * 100:.2f}%), "
            f"down {trends['downDays'][exchange]} "
            f"({safe_divide(trends['downDays'][exchange], total) * 100:.2f}%), "
            f"flat {trends['flatDays'][exchange]}"
        )
    return lines
