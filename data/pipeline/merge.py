"""
Merge Engine

Combines per-exchange daily candles into one record per calendar date.
"""

from dataclasses import replace
from datetime import date
from typing import Dict, List, Mapping, Sequence

import structlog

from data.pipeline.models import DailyCandle, MergedDayRecord, to_utc_date

logger = structlog.get_logger()


def merge_exchange_data(
    series_by_exchange: Mapping[str, Sequence[DailyCandle]],
) -> List[MergedDayRecord]:
    """
    Merge exchange series keyed by calendar date.

    A date enters the table as soon as any exchange has data for it and is
    enriched as other exchanges match. Output is ascending by date regardless
    of input arrival order.
    """
    table: Dict[date, MergedDayRecord] = {}

    for exchange in sorted(series_by_exchange):
        for candle in series_by_exchange[exchange] or ():
            day = to_utc_date(candle.date)
            if candle.date != day:
                candle = replace(candle, date=day)
            record = table.get(day)
            if record is None:
                record = table[day] = MergedDayRecord(date=day)
            record.add(exchange, candle)

    merged = [table[day] for day in sorted(table)]

    logger.info(
        "Merged exchange data",
        exchanges=len(series_by_exchange),
        days=len(merged),
    )

    return merged
