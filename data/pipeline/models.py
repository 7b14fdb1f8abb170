"""
Canonical Data Types

DailyCandle is one exchange's OHLCV for one UTC calendar day.
MergedDayRecord groups every exchange's candle for the same day.
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Union

DateLike = Union[date, datetime, str, int, float]


def to_utc_date(value: DateLike) -> date:
    """
    Resolve a timestamp to its UTC calendar day.

    Accepts date, datetime, "YYYY-MM-DD..." strings and epoch milliseconds.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.date()
        return value.astimezone(timezone.utc).date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc).date()
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    raise TypeError(f"Cannot interpret {value!r} as a date")


def to_float(value: Any) -> float:
    """Parse a provider number; anything unparseable becomes NaN."""
    if value is None:
        return math.nan
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def to_optional_float(value: Any) -> Optional[float]:
    """Parse an optional provider number; missing or non-finite becomes None."""
    number = to_float(value)
    return number if math.isfinite(number) else None


def to_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class DailyCandle:
    """One day of OHLCV data from one exchange."""

    date: date
    open: float
    high: float
    low: float
    close: float
    volume: float
    quote_volume: Optional[float] = None
    trades: Optional[int] = None

    OHLCV = ("open", "high", "low", "close", "volume")

    def is_numeric(self) -> bool:
        """True when every OHLCV field is a finite number."""
        for name in self.OHLCV:
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                return False
        return True

    def is_consistent(self) -> bool:
        """low <= open, close <= high and volume >= 0."""
        if not self.is_numeric():
            return False
        return (
            self.low <= min(self.open, self.close)
            and self.high >= max(self.open, self.close)
            and self.volume >= 0
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe dict; non-finite prices are written as null."""
        data = {"date": self.date.isoformat()}
        for name in self.OHLCV:
            value = getattr(self, name)
            data[name] = value if isinstance(value, (int, float)) and math.isfinite(value) else None
        if self.quote_volume is not None and math.isfinite(self.quote_volume):
            data["quoteVolume"] = self.quote_volume
        if self.trades is not None:
            data["trades"] = self.trades
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any], day: Optional[date] = None) -> "DailyCandle":
        quote_volume = data.get("quoteVolume", data.get("quote_volume"))
        return cls(
            date=day or to_utc_date(data["date"]),
            open=to_float(data.get("open")),
            high=to_float(data.get("high")),
            low=to_float(data.get("low")),
            close=to_float(data.get("close")),
            volume=to_float(data.get("volume")),
            quote_volume=to_optional_float(quote_volume),
            trades=to_int(data.get("trades")),
        )


@dataclass
class MergedDayRecord:
    """All exchanges' candles for one calendar day."""

    date: date
    exchanges: Dict[str, DailyCandle] = field(default_factory=dict)

    def add(self, exchange: str, candle: DailyCandle) -> None:
        if candle.date != self.date:
            raise ValueError(
                f"Candle dated {candle.date} cannot join record for {self.date}"
            )
        self.exchanges[exchange] = candle

    def get(self, exchange: str) -> Optional[DailyCandle]:
        return self.exchanges.get(exchange)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "exchanges": {
                name: candle.to_dict()
                for name, candle in sorted(self.exchanges.items())
            },
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MergedDayRecord":
        day = to_utc_date(data["date"])
        record = cls(date=day)
        for name, candle in (data.get("exchanges") or {}).items():
            record.exchanges[name] = DailyCandle.from_dict(candle, day=day)
        return record


def series_to_dicts(series: List[MergedDayRecord]) -> List[Dict[str, Any]]:
    return [record.to_dict() for record in series]


def series_from_dicts(rows: List[Dict[str, Any]]) -> List[MergedDayRecord]:
    return [MergedDayRecord.from_dict(row) for row in rows]
