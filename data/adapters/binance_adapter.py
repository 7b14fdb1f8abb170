"""
Binance Daily Klines Adapter

Downloads free daily BTC/USDT klines from the Binance spot API.
No API key required.

Features:
- Cursor pagination (startTime advanced past each page's last close_time)
- Mirror rotation across api{1..4}.binance.com on failure
- Partial data kept when the failure ceiling is reached
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

import structlog

from data.adapters.base import CONVERSION_ERRORS, REQUEST_ERRORS, FailoverClient, finish_fetch
from data.pipeline.config import SourceConfig, default_sources
from data.pipeline.errors import InvalidResponseShape
from data.pipeline.models import DailyCandle, to_float, to_int, to_optional_float, to_utc_date

logger = structlog.get_logger()


def _to_ms(value: datetime) -> int:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


class BinanceAdapter:
    """
    Adapter for Binance spot daily klines.

    Kline rows are:
        [open_time, open, high, low, close, volume, close_time,
         quote_volume, trades, taker_buy_base, taker_buy_quote, ignore]
    """

    KLINES = "/api/v3/klines"
    INTERVAL = "1d"

    def __init__(
        self,
        config: Optional[SourceConfig] = None,
        symbol: str = "BTCUSDT",
        session: Optional[requests.Session] = None,
        **client_kwargs,
    ):
        self.config = config or default_sources()["binance"]
        self.symbol = symbol.upper()
        self.client = FailoverClient(self.config, session=session, **client_kwargs)

    @property
    def name(self) -> str:
        return self.config.name

    def normalize(self, raw: Any) -> List[DailyCandle]:
        """Convert a klines payload into DailyCandles."""
        if not isinstance(raw, list):
            raise InvalidResponseShape(self.name, "expected a list of klines", raw)

        candles = []
        for row in raw:
            if not isinstance(row, (list, tuple)) or len(row) < 9:
                raise InvalidResponseShape(self.name, "kline row too short", row)

            try:
                day = to_utc_date(int(row[0]))
            except CONVERSION_ERRORS as e:
                raise InvalidResponseShape(self.name, f"bad open time ({e})", row)

            candles.append(DailyCandle(
                date=day,
                open=to_float(row[1]),
                high=to_float(row[2]),
                low=to_float(row[3]),
                close=to_float(row[4]),
                volume=to_float(row[5]),
                quote_volume=to_optional_float(row[7]),
                trades=to_int(row[8]),
            ))

        return candles

    def next_cursor(self, raw: Any) -> int:
        """startTime for the next page: one past the last row's close_time."""
        try:
            return int(raw[-1][6]) + 1
        except CONVERSION_ERRORS as e:
            raise InvalidResponseShape(self.name, f"bad close time ({e})", raw[-1])

    def fetch(self, start_time: datetime, end_time: datetime) -> List[DailyCandle]:
        """
        Fetch all daily candles between start_time and end_time.

        Args:
            start_time: Range start (UTC).
            end_time: Range end (UTC).

        Returns:
            Ascending, de-duplicated DailyCandles.
        """
        start_ms = _to_ms(start_time)
        end_ms = _to_ms(end_time)

        logger.info(
            f"Fetching {self.symbol} {self.INTERVAL} from {self.name}",
            start=start_time.date().isoformat(),
            end=end_time.date().isoformat(),
        )

        candles: List[DailyCandle] = []
        cursor = start_ms
        exhausted = False

        while cursor < end_ms:
            params: Dict[str, Any] = {
                "symbol": self.symbol,
                "interval": self.INTERVAL,
                "limit": self.config.page_limit,
                "startTime": cursor,
                "endTime": end_ms,
            }

            try:
                data = self.client.get_json(self.KLINES, params)
            except REQUEST_ERRORS as e:
                if self.client.record_failure(e):
                    exhausted = True
                    break
                continue

            self.client.record_success()

            if not data:
                logger.debug(f"{self.name}: no more data")
                break

            try:
                page = self.normalize(data)
                next_cursor = self.next_cursor(data)
            except InvalidResponseShape as e:
                logger.error(str(e), kept=len(candles))
                break

            candles.extend(page)
            if next_cursor <= cursor:
                break
            cursor = next_cursor

            logger.debug(
                f"{self.name} page",
                rows=len(page),
                last=page[-1].date.isoformat(),
                total=len(candles),
            )

            self.client.pace(len(candles), len(page))

        return finish_fetch(
            self.name,
            self.client,
            candles,
            to_utc_date(start_time),
            to_utc_date(end_time),
            exhausted,
        )
