"""
Huobi (HTX) Daily Kline Adapter

The public history endpoint has no cursor: it returns the most recent
`size` (max 2000) daily bars in one page, newest first. Bars outside the
requested range are dropped.
"""

from datetime import datetime
from typing import Any, List, Optional

import requests

import structlog

from data.adapters.base import CONVERSION_ERRORS, REQUEST_ERRORS, FailoverClient, finish_fetch
from data.pipeline.config import SourceConfig, default_sources
from data.pipeline.errors import InvalidResponseShape
from data.pipeline.models import DailyCandle, to_float, to_int, to_optional_float, to_utc_date

logger = structlog.get_logger()


class HuobiAdapter:
    """
    Adapter for Huobi market history klines.

    Kline objects are:
        {"id": <epoch seconds>, "open", "close", "low", "high",
         "amount": <base volume>, "vol": <quote volume>, "count": <trades>}
    """

    HISTORY_KLINE = "/market/history/kline"
    PERIOD = "1day"
    REQUIRED = ("id", "open", "high", "low", "close", "amount")

    def __init__(
        self,
        config: Optional[SourceConfig] = None,
        symbol: str = "btcusdt",
        session: Optional[requests.Session] = None,
        **client_kwargs,
    ):
        self.config = config or default_sources()["huobi"]
        self.symbol = symbol.lower()
        self.client = FailoverClient(self.config, session=session, **client_kwargs)

    @property
    def name(self) -> str:
        return self.config.name

    def normalize(self, raw: Any) -> List[DailyCandle]:
        """Convert a history/kline payload into DailyCandles."""
        if not isinstance(raw, dict) or not isinstance(raw.get("data"), list):
            raise InvalidResponseShape(self.name, "missing 'data' list", raw)

        candles = []
        for item in raw["data"]:
            if not isinstance(item, dict) or any(k not in item for k in self.REQUIRED):
                raise InvalidResponseShape(self.name, "kline object missing fields", item)

            try:
                day = to_utc_date(int(item["id"]) * 1000)
            except CONVERSION_ERRORS as e:
                raise InvalidResponseShape(self.name, f"bad kline id ({e})", item)

            # Unparseable prices stay NaN so the validator reports the day
            candles.append(DailyCandle(
                date=day,
                open=to_float(item["open"]),
                high=to_float(item["high"]),
                low=to_float(item["low"]),
                close=to_float(item["close"]),
                volume=to_float(item["amount"]),
                quote_volume=to_optional_float(item.get("vol")),
                trades=to_int(item.get("count")),
            ))

        return candles

    def _request(self) -> Any:
        payload = self.client.get_json(self.HISTORY_KLINE, {
            "symbol": self.symbol,
            "period": self.PERIOD,
            "size": self.config.page_limit,
        })
        if isinstance(payload, dict) and payload.get("status") == "error":
            raise ValueError(f"Huobi error {payload.get('err-code')}: {payload.get('err-msg', '')}")
        return payload

    def fetch(self, start_time: datetime, end_time: datetime) -> List[DailyCandle]:
        """Fetch the single history page and clip it to [start_time, end_time]."""
        logger.info(
            f"Fetching {self.symbol} {self.PERIOD} from {self.name}",
            start=start_time.date().isoformat(),
            end=end_time.date().isoformat(),
        )

        candles: List[DailyCandle] = []
        exhausted = False

        while True:
            try:
                payload = self._request()
            except REQUEST_ERRORS as e:
                if self.client.record_failure(e):
                    exhausted = True
                    break
                continue

            self.client.record_success()

            try:
                candles = self.normalize(payload)
            except InvalidResponseShape as e:
                logger.error(str(e))
            break

        return finish_fetch(
            self.name,
            self.client,
            candles,
            to_utc_date(start_time),
            to_utc_date(end_time),
            exhausted,
        )
