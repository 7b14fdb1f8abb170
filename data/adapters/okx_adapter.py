"""
OKX Daily Candles Adapter

Downloads daily BTC-USDT candles from the OKX v5 market API (public).

OKX returns candles newest first, at most 100 per page. Older pages are
requested with the `after` cursor set to the oldest timestamp received.
"""

from datetime import datetime, timezone
from typing import Any, List, Optional

import requests

import structlog

from data.adapters.base import CONVERSION_ERRORS, REQUEST_ERRORS, FailoverClient, finish_fetch
from data.pipeline.config import SourceConfig, default_sources
from data.pipeline.errors import InvalidResponseShape
from data.pipeline.models import DailyCandle, to_float, to_optional_float, to_utc_date

logger = structlog.get_logger()


class OKXAdapter:
    """
    Adapter for OKX history candles.

    Candle rows are:
        [ts, open, high, low, close, vol, volCcy, volCcyQuote, confirm]
    """

    HISTORY_CANDLES = "/api/v5/market/history-candles"
    BAR = "1Dutc"  # UTC day boundaries

    def __init__(
        self,
        config: Optional[SourceConfig] = None,
        inst_id: str = "BTC-USDT",
        session: Optional[requests.Session] = None,
        **client_kwargs,
    ):
        self.config = config or default_sources()["okx"]
        self.inst_id = inst_id
        self.client = FailoverClient(self.config, session=session, **client_kwargs)

    @property
    def name(self) -> str:
        return self.config.name

    def normalize(self, raw: Any) -> List[DailyCandle]:
        """Convert a history-candles payload into DailyCandles."""
        if not isinstance(raw, dict) or not isinstance(raw.get("data"), list):
            raise InvalidResponseShape(self.name, "missing 'data' list", raw)

        candles = []
        for row in raw["data"]:
            if not isinstance(row, (list, tuple)) or len(row) < 6:
                raise InvalidResponseShape(self.name, "candle row too short", row)

            try:
                day = to_utc_date(int(row[0]))
            except CONVERSION_ERRORS as e:
                raise InvalidResponseShape(self.name, f"bad timestamp ({e})", row)

            candles.append(DailyCandle(
                date=day,
                open=to_float(row[1]),
                high=to_float(row[2]),
                low=to_float(row[3]),
                close=to_float(row[4]),
                volume=to_float(row[5]),
                quote_volume=to_optional_float(row[6]) if len(row) > 6 else None,
            ))

        return candles

    def oldest_timestamp(self, raw: Any) -> int:
        """`after` cursor for the next (older) page."""
        try:
            return min(int(row[0]) for row in raw["data"])
        except CONVERSION_ERRORS as e:
            raise InvalidResponseShape(self.name, f"bad timestamp ({e})", raw)

    def _request(self, after: int) -> Any:
        payload = self.client.get_json(self.HISTORY_CANDLES, {
            "instId": self.inst_id,
            "bar": self.BAR,
            "limit": self.config.page_limit,
            "after": after,
        })
        if isinstance(payload, dict) and str(payload.get("code", "0")) != "0":
            raise ValueError(f"OKX error {payload.get('code')}: {payload.get('msg', '')}")
        return payload

    def fetch(self, start_time: datetime, end_time: datetime) -> List[DailyCandle]:
        """
        Fetch all daily candles between start_time and end_time.

        Walks backwards from end_time until a page reaches start_time.
        """
        if start_time.tzinfo is None:
            start_time = start_time.replace(tzinfo=timezone.utc)
        if end_time.tzinfo is None:
            end_time = end_time.replace(tzinfo=timezone.utc)

        start_ms = int(start_time.timestamp() * 1000)
        cursor = int(end_time.timestamp() * 1000) + 1

        logger.info(
            f"Fetching {self.inst_id} {self.BAR} from {self.name}",
            start=start_time.date().isoformat(),
            end=end_time.date().isoformat(),
        )

        candles: List[DailyCandle] = []
        exhausted = False

        while cursor > start_ms:
            try:
                payload = self._request(cursor)
            except REQUEST_ERRORS as e:
                if self.client.record_failure(e):
                    exhausted = True
                    break
                continue

            self.client.record_success()

            try:
                page = self.normalize(payload)
                if not page:
                    break
                oldest = self.oldest_timestamp(payload)
            except InvalidResponseShape as e:
                logger.error(str(e), kept=len(candles))
                break

            candles.extend(page)
            if oldest >= cursor:
                break
            cursor = oldest

            logger.debug(
                f"{self.name} page",
                rows=len(page),
                oldest=to_utc_date(oldest).isoformat(),
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
