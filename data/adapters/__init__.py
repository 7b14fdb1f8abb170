"""
Exchange Adapters

One adapter per exchange, each exposing `name`, `fetch(start, end)` and
`normalize(raw)`:
    - BinanceAdapter: /api/v3/klines, cursor pagination
    - OKXAdapter: /api/v5/market/history-candles, `after` cursor
    - HuobiAdapter: /market/history/kline, single page

Shared retry/backoff/endpoint rotation lives in data.adapters.base.
"""

from data.adapters.base import EndpointRotator, FailoverClient, FetchResult, RetryPolicy
from data.adapters.binance_adapter import BinanceAdapter
from data.adapters.huobi_adapter import HuobiAdapter
from data.adapters.okx_adapter import OKXAdapter

ADAPTERS = {
    "binance": BinanceAdapter,
    "okx": OKXAdapter,
    "huobi": HuobiAdapter,
}

__all__ = [
    "ADAPTERS",
    "BinanceAdapter",
    "OKXAdapter",
    "HuobiAdapter",
    "EndpointRotator",
    "FailoverClient",
    "FetchResult",
    "RetryPolicy",
]
