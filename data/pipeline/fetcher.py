"""
Fetch Orchestrator

Runs every exchange adapter concurrently for a shared date range.
A failing adapter contributes an empty series; it never cancels the others.
"""

import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Sequence

import structlog

from data.adapters.base import FetchResult
from data.pipeline.models import DailyCandle

logger = structlog.get_logger()


class SourceAdapter(Protocol):
    """Capability every exchange adapter provides."""

    @property
    def name(self) -> str: ...

    def fetch(self, start_time: datetime, end_time: datetime) -> List[DailyCandle]: ...


class FetchOrchestrator:
    """
    Concurrent multi-exchange fetcher.

    Usage:
        orchestrator = FetchOrchestrator([BinanceAdapter(), OKXAdapter(), HuobiAdapter()])
        series = orchestrator.fetch_all(start, end)  # {"Binance": [...], "OKX": [], ...}
    """

    def __init__(self, adapters: Sequence[SourceAdapter], max_workers: Optional[int] = None):
        self.adapters = list(adapters)
        self.max_workers = max_workers or max(1, len(self.adapters))
        self.last_results: Dict[str, FetchResult] = {}

    def _run_adapter(
        self,
        adapter: SourceAdapter,
        start_time: datetime,
        end_time: datetime,
    ) -> FetchResult:
        started = time.time()
        result = FetchResult(source=adapter.name)

        try:
            result.candles = list(adapter.fetch(start_time, end_time))
            result.success = True
        except Exception as e:
            # Isolation boundary: any adapter error becomes an empty contribution
            result.error = str(e)
            logger.error(f"{adapter.name} fetch failed", error=str(e))

        result.duration_seconds = time.time() - started
        return result

    def fetch_all(
        self,
        start_time: datetime,
        end_time: datetime,
    ) -> Dict[str, List[DailyCandle]]:
        """
        Fetch every source concurrently.

        Returns:
            Mapping exchange name -> candles (empty when the source failed).
        """
        self.last_results = {}

        if not self.adapters:
            return {}

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self._run_adapter, adapter, start_time, end_time): adapter
                for adapter in self.adapters
            }

            for future in as_completed(futures):
                adapter = futures[future]
                result = future.result()
                self.last_results[adapter.name] = result

                logger.info(
                    f"{adapter.name} finished",
                    success=result.success,
                    records=result.count,
                    duration=f"{result.duration_seconds:.1f}s",
                )

        return {
            name: self.last_results[name].candles
            for name in sorted(self.last_results)
        }

    def errors(self) -> List[str]:
        return [
            f"{name}: {result.error}"
            for name, result in sorted(self.last_results.items())
            if result.error
        ]
