"""
Data Pipeline Manager

Main orchestrator for the data pipeline:
1. Determines the fetch window (full history or increment)
2. Fetches every exchange concurrently
3. Merges by calendar date and validates
4. Reconciles with the persisted series (increment mode)
5. Writes validated series, anomalies and analysis
"""

import time
from dataclasses import dataclass, field
from datetime import date, datetime, time as dt_time, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import structlog

from data.adapters import ADAPTERS
from data.pipeline.analysis import analyze
from data.pipeline.config import PipelineConfig
from data.pipeline.errors import NoSourceData, PersistenceMissing
from data.pipeline.fetcher import FetchOrchestrator, SourceAdapter
from data.pipeline.merge import merge_exchange_data
from data.pipeline.quality import DataValidator, ValidationResult
from data.pipeline.reconciliation import DataReconciler
from data.pipeline.storage import DataStorage

logger = structlog.get_logger()


class FetchMode(str, Enum):
    """Pipeline run mode."""

    FULL = "full"
    INCREMENT = "increment"


@dataclass
class ProcessingResult:
    """Result of one pipeline run."""

    mode: FetchMode
    start_date: date
    end_date: date
    success: bool = False

    # Sources
    records_by_source: Dict[str, int] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    # Outputs
    validation: Optional[ValidationResult] = None
    analysis: Dict[str, Any] = field(default_factory=dict)
    series_length: int = 0

    duration_seconds: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "mode": self.mode.value,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "success": self.success,
            "sources": self.records_by_source,
            "series_length": self.series_length,
            "stats": self.validation.stats.to_dict() if self.validation else None,
            "anomalies": self.validation.anomalies.counts() if self.validation else None,
            "errors": self.errors,
            "duration_seconds": round(self.duration_seconds, 2),
        }


class DataPipeline:
    """
    Main data pipeline orchestrator.

    Usage:
        pipeline = DataPipeline()
        result = pipeline.run(FetchMode.INCREMENT)
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        adapters: Optional[Sequence[SourceAdapter]] = None,
        storage: Optional[DataStorage] = None,
    ):
        self.config = config or PipelineConfig.from_env()

        self.storage = storage or DataStorage(self.config.storage)
        self.validator = DataValidator(self.config.validation)
        self.reconciler = DataReconciler()

        if adapters is None:
            adapters = self._build_adapters()
        self.orchestrator = FetchOrchestrator(adapters, max_workers=self.config.max_workers)

        for issue in self.config.validate():
            logger.warning(f"Configuration issue: {issue}")

    def _build_adapters(self) -> List[SourceAdapter]:
        adapters = []
        for key, source_config in self.config.sources.items():
            if not source_config.enabled:
                continue
            adapter_class = ADAPTERS.get(key)
            if adapter_class is None:
                logger.warning(f"No adapter registered for source {key}")
                continue
            adapters.append(adapter_class(config=source_config))
        return adapters

    def history_start(self) -> date:
        return date.fromisoformat(self.config.history_start)

    def resolve_start(self, mode: FetchMode) -> date:
        """
        First date to fetch.

        Increment mode starts the day after the last persisted date and falls
        back to the full-history start when nothing is persisted.
        """
        if mode == FetchMode.INCREMENT:
            try:
                latest = self.storage.latest_date()
                start = latest + timedelta(days=1)
                logger.info("Incremental fetch", start=start.isoformat())
                return start
            except PersistenceMissing as e:
                logger.info("No existing data, falling back to full fetch", reason=str(e))

        logger.info("Full fetch", start=self.config.history_start)
        return self.history_start()

    def run(
        self,
        mode: FetchMode = FetchMode.FULL,
        end_time: Optional[datetime] = None,
    ) -> ProcessingResult:
        """
        Run the full fetch → merge → validate → persist cycle.

        Raises:
            NoSourceData: every source contributed zero records.
        """
        started = time.time()
        mode = FetchMode(mode)

        end_time = end_time or datetime.now(timezone.utc)
        start_date = self.resolve_start(mode)
        start_time = datetime.combine(start_date, dt_time.min, tzinfo=timezone.utc)

        result = ProcessingResult(mode=mode, start_date=start_date, end_date=end_time.date())

        if start_time > end_time:
            logger.info("Series already up to date", latest=(start_date - timedelta(days=1)).isoformat())
            result.success = True
            result.duration_seconds = time.time() - started
            return result

        series_by_exchange = self.orchestrator.fetch_all(start_time, end_time)
        result.records_by_source = {k: len(v) for k, v in series_by_exchange.items()}
        result.errors = self.orchestrator.errors()

        if not any(series_by_exchange.values()):
            raise NoSourceData(result.errors)

        for exchange, candles in series_by_exchange.items():
            if candles:
                self.storage.save_raw(exchange, candles, start_date, end_time.date())

        merged = merge_exchange_data(series_by_exchange)
        validation = self.validator.validate(merged)
        analysis = analyze(validation.valid)

        series = validation.valid
        if mode == FetchMode.INCREMENT:
            try:
                existing = self.storage.load_series()
            except PersistenceMissing:
                existing = []
            series, _ = self.reconciler.reconcile(existing, validation.valid)
            logger.info("Merged with existing data", rows=len(series))

        self.storage.save_series(series)
        self.storage.save_anomalies(validation.anomalies.to_dict())
        self.storage.save_analysis(analysis)

        result.validation = validation
        result.analysis = analysis
        result.series_length = len(series)
        result.success = True
        result.duration_seconds = time.time() - started

        logger.info(
            "Pipeline complete",
            mode=mode.value,
            rows=result.series_length,
            duration=f"{result.duration_seconds:.1f}s",
        )

        return result
