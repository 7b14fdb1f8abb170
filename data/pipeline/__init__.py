"""
Data Pipeline Package

Multi-exchange daily candle ingestion for BTC/USDT.

Architecture:
    ┌─────────────────────────────────────────────────────────────┐
    │                     INGESTION LAYER                         │
    │        ┌──────────┐   ┌──────────┐   ┌──────────┐          │
    │        │ Binance  │   │   OKX    │   │  Huobi   │          │
    │        └────┬─────┘   └────┬─────┘   └────┬─────┘          │
    └─────────────┼──────────────┼──────────────┼────────────────┘
                  ▼              ▼              ▼
    ┌─────────────────────────────────────────────────────────────┐
    │                  MERGE (by UTC calendar date)               │
    └────────────────────────────┬────────────────────────────────┘
                                 ▼
    ┌─────────────────────────────────────────────────────────────┐
    │                    QUALITY CONTROL                          │
    │  • Completeness (invalidates the day)                       │
    │  • Cross-exchange divergence (> 1%)                         │
    │  • Volume spikes (> 200% of neighbours)                     │
    │  • Price gaps (> 20% close-to-close)                        │
    └────────────────────────────┬────────────────────────────────┘
                                 ▼
    ┌─────────────────────────────────────────────────────────────┐
    │           RECONCILIATION + JSON STORAGE + ANALYSIS          │
    └─────────────────────────────────────────────────────────────┘

Usage:
    from data.pipeline.manager import DataPipeline, FetchMode

    pipeline = DataPipeline()
    result = pipeline.run(FetchMode.INCREMENT)
"""

from data.pipeline.config import (
    PipelineConfig,
    SourceConfig,
    StorageConfig,
    ValidationConfig,
)
from data.pipeline.errors import (
    InvalidResponseShape,
    NoSourceData,
    PersistenceMissing,
    PipelineError,
    SourceUnavailable,
)
from data.pipeline.models import DailyCandle, MergedDayRecord

__all__ = [
    "PipelineConfig",
    "SourceConfig",
    "StorageConfig",
    "ValidationConfig",
    "PipelineError",
    "SourceUnavailable",
    "InvalidResponseShape",
    "PersistenceMissing",
    "NoSourceData",
    "DailyCandle",
    "MergedDayRecord",
]
