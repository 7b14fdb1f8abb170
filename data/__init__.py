"""
Data Module

This module provides:
- Exchange adapters for Binance, OKX and Huobi (adapters/)
- Merge, validation, reconciliation and analysis pipeline (pipeline/)

Quick Start:
    from data.pipeline.manager import DataPipeline, FetchMode

    pipeline = DataPipeline()
    result = pipeline.run(FetchMode.FULL)
"""

__version__ = "1.0.0"
