"""
Data Storage

JSON persistence for the pipeline outputs (UTF-8, indent=2, replace-on-write):
- btc_price_validated.json: the ValidatedSeries
- btc_price_anomalies.json: the AnomalyReport
- btc_price_analysis.json: the Analyzer output
- btc_price_<exchange>_<start>_<end>.json: raw per-exchange snapshots
"""

import json
import os
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import structlog

from data.pipeline.config import StorageConfig
from data.pipeline.errors import PersistenceMissing
from data.pipeline.models import (
    DailyCandle,
    MergedDayRecord,
    series_from_dicts,
    series_to_dicts,
)

logger = structlog.get_logger()


class DataStorage:
    """
    File-based storage manager.

    Every write replaces the target file completely; a temporary sibling is
    written first and moved into place.
    """

    def __init__(self, config: Optional[StorageConfig] = None):
        self.config = config or StorageConfig.from_env()
        self.data_dir = Path(self.config.data_dir)

    @property
    def validated_path(self) -> Path:
        return self.data_dir / self.config.validated_file

    @property
    def anomalies_path(self) -> Path:
        return self.data_dir / self.config.anomalies_file

    @property
    def analysis_path(self) -> Path:
        return self.data_dir / self.config.analysis_file

    # =========================================================================
    # LOW-LEVEL JSON
    # =========================================================================

    def save_json(self, data: Any, filename: str) -> Path:
        """Write data as pretty-printed UTF-8 JSON, replacing any existing file."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        path = self.data_dir / filename
        tmp_path = path.with_name(path.name + ".tmp")

        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False, default=str)
        os.replace(tmp_path, path)

        logger.info(f"Saved {filename}", path=str(path))
        return path

    def load_json(self, filename: str) -> Any:
        path = self.data_dir / filename
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)

    # =========================================================================
    # VALIDATED SERIES
    # =========================================================================

    def load_series(self) -> List[MergedDayRecord]:
        """
        Load the persisted ValidatedSeries.

        Raises:
            PersistenceMissing: file is absent, unreadable or empty.
        """
        path = self.validated_path
        try:
            rows = self.load_json(self.config.validated_file)
        except FileNotFoundError:
            raise PersistenceMissing(str(path))
        except json.JSONDecodeError as e:
            logger.error("Validated series is not valid JSON", path=str(path), error=str(e))
            raise PersistenceMissing(str(path))

        if not isinstance(rows, list) or not rows:
            raise PersistenceMissing(str(path))

        return series_from_dicts(rows)

    def latest_date(self) -> date:
        """Date of the last persisted record. Raises PersistenceMissing."""
        return self.load_series()[-1].date

    def save_series(self, series: Sequence[MergedDayRecord]) -> Path:
        return self.save_json(series_to_dicts(list(series)), self.config.validated_file)

    def save_anomalies(self, anomalies: Dict[str, Any]) -> Path:
        return self.save_json(anomalies, self.config.anomalies_file)

    def save_analysis(self, analysis: Dict[str, Any]) -> Path:
        return self.save_json(analysis, self.config.analysis_file)

    def save_raw(
        self,
        exchange: str,
        candles: Sequence[DailyCandle],
        start: date,
        end: date,
    ) -> Optional[Path]:
        """Snapshot one exchange's fetched candles."""
        if not self.config.save_raw:
            return None
        filename = (
            f"btc_price_{exchange.lower()}_"
            f"{start.strftime('%Y%m%d')}_{end.strftime('%Y%m%d')}.json"
        )
        return self.save_json([c.to_dict() for c in candles], filename)
