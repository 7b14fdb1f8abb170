"""
Data Quality Control

Validates the merged multi-exchange series:
1. Completeness (non-numeric or inconsistent OHLCV invalidates the day)
2. Cross-exchange close divergence
3. Volume spikes against the neighbouring days
4. Close-to-close price gaps

The four checks are independent. Only completeness removes days from the
valid output; the others are advisory.

Neighbours are taken by position in the merged series, not by calendar
adjacency: across a multi-day hole the "previous day" is the previous record.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import structlog

from data.pipeline.config import ValidationConfig
from data.pipeline.models import MergedDayRecord
from data.pipeline.numeric import safe_divide

logger = structlog.get_logger()


class IssueType(str, Enum):
    """Types of data quality issues."""

    PRICE_DIFF = "priceDiff"
    VOLUME_SPIKE = "volumeSpikes"
    DATA_MISSING = "dataMissing"
    PRICE_GAP = "priceGaps"


@dataclass
class QualityIssue:
    """A single anomaly on one date."""

    issue_type: IssueType
    date: date
    exchanges: List[str]
    magnitude: float  # Percent
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def exchange(self) -> Optional[str]:
        return self.exchanges[0] if len(self.exchanges) == 1 else None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data: Dict[str, Any] = {"date": self.date.isoformat()}
        if self.exchange is not None and self.issue_type in (
            IssueType.VOLUME_SPIKE,
            IssueType.PRICE_GAP,
        ):
            data["exchange"] = self.exchange
        else:
            data["exchanges"] = list(self.exchanges)
        data["magnitude"] = round(self.magnitude, 4)
        data.update(self.details)
        return data


@dataclass
class AnomalyReport:
    """Four independent anomaly lists."""

    price_diff: List[QualityIssue] = field(default_factory=list)
    volume_spikes: List[QualityIssue] = field(default_factory=list)
    data_missing: List[QualityIssue] = field(default_factory=list)
    price_gaps: List[QualityIssue] = field(default_factory=list)

    def add_issue(self, issue: QualityIssue) -> None:
        """Add an issue to the list matching its type."""
        {
            IssueType.PRICE_DIFF: self.price_diff,
            IssueType.VOLUME_SPIKE: self.volume_spikes,
            IssueType.DATA_MISSING: self.data_missing,
            IssueType.PRICE_GAP: self.price_gaps,
        }[issue.issue_type].append(issue)

    def counts(self) -> Dict[str, int]:
        return {
            IssueType.PRICE_DIFF.value: len(self.price_diff),
            IssueType.VOLUME_SPIKE.value: len(self.volume_spikes),
            IssueType.DATA_MISSING.value: len(self.data_missing),
            IssueType.PRICE_GAP.value: len(self.price_gaps),
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            IssueType.PRICE_DIFF.value: [i.to_dict() for i in self.price_diff],
            IssueType.VOLUME_SPIKE.value: [i.to_dict() for i in self.volume_spikes],
            IssueType.DATA_MISSING.value: [i.to_dict() for i in self.data_missing],
            IssueType.PRICE_GAP.value: [i.to_dict() for i in self.price_gaps],
        }


@dataclass
class ValidationStats:
    """Day counts and per-exchange coverage."""

    total_days: int = 0
    valid_days: int = 0
    exchange_coverage: Dict[str, int] = field(default_factory=dict)

    @property
    def completeness_pct(self) -> float:
        return safe_divide(self.valid_days, self.total_days) * 100

    def coverage_pct(self) -> Dict[str, float]:
        return {
            name: safe_divide(days, self.total_days) * 100
            for name, days in sorted(self.exchange_coverage.items())
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalDays": self.total_days,
            "validDays": self.valid_days,
            "exchangeCoverage": dict(sorted(self.exchange_coverage.items())),
        }


@dataclass
class ValidationResult:
    """Output of DataValidator.validate()."""

    valid: List[MergedDayRecord] = field(default_factory=list)
    anomalies: AnomalyReport = field(default_factory=AnomalyReport)
    stats: ValidationStats = field(default_factory=ValidationStats)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": [r.to_dict() for r in self.valid],
            "anomalies": self.anomalies.to_dict(),
            "stats": self.stats.to_dict(),
        }


class DataValidator:
    """
    Validates merged multi-exchange data and builds an anomaly report.

    Usage:
        result = DataValidator().validate(merged)
        result.valid        # days passing completeness
        result.anomalies    # advisory report
    """

    def __init__(self, config: Optional[ValidationConfig] = None):
        self.config = config or ValidationConfig()

    def validate(self, merged: Sequence[MergedDayRecord]) -> ValidationResult:
        """
        Run all checks over the merged series.

        Args:
            merged: Date-sorted merged records.

        Returns:
            ValidationResult with valid days, anomalies and stats.
        """
        result = ValidationResult()

        for index, record in enumerate(merged):
            is_valid = self._check_completeness(record, result.anomalies)
            self._check_price_divergence(record, result.anomalies)
            self._check_volume_spikes(merged, index, result.anomalies)
            self._check_price_gaps(merged, index, result.anomalies)

            result.stats.total_days += 1
            if is_valid:
                result.stats.valid_days += 1
                result.valid.append(record)

            for exchange in record.exchanges:
                result.stats.exchange_coverage[exchange] = (
                    result.stats.exchange_coverage.get(exchange, 0) + 1
                )

        logger.info(
            "Quality check complete",
            total=result.stats.total_days,
            valid=result.stats.valid_days,
            **result.anomalies.counts(),
        )

        return result

    def _check_completeness(self, record: MergedDayRecord, report: AnomalyReport) -> bool:
        """A day is invalid if any present candle is non-numeric or inconsistent."""
        exchanges = sorted(record.exchanges)
        reason = None

        if any(not record.exchanges[e].is_numeric() for e in exchanges):
            reason = "non_numeric"
        elif any(not record.exchanges[e].is_consistent() for e in exchanges):
            reason = "ohlc_inconsistent"

        if reason is None:
            return True

        report.add_issue(QualityIssue(
            issue_type=IssueType.DATA_MISSING,
            date=record.date,
            exchanges=exchanges,
            magnitude=0.0,
            details={"reason": reason},
        ))
        return False

    def _check_price_divergence(self, record: MergedDayRecord, report: AnomalyReport) -> None:
        """Flag (max - min) / mean of same-day closes above the threshold."""
        closes = {
            name: candle.close
            for name, candle in sorted(record.exchanges.items())
            if candle.is_numeric()
        }
        if len(closes) < 2:
            return

        values = list(closes.values())
        mean = sum(values) / len(values)
        diff_pct = safe_divide(max(values) - min(values), mean) * 100

        if diff_pct > self.config.max_price_diff_pct:
            report.add_issue(QualityIssue(
                issue_type=IssueType.PRICE_DIFF,
                date=record.date,
                exchanges=list(closes),
                magnitude=diff_pct,
                details={"diffPercent": round(diff_pct, 4), "prices": closes},
            ))

    def _check_volume_spikes(
        self,
        merged: Sequence[MergedDayRecord],
        index: int,
        report: AnomalyReport,
    ) -> None:
        """Compare each exchange's volume to the mean of its index neighbours."""
        if index == 0 or index >= len(merged) - 1:
            return

        record = merged[index]
        for exchange, candle in sorted(record.exchanges.items()):
            prev_day = merged[index - 1].get(exchange)
            next_day = merged[index + 1].get(exchange)
            if prev_day is None or next_day is None:
                continue
            if not (candle.is_numeric() and prev_day.is_numeric() and next_day.is_numeric()):
                continue

            avg_volume = (prev_day.volume + next_day.volume) / 2
            change = safe_divide(abs(candle.volume - avg_volume), avg_volume)

            if change > self.config.volume_spike_ratio:
                report.add_issue(QualityIssue(
                    issue_type=IssueType.VOLUME_SPIKE,
                    date=record.date,
                    exchanges=[exchange],
                    magnitude=change * 100,
                    details={"volume": candle.volume, "avgVolume": avg_volume},
                ))

    def _check_price_gaps(
        self,
        merged: Sequence[MergedDayRecord],
        index: int,
        report: AnomalyReport,
    ) -> None:
        """Flag close-to-close moves larger than the threshold."""
        if index == 0:
            return

        record = merged[index]
        for exchange, candle in sorted(record.exchanges.items()):
            prev_day = merged[index - 1].get(exchange)
            if prev_day is None or not (candle.is_numeric() and prev_day.is_numeric()):
                continue

            change = safe_divide(abs(candle.close - prev_day.close), prev_day.close)

            if change > self.config.max_price_change:
                report.add_issue(QualityIssue(
                    issue_type=IssueType.PRICE_GAP,
                    date=record.date,
                    exchanges=[exchange],
                    magnitude=change * 100,
                    details={"previousClose": prev_day.close, "close": candle.close},
                ))
