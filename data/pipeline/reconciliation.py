"""
Data Reconciliation

Merges freshly validated days into the persisted series:
1. Index the existing series by date
2. Overwrite or insert each new day (new data always wins)
3. Emit the result sorted ascending, one record per date
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog

from data.pipeline.models import MergedDayRecord

logger = structlog.get_logger()


@dataclass
class ReconciliationResult:
    """Summary of one reconciliation."""

    existing_rows: int = 0
    new_rows: int = 0
    inserted: int = 0
    replaced: int = 0
    rows_after: int = 0
    first_date: Optional[date] = None
    last_date: Optional[date] = None
    replaced_dates: List[date] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "rows_before": self.existing_rows,
            "rows_new": self.new_rows,
            "inserted": self.inserted,
            "replaced": self.replaced,
            "rows_after": self.rows_after,
            "first_date": self.first_date.isoformat() if self.first_date else None,
            "last_date": self.last_date.isoformat() if self.last_date else None,
        }


class DataReconciler:
    """
    Reconciles a persisted ValidatedSeries with newly validated days.

    Usage:
        reconciler = DataReconciler()
        series, summary = reconciler.reconcile(existing, new_valid_days)
    """

    def reconcile(
        self,
        existing: Sequence[MergedDayRecord],
        new_days: Sequence[MergedDayRecord],
    ) -> Tuple[List[MergedDayRecord], ReconciliationResult]:
        """
        Merge new days into the existing series.

        Args:
            existing: Previously persisted series.
            new_days: Freshly validated days.

        Returns:
            Tuple of (reconciled series, ReconciliationResult).
        """
        result = ReconciliationResult(existing_rows=len(existing), new_rows=len(new_days))

        index: Dict[date, MergedDayRecord] = {}
        for record in existing:
            index[record.date] = record

        for record in new_days:
            if record.date in index:
                if index[record.date] is not record:
                    result.replaced += 1
                    result.replaced_dates.append(record.date)
            else:
                result.inserted += 1
            index[record.date] = record

        series = [index[d] for d in sorted(index)]

        result.rows_after = len(series)
        if series:
            result.first_date = series[0].date
            result.last_date = series[-1].date

        logger.info("Reconciliation complete", **result.to_dict())

        return series, result


def reconcile(
    existing: Sequence[MergedDayRecord],
    new_days: Sequence[MergedDayRecord],
) -> List[MergedDayRecord]:
    """Functional shortcut for DataReconciler().reconcile(...)[0]."""
    series, _ = DataReconciler().reconcile(existing, new_days)
    return series
