"""
Labeled Market Periods

Hand-labeled BTC regimes used as training targets. Numeric labels follow
the classifier's output order: 1 = uptrend, 2 = downtrend, 3 = sideways.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


class Regime(str, Enum):
    """Market regime classes, in network output order."""

    UPTREND = "uptrend"
    DOWNTREND = "downtrend"
    SIDEWAYS = "sideways"

    @property
    def label(self) -> int:
        return CLASS_ORDER.index(self) + 1

    @property
    def index(self) -> int:
        return CLASS_ORDER.index(self)

    @classmethod
    def from_label(cls, label: int) -> "Regime":
        if label not in (1, 2, 3):
            raise ValueError(f"Regime label must be 1, 2 or 3, got {label}")
        return CLASS_ORDER[label - 1]


CLASS_ORDER = (Regime.UPTREND, Regime.DOWNTREND, Regime.SIDEWAYS)


@dataclass(frozen=True)
class LabeledPeriod:
    """Inclusive date range tagged with a regime."""

    start: date
    end: date
    regime: Regime

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"Period end {self.end} precedes start {self.start}")

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "type": self.regime.label,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LabeledPeriod":
        regime = data.get("regime", data.get("type"))
        if isinstance(regime, int):
            regime = Regime.from_label(regime)
        return cls(
            start=date.fromisoformat(data["start"]),
            end=date.fromisoformat(data["end"]),
            regime=Regime(regime),
        )


def _period(start: str, end: str, regime: Regime) -> LabeledPeriod:
    return LabeledPeriod(date.fromisoformat(start), date.fromisoformat(end), regime)


DEFAULT_LABELED_PERIODS: List[LabeledPeriod] = [
    _period("2017-08-17", "2017-11-12", Regime.SIDEWAYS),
    _period("2017-11-13", "2017-12-17", Regime.UPTREND),
    _period("2017-12-18", "2018-02-06", Regime.DOWNTREND),
    _period("2018-02-07", "2020-12-15", Regime.SIDEWAYS),
    _period("2020-12-16", "2021-04-14", Regime.UPTREND),
    _period("2021-04-15", "2021-07-21", Regime.DOWNTREND),
    _period("2021-07-22", "2021-11-08", Regime.UPTREND),
    _period("2021-11-09", "2022-06-18", Regime.DOWNTREND),
    _period("2022-06-19", "2023-10-16", Regime.SIDEWAYS),
    _period("2023-10-17", "2024-03-14", Regime.UPTREND),
    _period("2024-03-15", "2024-11-06", Regime.SIDEWAYS),
    _period("2024-11-07", "2024-12-20", Regime.UPTREND),
]


def find_period(day: date, periods: Sequence[LabeledPeriod]) -> Optional[LabeledPeriod]:
    """First period containing the day, or None."""
    for period in periods:
        if period.contains(day):
            return period
    return None
