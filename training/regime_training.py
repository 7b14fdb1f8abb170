"""
Regime Classifier Training

Trains the BTC regime classifier on the persisted validated series:
1. Load btc_price_validated.json
2. Build labeled 270-day windows from the hand-labeled periods
3. Fit the network
4. Save the model and training_history.json
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

import structlog

from data.pipeline.config import StorageConfig
from data.pipeline.models import MergedDayRecord
from data.pipeline.storage import DataStorage
from regime.classifier import ClassifierConfig, RegimeClassifier
from regime.labels import CLASS_ORDER, DEFAULT_LABELED_PERIODS, LabeledPeriod

logger = structlog.get_logger()

HISTORY_FILE = "training_history.json"


@dataclass
class RegimeTrainingConfig:
    """Configuration for regime classifier training."""

    classifier: ClassifierConfig = field(default_factory=ClassifierConfig.from_env)
    storage: StorageConfig = field(default_factory=StorageConfig.from_env)
    periods: List[LabeledPeriod] = field(default_factory=lambda: list(DEFAULT_LABELED_PERIODS))
    epochs: Optional[int] = None


@dataclass
class RegimeTrainingResult:
    """Result of one training run."""

    samples: int
    class_counts: Dict[str, int]
    epochs: int
    final_loss: float
    final_accuracy: float
    final_val_loss: Optional[float]
    final_val_accuracy: Optional[float]
    model_dir: str
    trained_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "samples": self.samples,
            "class_counts": self.class_counts,
            "epochs": self.epochs,
            "final_loss": self.final_loss,
            "final_accuracy": self.final_accuracy,
            "final_val_loss": self.final_val_loss,
            "final_val_accuracy": self.final_val_accuracy,
            "model_dir": self.model_dir,
            "trained_at": self.trained_at,
        }


class RegimeTrainingPipeline:
    """
    Pipeline for training the regime classifier.

    Usage:
        pipeline = RegimeTrainingPipeline()
        result = pipeline.run()
    """

    def __init__(self, config: Optional[RegimeTrainingConfig] = None):
        self.config = config or RegimeTrainingConfig()
        self.storage = DataStorage(self.config.storage)
        self.classifier = RegimeClassifier(self.config.classifier)

    def load_series(self) -> List[MergedDayRecord]:
        """Validated series. Raises PersistenceMissing if nothing was fetched."""
        series = self.storage.load_series()
        logger.info(
            f"Loaded {len(series)} days",
            first=series[0].date.isoformat(),
            last=series[-1].date.isoformat(),
        )
        return series

    def train(self, series: Sequence[MergedDayRecord]) -> RegimeTrainingResult:
        """Fit on the series, save the model and history."""
        X, y = self.classifier.extractor.create_training_data(series, self.config.periods)
        if len(y) == 0:
            raise ValueError("No labeled training samples in series")

        counts = np.bincount(y - 1, minlength=len(CLASS_ORDER))
        class_counts = {r.value: int(c) for r, c in zip(CLASS_ORDER, counts)}
        logger.info(f"Training on {len(y)} samples", **class_counts)

        history = self.classifier.train_arrays(X, y - 1, epochs=self.config.epochs)

        model_dir = self.classifier.save(self.config.classifier.model_dir)
        self.save_history(history.to_dict(), model_dir)

        return RegimeTrainingResult(
            samples=int(len(y)),
            class_counts=class_counts,
            epochs=history.epochs,
            final_loss=history.loss[-1],
            final_accuracy=history.accuracy[-1],
            final_val_loss=history.val_loss[-1] if history.val_loss else None,
            final_val_accuracy=history.val_accuracy[-1] if history.val_accuracy else None,
            model_dir=str(model_dir),
        )

    def save_history(self, history: Dict[str, List[float]], model_dir: Path) -> Path:
        path = Path(model_dir) / HISTORY_FILE
        with open(path, "w", encoding="utf-8") as f:
            json.dump(history, f, indent=2)
        logger.info(f"Training history saved to {path}")
        return path

    def run(self) -> RegimeTrainingResult:
        return self.train(self.load_series())


def train_regime_classifier(epochs: Optional[int] = None) -> RegimeTrainingResult:
    """Quick function to train and save the classifier with env configuration."""
    return RegimeTrainingPipeline(RegimeTrainingConfig(epochs=epochs)).run()
