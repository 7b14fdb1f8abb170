"""
BTC Regime Classifier

Wraps the feature extractor and the feed-forward network:
- train(series, periods): build windows, fit the network
- predict(window): features → probabilities → post-processing
- save/load: topology.json + model_state.pt (torch state_dict)

Post-processing of raw probabilities, in order:
1. floor each class at 0.001
2. trend amplification (optional)
3. renormalise, falling back to {0.33, 0.33, 0.34} when degenerate
"""

import json
import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import torch

import structlog

from data.pipeline.models import MergedDayRecord
from regime.features import (
    FEATURE_NAMES,
    NUM_FEATURES,
    FeatureConfig,
    FeatureExtractor,
    is_trending,
)
from regime.labels import CLASS_ORDER, LabeledPeriod, Regime
from regime.network import FeedForwardNetwork, NetworkConfig, TrainingHistory

logger = structlog.get_logger()

TOPOLOGY_FILE = "topology.json"
WEIGHTS_FILE = "model_state.pt"

PROBABILITY_FLOOR = 0.001
FALLBACK = {Regime.UPTREND: 0.33, Regime.DOWNTREND: 0.33, Regime.SIDEWAYS: 0.34}


class ModelNotTrained(RuntimeError):
    """Prediction or save requested before the model was trained or loaded."""


@dataclass
class ClassifierConfig:
    """Configuration for the regime classifier."""

    model_dir: str = "./models/btc_period_classifier"

    # Training
    epochs: int = 100
    batch_size: int = 32
    validation_split: float = 0.2
    learning_rate: float = 1e-3
    dropout: float = 0.2
    hidden_sizes: List[int] = field(default_factory=lambda: [16, 8])
    seed: Optional[int] = None

    # Post-processing
    amplify_trends: bool = True
    amplify_strength: float = 0.5
    amplify_continuity: float = 0.6
    dominant_floor: float = 0.8
    other_scale: float = 0.2
    other_cap: float = 0.1

    @classmethod
    def from_env(cls) -> "ClassifierConfig":
        return cls(
            model_dir=os.getenv("BTC_MODEL_DIR", "./models/btc_period_classifier"),
            epochs=int(os.getenv("BTC_TRAIN_EPOCHS", "100")),
        )

    def network_config(self) -> NetworkConfig:
        return NetworkConfig(
            layer_sizes=[NUM_FEATURES, *self.hidden_sizes, len(CLASS_ORDER)],
            dropout=self.dropout,
            learning_rate=self.learning_rate,
            seed=self.seed,
        )


@dataclass
class RegimePrediction:
    """Post-processed class probabilities."""

    uptrend: float
    downtrend: float
    sideways: float
    confidence: float = 0.0

    @property
    def regime(self) -> Regime:
        values = {r: self.probabilities()[r.value] for r in CLASS_ORDER}
        return max(values, key=values.get)

    def probabilities(self) -> Dict[str, float]:
        return {
            Regime.UPTREND.value: self.uptrend,
            Regime.DOWNTREND.value: self.downtrend,
            Regime.SIDEWAYS.value: self.sideways,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.probabilities(),
            "regime": self.regime.value,
            "confidence": self.confidence,
        }

    @classmethod
    def from_probabilities(cls, probs: Dict[Regime, float]) -> "RegimePrediction":
        prediction = cls(
            uptrend=probs[Regime.UPTREND],
            downtrend=probs[Regime.DOWNTREND],
            sideways=probs[Regime.SIDEWAYS],
        )
        prediction.confidence = calculate_confidence(prediction)
        return prediction


# =============================================================================
# POST-PROCESSING
# =============================================================================

def amplify_trend(
    probs: Dict[Regime, float],
    features: np.ndarray,
    config: Optional[ClassifierConfig] = None,
) -> Dict[Regime, float]:
    """
    Push probability mass to the trend direction when the window shows a
    strong, continuous trend (|trend_strength| > 0.5 and continuity > 0.6).
    """
    config = config or ClassifierConfig()
    trending, direction = is_trending(
        features,
        strength=config.amplify_strength,
        continuity=config.amplify_continuity,
    )
    if not trending:
        return dict(probs)

    dominant = Regime.UPTREND if direction > 0 else Regime.DOWNTREND
    out = {}
    for regime, p in probs.items():
        if regime == dominant:
            out[regime] = max(p, config.dominant_floor)
        else:
            out[regime] = min(p * config.other_scale, config.other_cap)
    return out


def normalize_probabilities(probs: Dict[Regime, float]) -> Dict[Regime, float]:
    """Scale to sum 1; degenerate input gives the fallback distribution."""
    total = sum(probs.values())
    if not math.isfinite(total) or total <= 0:
        return dict(FALLBACK)

    out = {regime: p / total for regime, p in probs.items()}
    if any(not math.isfinite(v) for v in out.values()):
        return dict(FALLBACK)
    return out


def postprocess(
    raw: Sequence[float],
    features: np.ndarray,
    config: Optional[ClassifierConfig] = None,
) -> Dict[Regime, float]:
    config = config or ClassifierConfig()
    if any(not math.isfinite(float(p)) for p in raw):
        return dict(FALLBACK)

    probs = {regime: max(PROBABILITY_FLOOR, float(p)) for regime, p in zip(CLASS_ORDER, raw)}
    if config.amplify_trends:
        probs = amplify_trend(probs, features, config)
    return normalize_probabilities(probs)


def calculate_confidence(prediction) -> float:
    """
    Dominance of the top class blended with how evenly the rest are spread.

    confidence = 0.7 * max/sum + 0.3 * (1 - sqrt(var(others))), clamped to [0, 1].
    """
    if isinstance(prediction, RegimePrediction):
        values = [prediction.uptrend, prediction.downtrend, prediction.sideways]
    elif isinstance(prediction, dict):
        values = [float(prediction[k]) for k in ("uptrend", "downtrend", "sideways")]
    else:
        values = [float(v) for v in prediction]

    total = sum(values)
    top = max(values)
    if not math.isfinite(total) or total <= 0:
        return 0.0

    dominance = top / total
    others = list(values)
    others.remove(top)
    center = (total - top) / 2
    variance = sum((v - center) ** 2 for v in others) / len(others)

    confidence = dominance * 0.7 + (1 - math.sqrt(variance)) * 0.3
    return min(max(confidence, 0.0), 1.0)


# =============================================================================
# CLASSIFIER
# =============================================================================

class RegimeClassifier:
    """
    Three-class BTC market regime classifier.

    Usage:
        classifier = RegimeClassifier()
        history = classifier.train(series, DEFAULT_LABELED_PERIODS)
        classifier.save()

        classifier = RegimeClassifier.load("./models/btc_period_classifier")
        prediction = classifier.predict(series[-270:])
    """

    def __init__(
        self,
        config: Optional[ClassifierConfig] = None,
        feature_config: Optional[FeatureConfig] = None,
    ):
        self.config = config or ClassifierConfig()
        self.extractor = FeatureExtractor(feature_config)
        self.network: Optional[FeedForwardNetwork] = None
        self.history: Optional[TrainingHistory] = None

    @property
    def is_trained(self) -> bool:
        return self.network is not None

    def train(
        self,
        series: Sequence[MergedDayRecord],
        periods: Sequence[LabeledPeriod],
        epochs: Optional[int] = None,
    ) -> TrainingHistory:
        """
        Fit the network on every labeled window of the series.

        Raises:
            ValueError: no labeled windows could be built.
        """
        X, y = self.extractor.create_training_data(series, periods)
        if len(y) == 0:
            raise ValueError("No labeled training samples in series")

        return self.train_arrays(X, y - 1, epochs=epochs)

    def train_arrays(
        self,
        X: np.ndarray,
        y: np.ndarray,
        epochs: Optional[int] = None,
    ) -> TrainingHistory:
        """Fit on a prepared feature matrix and 0-based class indices."""
        epochs = epochs or self.config.epochs
        if self.network is None:
            self.network = FeedForwardNetwork(self.config.network_config())

        counts = np.bincount(np.asarray(y, dtype=int), minlength=len(CLASS_ORDER))
        logger.info(
            "Training regime classifier",
            samples=len(y),
            epochs=epochs,
            **{r.value: int(c) for r, c in zip(CLASS_ORDER, counts)},
        )

        self.history = self.network.fit(
            X,
            y,
            epochs=epochs,
            batch_size=self.config.batch_size,
            validation_split=self.config.validation_split,
        )

        logger.info(
            "Training complete",
            loss=round(self.history.loss[-1], 4),
            accuracy=round(self.history.accuracy[-1], 4),
            val_accuracy=round(self.history.val_accuracy[-1], 4) if self.history.val_accuracy else None,
        )
        return self.history

    def predict_features(self, features: np.ndarray) -> RegimePrediction:
        """Classify a prepared feature vector."""
        if self.network is None:
            raise ModelNotTrained("Regime classifier has not been trained or loaded")

        vector = np.asarray(features, dtype=np.float64).ravel()
        size = self.network.input_size
        if vector.shape[0] < size:
            vector = np.concatenate([vector, np.zeros(size - vector.shape[0])])
        vector = vector[:size]

        if not np.all(np.isfinite(vector)):
            logger.warning("Non-finite features, returning fallback prediction")
            return RegimePrediction.from_probabilities(dict(FALLBACK))

        raw = self.network.predict_proba(vector)[0]
        return RegimePrediction.from_probabilities(postprocess(raw, vector, self.config))

    def predict(
        self,
        window: Sequence[MergedDayRecord],
        exchange: Optional[str] = None,
    ) -> RegimePrediction:
        """Classify a window of merged records (normally the last 270 days)."""
        if self.network is None:
            raise ModelNotTrained("Regime classifier has not been trained or loaded")
        return self.predict_features(self.extractor.extract(window, exchange=exchange))

    # =========================================================================
    # PERSISTENCE
    # =========================================================================

    def save(self, model_dir: Optional[str] = None) -> Path:
        """Write topology.json and the model state_dict."""
        if self.network is None:
            raise ModelNotTrained("No trained model to save")

        path = Path(model_dir or self.config.model_dir)
        path.mkdir(parents=True, exist_ok=True)

        topology = {
            **self.network.config.to_dict(),
            "feature_names": FEATURE_NAMES,
            "classes": [r.value for r in CLASS_ORDER],
        }
        with open(path / TOPOLOGY_FILE, "w", encoding="utf-8") as f:
            json.dump(topology, f, indent=2)

        torch.save(self.network.state_dict(), path / WEIGHTS_FILE)

        logger.info(f"Regime classifier saved to {path}")
        return path

    @classmethod
    def load(
        cls,
        model_dir: Optional[str] = None,
        config: Optional[ClassifierConfig] = None,
    ) -> "RegimeClassifier":
        """
        Restore a classifier saved with save().

        Raises:
            ModelNotTrained: the artifact directory is incomplete.
        """
        config = config or ClassifierConfig.from_env()
        path = Path(model_dir or config.model_dir)
        topology_path = path / TOPOLOGY_FILE
        weights_path = path / WEIGHTS_FILE

        if not topology_path.exists() or not weights_path.exists():
            raise ModelNotTrained(f"No saved model in {path}")

        with open(topology_path, "r", encoding="utf-8") as f:
            topology = json.load(f)

        classes = topology.get("classes", [r.value for r in CLASS_ORDER])
        if classes != [r.value for r in CLASS_ORDER]:
            raise ValueError(f"Unexpected class order in {topology_path}: {classes}")

        instance = cls(config=config)
        instance.network = FeedForwardNetwork(NetworkConfig.from_dict(topology))
        instance.network.load_state_dict(
            torch.load(weights_path, map_location="cpu", weights_only=True)
        )

        logger.info(f"Regime classifier loaded from {path}")
        return instance
