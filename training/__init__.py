"""Training module for the regime classifier."""

from training.regime_training import (
    RegimeTrainingConfig,
    RegimeTrainingPipeline,
    RegimeTrainingResult,
    train_regime_classifier,
)

__all__ = [
    "RegimeTrainingConfig",
    "RegimeTrainingPipeline",
    "RegimeTrainingResult",
    "train_regime_classifier",
]
