"""
Market Regime Classification

Classifies a 270-day BTC window as uptrend, downtrend or sideways:
    features.py   - 9-value feature vector per window
    network.py    - torch feed-forward network
    classifier.py - training, post-processing, confidence, persistence
    labels.py     - hand-labeled training periods
"""

from regime.classifier import (
    ClassifierConfig,
    ModelNotTrained,
    RegimeClassifier,
    RegimePrediction,
    calculate_confidence,
)
from regime.features import FeatureConfig, FeatureExtractor
from regime.labels import DEFAULT_LABELED_PERIODS, LabeledPeriod, Regime

__all__ = [
    "ClassifierConfig",
    "ModelNotTrained",
    "RegimeClassifier",
    "RegimePrediction",
    "calculate_confidence",
    "FeatureConfig",
    "FeatureExtractor",
    "DEFAULT_LABELED_PERIODS",
    "LabeledPeriod",
    "Regime",
]
