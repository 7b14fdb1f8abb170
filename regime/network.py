"""
Feed-Forward Network

Small dense classifier built on torch:

    Linear(9 → 16, He-normal) → ReLU → Dropout(0.2)
    → Linear(16 → 8) → ReLU → Linear(8 → 3)

The model emits logits. Training uses CrossEntropyLoss and Adam over a
shuffled DataLoader; predict_proba applies softmax.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np
import torch
import torch.nn as nn
from sklearn.model_selection import train_test_split
from torch.utils.data import DataLoader, TensorDataset

import structlog

logger = structlog.get_logger()


@dataclass
class NetworkConfig:
    """Topology and optimiser settings."""

    layer_sizes: List[int] = field(default_factory=lambda: [9, 16, 8, 3])
    dropout: float = 0.2  # Applied after the first hidden layer only
    learning_rate: float = 1e-3
    beta1: float = 0.9
    beta2: float = 0.999
    seed: Optional[int] = None

    def to_dict(self) -> Dict:
        return {
            "layer_sizes": list(self.layer_sizes),
            "dropout": self.dropout,
            "learning_rate": self.learning_rate,
            "beta1": self.beta1,
            "beta2": self.beta2,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "NetworkConfig":
        return cls(
            layer_sizes=list(data["layer_sizes"]),
            dropout=data.get("dropout", 0.2),
            learning_rate=data.get("learning_rate", 1e-3),
            beta1=data.get("beta1", 0.9),
            beta2=data.get("beta2", 0.999),
        )


@dataclass
class TrainingHistory:
    """Per-epoch metrics."""

    loss: List[float] = field(default_factory=list)
    accuracy: List[float] = field(default_factory=list)
    val_loss: List[float] = field(default_factory=list)
    val_accuracy: List[float] = field(default_factory=list)

    @property
    def epochs(self) -> int:
        return len(self.loss)

    def to_dict(self) -> Dict[str, List[float]]:
        return {
            "loss": self.loss,
            "accuracy": self.accuracy,
            "val_loss": self.val_loss,
            "val_accuracy": self.val_accuracy,
        }


def build_model(config: NetworkConfig) -> nn.Sequential:
    """Dense ReLU stack with dropout after the first hidden layer."""
    sizes = config.layer_sizes
    if len(sizes) < 2:
        raise ValueError(f"Need at least input and output sizes, got {sizes}")

    layers: List[nn.Module] = []
    last = len(sizes) - 2
    for i, (fan_in, fan_out) in enumerate(zip(sizes[:-1], sizes[1:])):
        linear = nn.Linear(fan_in, fan_out)
        nn.init.kaiming_normal_(linear.weight, nonlinearity="relu")
        nn.init.zeros_(linear.bias)
        layers.append(linear)
        if i == last:
            break
        layers.append(nn.ReLU())
        if i == 0 and config.dropout > 0:
            layers.append(nn.Dropout(config.dropout))

    return nn.Sequential(*layers)


class FeedForwardNetwork:
    """
    Wrapper around the torch model with a numpy interface.

    Usage:
        net = FeedForwardNetwork(NetworkConfig(seed=42))
        history = net.fit(X, class_indices, epochs=100)
        probs = net.predict_proba(X)
    """

    def __init__(self, config: Optional[NetworkConfig] = None):
        self.config = config or NetworkConfig()
        self.generator = torch.Generator()
        if self.config.seed is not None:
            torch.manual_seed(self.config.seed)
            self.generator.manual_seed(self.config.seed)
        else:
            self.generator.seed()

        self.model = build_model(self.config)
        self.loss_fn = nn.CrossEntropyLoss()

    @property
    def input_size(self) -> int:
        return self.config.layer_sizes[0]

    @property
    def num_classes(self) -> int:
        return self.config.layer_sizes[-1]

    def _evaluate(self, X: torch.Tensor, y: torch.Tensor):
        self.model.eval()
        with torch.no_grad():
            logits = self.model(X)
            loss = float(self.loss_fn(logits, y))
            acc = float((logits.argmax(dim=1) == y).float().mean()) if len(y) else 0.0
        return loss, acc

    # =========================================================================
    # TRAINING
    # =========================================================================

    def fit(
        self,
        X: np.ndarray,
        y: np.ndarray,
        epochs: int = 100,
        batch_size: int = 32,
        validation_split: float = 0.2,
        shuffle: bool = True,
    ) -> TrainingHistory:
        """
        Train on class indices y (0-based).

        Args:
            X: Feature matrix (n, input_size).
            y: Class indices (n,).
            epochs: Passes over the training split.
            batch_size: Mini-batch size.
            validation_split: Trailing fraction held out for val_loss/val_accuracy.
            shuffle: Shuffle the training split each epoch.
        """
        X = np.asarray(X, dtype=np.float32)
        y = np.asarray(y, dtype=np.int64)
        if X.ndim != 2 or X.shape[1] != self.input_size:
            raise ValueError(f"Expected features of shape (n, {self.input_size}), got {X.shape}")
        if len(X) != len(y):
            raise ValueError(f"{len(X)} samples but {len(y)} labels")
        if len(X) == 0:
            raise ValueError("Cannot fit on an empty dataset")
        if y.min() < 0 or y.max() >= self.num_classes:
            raise ValueError(f"Class indices must lie in [0, {self.num_classes})")

        X_val = y_val = None
        if validation_split > 0 and len(X) >= 5:
            X, X_val, y, y_val = train_test_split(
                X,
                y,
                test_size=validation_split,
                shuffle=False,
            )
            X_val = torch.from_numpy(X_val)
            y_val = torch.from_numpy(y_val)

        X_train = torch.from_numpy(X)
        y_train = torch.from_numpy(y)
        loader = DataLoader(
            TensorDataset(X_train, y_train),
            batch_size=batch_size,
            shuffle=shuffle,
            generator=self.generator,
        )
        optimizer = torch.optim.Adam(
            self.model.parameters(),
            lr=self.config.learning_rate,
            betas=(self.config.beta1, self.config.beta2),
        )

        history = TrainingHistory()

        for epoch in range(epochs):
            self.model.train()
            for batch_X, batch_y in loader:
                optimizer.zero_grad()
                loss = self.loss_fn(self.model(batch_X), batch_y)
                loss.backward()
                optimizer.step()

            train_loss, train_acc = self._evaluate(X_train, y_train)
            history.loss.append(train_loss)
            history.accuracy.append(train_acc)

            if X_val is not None:
                val_loss, val_acc = self._evaluate(X_val, y_val)
                history.val_loss.append(val_loss)
                history.val_accuracy.append(val_acc)

            logger.debug(
                f"Epoch {epoch + 1}",
                loss=round(history.loss[-1], 4),
                accuracy=round(history.accuracy[-1], 4),
                val_loss=round(history.val_loss[-1], 4) if history.val_loss else None,
                val_accuracy=round(history.val_accuracy[-1], 4) if history.val_accuracy else None,
            )

        self.model.eval()
        return history

    # =========================================================================
    # INFERENCE
    # =========================================================================

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        X = np.atleast_2d(np.asarray(X, dtype=np.float32))
        self.model.eval()
        with torch.no_grad():
            probs = torch.softmax(self.model(torch.from_numpy(X)), dim=1)
        return probs.numpy().astype(np.float64)

    def state_dict(self) -> Dict[str, torch.Tensor]:
        return self.model.state_dict()

    def load_state_dict(self, state: Dict[str, torch.Tensor]) -> None:
        """Restore parameters; a topology mismatch raises ValueError."""
        try:
            self.model.load_state_dict(state)
        except RuntimeError as e:
            raise ValueError(f"Weights do not match topology {self.config.layer_sizes}: {e}") from e
        self.model.eval()
