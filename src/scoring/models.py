# ABOUTME: Declares prediction targets, model lifecycle states, and the torch preference network.
# ABOUTME: Provides one fit routine and checkpoint save/load shared by every target.

from __future__ import annotations

import os
import pickle
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import torch
from torch import nn

from src.common.config import TrainingConfig
from src.common.errors import ModelUnavailable, TrainingCancelled
from src.common.features import FEATURE_NAMES

TIMING_FEATURES = ("hour_affinity", "weekday_affinity", "hour_sin", "hour_cos", "streak", "experience")


class PredictionTarget(str, Enum):
    """
    The three learned predictions. Each variant knows its label, feature
    columns, and whether it is a binary or a regression problem, so a single
    training and validation routine serves all of them.
    """

    COMPLETION = "completion"
    ENJOYMENT = "enjoyment"
    TIMING = "timing"

    @property
    def binary(self) -> bool:
        return self is not PredictionTarget.ENJOYMENT

    @property
    def feature_names(self) -> Tuple[str, ...]:
        if self is PredictionTarget.TIMING:
            return TIMING_FEATURES
        return FEATURE_NAMES

    @property
    def metric_name(self) -> str:
        return "1-brier" if self.binary else "1-mae"

    def labeled(self, frame: pd.DataFrame) -> pd.DataFrame:
        """Rows of a training frame that carry a label for this target."""
        if self is PredictionTarget.ENJOYMENT:
            return frame[(frame["completed"] == 1) & frame["rating"].notna()]
        return frame

    def labels(self, frame: pd.DataFrame) -> np.ndarray:
        if self is PredictionTarget.ENJOYMENT:
            return ((frame["rating"].to_numpy(dtype=np.float32) - 1.0) / 4.0).astype(np.float32)
        return frame["completed"].to_numpy(dtype=np.float32)

    def select(self, features: np.ndarray) -> np.ndarray:
        """Pick this target's columns from full FEATURE_NAMES vectors."""
        if self.feature_names == FEATURE_NAMES:
            return features
        columns = [FEATURE_NAMES.index(name) for name in self.feature_names]
        return features[..., columns]


class ModelState(str, Enum):
    UNTRAINED = "untrained"
    TRAINED = "trained"
    DEPLOYED = "deployed"
    STALE = "stale"
    RETRAINING = "retraining"
    ROLLED_BACK = "rolled_back"


class PreferenceNet(nn.Module):
    """Small MLP with a sigmoid head; predictions live in [0, 1] for every target."""

    def __init__(self, n_features: int, deep_units: Sequence[int] = (8,)) -> None:
        super().__init__()
        layers = []
        in_dim = n_features
        for units in deep_units:
            layers.append(nn.Linear(in_dim, units))
            layers.append(nn.ReLU())
            in_dim = units
        layers.append(nn.Linear(in_dim, 1))
        self.layers = nn.Sequential(*layers)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        return torch.sigmoid(self.layers(x)).squeeze(-1)


@dataclass(frozen=True)
class ModelArtifact:
    """An immutable trained model for one target."""

    target: PredictionTarget
    version: int
    trained_at: datetime
    validation_metric: float
    n_train: int
    n_val: int
    deep_units: Tuple[int, ...]
    network: PreferenceNet = field(compare=False, repr=False)
    extra_metrics: Dict[str, float] = field(default_factory=dict, compare=False)

    def predict(self, features: np.ndarray) -> np.ndarray:
        """Predict from full FEATURE_NAMES vectors (one row or a batch)."""
        x = np.atleast_2d(self.target.select(np.asarray(features, dtype=np.float32)))
        with torch.no_grad():
            return self.network(torch.from_numpy(np.ascontiguousarray(x))).numpy().astype(float)


def fit_network(
    target: PredictionTarget,
    features: np.ndarray,
    labels: np.ndarray,
    config: TrainingConfig,
    cancel_event=None,
) -> PreferenceNet:
    """
    Fit a fresh network with full-batch Adam.

    ``features`` are full FEATURE_NAMES vectors. ``cancel_event`` (anything
    with ``is_set()``) is checked between epochs; a set event raises
    TrainingCancelled and the half-trained network is dropped.
    """

    torch.manual_seed(config.seed)
    x = torch.from_numpy(np.ascontiguousarray(target.select(features).astype(np.float32)))
    y = torch.from_numpy(labels.astype(np.float32))

    network = PreferenceNet(x.shape[1], config.deep_units)
    optimizer = torch.optim.Adam(network.parameters(), lr=config.learning_rate, weight_decay=config.weight_decay)
    criterion = nn.BCELoss() if target.binary else nn.MSELoss()

    network.train()
    for _ in range(config.max_epochs):
        if cancel_event is not None and cancel_event.is_set():
            raise TrainingCancelled(f"{target.value} training cancelled")
        optimizer.zero_grad()
        loss = criterion(network(x), y)
        loss.backward()
        optimizer.step()
    network.eval()
    return network


def save_artifact(artifact: ModelArtifact, path: Path) -> None:
    """Write a checkpoint atomically: temp file in the same directory, then replace."""

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    checkpoint = {
        "target": artifact.target.value,
        "version": artifact.version,
        "trained_at": artifact.trained_at.isoformat(),
        "validation_metric": artifact.validation_metric,
        "n_train": artifact.n_train,
        "n_val": artifact.n_val,
        "deep_units": list(artifact.deep_units),
        "n_features": len(artifact.target.feature_names),
        "extra_metrics": dict(artifact.extra_metrics),
        "model_state_dict": artifact.network.state_dict(),
    }
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}-", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            torch.save(checkpoint, f)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def load_artifact(path: Path, expected: Optional[PredictionTarget] = None) -> ModelArtifact:
    """Load a checkpoint; any failure surfaces as ModelUnavailable."""

    path = Path(path)
    try:
        checkpoint = torch.load(path, map_location="cpu", weights_only=True)
        target = PredictionTarget(checkpoint["target"])
        if expected is not None and target is not expected:
            raise ValueError(f"checkpoint holds {target.value}, expected {expected.value}")
        if checkpoint["n_features"] != len(target.feature_names):
            raise ValueError("feature layout changed since the checkpoint was written")
        deep_units = tuple(int(u) for u in checkpoint["deep_units"])
        network = PreferenceNet(checkpoint["n_features"], deep_units)
        network.load_state_dict(checkpoint["model_state_dict"])
        network.eval()
        return ModelArtifact(
            target=target,
            version=int(checkpoint["version"]),
            trained_at=datetime.fromisoformat(checkpoint["trained_at"]),
            validation_metric=float(checkpoint["validation_metric"]),
            n_train=int(checkpoint["n_train"]),
            n_val=int(checkpoint["n_val"]),
            deep_units=deep_units,
            network=network,
            extra_metrics=dict(checkpoint.get("extra_metrics", {})),
        )
    except (OSError, KeyError, ValueError, RuntimeError, EOFError, pickle.UnpicklingError) as exc:
        raise ModelUnavailable(f"Could not load model artifact {path}: {exc}") from exc
