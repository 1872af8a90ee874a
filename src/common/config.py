# ABOUTME: Declares tunable configuration for profiling, scoring, selection, and training.
# ABOUTME: Loads YAML configs into frozen dataclasses the same way for every component.

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml


@dataclass(frozen=True)
class ProfileConfig:
    """Profile builder thresholds."""

    min_completed: int = 10
    default_comfort_zone: float = 1.0
    comfort_min_attempts: int = 2
    comfort_reliability: float = 0.6
    trajectory_window: int = 20
    smoothing_strength: float = 2.0


@dataclass(frozen=True)
class ScoringConfig:
    """Blend weights, growth curve knots, fallback priors, and confidence levels."""

    completion_weight: float = 0.4
    enjoyment_weight: float = 0.4
    growth_weight: float = 0.2
    # (stretch, value) knots; stretch below the first knot scores zero.
    growth_knots: Tuple[Tuple[float, float], ...] = ((0.0, 0.5), (1.0, 1.0), (2.0, 0.4), (3.0, 0.0))
    category_base_rates: Mapping[str, float] = field(default_factory=dict)
    default_base_rate: float = 0.6
    enjoyment_prior: float = 0.5
    learned_confidence: float = 0.9
    heuristic_confidence: float = 0.6
    fallback_confidence: float = 0.3
    stale_discount: float = 0.7
    evidence_saturation: int = 5
    prior_strength: float = 2.0

    def base_rate(self, category: str) -> float:
        return float(self.category_base_rates.get(category, self.default_base_rate))


@dataclass(frozen=True)
class SelectionConfig:
    max_stretch: int = 2
    recent_window_days: float = 3.0
    diversity_min_pool: int = 3
    max_same_category: int = 2
    near_tie_epsilon: float = 0.02


@dataclass(frozen=True)
class TrainingConfig:
    """Retrain trigger policy, split, network shape, and promotion tolerance."""

    min_new_examples: int = 50
    max_model_age_days: float = 7.0
    min_training_examples: int = 20
    validation_fraction: float = 0.2
    promotion_tolerance: float = 0.01
    deep_units: Tuple[int, ...] = (8,)
    learning_rate: float = 0.05
    weight_decay: float = 0.0
    max_epochs: int = 200
    seed: int = 42
    check_interval_seconds: float = 600.0
    artifact_dir: Optional[str] = None


@dataclass(frozen=True)
class EngineConfig:
    profile: ProfileConfig = field(default_factory=ProfileConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    selection: SelectionConfig = field(default_factory=SelectionConfig)
    training: TrainingConfig = field(default_factory=TrainingConfig)


def _section(cls, raw: Optional[Mapping[str, Any]]):
    if raw is None:
        return cls()
    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
        raise ValueError(f"Unknown {cls.__name__} keys: {', '.join(sorted(unknown))}.")
    values: Dict[str, Any] = dict(raw)
    # YAML has no tuples; freeze list-valued settings.
    if "growth_knots" in values:
        values["growth_knots"] = tuple(tuple(float(v) for v in knot) for knot in values["growth_knots"])
    if "deep_units" in values:
        values["deep_units"] = tuple(int(v) for v in values["deep_units"])
    if "category_base_rates" in values:
        values["category_base_rates"] = dict(values["category_base_rates"] or {})
    return cls(**values)


def config_from_dict(cfg: Optional[Mapping[str, Any]]) -> EngineConfig:
    cfg = cfg or {}
    unknown = set(cfg) - {"profile", "scoring", "selection", "training"}
    if unknown:
        raise ValueError(f"Unknown config sections: {', '.join(sorted(unknown))}.")
    config = EngineConfig(
        profile=_section(ProfileConfig, cfg.get("profile")),
        scoring=_section(ScoringConfig, cfg.get("scoring")),
        selection=_section(SelectionConfig, cfg.get("selection")),
        training=_section(TrainingConfig, cfg.get("training")),
    )
    validate_config(config)
    return config


def load_config(config_path: Path) -> EngineConfig:
    """Load an engine config YAML; missing sections fall back to defaults."""

    with open(config_path) as f:
        cfg = yaml.safe_load(f)
    return config_from_dict(cfg)


def validate_config(config: EngineConfig) -> None:
    scoring = config.scoring
    weights = (scoring.completion_weight, scoring.enjoyment_weight, scoring.growth_weight)
    if any(w < 0 for w in weights) or sum(weights) <= 0:
        raise ValueError("Scoring weights must be non-negative with a positive sum.")
    stretches = [knot[0] for knot in scoring.growth_knots]
    if len(stretches) < 2 or stretches != sorted(stretches):
        raise ValueError("growth_knots needs at least two knots with increasing stretch.")
    if not 0.0 < config.training.validation_fraction < 1.0:
        raise ValueError("validation_fraction must be between 0 and 1.")
    if config.selection.max_same_category < 1:
        raise ValueError("max_same_category must be at least 1.")
    if config.profile.min_completed < 0:
        raise ValueError("min_completed must be non-negative.")
