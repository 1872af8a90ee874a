# ABOUTME: Builds the profile x candidate feature vectors shared by serving and training.
# ABOUTME: Also hosts the smoothed category priors used by heuristic scoring.

from __future__ import annotations

import math
from datetime import datetime
from typing import Sequence

import numpy as np

from .config import ScoringConfig
from .schemas import (
    ATTRIBUTE_CLASSES,
    MAX_DIFFICULTY,
    MIN_DIFFICULTY,
    CandidateAttributes,
    UserProfile,
)

FEATURE_NAMES = (
    "category_completion",
    "category_enjoyment",
    "category_experience",
    "pref_time_investment",
    "pref_social_requirement",
    "pref_cost",
    "pref_location",
    "difficulty",
    "stretch",
    "growth_trajectory",
    "hour_affinity",
    "weekday_affinity",
    "hour_sin",
    "hour_cos",
    "streak",
    "experience",
)

_DIFFICULTY_SPAN = float(MAX_DIFFICULTY - MIN_DIFFICULTY)


def smoothed_completion(profile: UserProfile, category: str, config: ScoringConfig) -> float:
    """Category completion rate pulled toward the category base rate."""

    base = config.base_rate(category)
    stats = profile.category_stats.get(category)
    if stats is None:
        return base
    strength = config.prior_strength
    return (stats.completed + strength * base) / (stats.attempts + strength)


def smoothed_enjoyment(profile: UserProfile, category: str, config: ScoringConfig) -> float:
    """Mean category rating pulled toward a neutral rating, normalized to 0-1."""

    stats = profile.category_stats.get(category)
    if stats is None or not stats.rated or stats.mean_rating is None:
        return config.enjoyment_prior
    strength = config.prior_strength
    prior_rating = 1.0 + config.enjoyment_prior * 4.0
    rating = (stats.mean_rating * stats.rated + strength * prior_rating) / (stats.rated + strength)
    return (rating - 1.0) / 4.0


def candidate_features(
    profile: UserProfile,
    candidate: CandidateAttributes,
    when: datetime,
    config: ScoringConfig,
) -> np.ndarray:
    """Encode one (profile, candidate, time) triple; column order follows FEATURE_NAMES."""

    category = candidate.category
    stats = profile.category_stats.get(category)
    attempts = stats.attempts if stats is not None else 0

    preferences = []
    for name in ATTRIBUTE_CLASSES:
        values = profile.attribute_preferences.get(name, {})
        preferences.append(values.get(candidate.attribute(name), config.base_rate(category)))

    hour_affinity = _relative(profile.hour_histogram, when.hour)
    weekday_affinity = _relative(profile.weekday_histogram, when.weekday())
    angle = 2.0 * math.pi * when.hour / 24.0

    return np.array(
        [
            smoothed_completion(profile, category, config),
            smoothed_enjoyment(profile, category, config),
            min(1.0, math.log1p(attempts) / math.log1p(20)),
            *preferences,
            (candidate.difficulty - MIN_DIFFICULTY) / _DIFFICULTY_SPAN,
            (candidate.difficulty - profile.comfort_zone) / _DIFFICULTY_SPAN,
            float(np.clip(profile.growth_trajectory / 2.0, -1.0, 1.0)),
            hour_affinity,
            weekday_affinity,
            math.sin(angle),
            math.cos(angle),
            min(1.0, profile.current_streak / 7.0),
            min(1.0, math.log1p(profile.total_completed) / math.log1p(100)),
        ],
        dtype=np.float32,
    )


def _relative(histogram: Sequence[float], index: int) -> float:
    peak = max(histogram) if histogram else 0.0
    if peak <= 0.0:
        return 0.0
    return float(histogram[index] / peak)
