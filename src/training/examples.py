# ABOUTME: Converts interaction history into point-in-time training rows.
# ABOUTME: Provides the chronological train/validation split used for every target.

from __future__ import annotations

from typing import Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from src.common.config import ProfileConfig, ScoringConfig
from src.common.features import FEATURE_NAMES, candidate_features
from src.common.schemas import InteractionRecord
from src.profiling.profile_builder import ProfileAccumulator

LABEL_COLUMNS = ["record_id", "assigned_at", "category", "completed", "rating"]


def build_training_frame(
    history: Iterable[InteractionRecord],
    profile_config: Optional[ProfileConfig] = None,
    scoring_config: Optional[ScoringConfig] = None,
) -> pd.DataFrame:
    """
    Convert terminal interaction records into one training row each.

    Features for record i come from the profile of the records before i, so a
    row never sees its own outcome or anything after it. Label columns:
    ``completed`` (0/1) and ``rating`` (NaN when unrated).
    """

    profile_config = profile_config or ProfileConfig()
    scoring_config = scoring_config or ScoringConfig()

    accumulator = ProfileAccumulator(profile_config)
    rows: List[dict] = []
    vectors: List[np.ndarray] = []
    for record in history:
        if not record.is_terminal:
            continue
        past = accumulator.snapshot(enforce_minimum=False)
        vectors.append(candidate_features(past, record.attributes, record.assigned_at, scoring_config))
        rows.append(
            {
                "record_id": record.record_id,
                "assigned_at": record.assigned_at,
                "category": record.category,
                "completed": int(record.completed),
                "rating": float(record.rating) if record.rating is not None else np.nan,
            }
        )
        accumulator.add(record)

    if not rows:
        return pd.DataFrame(columns=LABEL_COLUMNS + list(FEATURE_NAMES))

    frame = pd.DataFrame(rows)
    features = pd.DataFrame(np.vstack(vectors), columns=list(FEATURE_NAMES))
    return pd.concat([frame, features], axis=1)


def chronological_split(frame: pd.DataFrame, validation_fraction: float) -> Tuple[pd.DataFrame, pd.DataFrame]:
    """Oldest rows train, newest rows validate; both sides keep at least one row."""

    if len(frame) < 2:
        raise ValueError("Need at least two rows to split.")
    ordered = frame.sort_values("assigned_at", kind="mergesort")
    n_val = min(len(ordered) - 1, max(1, int(round(len(ordered) * validation_fraction))))
    return ordered.iloc[: len(ordered) - n_val], ordered.iloc[len(ordered) - n_val :]


def feature_matrix(frame: pd.DataFrame) -> np.ndarray:
    return frame[list(FEATURE_NAMES)].to_numpy(dtype=np.float32)
