# ABOUTME: Scores challenge candidates for a profile: completion, enjoyment, growth, confidence.
# ABOUTME: Falls back to base rates or profile heuristics when models or data are missing.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from src.common.config import ScoringConfig
from src.common.console import warn
from src.common.errors import CorruptCandidateAttributes, ModelUnavailable
from src.common.features import candidate_features, smoothed_completion, smoothed_enjoyment
from src.common.schemas import (
    CandidateAttributes,
    ScoredCandidate,
    UserProfile,
    parse_candidate,
)

from .models import ModelArtifact, PredictionTarget

LEARNED = "learned"
HEURISTIC = "heuristic"
FALLBACK = "fallback"


@dataclass(frozen=True)
class ScoringContext:
    now: datetime


def growth_potential(stretch: float, knots: Sequence[Tuple[float, float]]) -> float:
    """
    Piecewise-linear reward for stretching past the comfort zone.

    Zero below the first knot, linear between knots, and flat at the last
    knot's value beyond it. The default knots peak at +1 step and fall to
    zero at +3.
    """

    xs = [k[0] for k in knots]
    ys = [k[1] for k in knots]
    if stretch < xs[0]:
        return 0.0
    return float(np.interp(stretch, xs, ys))


class CandidateScorer:
    """
    Produces ScoredCandidate values from a profile and a candidate pool.

    ``registry`` is anything with ``deployed(target)`` (raising
    ModelUnavailable when nothing is deployed) and ``slot(target).stale``,
    normally the training ModelRegistry.
    """

    def __init__(self, registry: Any, config: Optional[ScoringConfig] = None) -> None:
        self.registry = registry
        self.config = config or ScoringConfig()
        self.fallback_active = True

    def score(
        self,
        profile: UserProfile,
        candidates: Iterable[Any],
        context: ScoringContext,
    ) -> List[ScoredCandidate]:
        pool = self._parse(candidates)
        if not pool:
            self.fallback_active = self._active_source(profile) != LEARNED
            return []

        if profile.insufficient_data:
            completion, completion_conf = self._fallback_completion(pool), self.config.fallback_confidence
            enjoyment, enjoyment_conf = np.full(len(pool), self.config.enjoyment_prior), self.config.fallback_confidence
            sources = {FALLBACK}
        else:
            features = np.vstack([candidate_features(profile, c, context.now, self.config) for c in pool])
            completion, completion_conf, completion_source = self._predict(
                PredictionTarget.COMPLETION, features, [smoothed_completion(profile, c.category, self.config) for c in pool]
            )
            enjoyment, enjoyment_conf, enjoyment_source = self._predict(
                PredictionTarget.ENJOYMENT, features, [smoothed_enjoyment(profile, c.category, self.config) for c in pool]
            )
            sources = {completion_source, enjoyment_source}

        source = FALLBACK if FALLBACK in sources else HEURISTIC if HEURISTIC in sources else LEARNED
        self.fallback_active = source != LEARNED
        base_confidence = (completion_conf + enjoyment_conf) / 2.0

        cfg = self.config
        scored = []
        for i, candidate in enumerate(pool):
            growth = growth_potential(candidate.difficulty - profile.comfort_zone, cfg.growth_knots)
            stats = profile.category_stats.get(candidate.category)
            evidence = min(1.0, (stats.attempts if stats is not None else 0) / max(1, cfg.evidence_saturation))
            c, e = float(np.clip(completion[i], 0.0, 1.0)), float(np.clip(enjoyment[i], 0.0, 1.0))
            scored.append(
                ScoredCandidate(
                    candidate_id=candidate.candidate_id,
                    category=candidate.category,
                    difficulty=candidate.difficulty,
                    completion_probability=c,
                    enjoyment=e,
                    growth_potential=growth,
                    score=cfg.completion_weight * c + cfg.enjoyment_weight * e + cfg.growth_weight * growth,
                    confidence=base_confidence * (0.5 + 0.5 * evidence),
                    source=source,
                )
            )
        return scored

    def _parse(self, candidates: Iterable[Any]) -> List[CandidateAttributes]:
        pool = []
        seen = set()
        for raw in candidates:
            try:
                candidate = parse_candidate(raw)
            except CorruptCandidateAttributes as exc:
                warn("scorer", f"skipping corrupt candidate: {exc}")
                continue
            if candidate.candidate_id in seen:
                warn("scorer", f"skipping duplicate candidate {candidate.candidate_id!r}")
                continue
            seen.add(candidate.candidate_id)
            pool.append(candidate)
        return pool

    def _active_source(self, profile: UserProfile) -> str:
        """The source a non-empty pool would be scored from right now."""

        if profile.insufficient_data:
            return FALLBACK
        for target in (PredictionTarget.COMPLETION, PredictionTarget.ENJOYMENT):
            try:
                self.registry.deployed(target)
            except ModelUnavailable:
                return HEURISTIC
        return LEARNED

    def _fallback_completion(
self, pool: Sequence[CandidateAttributes]) -> np.ndarray:
        return np.array([self.config.base_rate(c.category) for c in pool], dtype=float)

    def _predict(
        self,
        target: PredictionTarget,
        features: np.ndarray,
        heuristic: Sequence[float],
    ) -> Tuple[np.ndarray, float, str]:
        """Learned predictions when a model is deployed, otherwise the profile heuristic."""

        try:
            artifact: ModelArtifact = self.registry.deployed(target)
        except ModelUnavailable:
            return np.asarray(heuristic, dtype=float), self.config.heuristic_confidence, HEURISTIC

        confidence = self.config.learned_confidence
        if self.registry.slot(target).stale:
            confidence *= self.config.stale_discount
        return artifact.predict(features), confidence, LEARNED
