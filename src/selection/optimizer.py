# ABOUTME: Turns scored candidates into a ranked shortlist under comfort and diversity constraints.
# ABOUTME: Applies the hard difficulty bound, recent-category exclusion, ranking, and category quota.

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, FrozenSet, Iterable, List, Sequence

from src.common.config import SelectionConfig
from src.common.schemas import InteractionRecord, ScoredCandidate, UserProfile


@dataclass(frozen=True)
class SelectionConstraints:
    comfort_zone: float
    recent_categories: FrozenSet[str] = frozenset()
    max_stretch: int = 2
    diversity_min_pool: int = 3
    max_same_category: int = 2
    near_tie_epsilon: float = 0.02

    @property
    def difficulty_ceiling(self) -> float:
        return self.comfort_zone + self.max_stretch

    @classmethod
    def from_profile(
        cls,
        profile: UserProfile,
        history: Iterable[InteractionRecord],
        config: SelectionConfig,
        now: datetime,
    ) -> "SelectionConstraints":
        """Recent categories are those of any record assigned within the exclusion window."""

        window_start = now - timedelta(days=config.recent_window_days)
        recent = frozenset(r.category for r in history if window_start <= r.assigned_at <= now)
        return cls(
            comfort_zone=profile.comfort_zone,
            recent_categories=recent,
            max_stretch=config.max_stretch,
            diversity_min_pool=config.diversity_min_pool,
            max_same_category=config.max_same_category,
            near_tie_epsilon=config.near_tie_epsilon,
        )


def eligible(scored: Iterable[ScoredCandidate], constraints: SelectionConstraints) -> List[ScoredCandidate]:
    """Apply the hard comfort bound, then the recent-category exclusion with its escape valve."""

    bounded = [c for c in scored if c.difficulty <= constraints.difficulty_ceiling]
    fresh = [c for c in bounded if c.category not in constraints.recent_categories]
    if len(fresh) < constraints.diversity_min_pool:
        return bounded
    return fresh


def rank_key(candidate: ScoredCandidate, near_tie_epsilon: float):
    """
    Score descending, but scores in the same epsilon-wide bucket count as a
    near-tie and are ordered by confidence first. Candidate id breaks any
    remaining tie.

    Buckets are fixed at ``floor(score / epsilon)`` so the key stays a total
    order. Two scores closer than epsilon that straddle a bucket edge are
    therefore ranked by score alone.
    """

    bucket = math.floor(candidate.score / near_tie_epsilon) if near_tie_epsilon > 0 else candidate.score
    return (-bucket, -candidate.confidence, -candidate.score, candidate.candidate_id)


def rank(scored: Iterable[ScoredCandidate], constraints: SelectionConstraints) -> List[ScoredCandidate]:
    return sorted(eligible(scored, constraints), key=lambda c: rank_key(c, constraints.near_tie_epsilon))


def apply_diversity_quota(ranked: Sequence[ScoredCandidate], k: int, max_same_category: int) -> List[ScoredCandidate]:
    """
    Single forward pass: a candidate whose category already fills its quota is
    deferred and the next best off-category candidate takes its place.

    When at least ``max_same_category + 1`` categories are eligible the quota
    is strict and the result may be shorter than k. With fewer categories the
    quota cannot be met anyway, so deferred candidates backfill in rank order.
    """

    chosen: List[ScoredCandidate] = []
    deferred: List[ScoredCandidate] = []
    counts: Dict[str, int] = {}
    for candidate in ranked:
        if len(chosen) == k:
            break
        if counts.get(candidate.category, 0) < max_same_category:
            chosen.append(candidate)
            counts[candidate.category] = counts.get(candidate.category, 0) + 1
        else:
            deferred.append(candidate)

    if len({c.category for c in ranked}) > max_same_category:
        return chosen
    for candidate in deferred:
        if len(chosen) == k:
            break
        chosen.append(candidate)
    return chosen


def select(scored: Iterable[ScoredCandidate], constraints: SelectionConstraints, k: int) -> List[str]:
    """Ordered ids of at most k candidates; fewer when the pool or the category quota runs out."""

    if k <= 0:
        return []
    ranked = rank(scored, constraints)
    return [c.candidate_id for c in apply_diversity_quota(ranked, k, constraints.max_same_category)]
