# ABOUTME: Defines canonical data structures shared by every engine component.
# ABOUTME: Centralizes interaction, candidate, profile, and scoring schema definitions.

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import CorruptCandidateAttributes

MIN_DIFFICULTY = 1
MAX_DIFFICULTY = 5
ATTRIBUTE_CLASSES = ("time_investment", "social_requirement", "cost", "location")


class Outcome(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    EXPIRED = "expired"


@dataclass(frozen=True)
class CandidateAttributes:
    """Static descriptor of a catalog challenge."""

    candidate_id: str
    category: str
    difficulty: int
    time_investment: str = "medium"
    social_requirement: str = "solo"
    cost: str = "free"
    location: str = "anywhere"
    tags: Tuple[str, ...] = ()
    content_hash: Optional[str] = None

    def attribute(self, name: str) -> str:
        return getattr(self, name)


@dataclass(frozen=True)
class InteractionRecord:
    """One assigned challenge and, once the user acted, its terminal outcome."""

    record_id: str
    attributes: CandidateAttributes
    assigned_at: datetime
    outcome: Optional[Outcome] = None
    rating: Optional[int] = None
    completion_minutes: Optional[float] = None
    photo_captured: Optional[bool] = None
    shared: Optional[bool] = None

    def __post_init__(self) -> None:
        if self.assigned_at.tzinfo is None or self.assigned_at.utcoffset() is None:
            raise ValueError(f"Record '{self.record_id}' has a naive assigned_at; attach a timezone.")

    @property
    def candidate_id(self) -> str:
        return self.attributes.candidate_id

    @property
    def category(self) -> str:
        return self.attributes.category

    @property
    def difficulty(self) -> int:
        return self.attributes.difficulty

    @property
    def is_terminal(self) -> bool:
        return self.outcome is not None

    @property
    def completed(self) -> bool:
        return self.outcome is Outcome.COMPLETED

    def with_outcome(
        self,
        outcome: Outcome,
        rating: Optional[int] = None,
        completion_minutes: Optional[float] = None,
        photo_captured: Optional[bool] = None,
        shared: Optional[bool] = None,
    ) -> "InteractionRecord":
        """Return the terminal version of a pending record; terminal records cannot change."""
        if self.outcome is not None:
            raise ValueError(f"Record '{self.record_id}' already has outcome '{self.outcome.value}'.")
        if rating is not None and not 1 <= rating <= 5:
            raise ValueError(f"Rating must be between 1 and 5, got {rating}.")
        return replace(
            self,
            outcome=Outcome(outcome),
            rating=rating,
            completion_minutes=completion_minutes,
            photo_captured=photo_captured,
            shared=shared,
        )


@dataclass(frozen=True)
class CategoryStats:
    attempts: int
    completed: int
    completion_rate: float
    mean_rating: Optional[float]
    rated: int = 0


@dataclass(frozen=True)
class UserProfile:
    """Derived, rebuildable snapshot of a user's preferences and behavior."""

    version: int
    rebuilt_at: Optional[datetime]
    insufficient_data: bool
    history_length: int
    total_completed: int
    comfort_zone: float
    growth_trajectory: float
    current_streak: int
    longest_streak: int
    days_since_first: int
    hour_histogram: Tuple[float, ...]
    weekday_histogram: Tuple[float, ...]
    category_stats: Mapping[str, CategoryStats] = field(default_factory=dict)
    attribute_preferences: Mapping[str, Mapping[str, float]] = field(default_factory=dict)

    def content_key(self) -> Tuple[Any, ...]:
        """Everything that is a function of history alone (version and timestamp excluded)."""
        return (
            self.insufficient_data,
            self.history_length,
            self.total_completed,
            self.comfort_zone,
            self.growth_trajectory,
            self.current_streak,
            self.longest_streak,
            self.days_since_first,
            self.hour_histogram,
            self.weekday_histogram,
            tuple(sorted(self.category_stats.items())),
            tuple(
                (name, tuple(sorted(values.items())))
                for name, values in sorted(self.attribute_preferences.items())
            ),
        )


@dataclass(frozen=True)
class TimingContext:
    """Optional external enrichment for a calendar day."""

    season: Optional[str] = None
    weather: Optional[str] = None


@dataclass(frozen=True)
class TemporalPatterns:
    hour_histogram: Tuple[float, ...]
    weekday_histogram: Tuple[float, ...]
    preferred_hours: Tuple[int, ...]
    preferred_weekdays: Tuple[int, ...]
    current_streak: int
    longest_streak: int
    active_day_ratio: float
    streak_quality: float
    weekday_completion_rates: Mapping[int, float] = field(default_factory=dict)
    season_completion_rates: Mapping[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class ScoredCandidate:
    """Per-request scoring result; never persisted."""

    candidate_id: str
    category: str
    difficulty: int
    completion_probability: float
    enjoyment: float
    growth_potential: float
    score: float
    confidence: float
    source: str


@dataclass(frozen=True)
class NoEligibleCandidate:
    """Returned instead of a candidate id when constraints remove the entire pool."""

    reason: str
    pool_size: int = 0

    def __bool__(self) -> bool:
        return False


def parse_candidate(raw: Any) -> CandidateAttributes:
    """
    Validate a catalog entry into CandidateAttributes.

    Accepts an existing CandidateAttributes or a mapping with at least
    candidate_id, category, and difficulty. Raises CorruptCandidateAttributes
    for anything that cannot be trusted.
    """

    if isinstance(raw, CandidateAttributes):
        candidate = raw
    elif isinstance(raw, Mapping):
        try:
            candidate_id = raw["candidate_id"]
            category = raw["category"]
            difficulty = raw["difficulty"]
        except KeyError as exc:
            raise CorruptCandidateAttributes(f"Catalog entry missing field {exc.args[0]!r}.") from exc
        if isinstance(difficulty, bool):
            raise CorruptCandidateAttributes(f"Candidate {candidate_id!r} has a boolean difficulty.")
        try:
            numeric = float(difficulty)
        except (TypeError, ValueError) as exc:
            raise CorruptCandidateAttributes(
                f"Candidate {candidate_id!r} has non-numeric difficulty {difficulty!r}."
            ) from exc
        if not math.isfinite(numeric) or numeric != int(numeric):
            raise CorruptCandidateAttributes(f"Candidate {candidate_id!r} has non-integral difficulty {difficulty!r}.")
        optional: Dict[str, Any] = {
            name: str(raw[name]) for name in ATTRIBUTE_CLASSES if raw.get(name) not in (None, "")
        }
        tags = raw.get("tags") or ()
        if isinstance(tags, str):
            tags = tuple(t.strip() for t in tags.split(",") if t.strip())
        elif not isinstance(tags, (list, tuple)):
            tags = ()
        candidate = CandidateAttributes(
            candidate_id=str(candidate_id),
            category=str(category) if category is not None else "",
            difficulty=int(numeric),
            tags=tuple(str(t) for t in tags),
            content_hash=raw.get("content_hash"),
            **optional,
        )
    else:
        raise CorruptCandidateAttributes(f"Unsupported catalog entry type {type(raw).__name__}.")

    if not candidate.candidate_id:
        raise CorruptCandidateAttributes("Catalog entry has an empty candidate_id.")
    if not candidate.category:
        raise CorruptCandidateAttributes(f"Candidate {candidate.candidate_id!r} has an empty category.")
    if not MIN_DIFFICULTY <= candidate.difficulty <= MAX_DIFFICULTY:
        raise CorruptCandidateAttributes(
            f"Candidate {candidate.candidate_id!r} difficulty {candidate.difficulty} outside 1-5."
        )
    return candidate
