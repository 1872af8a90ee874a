# ABOUTME: Turns an ordered interaction history into a versioned UserProfile snapshot.
# ABOUTME: Maintains an incremental accumulator and supports full rebuilds for consistency checks.

from __future__ import annotations

import copy
import threading
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Deque, Dict, List, Optional, Sequence, Tuple

import numpy as np

from src.common.config import ProfileConfig
from src.common.console import log
from src.common.errors import ProfileConsistencyError
from src.common.schemas import (
    ATTRIBUTE_CLASSES,
    MAX_DIFFICULTY,
    MIN_DIFFICULTY,
    CategoryStats,
    InteractionRecord,
    UserProfile,
)

from .temporal import HOURS, WEEKDAYS, analyze_timings


@dataclass
class _Counts:
    attempts: int = 0
    completed: int = 0
    rating_sum: float = 0.0
    rated: int = 0


@dataclass
class ProfileAccumulator:
    """
    Running aggregates over terminal interaction records.

    Records are folded in log order. Besides the aggregates the profile
    publishes, the accumulator keeps hour/weekday counts and the streak so a
    point-in-time snapshot can be taken after every record without running
    the temporal analyzer.
    """

    config: ProfileConfig
    terminal: int = 0
    total_completed: int = 0
    categories: Dict[str, _Counts] = field(default_factory=dict)
    attributes: Dict[str, Dict[str, _Counts]] = field(default_factory=dict)
    levels: Dict[int, _Counts] = field(default_factory=dict)
    comfort_zone: float = 1.0
    trajectory: Deque[Tuple[datetime, int]] = field(default_factory=deque)
    first_ts: Optional[datetime] = None
    last_ts: Optional[datetime] = None
    hour_counts: List[int] = field(default_factory=lambda: [0] * HOURS)
    weekday_counts: List[int] = field(default_factory=lambda: [0] * WEEKDAYS)
    last_completion_day: Optional[object] = None
    run: int = 0
    longest_run: int = 0

    def __post_init__(self) -> None:
        self.comfort_zone = float(self.config.default_comfort_zone)
        self.trajectory = deque(self.trajectory, maxlen=self.config.trajectory_window)

    def add(self, record: InteractionRecord) -> None:
        if not record.is_terminal:
            return

        completed = record.completed
        self.terminal += 1
        self.first_ts = record.assigned_at if self.first_ts is None else self.first_ts
        self.last_ts = record.assigned_at

        _bump(self.categories.setdefault(record.category, _Counts()), completed, record.rating)
        for name in ATTRIBUTE_CLASSES:
            value = record.attributes.attribute(name)
            _bump(self.attributes.setdefault(name, {}).setdefault(value, _Counts()), completed, None)
        _bump(self.levels.setdefault(record.difficulty, _Counts()), completed, None)
        self.trajectory.append((record.assigned_at, record.difficulty))

        if completed:
            self.total_completed += 1
            self.hour_counts[record.assigned_at.hour] += 1
            self.weekday_counts[record.assigned_at.weekday()] += 1
            day = record.assigned_at.date()
            if self.last_completion_day is None or day - self.last_completion_day > timedelta(days=1):
                self.run = 1
            elif day - self.last_completion_day == timedelta(days=1):
                self.run += 1
            self.last_completion_day = day
            self.longest_run = max(self.longest_run, self.run)

        # Comfort zone moves at most one step per record.
        step = self._comfort_target() - self.comfort_zone
        self.comfort_zone += max(-1.0, min(1.0, step))

    def _comfort_target(self) -> float:
        target = float(self.config.default_comfort_zone)
        for level in range(MIN_DIFFICULTY, MAX_DIFFICULTY + 1):
            counts = self.levels.get(level)
            if counts is None or counts.attempts < self.config.comfort_min_attempts:
                continue
            if counts.completed / counts.attempts >= self.config.comfort_reliability:
                target = float(level)
        return target

    def growth_trajectory(self) -> float:
        """Least-squares slope of attempted difficulty, in steps per week."""

        if len(self.trajectory) < 3:
            return 0.0
        origin = self.trajectory[0][0]
        days = np.array([(ts - origin).total_seconds() / 86400.0 for ts, _ in self.trajectory])
        levels = np.array([level for _, level in self.trajectory], dtype=float)
        if np.ptp(days) == 0:
            return 0.0
        slope = np.polyfit(days, levels, 1)[0] * 7.0
        return float(np.clip(slope, -float(MAX_DIFFICULTY), float(MAX_DIFFICULTY)))

    def current_streak(self) -> int:
        if self.last_completion_day is None or self.last_ts is None:
            return 0
        if self.last_ts.date() - self.last_completion_day > timedelta(days=1):
            return 0
        return self.run

    def snapshot(self, enforce_minimum: bool = True) -> UserProfile:
        """Profile content as of the records folded so far (version 0, no timestamp)."""

        insufficient = self.total_completed < self.config.min_completed
        blank = insufficient and enforce_minimum
        return UserProfile(
            version=0,
            rebuilt_at=None,
            insufficient_data=insufficient,
            history_length=self.terminal,
            total_completed=self.total_completed,
            comfort_zone=self.comfort_zone,
            growth_trajectory=0.0 if blank else self.growth_trajectory(),
            current_streak=self.current_streak(),
            longest_streak=self.longest_run,
            days_since_first=self._days_since_first(),
            hour_histogram=_normalize(self.hour_counts),
            weekday_histogram=_normalize(self.weekday_counts),
            category_stats={} if blank else self._category_stats(),
            attribute_preferences={} if blank else self._attribute_preferences(),
        )

    def state_key(self) -> UserProfile:
        return self.snapshot(enforce_minimum=False)

    def _days_since_first(self) -> int:
        if self.first_ts is None or self.last_ts is None:
            return 0
        return max(0, (self.last_ts.date() - self.first_ts.date()).days)

    def _category_stats(self) -> Dict[str, CategoryStats]:
        stats = {}
        for category, counts in sorted(self.categories.items()):
            stats[category] = CategoryStats(
                attempts=counts.attempts,
                completed=counts.completed,
                completion_rate=counts.completed / counts.attempts,
                mean_rating=(counts.rating_sum / counts.rated) if counts.rated else None,
                rated=counts.rated,
            )
        return stats

    def _attribute_preferences(self) -> Dict[str, Dict[str, float]]:
        overall = self.total_completed / self.terminal if self.terminal else 0.0
        strength = self.config.smoothing_strength
        preferences = {}
        for name, values in sorted(self.attributes.items()):
            preferences[name] = {
                value: (counts.completed + strength * overall) / (counts.attempts + strength)
                for value, counts in sorted(values.items())
            }
        return preferences


def _bump(counts: _Counts, completed: bool, rating: Optional[int]) -> None:
    counts.attempts += 1
    if completed:
        counts.completed += 1
        if rating is not None:
            counts.rating_sum += rating
            counts.rated += 1


def _normalize(counts: Sequence[int]) -> Tuple[float, ...]:
    total = sum(counts)
    if total == 0:
        return (0.0,) * len(counts)
    return tuple(float(c) / total for c in counts)


class ProfileBuilder:
    """
    Owns the published UserProfile for one user.

    The content of every profile is a pure function of the history; the
    builder only adds the version counter, the rebuild timestamp, and a clamp
    that keeps the published comfort zone within one step of the previous
    one. Rebuilds fold only newly appended records when the history extends
    the previously consumed one.
    """

    def __init__(
        self,
        config: Optional[ProfileConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config or ProfileConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._accumulator = ProfileAccumulator(self.config)
        self._consumed: List[InteractionRecord] = []
        self._version = 0
        self._profile: Optional[UserProfile] = None

    @property
    def profile(self) -> Optional[UserProfile]:
        return self._profile

    @property
    def version(self) -> int:
        return self._version

    def is_stale(self, history: Sequence[InteractionRecord]) -> bool:
        return self._profile is None or list(history) != self._consumed

    def rebuild(
        self,
        history: Sequence[InteractionRecord],
        now: Optional[datetime] = None,
        full: bool = False,
    ) -> UserProfile:
        """
        Publish a new profile version for ``history``.

        ``now`` only anchors the current streak; without it the streak is
        measured against the last interaction.
        """

        history = list(history)
        with self._lock:
            consumed = len(self._consumed)
            if full or len(history) < consumed or history[:consumed] != self._consumed:
                accumulator = ProfileAccumulator(self.config)
                pending = history
            else:
                accumulator = copy.deepcopy(self._accumulator)
                pending = history[consumed:]
            for record in pending:
                accumulator.add(record)

            patterns = analyze_timings(history, now=now)
            content = accumulator.snapshot()
            comfort = content.comfort_zone
            if self._profile is not None:
                previous = self._profile.comfort_zone
                comfort = min(previous + 1.0, max(previous - 1.0, comfort))

            self._version += 1
            profile = replace(
                content,
                version=self._version,
                rebuilt_at=self._clock(),
                comfort_zone=comfort,
                hour_histogram=patterns.hour_histogram,
                weekday_histogram=patterns.weekday_histogram,
                current_streak=patterns.current_streak,
                longest_streak=patterns.longest_streak,
            )

            self._accumulator = accumulator
            self._consumed = history
            self._profile = profile

        status = "insufficient data" if profile.insufficient_data else "ready"
        log(
            "profile",
            f"rebuilt v{profile.version} from {len(pending)} new record(s): "
            f"completed={profile.total_completed} comfort={profile.comfort_zone:.0f} ({status})",
        )
        return profile

    def verify(self, history: Sequence[InteractionRecord]) -> None:
        """Compare the incremental state against a rebuild from scratch."""

        history = list(history)
        fresh = ProfileAccumulator(self.config)
        for record in history:
            fresh.add(record)
        with self._lock:
            if history != self._consumed:
                raise ProfileConsistencyError("Profile was built from a different history than the one supplied.")
            incremental = self._accumulator.state_key()
        if fresh.state_key().content_key() != incremental.content_key():
            raise ProfileConsistencyError("Incremental profile state diverged from a full rebuild.")


def rebuild_profile(
    history: Sequence[InteractionRecord],
    config: Optional[ProfileConfig] = None,
) -> UserProfile:
    """Build a version-1 profile from the full history with a throwaway builder."""

    return ProfileBuilder(config).rebuild(history, full=True)
