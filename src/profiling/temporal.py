# ABOUTME: Derives timing features (hour/day histograms, streaks) from interaction history.
# ABOUTME: Feeds the profile builder and the timing-recommendation consumer.

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from src.common.schemas import InteractionRecord, TemporalPatterns, TimingContext

HOURS = 24
WEEKDAYS = 7


def analyze_timings(
    history: Sequence[InteractionRecord],
    context: Optional[Mapping[date, TimingContext]] = None,
    now: Optional[datetime] = None,
) -> TemporalPatterns:
    """
    Summarize when the user completes challenges.

    Hours and weekdays are read in each timestamp's own UTC offset, so
    records stamped with the device's offset give local-time patterns. The
    table loaders read naive values as UTC. Histograms count completed
    interactions by hour of assignment and by weekday, normalized to sum to
    one. Preferred hours are ordered by count, ties going to the hour
    observed first.

    The streak is measured against ``now`` when given, otherwise against the
    last interaction, which keeps the result a pure function of history.
    """

    frame = _timing_frame(history)
    if frame.empty:
        return empty_patterns()

    completed = frame[frame["completed"]]
    hour_hist, preferred_hours = _histogram(completed, "hour", HOURS)
    weekday_hist, preferred_weekdays = _histogram(completed, "weekday", WEEKDAYS)

    weekday_rates = {
        int(day): float(rate) for day, rate in frame.groupby("weekday")["completed"].mean().sort_index().items()
    }

    reference_day = (now if now is not None else frame["assigned_at"].iloc[-1]).date()
    completion_days = sorted(set(completed["day"]))
    current_streak, longest_streak = _streaks(completion_days, reference_day)
    if completion_days:
        span = (completion_days[-1] - completion_days[0]).days + 1
        active_day_ratio = len(completion_days) / span
        streak_quality = min(1.0, longest_streak / span)
    else:
        active_day_ratio = 0.0
        streak_quality = 0.0

    season_rates: Dict[str, float] = {}
    if context:
        seasons = frame["day"].map(lambda d: context[d].season if d in context else None)
        seasonal = frame.assign(season=seasons).dropna(subset=["season"])
        if not seasonal.empty:
            season_rates = {
                str(season): float(rate)
                for season, rate in seasonal.groupby("season")["completed"].mean().sort_index().items()
            }

    return TemporalPatterns(
        hour_histogram=hour_hist,
        weekday_histogram=weekday_hist,
        preferred_hours=preferred_hours,
        preferred_weekdays=preferred_weekdays,
        current_streak=current_streak,
        longest_streak=longest_streak,
        active_day_ratio=float(active_day_ratio),
        streak_quality=float(streak_quality),
        weekday_completion_rates=weekday_rates,
        season_completion_rates=season_rates,
    )


def empty_patterns() -> TemporalPatterns:
    return TemporalPatterns(
        hour_histogram=(0.0,) * HOURS,
        weekday_histogram=(0.0,) * WEEKDAYS,
        preferred_hours=(),
        preferred_weekdays=(),
        current_streak=0,
        longest_streak=0,
        active_day_ratio=0.0,
        streak_quality=0.0,
    )


def recommend_hours(patterns: TemporalPatterns, top_n: int = 3) -> List[int]:
    """Hours to suggest to the timing consumer, best first."""

    return list(patterns.preferred_hours[:top_n])


def _timing_frame(history: Sequence[InteractionRecord]) -> pd.DataFrame:
    rows = []
    for record in history:
        if not record.is_terminal:
            continue
        ts = record.assigned_at
        rows.append(
            {
                "assigned_at": ts,
                "hour": ts.hour,
                "weekday": ts.weekday(),
                "day": ts.date(),
                "completed": record.completed,
            }
        )
    if not rows:
        return pd.DataFrame(columns=["assigned_at", "hour", "weekday", "day", "completed"])
    # Stable sort keeps the log order for equal timestamps.
    df = pd.DataFrame(rows)
    order = np.argsort(np.array([ts.timestamp() for ts in df["assigned_at"]]), kind="stable")
    return df.iloc[order].reset_index(drop=True)


def _histogram(completed: pd.DataFrame, column: str, buckets: int) -> Tuple[Tuple[float, ...], Tuple[int, ...]]:
    if completed.empty:
        return (0.0,) * buckets, ()

    values = completed[column].to_numpy(dtype=np.int64)
    counts = np.bincount(values, minlength=buckets)
    histogram = tuple(float(c) for c in counts / counts.sum())

    first_seen: Dict[int, int] = {}
    for position, value in enumerate(values):
        first_seen.setdefault(int(value), position)
    ranked = sorted(first_seen, key=lambda v: (-counts[v], first_seen[v]))
    return histogram, tuple(ranked)


def _streaks(completion_days: Sequence[date], reference_day: date) -> Tuple[int, int]:
    """Return (current, longest) runs of consecutive completion days."""

    if not completion_days:
        return 0, 0

    longest = run = 1
    for previous, current in zip(completion_days, completion_days[1:]):
        run = run + 1 if current - previous == timedelta(days=1) else 1
        longest = max(longest, run)

    # ``run`` is now the run ending at the last completion day.
    if reference_day - completion_days[-1] > timedelta(days=1):
        return 0, longest
    return run, longest
