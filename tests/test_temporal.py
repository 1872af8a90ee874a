# ABOUTME: Validates hour/weekday histograms, preferred-hour ordering, and streak math.
# ABOUTME: Covers the optional season context and the timing consumer helper.

from datetime import date, datetime, timedelta, timezone

import pytest

from src.common.schemas import CandidateAttributes, InteractionRecord, Outcome, TimingContext
from src.profiling.temporal import analyze_timings, recommend_hours

DAY0 = datetime(2026, 6, 1, tzinfo=timezone.utc)  # a Monday


def _record(i, day, hour, outcome=Outcome.COMPLETED):
    return InteractionRecord(
        record_id=f"r{i}",
        attributes=CandidateAttributes(candidate_id=f"c{i}", category="creative", difficulty=2),
        assigned_at=DAY0 + timedelta(days=day, hours=hour),
        outcome=outcome,
    )


def test_empty_history_returns_zero_patterns():
    patterns = analyze_timings([])

    assert patterns.hour_histogram == (0.0,) * 24
    assert patterns.weekday_histogram == (0.0,) * 7
    assert patterns.preferred_hours == ()
    assert patterns.current_streak == 0
    assert recommend_hours(patterns) == []


def test_histograms_count_only_completions():
    history = [
        _record(0, 0, 9),
        _record(1, 1, 9),
        _record(2, 2, 18),
        _record(3, 3, 7, outcome=Outcome.SKIPPED),
    ]

    patterns = analyze_timings(history)

    assert sum(patterns.hour_histogram) == pytest.approx(1.0)
    assert patterns.hour_histogram[9] == pytest.approx(2 / 3)
    assert patterns.hour_histogram[18] == pytest.approx(1 / 3)
    assert patterns.hour_histogram[7] == 0.0
    assert patterns.weekday_histogram[0] == pytest.approx(1 / 3)
    assert patterns.weekday_completion_rates[3] == 0.0


def test_preferred_hours_break_ties_by_first_observation():
    history = [
        _record(0, 0, 18),
        _record(1, 1, 9),
        _record(2, 2, 9),
        _record(3, 3, 18),
        _record(4, 4, 7),
    ]

    patterns = analyze_timings(history)

    assert patterns.preferred_hours == (18, 9, 7)
    assert recommend_hours(patterns, top_n=2) == [18, 9]


def test_streaks_follow_consecutive_completion_days():
    history = [_record(i, day, 10) for i, day in enumerate([0, 1, 2, 4, 5])]

    patterns = analyze_timings(history, now=DAY0 + timedelta(days=5, hours=20))

    assert patterns.longest_streak == 3
    assert patterns.current_streak == 2
    assert patterns.active_day_ratio == pytest.approx(5 / 6)
    assert patterns.streak_quality == pytest.approx(3 / 6)


def test_current_streak_resets_after_a_missed_day():
    history = [_record(i, day, 10) for i, day in enumerate([0, 1, 2])]

    assert analyze_timings(history, now=DAY0 + timedelta(days=3, hours=12)).current_streak == 3
    assert analyze_timings(history, now=DAY0 + timedelta(days=5)).current_streak == 0


def test_season_completion_rates_use_context():
    history = [
        _record(0, 0, 10),
        _record(1, 1, 10, outcome=Outcome.SKIPPED),
        _record(2, 2, 10),
    ]
    context = {
        date(2026, 6, 1): TimingContext(season="summer", weather="sunny"),
        date(2026, 6, 2): TimingContext(season="summer", weather="rain"),
    }

    patterns = analyze_timings(history, context=context)

    assert patterns.season_completion_rates == {"summer": pytest.approx(0.5)}
    assert analyze_timings(history).season_completion_rates == {}
