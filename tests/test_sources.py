# ABOUTME: Validates the in-memory log semantics and the parquet/CSV loaders.
# ABOUTME: Ensures corrupt rows are dropped and timestamps come back timezone-aware.

from datetime import datetime, timedelta, timezone

import pandas as pd
import pytest

from src.common.schemas import CandidateAttributes, InteractionRecord, Outcome
from src.recommender.sources import (
    InMemoryInteractionLog,
    load_catalog,
    load_history,
    records_from_frame,
    records_to_frame,
)

T0 = datetime(2026, 1, 5, 7, 30, tzinfo=timezone.utc)


def _events_df():
    return pd.DataFrame(
        {
            "record_id": ["r2", "r1", "r3", "r4"],
            "candidate_id": ["c2", "c1", "c3", "c4"],
            "category": ["physical", "creative", "social", "creative"],
            "difficulty": [2, 1, 3, 7],
            "assigned_at": ["2026-01-06 08:00", "2026-01-05 07:30", "2026-01-07 19:00", "2026-01-08 10:00"],
            "outcome": ["skipped", "completed", None, "completed"],
            "rating": [None, 5, None, None],
            "cost": [None, "low", None, None],
        }
    )


def test_records_from_frame_orders_and_validates_rows():
    records = records_from_frame(_events_df())

    assert [r.record_id for r in records] == ["r1", "r2", "r3"]
    first = records[0]
    assert first.assigned_at == T0
    assert first.outcome is Outcome.COMPLETED
    assert first.rating == 5
    assert first.attributes.cost == "low"
    assert records[1].attributes.cost == "free"
    assert records[2].outcome is None


def test_records_from_frame_requires_core_columns():
    with pytest.raises(ValueError):
        records_from_frame(_events_df().drop(columns=["outcome"]))


def test_history_and_catalog_load_from_disk(tmp_path):
    events_path = tmp_path / "events.parquet"
    records_to_frame(records_from_frame(_events_df())).to_parquet(events_path, index=False)
    catalog_path = tmp_path / "catalog.csv"
    pd.DataFrame(
        {"candidate_id": ["a", "b"], "category": ["creative", "social"], "difficulty": [1, 3], "tags": ["art", None]}
    ).to_csv(catalog_path, index=False)

    log = load_history(events_path)
    catalog = load_catalog(catalog_path)

    assert [r.record_id for r in log.records()] == ["r1", "r2", "r3"]
    assert log.records()[0].assigned_at == T0
    candidates = catalog.active_candidates()
    assert candidates[0]["candidate_id"] == "a"
    assert candidates[1]["tags"] is None


def test_pending_record_is_superseded_once():
    pending = InteractionRecord("r1", CandidateAttributes("c1", "creative", 2), T0)
    log = InMemoryInteractionLog([pending])

    log.append(pending.with_outcome(Outcome.EXPIRED))
    log.append(InteractionRecord("r2", CandidateAttributes("c2", "social", 1), T0 + timedelta(hours=1)))

    assert len(log) == 2
    assert log.records()[0].outcome is Outcome.EXPIRED
    with pytest.raises(ValueError):
        log.append(pending.with_outcome(Outcome.COMPLETED))


def test_terminal_records_cannot_be_updated_again():
    record = InteractionRecord("r1", CandidateAttributes("c1", "creative", 2), T0, outcome=Outcome.SKIPPED)

    with pytest.raises(ValueError):
        record.with_outcome(Outcome.COMPLETED)
    with pytest.raises(ValueError):
        InteractionRecord("r2", CandidateAttributes("c1", "creative", 2), T0).with_outcome(
            Outcome.COMPLETED, rating=6
        )


def test_naive_timestamps_are_rejected():
    with pytest.raises(ValueError, match="naive"):
        InteractionRecord("r1", CandidateAttributes("c1", "creative", 2), datetime(2026, 1, 5, 7, 30))

    log = InMemoryInteractionLog([InteractionRecord("r1", CandidateAttributes("c1", "creative", 2), T0)])
    assert log.records()[0].with_outcome(Outcome.COMPLETED).assigned_at == T0
