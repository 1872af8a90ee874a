# ABOUTME: Validates the recommender facade end to end on in-memory logs and catalogs.
# ABOUTME: Covers cold start, recent-category variety, the difficulty bound, and diagnostics.

import json
from datetime import datetime, timedelta, timezone

import pytest
import torch

from src.common.config import EngineConfig, SelectionConfig
from src.common.schemas import CandidateAttributes, InteractionRecord, NoEligibleCandidate, Outcome
from src.recommender.engine import ChallengeRecommender
from src.recommender.sources import InMemoryCatalog, InMemoryInteractionLog
from src.scoring.models import ModelArtifact, PredictionTarget, PreferenceNet

NOW = datetime(2026, 5, 20, 12, 0, tzinfo=timezone.utc)

CATALOG = [
    {"candidate_id": "c-1", "category": "creative", "difficulty": 2},
    {"candidate_id": "p-1", "category": "physical", "difficulty": 2},
]


def _engine(records=(), catalog=CATALOG, config=None, **kwargs):
    return ChallengeRecommender(
        InMemoryInteractionLog(records),
        InMemoryCatalog(catalog),
        config=config,
        clock=lambda: NOW,
        **kwargs,
    )


def _creative_records(first_assigned, spacing=timedelta(hours=5), n=12):
    return [
        InteractionRecord(
            record_id=f"r{i}",
            attributes=CandidateAttributes(f"old-c{i}", "creative", 2),
            assigned_at=first_assigned + i * spacing,
            outcome=Outcome.COMPLETED,
            rating=5,
        )
        for i in range(n)
    ]


def test_cold_start_returns_a_candidate_with_fallback_scores():
    engine = _engine(catalog=CATALOG + [{"candidate_id": "x-1", "category": "social", "difficulty": 5}])

    choice = engine.select_challenge()
    diagnostics = engine.get_diagnostics()

    assert choice == "c-1"
    assert diagnostics.fallback_active
    assert diagnostics.insufficient_data
    assert diagnostics.profile_version == 1
    assert engine.select_challenge(k=3) == ["c-1", "p-1"]


@pytest.mark.parametrize("completed", [1, 5, 9])
def test_short_history_still_selects_with_fallback(completed):
    engine = _engine(_creative_records(NOW - timedelta(days=20), n=completed))

    assert engine.select_challenge() in {"c-1", "p-1"}
    assert set(engine.select_challenge(k=2)) == {"c-1", "p-1"}
    diagnostics = engine.get_diagnostics()
    assert diagnostics.insufficient_data
    assert diagnostics.fallback_active
    assert diagnostics.history_length == completed


def test_well_liked_category_wins_when_not_recent():
    history = _creative_records(NOW - timedelta(days=20))
    engine = _engine(history, config=EngineConfig(selection=SelectionConfig(diversity_min_pool=1)))

    assert engine.select_challenge() == "c-1"
    assert engine.profile_builder.profile.comfort_zone == 2.0
    assert not engine.get_diagnostics().insufficient_data


def test_recent_category_is_skipped_for_variety():
    history = _creative_records(NOW - timedelta(hours=60))
    engine = _engine(history, config=EngineConfig(selection=SelectionConfig(diversity_min_pool=1)))

    assert engine.select_challenge() == "p-1"
    assert engine.profile_builder.profile.comfort_zone == 2.0


def test_all_candidates_too_hard_yields_no_eligible_candidate():
    engine = _engine(
        catalog=[
            {"candidate_id": "h-1", "category": "physical", "difficulty": 4},
            {"candidate_id": "h-2", "category": "social", "difficulty": 5},
        ]
    )

    result = engine.select_challenge()

    assert isinstance(result, NoEligibleCandidate)
    assert not result
    assert result.pool_size == 2
    assert "difficulty" in result.reason


def test_empty_catalog_yields_no_eligible_candidate():
    result = _engine(catalog=[]).select_challenge()

    assert isinstance(result, NoEligibleCandidate)
    assert result.reason == "empty catalog"


def test_pool_size_limits_the_candidates_considered():
    engine = _engine()
    assert engine.select_challenge(pool_size=1) == "c-1"


def test_invalid_k_is_rejected():
    with pytest.raises(ValueError):
        _engine().select_challenge(k=0)


def test_record_outcome_updates_profile_lazily():
    engine = _engine()
    engine.select_challenge()
    assert engine.profile_builder.version == 1
    engine.select_challenge()
    assert engine.profile_builder.version == 1

    pending = InteractionRecord(
        record_id="r-new",
        attributes=CandidateAttributes("p-1", "physical", 2),
        assigned_at=NOW - timedelta(hours=2),
    )
    engine.record_outcome(pending)
    engine.record_outcome(pending.with_outcome(Outcome.COMPLETED, rating=4))
    engine.select_challenge()

    records = engine.interaction_log.records()
    assert len(records) == 1
    assert records[0].completed
    assert engine.profile_builder.version == 2
    assert engine.profile_builder.profile.total_completed == 1

    with pytest.raises(ValueError):
        engine.record_outcome(records[0])


def test_consistency_failure_triggers_full_rebuild():
    history = _creative_records(NOW - timedelta(days=20))
    engine = _engine(history, verify_every=1)
    engine.select_challenge()

    engine.profile_builder._accumulator.total_completed += 5
    engine.record_outcome(
        InteractionRecord(
            record_id="r-extra",
            attributes=CandidateAttributes("p-1", "physical", 2),
            assigned_at=NOW - timedelta(days=1),
            outcome=Outcome.SKIPPED,
        )
    )

    assert engine.select_challenge() in {"c-1", "p-1"}
    assert engine.profile_builder.profile.total_completed == 12
    engine.profile_builder.verify(engine.interaction_log.records())


def test_diagnostics_export(tmp_path):
    engine = _engine()
    engine.select_challenge()

    path = tmp_path / "reports" / "diagnostics.json"
    assert engine.export_diagnostics(path)

    payload = json.loads(path.read_text())
    assert payload["profile_version"] == 1
    assert payload["fallback_active"] is True
    assert set(payload["targets"]) == {"completion", "enjoyment", "timing"}
    assert payload["targets"]["completion"]["state"] == "untrained"
    assert "c-1" not in path.read_text()


def test_diagnostics_export_failure_is_reported_not_raised(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("")

    assert _engine().export_diagnostics(blocker / "diagnostics.json") is False


def test_force_retrain_with_little_history_reports_insufficient_data():
    engine = _engine(_creative_records(NOW - timedelta(days=20), n=3))

    reports = engine.force_retrain()
    single = engine.force_retrain("completion")

    assert [r.target for r in reports] == list(PredictionTarget)
    assert all(r.outcome == "insufficient_data" for r in reports)
    assert len(single) == 1
    assert engine.maybe_retrain() == []


def test_recommend_hours_from_history():
    history = [
        InteractionRecord(
            record_id=f"r{i}",
            attributes=CandidateAttributes(f"c{i}", "creative", 1),
            assigned_at=(NOW - timedelta(days=5 - i)).replace(hour=hour),
            outcome=Outcome.COMPLETED,
        )
        for i, hour in enumerate([18, 9, 18])
    ]
    engine = _engine(history)

    assert engine.recommend_hours(top_n=3) == [18, 9]

    # A timing model that only looks at hour affinity ranks every hour of the day.
    network = PreferenceNet(len(PredictionTarget.TIMING.feature_names), deep_units=())
    with torch.no_grad():
        network.layers[0].weight.zero_()
        network.layers[0].weight[0, 0] = 5.0
        network.layers[0].bias.zero_()
    engine.registry.promote(
        ModelArtifact(
            target=PredictionTarget.TIMING,
            version=1,
            trained_at=NOW,
            validation_metric=0.8,
            n_train=20,
            n_val=5,
            deep_units=(),
            network=network,
        ),
        examples_seen=25,
    )

    assert engine.recommend_hours(top_n=3) == [18, 9, 0]


def test_background_training_starts_and_stops():
    engine = _engine()

    scheduler = engine.start_background_training(interval_seconds=3600)
    assert scheduler.running

    engine.stop_background_training(timeout=5)
    assert not scheduler.running


def test_local_offsets_compare_against_the_utc_clock():
    local = timezone(timedelta(hours=-7))
    history = [
        InteractionRecord(
            record_id=f"r{i}",
            attributes=CandidateAttributes(f"old-c{i}", "creative", 2),
            assigned_at=(NOW - timedelta(hours=10 + i)).astimezone(local),
            outcome=Outcome.COMPLETED,
        )
        for i in range(3)
    ]
    engine = ChallengeRecommender(InMemoryInteractionLog(history), InMemoryCatalog(CATALOG))

    assert engine.select_challenge() in {"c-1", "p-1"}
