# ABOUTME: Validates the selection optimizer's difficulty bound, exclusion, and diversity quota.
# ABOUTME: Ensures ranking is deterministic and near-ties favor confident scores.

import random
import unittest
from datetime import datetime, timedelta, timezone

from src.common.config import SelectionConfig
from src.common.schemas import CandidateAttributes, InteractionRecord, Outcome, ScoredCandidate
from src.profiling.profile_builder import rebuild_profile
from src.selection.optimizer import SelectionConstraints, rank, select


def _scored(candidate_id, category="creative", difficulty=1, score=0.5, confidence=0.5):
    return ScoredCandidate(
        candidate_id=candidate_id,
        category=category,
        difficulty=difficulty,
        completion_probability=score,
        enjoyment=score,
        growth_potential=0.0,
        score=score,
        confidence=confidence,
        source="heuristic",
    )


class TestHardBound(unittest.TestCase):
    def test_drops_candidates_beyond_max_stretch(self):
        constraints = SelectionConstraints(comfort_zone=1.0, diversity_min_pool=0)
        pool = [
            _scored("easy", difficulty=1, score=0.4),
            _scored("stretch", difficulty=3, score=0.5),
            _scored("too-hard", difficulty=4, score=0.99),
            _scored("way-too-hard", difficulty=5, score=0.98),
        ]

        self.assertEqual(select(pool, constraints, k=4), ["stretch", "easy"])

    def test_all_too_hard_yields_nothing(self):
        constraints = SelectionConstraints(comfort_zone=1.0)
        pool = [_scored("a", difficulty=4), _scored("b", difficulty=5)]

        self.assertEqual(select(pool, constraints, k=1), [])

    def test_non_positive_k_selects_nothing(self):
        constraints = SelectionConstraints(comfort_zone=3.0)
        self.assertEqual(select([_scored("a")], constraints, k=0), [])


class TestRecentCategoryExclusion(unittest.TestCase):
    def test_recent_category_is_excluded_when_pool_is_large_enough(self):
        constraints = SelectionConstraints(
            comfort_zone=2.0, recent_categories=frozenset({"creative"}), diversity_min_pool=3
        )
        pool = [
            _scored("c1", "creative", score=0.9),
            _scored("p1", "physical", score=0.6),
            _scored("s1", "social", score=0.5),
            _scored("m1", "mindfulness", score=0.4),
        ]

        self.assertEqual(select(pool, constraints, k=1), ["p1"])

    def test_exclusion_is_skipped_when_pool_would_be_too_small(self):
        constraints = SelectionConstraints(
            comfort_zone=2.0, recent_categories=frozenset({"creative"}), diversity_min_pool=3
        )
        pool = [
            _scored("c1", "creative", score=0.9),
            _scored("p1", "physical", score=0.6),
            _scored("s1", "social", score=0.5),
        ]

        self.assertEqual(select(pool, constraints, k=1), ["c1"])

    def test_constraints_from_profile_collect_recent_categories(self):
        now = datetime(2026, 5, 20, 12, 0, tzinfo=timezone.utc)

        def record(i, category, days_ago, outcome):
            return InteractionRecord(
                record_id=f"r{i}",
                attributes=CandidateAttributes(f"c{i}", category, 2),
                assigned_at=now - timedelta(days=days_ago),
                outcome=outcome,
            )

        history = [
            record(0, "social", 5, Outcome.COMPLETED),
            record(1, "creative", 2, Outcome.SKIPPED),
            record(2, "physical", 0.5, None),
        ]
        profile = rebuild_profile(history)

        constraints = SelectionConstraints.from_profile(profile, history, SelectionConfig(), now)

        self.assertEqual(constraints.recent_categories, frozenset({"creative", "physical"}))
        self.assertEqual(constraints.comfort_zone, profile.comfort_zone)
        self.assertEqual(constraints.difficulty_ceiling, profile.comfort_zone + 2)


class TestRanking(unittest.TestCase):
    def test_near_ties_prefer_higher_confidence(self):
        constraints = SelectionConstraints(comfort_zone=2.0, near_tie_epsilon=0.02)
        pool = [
            _scored("sharp", score=0.805, confidence=0.3),
            _scored("sure", score=0.801, confidence=0.9),
        ]

        self.assertEqual([c.candidate_id for c in rank(pool, constraints)], ["sure", "sharp"])

    def test_clear_score_gap_beats_confidence(self):
        constraints = SelectionConstraints(comfort_zone=2.0, near_tie_epsilon=0.02)
        pool = [
            _scored("better", score=0.86, confidence=0.3),
            _scored("sure", score=0.80, confidence=0.9),
        ]

        self.assertEqual([c.candidate_id for c in rank(pool, constraints)], ["better", "sure"])

    def test_near_tie_buckets_have_fixed_edges(self):
        constraints = SelectionConstraints(comfort_zone=2.0, near_tie_epsilon=0.02)
        same_bucket = [
            _scored("high", score=0.619, confidence=0.2),
            _scored("confident", score=0.605, confidence=0.8),
        ]
        across_edge = [
            _scored("below", score=0.5999, confidence=0.8),
            _scored("above", score=0.6001, confidence=0.2),
        ]

        self.assertEqual([c.candidate_id for c in rank(same_bucket, constraints)], ["confident", "high"])
        self.assertEqual([c.candidate_id for c in rank(across_edge, constraints)], ["above", "below"])

    def test_exact_ties_break_on_candidate_id(self):
        constraints = SelectionConstraints(comfort_zone=2.0, max_same_category=10)
        pool = [_scored(f"id-{i}", score=0.5, confidence=0.5) for i in range(6)]
        shuffled = list(pool)
        random.Random(7).shuffle(shuffled)

        expected = [f"id-{i}" for i in range(6)]
        self.assertEqual(select(pool, constraints, k=6), expected)
        self.assertEqual(select(shuffled, constraints, k=6), expected)


class TestDiversityQuota(unittest.TestCase):
    def test_quota_swaps_in_off_category_candidates(self):
        constraints = SelectionConstraints(comfort_zone=2.0, max_same_category=2)
        pool = [_scored(f"c{i}", "creative", score=0.9 - i * 0.05) for i in range(5)]
        pool += [_scored("p1", "physical", score=0.5), _scored("p2", "physical", score=0.45)]

        self.assertEqual(select(pool, constraints, k=4), ["c0", "c1", "p1", "p2"])

    def test_deferred_candidates_backfill_a_short_pass(self):
        constraints = SelectionConstraints(comfort_zone=2.0, max_same_category=2)
        pool = [_scored(f"c{i}", "creative", score=0.9 - i * 0.05) for i in range(5)]
        pool.append(_scored("p1", "physical", score=0.5))

        self.assertEqual(select(pool, constraints, k=4), ["c0", "c1", "p1", "c2"])

    def test_single_category_pool_backfills_to_its_size(self):
        constraints = SelectionConstraints(comfort_zone=2.0, max_same_category=1)
        pool = [_scored("c1", "creative", score=0.9), _scored("c2", "creative", score=0.8)]

        self.assertEqual(select(pool, constraints, k=5), ["c1", "c2"])

    def test_quota_is_strict_once_enough_categories_are_eligible(self):
        constraints = SelectionConstraints(comfort_zone=2.0, max_same_category=2, diversity_min_pool=0)
        pool = [_scored(f"a{i}", "creative", score=0.90 - i * 0.01) for i in range(4)]
        pool += [_scored("b1", "physical", score=0.5), _scored("c1", "social", score=0.4)]

        self.assertEqual(select(pool, constraints, k=5), ["a0", "a1", "b1", "c1"])

    def test_no_category_exceeds_quota_across_random_pools(self):
        rng = random.Random(11)
        categories = ["creative", "physical", "social", "mindfulness"]
        for _ in range(50):
            quota = rng.randint(1, 3)
            constraints = SelectionConstraints(comfort_zone=5.0, max_same_category=quota, diversity_min_pool=0)
            pool = [
                _scored(f"x{i}", rng.choice(categories), score=rng.random(), confidence=rng.random())
                for i in range(rng.randint(quota + 1, 12))
            ]
            if len({c.category for c in pool}) < quota + 1:
                continue
            k = rng.randint(quota + 1, len(pool))

            chosen = select(pool, constraints, k)

            by_id = {c.candidate_id: c.category for c in pool}
            counts = {}
            for candidate_id in chosen:
                counts[by_id[candidate_id]] = counts.get(by_id[candidate_id], 0) + 1
            self.assertLessEqual(max(counts.values()), quota)
            self.assertEqual(len(set(chosen)), len(chosen))


if __name__ == "__main__":
    unittest.main()
