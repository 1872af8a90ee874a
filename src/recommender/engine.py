# ABOUTME: Public facade that picks the next challenge and records outcomes for one user.
# ABOUTME: Wires profile building, scoring, selection, and the background training pipeline together.

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

import numpy as np

from src.common.config import EngineConfig
from src.common.console import log, warn
from src.common.errors import ModelUnavailable, ProfileConsistencyError
from src.common.features import candidate_features
from src.common.schemas import CandidateAttributes, InteractionRecord, NoEligibleCandidate, ScoredCandidate, UserProfile
from src.profiling.profile_builder import ProfileBuilder
from src.profiling.temporal import HOURS, analyze_timings, recommend_hours as preferred_hours
from src.scoring.models import PredictionTarget
from src.scoring.scorer import CandidateScorer, ScoringContext
from src.selection.optimizer import SelectionConstraints, apply_diversity_quota, rank
from src.training.pipeline import TrainingPipeline, TrainingReport
from src.training.registry import ModelRegistry
from src.training.scheduler import TrainingScheduler

from .sources import CandidateCatalog, InteractionLog

# Only the temporal columns reach the timing model, so any valid candidate works here.
_TIMING_CANDIDATE = CandidateAttributes(candidate_id="timing-slot", category="timing-slot", difficulty=1)


@dataclass(frozen=True)
class TargetDiagnostics:
    state: str
    version: Optional[int]
    trained_at: Optional[str]
    metric_name: str
    validation_metric: Optional[float]
    last_decision: Optional[str]


@dataclass(frozen=True)
class EngineDiagnostics:
    """Model and profile health; carries no candidate or user content."""

    profile_version: int
    insufficient_data: bool
    history_length: int
    fallback_active: bool
    targets: Dict[str, TargetDiagnostics] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, object]:
        return asdict(self)


class ChallengeRecommender:
    """
    Serving entry point for a single user.

    ``select_challenge`` is synchronous and never trains: it rebuilds the
    profile only when the interaction log changed, scores the active catalog
    against whatever models are deployed, and applies the selection
    constraints. Training happens through ``force_retrain``,
    ``maybe_retrain`` or the background scheduler.
    """

    def __init__(
        self,
        interaction_log: InteractionLog,
        catalog: CandidateCatalog,
        config: Optional[EngineConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        registry: Optional[ModelRegistry] = None,
        verify_every: int = 25,
    ) -> None:
        self.interaction_log = interaction_log
        self.catalog = catalog
        self.config = config or EngineConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.verify_every = verify_every

        if registry is None:
            registry = ModelRegistry(self.config.training.artifact_dir)
            if registry.artifact_dir is not None:
                registry.load_all()
        self.registry = registry
        self.profile_builder = ProfileBuilder(self.config.profile, clock=self._clock)
        self.scorer = CandidateScorer(self.registry, self.config.scoring)
        self.pipeline = TrainingPipeline(self.registry, self.config, clock=self._clock)
        self._scheduler: Optional[TrainingScheduler] = None
        self._rebuilds = 0

    def current_profile(self) -> Tuple[UserProfile, List[InteractionRecord]]:
        """Return the profile for the current log, rebuilding it lazily."""

        history = self.interaction_log.records()
        if not self.profile_builder.is_stale(history):
            return self.profile_builder.profile, history

        profile = self.profile_builder.rebuild(history, now=self._clock())
        self._rebuilds += 1
        if self.verify_every and self._rebuilds % self.verify_every == 0:
            try:
                self.profile_builder.verify(history)
            except ProfileConsistencyError as exc:
                warn("engine", f"{exc} Rebuilding from scratch.")
                profile = self.profile_builder.rebuild(history, now=self._clock(), full=True)
        return profile, history

    def shortlist(self, k: int = 1, pool_size: Optional[int] = None) -> List[ScoredCandidate]:
        """Scored candidates that would be presented, best first."""

        if k < 1:
            raise ValueError(f"k must be at least 1, got {k}")
        now = self._clock()
        profile, history = self.current_profile()
        candidates = self.catalog.active_candidates()
        if pool_size is not None:
            candidates = candidates[:pool_size]

        scored = self.scorer.score(profile, candidates, ScoringContext(now=now))
        constraints = SelectionConstraints.from_profile(profile, history, self.config.selection, now)
        return apply_diversity_quota(rank(scored, constraints), k, constraints.max_same_category)

    def select_challenge(
        self,
        pool_size: Optional[int] = None,
        k: int = 1,
    ) -> Union[str, List[str], NoEligibleCandidate]:
        """
        Pick the next challenge id (``k == 1``) or an ordered list of ids.

        Returns a falsy NoEligibleCandidate when the catalog is empty or every
        candidate was removed by validation or the difficulty bound.
        """

        chosen = self.shortlist(k=k, pool_size=pool_size)
        if not chosen:
            pool = self.catalog.active_candidates()
            pool_count = len(pool) if pool_size is None else min(pool_size, len(pool))
            reason = "empty catalog" if pool_count == 0 else "no candidate satisfies the difficulty bound"
            log("engine", f"no eligible candidate ({reason}, pool={pool_count})")
            return NoEligibleCandidate(reason=reason, pool_size=pool_count)

        log(
            "engine",
            f"selected {len(chosen)} candidate(s) via {chosen[0].source} scoring "
            f"(profile v{self.profile_builder.version})",
        )
        ids = [c.candidate_id for c in chosen]
        return ids[0] if k == 1 else ids

    def record_outcome(self, record: InteractionRecord) -> None:
        """Append to the log; the next selection picks it up through a lazy rebuild."""

        self.interaction_log.append(record)
        status = record.outcome.value if record.outcome is not None else "pending"
        log("engine", f"recorded {status} interaction")

    def get_diagnostics(self) -> EngineDiagnostics:
        profile = self.profile_builder.profile
        targets = {}
        for target in PredictionTarget:
            slot = self.registry.slot(target)
            deployed = slot.deployed
            targets[target.value] = TargetDiagnostics(
                state=slot.state.value,
                version=deployed.version if deployed is not None else None,
                trained_at=deployed.trained_at.isoformat() if deployed is not None else None,
                metric_name=target.metric_name,
                validation_metric=deployed.validation_metric if deployed is not None else None,
                last_decision=slot.last_decision.value if slot.last_decision is not None else None,
            )
        return EngineDiagnostics(
            profile_version=self.profile_builder.version,
            insufficient_data=profile.insufficient_data if profile is not None else True,
            history_length=profile.history_length if profile is not None else 0,
            fallback_active=self.scorer.fallback_active,
            targets=targets,
        )

    def export_diagnostics(self, path: Path) -> bool:
        """Write diagnostics as JSON; failures are logged and reported as False."""

        path = Path(path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w") as f:
                json.dump(self.get_diagnostics().as_dict(), f, indent=2)
        except OSError as exc:
            warn("engine", f"could not export diagnostics to {path}: {exc}")
            return False
        log("engine", f"diagnostics saved to {path}")
        return True

    def force_retrain(self, target: Optional[Union[PredictionTarget, str]] = None) -> List[TrainingReport]:
        """Run a training cycle now, ignoring the trigger policy."""

        targets = list(PredictionTarget) if target is None else [PredictionTarget(target)]
        history = self.interaction_log.records()
        return [self.pipeline.run(t, history) for t in targets]

    def maybe_retrain(self) -> List[TrainingReport]:
        """Train only the targets whose retrain trigger fired."""

        return self.pipeline.run_due(self.interaction_log.records())

    def recommend_hours(self, top_n: int = 3) -> List[int]:
        """
        Hours of the day to suggest to the timing consumer, best first.

        With a deployed timing model every hour of today is scored and ranked
        by predicted completion; otherwise the observed completion histogram
        decides.
        """

        now = self._clock()
        profile, history = self.current_profile()
        patterns = analyze_timings(history, now=now)
        try:
            model = self.registry.deployed(PredictionTarget.TIMING)
        except ModelUnavailable:
            return preferred_hours(patterns, top_n)

        slots = [now.replace(hour=h, minute=0, second=0, microsecond=0) for h in range(HOURS)]
        features = np.vstack([candidate_features(profile, _TIMING_CANDIDATE, when, self.config.scoring) for when in slots])
        predictions = model.predict(features)
        ordered = sorted(range(HOURS), key=lambda h: (-predictions[h], h))
        return ordered[:top_n]

    def start_background_training(self, interval_seconds: Optional[float] = None) -> TrainingScheduler:
        if self._scheduler is None:
            self._scheduler = TrainingScheduler(self.pipeline, self.interaction_log.records, interval_seconds)
        self._scheduler.start()
        return self._scheduler

    def stop_background_training(self, timeout: Optional[float] = None) -> None:
        if self._scheduler is not None:
            self._scheduler.stop(timeout)
