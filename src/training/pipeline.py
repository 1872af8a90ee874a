# ABOUTME: Decides when to retrain, trains a candidate per target, and promotes or rolls back.
# ABOUTME: One parameterized routine covers completion, enjoyment, and timing targets.

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from src.common.config import EngineConfig
from src.common.console import log, warn
from src.common.evaluation import evaluate_predictions, validation_score
from src.common.errors import InsufficientData, TrainingCancelled, ValidationRegression
from src.common.schemas import InteractionRecord
from src.scoring.models import ModelArtifact, PredictionTarget, fit_network

from .examples import build_training_frame, chronological_split, feature_matrix
from .registry import ModelRegistry

PROMOTED = "promoted"
ROLLED_BACK = "rolled_back"
INSUFFICIENT_DATA = "insufficient_data"
IN_FLIGHT = "in_flight"
CANCELLED = "cancelled"


@dataclass(frozen=True)
class TrainingReport:
    """Outcome of one retrain cycle for one target."""

    target: PredictionTarget
    outcome: str
    deployed_version: Optional[int]
    candidate_metric: Optional[float] = None
    deployed_metric: Optional[float] = None
    n_train: int = 0
    n_val: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    extra_metrics: Dict[str, float] = field(default_factory=dict)
    message: str = ""


def labeled_count(target: PredictionTarget, history: Sequence[InteractionRecord]) -> int:
    if target is PredictionTarget.ENJOYMENT:
        return sum(1 for r in history if r.completed and r.rating is not None)
    return sum(1 for r in history if r.is_terminal)


class TrainingPipeline:
    """
    Retrain trigger policy plus the train / validate / promote cycle.

    Runs never touch the deployed model until a candidate has passed
    validation; the swap is a single registry update, so cancelling at any
    point leaves serving untouched.
    """

    def __init__(
        self,
        registry: ModelRegistry,
        config: Optional[EngineConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.registry = registry
        self.config = config or EngineConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def retrain_due(self, target: PredictionTarget, history: Sequence[InteractionRecord], now: datetime) -> bool:
        """New labeled examples since the last run >= threshold, or model age >= the interval."""

        training = self.config.training
        slot = self.registry.slot(target)
        if labeled_count(target, history) - slot.examples_seen >= training.min_new_examples:
            return True
        if slot.last_attempt_at is not None:
            return now - slot.last_attempt_at >= timedelta(days=training.max_model_age_days)
        return False

    def due_targets(self, history: Sequence[InteractionRecord]) -> List[PredictionTarget]:
        """Targets whose trigger fired; their deployed models are marked stale."""

        now = self._clock()
        due = [target for target in PredictionTarget if self.retrain_due(target, history, now)]
        for target in due:
            self.registry.mark_stale(target)
        return due

    def run_due(self, history: Sequence[InteractionRecord], cancel_event=None) -> List[TrainingReport]:
        reports = []
        for target in self.due_targets(history):
            if cancel_event is not None and cancel_event.is_set():
                break
            reports.append(self.run(target, history, cancel_event=cancel_event))
        return reports

    def run(
        self,
        target: PredictionTarget,
        history: Sequence[InteractionRecord],
        cancel_event=None,
    ) -> TrainingReport:
        """Train, validate, and promote or reject exactly once for ``target``."""

        if not self.registry.begin_run(target):
            log("training", f"{target.value} run already in flight; ignoring trigger")
            return self._report(target, IN_FLIGHT)

        started = self._clock()
        attempted = False
        try:
            report = self._train_and_decide(target, list(history), started, cancel_event)
            attempted = report.outcome in (PROMOTED, ROLLED_BACK)
            return report
        except InsufficientData as exc:
            log("training", f"{target.value} skipped: {exc}")
            return self._report(target, INSUFFICIENT_DATA, started_at=started, message=str(exc))
        except TrainingCancelled as exc:
            warn("training", f"{exc}; deployed model unchanged")
            return self._report(target, CANCELLED, started_at=started, message=str(exc))
        finally:
            self.registry.end_run(target, attempted_at=started if attempted else None)

    def _train_and_decide(
        self,
        target: PredictionTarget,
        history: List[InteractionRecord],
        started: datetime,
        cancel_event,
    ) -> TrainingReport:
        training = self.config.training
        frame = target.labeled(build_training_frame(history, self.config.profile, self.config.scoring))
        if len(frame) < max(2, training.min_training_examples):
            raise InsufficientData(
                f"{len(frame)} labeled examples, need {max(2, training.min_training_examples)}"
            )
        examples_seen = labeled_count(target, history)

        train, val = chronological_split(frame, training.validation_fraction)
        x_train, x_val = feature_matrix(train), feature_matrix(val)
        y_train, y_val = target.labels(train), target.labels(val)

        log("training", f"{target.value}: fitting on {len(train)} examples, validating on {len(val)}")
        network = fit_network(target, x_train, y_train, training, cancel_event=cancel_event)

        current = self.registry.slot(target).deployed
        candidate = ModelArtifact(
            target=target,
            version=(current.version if current is not None else 0) + 1,
            trained_at=self._clock(),
            validation_metric=0.0,
            n_train=len(train),
            n_val=len(val),
            deep_units=tuple(training.deep_units),
            network=network,
        )
        y_candidate = candidate.predict(x_val)
        candidate_metric = validation_score(y_val, y_candidate, binary=target.binary)
        extra = _extra_metrics(target, y_val, y_candidate)
        candidate = replace(candidate, validation_metric=candidate_metric, extra_metrics=extra)

        deployed_metric = None
        if current is not None:
            # Re-score the deployed model on the same split so both metrics are comparable.
            deployed_metric = validation_score(y_val, current.predict(x_val), binary=target.binary)

        if cancel_event is not None and cancel_event.is_set():
            raise TrainingCancelled(f"{target.value} training cancelled before promotion")

        try:
            self._gate(target, candidate_metric, deployed_metric)
        except ValidationRegression as exc:
            warn("training", f"rejected candidate: {exc}")
            self.registry.reject(target, examples_seen)
            return self._report(
                target,
                ROLLED_BACK,
                candidate_metric=candidate_metric,
                deployed_metric=deployed_metric,
                n_train=len(train),
                n_val=len(val),
                started_at=started,
                extra_metrics=extra,
                message=str(exc),
            )

        self.registry.promote(candidate, examples_seen)
        log(
            "training",
            f"{target.value} v{candidate.version} {target.metric_name}={candidate_metric:.4f}"
            + (f" (deployed {deployed_metric:.4f})" if deployed_metric is not None else ""),
        )
        return self._report(
            target,
            PROMOTED,
            candidate_metric=candidate_metric,
            deployed_metric=deployed_metric,
            n_train=len(train),
            n_val=len(val),
            started_at=started,
            extra_metrics=extra,
        )

    def _gate(self, target: PredictionTarget, candidate_metric: float, deployed_metric: Optional[float]) -> None:
        """Raise ValidationRegression when the candidate is worse than deployed beyond tolerance."""

        tolerance = self.config.training.promotion_tolerance
        if deployed_metric is not None and candidate_metric < deployed_metric - tolerance:
            raise ValidationRegression(target.value, candidate_metric, deployed_metric, tolerance)

    def _report(self, target: PredictionTarget, outcome: str, **fields) -> TrainingReport:
        deployed = self.registry.slot(target).deployed
        return TrainingReport(
            target=target,
            outcome=outcome,
            deployed_version=deployed.version if deployed is not None else None,
            finished_at=self._clock(),
            **fields,
        )


def _extra_metrics(target: PredictionTarget, y_true: np.ndarray, y_pred: np.ndarray) -> Dict[str, float]:
    predictions = pd.DataFrame({"y_true": y_true, "y_pred": y_pred})
    metrics = ["auc", "accuracy", "calibration_ece"] if target.binary else ["mae"]
    return {name: float(value) for name, value in evaluate_predictions(predictions, metrics).items()}
