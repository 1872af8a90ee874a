# ABOUTME: Holds the single deployed model per prediction target and its lifecycle flags.
# ABOUTME: Swaps promoted artifacts in atomically and persists them as torch checkpoints.

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from src.common.console import log, warn
from src.common.errors import ModelUnavailable
from src.scoring.models import ModelArtifact, ModelState, PredictionTarget, load_artifact, save_artifact


@dataclass(frozen=True)
class TargetSlot:
    deployed: Optional[ModelArtifact] = None
    stale: bool = False
    retraining: bool = False
    last_decision: Optional[ModelState] = None
    examples_seen: int = 0
    last_attempt_at: Optional[datetime] = None

    @property
    def state(self) -> ModelState:
        if self.retraining:
            return ModelState.RETRAINING
        if self.deployed is None:
            return ModelState.UNTRAINED
        if self.stale:
            return ModelState.STALE
        return ModelState.DEPLOYED


class ModelRegistry:
    """
    Single-writer, many-reader store of deployed models.

    Slots are immutable values replaced under a lock, so readers can take the
    current slot without locking and always see a consistent model. Each
    target also has a run lock that keeps at most one training run in flight.
    """

    def __init__(self, artifact_dir: Optional[Path] = None) -> None:
        self.artifact_dir = Path(artifact_dir) if artifact_dir is not None else None
        self._lock = threading.Lock()
        self._slots: Dict[PredictionTarget, TargetSlot] = {target: TargetSlot() for target in PredictionTarget}
        self._run_locks = {target: threading.Lock() for target in PredictionTarget}

    def slot(self, target: PredictionTarget) -> TargetSlot:
        return self._slots[target]

    def state(self, target: PredictionTarget) -> ModelState:
        return self._slots[target].state

    def deployed(self, target: PredictionTarget) -> ModelArtifact:
        artifact = self._slots[target].deployed
        if artifact is None:
            raise ModelUnavailable(f"No deployed {target.value} model.")
        return artifact

    def artifact_path(self, target: PredictionTarget) -> Optional[Path]:
        if self.artifact_dir is None:
            return None
        return self.artifact_dir / f"{target.value}.pt"

    def begin_run(self, target: PredictionTarget) -> bool:
        """Claim the target for training; False when a run is already in flight."""
        if not self._run_locks[target].acquire(blocking=False):
            return False
        self._update(target, retraining=True)
        return True

    def end_run(self, target: PredictionTarget, attempted_at: Optional[datetime] = None) -> None:
        changes = {"retraining": False}
        if attempted_at is not None:
            changes["last_attempt_at"] = attempted_at
        self._update(target, **changes)
        self._run_locks[target].release()

    def mark_stale(self, target: PredictionTarget) -> None:
        if self._slots[target].deployed is not None and not self._slots[target].stale:
            self._update(target, stale=True)
            log("registry", f"{target.value} v{self._slots[target].deployed.version} marked stale")

    def promote(self, candidate: ModelArtifact, examples_seen: int) -> None:
        """Persist (when configured) and swap in a validated candidate."""

        path = self.artifact_path(candidate.target)
        if path is not None:
            save_artifact(candidate, path)
        self._update(
            candidate.target,
            deployed=candidate,
            stale=False,
            last_decision=ModelState.DEPLOYED,
            examples_seen=examples_seen,
        )
        log("registry", f"promoted {candidate.target.value} v{candidate.version}")

    def reject(self, target: PredictionTarget, examples_seen: int) -> None:
        """Discard a candidate: keep the deployed model and clear its stale flag."""

        self._update(target, stale=False, last_decision=ModelState.ROLLED_BACK, examples_seen=examples_seen)

    def load(self, target: PredictionTarget) -> bool:
        """Load a persisted artifact; a missing or unreadable file leaves the target untrained."""

        path = self.artifact_path(target)
        if path is None or not path.exists():
            return False
        try:
            artifact = load_artifact(path, expected=target)
        except ModelUnavailable as exc:
            warn("registry", str(exc))
            return False
        self._update(
            target,
            deployed=artifact,
            stale=False,
            last_decision=ModelState.DEPLOYED,
            examples_seen=artifact.n_train + artifact.n_val,
            last_attempt_at=artifact.trained_at,
        )
        log("registry", f"loaded {target.value} v{artifact.version} from {path}")
        return True

    def load_all(self) -> None:
        for target in PredictionTarget:
            self.load(target)

    def _update(self, target: PredictionTarget, **changes) -> None:
        with self._lock:
            self._slots[target] = replace(self._slots[target], **changes)
