# ABOUTME: Declares the error taxonomy shared by profiling, scoring, and training.
# ABOUTME: Every class except ProfileConsistencyError is a recoverable, handled state.


class EngineError(Exception):
    """Base class for recommendation engine errors."""


class InsufficientData(EngineError):
    """Too little history for a feature or model to be meaningful."""


class ModelUnavailable(EngineError):
    """No deployed model for a target, or its artifact failed to load."""


class ValidationRegression(EngineError):
    """A freshly trained model scored worse than the deployed one beyond tolerance."""

    def __init__(self, target: str, candidate_metric: float, deployed_metric: float, tolerance: float):
        super().__init__(
            f"{target}: candidate metric {candidate_metric:.4f} < deployed {deployed_metric:.4f} - {tolerance:.4f}"
        )
        self.target = target
        self.candidate_metric = candidate_metric
        self.deployed_metric = deployed_metric
        self.tolerance = tolerance


class CorruptCandidateAttributes(EngineError):
    """A malformed catalog entry."""


class TrainingCancelled(EngineError):
    """A training run was cancelled before its model could be swapped in."""


class ProfileConsistencyError(EngineError):
    """Incrementally maintained profile state disagrees with a full rebuild."""
