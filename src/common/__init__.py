# ABOUTME: Makes the shared common package importable across engine components.
# ABOUTME: Re-exports schema types, configuration, and errors for convenience.

from .config import EngineConfig, load_config
from .errors import (
    CorruptCandidateAttributes,
    EngineError,
    InsufficientData,
    ModelUnavailable,
    ProfileConsistencyError,
    TrainingCancelled,
    ValidationRegression,
)
from .schemas import CandidateAttributes, InteractionRecord, NoEligibleCandidate, Outcome, UserProfile

__all__ = [
    "CandidateAttributes",
    "CorruptCandidateAttributes",
    "EngineConfig",
    "EngineError",
    "InsufficientData",
    "InteractionRecord",
    "ModelUnavailable",
    "NoEligibleCandidate",
    "Outcome",
    "ProfileConsistencyError",
    "TrainingCancelled",
    "UserProfile",
    "ValidationRegression",
    "load_config",
]
