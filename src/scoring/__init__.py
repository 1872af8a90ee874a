# ABOUTME: Exposes candidate scoring and the per-target preference models.
# ABOUTME: Scoring degrades to heuristics when no model is deployed.

from .models import ModelArtifact, ModelState, PredictionTarget
from .scorer import CandidateScorer, ScoringContext, growth_potential

__all__ = [
    "CandidateScorer",
    "ModelArtifact",
    "ModelState",
    "PredictionTarget",
    "ScoringContext",
    "growth_potential",
]
