# ABOUTME: Exposes the challenge recommender facade and its data-source collaborators.
# ABOUTME: The CLI lives in cli.py and is not imported here.

from .engine import ChallengeRecommender, EngineDiagnostics
from .sources import InMemoryCatalog, InMemoryInteractionLog

__all__ = ["ChallengeRecommender", "EngineDiagnostics", "InMemoryCatalog", "InMemoryInteractionLog"]
