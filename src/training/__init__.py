# ABOUTME: Exposes the training pipeline, model registry, and background scheduler.
# ABOUTME: Models are swapped in only after passing validation.

from .pipeline import TrainingPipeline, TrainingReport
from .registry import ModelRegistry
from .scheduler import TrainingScheduler

__all__ = ["ModelRegistry", "TrainingPipeline", "TrainingReport", "TrainingScheduler"]
