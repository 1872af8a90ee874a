# ABOUTME: Exposes the profile builder and temporal pattern analyzer.
# ABOUTME: Both turn raw interaction history into derived, rebuildable summaries.

from .profile_builder import ProfileBuilder, rebuild_profile
from .temporal import analyze_timings, recommend_hours

__all__ = ["ProfileBuilder", "analyze_timings", "rebuild_profile", "recommend_hours"]
