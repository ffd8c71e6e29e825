"""
Orchestration - the coaching turn pipeline.
"""

from coach_engine.orchestration.coaching_engine import CoachingEngine, build_engine

__all__ = ["CoachingEngine", "build_engine"]
