"""Interaction tracking and preference learning."""

from .learner import LearningOutcome, LearningStatus, PreferenceLearner
from .tracker import InteractionSummary, InteractionTracker

__all__ = [
    "InteractionSummary",
    "InteractionTracker",
    "LearningOutcome",
    "LearningStatus",
    "PreferenceLearner",
]
