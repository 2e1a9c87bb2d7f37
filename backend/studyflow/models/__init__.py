"""Pydantic models for the application."""

from studyflow.models.learning import (
    FocusSegment,
    FocusSession,
    LearningItem,
    ReviewEvent,
    UserGamificationStats,
)

__all__ = [
    "FocusSegment",
    "FocusSession",
    "LearningItem",
    "ReviewEvent",
    "UserGamificationStats",
]
