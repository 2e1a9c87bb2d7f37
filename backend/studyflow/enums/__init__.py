"""Enum definitions."""

from studyflow.enums.learning import (
    AutoPauseReason,
    FocusEventType,
    LearningMode,
    MasteryStatus,
    SegmentType,
    TimerStatus,
    TimingStatus,
)

__all__ = [
    "AutoPauseReason",
    "FocusEventType",
    "LearningMode",
    "MasteryStatus",
    "SegmentType",
    "TimerStatus",
    "TimingStatus",
]
