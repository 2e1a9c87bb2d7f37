"""
Learning System Enums

Defines enums for learning modes, mastery lifecycle, review timing and the
focus-session state machine.
"""

from enum import Enum


class LearningMode(str, Enum):
    """
    Review cadence presets.

    Each mode maps to a fixed interval sequence and review window in
    services/learning/modes.py. There are no user-defined intervals.
    """

    ULTRACRAM = "ultracram"  # Hours-long cram, half-hour first gap
    CRAM = "cram"  # A few days of preparation
    STEADY = "steady"  # Default long-term learning
    EXTENDED = "extended"  # Slow, months-long retention
    TEST = "test"  # Minute-scale intervals for manual testing


class MasteryStatus(str, Enum):
    """
    Item lifecycle status.

    Transitions other than the review_count increment are explicit user
    decisions:
    - ACTIVE → MASTERED / MAINTENANCE / ARCHIVED (once eligible)
    - any → REPEAT (resets progress, lands back in ACTIVE)
    """

    ACTIVE = "active"
    MASTERED = "mastered"
    MAINTENANCE = "maintenance"
    ARCHIVED = "archived"
    REPEAT = "repeat"


class TimingStatus(str, Enum):
    """Where a review falls relative to the item's due time."""

    EARLY = "early"
    PERFECT = "perfect"
    IN_WINDOW = "in_window"
    LATE = "late"


class SegmentType(str, Enum):
    """Focus segment kinds."""

    WORK = "work"
    BREAK = "break"


class TimerStatus(str, Enum):
    """
    Focus timer states.

    State transitions:
    - IDLE → WORKING (start working, creates a session if needed)
    - WORKING ↔ BREAK (closes the open segment, opens the other kind)
    - WORKING/BREAK → IDLE (stop, auto-pause, discard)
    """

    IDLE = "idle"
    WORKING = "working"
    BREAK = "break"


class AutoPauseReason(str, Enum):
    """Why the timer paused itself."""

    MAX_DURATION = "max_duration"  # goal × multiplier exceeded
    MAX_HOURS = "max_hours"  # absolute session ceiling


class FocusEventType(str, Enum):
    """Session-level events broadcast between app instances."""

    WORK_STARTED = "work_started"
    BREAK_STARTED = "break_started"
    ENDED = "ended"
