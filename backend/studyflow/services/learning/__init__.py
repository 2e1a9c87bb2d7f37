"""
Learning Services

Spaced-repetition scheduling, points and adherence scoring, focus sessions
and achievements.

Modules:
- modes: Per-mode interval ladders, timing windows and multipliers
- scheduler: Next-review computation and mastery status transitions
- timing: Timing classification and due/upcoming/status queries
- points: Review points, combos, streaks and levels
- adherence: Focus adherence, penalty tiers and break recommendations
- achievements: Achievement catalogue and evaluation
- events: Event bus and the Redis relay between instances
- offline_queue: Session ends waiting for connectivity
- discard_fence: Short-lived marker for just-discarded sessions
- gamification_service: Review processing and user stats
- focus_service: Focus session and segment persistence
- focus_timer: Per-instance focus timer state machine

Usage:
    from studyflow.services.learning import (
        GamificationService,
        FocusSessionService,
        FocusTimer,
        PointsEngine,
    )
"""

from studyflow.services.learning.achievements import ACHIEVEMENTS, evaluate, evaluate_with_bonuses
from studyflow.services.learning.adherence import (
    adherence_rating,
    calculate_adherence,
    calculate_penalty,
    recommended_break_minutes,
)
from studyflow.services.learning.events import (
    EventBus,
    FocusAutoPausedEvent,
    FocusGoalReachedEvent,
    FocusSessionEvent,
    RedisEventRelay,
    StatsChangedEvent,
)
from studyflow.services.learning.discard_fence import InMemoryDiscardFence, RedisDiscardFence
from studyflow.services.learning.focus_service import FocusSessionService
from studyflow.services.learning.focus_timer import FocusTimer
from studyflow.services.learning.gamification_service import GamificationService
from studyflow.services.learning.modes import MODE_TABLE, get_mode_config
from studyflow.services.learning.offline_queue import FocusSessionQueue
from studyflow.services.learning.points import PointsEngine, calculate_level, level_progress
from studyflow.services.learning.scheduler import apply_review, compute_next_review
from studyflow.services.learning.timing import classify

__all__ = [
    # Scheduling
    "MODE_TABLE",
    "get_mode_config",
    "compute_next_review",
    "apply_review",
    "classify",
    # Scoring
    "PointsEngine",
    "calculate_level",
    "level_progress",
    "calculate_adherence",
    "calculate_penalty",
    "adherence_rating",
    "recommended_break_minutes",
    "ACHIEVEMENTS",
    "evaluate",
    "evaluate_with_bonuses",
    # Events
    "EventBus",
    "FocusSessionEvent",
    "FocusGoalReachedEvent",
    "FocusAutoPausedEvent",
    "StatsChangedEvent",
    "RedisEventRelay",
    # Services
    "GamificationService",
    "FocusSessionService",
    "FocusTimer",
    "FocusSessionQueue",
    "InMemoryDiscardFence",
    "RedisDiscardFence",
]
