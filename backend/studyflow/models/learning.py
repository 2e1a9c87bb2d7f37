"""
Learning System Models (Pydantic)

Domain records and request/response schemas for:
- Learning items and their review schedule
- Review timing and points breakdowns
- Focus sessions, segments and session summaries
- Per-user gamification stats and achievements

ARCHITECTURE NOTE:
    This file contains PYDANTIC models. The relational shape lives in
    studyflow/db/models_learning.py and adapters convert between the two.

    Data flows: API Request → Pydantic → Service → Repository → Database

API Contract:
    Request models use StrictRequest (extra="forbid") to reject unknown fields.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from studyflow.enums.learning import (
    LearningMode,
    MasteryStatus,
    SegmentType,
    TimerStatus,
    TimingStatus,
)
from studyflow.models.base import DomainModel, StrictRequest, StrictResponse
from studyflow.utils import utc_now


def _new_id() -> str:
    return str(uuid4())


# ===========================================
# Mode Table
# ===========================================


class PointsMultiplier(BaseModel):
    """Timing multipliers applied to the review base points."""

    model_config = ConfigDict(frozen=True)

    on_time: float
    in_window: float
    late: float


class ModeConfig(BaseModel):
    """
    Immutable configuration for one learning mode.

    intervals[k] is the number of hours until the next review after the
    review with pre-increment count k; the last entry is the mastery interval
    and is reused for every count beyond the table.
    """

    model_config = ConfigDict(frozen=True)

    mode: LearningMode
    intervals: tuple[float, ...] = Field(..., min_length=1)
    window_before: float = Field(..., ge=0, description="Hours before due")
    window_after: float = Field(..., ge=0, description="Hours after due")
    points_multiplier: PointsMultiplier
    maintenance_cap_days: float = Field(..., gt=0)


# ===========================================
# Learning Items
# ===========================================


class LearningItem(DomainModel):
    """
    One atomic fact being learned.

    review_count == 0 exactly when next_review_at is None: never-reviewed
    items are "ready to learn" and never due.
    """

    id: str = Field(default_factory=_new_id)
    user_id: str
    topic_id: Optional[str] = None
    content: str = ""
    priority: int = Field(3, ge=1, le=5)
    learning_mode: LearningMode = LearningMode.STEADY

    review_count: int = Field(0, ge=0)
    last_reviewed_at: Optional[datetime] = None
    next_review_at: Optional[datetime] = None
    interval_days: float = 0.0
    ease_factor: float = 2.5

    mastery_status: MasteryStatus = MasteryStatus.ACTIVE
    maintenance_interval_days: Optional[int] = None
    mastery_date: Optional[datetime] = None
    archive_date: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def is_ready_to_learn(self) -> bool:
        return self.review_count == 0


class LearningItemCreate(StrictRequest):
    """Request to add a learning item."""

    content: str = Field(..., min_length=1)
    topic_id: Optional[str] = None
    priority: int = Field(3, ge=1, le=5)
    learning_mode: LearningMode = LearningMode.STEADY


class MasteryStatusUpdate(StrictRequest):
    """Explicit lifecycle decision for an item."""

    status: MasteryStatus
    maintenance_days: Optional[float] = Field(
        None, gt=0, description="Override the computed maintenance interval"
    )


class ReviewSchedule(StrictResponse):
    """Outcome of scheduling the next review."""

    next_review_at: datetime
    interval_days: float
    mastery_progress: float = Field(..., ge=0, le=1)
    will_be_mastered: bool


class TimingClassification(StrictResponse):
    """Review time relative to the due time; hours_offset > 0 means late."""

    status: TimingStatus
    hours_offset: float
    due_at: datetime


class ItemStatusBuckets(StrictResponse):
    """Items grouped for the dashboard."""

    overdue: list[LearningItem] = Field(default_factory=list)
    due: list[LearningItem] = Field(default_factory=list)
    upcoming: list[LearningItem] = Field(default_factory=list)
    mastered: list[LearningItem] = Field(default_factory=list)


# ===========================================
# Points and Levels
# ===========================================


class PointsBreakdown(StrictResponse):
    """Points for a single review."""

    base_points: int
    time_bonus: float
    priority_bonus: float
    total_points: int
    is_perfect_timing: bool = False
    timing_status: Optional[TimingStatus] = None


class ComboState(StrictResponse):
    """Session combo after registering a review."""

    count: int
    bonus: int = 0


class LevelProgress(StrictResponse):
    """Level derived from total points and progress toward the next one."""

    level: int
    total_points: int
    current_level_progress: int
    points_needed: int
    progress_percentage: float
    level_cost: int


class PenaltyResult(StrictResponse):
    """Focus-session adherence penalty."""

    adherence: float
    rate: float
    penalty: int
    is_incomplete: bool
    base_points: int
    net_points: int


# ===========================================
# Focus Sessions
# ===========================================


class FocusSession(DomainModel):
    """
    One continuous study session.

    At most one active session per user. Once ended the record only changes
    through a reduce-only duration edit.
    """

    id: str = Field(default_factory=_new_id)
    user_id: str
    started_at: datetime = Field(default_factory=utc_now)
    ended_at: Optional[datetime] = None
    goal_minutes: int = 60
    total_work_minutes: float = 0.0
    total_break_minutes: float = 0.0
    adherence_percentage: float = 100.0
    is_active: bool = True
    is_incomplete: bool = False
    points_earned: int = 0
    points_penalty: int = 0
    was_adjusted: bool = False
    adjustment_reason: Optional[str] = None
    adjusted_at: Optional[datetime] = None


class FocusSegment(DomainModel):
    """A contiguous work or break interval inside a session."""

    id: str = Field(default_factory=_new_id)
    session_id: str
    segment_type: SegmentType
    started_at: datetime = Field(default_factory=utc_now)
    ended_at: Optional[datetime] = None
    duration_minutes: Optional[float] = None

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


class SessionSummary(StrictResponse):
    """What the user sees when a session ends."""

    session_id: str
    work_minutes: float
    break_minutes: float
    adherence: float
    adherence_rating: str
    penalty: PenaltyResult
    points_earned: int
    ended_at: datetime
    queued_offline: bool = False


class RecoveredSessionState(StrictResponse):
    """Timer state rebuilt from a persisted active session."""

    session: FocusSession
    status: TimerStatus
    work_seconds: int = 0
    break_seconds: int = 0
    open_segment: Optional[FocusSegment] = None
    closed_stale_segment: bool = False
    needs_recovery_prompt: bool = False


class QueuedSessionEnd(DomainModel):
    """Session-end payload waiting for connectivity."""

    session_id: str
    user_id: str
    ended_at: datetime
    work_minutes: float
    break_minutes: float
    queued_at: datetime = Field(default_factory=utc_now)


class QueueProcessResult(StrictResponse):
    """Outcome of one offline-queue pass."""

    processed: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    dropped: list[str] = Field(default_factory=list)
    skipped: bool = False


class FocusSessionStart(StrictRequest):
    """Request to start working (creates the session)."""

    goal_minutes: int = Field(60, gt=0, le=480)


class FocusSessionStarted(StrictResponse):
    """A session with its freshly opened work segment."""

    session: FocusSession
    segment: FocusSegment


class FocusSegmentStart(StrictRequest):
    """Request to switch between work and break."""

    segment_type: SegmentType


class SessionDurationUpdate(StrictRequest):
    """
    Reduce-only correction of an ended session.

    Values are validated by the service so the same rules apply to every
    caller, not just HTTP clients.
    """

    work_minutes: float
    break_minutes: float
    reason: Optional[str] = Field(None, max_length=500)


class FocusStats(StrictResponse):
    """Aggregates over a user's recent sessions."""

    period_days: int
    total_sessions: int = 0
    total_work_minutes: float = 0.0
    total_break_minutes: float = 0.0
    average_adherence: float = 0.0
    best_adherence: float = 0.0
    total_focus_minutes: float = 0.0


# ===========================================
# Gamification
# ===========================================


class UserGamificationStats(DomainModel):
    """
    Per-user aggregates.

    Level is derived from total_points and never stored. current_streak and
    longest_streak are a cache of the review history and are reconciled
    against it on read.
    """

    user_id: str
    total_points: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    last_review_date: Optional[date] = None
    today: Optional[date] = None
    reviews_today: int = 0
    points_today: int = 0
    total_reviews: int = 0
    perfect_reviews: int = 0
    focus_sessions: int = 0
    focus_work_minutes: float = 0.0
    achievements: list[str] = Field(default_factory=list)


class ReviewEvent(DomainModel):
    """Append-only review log entry."""

    id: str = Field(default_factory=_new_id)
    user_id: str
    item_id: str
    reviewed_at: datetime
    timing_status: Optional[TimingStatus] = None
    points_earned: int = 0
    was_perfect: bool = False
    combo_count: int = 0


class AchievementDefinition(StrictResponse):
    """Catalogue entry: unlocks when `metric` reaches `threshold`."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str
    points: int
    metric: str
    threshold: float


class AchievementUnlock(DomainModel):
    """A persisted unlock."""

    user_id: str
    achievement_id: str
    unlocked_at: datetime = Field(default_factory=utc_now)
    points_awarded: int = 0


class AchievementStatus(StrictResponse):
    """Catalogue entry plus whether the user has it."""

    achievement: AchievementDefinition
    unlocked: bool
    unlocked_at: Optional[datetime] = None


class StatsSnapshot(StrictResponse):
    """Input to the achievement evaluator."""

    total_reviews: int = 0
    current_streak: int = 0
    mastered_items: int = 0
    total_points: int = 0
    level: int = 1
    perfect_reviews: int = 0
    session_reviews: int = 0
    focus_sessions: int = 0
    focus_work_minutes: float = 0.0


class UserStatsResponse(StrictResponse):
    """Reconciled stats with the derived level."""

    stats: UserGamificationStats
    level: LevelProgress


class ReviewResult(StrictResponse):
    """Everything produced by reviewing one item."""

    item: LearningItem
    schedule: ReviewSchedule
    points: PointsBreakdown
    combo: ComboState
    streak_bonus: int = 0
    mastery_bonus: int = 0
    achievement_bonus: int = 0
    total_awarded: int
    new_achievements: list[AchievementDefinition] = Field(default_factory=list)
    stats: Optional[UserStatsResponse] = None
    leveled_up: bool = False
