"""
SQLAlchemy Database Models for the Learning System

Tables:
- learning_items: Items under spaced repetition with their schedule state
- review_events: Append-only review log (source of truth for streaks)
- user_gamification_stats: Cached per-user aggregates
- user_achievements: Unlocked achievements
- focus_sessions: Focus sessions with adherence and points
- focus_segments: Work/break segments inside a session

ARCHITECTURE NOTE:
    This file contains SQLALCHEMY models for database persistence.
    There is a corresponding Pydantic file: studyflow/models/learning.py

    Data flows: Service Layer → Pydantic → SQLAlchemy → Database
"""

from datetime import date, datetime, timezone
from typing import Optional
import uuid

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from studyflow.db.base import Base


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


# ===========================================
# Learning Items & Reviews
# ===========================================


class LearningItemRecord(Base):
    """
    A learning item and its scheduling state.

    Attributes:
        review_count: Completed reviews. 0 exactly when next_review_at is null.
        next_review_at: Due time; null until the first review.
        interval_days: Fractional days of the most recent interval.
        ease_factor: Carried for clients; the scheduler never changes it.
        mastery_status: active, mastered, maintenance, archived or repeat.
        maintenance_interval_days: Fixed recurrence while in maintenance.
    """

    __tablename__ = "learning_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    topic_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    content: Mapped[str] = mapped_column(Text, default="")
    priority: Mapped[int] = mapped_column(Integer, default=3)
    learning_mode: Mapped[str] = mapped_column(String(20), default="steady")

    review_count: Mapped[int] = mapped_column(Integer, default=0)
    last_reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    next_review_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), index=True
    )
    interval_days: Mapped[float] = mapped_column(Float, default=0.0)
    ease_factor: Mapped[float] = mapped_column(Float, default=2.5)

    mastery_status: Mapped[str] = mapped_column(String(20), default="active")
    maintenance_interval_days: Mapped[Optional[int]] = mapped_column(Integer)
    mastery_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    archive_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)


class ReviewEventRecord(Base):
    """One completed review. Never updated."""

    __tablename__ = "review_events"
    __table_args__ = (Index("ix_review_events_user_time", "user_id", "reviewed_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64))
    item_id: Mapped[str] = mapped_column(ForeignKey("learning_items.id", ondelete="CASCADE"))
    reviewed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    timing_status: Mapped[Optional[str]] = mapped_column(String(20))
    points_earned: Mapped[int] = mapped_column(Integer, default=0)
    was_perfect: Mapped[bool] = mapped_column(Boolean, default=False)
    combo_count: Mapped[int] = mapped_column(Integer, default=0)


# ===========================================
# Gamification
# ===========================================


class UserStatsRecord(Base):
    """Cached aggregates; streaks are reconciled from review_events on read."""

    __tablename__ = "user_gamification_stats"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    total_points: Mapped[int] = mapped_column(Integer, default=0)
    current_streak: Mapped[int] = mapped_column(Integer, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, default=0)
    last_review_date: Mapped[Optional[date]] = mapped_column(Date)
    today: Mapped[Optional[date]] = mapped_column(Date)
    reviews_today: Mapped[int] = mapped_column(Integer, default=0)
    points_today: Mapped[int] = mapped_column(Integer, default=0)
    total_reviews: Mapped[int] = mapped_column(Integer, default=0)
    perfect_reviews: Mapped[int] = mapped_column(Integer, default=0)
    focus_sessions: Mapped[int] = mapped_column(Integer, default=0)
    focus_work_minutes: Mapped[float] = mapped_column(Float, default=0.0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )


class UserAchievementRecord(Base):
    """An unlocked achievement; unique per user and achievement."""

    __tablename__ = "user_achievements"
    __table_args__ = (UniqueConstraint("user_id", "achievement_id"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    achievement_id: Mapped[str] = mapped_column(String(50))
    unlocked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    points_awarded: Mapped[int] = mapped_column(Integer, default=0)


# ===========================================
# Focus Sessions
# ===========================================


class FocusSessionRecord(Base):
    """
    A focus session.

    Attributes:
        is_active: True until the session is ended or discarded.
        adherence_percentage: Work share of the session, 0-100.
        points_penalty: Points withheld for low adherence.
        was_adjusted: Set by a reduce-only duration edit.
    """

    __tablename__ = "focus_sessions"
    __table_args__ = (Index("ix_focus_sessions_user_active", "user_id", "is_active"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64))
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    goal_minutes: Mapped[int] = mapped_column(Integer, default=60)
    total_work_minutes: Mapped[float] = mapped_column(Float, default=0.0)
    total_break_minutes: Mapped[float] = mapped_column(Float, default=0.0)
    adherence_percentage: Mapped[float] = mapped_column(Float, default=100.0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    is_incomplete: Mapped[bool] = mapped_column(Boolean, default=False)
    points_earned: Mapped[int] = mapped_column(Integer, default=0)
    points_penalty: Mapped[int] = mapped_column(Integer, default=0)
    was_adjusted: Mapped[bool] = mapped_column(Boolean, default=False)
    adjustment_reason: Mapped[Optional[str]] = mapped_column(Text)
    adjusted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class FocusSegmentRecord(Base):
    """A work or break segment. At most one open (ended_at null) per session."""

    __tablename__ = "focus_segments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    session_id: Mapped[str] = mapped_column(
        ForeignKey("focus_sessions.id", ondelete="CASCADE"), index=True
    )
    segment_type: Mapped[str] = mapped_column(String(10))
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utc_now)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    duration_minutes: Mapped[Optional[float]] = mapped_column(Float)
