"""
Focus Session Service

Persistence-facing operations for focus sessions and their segments. The
per-instance timer (focus_timer.py) drives these; the HTTP routes call them
directly.

Rules enforced here:
- At most one active session per user
- At most one open segment per session (opening one closes the other)
- A session is ended exactly once, checked against the store rather than
  the caller's copy; afterwards only a reduce-only duration edit may
  change it
- Ending a session while the store is unreachable queues the completion
  and still returns a summary computed from the caller's values
- Open segments older than FOCUS_STALE_SEGMENT_HOURS are closed with a
  capped duration instead of being trusted

Usage:
    service = FocusSessionService(repository, gamification, queue, fence)
    session, segment = await service.start_working(user_id, goal_minutes=50)
    summary = await service.end_session_from_segments(user_id, session.id)
"""

import logging
from datetime import datetime, timedelta
from typing import Optional, Union

from studyflow.config import settings
from studyflow.db.repository import LearningRepository
from studyflow.enums.learning import SegmentType, TimerStatus
from studyflow.middleware.error_handling import (
    ConflictError,
    ConnectivityError,
    NotFoundError,
    ValidationError,
)
from studyflow.models.base import Page
from studyflow.models.learning import (
    FocusSegment,
    FocusSession,
    FocusStats,
    QueuedSessionEnd,
    QueueProcessResult,
    RecoveredSessionState,
    SessionDurationUpdate,
    SessionSummary,
)
from studyflow.services.learning.adherence import (
    adherence_rating,
    calculate_adherence,
    score_focus_session,
)
from studyflow.services.learning.discard_fence import InMemoryDiscardFence, RedisDiscardFence
from studyflow.services.learning.gamification_service import GamificationService
from studyflow.services.learning.offline_queue import FocusSessionQueue
from studyflow.utils import Clock, round_half_up, utc_now

logger = logging.getLogger(__name__)

DiscardFence = Union[InMemoryDiscardFence, RedisDiscardFence]


def validate_goal_minutes(goal_minutes: int) -> int:
    """
    Raises:
        ValidationError: Goal outside (0, FOCUS_MAX_GOAL_MINUTES]
    """
    if goal_minutes <= 0 or goal_minutes > settings.FOCUS_MAX_GOAL_MINUTES:
        raise ValidationError(
            f"Goal must be between 1 and {settings.FOCUS_MAX_GOAL_MINUTES} minutes",
            details={"goal_minutes": goal_minutes},
        )
    return goal_minutes


def segment_minutes(segment: FocusSegment, now: datetime) -> float:
    """Recorded duration of a closed segment, or elapsed time of an open one."""
    if segment.ended_at is not None and segment.duration_minutes is not None:
        return segment.duration_minutes
    end = segment.ended_at or now
    return max(0.0, (end - segment.started_at).total_seconds() / 60)


def segment_totals(
    segments: list[FocusSegment], now: datetime, include_open: bool = False
) -> tuple[float, float]:
    """(work_minutes, break_minutes) across segments."""
    work = 0.0
    rest = 0.0
    for segment in segments:
        if segment.is_open and not include_open:
            continue
        minutes = segment_minutes(segment, now)
        if segment.segment_type == SegmentType.WORK:
            work += minutes
        else:
            rest += minutes
    return round_half_up(work, 2), round_half_up(rest, 2)


def is_stale(segment: FocusSegment, now: datetime) -> bool:
    return now - segment.started_at > timedelta(hours=settings.FOCUS_STALE_SEGMENT_HOURS)


def stale_cap_minutes(segment_type: SegmentType) -> int:
    if segment_type == SegmentType.WORK:
        return settings.FOCUS_STALE_WORK_CAP_MINUTES
    return settings.FOCUS_STALE_BREAK_CAP_MINUTES


class FocusSessionService:
    """Session and segment lifecycle against the learning store."""

    def __init__(
        self,
        repository: LearningRepository,
        gamification: Optional[GamificationService] = None,
        queue: Optional[FocusSessionQueue] = None,
        fence: Optional[DiscardFence] = None,
        clock: Clock = utc_now,
    ):
        self.repository = repository
        self.gamification = gamification
        self.queue = queue
        self.fence = fence or InMemoryDiscardFence(clock=clock)
        self.clock = clock

    # ===========================================
    # Sessions
    # ===========================================

    async def create_session(
        self, user_id: str, goal_minutes: Optional[int] = None, now: Optional[datetime] = None
    ) -> FocusSession:
        """
        Start a new session.

        Raises:
            ConflictError: The user already has an active session
            ValidationError: Invalid goal
        """
        goal = validate_goal_minutes(
            goal_minutes if goal_minutes is not None else settings.FOCUS_DEFAULT_GOAL_MINUTES
        )
        active = await self.repository.get_active_session(user_id)
        if active is not None:
            raise ConflictError(
                "An active focus session already exists",
                details={"session_id": active.id},
            )
        session = FocusSession(user_id=user_id, started_at=now or self.clock(), goal_minutes=goal)
        logger.info(f"Created focus session {session.id} for {user_id} (goal {goal} min)")
        return await self.repository.save_session(session)

    async def start_working(
        self, user_id: str, goal_minutes: Optional[int] = None, now: Optional[datetime] = None
    ) -> tuple[FocusSession, FocusSegment]:
        """Open a work segment, creating the session if there is none."""
        now = now or self.clock()
        session = await self.repository.get_active_session(user_id)
        if session is None:
            session = await self.create_session(user_id, goal_minutes, now=now)
        segment = await self.start_segment(session, SegmentType.WORK, now=now)
        return session, segment

    async def get_session(self, user_id: str, session_id: str) -> FocusSession:
        session = await self.repository.get_session(session_id)
        if session is None or session.user_id != user_id:
            raise NotFoundError(f"Focus session {session_id} not found")
        return session

    async def get_active_session(self, user_id: str) -> Optional[FocusSession]:
        return await self.repository.get_active_session(user_id)

    async def sync_session(
        self, session: FocusSession, work_minutes: float, break_minutes: float
    ) -> bool:
        """
        Write running totals for an active session.

        Connectivity failures are logged and reported as False, never raised.

        Raises:
            ConflictError: The session was ended elsewhere
        """
        updated = session.model_copy(
            update={
                "total_work_minutes": round_half_up(work_minutes, 2),
                "total_break_minutes": round_half_up(break_minutes, 2),
                "adherence_percentage": calculate_adherence(work_minutes, break_minutes),
            }
        )
        try:
            saved = await self.repository.save_active_session(updated)
        except ConnectivityError as e:
            logger.warning(f"Sync of session {session.id} failed: {e.message}")
            return False
        if saved is None:
            raise ConflictError(f"Focus session {session.id} has already ended")
        return True

    # ===========================================
    # Segments
    # ===========================================

    async def get_open_segment(self, session_id: str) -> Optional[FocusSegment]:
        return await self.repository.get_open_segment(session_id)

    async def list_segments(self, session_id: str) -> list[FocusSegment]:
        return await self.repository.list_segments(session_id)

    async def start_segment(
        self, session: FocusSession, segment_type: SegmentType, now: Optional[datetime] = None
    ) -> FocusSegment:
        """
        Open a segment of `segment_type`, closing the current one first.

        Opening the type that is already open returns the open segment.

        Raises:
            ConflictError: Session already ended
        """
        if not session.is_active:
            raise ConflictError(f"Focus session {session.id} has ended")

        now = now or self.clock()
        current = await self.repository.get_open_segment(session.id)
        if current is not None:
            if current.segment_type == segment_type:
                return current
            await self.close_segment(current, now=now)

        segment = FocusSegment(session_id=session.id, segment_type=segment_type, started_at=now)
        return await self.repository.save_segment(segment)

    async def close_segment(
        self,
        segment: FocusSegment,
        now: Optional[datetime] = None,
        cap_minutes: Optional[float] = None,
    ) -> FocusSegment:
        """Close a segment, optionally capping the recorded duration."""
        now = now or self.clock()
        minutes = max(0.0, (now - segment.started_at).total_seconds() / 60)
        if cap_minutes is not None and minutes > cap_minutes:
            logger.info(
                f"Capping {segment.segment_type.value} segment {segment.id} "
                f"from {minutes:.1f} to {cap_minutes} min"
            )
            minutes = cap_minutes
        closed = segment.model_copy(
            update={"ended_at": now, "duration_minutes": round_half_up(minutes, 2)}
        )
        return await self.repository.save_segment(closed)

    async def close_open_segment(
        self, session_id: str, now: Optional[datetime] = None
    ) -> Optional[FocusSegment]:
        """Close the open segment; a stale one is capped for its type."""
        now = now or self.clock()
        segment = await self.repository.get_open_segment(session_id)
        if segment is None:
            return None
        cap = stale_cap_minutes(segment.segment_type) if is_stale(segment, now) else None
        return await self.close_segment(segment, now=now, cap_minutes=cap)

    async def quick_end_segment(
        self, session_id: str, now: Optional[datetime] = None
    ) -> Optional[FocusSegment]:
        """
        Close the open segment when an instance shuts down.

        The duration is capped at FOCUS_QUICK_END_CAP_MINUTES.
        """
        segment = await self.repository.get_open_segment(session_id)
        if segment is None:
            return None
        return await self.close_segment(
            segment, now=now, cap_minutes=settings.FOCUS_QUICK_END_CAP_MINUTES
        )

    # ===========================================
    # Ending
    # ===========================================

    async def end_session(
        self,
        session: FocusSession,
        work_minutes: float,
        break_minutes: float,
        now: Optional[datetime] = None,
    ) -> SessionSummary:
        """
        Close a session and credit its net points.

        If the store is unreachable the completion is queued and the summary
        is built from the given values with queued_offline=True.

        Raises:
            ConflictError: Session already ended, here or by another instance
            ConnectivityError: Store unreachable and no queue configured
        """
        if not session.is_active:
            raise ConflictError(f"Focus session {session.id} has already ended")

        now = now or self.clock()
        score = score_focus_session(work_minutes, break_minutes)
        summary = SessionSummary(
            session_id=session.id,
            work_minutes=round_half_up(work_minutes, 2),
            break_minutes=round_half_up(break_minutes, 2),
            adherence=score.adherence,
            adherence_rating=adherence_rating(score.adherence),
            penalty=score,
            points_earned=score.net_points,
            ended_at=now,
        )

        try:
            await self._write_end(session, work_minutes, break_minutes, now)
        except ConnectivityError:
            if self.queue is None:
                raise
            await self.queue.enqueue(
                QueuedSessionEnd(
                    session_id=session.id,
                    user_id=session.user_id,
                    ended_at=now,
                    work_minutes=work_minutes,
                    break_minutes=break_minutes,
                    queued_at=now,
                )
            )
            summary.queued_offline = True
            return summary

        await self._credit(session.user_id, work_minutes, score.net_points, now)
        return summary

    async def end_session_from_segments(
        self, user_id: str, session_id: str, now: Optional[datetime] = None
    ) -> SessionSummary:
        """End a session using the durations recorded in its segments."""
        now = now or self.clock()
        session = await self.get_session(user_id, session_id)
        if not session.is_active:
            raise ConflictError(f"Focus session {session_id} has already ended")
        await self.close_open_segment(session_id, now=now)
        work, rest = segment_totals(await self.repository.list_segments(session_id), now)
        return await self.end_session(session, work, rest, now=now)

    async def complete_queued_end(self, entry: QueuedSessionEnd) -> None:
        """
        Apply a queued session end.

        Sessions that are gone or already ended count as handled. Together
        with the conditional end write this makes replay exactly-once per
        session id.
        """
        session = await self.repository.get_session(entry.session_id)
        if session is None:
            logger.warning(f"Queued end for unknown session {entry.session_id}; discarding")
            return
        if not session.is_active:
            logger.info(f"Session {entry.session_id} already ended; skipping queued end")
            return

        try:
            await self._write_end(
                session, entry.work_minutes, entry.break_minutes, entry.ended_at
            )
        except ConflictError:
            logger.info(f"Session {entry.session_id} ended concurrently; skipping queued end")
            return
        score = score_focus_session(entry.work_minutes, entry.break_minutes)
        await self._credit(session.user_id, entry.work_minutes, score.net_points, entry.ended_at)

    async def replay_offline_queue(self, user_id: Optional[str] = None) -> QueueProcessResult:
        """Replay queued ends, only `user_id`'s when given."""
        if self.queue is None:
            return QueueProcessResult(skipped=True)
        return await self.queue.process(self.complete_queued_end, user_id=user_id)

    async def discard_session(
        self, session: FocusSession, now: Optional[datetime] = None
    ) -> FocusSession:
        """
        End a session without points and fence it against reloads.

        Raises:
            ConflictError: Session already ended, here or by another instance
        """
        now = now or self.clock()
        await self.fence.mark(session.id)

        work, rest = segment_totals(
            await self.repository.list_segments(session.id), now, include_open=True
        )
        discarded = session.model_copy(
            update={
                "ended_at": now,
                "is_active": False,
                "is_incomplete": True,
                "total_work_minutes": work,
                "total_break_minutes": rest,
                "adherence_percentage": calculate_adherence(work, rest),
                "points_earned": 0,
                "points_penalty": 0,
            }
        )
        saved = await self._save_ended(discarded)
        await self._close_segment_after_end(session.id, now)
        logger.info(f"Discarded focus session {session.id}")
        return saved

    async def _write_end(
        self, session: FocusSession, work_minutes: float, break_minutes: float, now: datetime
    ) -> FocusSession:
        score = score_focus_session(work_minutes, break_minutes)
        ended = session.model_copy(
            update={
                "ended_at": now,
                "is_active": False,
                "total_work_minutes": round_half_up(work_minutes, 2),
                "total_break_minutes": round_half_up(break_minutes, 2),
                "adherence_percentage": score.adherence,
                "is_incomplete": score.is_incomplete,
                "points_earned": score.net_points,
                "points_penalty": score.penalty,
            }
        )
        saved = await self._save_ended(ended)
        await self._close_segment_after_end(session.id, now)
        logger.info(
            f"Ended focus session {session.id}: {work_minutes:.1f} work / "
            f"{break_minutes:.1f} break min, adherence {score.adherence}%"
        )
        return saved

    async def _save_ended(self, ended: FocusSession) -> FocusSession:
        saved = await self.repository.save_active_session(ended)
        if saved is None:
            raise ConflictError(f"Focus session {ended.id} has already ended")
        return saved

    async def _close_segment_after_end(self, session_id: str, now: datetime) -> None:
        segment = await self.repository.get_open_segment(session_id)
        if segment is not None:
            await self.close_segment(segment, now=now)

    async def _credit(self, user_id: str, work_minutes: float, points: int, now: datetime) -> None:
        if self.gamification is None:
            return
        try:
            await self.gamification.record_focus_session(user_id, work_minutes, points, now=now)
        except Exception as e:
            logger.error(f"Focus points for {user_id} not credited: {e}")

    # ===========================================
    # Recovery
    # ===========================================

    async def recover_active_session(
        self, user_id: str, now: Optional[datetime] = None
    ) -> Optional[RecoveredSessionState]:
        """
        Rebuild timer state for the user's active session.

        - Fenced (just discarded) sessions are ignored
        - A stale open segment is closed with a capped duration and the
          state comes back idle with a recovery prompt
        - Idle sessions with under FOCUS_MIN_RECOVERABLE_WORK_MINUTES of
          work, or a non-positive goal, are discarded without a prompt

        Returns:
            The recovered state, or None when there is nothing to recover
        """
        now = now or self.clock()
        session = await self.repository.get_active_session(user_id)
        if session is None:
            return None
        if await self.fence.is_fenced(session.id):
            logger.info(f"Session {session.id} was just discarded; not recovering it")
            return None

        segments = await self.repository.list_segments(session.id)
        open_segment = next((s for s in reversed(segments) if s.is_open), None)
        closed_stale = False
        status = TimerStatus.IDLE

        if open_segment is not None:
            if is_stale(open_segment, now):
                await self.close_segment(
                    open_segment, now=now, cap_minutes=stale_cap_minutes(open_segment.segment_type)
                )
                segments = await self.repository.list_segments(session.id)
                open_segment = None
                closed_stale = True
            elif open_segment.segment_type == SegmentType.WORK:
                status = TimerStatus.WORKING
            else:
                status = TimerStatus.BREAK

        work, rest = segment_totals(segments, now, include_open=True)
        state = RecoveredSessionState(
            session=session,
            status=status,
            work_seconds=int(work * 60),
            break_seconds=int(rest * 60),
            open_segment=open_segment,
            closed_stale_segment=closed_stale,
            needs_recovery_prompt=status == TimerStatus.IDLE,
        )

        if status == TimerStatus.IDLE and (
            work < settings.FOCUS_MIN_RECOVERABLE_WORK_MINUTES or session.goal_minutes <= 0
        ):
            logger.info(f"Auto-discarding unrecoverable session {session.id} ({work:.2f} work min)")
            await self.discard_session(session, now=now)
            return None

        if closed_stale:
            closed_work, closed_rest = segment_totals(segments, now)
            await self.sync_session(session, closed_work, closed_rest)

        return state

    async def resume_session(
        self, user_id: str, session_id: str, now: Optional[datetime] = None
    ) -> FocusSegment:
        """Continue a recovered session with a fresh work segment."""
        session = await self.get_session(user_id, session_id)
        return await self.start_segment(session, SegmentType.WORK, now=now)

    # ===========================================
    # Editing & queries
    # ===========================================

    async def update_session_duration(
        self,
        user_id: str,
        session_id: str,
        update: SessionDurationUpdate,
        now: Optional[datetime] = None,
    ) -> FocusSession:
        """
        Reduce the recorded durations of an ended session.

        Raises:
            NotFoundError: Unknown session
            ValidationError: Session active, non-positive work, negative
                break, or any value larger than what was recorded
        """
        session = await self.get_session(user_id, session_id)

        if session.is_active:
            raise ValidationError("Cannot edit an active session; end it first")
        if update.work_minutes <= 0:
            raise ValidationError("Work time must be greater than 0 minutes")
        if update.break_minutes < 0:
            raise ValidationError("Break time cannot be negative")
        if update.work_minutes > session.total_work_minutes:
            raise ValidationError(
                "Cannot increase work time beyond the recorded duration",
                details={"recorded": session.total_work_minutes, "requested": update.work_minutes},
            )
        if update.break_minutes > session.total_break_minutes:
            raise ValidationError(
                "Cannot increase break time beyond the recorded duration",
                details={"recorded": session.total_break_minutes, "requested": update.break_minutes},
            )

        score = score_focus_session(update.work_minutes, update.break_minutes)
        adjusted = session.model_copy(
            update={
                "total_work_minutes": update.work_minutes,
                "total_break_minutes": update.break_minutes,
                "adherence_percentage": score.adherence,
                "is_incomplete": score.is_incomplete,
                "points_earned": score.net_points,
                "points_penalty": score.penalty,
                "was_adjusted": True,
                "adjustment_reason": update.reason or "No reason provided",
                "adjusted_at": now or self.clock(),
            }
        )
        logger.info(
            f"Adjusted session {session_id}: work {session.total_work_minutes} -> "
            f"{update.work_minutes}, break {session.total_break_minutes} -> {update.break_minutes}"
        )
        return await self.repository.save_session(adjusted)

    async def get_user_sessions(
        self, user_id: str, limit: int = 20, offset: int = 0
    ) -> Page[FocusSession]:
        sessions = await self.repository.list_sessions(user_id, limit=limit, offset=offset)
        total = await self.repository.count_sessions(user_id)
        return Page[FocusSession](items=sessions, total=total, limit=limit, offset=offset)

    async def get_sessions_by_date_range(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[FocusSession]:
        if end < start:
            raise ValidationError("Range end must not be before its start")
        return await self.repository.list_sessions(user_id, since=start, until=end)

    async def get_focus_stats(
        self, user_id: str, days: Optional[int] = None, now: Optional[datetime] = None
    ) -> FocusStats:
        """Aggregates over ended sessions started in the last `days` days."""
        days = days if days is not None else settings.FOCUS_STATS_DAYS_DEFAULT
        now = now or self.clock()
        sessions = [
            s
            for s in await self.repository.list_sessions(user_id, since=now - timedelta(days=days))
            if not s.is_active
        ]
        if not sessions:
            return FocusStats(period_days=days)

        work = sum(s.total_work_minutes for s in sessions)
        rest = sum(s.total_break_minutes for s in sessions)
        return FocusStats(
            period_days=days,
            total_sessions=len(sessions),
            total_work_minutes=round_half_up(work, 2),
            total_break_minutes=round_half_up(rest, 2),
            average_adherence=round_half_up(
                sum(s.adherence_percentage for s in sessions) / len(sessions), 2
            ),
            best_adherence=max(s.adherence_percentage for s in sessions),
            total_focus_minutes=round_half_up(work + rest, 2),
        )
