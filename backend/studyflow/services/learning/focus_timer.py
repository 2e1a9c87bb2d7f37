"""
Focus Timer

The focus-session state machine for one app instance.

States:
    idle     no segment open (no session, an auto-paused session, or a
             recovered session waiting for resume/discard)
    working  work segment open
    break    break segment open

Transitions:
    start_working   idle → working (creates the session if needed)
                    break → working
    start_break     working → break
    stop            working/break/idle-with-session → idle, returns a summary
    resume          recovered or auto-paused session → working
    discard         any → idle, session ended without points and fenced

Ticks:
    Every FOCUS_TICK_SECONDS the running ticker adds one second to the work
    or break counter and evaluates, in order:
      1. elapsed >= FOCUS_MAX_SESSION_HOURS        → auto-pause (max_hours)
      2. elapsed >= goal × FOCUS_GOAL_MULTIPLIER   → auto-pause (max_duration),
         once per session
      3. work time >= goal                         → goal reached, once
    Every FOCUS_RECONCILE_EVERY_TICKS ticks state is re-derived from the store
    (skipped while hidden) and every FOCUS_SYNC_EVERY_TICKS ticks running
    totals are written (one sync at a time, up to FOCUS_SYNC_MAX_RETRIES
    attempts).

    The ticker task only exists while the status is not idle and the
    instance is visible. Time spent hidden is added back when the instance
    is shown again, up to the next auto-pause ceiling.

Coordination:
    Instances publish FocusSessionEvents tagged with their instance_id and
    reconcile when another instance publishes one. Running totals and ends
    are only written while the stored session is still active, so an end
    made elsewhere is never overwritten or credited twice.

Usage:
    timer = FocusTimer(service, user_id, bus)
    state = await timer.load_active_session()
    await timer.start_working()
    ...
    summary = await timer.stop()
"""

import asyncio
import logging
import math
from datetime import datetime
from typing import Optional
from uuid import uuid4

from studyflow.config import settings
from studyflow.enums.learning import AutoPauseReason, FocusEventType, SegmentType, TimerStatus
from studyflow.middleware.error_handling import ConflictError, ConnectivityError
from studyflow.models.learning import (
    FocusSegment,
    FocusSession,
    QueueProcessResult,
    RecoveredSessionState,
    SessionSummary,
)
from studyflow.services.learning.events import (
    EventBus,
    FocusAutoPausedEvent,
    FocusGoalReachedEvent,
    FocusSessionEvent,
)
from studyflow.services.learning.focus_service import FocusSessionService, validate_goal_minutes
from studyflow.utils import Clock, utc_now

logger = logging.getLogger(__name__)


class FocusTimer:
    """Per-instance focus timer."""

    def __init__(
        self,
        service: FocusSessionService,
        user_id: str,
        bus: Optional[EventBus] = None,
        clock: Clock = utc_now,
        instance_id: Optional[str] = None,
        tick_seconds: Optional[float] = None,
        auto_tick: bool = True,
    ):
        """
        Args:
            service: Session persistence operations
            user_id: Owner of the sessions this timer drives
            bus: Event bus shared with other instances (via a relay)
            clock: Time source
            instance_id: Identifies this instance in published events
            tick_seconds: Ticker period (defaults to FOCUS_TICK_SECONDS)
            auto_tick: Run the background ticker; when False, call tick()
        """
        self.service = service
        self.user_id = user_id
        self.bus = bus or EventBus()
        self.clock = clock
        self.instance_id = instance_id or str(uuid4())
        self.tick_seconds = tick_seconds if tick_seconds is not None else settings.FOCUS_TICK_SECONDS
        self.auto_tick = auto_tick

        self.goal_minutes: int = settings.FOCUS_DEFAULT_GOAL_MINUTES
        self.visible = True
        self.online = True
        self.last_summary: Optional[SessionSummary] = None

        self._reset()
        self._sync_in_progress = False
        self._task: Optional[asyncio.Task] = None
        self._hidden_at: Optional[datetime] = None
        self._hidden_status = TimerStatus.IDLE
        self._hidden_session_id: Optional[str] = None
        self._unsubscribe = self.bus.subscribe(FocusSessionEvent, self.handle_event)

    def _reset(self) -> None:
        self.status = TimerStatus.IDLE
        self.session: Optional[FocusSession] = None
        self.segment: Optional[FocusSegment] = None
        self.work_seconds = 0
        self.break_seconds = 0
        self.goal_reached = False
        self.max_duration_reached = False
        self.auto_pause_reason: Optional[AutoPauseReason] = None
        self.recovery_pending = False
        self._ticks = 0

    # ===========================================
    # Derived values
    # ===========================================

    @property
    def elapsed_seconds(self) -> int:
        return self.work_seconds + self.break_seconds

    @property
    def work_minutes(self) -> float:
        return self.work_seconds / 60

    @property
    def break_minutes(self) -> float:
        return self.break_seconds / 60

    @property
    def is_ticking(self) -> bool:
        return self._task is not None and not self._task.done()

    def set_goal_minutes(self, goal_minutes: int) -> None:
        """
        Raises:
            ValidationError: Goal outside (0, FOCUS_MAX_GOAL_MINUTES]
        """
        self.goal_minutes = validate_goal_minutes(goal_minutes)

    # ===========================================
    # Transitions
    # ===========================================

    async def start_working(self, now: Optional[datetime] = None) -> FocusSegment:
        """
        Raises:
            ConflictError: A recovered session is waiting for resume/discard
        """
        if self.recovery_pending:
            raise ConflictError("Resume or discard the recovered session first")
        if self.status == TimerStatus.WORKING and self.segment is not None:
            return self.segment

        now = now or self.clock()
        if self.session is None:
            session, segment = await self.service.start_working(
                self.user_id, self.goal_minutes, now=now
            )
            self.session = session
            self.goal_minutes = session.goal_minutes
        else:
            segment = await self.service.start_segment(self.session, SegmentType.WORK, now=now)

        self.segment = segment
        self.status = TimerStatus.WORKING
        await self._publish(FocusEventType.WORK_STARTED)
        self.start_ticker()
        return segment

    async def start_break(self, now: Optional[datetime] = None) -> FocusSegment:
        """
        Raises:
            ConflictError: Not currently working
        """
        if self.status == TimerStatus.BREAK and self.segment is not None:
            return self.segment
        if self.status != TimerStatus.WORKING or self.session is None:
            raise ConflictError("Start working before taking a break")

        segment = await self.service.start_segment(
            self.session, SegmentType.BREAK, now=now or self.clock()
        )
        self.segment = segment
        self.status = TimerStatus.BREAK
        await self._publish(FocusEventType.BREAK_STARTED)
        return segment

    async def stop(self, now: Optional[datetime] = None) -> Optional[SessionSummary]:
        """
        End the session.

        The summary uses the locally counted time, so it is available even
        when the store is unreachable and the end was queued.

        Returns:
            The summary, or None when there is no session or another
            instance already ended it
        """
        if self.session is None:
            return None

        await self.stop_ticker()
        session = self.session
        try:
            summary = await self.service.end_session(
                session, self.work_minutes, self.break_minutes, now=now or self.clock()
            )
        except ConflictError:
            logger.info(f"Session {session.id} was already ended elsewhere; resetting timer")
            self._reset()
            return None
        if summary.queued_offline:
            logger.warning(f"Session {session.id} end queued until connectivity returns")

        self._reset()
        self.last_summary = summary
        await self._publish(FocusEventType.ENDED, session=session)
        return summary

    async def resume(self, now: Optional[datetime] = None) -> FocusSegment:
        """
        Continue the current session with a new work segment.

        Used to answer a recovery prompt or to keep going after an
        auto-pause.

        Raises:
            ConflictError: No session to resume
        """
        if self.session is None:
            raise ConflictError("No focus session to resume")

        segment = await self.service.resume_session(
            self.user_id, self.session.id, now=now or self.clock()
        )
        self.recovery_pending = False
        self.auto_pause_reason = None
        self.segment = segment
        self.status = TimerStatus.WORKING
        await self._publish(FocusEventType.WORK_STARTED)
        self.start_ticker()
        return segment

    async def discard(self, now: Optional[datetime] = None) -> None:
        """Drop the current session without points."""
        if self.session is None:
            return
        await self.stop_ticker()
        session = self.session
        try:
            await self.service.discard_session(session, now=now or self.clock())
        except ConflictError:
            logger.info(f"Session {session.id} was already ended elsewhere; resetting timer")
            self._reset()
            return
        self._reset()
        await self._publish(FocusEventType.ENDED, session=session)

    # ===========================================
    # Ticking
    # ===========================================

    async def tick(self, now: Optional[datetime] = None) -> None:
        """Advance the session by one second of wall-clock time."""
        if self.status == TimerStatus.IDLE or self.session is None:
            return

        if self.status == TimerStatus.WORKING:
            self.work_seconds += 1
        else:
            self.break_seconds += 1
        self._ticks += 1

        if await self._check_thresholds(now):
            return

        if self._ticks % settings.FOCUS_RECONCILE_EVERY_TICKS == 0 and self.visible:
            await self.reconcile(now)
        if self._ticks % settings.FOCUS_SYNC_EVERY_TICKS == 0:
            await self.sync()

    def _next_ceiling(self) -> int:
        """Elapsed seconds at which the next auto-pause fires."""
        ceiling = settings.FOCUS_MAX_SESSION_HOURS * 3600
        if not self.max_duration_reached:
            ceiling = min(ceiling, self.goal_minutes * 60 * settings.FOCUS_GOAL_MULTIPLIER)
        return math.ceil(ceiling)

    async def _check_thresholds(self, now: Optional[datetime]) -> bool:
        """Auto-pause or signal the goal; True when the timer paused."""
        elapsed = self.elapsed_seconds
        if elapsed >= settings.FOCUS_MAX_SESSION_HOURS * 3600:
            await self._auto_pause(AutoPauseReason.MAX_HOURS, now)
            return True
        if (
            not self.max_duration_reached
            and elapsed >= self.goal_minutes * 60 * settings.FOCUS_GOAL_MULTIPLIER
        ):
            await self._auto_pause(AutoPauseReason.MAX_DURATION, now)
            return True
        if (
            not self.goal_reached
            and not self.max_duration_reached
            and self.work_seconds >= self.goal_minutes * 60
        ):
            self.goal_reached = True
            logger.info(f"Goal of {self.goal_minutes} min reached in session {self.session.id}")
            await self.bus.publish(
                FocusGoalReachedEvent(
                    user_id=self.user_id,
                    session_id=self.session.id,
                    instance_id=self.instance_id,
                    goal_minutes=self.goal_minutes,
                )
            )
        return False

    async def _auto_pause(self, reason: AutoPauseReason, now: Optional[datetime]) -> None:
        session = self.session
        self.max_duration_reached = True
        self.auto_pause_reason = reason
        logger.info(
            f"Auto-pausing session {session.id} ({reason.value}) after {self.elapsed_seconds}s"
        )

        if self.segment is not None:
            try:
                await self.service.close_segment(self.segment, now=now or self.clock())
            except ConnectivityError as e:
                logger.warning(f"Could not close segment on auto-pause: {e.message}")
        self.segment = None
        self.status = TimerStatus.IDLE

        await self.sync()
        await self.bus.publish(
            FocusAutoPausedEvent(
                user_id=self.user_id,
                session_id=session.id,
                instance_id=self.instance_id,
                reason=reason,
                elapsed_seconds=self.elapsed_seconds,
            )
        )

    def start_ticker(self) -> None:
        if not self.auto_tick or self.is_ticking:
            return
        if self.status != TimerStatus.IDLE and self.visible:
            self._task = asyncio.create_task(self.run())

    async def run(self) -> None:
        try:
            # A replaced ticker leaves the loop at its next check
            while (
                self._task is asyncio.current_task()
                and self.status != TimerStatus.IDLE
                and self.visible
            ):
                await asyncio.sleep(self.tick_seconds)
                await self.tick()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Focus ticker for {self.user_id} stopped")
        finally:
            if self._task is asyncio.current_task():
                self._task = None

    async def stop_ticker(self) -> None:
        task = self._task
        if task is None:
            return
        self._task = None
        if task is asyncio.current_task() or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    # ===========================================
    # Sync and reconciliation
    # ===========================================

    async def sync(self) -> bool:
        """
        Write running totals; overlapping calls return False at once.

        A session ended elsewhere resets the timer to idle.
        """
        if self.session is None or self._sync_in_progress:
            return False

        self._sync_in_progress = True
        try:
            for attempt in range(1, settings.FOCUS_SYNC_MAX_RETRIES + 1):
                try:
                    synced = await self.service.sync_session(
                        self.session, self.work_minutes, self.break_minutes
                    )
                except ConflictError:
                    logger.info(f"Session {self.session.id} ended elsewhere; resetting timer")
                    await self.stop_ticker()
                    self._reset()
                    return False
                if synced:
                    return True
                logger.warning(
                    f"Sync attempt {attempt}/{settings.FOCUS_SYNC_MAX_RETRIES} "
                    f"for session {self.session.id} failed"
                )
            return False
        finally:
            self._sync_in_progress = False

    async def reconcile(self, now: Optional[datetime] = None) -> None:
        """
        Re-derive local state from the store.

        - Another instance started a session: adopt it
        - Our session is no longer active: reset to idle
        - Otherwise: take the status from the open segment
        """
        try:
            active = await self.service.get_active_session(self.user_id)
        except ConnectivityError as e:
            logger.debug(f"Skipping reconcile while offline: {e.message}")
            return

        if active is None:
            if self.session is not None:
                logger.info(f"Session {self.session.id} ended elsewhere; resetting timer")
                await self.stop_ticker()
                self._reset()
            return

        if self.session is None or self.session.id != active.id:
            await self.load_active_session(now)
            return

        segment = await self.service.get_open_segment(active.id)
        if segment is None:
            status = TimerStatus.IDLE
        elif segment.segment_type == SegmentType.WORK:
            status = TimerStatus.WORKING
        else:
            status = TimerStatus.BREAK

        self.segment = segment
        if status != self.status:
            logger.info(f"Reconciled timer status {self.status.value} -> {status.value}")
            self.status = status
            if status == TimerStatus.IDLE:
                await self.stop_ticker()
            else:
                self.start_ticker()

    async def load_active_session(
        self, now: Optional[datetime] = None
    ) -> Optional[RecoveredSessionState]:
        """
        Restore state from the user's active session, if any.

        Returns:
            The recovered state; needs_recovery_prompt means the caller must
            resume() or discard() before starting anew
        """
        state = await self.service.recover_active_session(self.user_id, now=now or self.clock())
        await self.stop_ticker()
        self._reset()
        if state is None:
            return None

        self.session = state.session
        self.goal_minutes = state.session.goal_minutes
        self.status = state.status
        self.segment = state.open_segment
        self.work_seconds = state.work_seconds
        self.break_seconds = state.break_seconds
        self.goal_reached = self.work_seconds >= self.goal_minutes * 60
        self.recovery_pending = state.needs_recovery_prompt
        self.start_ticker()
        return state

    async def handle_event(self, event: FocusSessionEvent) -> None:
        """React to another instance's session change."""
        if event.user_id != self.user_id or event.instance_id == self.instance_id:
            return

        if (
            event.type == FocusEventType.ENDED
            and self.session is not None
            and event.session_id == self.session.id
        ):
            logger.info(f"Session {event.session_id} ended by instance {event.instance_id}")
            await self.stop_ticker()
            self._reset()
            return

        await self.reconcile()

    async def set_visibility(self, visible: bool, now: Optional[datetime] = None) -> None:
        """
        Pause the ticker while hidden; reconcile and resume when shown.

        On show, the seconds spent hidden are credited to the work or break
        counter that was running, then the auto-pause and goal checks run.
        """
        if visible == self.visible:
            return
        self.visible = visible
        now = now or self.clock()
        if not visible:
            await self.stop_ticker()
            self._hidden_at = now
            self._hidden_status = self.status
            self._hidden_session_id = self.session.id if self.session else None
            if self.session is not None:
                await self.sync()
            return

        hidden_at, self._hidden_at = self._hidden_at, None
        if self.session is not None:
            await self.reconcile(now)
        if (
            hidden_at is not None
            and self._hidden_status != TimerStatus.IDLE
            and self.status != TimerStatus.IDLE
            and self.session is not None
            and self.session.id == self._hidden_session_id
        ):
            await self._catch_up(self._hidden_status, int((now - hidden_at).total_seconds()), now)
        self.start_ticker()

    async def _catch_up(self, status: TimerStatus, seconds: int, now: datetime) -> None:
        seconds = max(0, min(seconds, self._next_ceiling() - self.elapsed_seconds))
        if status == TimerStatus.WORKING:
            self.work_seconds += seconds
        else:
            self.break_seconds += seconds
        logger.debug(f"Credited {seconds}s of hidden {status.value} time")
        await self._check_thresholds(now)

    async def set_online(self, online: bool) -> Optional[QueueProcessResult]:
        """Record connectivity; coming back online replays this user's queued ends."""
        was_online = self.online
        self.online = online
        if online and not was_online:
            return await self.service.replay_offline_queue(user_id=self.user_id)
        return None

    async def close(self, end_segment: bool = False) -> None:
        """
        Stop ticking and detach from the bus.

        With end_segment the open segment is closed as on app shutdown,
        capped at FOCUS_QUICK_END_CAP_MINUTES.
        """
        await self.stop_ticker()
        self._unsubscribe()
        if not end_segment or self.session is None or self.status == TimerStatus.IDLE:
            return
        try:
            await self.service.quick_end_segment(self.session.id, now=self.clock())
        except ConnectivityError as e:
            logger.warning(f"Could not close segment on shutdown: {e.message}")

    async def _publish(
        self, event_type: FocusEventType, session: Optional[FocusSession] = None
    ) -> None:
        session = session or self.session
        if session is None:
            return
        await self.bus.publish(
            FocusSessionEvent(
                type=event_type,
                user_id=self.user_id,
                session_id=session.id,
                instance_id=self.instance_id,
                segment_id=self.segment.id if self.segment else None,
            )
        )
