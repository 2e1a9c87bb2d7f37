"""
Focus API Router

Endpoints for focus sessions, their work/break segments and statistics.

Endpoints:
- POST /api/focus/sessions - Start working (creates the session if needed)
- GET /api/focus/sessions - Paginated session history
- GET /api/focus/sessions/active - Recover the active session, if any
- GET /api/focus/sessions/range - Sessions started within a date range
- GET /api/focus/sessions/{id} - Get a session by ID
- POST /api/focus/sessions/{id}/segments - Switch between work and break
- POST /api/focus/sessions/{id}/end - End a session and credit points
- POST /api/focus/sessions/{id}/resume - Continue a recovered session
- POST /api/focus/sessions/{id}/discard - Drop a session without points
- PATCH /api/focus/sessions/{id}/duration - Reduce recorded durations
- GET /api/focus/stats - Aggregates over recent sessions
- GET /api/focus/recommended-break - Break length for a work duration
- POST /api/focus/queue/replay - Retry session ends queued while offline
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from studyflow.config import settings
from studyflow.dependencies import get_current_user_id, get_focus_service
from studyflow.middleware.error_handling import ConflictError
from studyflow.models.base import Page
from studyflow.models.learning import (
    FocusSegment,
    FocusSegmentStart,
    FocusSession,
    FocusSessionStart,
    FocusSessionStarted,
    FocusStats,
    QueueProcessResult,
    RecoveredSessionState,
    SessionDurationUpdate,
    SessionSummary,
)
from studyflow.services.learning.adherence import recommended_break_minutes
from studyflow.services.learning.focus_service import FocusSessionService
from studyflow.utils import ensure_utc

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/focus", tags=["focus"])


# ===========================================
# Session Lifecycle Endpoints
# ===========================================


@router.post("/sessions", response_model=FocusSessionStarted, status_code=201)
async def start_working(
    request: FocusSessionStart,
    user_id: str = Depends(get_current_user_id),
    service: FocusSessionService = Depends(get_focus_service),
) -> FocusSessionStarted:
    """
    Start working.

    Reuses the active session when there is one; otherwise a new session is
    created with the requested goal.
    """
    session, segment = await service.start_working(user_id, request.goal_minutes)
    return FocusSessionStarted(session=session, segment=segment)


@router.get("/sessions", response_model=Page[FocusSession])
async def list_sessions(
    limit: int = Query(20, ge=1, le=100, description="Maximum sessions to return"),
    offset: int = Query(0, ge=0, description="Pagination offset"),
    user_id: str = Depends(get_current_user_id),
    service: FocusSessionService = Depends(get_focus_service),
) -> Page[FocusSession]:
    """Session history, newest first."""
    return await service.get_user_sessions(user_id, limit=limit, offset=offset)


@router.get("/sessions/active", response_model=Optional[RecoveredSessionState])
async def recover_active_session(
    user_id: str = Depends(get_current_user_id),
    service: FocusSessionService = Depends(get_focus_service),
) -> Optional[RecoveredSessionState]:
    """
    Rebuild timer state for the active session.

    Returns null when there is nothing to recover. needs_recovery_prompt
    means the client should offer resume or discard.
    """
    return await service.recover_active_session(user_id)


@router.get("/sessions/range", response_model=list[FocusSession])
async def list_sessions_in_range(
    start: datetime = Query(..., description="Range start (inclusive)"),
    end: datetime = Query(..., description="Range end (inclusive)"),
    user_id: str = Depends(get_current_user_id),
    service: FocusSessionService = Depends(get_focus_service),
) -> list[FocusSession]:
    """Sessions started between `start` and `end`."""
    return await service.get_sessions_by_date_range(user_id, ensure_utc(start), ensure_utc(end))


@router.get("/sessions/{session_id}", response_model=FocusSession)
async def get_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    service: FocusSessionService = Depends(get_focus_service),
) -> FocusSession:
    """Get a session by ID."""
    return await service.get_session(user_id, session_id)


@router.post("/sessions/{session_id}/segments", response_model=FocusSegment)
async def start_segment(
    session_id: str,
    request: FocusSegmentStart,
    user_id: str = Depends(get_current_user_id),
    service: FocusSessionService = Depends(get_focus_service),
) -> FocusSegment:
    """Open a work or break segment, closing the other one."""
    session = await service.get_session(user_id, session_id)
    return await service.start_segment(session, request.segment_type)


@router.post("/sessions/{session_id}/end", response_model=SessionSummary)
async def end_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    service: FocusSessionService = Depends(get_focus_service),
) -> SessionSummary:
    """
    End a session.

    Durations come from the recorded segments. The summary carries the
    adherence, its rating and the penalty applied to the base points.
    """
    return await service.end_session_from_segments(user_id, session_id)


@router.post("/sessions/{session_id}/resume", response_model=FocusSegment)
async def resume_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    service: FocusSessionService = Depends(get_focus_service),
) -> FocusSegment:
    """Continue a recovered or auto-paused session with a new work segment."""
    return await service.resume_session(user_id, session_id)


@router.post("/sessions/{session_id}/discard", response_model=FocusSession)
async def discard_session(
    session_id: str,
    user_id: str = Depends(get_current_user_id),
    service: FocusSessionService = Depends(get_focus_service),
) -> FocusSession:
    """End a session without awarding points."""
    session = await service.get_session(user_id, session_id)
    if not session.is_active:
        raise ConflictError(f"Focus session {session_id} has already ended")
    return await service.discard_session(session)


@router.patch("/sessions/{session_id}/duration", response_model=FocusSession)
async def update_session_duration(
    session_id: str,
    update: SessionDurationUpdate,
    user_id: str = Depends(get_current_user_id),
    service: FocusSessionService = Depends(get_focus_service),
) -> FocusSession:
    """
    Correct an ended session's durations.

    Values may only go down; points and adherence are recomputed.
    """
    return await service.update_session_duration(user_id, session_id, update)


# ===========================================
# Statistics Endpoints
# ===========================================


@router.get("/stats", response_model=FocusStats)
async def get_focus_stats(
    days: int = Query(
        settings.FOCUS_STATS_DAYS_DEFAULT, ge=1, le=365, description="Period in days"
    ),
    user_id: str = Depends(get_current_user_id),
    service: FocusSessionService = Depends(get_focus_service),
) -> FocusStats:
    """Totals and adherence over ended sessions in the last `days` days."""
    return await service.get_focus_stats(user_id, days=days)


@router.get("/recommended-break")
async def get_recommended_break(
    work_minutes: float = Query(..., ge=0, description="Minutes worked so far"),
) -> dict:
    """Suggested break length: a fifth of the work time, 5 to 20 minutes."""
    return {
        "work_minutes": work_minutes,
        "break_minutes": recommended_break_minutes(work_minutes),
    }


@router.post("/queue/replay", response_model=QueueProcessResult)
async def replay_offline_queue(
    user_id: str = Depends(get_current_user_id),
    service: FocusSessionService = Depends(get_focus_service),
) -> QueueProcessResult:
    """Retry the caller's session ends that were queued while the store was unreachable."""
    result = await service.replay_offline_queue(user_id=user_id)
    logger.info(
        f"Offline queue replay requested by {user_id}: "
        f"{len(result.processed)} processed, {len(result.failed)} failed"
    )
    return result
