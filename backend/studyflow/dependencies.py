"""
FastAPI Dependencies

Request-scoped wiring: the calling user, the learning store and the
services built on top of it.

Process-wide singletons (the event bus and the points engine, which holds
the per-user combo counters) live on app.state and are created in main.py.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from studyflow.db.base import get_db
from studyflow.db.redis import get_redis
from studyflow.db.repository import LearningRepository
from studyflow.db.sql_repository import SqlLearningRepository
from studyflow.services.learning.discard_fence import RedisDiscardFence
from studyflow.services.learning.events import EventBus
from studyflow.services.learning.focus_service import FocusSessionService
from studyflow.services.learning.gamification_service import GamificationService
from studyflow.services.learning.offline_queue import FocusSessionQueue
from studyflow.services.learning.points import PointsEngine


async def get_current_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> str:
    """
    Identify the caller from the X-User-Id header.

    Authentication happens upstream (gateway or session layer); this
    service trusts the forwarded id.

    Raises:
        HTTPException: 401 if the header is missing or blank
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing user id. Provide X-User-Id header.",
        )
    return x_user_id.strip()


async def get_repository(db: AsyncSession = Depends(get_db)) -> LearningRepository:
    """Get the SQL-backed learning store for this request."""
    return SqlLearningRepository(db)


def get_event_bus(request: Request) -> EventBus:
    return request.app.state.bus


def get_points_engine(request: Request) -> PointsEngine:
    return request.app.state.points_engine


async def get_gamification_service(
    repository: LearningRepository = Depends(get_repository),
    points: PointsEngine = Depends(get_points_engine),
    bus: EventBus = Depends(get_event_bus),
) -> GamificationService:
    """Get gamification service."""
    return GamificationService(repository, points, bus=bus)


async def get_focus_service(
    repository: LearningRepository = Depends(get_repository),
    gamification: GamificationService = Depends(get_gamification_service),
) -> FocusSessionService:
    """Get focus session service with the Redis offline queue and fence."""
    return FocusSessionService(
        repository,
        gamification=gamification,
        queue=FocusSessionQueue(get_redis),
        fence=RedisDiscardFence(get_redis),
    )


# Dependency that can be used in routers
CurrentUser = Depends(get_current_user_id)
