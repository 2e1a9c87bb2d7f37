"""
Gamification API Router

Endpoints:
- GET /api/gamification/stats - Points, streaks, counters and level
- GET /api/gamification/level - Level progress only
- GET /api/gamification/achievements - Catalogue with unlock state
"""

from fastapi import APIRouter, Depends

from studyflow.dependencies import get_current_user_id, get_gamification_service
from studyflow.models.learning import AchievementStatus, LevelProgress, UserStatsResponse
from studyflow.services.learning.gamification_service import GamificationService

router = APIRouter(prefix="/api/gamification", tags=["gamification"])


@router.get("/stats", response_model=UserStatsResponse)
async def get_stats(
    user_id: str = Depends(get_current_user_id),
    service: GamificationService = Depends(get_gamification_service),
) -> UserStatsResponse:
    """
    Get the user's stats.

    Streaks are checked against the review history on every read, so a
    missed day shows up without waiting for the next review.
    """
    return await service.get_user_stats(user_id)


@router.get("/level", response_model=LevelProgress)
async def get_level(
    user_id: str = Depends(get_current_user_id),
    service: GamificationService = Depends(get_gamification_service),
) -> LevelProgress:
    """Get the user's level and progress toward the next one."""
    response = await service.get_user_stats(user_id)
    return response.level


@router.get("/achievements", response_model=list[AchievementStatus])
async def list_achievements(
    user_id: str = Depends(get_current_user_id),
    service: GamificationService = Depends(get_gamification_service),
) -> list[AchievementStatus]:
    """Every achievement with whether (and when) the user unlocked it."""
    return await service.list_achievements(user_id)
