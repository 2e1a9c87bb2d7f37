"""
Review API Router

Endpoints for learning items and timed reviews.

Endpoints:
- POST /api/review/items - Create a learning item
- GET /api/review/items/{id} - Get an item by ID
- PUT /api/review/items/{id}/status - Change an item's mastery status
- POST /api/review/items/{id}/review - Review an item now
- GET /api/review/due - Items due for review, highest priority first
- GET /api/review/ready - Items never reviewed yet
- GET /api/review/upcoming - Items due within the next N days
- GET /api/review/by-status - Items grouped into overdue/due/upcoming/mastered
"""

import logging

from fastapi import APIRouter, Depends, Query

from studyflow.config import settings
from studyflow.dependencies import get_current_user_id, get_gamification_service
from studyflow.models.learning import (
    ItemStatusBuckets,
    LearningItem,
    LearningItemCreate,
    MasteryStatusUpdate,
    ReviewResult,
)
from studyflow.services.learning.gamification_service import GamificationService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/review", tags=["review"])


# ===========================================
# Item Management Endpoints
# ===========================================


@router.post("/items", response_model=LearningItem, status_code=201)
async def create_item(
    request: LearningItemCreate,
    user_id: str = Depends(get_current_user_id),
    service: GamificationService = Depends(get_gamification_service),
) -> LearningItem:
    """
    Create a learning item.

    The item starts unreviewed; its first review schedules it on the
    ladder of its learning mode.
    """
    return await service.create_item(user_id, request)


@router.get("/items/{item_id}", response_model=LearningItem)
async def get_item(
    item_id: str,
    user_id: str = Depends(get_current_user_id),
    service: GamificationService = Depends(get_gamification_service),
) -> LearningItem:
    """Get an item by ID."""
    return await service.get_item(user_id, item_id)


@router.put("/items/{item_id}/status", response_model=LearningItem)
async def update_item_status(
    item_id: str,
    update: MasteryStatusUpdate,
    user_id: str = Depends(get_current_user_id),
    service: GamificationService = Depends(get_gamification_service),
) -> LearningItem:
    """
    Change an item's mastery status.

    - mastered / archived: the item stops being scheduled
    - maintenance: long-interval recurrence (maintenance_days or derived)
    - repeat: back to the start of the ladder
    """
    return await service.set_mastery_status(user_id, item_id, update)


# ===========================================
# Review Endpoints
# ===========================================


@router.post("/items/{item_id}/review", response_model=ReviewResult)
async def review_item(
    item_id: str,
    user_id: str = Depends(get_current_user_id),
    service: GamificationService = Depends(get_gamification_service),
) -> ReviewResult:
    """
    Review an item now.

    Returns the new schedule, the points breakdown (timing, priority, combo,
    streak, mastery and achievement bonuses) and the updated stats.
    """
    return await service.review_item(user_id, item_id)


@router.get("/due", response_model=list[LearningItem])
async def get_due_items(
    user_id: str = Depends(get_current_user_id),
    service: GamificationService = Depends(get_gamification_service),
) -> list[LearningItem]:
    """Items due now: highest priority first, then earliest due."""
    return await service.get_due_items(user_id)


@router.get("/ready", response_model=list[LearningItem])
async def get_ready_items(
    user_id: str = Depends(get_current_user_id),
    service: GamificationService = Depends(get_gamification_service),
) -> list[LearningItem]:
    """Items that have never been reviewed."""
    return await service.get_ready_to_learn(user_id)


@router.get("/upcoming", response_model=list[LearningItem])
async def get_upcoming_items(
    days: int = Query(
        settings.UPCOMING_DAYS_DEFAULT, ge=1, le=365, description="Look-ahead window in days"
    ),
    user_id: str = Depends(get_current_user_id),
    service: GamificationService = Depends(get_gamification_service),
) -> list[LearningItem]:
    """Items that become due within the next `days` days."""
    return await service.get_upcoming_items(user_id, days=days)


@router.get("/by-status", response_model=ItemStatusBuckets)
async def get_items_by_status(
    user_id: str = Depends(get_current_user_id),
    service: GamificationService = Depends(get_gamification_service),
) -> ItemStatusBuckets:
    """Items grouped into overdue, due, upcoming and mastered."""
    return await service.get_items_by_status(user_id)
