"""API Routers package."""

from studyflow.routers import focus as focus_router
from studyflow.routers import gamification as gamification_router
from studyflow.routers import health as health_router
from studyflow.routers import review as review_router

__all__ = ["focus_router", "gamification_router", "health_router", "review_router"]
