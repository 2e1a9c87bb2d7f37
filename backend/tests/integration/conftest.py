"""
Fixtures for API tests.

The app is built without its lifespan (no table creation, no Redis relay)
and the store dependencies are overridden with the in-memory repository.
"""

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient

from studyflow.db.memory import MemoryLearningRepository
from studyflow.dependencies import get_focus_service, get_gamification_service, get_repository
from studyflow.main import create_app
from studyflow.services.learning.discard_fence import InMemoryDiscardFence
from studyflow.services.learning.focus_service import FocusSessionService
from studyflow.services.learning.gamification_service import GamificationService

USER_ID = "user-1"


@pytest.fixture
def memory_repository() -> MemoryLearningRepository:
    return MemoryLearningRepository()


@pytest.fixture
def api_app(memory_repository):
    """
    Create the app with the learning store replaced by memory_repository.

    The focus service is built without the Redis offline queue; ending a
    session while the store is down therefore returns 503.
    """
    app = create_app(use_lifespan=False)
    fence = InMemoryDiscardFence()

    async def get_test_focus_service(
        gamification: GamificationService = Depends(get_gamification_service),
    ) -> FocusSessionService:
        return FocusSessionService(memory_repository, gamification=gamification, fence=fence)

    app.dependency_overrides[get_repository] = lambda: memory_repository
    app.dependency_overrides[get_focus_service] = get_test_focus_service

    yield app

    app.dependency_overrides.clear()


@pytest.fixture
def test_client(api_app) -> TestClient:
    return TestClient(api_app)


@pytest.fixture
def headers() -> dict:
    return {"X-User-Id": USER_ID}
