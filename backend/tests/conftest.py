"""
Shared Test Fixtures and Configuration

This module provides pytest fixtures used across the unit tests: a pinned
clock, an in-memory learning store, the services wired on top of it and a
mock Redis client.
"""

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator
from unittest.mock import AsyncMock, MagicMock

import pytest
from dotenv import load_dotenv

# Add the backend directory to the path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load .env file from project root BEFORE any fixtures run
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)


# ============================================================================
# Environment Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment() -> Generator[None, None, None]:
    """
    Set up test environment variables before any tests run.

    Settings are read once at import time, so these only matter for code
    that builds a fresh Settings() inside a test.
    """
    original_env = os.environ.copy()

    test_env = {
        "POSTGRES_HOST": os.environ.get("POSTGRES_HOST", "localhost"),
        "POSTGRES_PORT": os.environ.get("POSTGRES_PORT", "5432"),
        "POSTGRES_USER": os.environ.get("POSTGRES_TEST_USER", "testuser"),
        "POSTGRES_PASSWORD": os.environ.get("POSTGRES_TEST_PASSWORD", "testpass"),
        "POSTGRES_DB": os.environ.get("POSTGRES_TEST_DB", "testdb"),
        "REDIS_URL": os.environ.get("REDIS_URL", "redis://localhost:6379/1"),
        "DEBUG": "true",
    }
    os.environ.update(test_env)

    yield

    os.environ.clear()
    os.environ.update(original_env)


# ============================================================================
# Clock
# ============================================================================


# Monday noon, far from any day boundary
BASE_TIME = datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock: call it for "now", advance() to move time."""

    def __init__(self, start: datetime = BASE_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> datetime:
        self.now = value
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def repository():
    from studyflow.db.memory import MemoryLearningRepository

    return MemoryLearningRepository()


@pytest.fixture
def event_bus():
    from studyflow.services.learning.events import EventBus

    return EventBus()


@pytest.fixture
def points_engine(clock):
    from studyflow.services.learning.points import PointsEngine

    return PointsEngine(clock=clock)


@pytest.fixture
def gamification(repository, points_engine, event_bus, clock):
    from studyflow.services.learning.gamification_service import GamificationService

    return GamificationService(repository, points_engine, bus=event_bus, clock=clock)


@pytest.fixture
def fence(clock):
    from studyflow.services.learning.discard_fence import InMemoryDiscardFence

    return InMemoryDiscardFence(clock=clock)


@pytest.fixture
def focus_service(repository, gamification, fence, clock):
    from studyflow.services.learning.focus_service import FocusSessionService

    return FocusSessionService(repository, gamification=gamification, fence=fence, clock=clock)


# ============================================================================
# Mock Fixtures
# ============================================================================


@pytest.fixture
def mock_redis() -> MagicMock:
    """
    Create a mock Redis client for unit testing.

    This allows testing Redis-dependent code without a real Redis server.
    """
    mock = MagicMock()
    mock.get = AsyncMock(return_value=None)
    mock.set = AsyncMock(return_value=True)
    mock.setex = AsyncMock(return_value=True)
    mock.delete = AsyncMock(return_value=1)
    mock.exists = AsyncMock(return_value=0)
    mock.ping = AsyncMock(return_value=True)
    mock.publish = AsyncMock(return_value=1)
    mock.hsetnx = AsyncMock(return_value=1)
    mock.hgetall = AsyncMock(return_value={})
    mock.hdel = AsyncMock(return_value=1)
    mock.hlen = AsyncMock(return_value=0)
    return mock


@pytest.fixture
def mock_db_session() -> MagicMock:
    """
    Create a mock database session for unit testing.
    """
    mock = MagicMock()
    mock.execute = AsyncMock()
    mock.get = AsyncMock(return_value=None)
    mock.add = MagicMock()
    mock.commit = AsyncMock()
    mock.rollback = AsyncMock()
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def hash_store() -> dict:
    """Backing storage for hash_redis: hash key → {field: value}, string key → value."""
    return {}


@pytest.fixture
def hash_redis(mock_redis, hash_store) -> MagicMock:
    """mock_redis whose hash commands read and write hash_store."""

    async def hsetnx(key, field, value):
        bucket = hash_store.setdefault(key, {})
        if field in bucket:
            return 0
        bucket[field] = value
        return 1

    async def hgetall(key):
        return dict(hash_store.get(key, {}))

    async def hdel(key, field):
        return 1 if hash_store.get(key, {}).pop(field, None) is not None else 0

    async def hlen(key):
        return len(hash_store.get(key, {}))

    async def hexists(key, field):
        return field in hash_store.get(key, {})

    async def set_(key, value, nx=False, ex=None):
        if nx and key in hash_store:
            return None
        hash_store[key] = value
        return True

    async def delete(*keys):
        return sum(1 for key in keys if hash_store.pop(key, None) is not None)

    mock_redis.hsetnx = AsyncMock(side_effect=hsetnx)
    mock_redis.hgetall = AsyncMock(side_effect=hgetall)
    mock_redis.hdel = AsyncMock(side_effect=hdel)
    mock_redis.hlen = AsyncMock(side_effect=hlen)
    mock_redis.hexists = AsyncMock(side_effect=hexists)
    mock_redis.set = AsyncMock(side_effect=set_)
    mock_redis.delete = AsyncMock(side_effect=delete)
    return mock_redis
