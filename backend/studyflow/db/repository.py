"""
Persistence port for the learning core.

Services depend on this abstraction, not on a concrete store.

Implementations:
    - SqlLearningRepository: PostgreSQL through async SQLAlchemy
    - MemoryLearningRepository: process-local dictionaries (offline use, tests)

Contract notes:
    - Writes are upserts keyed by id and return the stored record.
    - Review events are append-only.
    - Running totals and session ends go through save_active_session, a
      compare-and-set on is_active.
    - Adapters raise ConnectivityError when the store is unreachable so
      callers can degrade (e.g. queue a session end) instead of failing.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from studyflow.enums.learning import MasteryStatus
from studyflow.models.learning import (
    AchievementUnlock,
    FocusSegment,
    FocusSession,
    LearningItem,
    ReviewEvent,
    UserGamificationStats,
)


class LearningRepository(ABC):
    """Port for items, review history, stats, achievements and focus sessions."""

    # -- Items --------------------------------------------------------------

    @abstractmethod
    async def get_item(self, item_id: str) -> Optional[LearningItem]:
        pass

    @abstractmethod
    async def list_items(
        self, user_id: str, status: Optional[MasteryStatus] = None
    ) -> list[LearningItem]:
        """All of a user's items, optionally filtered by mastery status."""
        pass

    @abstractmethod
    async def save_item(self, item: LearningItem) -> LearningItem:
        pass

    # -- Review history -----------------------------------------------------

    @abstractmethod
    async def add_review_event(self, event: ReviewEvent) -> ReviewEvent:
        pass

    @abstractmethod
    async def list_review_times(
        self, user_id: str, since: Optional[datetime] = None
    ) -> list[datetime]:
        """
        Review timestamps for a user, newest first.

        Args:
            user_id: Owner
            since: Only reviews at or after this time
        """
        pass

    # -- Stats & achievements -----------------------------------------------

    @abstractmethod
    async def get_stats(self, user_id: str) -> Optional[UserGamificationStats]:
        """Stored aggregates with `achievements` filled from the unlock table."""
        pass

    @abstractmethod
    async def save_stats(self, stats: UserGamificationStats) -> UserGamificationStats:
        pass

    @abstractmethod
    async def list_achievements(self, user_id: str) -> list[AchievementUnlock]:
        pass

    @abstractmethod
    async def add_achievement(self, unlock: AchievementUnlock) -> bool:
        """
        Record an unlock.

        Returns:
            False when the user already had the achievement
        """
        pass

    # -- Focus sessions -----------------------------------------------------

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[FocusSession]:
        pass

    @abstractmethod
    async def get_active_session(self, user_id: str) -> Optional[FocusSession]:
        pass

    @abstractmethod
    async def save_session(self, session: FocusSession) -> FocusSession:
        pass

    @abstractmethod
    async def save_active_session(self, session: FocusSession) -> Optional[FocusSession]:
        """
        Write `session` only if the stored row is still active.

        The check and the write are one step, so of two concurrent attempts
        to end the same session only one succeeds.

        Returns:
            The stored record, or None when the session is unknown or
            already ended
        """
        pass

    @abstractmethod
    async def list_sessions(
        self,
        user_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[FocusSession]:
        """Sessions started in [since, until], newest first."""
        pass

    @abstractmethod
    async def count_sessions(self, user_id: str) -> int:
        pass

    @abstractmethod
    async def save_segment(self, segment: FocusSegment) -> FocusSegment:
        pass

    @abstractmethod
    async def list_segments(self, session_id: str) -> list[FocusSegment]:
        """Segments of a session, oldest first."""
        pass

    async def get_open_segment(self, session_id: str) -> Optional[FocusSegment]:
        """The segment with no ended_at, if any."""
        for segment in reversed(await self.list_segments(session_id)):
            if segment.ended_at is None:
                return segment
        return None
