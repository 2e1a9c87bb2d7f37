"""
In-memory LearningRepository.

Keeps everything in process-local dictionaries. Used when running without a
database (local experiments, CLI use) and by the test suite. Records are
copied on the way in and out so callers never share mutable state with the
store.

A store can be switched "offline" to make every call raise
ConnectivityError, which is how connectivity loss is exercised.
"""

from datetime import datetime
from typing import Optional, TypeVar

from pydantic import BaseModel

from studyflow.db.repository import LearningRepository
from studyflow.enums.learning import MasteryStatus
from studyflow.middleware.error_handling import ConnectivityError
from studyflow.models.learning import (
    AchievementUnlock,
    FocusSegment,
    FocusSession,
    LearningItem,
    ReviewEvent,
    UserGamificationStats,
)

M = TypeVar("M", bound=BaseModel)


def _copy(record: M) -> M:
    return record.model_copy(deep=True)


class MemoryLearningRepository(LearningRepository):
    """Dictionary-backed repository."""

    def __init__(self) -> None:
        self.items: dict[str, LearningItem] = {}
        self.review_events: list[ReviewEvent] = []
        self.stats: dict[str, UserGamificationStats] = {}
        self.achievements: dict[str, dict[str, AchievementUnlock]] = {}
        self.sessions: dict[str, FocusSession] = {}
        self.segments: dict[str, FocusSegment] = {}
        self.online = True

    def _check_online(self) -> None:
        if not self.online:
            raise ConnectivityError("Learning store is unreachable")

    # -- Items --------------------------------------------------------------

    async def get_item(self, item_id: str) -> Optional[LearningItem]:
        self._check_online()
        item = self.items.get(item_id)
        return _copy(item) if item else None

    async def list_items(
        self, user_id: str, status: Optional[MasteryStatus] = None
    ) -> list[LearningItem]:
        self._check_online()
        return [
            _copy(item)
            for item in self.items.values()
            if item.user_id == user_id and (status is None or item.mastery_status == status)
        ]

    async def save_item(self, item: LearningItem) -> LearningItem:
        self._check_online()
        self.items[item.id] = _copy(item)
        return _copy(item)

    # -- Review history -----------------------------------------------------

    async def add_review_event(self, event: ReviewEvent) -> ReviewEvent:
        self._check_online()
        self.review_events.append(_copy(event))
        return _copy(event)

    async def list_review_times(
        self, user_id: str, since: Optional[datetime] = None
    ) -> list[datetime]:
        self._check_online()
        times = [
            event.reviewed_at
            for event in self.review_events
            if event.user_id == user_id and (since is None or event.reviewed_at >= since)
        ]
        return sorted(times, reverse=True)

    # -- Stats & achievements -----------------------------------------------

    async def get_stats(self, user_id: str) -> Optional[UserGamificationStats]:
        self._check_online()
        stats = self.stats.get(user_id)
        if stats is None:
            return None
        unlocked = self.achievements.get(user_id, {})
        return stats.model_copy(update={"achievements": list(unlocked)}, deep=True)

    async def save_stats(self, stats: UserGamificationStats) -> UserGamificationStats:
        self._check_online()
        self.stats[stats.user_id] = _copy(stats)
        return await self.get_stats(stats.user_id)

    async def list_achievements(self, user_id: str) -> list[AchievementUnlock]:
        self._check_online()
        return [_copy(unlock) for unlock in self.achievements.get(user_id, {}).values()]

    async def add_achievement(self, unlock: AchievementUnlock) -> bool:
        self._check_online()
        unlocked = self.achievements.setdefault(unlock.user_id, {})
        if unlock.achievement_id in unlocked:
            return False
        unlocked[unlock.achievement_id] = _copy(unlock)
        return True

    # -- Focus sessions -----------------------------------------------------

    async def get_session(self, session_id: str) -> Optional[FocusSession]:
        self._check_online()
        session = self.sessions.get(session_id)
        return _copy(session) if session else None

    async def get_active_session(self, user_id: str) -> Optional[FocusSession]:
        self._check_online()
        active = [
            s for s in self.sessions.values() if s.user_id == user_id and s.is_active
        ]
        if not active:
            return None
        return _copy(max(active, key=lambda s: s.started_at))

    async def save_session(self, session: FocusSession) -> FocusSession:
        self._check_online()
        self.sessions[session.id] = _copy(session)
        return _copy(session)

    async def save_active_session(self, session: FocusSession) -> Optional[FocusSession]:
        self._check_online()
        stored = self.sessions.get(session.id)
        if stored is None or not stored.is_active:
            return None
        self.sessions[session.id] = _copy(session)
        return _copy(session)

    async def list_sessions(
        self,
        user_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[FocusSession]:
        self._check_online()
        matching = sorted(
            (
                s
                for s in self.sessions.values()
                if s.user_id == user_id
                and (since is None or s.started_at >= since)
                and (until is None or s.started_at <= until)
            ),
            key=lambda s: s.started_at,
            reverse=True,
        )
        end = None if limit is None else offset + limit
        return [_copy(s) for s in matching[offset:end]]

    async def count_sessions(self, user_id: str) -> int:
        self._check_online()
        return sum(1 for s in self.sessions.values() if s.user_id == user_id)

    async def save_segment(self, segment: FocusSegment) -> FocusSegment:
        self._check_online()
        self.segments[segment.id] = _copy(segment)
        return _copy(segment)

    async def list_segments(self, session_id: str) -> list[FocusSegment]:
        self._check_online()
        return sorted(
            (_copy(s) for s in self.segments.values() if s.session_id == session_id),
            key=lambda s: s.started_at,
        )
