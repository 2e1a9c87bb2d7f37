"""
SQLAlchemy implementation of the LearningRepository port.

Converts between the ORM records in models_learning.py and the pydantic
domain models. Every write commits, matching how the services use the
store: each call is an independent, last-writer-wins update.

Connection-level failures (refused connections, dropped sockets,
invalidated connections) are raised as ConnectivityError so callers can
fall back to the offline queue.

Usage:
    async with async_session_maker() as db:
        repository = SqlLearningRepository(db)
        item = await repository.get_item(item_id)
"""

import logging
from datetime import datetime
from enum import Enum
from functools import wraps
from typing import Any, Optional, TypeVar

from pydantic import BaseModel
from sqlalchemy import func, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from studyflow.db.base import Base
from studyflow.db.models_learning import (
    FocusSegmentRecord,
    FocusSessionRecord,
    LearningItemRecord,
    ReviewEventRecord,
    UserAchievementRecord,
    UserStatsRecord,
)
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
from studyflow.utils import ensure_utc

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _translate_errors(func):
    """Raise ConnectivityError for connection-level database failures."""

    @wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func(self, *args, **kwargs)
        except (OperationalError, InterfaceError, OSError) as e:
            logger.error(f"Learning store unreachable during {func.__name__}: {e}")
            raise ConnectivityError(
                "Learning store is unreachable",
                details={"operation": func.__name__},
            ) from e
        except DBAPIError as e:
            if not e.connection_invalidated:
                raise
            logger.error(f"Connection invalidated during {func.__name__}: {e}")
            raise ConnectivityError(
                "Learning store connection was lost",
                details={"operation": func.__name__},
            ) from e

    return wrapper


def _record_values(record: Base) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for column in record.__table__.columns:
        value = getattr(record, column.key)
        if isinstance(value, datetime):
            value = ensure_utc(value)
        values[column.key] = value
    return values


def from_db_record(model_cls: type[M], record: Base, **extra: Any) -> M:
    """Build a domain model from an ORM record."""
    return model_cls.model_validate({**_record_values(record), **extra})


def _column_values(record_cls: type[Base], model: BaseModel) -> dict[str, Any]:
    data = model.model_dump()
    values: dict[str, Any] = {}
    for column in record_cls.__table__.columns:
        if column.key not in data:
            continue
        value = data[column.key]
        values[column.key] = value.value if isinstance(value, Enum) else value
    return values


def _apply(record: Base, model: BaseModel) -> None:
    for key, value in _column_values(type(record), model).items():
        setattr(record, key, value)


class SqlLearningRepository(LearningRepository):
    """LearningRepository backed by PostgreSQL."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _upsert(self, record_cls: type[Base], key: Any, model: BaseModel) -> Base:
        record = await self.db.get(record_cls, key)
        if record is None:
            record = record_cls()
            self.db.add(record)
        _apply(record, model)
        await self.db.commit()
        return record

    # -- Items --------------------------------------------------------------

    @_translate_errors
    async def get_item(self, item_id: str) -> Optional[LearningItem]:
        record = await self.db.get(LearningItemRecord, item_id)
        return from_db_record(LearningItem, record) if record else None

    @_translate_errors
    async def list_items(
        self, user_id: str, status: Optional[MasteryStatus] = None
    ) -> list[LearningItem]:
        query = select(LearningItemRecord).where(LearningItemRecord.user_id == user_id)
        if status is not None:
            query = query.where(LearningItemRecord.mastery_status == status.value)
        result = await self.db.execute(query)
        return [from_db_record(LearningItem, r) for r in result.scalars().all()]

    @_translate_errors
    async def save_item(self, item: LearningItem) -> LearningItem:
        record = await self._upsert(LearningItemRecord, item.id, item)
        return from_db_record(LearningItem, record)

    # -- Review history -----------------------------------------------------

    @_translate_errors
    async def add_review_event(self, event: ReviewEvent) -> ReviewEvent:
        record = ReviewEventRecord()
        _apply(record, event)
        self.db.add(record)
        await self.db.commit()
        return from_db_record(ReviewEvent, record)

    @_translate_errors
    async def list_review_times(
        self, user_id: str, since: Optional[datetime] = None
    ) -> list[datetime]:
        query = select(ReviewEventRecord.reviewed_at).where(
            ReviewEventRecord.user_id == user_id
        )
        if since is not None:
            query = query.where(ReviewEventRecord.reviewed_at >= since)
        result = await self.db.execute(query.order_by(ReviewEventRecord.reviewed_at.desc()))
        return [ensure_utc(ts) for ts in result.scalars().all()]

    # -- Stats & achievements -----------------------------------------------

    async def _achievement_ids(self, user_id: str) -> list[str]:
        result = await self.db.execute(
            select(UserAchievementRecord.achievement_id)
            .where(UserAchievementRecord.user_id == user_id)
            .order_by(UserAchievementRecord.unlocked_at)
        )
        return list(result.scalars().all())

    @_translate_errors
    async def get_stats(self, user_id: str) -> Optional[UserGamificationStats]:
        record = await self.db.get(UserStatsRecord, user_id)
        if record is None:
            return None
        return from_db_record(
            UserGamificationStats, record, achievements=await self._achievement_ids(user_id)
        )

    @_translate_errors
    async def save_stats(self, stats: UserGamificationStats) -> UserGamificationStats:
        record = await self._upsert(UserStatsRecord, stats.user_id, stats)
        return from_db_record(
            UserGamificationStats,
            record,
            achievements=await self._achievement_ids(stats.user_id),
        )

    @_translate_errors
    async def list_achievements(self, user_id: str) -> list[AchievementUnlock]:
        result = await self.db.execute(
            select(UserAchievementRecord).where(UserAchievementRecord.user_id == user_id)
        )
        return [from_db_record(AchievementUnlock, r) for r in result.scalars().all()]

    @_translate_errors
    async def add_achievement(self, unlock: AchievementUnlock) -> bool:
        existing = await self.db.execute(
            select(UserAchievementRecord.id).where(
                UserAchievementRecord.user_id == unlock.user_id,
                UserAchievementRecord.achievement_id == unlock.achievement_id,
            )
        )
        if existing.scalar_one_or_none() is not None:
            return False

        record = UserAchievementRecord()
        _apply(record, unlock)
        self.db.add(record)
        try:
            await self.db.commit()
        except IntegrityError:
            # Unlocked concurrently by another request
            await self.db.rollback()
            return False
        return True

    # -- Focus sessions -----------------------------------------------------

    @_translate_errors
    async def get_session(self, session_id: str) -> Optional[FocusSession]:
        record = await self.db.get(FocusSessionRecord, session_id)
        return from_db_record(FocusSession, record) if record else None

    @_translate_errors
    async def get_active_session(self, user_id: str) -> Optional[FocusSession]:
        result = await self.db.execute(
            select(FocusSessionRecord)
            .where(
                FocusSessionRecord.user_id == user_id,
                FocusSessionRecord.is_active.is_(True),
            )
            .order_by(FocusSessionRecord.started_at.desc())
            .limit(1)
        )
        record = result.scalars().first()
        return from_db_record(FocusSession, record) if record else None

    @_translate_errors
    async def save_session(self, session: FocusSession) -> FocusSession:
        record = await self._upsert(FocusSessionRecord, session.id, session)
        return from_db_record(FocusSession, record)

    @_translate_errors
    async def save_active_session(self, session: FocusSession) -> Optional[FocusSession]:
        result = await self.db.execute(
            update(FocusSessionRecord)
            .where(
                FocusSessionRecord.id == session.id,
                FocusSessionRecord.is_active.is_(True),
            )
            .values(**_column_values(FocusSessionRecord, session))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            logger.info(f"Session {session.id} is no longer active; write skipped")
            return None
        await self.db.commit()
        return session.model_copy()

    @_translate_errors
    async def list_sessions(
        self,
        user_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[FocusSession]:
        query = select(FocusSessionRecord).where(FocusSessionRecord.user_id == user_id)
        if since is not None:
            query = query.where(FocusSessionRecord.started_at >= since)
        if until is not None:
            query = query.where(FocusSessionRecord.started_at <= until)
        query = query.order_by(FocusSessionRecord.started_at.desc()).offset(offset)
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return [from_db_record(FocusSession, r) for r in result.scalars().all()]

    @_translate_errors
    async def count_sessions(self, user_id: str) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(FocusSessionRecord)
            .where(FocusSessionRecord.user_id == user_id)
        )
        return result.scalar_one()

    @_translate_errors
    async def save_segment(self, segment: FocusSegment) -> FocusSegment:
        record = await self._upsert(FocusSegmentRecord, segment.id, segment)
        return from_db_record(FocusSegment, record)

    @_translate_errors
    async def list_segments(self, session_id: str) -> list[FocusSegment]:
        result = await self.db.execute(
            select(FocusSegmentRecord)
            .where(FocusSegmentRecord.session_id == session_id)
            .order_by(FocusSegmentRecord.started_at)
        )
        return [from_db_record(FocusSegment, r) for r in result.scalars().all()]
