"""
Unit tests for the SQLAlchemy learning repository.

The AsyncSession is mocked; these tests cover the model/record conversion,
the upsert path and the translation of driver failures into
ConnectivityError.
"""

from datetime import date, datetime, timezone
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from studyflow.db.models_learning import LearningItemRecord, UserAchievementRecord
from studyflow.db.sql_repository import SqlLearningRepository
from studyflow.enums.learning import LearningMode, MasteryStatus
from studyflow.middleware.error_handling import ConnectivityError
from studyflow.models.learning import (
    AchievementUnlock,
    FocusSession,
    LearningItem,
    UserGamificationStats,
)

NOW = datetime(2024, 3, 4, 12, 0, tzinfo=timezone.utc)


def result_with(scalar=None, scalars=None) -> MagicMock:
    """Build a mock execute() result."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = scalar
    result.scalar_one.return_value = scalar
    result.scalars.return_value.all.return_value = scalars or []
    result.scalars.return_value.first.return_value = (scalars or [None])[0]
    return result


@pytest.fixture
def repository(mock_db_session) -> SqlLearningRepository:
    return SqlLearningRepository(mock_db_session)


class TestItems:
    """Item reads and upserts."""

    @pytest.mark.asyncio
    async def test_missing_item(self, repository, mock_db_session) -> None:
        assert await repository.get_item("nope") is None
        mock_db_session.get.assert_awaited_once_with(LearningItemRecord, "nope")

    @pytest.mark.asyncio
    async def test_save_new_item(self, repository, mock_db_session) -> None:
        item = LearningItem(
            user_id="user-1",
            content="What is a monad?",
            learning_mode=LearningMode.CRAM,
            review_count=2,
            next_review_at=NOW,
            interval_days=0.5,
            created_at=NOW,
        )

        saved = await repository.save_item(item)

        record = mock_db_session.add.call_args.args[0]
        assert isinstance(record, LearningItemRecord)
        assert record.learning_mode == "cram"
        assert record.mastery_status == "active"
        mock_db_session.commit.assert_awaited_once()
        assert saved == item

    @pytest.mark.asyncio
    async def test_save_existing_item_updates_record(self, repository, mock_db_session) -> None:
        record = LearningItemRecord()
        mock_db_session.get.return_value = record
        item = LearningItem(
            user_id="user-1", mastery_status=MasteryStatus.MASTERED, created_at=NOW
        )

        await repository.save_item(item)

        mock_db_session.add.assert_not_called()
        assert record.id == item.id
        assert record.mastery_status == "mastered"

    @pytest.mark.asyncio
    async def test_naive_datetimes_come_back_as_utc(self, repository, mock_db_session) -> None:
        mock_db_session.execute.return_value = result_with(
            scalars=[datetime(2024, 3, 4, 9, 30)]
        )

        times = await repository.list_review_times("user-1")

        assert times == [datetime(2024, 3, 4, 9, 30, tzinfo=timezone.utc)]


class TestConnectivity:
    """Driver failures surface as ConnectivityError."""

    @pytest.mark.asyncio
    async def test_operational_error(self, repository, mock_db_session) -> None:
        mock_db_session.get.side_effect = OperationalError(
            "SELECT 1", {}, ConnectionRefusedError("refused")
        )

        with pytest.raises(ConnectivityError) as exc_info:
            await repository.get_item("item-1")

        assert exc_info.value.status_code == 503
        assert exc_info.value.details == {"operation": "get_item"}

    @pytest.mark.asyncio
    async def test_os_error(self, repository, mock_db_session) -> None:
        mock_db_session.execute.side_effect = ConnectionResetError("reset")

        with pytest.raises(ConnectivityError):
            await repository.get_active_session("user-1")

    @pytest.mark.asyncio
    async def test_invalidated_connection(self, repository, mock_db_session) -> None:
        mock_db_session.get.side_effect = DBAPIError(
            "SELECT 1", {}, Exception("gone"), connection_invalidated=True
        )

        with pytest.raises(ConnectivityError):
            await repository.get_session("session-1")

    @pytest.mark.asyncio
    async def test_other_database_errors_propagate(self, repository, mock_db_session) -> None:
        mock_db_session.commit.side_effect = IntegrityError("INSERT", {}, Exception("dup"))

        with pytest.raises(IntegrityError):
            await repository.save_item(LearningItem(user_id="user-1"))


class TestStatsAndAchievements:
    """Stats upsert and idempotent unlocks."""

    @pytest.mark.asyncio
    async def test_save_stats_attaches_achievements(self, repository, mock_db_session) -> None:
        mock_db_session.execute.return_value = result_with(scalars=["first_review"])
        stats = UserGamificationStats(
            user_id="user-1", total_points=150, last_review_date=date(2024, 3, 4)
        )

        saved = await repository.save_stats(stats)

        assert saved.total_points == 150
        assert saved.last_review_date == date(2024, 3, 4)
        assert saved.achievements == ["first_review"]

    @pytest.mark.asyncio
    async def test_new_achievement(self, repository, mock_db_session) -> None:
        mock_db_session.execute.return_value = result_with(scalar=None)

        added = await repository.add_achievement(
            AchievementUnlock(user_id="user-1", achievement_id="first_review", unlocked_at=NOW)
        )

        assert added is True
        record = mock_db_session.add.call_args.args[0]
        assert isinstance(record, UserAchievementRecord)
        assert record.achievement_id == "first_review"

    @pytest.mark.asyncio
    async def test_existing_achievement(self, repository, mock_db_session) -> None:
        mock_db_session.execute.return_value = result_with(scalar=7)

        added = await repository.add_achievement(
            AchievementUnlock(user_id="user-1", achievement_id="first_review")
        )

        assert added is False
        mock_db_session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_concurrent_unlock_rolls_back(self, repository, mock_db_session) -> None:
        mock_db_session.execute.return_value = result_with(scalar=None)
        mock_db_session.commit.side_effect = IntegrityError("INSERT", {}, Exception("dup"))

        added = await repository.add_achievement(
            AchievementUnlock(user_id="user-1", achievement_id="first_review")
        )

        assert added is False
        mock_db_session.rollback.assert_awaited_once()


class TestSessions:
    """Focus session queries."""

    @pytest.mark.asyncio
    async def test_count_sessions(self, repository, mock_db_session) -> None:
        mock_db_session.execute.return_value = result_with(scalar=4)

        assert await repository.count_sessions("user-1") == 4

    @pytest.mark.asyncio
    async def test_no_active_session(self, repository, mock_db_session) -> None:
        mock_db_session.execute.return_value = result_with(scalars=[])

        assert await repository.get_active_session("user-1") is None

    @pytest.mark.asyncio
    async def test_conditional_write_on_active_session(self, repository, mock_db_session) -> None:
        session = FocusSession(user_id="user-1", started_at=NOW, is_active=False)
        result = MagicMock()
        result.rowcount = 1
        mock_db_session.execute.return_value = result

        saved = await repository.save_active_session(session)

        assert saved == session
        statement = mock_db_session.execute.await_args.args[0]
        where = str(statement).split("WHERE", 1)[1]
        assert "is_active" in where
        mock_db_session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_conditional_write_on_ended_session(self, repository, mock_db_session) -> None:
        result = MagicMock()
        result.rowcount = 0
        mock_db_session.execute.return_value = result

        saved = await repository.save_active_session(FocusSession(user_id="user-1", started_at=NOW))

        assert saved is None
        mock_db_session.rollback.assert_awaited_once()
        mock_db_session.commit.assert_not_awaited()
