"""
Gamification Service

Orchestrates a review end to end and owns the per-user stats.

Review flow:
    1. Score timing and priority (PointsEngine.score_review)
    2. Count the review toward the session combo
    3. Advance the schedule (scheduler.apply_review) and persist the item
    4. Append the review event
    5. Update stats: today's counters, streak reconciled from history,
       streak milestone bonus, achievements and their bonuses
    6. Publish StatsChangedEvent

Steps 1-4 define the review. Failures in step 5 or 6 are logged and the
review still stands: the bonus shows up on the next successful stats write
or read instead.

Streaks are never trusted from the stored counter. Every stats read
recomputes them from the review history and stores the correction.

Usage:
    service = GamificationService(repository, points_engine, event_bus)
    result = await service.review_item(user_id, item_id)
    stats = await service.get_user_stats(user_id)
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from studyflow.config import settings
from studyflow.enums.learning import MasteryStatus
from studyflow.middleware.error_handling import NotFoundError, ValidationError
from studyflow.db.repository import LearningRepository
from studyflow.models.learning import (
    AchievementDefinition,
    AchievementStatus,
    AchievementUnlock,
    ItemStatusBuckets,
    LearningItem,
    LearningItemCreate,
    MasteryStatusUpdate,
    ReviewEvent,
    ReviewResult,
    StatsSnapshot,
    UserGamificationStats,
    UserStatsResponse,
)
from studyflow.services.learning import timing
from studyflow.services.learning.achievements import ACHIEVEMENTS, evaluate_with_bonuses
from studyflow.services.learning.events import EventBus, StatsChangedEvent
from studyflow.services.learning.points import (
    STREAK_MILESTONES,
    PointsEngine,
    calculate_level,
    calculate_streak_from_history,
    level_progress,
    longest_streak_from_history,
)
from studyflow.services.learning.scheduler import (
    FROZEN_STATUSES,
    apply_mastery_status,
    apply_review,
)
from studyflow.utils import Clock, utc_now

logger = logging.getLogger(__name__)


class GamificationService:
    """
    Review orchestration, stats and achievements for all users.

    Holds no per-user state of its own; the combo counters live in the
    injected PointsEngine.
    """

    def __init__(
        self,
        repository: LearningRepository,
        points: PointsEngine,
        bus: Optional[EventBus] = None,
        clock: Clock = utc_now,
    ):
        self.repository = repository
        self.points = points
        self.bus = bus or EventBus()
        self.clock = clock

    def subscribe(self, handler: Callable[[StatsChangedEvent], object]) -> Callable[[], None]:
        """Listen for stats changes; returns the unsubscribe callable."""
        return self.bus.subscribe(StatsChangedEvent, handler)

    # ===========================================
    # Items
    # ===========================================

    async def create_item(self, user_id: str, request: LearningItemCreate) -> LearningItem:
        item = LearningItem(
            user_id=user_id,
            content=request.content,
            topic_id=request.topic_id,
            priority=request.priority,
            learning_mode=request.learning_mode,
            created_at=self.clock(),
        )
        return await self.repository.save_item(item)

    async def get_item(self, user_id: str, item_id: str) -> LearningItem:
        """
        Load one of the user's items.

        Raises:
            NotFoundError: Missing, or owned by someone else
        """
        item = await self.repository.get_item(item_id)
        if item is None or item.user_id != user_id:
            raise NotFoundError(f"Learning item {item_id} not found")
        return item

    async def set_mastery_status(
        self,
        user_id: str,
        item_id: str,
        update: MasteryStatusUpdate,
        now: Optional[datetime] = None,
    ) -> LearningItem:
        item = await self.get_item(user_id, item_id)
        updated = apply_mastery_status(
            item, update.status, now=now or self.clock(), maintenance_days=update.maintenance_days
        )
        logger.info(f"Item {item_id} status {item.mastery_status.value} -> {updated.mastery_status.value}")
        return await self.repository.save_item(updated)

    async def get_due_items(self, user_id: str, now: Optional[datetime] = None) -> list[LearningItem]:
        items = await self.repository.list_items(user_id)
        return timing.get_due_items(items, now or self.clock())

    async def get_ready_to_learn(self, user_id: str) -> list[LearningItem]:
        return timing.get_ready_to_learn(await self.repository.list_items(user_id))

    async def get_upcoming_items(
        self, user_id: str, days: Optional[int] = None, now: Optional[datetime] = None
    ) -> list[LearningItem]:
        items = await self.repository.list_items(user_id)
        return timing.get_upcoming_items(items, days=days, now=now or self.clock())

    async def get_items_by_status(
        self, user_id: str, now: Optional[datetime] = None
    ) -> ItemStatusBuckets:
        items = await self.repository.list_items(user_id)
        return timing.get_items_by_status(items, now or self.clock())

    # ===========================================
    # Reviews
    # ===========================================

    async def review_item(
        self, user_id: str, item_id: str, now: Optional[datetime] = None
    ) -> ReviewResult:
        """
        Review an item at `now`.

        Raises:
            NotFoundError: Unknown item
            ValidationError: Item is mastered or archived
        """
        now = now or self.clock()
        item = await self.get_item(user_id, item_id)
        if item.mastery_status in FROZEN_STATUSES:
            raise ValidationError(
                f"Item {item_id} is {item.mastery_status.value} and cannot be reviewed",
                details={"item_id": item_id, "status": item.mastery_status.value},
            )

        breakdown = self.points.score_review(item, reviewed_at=now)
        combo = self.points.register_review(user_id, reviewed_at=now)
        updated, schedule = apply_review(item, now=now)

        mastery_bonus = 0
        if updated.review_count == settings.MASTERY_REVIEWS_REQUIRED:
            mastery_bonus = settings.MASTERY_BONUS_POINTS

        review_points = breakdown.total_points + combo.bonus + mastery_bonus
        saved = await self.repository.save_item(updated)
        await self.repository.add_review_event(
            ReviewEvent(
                user_id=user_id,
                item_id=item_id,
                reviewed_at=now,
                timing_status=breakdown.timing_status,
                points_earned=review_points,
                was_perfect=breakdown.is_perfect_timing,
                combo_count=combo.count,
            )
        )

        result = ReviewResult(
            item=saved,
            schedule=schedule,
            points=breakdown,
            combo=combo,
            mastery_bonus=mastery_bonus,
            total_awarded=review_points,
        )

        try:
            stats = await self._load_stats(user_id, now)
            level_before = calculate_level(stats.total_points)
            previous_review_date = stats.last_review_date

            history = await self.repository.list_review_times(user_id)
            self._reconcile_streak(stats, history, now)

            streak_award = 0
            if previous_review_date != now.date():
                streak_award = STREAK_MILESTONES.get(stats.current_streak, 0)

            awarded = review_points + streak_award
            stats.total_points += awarded
            stats.points_today += awarded
            stats.reviews_today += 1
            stats.total_reviews += 1
            stats.perfect_reviews += int(breakdown.is_perfect_timing)
            stats.last_review_date = now.date()

            unlocked, achievement_bonus = await self._unlock_achievements(
                stats, now, session_reviews=combo.count
            )
            saved_stats = await self._commit_stats(stats, reason="review")
        except Exception as e:
            logger.error(f"Review of {item_id} recorded but stats update failed: {e}")
            return result

        result.streak_bonus = streak_award
        result.achievement_bonus = achievement_bonus
        result.total_awarded = review_points + streak_award + achievement_bonus
        result.new_achievements = unlocked
        result.stats = saved_stats
        result.leveled_up = saved_stats.level.level > level_before
        return result

    # ===========================================
    # Stats
    # ===========================================

    async def get_user_stats(
        self, user_id: str, now: Optional[datetime] = None
    ) -> UserStatsResponse:
        """
        Stats with streaks reconciled against the review history.

        A drifted stored streak is corrected and written back.
        """
        now = now or self.clock()
        stats = await self._load_stats(user_id, now)
        before = (stats.current_streak, stats.longest_streak)

        history = await self.repository.list_review_times(user_id)
        self._reconcile_streak(stats, history, now)

        if (stats.current_streak, stats.longest_streak) != before:
            logger.info(
                f"Reconciled stats for {user_id}: streak {before[0]} -> {stats.current_streak}"
            )
            return await self._commit_stats(stats, reason="reconcile", publish=False)

        return UserStatsResponse(stats=stats, level=level_progress(stats.total_points))

    async def award_points(
        self, user_id: str, points: int, reason: str, now: Optional[datetime] = None
    ) -> UserStatsResponse:
        """Add points outside of a review and evaluate achievements."""
        now = now or self.clock()
        stats = await self._load_stats(user_id, now)
        stats.total_points += points
        stats.points_today += points
        await self._unlock_achievements(stats, now)
        return await self._commit_stats(stats, reason=reason)

    async def record_focus_session(
        self,
        user_id: str,
        work_minutes: float,
        points: int,
        now: Optional[datetime] = None,
    ) -> UserStatsResponse:
        """Credit a finished focus session's net points and work time."""
        now = now or self.clock()
        stats = await self._load_stats(user_id, now)
        stats.focus_sessions += 1
        stats.focus_work_minutes += work_minutes
        stats.total_points += points
        stats.points_today += points
        await self._unlock_achievements(stats, now)
        return await self._commit_stats(stats, reason="focus_session")

    async def list_achievements(self, user_id: str) -> list[AchievementStatus]:
        unlocks = {u.achievement_id: u for u in await self.repository.list_achievements(user_id)}
        return [
            AchievementStatus(
                achievement=achievement,
                unlocked=achievement.id in unlocks,
                unlocked_at=unlocks[achievement.id].unlocked_at if achievement.id in unlocks else None,
            )
            for achievement in ACHIEVEMENTS.values()
        ]

    # ===========================================
    # Helpers
    # ===========================================

    async def _load_stats(self, user_id: str, now: datetime) -> UserGamificationStats:
        stats = await self.repository.get_stats(user_id)
        if stats is None:
            stats = UserGamificationStats(user_id=user_id, today=now.date())
        if stats.today != now.date():
            stats.today = now.date()
            stats.reviews_today = 0
            stats.points_today = 0
        return stats

    @staticmethod
    def _reconcile_streak(
        stats: UserGamificationStats, history: list[datetime], now: datetime
    ) -> None:
        streak = calculate_streak_from_history(history, now.date())
        stats.current_streak = streak
        stats.longest_streak = max(
            stats.longest_streak, streak, longest_streak_from_history(history)
        )

    async def _mastered_count(self, user_id: str) -> int:
        items = await self.repository.list_items(user_id)
        return sum(
            1
            for item in items
            if item.mastery_status == MasteryStatus.MASTERED
            or item.review_count >= settings.MASTERY_REVIEWS_REQUIRED
        )

    async def _unlock_achievements(
        self, stats: UserGamificationStats, now: datetime, session_reviews: int = 0
    ) -> tuple[list[AchievementDefinition], int]:
        """Evaluate, persist unlocks and add their bonus to `stats`."""
        snapshot = StatsSnapshot(
            total_reviews=stats.total_reviews,
            current_streak=stats.current_streak,
            mastered_items=await self._mastered_count(stats.user_id),
            total_points=stats.total_points,
            level=calculate_level(stats.total_points),
            perfect_reviews=stats.perfect_reviews,
            session_reviews=session_reviews,
            focus_sessions=stats.focus_sessions,
            focus_work_minutes=stats.focus_work_minutes,
        )
        candidates, _ = evaluate_with_bonuses(snapshot, stats.achievements)

        unlocked: list[AchievementDefinition] = []
        for achievement in candidates:
            added = await self.repository.add_achievement(
                AchievementUnlock(
                    user_id=stats.user_id,
                    achievement_id=achievement.id,
                    unlocked_at=now,
                    points_awarded=achievement.points,
                )
            )
            if added:
                unlocked.append(achievement)
                logger.info(f"User {stats.user_id} unlocked {achievement.id}")

        bonus = sum(a.points for a in unlocked)
        stats.total_points += bonus
        stats.points_today += bonus
        stats.achievements = stats.achievements + [a.id for a in unlocked]
        return unlocked, bonus

    async def _commit_stats(
        self, stats: UserGamificationStats, reason: str, publish: bool = True
    ) -> UserStatsResponse:
        saved = await self.repository.save_stats(stats)
        if publish:
            await self.bus.publish(
                StatsChangedEvent(user_id=saved.user_id, stats=saved, reason=reason)
            )
        return UserStatsResponse(stats=saved, level=level_progress(saved.total_points))
