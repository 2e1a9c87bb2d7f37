"""
Points Engine

Per-review scoring, session combos, streak bonuses and level progression.

    total_points = round(BASE × timing multiplier × priority multiplier)

The timing multiplier comes from the item's mode: perfect → on_time,
in_window → in_window, late → late. There is no early multiplier; early
reviews are scored with the late rate. A first review (no due date yet) uses
a multiplier of 1.

Levels are derived from total points, never stored: level n costs
floor(100 × 1.2^(n-1)) points.

Usage:
    from studyflow.services.learning.points import PointsEngine, calculate_level

    engine = PointsEngine()
    breakdown = engine.score_review(item, reviewed_at=now)
    combo = engine.register_review(user_id, reviewed_at=now)
"""

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from studyflow.config import settings
from studyflow.enums.learning import TimingStatus
from studyflow.models.learning import (
    ComboState,
    LearningItem,
    LevelProgress,
    PointsBreakdown,
)
from studyflow.services.learning.modes import get_mode_config
from studyflow.services.learning.timing import classify
from studyflow.utils import Clock, round_half_up, utc_now

logger = logging.getLogger(__name__)


PRIORITY_MULTIPLIERS: dict[int, float] = {1: 0.5, 2: 0.75, 3: 1.0, 4: 1.25, 5: 1.5}

# Consecutive reviews → bonus points
COMBO_BONUSES: dict[int, int] = {5: 25, 10: 75, 25: 200, 50: 500}

# Consecutive study days → bonus points
STREAK_MILESTONES: dict[int, int] = {
    3: 50,
    7: 150,
    14: 300,
    30: 700,
    60: 1500,
    100: 3000,
    365: 10000,
}


def _highest_step(table: dict[int, int], value: int) -> int:
    bonus = 0
    for threshold in sorted(table):
        if value >= threshold:
            bonus = table[threshold]
    return bonus


def combo_bonus(combo: int) -> int:
    """Bonus for the highest combo threshold met."""
    return _highest_step(COMBO_BONUSES, combo)


def streak_bonus(streak_days: int) -> int:
    """Bonus for the highest streak milestone met."""
    return _highest_step(STREAK_MILESTONES, streak_days)


def priority_multiplier(priority: int) -> float:
    return PRIORITY_MULTIPLIERS.get(priority, 1.0)


# ===========================================
# Levels
# ===========================================


def level_cost(level: int) -> int:
    """Points needed to complete `level` (level 1 costs the base)."""
    return math.floor(
        settings.LEVEL_EXPERIENCE_BASE * settings.LEVEL_EXPERIENCE_GROWTH ** (level - 1)
    )


def _level_and_floor(total_points: int) -> tuple[int, int]:
    level = 1
    accumulated = 0
    required = level_cost(1)
    while accumulated + required <= total_points:
        accumulated += required
        level += 1
        required = level_cost(level)
    return level, accumulated


def calculate_level(total_points: int) -> int:
    """Level reached with `total_points`."""
    return _level_and_floor(total_points)[0]


def level_progress(total_points: int) -> LevelProgress:
    """Level plus progress toward the next one."""
    level, level_start = _level_and_floor(total_points)
    cost = level_cost(level)
    progress = total_points - level_start
    return LevelProgress(
        level=level,
        total_points=total_points,
        current_level_progress=progress,
        points_needed=cost - progress,
        progress_percentage=round_half_up(progress / cost * 100, 2),
        level_cost=cost,
    )


# ===========================================
# Streaks
# ===========================================


def _distinct_days(review_times: Iterable[datetime]) -> set[date]:
    return {ts.date() for ts in review_times}


def calculate_streak_from_history(
    review_times: Iterable[datetime], today: date
) -> int:
    """
    Consecutive UTC days with at least one review, ending today.

    A day without reviews breaks the streak, including today itself.
    """
    days = _distinct_days(review_times)
    streak = 0
    check = today
    while check in days:
        streak += 1
        check -= timedelta(days=1)
    return streak


def longest_streak_from_history(review_times: Iterable[datetime]) -> int:
    """Longest run of consecutive review days anywhere in the history."""
    days = sorted(_distinct_days(review_times))
    longest = 0
    run = 0
    previous: Optional[date] = None
    for day in days:
        run = run + 1 if previous is not None and day - previous == timedelta(days=1) else 1
        longest = max(longest, run)
        previous = day
    return longest


# ===========================================
# Engine
# ===========================================


@dataclass
class _ComboTracker:
    count: int = 0
    last_review_at: Optional[datetime] = None


class PointsEngine:
    """
    Review scoring with transient session combos.

    The combo counters are in-memory per engine instance and per user. They
    are never persisted or shared between processes.
    """

    def __init__(self, clock: Clock = utc_now):
        self.clock = clock
        self._combos: dict[str, _ComboTracker] = {}

    def score_review(
        self, item: LearningItem, reviewed_at: Optional[datetime] = None
    ) -> PointsBreakdown:
        """
        Points for reviewing `item` at `reviewed_at`.

        Args:
            item: The item before this review is applied
            reviewed_at: Review time (defaults to the engine clock)

        Returns:
            PointsBreakdown with base, multipliers and the rounded total
        """
        reviewed_at = reviewed_at or self.clock()
        base = settings.REVIEW_BASE_POINTS
        timing = classify(item, reviewed_at)

        if timing is None:
            time_bonus = 1.0
        else:
            multipliers = get_mode_config(item.learning_mode).points_multiplier
            if timing.status == TimingStatus.PERFECT:
                time_bonus = multipliers.on_time
            elif timing.status == TimingStatus.IN_WINDOW:
                time_bonus = multipliers.in_window
            else:
                time_bonus = multipliers.late

        priority_bonus = priority_multiplier(item.priority)
        total = int(round_half_up(base * time_bonus * priority_bonus))

        return PointsBreakdown(
            base_points=base,
            time_bonus=time_bonus,
            priority_bonus=priority_bonus,
            total_points=total,
            is_perfect_timing=timing is not None and timing.status == TimingStatus.PERFECT,
            timing_status=timing.status if timing else None,
        )

    def register_review(
        self, user_id: str, reviewed_at: Optional[datetime] = None
    ) -> ComboState:
        """
        Count a review toward the user's combo.

        The combo restarts when more than COMBO_TIMEOUT_MINUTES passed since
        the previous review. The returned bonus is non-zero only on the
        review that reaches a threshold.
        """
        reviewed_at = reviewed_at or self.clock()
        self._prune_expired(reviewed_at)
        tracker = self._combos.setdefault(user_id, _ComboTracker())

        tracker.count += 1
        tracker.last_review_at = reviewed_at

        bonus = COMBO_BONUSES.get(tracker.count, 0)
        return ComboState(count=tracker.count, bonus=bonus)

    def get_combo(self, user_id: str, now: Optional[datetime] = None) -> int:
        """Current combo, or 0 when it has already expired."""
        tracker = self._combos.get(user_id)
        if tracker is None or tracker.last_review_at is None:
            return 0
        now = now or self.clock()
        if now - tracker.last_review_at > timedelta(minutes=settings.COMBO_TIMEOUT_MINUTES):
            return 0
        return tracker.count

    def reset_combo(self, user_id: str) -> None:
        self._combos.pop(user_id, None)

    def _prune_expired(self, now: datetime) -> None:
        """Drop every tracker whose combo has lapsed by `now`."""
        timeout = timedelta(minutes=settings.COMBO_TIMEOUT_MINUTES)
        expired = [
            user_id
            for user_id, tracker in self._combos.items()
            if tracker.last_review_at is not None and now - tracker.last_review_at > timeout
        ]
        for user_id in expired:
            logger.debug(f"Combo for {user_id} expired at {self._combos[user_id].count}")
            del self._combos[user_id]
