"""
Unit Tests for the Points Engine.

Tests for:
- Review points from timing, mode multipliers and priority
- Session combos (thresholds and the inactivity reset)
- Streak and level calculations
"""

from datetime import timedelta

import pytest

from studyflow.enums.learning import LearningMode, TimingStatus
from studyflow.models.learning import LearningItem
from studyflow.services.learning.points import (
    calculate_level,
    calculate_streak_from_history,
    combo_bonus,
    level_cost,
    level_progress,
    longest_streak_from_history,
    streak_bonus,
)


def due_item(due, priority: int = 3, mode: LearningMode = LearningMode.STEADY) -> LearningItem:
    return LearningItem(
        user_id="user-1",
        content="ohm's law",
        review_count=1,
        next_review_at=due,
        priority=priority,
        learning_mode=mode,
    )


class TestScoreReview:
    """Base × timing multiplier × priority multiplier."""

    def test_first_review_uses_neutral_multiplier(self, points_engine, clock) -> None:
        item = LearningItem(user_id="user-1", content="new")

        breakdown = points_engine.score_review(item, reviewed_at=clock.now)

        assert breakdown.total_points == 10
        assert breakdown.time_bonus == 1.0
        assert breakdown.timing_status is None
        assert not breakdown.is_perfect_timing

    def test_perfect_review_doubles_points(self, points_engine, clock) -> None:
        breakdown = points_engine.score_review(due_item(clock.now), reviewed_at=clock.now)

        assert breakdown.total_points == 20
        assert breakdown.is_perfect_timing
        assert breakdown.timing_status == TimingStatus.PERFECT

    def test_in_window_high_priority(self, points_engine, clock) -> None:
        item = due_item(clock.now, priority=5)

        breakdown = points_engine.score_review(item, reviewed_at=clock.now + timedelta(hours=6))

        assert breakdown.time_bonus == 1.2
        assert breakdown.priority_bonus == 1.5
        assert breakdown.total_points == 18

    def test_late_review_rounds_half_up(self, points_engine, clock) -> None:
        """10 × 0.7 × 1.25 = 8.75 → 9."""
        item = due_item(clock.now, priority=4)

        breakdown = points_engine.score_review(item, reviewed_at=clock.now + timedelta(days=3))

        assert breakdown.timing_status == TimingStatus.LATE
        assert breakdown.total_points == 9

    def test_early_review_uses_late_multiplier(self, points_engine, clock) -> None:
        item = due_item(clock.now + timedelta(days=2))

        breakdown = points_engine.score_review(item, reviewed_at=clock.now)

        assert breakdown.timing_status == TimingStatus.EARLY
        assert breakdown.total_points == 7

    def test_low_priority_reduces_points(self, points_engine, clock) -> None:
        breakdown = points_engine.score_review(due_item(clock.now, priority=2), reviewed_at=clock.now)

        assert breakdown.total_points == 15


class TestCombo:
    """Consecutive reviews inside the five-minute window."""

    def test_fifth_review_earns_combo_bonus(self, points_engine, clock) -> None:
        bonuses = []
        for _ in range(5):
            bonuses.append(points_engine.register_review("user-1", reviewed_at=clock.now).bonus)
            clock.advance(minutes=4)

        assert bonuses == [0, 0, 0, 0, 25]

    def test_gap_over_timeout_restarts_combo(self, points_engine, clock) -> None:
        for _ in range(5):
            points_engine.register_review("user-1", reviewed_at=clock.now)
            clock.advance(minutes=1)

        clock.advance(minutes=6)
        state = points_engine.register_review("user-1", reviewed_at=clock.now)

        assert state.count == 1
        assert state.bonus == 0

    def test_gap_of_exactly_timeout_keeps_combo(self, points_engine, clock) -> None:
        points_engine.register_review("user-1", reviewed_at=clock.now)
        clock.advance(minutes=5)

        state = points_engine.register_review("user-1", reviewed_at=clock.now)

        assert state.count == 2

    def test_combos_are_per_user(self, points_engine, clock) -> None:
        points_engine.register_review("user-1", reviewed_at=clock.now)
        points_engine.register_review("user-1", reviewed_at=clock.now)

        state = points_engine.register_review("user-2", reviewed_at=clock.now)

        assert state.count == 1

    def test_get_combo_expires(self, points_engine, clock) -> None:
        points_engine.register_review("user-1", reviewed_at=clock.now)

        assert points_engine.get_combo("user-1", clock.now) == 1
        assert points_engine.get_combo("user-1", clock.now + timedelta(minutes=6)) == 0

    def test_lapsed_combos_are_evicted(self, points_engine, clock) -> None:
        for user_id in ("user-1", "user-2", "user-3"):
            points_engine.register_review(user_id, reviewed_at=clock.now)
        clock.advance(minutes=6)

        points_engine.register_review("user-4", reviewed_at=clock.now)

        assert set(points_engine._combos) == {"user-4"}

    def test_reset_combo(self, points_engine, clock) -> None:
        points_engine.register_review("user-1", reviewed_at=clock.now)

        points_engine.reset_combo("user-1")

        assert points_engine.get_combo("user-1", clock.now) == 0

    @pytest.mark.parametrize("count,bonus", [(4, 0), (5, 25), (7, 25), (10, 75), (30, 200), (60, 500)])
    def test_combo_bonus_steps(self, count, bonus) -> None:
        assert combo_bonus(count) == bonus


class TestStreaks:
    """Streaks derived from review timestamps."""

    def test_consecutive_days_ending_today(self, clock) -> None:
        history = [clock.now - timedelta(days=d) for d in (0, 1, 2)]

        assert calculate_streak_from_history(history, clock.now.date()) == 3

    def test_no_review_today_means_no_streak(self, clock) -> None:
        history = [clock.now - timedelta(days=d) for d in (1, 2)]

        assert calculate_streak_from_history(history, clock.now.date()) == 0

    def test_multiple_reviews_per_day_count_once(self, clock) -> None:
        history = [clock.now, clock.now - timedelta(hours=1), clock.now - timedelta(days=1)]

        assert calculate_streak_from_history(history, clock.now.date()) == 2

    def test_longest_streak_spans_gaps(self, clock) -> None:
        history = [clock.now - timedelta(days=d) for d in (0, 1, 5, 6, 7, 8)]

        assert longest_streak_from_history(history) == 4

    def test_longest_streak_of_empty_history(self) -> None:
        assert longest_streak_from_history([]) == 0

    @pytest.mark.parametrize("days,bonus", [(2, 0), (3, 50), (7, 150), (10, 150), (30, 700)])
    def test_streak_bonus_steps(self, days, bonus) -> None:
        assert streak_bonus(days) == bonus


class TestLevels:
    """Level n costs floor(100 × 1.2^(n-1))."""

    def test_level_costs_grow(self) -> None:
        assert level_cost(1) == 100
        assert level_cost(2) == 120
        assert level_cost(5) > level_cost(4)

    @pytest.mark.parametrize("points,level", [(0, 1), (99, 1), (100, 2), (219, 2), (220, 3)])
    def test_calculate_level(self, points, level) -> None:
        assert calculate_level(points) == level

    def test_level_progress(self) -> None:
        progress = level_progress(150)

        assert progress.level == 2
        assert progress.current_level_progress == 50
        assert progress.points_needed == 70
        assert progress.level_cost == 120
        assert progress.progress_percentage == 41.67
