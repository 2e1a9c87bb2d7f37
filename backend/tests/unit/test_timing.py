"""
Unit Tests for Review Timing and Queues.

Tests for:
- Timing classification around the due time (steady: 12h before, 24h after)
- Due-queue membership and ordering
- Upcoming and by-status groupings
- Handling of malformed rows
"""

import logging
from datetime import timedelta

import pytest

from studyflow.enums.learning import LearningMode, MasteryStatus, TimingStatus
from studyflow.models.learning import LearningItem
from studyflow.services.learning.scheduler import apply_review
from studyflow.services.learning.timing import (
    classify,
    get_due_items,
    get_items_by_status,
    get_ready_to_learn,
    get_upcoming_items,
    is_due,
    sort_due_queue,
)


def scheduled_item(due, **overrides) -> LearningItem:
    data = {
        "user_id": "user-1",
        "content": "krebs cycle",
        "review_count": 1,
        "next_review_at": due,
        "learning_mode": LearningMode.STEADY,
    }
    data.update(overrides)
    return LearningItem(**data)


class TestClassify:
    """Timing classification relative to next_review_at."""

    @pytest.mark.parametrize(
        "offset_hours,expected",
        [
            (0, TimingStatus.PERFECT),
            (0.5, TimingStatus.PERFECT),
            (-0.5, TimingStatus.PERFECT),
            (-6, TimingStatus.IN_WINDOW),
            (-12, TimingStatus.IN_WINDOW),
            (20, TimingStatus.IN_WINDOW),
            (24, TimingStatus.IN_WINDOW),
            (-13, TimingStatus.EARLY),
            (25, TimingStatus.LATE),
        ],
    )
    def test_steady_classification(self, clock, offset_hours, expected) -> None:
        item = scheduled_item(clock.now)

        result = classify(item, clock.now + timedelta(hours=offset_hours))

        assert result.status == expected
        assert result.hours_offset == pytest.approx(offset_hours)
        assert result.due_at == clock.now

    def test_perfect_window_is_mode_independent(self, clock) -> None:
        """Even the test mode (no early window) has a half-hour perfect band."""
        item = scheduled_item(clock.now, learning_mode=LearningMode.TEST)

        result = classify(item, clock.now - timedelta(minutes=20))

        assert result.status == TimingStatus.PERFECT

    @pytest.mark.parametrize("mode", list(LearningMode))
    def test_review_on_schedule_is_perfect(self, clock, mode) -> None:
        """Each review taken at the scheduled time classifies as perfect, in every mode."""
        item = LearningItem(user_id="user-1", content="krebs cycle", learning_mode=mode)
        now = clock.now

        for _ in range(6):
            item, _ = apply_review(item, now=now)
            now = item.next_review_at

            result = classify(item, now)

            assert result.status == TimingStatus.PERFECT
            assert result.hours_offset == pytest.approx(0)

    def test_unscheduled_item_has_no_classification(self, clock) -> None:
        item = LearningItem(user_id="user-1", content="new")

        assert classify(item, clock.now) is None


class TestDueQueue:
    """Which items are due and in what order."""

    def test_never_reviewed_is_never_due(self, clock) -> None:
        item = LearningItem(user_id="user-1", content="new")

        assert not is_due(item, clock.now)

    def test_due_opens_at_window_start(self, clock) -> None:
        item = scheduled_item(clock.now + timedelta(hours=12))

        assert is_due(item, clock.now)
        assert not is_due(item, clock.now - timedelta(seconds=1))

    def test_queue_orders_by_priority_then_due(self, clock) -> None:
        low_old = scheduled_item(clock.now - timedelta(hours=5), priority=1, content="a")
        high_new = scheduled_item(clock.now - timedelta(hours=1), priority=5, content="b")
        high_old = scheduled_item(clock.now - timedelta(hours=3), priority=5, content="c")

        queue = get_due_items([low_old, high_new, high_old], clock.now)

        assert [i.content for i in queue] == ["c", "b", "a"]

    def test_frozen_items_are_never_due(self, clock) -> None:
        mastered = scheduled_item(clock.now, mastery_status=MasteryStatus.MASTERED)
        archived = scheduled_item(clock.now, mastery_status=MasteryStatus.ARCHIVED)
        maintenance = scheduled_item(clock.now, mastery_status=MasteryStatus.MAINTENANCE)

        queue = get_due_items([mastered, archived, maintenance], clock.now)

        assert queue == [maintenance]

    def test_malformed_item_is_excluded_and_logged(self, clock, caplog) -> None:
        broken = scheduled_item(None, review_count=3)

        with caplog.at_level(logging.WARNING):
            queue = get_due_items([broken], clock.now)

        assert queue == []
        assert "no next_review_at" in caplog.text

    def test_sort_puts_missing_due_dates_first_within_priority(self, clock) -> None:
        dated = scheduled_item(clock.now, content="dated")
        missing = scheduled_item(None, content="missing")

        ordered = sort_due_queue([dated, missing])

        assert [i.content for i in ordered] == ["missing", "dated"]


class TestGroupings:
    """Ready, upcoming and dashboard buckets."""

    def test_ready_to_learn(self, clock) -> None:
        new_low = LearningItem(user_id="user-1", content="low", priority=1)
        new_high = LearningItem(user_id="user-1", content="high", priority=4)
        reviewed = scheduled_item(clock.now)

        ready = get_ready_to_learn([new_low, reviewed, new_high])

        assert [i.content for i in ready] == ["high", "low"]

    def test_upcoming_respects_horizon(self, clock) -> None:
        in_three_days = scheduled_item(clock.now + timedelta(days=3))

        assert get_upcoming_items([in_three_days], days=7, now=clock.now) == [in_three_days]
        assert get_upcoming_items([in_three_days], days=2, now=clock.now) == []

    def test_upcoming_excludes_due_items(self, clock) -> None:
        due_now = scheduled_item(clock.now)

        assert get_upcoming_items([due_now], days=7, now=clock.now) == []

    def test_items_by_status(self, clock) -> None:
        overdue = scheduled_item(clock.now - timedelta(hours=30), content="overdue")
        due = scheduled_item(clock.now - timedelta(hours=2), content="due")
        upcoming = scheduled_item(clock.now + timedelta(days=2), content="upcoming")
        mastered = scheduled_item(
            clock.now, content="mastered", mastery_status=MasteryStatus.MASTERED
        )
        new = LearningItem(user_id="user-1", content="new")

        buckets = get_items_by_status([overdue, due, upcoming, mastered, new], clock.now)

        assert [i.content for i in buckets.overdue] == ["overdue"]
        assert [i.content for i in buckets.due] == ["due"]
        assert [i.content for i in buckets.upcoming] == ["upcoming"]
        assert [i.content for i in buckets.mastered] == ["mastered"]
