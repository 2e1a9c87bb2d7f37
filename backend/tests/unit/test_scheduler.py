"""
Unit Tests for the Review Scheduler and Mode Table.

Tests for:
- Interval lookup per mode and review count (including clamping)
- The pre-increment mastery flag
- Maintenance recurrence and explicit mastery-status transitions
"""

from datetime import timedelta

import pytest

from studyflow.enums.learning import LearningMode, MasteryStatus
from studyflow.middleware.error_handling import ValidationError
from studyflow.models.learning import LearningItem
from studyflow.services.learning.modes import MODE_TABLE, get_mode_config
from studyflow.services.learning.scheduler import (
    apply_mastery_status,
    apply_review,
    compute_next_review,
    is_mastery_eligible,
    maintenance_interval,
)


def make_item(**overrides) -> LearningItem:
    data = {"user_id": "user-1", "content": "mitochondria"}
    data.update(overrides)
    return LearningItem(**data)


class TestModeTable:
    """The fixed per-mode configuration."""

    def test_every_mode_has_five_intervals(self) -> None:
        for mode in LearningMode:
            assert len(MODE_TABLE[mode].intervals) == 5

    def test_steady_intervals(self) -> None:
        assert get_mode_config(LearningMode.STEADY).intervals == (24, 72, 168, 336, 720)

    def test_lookup_by_string(self) -> None:
        assert get_mode_config("cram").mode == LearningMode.CRAM

    def test_table_is_read_only(self) -> None:
        with pytest.raises(TypeError):
            MODE_TABLE[LearningMode.STEADY] = MODE_TABLE[LearningMode.CRAM]


class TestComputeNextReview:
    """Interval selection and the schedule it produces."""

    def test_first_review_steady(self, clock) -> None:
        """A never-reviewed steady item is next due one day later."""
        item = make_item()

        schedule = compute_next_review(item, now=clock.now)

        assert schedule.next_review_at == clock.now + timedelta(hours=24)
        assert schedule.interval_days == 1.0
        assert schedule.will_be_mastered is False
        assert schedule.mastery_progress == pytest.approx(0.2)

    @pytest.mark.parametrize(
        "review_count,hours",
        [(0, 24), (1, 72), (2, 168), (3, 336), (4, 720), (5, 720), (12, 720)],
    )
    def test_interval_index_clamps_to_last(self, clock, review_count, hours) -> None:
        item = make_item(review_count=review_count, next_review_at=clock.now)

        schedule = compute_next_review(item, now=clock.now)

        assert schedule.next_review_at == clock.now + timedelta(hours=hours)

    def test_sub_hour_intervals_are_not_rounded(self, clock) -> None:
        """Test mode schedules in minutes."""
        item = make_item(learning_mode=LearningMode.TEST)

        schedule = compute_next_review(item, now=clock.now)

        assert schedule.next_review_at == clock.now + timedelta(minutes=1)

    def test_ultracram_first_interval_is_half_an_hour(self, clock) -> None:
        item = make_item(learning_mode=LearningMode.ULTRACRAM)

        schedule = compute_next_review(item, now=clock.now)

        assert schedule.next_review_at == clock.now + timedelta(minutes=30)

    def test_mastery_flag_uses_pre_increment_count(self, clock) -> None:
        """The flag reads True only when an item with 5 reviews is reviewed again."""
        fourth = compute_next_review(make_item(review_count=4, next_review_at=clock.now), now=clock.now)
        fifth = compute_next_review(make_item(review_count=5, next_review_at=clock.now), now=clock.now)

        assert fourth.will_be_mastered is False
        assert fourth.mastery_progress == 1.0
        assert fifth.will_be_mastered is True

    def test_maintenance_uses_fixed_interval(self, clock) -> None:
        item = make_item(
            review_count=6,
            next_review_at=clock.now,
            mastery_status=MasteryStatus.MAINTENANCE,
            maintenance_interval_days=10,
        )

        schedule = compute_next_review(item, now=clock.now)

        assert schedule.next_review_at == clock.now + timedelta(days=10)
        assert schedule.interval_days == 10.0


class TestApplyReview:
    """Advancing an item by one review."""

    def test_apply_review_advances_item(self, clock) -> None:
        item = make_item(ease_factor=2.1)

        updated, schedule = apply_review(item, now=clock.now)

        assert updated.review_count == 1
        assert updated.last_reviewed_at == clock.now
        assert updated.next_review_at == schedule.next_review_at
        assert updated.interval_days == 1.0
        assert updated.ease_factor == 2.1

    def test_apply_review_does_not_mutate_input(self, clock) -> None:
        item = make_item()

        apply_review(item, now=clock.now)

        assert item.review_count == 0
        assert item.next_review_at is None

    def test_five_reviews_make_item_eligible(self, clock) -> None:
        item = make_item()
        for _ in range(5):
            item, _ = apply_review(item, now=clock.now)

        assert item.review_count == 5
        assert is_mastery_eligible(item)


class TestMasteryStatus:
    """Explicit lifecycle transitions."""

    def test_archive_stamps_date(self, clock) -> None:
        item = make_item(review_count=2, next_review_at=clock.now)

        archived = apply_mastery_status(item, MasteryStatus.ARCHIVED, now=clock.now)

        assert archived.mastery_status == MasteryStatus.ARCHIVED
        assert archived.archive_date == clock.now

    def test_master_stamps_date(self, clock) -> None:
        item = make_item(review_count=5, next_review_at=clock.now)

        mastered = apply_mastery_status(item, MasteryStatus.MASTERED, now=clock.now)

        assert mastered.mastery_status == MasteryStatus.MASTERED
        assert mastered.mastery_date == clock.now

    def test_maintenance_requires_a_review(self, clock) -> None:
        with pytest.raises(ValidationError):
            apply_mastery_status(make_item(), MasteryStatus.MAINTENANCE, now=clock.now)

    def test_maintenance_doubles_current_interval(self, clock) -> None:
        item = make_item(review_count=2, interval_days=3.0, next_review_at=clock.now)

        maintained = apply_mastery_status(item, MasteryStatus.MAINTENANCE, now=clock.now)

        assert maintained.maintenance_interval_days == 6
        assert maintained.next_review_at == clock.now + timedelta(days=6)

    def test_maintenance_override_is_rounded(self, clock) -> None:
        item = make_item(review_count=2, interval_days=3.0, next_review_at=clock.now)

        maintained = apply_mastery_status(
            item, MasteryStatus.MAINTENANCE, now=clock.now, maintenance_days=2.5
        )

        assert maintained.maintenance_interval_days == 3

    def test_maintenance_interval_is_capped_per_mode(self) -> None:
        extended = make_item(learning_mode=LearningMode.EXTENDED, interval_days=100.0)
        test_mode = make_item(learning_mode=LearningMode.TEST, interval_days=0.01)

        assert maintenance_interval(extended) == 180
        assert maintenance_interval(test_mode) == 1

    def test_repeat_resets_progress(self, clock) -> None:
        item = make_item(
            review_count=5,
            interval_days=30.0,
            next_review_at=clock.now,
            last_reviewed_at=clock.now,
            mastery_status=MasteryStatus.MASTERED,
            mastery_date=clock.now,
        )

        reset = apply_mastery_status(item, MasteryStatus.REPEAT, now=clock.now)

        assert reset.mastery_status == MasteryStatus.ACTIVE
        assert reset.review_count == 0
        assert reset.next_review_at is None
        assert reset.mastery_date is None
        assert reset.is_ready_to_learn
