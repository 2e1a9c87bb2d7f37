"""
Review Scheduler

Computes when an item is next due and manages explicit mastery-status
transitions.

Scheduling is a pure function of (item, mode, now):

    index          = min(review_count, len(intervals) - 1)
    next_review_at = now + intervals[index] hours   (no day rounding)
    interval_days  = intervals[index] / 24
    will_be_mastered = review_count >= MASTERY_REVIEWS_REQUIRED
    mastery_progress = min((review_count + 1) / MASTERY_REVIEWS_REQUIRED, 1)

will_be_mastered is evaluated on the pre-increment count: with 5 required
reviews it first reads True when an item with review_count == 5 is reviewed.

Items in maintenance recur on their fixed maintenance_interval_days instead
of the mode table.

Usage:
    from studyflow.services.learning.scheduler import apply_review

    updated, schedule = apply_review(item, now=now)
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from studyflow.config import settings
from studyflow.enums.learning import MasteryStatus
from studyflow.middleware.error_handling import ValidationError
from studyflow.models.learning import LearningItem, ModeConfig, ReviewSchedule
from studyflow.services.learning.modes import get_mode_config
from studyflow.utils import round_half_up, utc_now

logger = logging.getLogger(__name__)

DEFAULT_EASE_FACTOR = 2.5

# Statuses that freeze the interval sequence
FROZEN_STATUSES = frozenset({MasteryStatus.MASTERED, MasteryStatus.ARCHIVED})


def compute_next_review(
    item: LearningItem,
    mode: Optional[ModeConfig] = None,
    now: Optional[datetime] = None,
) -> ReviewSchedule:
    """
    Compute the next review for an item being reviewed at `now`.

    Args:
        item: Item with its current (pre-increment) review_count
        mode: Mode configuration; defaults to the item's learning_mode
        now: Review time (defaults to current UTC time)

    Returns:
        ReviewSchedule with next_review_at, interval_days and mastery progress
    """
    mode = mode or get_mode_config(item.learning_mode)
    now = now or utc_now()
    required = settings.MASTERY_REVIEWS_REQUIRED

    if (
        item.mastery_status == MasteryStatus.MAINTENANCE
        and item.maintenance_interval_days
    ):
        hours_until_next = item.maintenance_interval_days * 24.0
    else:
        index = min(item.review_count, len(mode.intervals) - 1)
        hours_until_next = mode.intervals[index]

    return ReviewSchedule(
        next_review_at=now + timedelta(hours=hours_until_next),
        interval_days=hours_until_next / 24,
        mastery_progress=min((item.review_count + 1) / required, 1.0),
        will_be_mastered=item.review_count >= required,
    )


def apply_review(
    item: LearningItem,
    now: Optional[datetime] = None,
    mode: Optional[ModeConfig] = None,
) -> tuple[LearningItem, ReviewSchedule]:
    """
    Return a copy of the item advanced by one review, plus its schedule.

    ease_factor is carried through unchanged.
    """
    now = now or utc_now()
    schedule = compute_next_review(item, mode=mode, now=now)
    updated = item.model_copy(
        update={
            "review_count": item.review_count + 1,
            "last_reviewed_at": now,
            "next_review_at": schedule.next_review_at,
            "interval_days": schedule.interval_days,
        }
    )
    return updated, schedule


def is_mastery_eligible(item: LearningItem) -> bool:
    """Whether the item has enough reviews for a mastery decision."""
    return item.review_count >= settings.MASTERY_REVIEWS_REQUIRED


def maintenance_interval(item: LearningItem) -> float:
    """
    Suggested maintenance interval in days.

    Doubles the current interval (at least one day), capped per mode.
    """
    mode = get_mode_config(item.learning_mode)
    return min(max(item.interval_days, 1.0) * 2, mode.maintenance_cap_days)


def apply_mastery_status(
    item: LearningItem,
    status: MasteryStatus,
    now: Optional[datetime] = None,
    maintenance_days: Optional[float] = None,
) -> LearningItem:
    """
    Apply an explicit lifecycle decision.

    - archived:    stamp archive_date, progression frozen
    - mastered:    stamp mastery_date, progression frozen
    - maintenance: fixed recurring interval independent of the mode table
    - repeat:      reset progress; the item returns to active
    - active:      status only

    Args:
        item: Item to update
        status: Requested status
        now: Decision time
        maintenance_days: Interval override for maintenance

    Returns:
        Updated copy of the item

    Raises:
        ValidationError: Maintenance requested for a never-reviewed item
    """
    now = now or utc_now()

    if status == MasteryStatus.ARCHIVED:
        return item.model_copy(update={"mastery_status": status, "archive_date": now})

    if status == MasteryStatus.MASTERED:
        return item.model_copy(update={"mastery_status": status, "mastery_date": now})

    if status == MasteryStatus.MAINTENANCE:
        if item.review_count == 0:
            raise ValidationError(
                "Cannot put a never-reviewed item into maintenance",
                details={"item_id": item.id},
            )
        days = maintenance_days if maintenance_days is not None else maintenance_interval(item)
        days = max(1, int(round_half_up(days)))
        return item.model_copy(
            update={
                "mastery_status": status,
                "maintenance_interval_days": days,
                "next_review_at": now + timedelta(days=days),
                "interval_days": float(days),
            }
        )

    if status == MasteryStatus.REPEAT:
        logger.info(f"Resetting progress for item {item.id}")
        return item.model_copy(
            update={
                "mastery_status": MasteryStatus.ACTIVE,
                "review_count": 0,
                "interval_days": 0.0,
                "ease_factor": DEFAULT_EASE_FACTOR,
                "last_reviewed_at": None,
                "next_review_at": None,
                "maintenance_interval_days": None,
                "mastery_date": None,
                "archive_date": None,
            }
        )

    return item.model_copy(update={"mastery_status": status})
