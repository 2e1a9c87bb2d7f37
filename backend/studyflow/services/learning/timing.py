"""
Review Timing Classifier

Classifies a review relative to the item's due time and builds the due
queue.

    perfect    |now - due| <= PERFECT_WINDOW_HOURS (mode independent)
    in_window  due - window_before <= now <= due + window_after
    early      before the window
    late       after the window

An item is due when review_count > 0 and now >= next_review_at -
window_before. Never-reviewed items are "ready to learn", never due. Items
with review_count > 0 but no next_review_at are malformed: they are logged
and left out of every queue.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from studyflow.config import settings
from studyflow.enums.learning import MasteryStatus, TimingStatus
from studyflow.models.learning import (
    ItemStatusBuckets,
    LearningItem,
    TimingClassification,
)
from studyflow.services.learning.modes import get_mode_config
from studyflow.services.learning.scheduler import FROZEN_STATUSES
from studyflow.utils import hours_between, utc_now

logger = logging.getLogger(__name__)


def classify(
    item: LearningItem, now: Optional[datetime] = None
) -> Optional[TimingClassification]:
    """
    Classify a review of `item` happening at `now`.

    Returns:
        TimingClassification, or None when the item has no due time yet
    """
    if item.next_review_at is None:
        return None

    now = now or utc_now()
    due = item.next_review_at
    mode = get_mode_config(item.learning_mode)
    offset = hours_between(due, now)

    if abs(offset) <= settings.PERFECT_WINDOW_HOURS:
        status = TimingStatus.PERFECT
    elif due - timedelta(hours=mode.window_before) <= now <= due + timedelta(
        hours=mode.window_after
    ):
        status = TimingStatus.IN_WINDOW
    elif offset < 0:
        status = TimingStatus.EARLY
    else:
        status = TimingStatus.LATE

    return TimingClassification(status=status, hours_offset=offset, due_at=due)


def _is_malformed(item: LearningItem) -> bool:
    if item.review_count > 0 and item.next_review_at is None:
        logger.warning(
            f"Item {item.id} has {item.review_count} reviews but no next_review_at; "
            "excluding from review queues"
        )
        return True
    return False


def is_due(item: LearningItem, now: Optional[datetime] = None) -> bool:
    """Whether the item's review window has opened."""
    if item.review_count == 0 or _is_malformed(item):
        return False
    now = now or utc_now()
    mode = get_mode_config(item.learning_mode)
    return now >= item.next_review_at - timedelta(hours=mode.window_before)


def _queue_sort_key(item: LearningItem) -> tuple:
    # Missing due dates first; only reachable for malformed rows
    has_due = item.next_review_at is not None
    return (-item.priority, has_due, item.next_review_at if has_due else 0)


def sort_due_queue(items: Iterable[LearningItem]) -> list[LearningItem]:
    """Priority descending, then next_review_at ascending (missing first)."""
    return sorted(items, key=_queue_sort_key)


def get_due_items(
    items: Iterable[LearningItem], now: Optional[datetime] = None
) -> list[LearningItem]:
    """
    Items whose review window is open, in queue order.

    Mastered and archived items are frozen and never due.
    """
    now = now or utc_now()
    due = [
        item
        for item in items
        if item.mastery_status not in FROZEN_STATUSES and is_due(item, now)
    ]
    return sort_due_queue(due)


def get_ready_to_learn(items: Iterable[LearningItem]) -> list[LearningItem]:
    """Never-reviewed items, highest priority first."""
    ready = [
        item
        for item in items
        if item.review_count == 0 and item.mastery_status not in FROZEN_STATUSES
    ]
    return sorted(ready, key=lambda item: (-item.priority, item.created_at))


def get_upcoming_items(
    items: Iterable[LearningItem],
    days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> list[LearningItem]:
    """Items not yet due that come due within `days`, soonest first."""
    now = now or utc_now()
    horizon = now + timedelta(days=days if days is not None else settings.UPCOMING_DAYS_DEFAULT)
    upcoming = [
        item
        for item in items
        if item.mastery_status not in FROZEN_STATUSES
        and item.review_count > 0
        and not _is_malformed(item)
        and not is_due(item, now)
        and item.next_review_at <= horizon
    ]
    return sorted(upcoming, key=lambda item: item.next_review_at)


def get_items_by_status(
    items: Iterable[LearningItem], now: Optional[datetime] = None
) -> ItemStatusBuckets:
    """
    Group items for the dashboard.

    overdue: past the end of the review window
    due:     window open but not past it
    upcoming: scheduled, window not open yet
    mastered: mastered status
    """
    now = now or utc_now()
    buckets = ItemStatusBuckets()

    for item in items:
        if item.mastery_status == MasteryStatus.MASTERED:
            buckets.mastered.append(item)
            continue
        if item.mastery_status == MasteryStatus.ARCHIVED or item.review_count == 0:
            continue
        if _is_malformed(item):
            continue

        mode = get_mode_config(item.learning_mode)
        if now > item.next_review_at + timedelta(hours=mode.window_after):
            buckets.overdue.append(item)
        elif is_due(item, now):
            buckets.due.append(item)
        else:
            buckets.upcoming.append(item)

    buckets.overdue = sort_due_queue(buckets.overdue)
    buckets.due = sort_due_queue(buckets.due)
    buckets.upcoming.sort(key=lambda item: item.next_review_at)
    return buckets
