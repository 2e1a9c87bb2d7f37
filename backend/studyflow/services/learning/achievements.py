"""
Achievement Evaluator

Threshold scan over a user's aggregate stats. Each achievement names a
StatsSnapshot metric and the value that unlocks it. Unlocks award a fixed
bonus that counts toward total points, and therefore toward the level, which
can unlock further points/level achievements; evaluate_with_bonuses follows
that chain to a fixpoint.

Evaluation is idempotent: ids already in `unlocked` are never returned again.

Usage:
    from studyflow.services.learning.achievements import evaluate_with_bonuses

    new, bonus = evaluate_with_bonuses(snapshot, unlocked={"first_review"})
"""

from types import MappingProxyType
from typing import Iterable, Mapping

from studyflow.models.learning import AchievementDefinition, StatsSnapshot
from studyflow.services.learning.points import calculate_level


def _achievement(
    id: str, name: str, description: str, points: int, metric: str, threshold: float
) -> AchievementDefinition:
    return AchievementDefinition(
        id=id,
        name=name,
        description=description,
        points=points,
        metric=metric,
        threshold=threshold,
    )


ACHIEVEMENTS: Mapping[str, AchievementDefinition] = MappingProxyType(
    {
        a.id: a
        for a in (
            _achievement("first_review", "First Steps", "Complete your first review", 50, "total_reviews", 1),
            _achievement("first_mastery", "Master Learner", "Master your first item", 100, "mastered_items", 1),
            _achievement("streak_7", "Week Warrior", "Maintain a 7-day streak", 200, "current_streak", 7),
            _achievement("streak_30", "Monthly Master", "Maintain a 30-day streak", 500, "current_streak", 30),
            _achievement("perfect_10", "Perfect Timing", "Complete 10 reviews at the perfect time", 300, "perfect_reviews", 10),
            _achievement("speed_demon", "Speed Demon", "Complete 50 reviews in one session", 400, "session_reviews", 50),
            _achievement("points_100", "Century", "Earn 100 total points", 50, "total_points", 100),
            _achievement("points_1000", "Millennium", "Earn 1000 total points", 200, "total_points", 1000),
            _achievement("level_5", "Rising Star", "Reach level 5", 100, "level", 5),
            _achievement("level_10", "Expert Learner", "Reach level 10", 1000, "level", 10),
            _achievement("first_focus", "Focused", "Finish your first focus session", 50, "focus_sessions", 1),
            _achievement("focus_10_sessions", "In the Zone", "Finish 10 focus sessions", 150, "focus_sessions", 10),
            _achievement("focus_10_hours", "Deep Worker", "Log 10 hours of focused work", 500, "focus_work_minutes", 600),
        )
    }
)


def evaluate(
    snapshot: StatsSnapshot, unlocked: Iterable[str]
) -> list[AchievementDefinition]:
    """Achievements whose threshold is met and that are not yet unlocked."""
    already = set(unlocked)
    return [
        achievement
        for achievement in ACHIEVEMENTS.values()
        if achievement.id not in already
        and getattr(snapshot, achievement.metric) >= achievement.threshold
    ]


def evaluate_with_bonuses(
    snapshot: StatsSnapshot, unlocked: Iterable[str]
) -> tuple[list[AchievementDefinition], int]:
    """
    Evaluate repeatedly, feeding unlock bonuses back into points and level.

    Returns:
        (newly unlocked achievements in unlock order, total bonus points)
    """
    seen = set(unlocked)
    found: list[AchievementDefinition] = []
    bonus = 0

    while True:
        new = evaluate(snapshot, seen)
        if not new:
            break
        for achievement in new:
            seen.add(achievement.id)
            found.append(achievement)
            bonus += achievement.points
        total = snapshot.total_points + sum(a.points for a in new)
        snapshot = snapshot.model_copy(
            update={"total_points": total, "level": calculate_level(total)}
        )

    return found, bonus
