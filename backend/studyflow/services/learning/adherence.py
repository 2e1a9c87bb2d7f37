"""
Adherence & Penalty Model

Scores focus sessions by how much of the session was spent working.

    adherence = work / (work + break) × 100     (100 when both are 0)

Penalty tiers, evaluated high to low:

    >= 80%   no penalty
    >= 60%   25% penalty
    >= 40%   50% penalty, session marked incomplete
    <  40%   75% penalty, session marked incomplete

Focus sessions earn FOCUS_POINTS_PER_WORK_MINUTE (2) points per work minute
before the penalty; this is separate from review base points.
"""

from dataclasses import dataclass

from studyflow.config import settings
from studyflow.models.learning import PenaltyResult
from studyflow.utils import round_half_up


@dataclass(frozen=True)
class PenaltyTier:
    min_adherence: float
    rate: float
    is_incomplete: bool


PENALTY_TIERS: tuple[PenaltyTier, ...] = (
    PenaltyTier(80.0, 0.0, False),
    PenaltyTier(60.0, 0.25, False),
    PenaltyTier(40.0, 0.5, True),
    PenaltyTier(0.0, 0.75, True),
)

ADHERENCE_RATINGS: tuple[tuple[float, str], ...] = (
    (95.0, "Excellent"),
    (80.0, "Good"),
    (70.0, "Moderate"),
    (60.0, "Low"),
)

MIN_RECOMMENDED_BREAK = 5
MAX_RECOMMENDED_BREAK = 20


def calculate_adherence(work_minutes: float, break_minutes: float) -> float:
    """Share of session time spent working, as a percentage (2 decimals)."""
    total = work_minutes + break_minutes
    if total <= 0:
        return 100.0
    return round_half_up(work_minutes / total * 100, 2)


def penalty_tier(adherence: float) -> PenaltyTier:
    for tier in PENALTY_TIERS:
        if adherence >= tier.min_adherence:
            return tier
    return PENALTY_TIERS[-1]


def calculate_penalty(adherence: float, base_points: int) -> PenaltyResult:
    """
    Apply the adherence penalty to `base_points`.

    Args:
        adherence: Percentage from calculate_adherence
        base_points: Points before the penalty

    Returns:
        PenaltyResult with the rate, penalty and net points (never negative)
    """
    tier = penalty_tier(adherence)
    penalty = int(round_half_up(base_points * tier.rate))
    return PenaltyResult(
        adherence=adherence,
        rate=tier.rate,
        penalty=penalty,
        is_incomplete=tier.is_incomplete,
        base_points=base_points,
        net_points=max(0, base_points - penalty),
    )


def focus_base_points(work_minutes: float) -> int:
    return int(round_half_up(work_minutes * settings.FOCUS_POINTS_PER_WORK_MINUTE))


def score_focus_session(work_minutes: float, break_minutes: float) -> PenaltyResult:
    """Adherence, penalty and net points for a finished session."""
    adherence = calculate_adherence(work_minutes, break_minutes)
    return calculate_penalty(adherence, focus_base_points(work_minutes))


def recommended_break_minutes(work_minutes: float) -> int:
    """Five minutes of break per 25 worked, between 5 and 20 minutes."""
    suggested = int(round_half_up(work_minutes / 25 * 5))
    return max(MIN_RECOMMENDED_BREAK, min(MAX_RECOMMENDED_BREAK, suggested))


def adherence_rating(adherence: float) -> str:
    """Human label for an adherence percentage."""
    for threshold, label in ADHERENCE_RATINGS:
        if adherence >= threshold:
            return label
    return "Very Low"
