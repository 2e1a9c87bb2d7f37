"""
Unit Tests for the Adherence & Penalty Model.

Tests for:
- Adherence percentage and its edge cases
- Penalty tiers and the incomplete flag
- Focus session scoring end to end
- Break recommendations and adherence ratings
"""

import pytest

from studyflow.services.learning.adherence import (
    PENALTY_TIERS,
    adherence_rating,
    calculate_adherence,
    calculate_penalty,
    recommended_break_minutes,
    score_focus_session,
)


class TestAdherence:
    """work / (work + break) × 100."""

    def test_fifty_ten_session(self) -> None:
        assert calculate_adherence(50, 10) == 83.33

    def test_no_time_counts_as_full_adherence(self) -> None:
        assert calculate_adherence(0, 0) == 100.0

    def test_break_only_session(self) -> None:
        assert calculate_adherence(0, 15) == 0.0

    def test_adherence_never_increases_with_more_break(self) -> None:
        values = [calculate_adherence(40, rest) for rest in range(0, 120, 5)]

        assert values == sorted(values, reverse=True)


class TestPenalty:
    """Tiered penalty on the base points."""

    @pytest.mark.parametrize(
        "adherence,rate,incomplete",
        [
            (100.0, 0.0, False),
            (80.0, 0.0, False),
            (79.99, 0.25, False),
            (60.0, 0.25, False),
            (59.99, 0.5, True),
            (40.0, 0.5, True),
            (39.99, 0.75, True),
            (0.0, 0.75, True),
        ],
    )
    def test_tier_boundaries(self, adherence, rate, incomplete) -> None:
        result = calculate_penalty(adherence, 100)

        assert result.rate == rate
        assert result.is_incomplete is incomplete
        assert result.net_points == 100 - result.penalty

    def test_tiers_are_ordered_high_to_low(self) -> None:
        thresholds = [tier.min_adherence for tier in PENALTY_TIERS]

        assert thresholds == sorted(thresholds, reverse=True)

    def test_net_points_never_negative(self) -> None:
        assert calculate_penalty(0.0, 0).net_points == 0

    def test_penalty_is_monotonic(self) -> None:
        """Lower adherence never yields a smaller penalty."""
        penalties = [calculate_penalty(a / 2, 200).penalty for a in range(200, -1, -1)]

        assert penalties == sorted(penalties)


class TestScoreFocusSession:
    """Two points per work minute, then the adherence penalty."""

    def test_good_session_keeps_all_points(self) -> None:
        result = score_focus_session(50, 10)

        assert result.adherence == 83.33
        assert result.base_points == 100
        assert result.penalty == 0
        assert result.net_points == 100
        assert not result.is_incomplete

    def test_break_heavy_session_is_incomplete(self) -> None:
        result = score_focus_session(20, 30)

        assert result.adherence == 40.0
        assert result.base_points == 40
        assert result.penalty == 20
        assert result.net_points == 20
        assert result.is_incomplete

    def test_moderate_session_loses_a_quarter(self) -> None:
        result = score_focus_session(30, 15)

        assert result.adherence == 66.67
        assert result.penalty == 15
        assert result.net_points == 45


class TestRecommendations:
    """Break suggestions and rating labels."""

    @pytest.mark.parametrize("work,expected", [(0, 5), (25, 5), (50, 10), (75, 15), (200, 20)])
    def test_recommended_break(self, work, expected) -> None:
        assert recommended_break_minutes(work) == expected

    @pytest.mark.parametrize(
        "adherence,label",
        [(100.0, "Excellent"), (95.0, "Excellent"), (85.0, "Good"), (72.0, "Moderate"), (61.0, "Low"), (10.0, "Very Low")],
    )
    def test_adherence_rating(self, adherence, label) -> None:
        assert adherence_rating(adherence) == label
