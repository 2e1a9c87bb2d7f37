"""
Learning Mode Table

Static configuration mapping each LearningMode to its interval sequence,
review window and scoring multipliers. The table is fixed; callers cannot
register new modes.

Intervals are in hours, indexed by review count. The final entry is the
mastery interval and is reused for every review count past the end.

Usage:
    from studyflow.services.learning.modes import get_mode_config

    config = get_mode_config(LearningMode.STEADY)
    config.intervals  # (24, 72, 168, 336, 720)
"""

from types import MappingProxyType
from typing import Mapping, Union

from studyflow.enums.learning import LearningMode
from studyflow.models.learning import ModeConfig, PointsMultiplier


MODE_TABLE: Mapping[LearningMode, ModeConfig] = MappingProxyType(
    {
        LearningMode.ULTRACRAM: ModeConfig(
            mode=LearningMode.ULTRACRAM,
            intervals=(0.5, 1, 2, 4, 8),
            window_before=0.25,
            window_after=2,
            points_multiplier=PointsMultiplier(on_time=2.0, in_window=1.5, late=0.8),
            maintenance_cap_days=60,
        ),
        LearningMode.CRAM: ModeConfig(
            mode=LearningMode.CRAM,
            intervals=(4, 8, 16, 24, 48),
            window_before=1,
            window_after=6,
            points_multiplier=PointsMultiplier(on_time=2.0, in_window=1.5, late=0.8),
            maintenance_cap_days=90,
        ),
        LearningMode.STEADY: ModeConfig(
            mode=LearningMode.STEADY,
            intervals=(24, 72, 168, 336, 720),
            window_before=12,
            window_after=24,
            points_multiplier=PointsMultiplier(on_time=2.0, in_window=1.2, late=0.7),
            maintenance_cap_days=365,
        ),
        LearningMode.EXTENDED: ModeConfig(
            mode=LearningMode.EXTENDED,
            intervals=(72, 168, 336, 720, 1440),
            window_before=24,
            window_after=168,
            points_multiplier=PointsMultiplier(on_time=2.0, in_window=1.2, late=0.6),
            maintenance_cap_days=180,
        ),
        # Minute-scale cadence for exercising the scheduler by hand
        LearningMode.TEST: ModeConfig(
            mode=LearningMode.TEST,
            intervals=(1 / 60, 2 / 60, 5 / 60, 10 / 60, 15 / 60),
            window_before=0,
            window_after=0.25,
            points_multiplier=PointsMultiplier(on_time=2.0, in_window=1.5, late=1.0),
            maintenance_cap_days=1,
        ),
    }
)


def get_mode_config(mode: Union[LearningMode, str]) -> ModeConfig:
    """
    Look up the configuration for a mode.

    Args:
        mode: LearningMode or its string value

    Returns:
        The immutable ModeConfig

    Raises:
        ValueError: If the mode is unknown
    """
    return MODE_TABLE[LearningMode(mode)]
