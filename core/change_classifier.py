"""
Change Classifier Module
Maps a difference percentage to one of six ordered severity levels.
"""

from enum import Enum
from typing import List, Tuple


class ChangeLevel(str, Enum):
    NONE = 'none'
    MINIMAL = 'minimal'
    MINOR = 'minor'
    MODERATE = 'moderate'
    MAJOR = 'major'
    EXTREME = 'extreme'


# Upper bound (exclusive) of each level; EXTREME is open-ended.
LEVEL_BREAKPOINTS: List[Tuple[float, ChangeLevel]] = [
    (0.1, ChangeLevel.NONE),
    (1.0, ChangeLevel.MINIMAL),
    (5.0, ChangeLevel.MINOR),
    (15.0, ChangeLevel.MODERATE),
    (50.0, ChangeLevel.MAJOR),
]

# Levels that always justify writing a diff image
DIFF_WORTHY_LEVELS = frozenset({ChangeLevel.MODERATE, ChangeLevel.MAJOR, ChangeLevel.EXTREME})

# Floor applied to the classifier input when the two captures differ in size
DIMENSION_CHANGE_FLOOR = 15.0


def classify(diff_percentage: float) -> ChangeLevel:
    """Return the change level for a percentage of differing pixels."""
    if diff_percentage < 0:
        raise ValueError(f"diff_percentage must be non-negative, got {diff_percentage}")
    for upper, level in LEVEL_BREAKPOINTS:
        if diff_percentage < upper:
            return level
    return ChangeLevel.EXTREME


def round_percentage(value: float) -> float:
    return round(value, 2)
