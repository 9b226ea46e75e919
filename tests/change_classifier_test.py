import sys
import os
import pytest
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from core.change_classifier import ChangeLevel, classify, round_percentage

ORDER = list(ChangeLevel)


@pytest.mark.parametrize('percentage, expected', [
    (0.0, ChangeLevel.NONE),
    (0.09, ChangeLevel.NONE),
    (0.1, ChangeLevel.MINIMAL),
    (0.99, ChangeLevel.MINIMAL),
    (1.0, ChangeLevel.MINOR),
    (4.99, ChangeLevel.MINOR),
    (5.0, ChangeLevel.MODERATE),
    (14.99, ChangeLevel.MODERATE),
    (15.0, ChangeLevel.MAJOR),
    (49.99, ChangeLevel.MAJOR),
    (50.0, ChangeLevel.EXTREME),
    (100.0, ChangeLevel.EXTREME),
    (250.0, ChangeLevel.EXTREME),
])
def test_breakpoints_are_half_open(percentage, expected):
    assert classify(percentage) == expected


def test_classify_is_monotonic():
    samples = [i / 100 for i in range(0, 12000)]
    levels = [ORDER.index(classify(p)) for p in samples]
    assert levels == sorted(levels)


def test_every_level_is_reachable():
    samples = [i / 100 for i in range(0, 12000)]
    assert {classify(p) for p in samples} == set(ChangeLevel)


def test_negative_percentage_rejected():
    with pytest.raises(ValueError):
        classify(-0.01)


def test_levels_serialize_as_lowercase_strings():
    assert ChangeLevel.MODERATE.value == 'moderate'
    assert ChangeLevel('extreme') is ChangeLevel.EXTREME


def test_round_percentage():
    assert round_percentage(10.0) == 10.0
    assert round_percentage(33.33333) == 33.33
    assert round_percentage(0.004) == 0.0
