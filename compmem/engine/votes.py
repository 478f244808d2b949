# compmem/engine/votes.py
"""
Input vote evaluation: one point value -> one boolean vote.

Threshold hysteresis lives entirely in `analog_vote`. With a hysteresis h > 0,
an input that currently votes false only starts voting true once the
condition is met by more than h, and an input voting true only drops to
false once the condition fails by more than h. Equal / NotEqual use h as a
symmetric tolerance band and carry no history.
"""

import enum
import math
from dataclasses import dataclass
from typing import Any, Optional

from ..config_models.comparison_models import CompareType
from .snapshot import AnalogCondition, Condition, DigitalCondition


class InputVote(enum.Enum):
    VOTED_FALSE = "voted_false"
    VOTED_TRUE = "voted_true"

    @classmethod
    def of(cls, value: bool) -> 'InputVote':
        return cls.VOTED_TRUE if value else cls.VOTED_FALSE

    def __bool__(self) -> bool:
        return self is InputVote.VOTED_TRUE


@dataclass(frozen=True)
class VoteResult:
    vote: InputVote
    available: bool


_TRUE_TEXT = {"1", "true", "on"}
_FALSE_TEXT = {"0", "false", "off"}


def parse_digital(value: Any) -> Optional[bool]:
    """Reads a digital point value. Returns None for anything that is not a recognisable 0/1."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if value == 1:
            return True
        if value == 0:
            return False
        return None
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_TEXT:
            return True
        if text in _FALSE_TEXT:
            return False
    return None


def parse_analog(value: Any) -> Optional[float]:
    """Reads an analog point value. Returns None for non-numeric, NaN or infinite values."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value.strip() if isinstance(value, str) else value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _raw_analog(condition: AnalogCondition, value: float) -> bool:
    t1 = condition.threshold1
    if condition.compare_type == CompareType.HIGHER:
        return value > t1
    if condition.compare_type == CompareType.LOWER:
        return value < t1
    if condition.compare_type == CompareType.BETWEEN:
        assert condition.threshold2 is not None, "Between condition without threshold2."
        return t1 <= value <= condition.threshold2
    raise ValueError(f"Unsupported compare type: {condition.compare_type}")


def analog_vote(condition: AnalogCondition, value: float, previous: InputVote) -> bool:
    """Applies the compare type and threshold hysteresis to one analog reading."""
    t1 = condition.threshold1
    h = condition.hysteresis

    # Tolerance band, stateless
    if condition.compare_type == CompareType.EQUAL:
        return t1 - h <= value <= t1 + h
    if condition.compare_type == CompareType.NOT_EQUAL:
        return value < t1 - h or value > t1 + h

    if h <= 0:
        return _raw_analog(condition, value)

    holding = previous is InputVote.VOTED_TRUE
    if condition.compare_type == CompareType.HIGHER:
        return value >= t1 - h if holding else value > t1 + h
    if condition.compare_type == CompareType.LOWER:
        return value <= t1 + h if holding else value < t1 - h
    if condition.compare_type == CompareType.BETWEEN:
        t2 = condition.threshold2
        assert t2 is not None, "Between condition without threshold2."
        if holding:
            return t1 - h <= value <= t2 + h
        return t1 + h < value < t2 - h
    raise ValueError(f"Unsupported compare type: {condition.compare_type}")


def evaluate_input(condition: Condition, value: Any, ok: bool, previous: InputVote) -> VoteResult:
    """
    Votes for one input.

    A failed read (`ok` False) or an unparseable value yields a false vote
    with `available` False; the false vote is also what is remembered.
    """
    if not ok:
        return VoteResult(InputVote.VOTED_FALSE, available=False)

    if isinstance(condition, DigitalCondition):
        reading = parse_digital(value)
        if reading is None:
            return VoteResult(InputVote.VOTED_FALSE, available=False)
        return VoteResult(InputVote.of(reading == condition.expected), available=True)

    number = parse_analog(value)
    if number is None:
        return VoteResult(InputVote.VOTED_FALSE, available=False)
    return VoteResult(InputVote.of(analog_vote(condition, number, previous)), available=True)
