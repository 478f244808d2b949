# compmem/engine/snapshot.py

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from ..config_models.comparison_models import (
    CompareType,
    ComparisonGroup,
    ComparisonMemory,
    ComparisonMode,
    GroupOperator,
)
from ..validation.comparison import ensure_valid


@dataclass(frozen=True)
class DigitalCondition:
    """Input votes true when its digital value equals `expected`."""
    expected: bool


@dataclass(frozen=True)
class AnalogCondition:
    """Input votes true when its numeric value satisfies `compare_type` against the thresholds."""
    compare_type: CompareType
    threshold1: float
    threshold2: Optional[float] = None
    hysteresis: float = 0.0


Condition = Union[DigitalCondition, AnalogCondition]


@dataclass(frozen=True)
class GroupSnapshot:
    id: str
    label: str
    input_ids: Tuple[str, ...]
    required_votes: int
    voting_hysteresis: int
    condition: Condition

    def structure_key(self) -> Tuple[Tuple[str, ...], int, int]:
        return self.input_ids, self.required_votes, self.voting_hysteresis


@dataclass(frozen=True)
class RuleSnapshot:
    """Immutable, validated view of a comparison memory used for one or more ticks."""
    id: str
    name: str
    groups: Tuple[GroupSnapshot, ...]
    operator: GroupOperator
    output_id: str
    interval: int
    duration: float
    is_disabled: bool
    invert_output: bool

    def input_ids(self) -> Tuple[str, ...]:
        seen = {}
        for group in self.groups:
            for input_id in group.input_ids:
                seen.setdefault(input_id, None)
        return tuple(seen)


def _condition_for(group: ComparisonGroup) -> Condition:
    if group.comparison_mode == ComparisonMode.DIGITAL:
        return DigitalCondition(expected=(group.digital_value == "1"))
    # ensure_valid has already guaranteed threshold1 (and threshold2 for between)
    assert group.threshold1 is not None, "Analog group compiled without threshold1."
    return AnalogCondition(
        compare_type=group.compare_type,
        threshold1=float(group.threshold1),
        threshold2=float(group.threshold2) if group.compare_type == CompareType.BETWEEN else None,
        hysteresis=float(group.threshold_hysteresis),
    )


def compile_rule(memory: ComparisonMemory) -> RuleSnapshot:
    """
    Validates a definition and freezes it into a RuleSnapshot.

    Raises:
        ConfigurationError: if the definition does not validate. Invalid
            definitions never reach the evaluator.
    """
    ensure_valid(memory)
    groups = tuple(
        GroupSnapshot(
            id=group.id,
            label=group.label(index),
            input_ids=tuple(group.input_item_ids),
            required_votes=group.required_votes,
            voting_hysteresis=group.voting_hysteresis,
            condition=_condition_for(group),
        )
        for index, group in enumerate(memory.comparison_groups)
    )
    assert memory.output_item_id is not None
    return RuleSnapshot(
        id=memory.id,
        name=memory.display_name(),
        groups=groups,
        operator=memory.group_operator,
        output_id=memory.output_item_id,
        interval=memory.interval,
        duration=float(memory.duration),
        is_disabled=memory.is_disabled,
        invert_output=memory.invert_output,
    )
