# compmem/validation/comparison.py

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List

from ..config_models.comparison_models import (
    CompareType,
    ComparisonGroup,
    ComparisonMemory,
    ComparisonMode,
)
from ..errors import ConfigurationError


@dataclass(frozen=True)
class FieldError:
    """
    One validation failure, scoped to a field.

    `field` is a path such as 'interval' or 'comparison_groups[1].voting_hysteresis';
    `code` is a stable identifier an editor can translate; `params` carries the
    numbers needed to render the message (e.g. required/available votes).
    """
    field: str
    code: str
    message: str
    params: Dict[str, Any] = field(default_factory=dict)


def _group_field(index: int, name: str) -> str:
    return f"comparison_groups[{index}].{name}"


def validate_group(group: ComparisonGroup, index: int) -> List[FieldError]:
    """Checks a single group. At most one error is reported per field."""
    errors: Dict[str, FieldError] = {}
    label = group.label(index)
    available = len(group.input_item_ids)

    def add(name: str, code: str, message: str, **params: Any) -> None:
        # Later checks on the same field win, as in the editor
        errors[name] = FieldError(_group_field(index, name), code, f"{label}: {message}", params)

    if available == 0:
        add("input_item_ids", "inputItemsRequired", "Must have at least one input item")
    elif len(set(group.input_item_ids)) != available:
        duplicates = sorted({i for i in group.input_item_ids if group.input_item_ids.count(i) > 1})
        add("input_item_ids", "duplicateInputItem",
            f"Input items must be unique within a group (duplicated: {', '.join(duplicates)})",
            duplicates=duplicates)

    if group.required_votes < 1:
        add("required_votes", "requiredVotesMinimum", "RequiredVotes must be at least 1")
    if available > 0 and group.required_votes > available:
        add("required_votes", "requiredVotesExceedsInputs",
            f"RequiredVotes ({group.required_votes}) cannot exceed number of inputs ({available})",
            required=group.required_votes, available=available)

    if group.comparison_mode == ComparisonMode.ANALOG:
        if group.threshold1 is None:
            add("threshold1", "threshold1Required", "Threshold1 is required for Analog mode")
        if group.compare_type == CompareType.BETWEEN:
            if group.threshold2 is None:
                add("threshold2", "threshold2Required", "Threshold2 is required for Between comparison")
            elif group.threshold1 is not None and group.threshold2 <= group.threshold1:
                add("threshold2", "threshold2NotAboveThreshold1",
                    f"Threshold2 ({group.threshold2}) must be greater than Threshold1 ({group.threshold1})",
                    threshold1=group.threshold1, threshold2=group.threshold2)
        if group.threshold_hysteresis < 0:
            add("threshold_hysteresis", "hysteresisNonNegative", "ThresholdHysteresis must be non-negative")
        elif (group.compare_type == CompareType.BETWEEN and group.threshold_hysteresis > 0
              and group.threshold1 is not None and group.threshold2 is not None
              and group.threshold2 > group.threshold1
              and 2 * group.threshold_hysteresis >= group.threshold2 - group.threshold1):
            add("threshold_hysteresis", "thresholdHysteresisTooHigh",
                f"ThresholdHysteresis ({group.threshold_hysteresis}) leaves no room to turn on "
                f"between {group.threshold1} and {group.threshold2}",
                hysteresis=group.threshold_hysteresis)
        finite_fields = [("threshold1", "Threshold1"), ("threshold_hysteresis", "ThresholdHysteresis")]
        if group.compare_type == CompareType.BETWEEN:
            finite_fields.append(("threshold2", "Threshold2"))
        for name, display in finite_fields:
            number = getattr(group, name)
            if number is not None and not math.isfinite(number):
                add(name, "thresholdNotFinite", f"{display} must be a finite number", value=str(number))

    if group.comparison_mode == ComparisonMode.DIGITAL:
        if group.digital_value not in ("0", "1"):
            add("digital_value", "digitalValueInvalid", "DigitalValue must be '0' or '1' for Digital mode")

    if group.voting_hysteresis < 0:
        add("voting_hysteresis", "hysteresisNonNegative", "VotingHysteresis must be non-negative")
    if available > 0:
        min_votes_to_turn_on = group.required_votes + group.voting_hysteresis
        if min_votes_to_turn_on > available:
            add("voting_hysteresis", "votingHysteresisTooHigh",
                f"VotingHysteresis too high - would require {min_votes_to_turn_on} votes "
                f"but only {available} inputs available",
                required=min_votes_to_turn_on, available=available)

    return list(errors.values())


def validate(memory: ComparisonMemory) -> List[FieldError]:
    """
    Returns every field-scoped problem with a comparison memory definition.

    An empty list means the definition can be handed to the engine. The model
    is never modified.
    """
    errors: List[FieldError] = []

    if not memory.output_item_id or not memory.output_item_id.strip():
        errors.append(FieldError("output_item_id", "outputItemRequired", "Output item is required"))
    if memory.interval < 1:
        errors.append(FieldError("interval", "intervalPositive", "Interval must be at least 1 second"))
    if not math.isfinite(memory.duration) or memory.duration < 0:
        errors.append(FieldError("duration", "durationInvalid", "Duration must be a finite number greater than or equal to 0"))
    if not memory.comparison_groups:
        errors.append(FieldError("comparison_groups", "atLeastOneGroup", "ComparisonGroups must contain at least one group"))

    seen_group_ids: Dict[str, int] = {}
    for index, group in enumerate(memory.comparison_groups):
        if group.id in seen_group_ids:
            errors.append(FieldError(
                _group_field(index, "id"), "duplicateGroupId",
                f"{group.label(index)}: Group id '{group.id}' is already used by group {seen_group_ids[group.id] + 1}",
                {"group_id": group.id}))
        else:
            seen_group_ids[group.id] = index
        errors.extend(validate_group(group, index))

    if memory.output_item_id and memory.output_item_id in memory.all_input_ids():
        errors.append(FieldError("output_item_id", "outputInInputs", "Output cannot be in any group's input list"))

    return errors


def ensure_valid(memory: ComparisonMemory) -> ComparisonMemory:
    """Returns the memory unchanged, or raises ConfigurationError listing every problem."""
    errors = validate(memory)
    if errors:
        raise ConfigurationError(errors, memory_id=memory.id)
    return memory
