# compmem/config_models/comparison_models.py

import enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator
from uuid6 import uuid7


def _new_id() -> str:
    return str(uuid7())


# --- Enums for controlled vocabulary ---
class GroupOperator(str, enum.Enum):
    AND = "and"
    OR = "or"
    XOR = "xor"


class ComparisonMode(str, enum.Enum):
    ANALOG = "analog"
    DIGITAL = "digital"


class CompareType(str, enum.Enum):
    EQUAL = "equal"
    NOT_EQUAL = "not_equal"
    HIGHER = "higher"
    LOWER = "lower"
    BETWEEN = "between"


# Numeric codes used by older exports of the editor
LEGACY_GROUP_OPERATOR_CODES: Dict[int, GroupOperator] = {
    1: GroupOperator.AND,
    2: GroupOperator.OR,
    3: GroupOperator.XOR,
}
LEGACY_COMPARISON_MODE_CODES: Dict[int, ComparisonMode] = {
    1: ComparisonMode.ANALOG,
    2: ComparisonMode.DIGITAL,
}
LEGACY_COMPARE_TYPE_CODES: Dict[int, CompareType] = {
    1: CompareType.EQUAL,
    2: CompareType.NOT_EQUAL,
    3: CompareType.HIGHER,
    4: CompareType.LOWER,
    5: CompareType.BETWEEN,
}


# Names as exported by the editor (PascalCase)
LEGACY_GROUP_OPERATOR_NAMES: Dict[str, GroupOperator] = {
    "And": GroupOperator.AND,
    "Or": GroupOperator.OR,
    "Xor": GroupOperator.XOR,
}
LEGACY_COMPARISON_MODE_NAMES: Dict[str, ComparisonMode] = {
    "Analog": ComparisonMode.ANALOG,
    "Digital": ComparisonMode.DIGITAL,
}
LEGACY_COMPARE_TYPE_NAMES: Dict[str, CompareType] = {
    "Equal": CompareType.EQUAL,
    "NotEqual": CompareType.NOT_EQUAL,
    "Higher": CompareType.HIGHER,
    "Lower": CompareType.LOWER,
    "Between": CompareType.BETWEEN,
}


def _from_legacy_code(value: Any, codes: Dict[int, enum.Enum], names: Dict[str, enum.Enum]) -> Any:
    """Maps a legacy integer code or PascalCase name onto its enum member; other values pass through."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in codes:
        return codes[value]
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.isdigit() and int(stripped) in codes:
            return codes[int(stripped)]
        if stripped in names:
            return names[stripped]
        return stripped.lower()
    return value


class ComparisonGroup(BaseModel):
    """
    One N-out-of-M voting group. Field values are kept as entered so the
    validator can report every problem against the field it belongs to;
    nothing here guarantees the group is usable at runtime.
    """
    id: str = Field(default_factory=_new_id, description="Identifier of the group, stable across edits.")
    name: Optional[str] = Field(None, description="Optional display name of the group.")
    input_item_ids: List[str] = Field(default_factory=list, description="Monitored points voting in this group.")
    required_votes: int = Field(1, description="N in N-out-of-M: true votes needed for the group to be on.")
    comparison_mode: ComparisonMode = Field(ComparisonMode.DIGITAL, description="Whether inputs are compared as digital or analog values.")
    compare_type: CompareType = Field(CompareType.EQUAL, description="Analog comparison operator. Ignored in digital mode.")
    threshold1: Optional[float] = Field(None, description="Primary analog threshold (lower bound for 'between').")
    threshold2: Optional[float] = Field(None, description="Upper bound for 'between'.")
    threshold_hysteresis: float = Field(0.0, description="Deadband around the analog threshold(s).")
    voting_hysteresis: int = Field(0, description="Extra true votes needed to turn the group on from off.")
    digital_value: Optional[str] = Field("1", description="Digital mode: the value ('0' or '1') each input must equal.")
    model_config = {"extra": "forbid"}

    @field_validator("comparison_mode", mode="before")
    @classmethod
    def _legacy_comparison_mode(cls, value: Any) -> Any:
        return _from_legacy_code(value, LEGACY_COMPARISON_MODE_CODES, LEGACY_COMPARISON_MODE_NAMES)

    @field_validator("compare_type", mode="before")
    @classmethod
    def _legacy_compare_type(cls, value: Any) -> Any:
        return _from_legacy_code(value, LEGACY_COMPARE_TYPE_CODES, LEGACY_COMPARE_TYPE_NAMES)

    @field_validator("digital_value", mode="before")
    @classmethod
    def _digital_value_as_text(cls, value: Any) -> Any:
        # YAML happily turns 1 into an int and true into a bool
        if isinstance(value, bool):
            return "1" if value else "0"
        if isinstance(value, int):
            return str(value)
        return value

    def label(self, index: int) -> str:
        """Human label used in messages: the name, or 'Group N' (1-based)."""
        return self.name if self.name else f"Group {index + 1}"

    def structure_key(self) -> Tuple[Tuple[str, ...], int, int]:
        """Fields whose edit invalidates the group's runtime latch."""
        return tuple(self.input_item_ids), self.required_votes, self.voting_hysteresis


class ComparisonMemory(BaseModel):
    """Definition of a comparison memory: groups of voting inputs driving one digital output."""
    id: str = Field(default_factory=_new_id, description="Identifier of the comparison memory.")
    name: Optional[str] = Field(None, description="Optional display name.")
    comparison_groups: List[ComparisonGroup] = Field(default_factory=list, description="Ordered voting groups.")
    group_operator: GroupOperator = Field(GroupOperator.AND, description="Operator combining the group results.")
    output_item_id: Optional[str] = Field(None, description="Digital output point receiving the result.")
    interval: int = Field(1, description="Evaluation period in seconds.")
    duration: float = Field(10, description="Seconds the combined result must hold before it is written.")
    is_disabled: bool = Field(False, description="Disabled memories are neither evaluated nor written.")
    invert_output: bool = Field(False, description="Write the logical NOT of the combined result.")
    model_config = {"extra": "forbid"}

    @field_validator("group_operator", mode="before")
    @classmethod
    def _legacy_group_operator(cls, value: Any) -> Any:
        return _from_legacy_code(value, LEGACY_GROUP_OPERATOR_CODES, LEGACY_GROUP_OPERATOR_NAMES)

    def all_input_ids(self) -> List[str]:
        """Distinct input point ids across all groups, in first-seen order."""
        seen: Dict[str, None] = {}
        for group in self.comparison_groups:
            for input_id in group.input_item_ids:
                seen.setdefault(input_id, None)
        return list(seen)

    def display_name(self) -> str:
        return self.name if self.name else self.id
