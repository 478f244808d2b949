# compmem/engine/combinator.py

from dataclasses import dataclass, replace
from typing import Optional, Sequence

from ..config_models.comparison_models import GroupOperator


def combine(results: Sequence[bool], operator: GroupOperator) -> bool:
    """Merges group results. XOR is true for an odd number of true groups."""
    if not results:
        return False
    if operator == GroupOperator.AND:
        return all(results)
    if operator == GroupOperator.OR:
        return any(results)
    if operator == GroupOperator.XOR:
        return sum(1 for r in results if r) % 2 == 1
    raise ValueError(f"Unsupported group operator: {operator}")


def candidate_output(results: Sequence[bool], operator: GroupOperator, invert: bool) -> bool:
    combined = combine(results, operator)
    return not combined if invert else combined


@dataclass(frozen=True)
class DebounceState:
    """
    Duration debounce bookkeeping.

    `candidate` is the latest combined output and `since` the monotonic time it
    was first observed; `committed` is the last value successfully written
    (None until the first write).
    """
    candidate: Optional[bool] = None
    since: Optional[float] = None
    committed: Optional[bool] = None


def observe(state: DebounceState, candidate: bool, now: float) -> DebounceState:
    """Records this tick's candidate; a changed candidate restarts the timer."""
    if state.candidate is None or candidate != state.candidate:
        return replace(state, candidate=candidate, since=now)
    return state


def due_commit(state: DebounceState, now: float, duration: float) -> Optional[bool]:
    """Value to write now, or None if nothing new has held long enough."""
    if state.candidate is None or state.since is None:
        return None
    if state.candidate == state.committed:
        return None
    if now - state.since >= duration:
        return state.candidate
    return None


def mark_committed(state: DebounceState, value: bool) -> DebounceState:
    return replace(state, committed=value)
