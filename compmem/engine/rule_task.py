# compmem/engine/rule_task.py

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from ..errors import EngineFault, InputUnavailable, OutputWriteFailure
from ..points.point_store import PointStore
from .aggregator import GroupLatch, aggregate, count_true
from .combinator import DebounceState, candidate_output, due_commit, mark_committed, observe
from .snapshot import GroupSnapshot, RuleSnapshot
from .votes import InputVote, evaluate_input, parse_digital

logger = logging.getLogger(__name__)


@dataclass
class GroupState:
    """Latch and per-input vote history of one group."""
    structure_key: Tuple[Tuple[str, ...], int, int]
    latch: GroupLatch = GroupLatch.OFF
    votes: Dict[str, InputVote] = field(default_factory=dict)


@dataclass
class RuleState:
    groups: Dict[str, GroupState] = field(default_factory=dict)
    debounce: DebounceState = field(default_factory=DebounceState)


@dataclass(frozen=True)
class TickResult:
    """What one evaluation of a rule saw and did."""
    rule_id: str
    evaluated: bool
    group_results: Mapping[str, bool] = field(default_factory=dict)
    true_counts: Mapping[str, int] = field(default_factory=dict)
    unavailable_inputs: Tuple[str, ...] = ()
    candidate: Optional[bool] = None
    written: Optional[bool] = None
    write_failed: bool = False


def _output_text(value: bool) -> str:
    return "1" if value else "0"


class RuleEvaluator:
    """
    Evaluates one comparison memory against a point store.

    Owns the rule's runtime state. Not thread-safe: exactly one RuleWorker
    drives a given evaluator.
    """

    def __init__(self, snapshot: RuleSnapshot, point_store: PointStore,
                 clock: Callable[[], float] = time.monotonic,
                 read_timeout: float = 1.0, write_timeout: float = 1.0):
        self._snapshot = snapshot
        self._store = point_store
        self._clock = clock
        self._read_timeout = read_timeout
        self._write_timeout = write_timeout
        self._state = RuleState()
        self._store.watch(snapshot.input_ids() + (snapshot.output_id,))

    @property
    def snapshot(self) -> RuleSnapshot:
        return self._snapshot

    @property
    def state(self) -> RuleState:
        return self._state

    def apply_snapshot(self, snapshot: RuleSnapshot) -> None:
        """
        Swaps in an edited definition of the same rule.

        Groups whose inputs, required votes or voting hysteresis changed (and
        groups that are new) restart from OFF with no vote history; the other
        groups keep their latch. A new output point is written afresh.
        """
        if snapshot.id != self._snapshot.id:
            raise ValueError(f"Cannot apply definition '{snapshot.id}' to rule '{self._snapshot.id}'.")

        kept: Dict[str, GroupState] = {}
        for group in snapshot.groups:
            current = self._state.groups.get(group.id)
            if current is not None and current.structure_key == group.structure_key():
                kept[group.id] = current
            elif current is not None:
                logger.info(f"Rule '{snapshot.name}': group '{group.label}' structure changed, latch reset.")
        self._state.groups = kept

        if snapshot.output_id != self._snapshot.output_id:
            logger.info(f"Rule '{snapshot.name}': output moved from {self._snapshot.output_id} to {snapshot.output_id}.")
            self._state.debounce = replace(self._state.debounce, committed=None)

        self._snapshot = snapshot
        self._store.watch(snapshot.input_ids() + (snapshot.output_id,))

    def reset(self) -> None:
        """Drops all runtime state, as after a restart."""
        self._state = RuleState()

    # --- Tick ---

    def tick(self) -> TickResult:
        """Runs read -> vote -> aggregate -> combine -> maybe commit once."""
        snapshot = self._snapshot
        if snapshot.is_disabled:
            logger.debug(f"Rule '{snapshot.name}' is disabled; skipping evaluation.")
            return TickResult(rule_id=snapshot.id, evaluated=False)

        now = self._clock()
        readings: Dict[str, Tuple[Any, bool]] = {}
        unavailable: List[str] = []
        group_results: Dict[str, bool] = {}
        true_counts: Dict[str, int] = {}

        for group in snapshot.groups:
            latch, true_count = self._evaluate_group(group, readings, unavailable)
            group_results[group.id] = bool(latch)
            true_counts[group.id] = true_count

        if unavailable:
            logger.warning(f"Rule '{snapshot.name}': {len(unavailable)} input(s) unavailable: {', '.join(unavailable)}")

        candidate = candidate_output(list(group_results.values()), snapshot.operator, snapshot.invert_output)
        debounce = observe(self._state.debounce, candidate, now)
        self._state.debounce = debounce

        to_write = due_commit(debounce, now, snapshot.duration)
        if to_write is None and self._output_drifted(snapshot, debounce):
            to_write = debounce.committed

        written: Optional[bool] = None
        write_failed = False
        if to_write is not None:
            try:
                self._write_output(snapshot, to_write)
                self._state.debounce = mark_committed(self._state.debounce, to_write)
                written = to_write
            except OutputWriteFailure as e:
                logger.warning(f"Rule '{snapshot.name}': {e}. Retrying on next tick.")
                write_failed = True

        logger.debug(f"Rule '{snapshot.name}': groups={group_results} candidate={candidate} written={written}")
        return TickResult(
            rule_id=snapshot.id,
            evaluated=True,
            group_results=group_results,
            true_counts=true_counts,
            unavailable_inputs=tuple(unavailable),
            candidate=candidate,
            written=written,
            write_failed=write_failed,
        )

    def _group_state(self, group: GroupSnapshot) -> GroupState:
        state = self._state.groups.get(group.id)
        if state is None:
            state = GroupState(structure_key=group.structure_key())
            self._state.groups[group.id] = state
        return state

    def _evaluate_group(self, group: GroupSnapshot, readings: Dict[str, Tuple[Any, bool]],
                        unavailable: List[str]) -> Tuple[GroupLatch, int]:
        if not group.input_ids:
            raise EngineFault(f"Group '{group.label}' of rule '{self._snapshot.name}' has no inputs.")

        state = self._group_state(group)
        votes: List[InputVote] = []
        for input_id in group.input_ids:
            if input_id not in readings:
                readings[input_id] = self._read(input_id)
            value, ok = readings[input_id]
            previous = state.votes.get(input_id, InputVote.VOTED_FALSE)
            result = evaluate_input(group.condition, value, ok, previous)
            state.votes[input_id] = result.vote
            if not result.available and input_id not in unavailable:
                unavailable.append(input_id)
            votes.append(result.vote)

        true_count = count_true(votes)
        state.latch = aggregate(true_count, group.required_votes, group.voting_hysteresis, state.latch)
        return state.latch, true_count

    # --- Point I/O ---

    def _read(self, point_id: str) -> Tuple[Any, bool]:
        try:
            return self._store.read_value(point_id, timeout=self._read_timeout)
        except TimeoutError:
            logger.debug(f"Read of {point_id} timed out after {self._read_timeout}s")
            return None, False
        except InputUnavailable as e:
            logger.debug(str(e))
            return None, False

    def _output_drifted(self, snapshot: RuleSnapshot, debounce: DebounceState) -> bool:
        """True when the output point reads back a value other than the one we committed."""
        if debounce.committed is None or debounce.candidate != debounce.committed:
            return False
        value, ok = self._read(snapshot.output_id)
        if not ok:
            return False
        current = parse_digital(value)
        if current is None or current == debounce.committed:
            return False
        logger.info(f"Rule '{snapshot.name}': output {snapshot.output_id} reads {value!r}, "
                    f"expected {_output_text(debounce.committed)}; rewriting.")
        return True

    def _write_output(self, snapshot: RuleSnapshot, value: bool) -> None:
        text = _output_text(value)
        try:
            ok = self._store.write_value(snapshot.output_id, text, timeout=self._write_timeout)
        except TimeoutError:
            ok = False
        if not ok:
            raise OutputWriteFailure(snapshot.output_id, text)
        logger.info(f"Rule '{snapshot.name}': committed {text} to {snapshot.output_id}")
