from typing import Any, Tuple

import pytest

from compmem.engine.aggregator import GroupLatch
from compmem.engine.rule_task import RuleEvaluator
from compmem.engine.snapshot import compile_rule
from compmem.errors import ConfigurationError
from compmem.points.point_store import StaticPointStore

from conftest import make_group, make_memory


class FailingWriteStore(StaticPointStore):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_writes = True
        self.attempts = 0

    def write_value(self, point_id: str, value: Any, timeout: float | None = None) -> bool:
        self.attempts += 1
        if self.fail_writes:
            return False
        return super().write_value(point_id, value, timeout)


class TimeoutStore(StaticPointStore):
    def read_value(self, point_id: str, timeout: float | None = None) -> Tuple[Any, bool]:
        if point_id == "slow":
            raise TimeoutError()
        return super().read_value(point_id, timeout)


def _evaluator(memory, store, clock):
    return RuleEvaluator(compile_rule(memory), store, clock=clock)


def _step(evaluator, clock, seconds=1.0):
    result = evaluator.tick()
    clock.advance(seconds)
    return result


def test_invalid_definition_never_compiles():
    with pytest.raises(ConfigurationError):
        compile_rule(make_memory([], interval=0))


def test_commit_after_duration_and_no_rewrite(store, clock):
    memory = make_memory(duration=10)
    store.set_value("in1", "1")
    evaluator = _evaluator(memory, store, clock)

    results = [_step(evaluator, clock) for _ in range(12)]
    assert [r.written for r in results[:10]] == [None] * 10
    assert results[10].written is True
    assert results[11].written is None
    assert store.writes == [("out", "1")]


def test_flip_inside_duration_writes_nothing(store, clock):
    memory = make_memory(duration=10)
    evaluator = _evaluator(memory, store, clock)
    store.set_value("in1", "1")
    for _ in range(5):
        _step(evaluator, clock)
    store.set_value("in1", "0")
    _step(evaluator, clock)
    store.set_value("in1", "1")
    for _ in range(5):
        _step(evaluator, clock)
    assert store.writes == []


def test_zero_duration_writes_first_tick(store, clock):
    store.set_value("in1", "0")
    evaluator = _evaluator(make_memory(duration=0), store, clock)
    result = _step(evaluator, clock)
    assert result.written is False
    assert store.writes == [("out", "0")]


def test_invert_output(store, clock):
    store.set_value("in1", "0")
    evaluator = _evaluator(make_memory(invert_output=True), store, clock)
    _step(evaluator, clock)
    assert store.writes == [("out", "1")]


def test_disabled_rule_is_not_evaluated(store, clock):
    store.set_value("in1", "1")
    evaluator = _evaluator(make_memory(is_disabled=True), store, clock)
    result = _step(evaluator, clock)
    assert result.evaluated is False
    assert store.writes == []


def test_voting_group_end_to_end(store, clock):
    inputs = [f"s{i}" for i in range(1, 6)]
    group = make_group(input_item_ids=inputs, required_votes=3, voting_hysteresis=1)
    evaluator = _evaluator(make_memory([group], duration=0), store, clock)

    def set_true(count):
        store.set_values({name: "1" if i < count else "0" for i, name in enumerate(inputs)})

    observed = []
    for count in [3, 4, 3, 2]:
        set_true(count)
        result = _step(evaluator, clock)
        observed.append((result.true_counts["g1"], result.group_results["g1"]))
    assert observed == [(3, False), (4, True), (3, True), (2, False)]
    assert store.writes == [("out", "0"), ("out", "1"), ("out", "0")]


def test_unavailable_input_counts_as_false(store, clock):
    group = make_group(input_item_ids=["a", "b"], required_votes=2)
    store.set_value("a", "1")
    evaluator = _evaluator(make_memory([group]), store, clock)
    result = _step(evaluator, clock)
    assert result.unavailable_inputs == ("b",)
    assert result.group_results["g1"] is False


def test_read_timeout_is_unavailable(clock):
    store = TimeoutStore({"fast": "1"})
    group = make_group(input_item_ids=["fast", "slow"], required_votes=1)
    evaluator = _evaluator(make_memory([group]), store, clock)
    result = _step(evaluator, clock)
    assert result.unavailable_inputs == ("slow",)
    assert result.group_results["g1"] is True


def test_failed_write_is_retried(clock):
    store = FailingWriteStore({"in1": "1"})
    evaluator = _evaluator(make_memory(duration=0), store, clock)
    first = _step(evaluator, clock)
    assert first.write_failed and first.written is None
    assert evaluator.state.debounce.committed is None
    store.fail_writes = False
    second = _step(evaluator, clock)
    assert second.written is True
    assert store.writes == [("out", "1")]
    assert store.attempts == 2


def test_output_drift_is_rewritten(store, clock):
    store.set_value("in1", "1")
    evaluator = _evaluator(make_memory(duration=0), store, clock)
    _step(evaluator, clock)
    store.set_value("out", "0")
    result = _step(evaluator, clock)
    assert result.written is True
    assert store.writes == [("out", "1"), ("out", "1")]


def test_structure_edit_resets_only_that_group(store, clock):
    g1 = make_group(id="g1", input_item_ids=["a"])
    g2 = make_group(id="g2", input_item_ids=["b"])
    store.set_values({"a": "1", "b": "1"})
    memory = make_memory([g1, g2], duration=0)
    evaluator = _evaluator(memory, store, clock)
    _step(evaluator, clock)
    assert evaluator.state.groups["g1"].latch is GroupLatch.ON
    assert evaluator.state.groups["g2"].latch is GroupLatch.ON

    edited = make_memory([g1, make_group(id="g2", input_item_ids=["b", "c"], required_votes=1)], duration=0)
    evaluator.apply_snapshot(compile_rule(edited))
    assert "g1" in evaluator.state.groups
    assert "g2" not in evaluator.state.groups
    assert evaluator.state.debounce.committed is True


def test_threshold_edit_keeps_latch(store, clock):
    group = make_group(comparison_mode="analog", compare_type="higher", threshold1=50, threshold_hysteresis=2)
    store.set_value("in1", 53)
    evaluator = _evaluator(make_memory([group]), store, clock)
    _step(evaluator, clock)
    edited = make_group(comparison_mode="analog", compare_type="higher", threshold1=60, threshold_hysteresis=2)
    evaluator.apply_snapshot(compile_rule(make_memory([edited])))
    assert evaluator.state.groups["g1"].latch is GroupLatch.ON


def test_output_change_forces_fresh_write(store, clock):
    store.set_value("in1", "1")
    evaluator = _evaluator(make_memory(duration=0), store, clock)
    _step(evaluator, clock)
    evaluator.apply_snapshot(compile_rule(make_memory(duration=0, output_item_id="out2")))
    _step(evaluator, clock)
    assert store.writes == [("out", "1"), ("out2", "1")]


def test_apply_snapshot_rejects_other_rule(store, clock):
    evaluator = _evaluator(make_memory(), store, clock)
    with pytest.raises(ValueError):
        evaluator.apply_snapshot(compile_rule(make_memory(id="other")))


def test_inverted_true_result_commits_zero(store, clock):
    store.set_value("in1", "1")
    evaluator = _evaluator(make_memory(invert_output=True, duration=3), store, clock)
    results = [_step(evaluator, clock) for _ in range(4)]
    assert [r.candidate for r in results] == [False] * 4
    assert results[3].written is False
    assert store.writes == [("out", "0")]


def test_reenabled_rule_resumes_its_state(store, clock):
    store.set_value("in1", "1")
    evaluator = _evaluator(make_memory(duration=0), store, clock)
    assert _step(evaluator, clock).written is True
    latch_state = evaluator.state.groups["g1"]
    debounce = evaluator.state.debounce

    evaluator.apply_snapshot(compile_rule(make_memory(duration=0, is_disabled=True)))
    assert _step(evaluator, clock).evaluated is False
    evaluator.apply_snapshot(compile_rule(make_memory(duration=0)))
    assert evaluator.state.groups["g1"] is latch_state
    assert evaluator.state.debounce is debounce
    assert evaluator.state.groups["g1"].latch is GroupLatch.ON
    assert evaluator.state.debounce.committed is True

    result = _step(evaluator, clock)
    assert result.evaluated is True
    assert result.written is None
    assert store.writes == [("out", "1")]
