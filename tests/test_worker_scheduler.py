import threading
import time
from typing import Any, Tuple

from compmem.engine.scheduler import RuleScheduler
from compmem.engine.snapshot import compile_rule
from compmem.engine.worker import RuleWorker
from compmem.points.point_store import StaticPointStore
from compmem.store.yaml_store import ChangeKind

from conftest import make_group, make_memory


class ExplodingStore(StaticPointStore):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.explode = True

    def read_value(self, point_id: str, timeout: float | None = None) -> Tuple[Any, bool]:
        if self.explode:
            raise RuntimeError("broker client crashed")
        return super().read_value(point_id, timeout)


def test_worker_fault_is_isolated_and_state_reset(clock):
    store = ExplodingStore({"in1": "1"})
    worker = RuleWorker(compile_rule(make_memory()), store, clock=clock)
    assert worker.run_once() is None
    assert worker.fault_count == 1
    store.explode = False
    result = worker.run_once()
    assert result is not None and result.written is True


def test_staged_definition_applies_on_next_tick(store, clock):
    store.set_values({"in1": "1", "in2": "0"})
    worker = RuleWorker(compile_rule(make_memory()), store, clock=clock)
    worker.run_once()
    edited = compile_rule(make_memory([make_group(input_item_ids=["in2"])]))
    worker.replace_definition(edited)
    assert worker.snapshot == edited
    assert worker.evaluator.snapshot != edited
    result = worker.run_once()
    assert worker.evaluator.snapshot == edited
    assert result.written is False


def test_scheduler_sync_adds_updates_and_removes(store, clock):
    scheduler = RuleScheduler(store, clock=clock, autostart=False)
    a = make_memory(id="a", output_item_id="out_a")
    b = make_memory(id="b", output_item_id="out_b")
    scheduler.sync([a, b])
    assert sorted(scheduler.rule_ids) == ["a", "b"]

    worker_a = scheduler.get_worker("a")
    scheduler.sync([make_memory(id="a", output_item_id="out_a", duration=5)])
    assert scheduler.rule_ids == ["a"]
    assert scheduler.get_worker("a") is worker_a
    assert worker_a.snapshot.duration == 5.0


def test_scheduler_skips_invalid_definitions(store, clock):
    scheduler = RuleScheduler(store, clock=clock, autostart=False)
    scheduler.sync([make_memory(id="good"), make_memory(id="bad", interval=0)])
    assert scheduler.rule_ids == ["good"]


def test_definition_change_events(store, clock):
    scheduler = RuleScheduler(store, clock=clock, autostart=False)
    memory = make_memory(id="m")
    scheduler.on_definition_changed(ChangeKind.SAVED, "m", memory)
    assert scheduler.rule_ids == ["m"]
    scheduler.on_definition_changed(ChangeKind.SAVED, "m", make_memory(id="m", interval=0))
    assert scheduler.get_worker("m").snapshot.interval == 1
    scheduler.on_definition_changed(ChangeKind.DELETED, "m", None)
    assert scheduler.rule_ids == []


def test_sync_keeps_last_valid_definition_of_existing_rule(store, clock):
    scheduler = RuleScheduler(store, clock=clock, autostart=False)
    scheduler.sync([make_memory(id="m", duration=3)])
    worker = scheduler.get_worker("m")
    scheduler.sync([make_memory(id="m", duration=3, interval=0)])
    assert scheduler.get_worker("m") is worker
    assert worker.snapshot.duration == 3.0
    assert worker.snapshot.interval == 1


def test_sync_retains_rules_whose_file_did_not_load(store, clock):
    scheduler = RuleScheduler(store, clock=clock, autostart=False)
    scheduler.sync([make_memory(id="a", output_item_id="out_a"), make_memory(id="b", output_item_id="out_b")])
    worker_a = scheduler.get_worker("a")
    scheduler.sync([make_memory(id="b", output_item_id="out_b")], retain_ids=["a", "b"])
    assert sorted(scheduler.rule_ids) == ["a", "b"]
    assert scheduler.get_worker("a") is worker_a
    scheduler.sync([make_memory(id="b", output_item_id="out_b")], retain_ids=["b"])
    assert scheduler.rule_ids == ["b"]


def test_running_worker_commits_and_stops():
    store = StaticPointStore({"in1": "1"})
    scheduler = RuleScheduler(store)
    scheduler.apply(make_memory(id="live", duration=0))
    try:
        deadline = time.monotonic() + 3.0
        while time.monotonic() < deadline and not store.writes:
            time.sleep(0.05)
        assert store.writes[0] == ("out", "1")
        worker = scheduler.get_worker("live")
        assert worker.is_alive()
    finally:
        scheduler.stop_all()
    assert not worker.is_alive()
    assert scheduler.rule_ids == []


def test_slow_rule_does_not_block_others():
    release = threading.Event()

    class SlowStore(StaticPointStore):
        def read_value(self, point_id, timeout=None):
            if point_id == "slow_in":
                release.wait(timeout=5.0)
            return super().read_value(point_id, timeout)

    store = SlowStore({"slow_in": "1", "fast_in": "1"})
    scheduler = RuleScheduler(store)
    scheduler.apply(make_memory([make_group(input_item_ids=["slow_in"])], id="slow", output_item_id="slow_out"))
    scheduler.apply(make_memory([make_group(input_item_ids=["fast_in"])], id="fast", output_item_id="fast_out"))
    try:
        deadline = time.monotonic() + 3.0
        while time.monotonic() < deadline and ("fast_out", "1") not in store.writes:
            time.sleep(0.05)
        assert ("fast_out", "1") in store.writes
        assert ("slow_out", "1") not in store.writes
    finally:
        release.set()
        scheduler.stop_all()
