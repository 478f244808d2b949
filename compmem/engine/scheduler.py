# compmem/engine/scheduler.py

import logging
import threading
import time
from typing import Callable, Dict, Iterable, List, Optional

from ..config_models.comparison_models import ComparisonMemory
from ..errors import ConfigurationError
from ..points.point_store import PointStore
from ..store.yaml_store import ChangeKind
from .snapshot import RuleSnapshot, compile_rule
from .worker import RuleWorker

logger = logging.getLogger(__name__)


class RuleScheduler:
    """
    Keeps one RuleWorker per comparison memory in step with the definitions.

    Definitions are compiled (and so validated) here; one that fails to
    compile is logged and never scheduled; a running rule keeps its last
    valid definition instead. Workers are independent: a slow or faulting
    rule does not hold up the others.
    """

    def __init__(self, point_store: PointStore, clock: Callable[[], float] = time.monotonic,
                 read_timeout: float = 1.0, write_timeout: float = 1.0, autostart: bool = True):
        self._store = point_store
        self._clock = clock
        self._read_timeout = read_timeout
        self._write_timeout = write_timeout
        self._autostart = autostart
        self._workers: Dict[str, RuleWorker] = {}
        self._lock = threading.Lock()

    @property
    def rule_ids(self) -> List[str]:
        with self._lock:
            return list(self._workers)

    def get_worker(self, rule_id: str) -> Optional[RuleWorker]:
        with self._lock:
            return self._workers.get(rule_id)

    def _new_worker(self, snapshot: RuleSnapshot) -> RuleWorker:
        worker = RuleWorker(snapshot, self._store, clock=self._clock,
                            read_timeout=self._read_timeout, write_timeout=self._write_timeout)
        if self._autostart:
            worker.start()
        return worker

    def _apply_snapshot(self, snapshot: RuleSnapshot) -> None:
        worker = self._workers.get(snapshot.id)
        if worker is None:
            logger.info(f"Scheduling rule '{snapshot.name}' every {snapshot.interval}s.")
            self._workers[snapshot.id] = self._new_worker(snapshot)
        elif worker.snapshot != snapshot:
            worker.replace_definition(snapshot)

    def _remove(self, rule_id: str) -> None:
        worker = self._workers.pop(rule_id, None)
        if worker is not None:
            logger.info(f"Unscheduling rule '{worker.snapshot.name}'.")
            worker.stop()

    # --- Public API ---

    def sync(self, memories: Iterable[ComparisonMemory], retain_ids: Iterable[str] = ()) -> None:
        """
        Starts new rules, stages edits of existing ones, and stops rules no longer present.

        A running rule whose new definition fails to compile, or whose id is
        in `retain_ids` (a definition that still exists but could not be
        loaded), keeps its last valid definition.
        """
        desired: Dict[str, RuleSnapshot] = {}
        keep = set(retain_ids)
        for memory in memories:
            try:
                desired[memory.id] = compile_rule(memory)
            except ConfigurationError as e:
                logger.error(f"Not scheduling invalid definition: {e}")
                keep.add(memory.id)
        with self._lock:
            for rule_id in list(self._workers):
                if rule_id in desired:
                    continue
                if rule_id in keep:
                    logger.warning(f"Definition of '{rule_id}' is invalid; keeping its last valid version.")
                    continue
                self._remove(rule_id)
            for snapshot in desired.values():
                self._apply_snapshot(snapshot)

    def apply(self, memory: ComparisonMemory) -> None:
        """
        Schedules or updates one rule.

        Raises:
            ConfigurationError: if the definition does not validate.
        """
        snapshot = compile_rule(memory)
        with self._lock:
            self._apply_snapshot(snapshot)

    def remove(self, rule_id: str) -> None:
        with self._lock:
            self._remove(rule_id)

    def on_definition_changed(self, kind: ChangeKind, memory_id: str, memory: Optional[ComparisonMemory]) -> None:
        """Change handler for a definition store."""
        if kind == ChangeKind.DELETED or memory is None:
            self.remove(memory_id)
            return
        try:
            self.apply(memory)
        except ConfigurationError as e:
            logger.error(f"Ignoring change to '{memory_id}': {e}")

    def restart_dead(self) -> List[str]:
        """Replaces workers whose thread has died. Returns the ids restarted."""
        if not self._autostart:
            return []
        restarted: List[str] = []
        with self._lock:
            for rule_id, worker in list(self._workers.items()):
                if worker.is_alive():
                    continue
                logger.warning(f"Rule worker for '{worker.snapshot.name}' is not running; restarting it.")
                self._workers[rule_id] = self._new_worker(worker.snapshot)
                restarted.append(rule_id)
        return restarted

    def stop_all(self) -> None:
        with self._lock:
            for rule_id in list(self._workers):
                self._remove(rule_id)
