# compmem/engine/worker.py

import logging
import threading
import time
from typing import Callable, Optional

from ..errors import EngineFault
from ..points.point_store import PointStore
from .rule_task import RuleEvaluator, TickResult
from .snapshot import RuleSnapshot

logger = logging.getLogger(__name__)


class RuleWorker:
    """
    Runs one rule on its own thread, once per `interval` seconds.

    Edits arrive through replace_definition() and are swapped in at the start
    of the next tick, so a tick never sees a half-updated rule. A fault inside
    a tick is logged, the rule's state is reset, and the worker carries on at
    its next tick.
    """

    def __init__(self, snapshot: RuleSnapshot, point_store: PointStore,
                 clock: Callable[[], float] = time.monotonic,
                 read_timeout: float = 1.0, write_timeout: float = 1.0):
        self._evaluator = RuleEvaluator(snapshot, point_store, clock=clock,
                                        read_timeout=read_timeout, write_timeout=write_timeout)
        self._pending: Optional[RuleSnapshot] = None
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_result: Optional[TickResult] = None
        self.fault_count = 0

    @property
    def rule_id(self) -> str:
        return self._evaluator.snapshot.id

    @property
    def snapshot(self) -> RuleSnapshot:
        """The definition the next tick will use."""
        with self._lock:
            return self._pending if self._pending is not None else self._evaluator.snapshot

    @property
    def evaluator(self) -> RuleEvaluator:
        return self._evaluator

    def replace_definition(self, snapshot: RuleSnapshot) -> None:
        with self._lock:
            self._pending = snapshot
        logger.info(f"Rule '{snapshot.name}': new definition staged for next tick.")

    def _swap_pending(self) -> None:
        with self._lock:
            pending, self._pending = self._pending, None
        if pending is not None:
            self._evaluator.apply_snapshot(pending)

    def run_once(self) -> Optional[TickResult]:
        """Swaps in any staged definition and evaluates one tick. Returns None on a fault."""
        self._swap_pending()
        try:
            result = self._evaluator.tick()
        except Exception as e:
            self.fault_count += 1
            fault = e if isinstance(e, EngineFault) else EngineFault(f"{type(e).__name__}: {e}")
            logger.error(f"Rule '{self._evaluator.snapshot.name}' faulted ({fault}); resetting its state.", exc_info=True)
            self._evaluator.reset()
            return None
        self.last_result = result
        return result

    # --- Thread lifecycle ---

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=f"compmem-rule-{self.rule_id}", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning(f"Rule worker {self.rule_id} did not stop within {timeout}s.")

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        logger.info(f"Rule worker started for '{self._evaluator.snapshot.name}'.")
        while not self._stop_event.is_set():
            start_time = time.monotonic()
            self.run_once()

            interval = self._evaluator.snapshot.interval
            elapsed = time.monotonic() - start_time
            wait_time = interval - elapsed
            if wait_time < 0:
                logger.warning(f"Rule '{self._evaluator.snapshot.name}' tick took {elapsed:.3f}s, "
                               f"longer than its interval ({interval}s).")
                wait_time = 0
            self._stop_event.wait(wait_time)
        logger.info(f"Rule worker stopped for '{self._evaluator.snapshot.name}'.")
