# compmem/points/point_store.py

import logging
import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)


class PointStore(Protocol):
    """Defines how the engine reads input points and writes its output point."""

    def read_value(self, point_id: str, timeout: float | None = None) -> Tuple[Any, bool]:
        """
        Returns (value, ok) for the point's current value.

        ok is False when the point has no usable value. Implementations must
        not block longer than `timeout`; they may raise TimeoutError instead.
        """
        ...

    def write_value(self, point_id: str, value: Any, timeout: float | None = None) -> bool:
        """Writes a value to a point. Returns True once the write is accepted."""
        ...

    def watch(self, point_ids: Iterable[str]) -> None:
        """Declares interest in points so their values are kept up to date."""
        ...


class StaticPointStore:
    """
    In-process point store holding values set by the caller.

    Used for dry-run evaluation from the CLI and as the store behind tests.
    Every write is also appended to `writes` as (point_id, value).
    """

    def __init__(self, values: Optional[Mapping[str, Any]] = None):
        self._values: Dict[str, Any] = dict(values or {})
        self._lock = threading.Lock()
        self.writes: List[Tuple[str, Any]] = []

    def set_value(self, point_id: str, value: Any) -> None:
        with self._lock:
            self._values[point_id] = value

    def set_values(self, values: Mapping[str, Any]) -> None:
        with self._lock:
            self._values.update(values)

    def clear_value(self, point_id: str) -> None:
        with self._lock:
            self._values.pop(point_id, None)

    def read_value(self, point_id: str, timeout: float | None = None) -> Tuple[Any, bool]:
        with self._lock:
            if point_id not in self._values:
                return None, False
            return self._values[point_id], True

    def write_value(self, point_id: str, value: Any, timeout: float | None = None) -> bool:
        with self._lock:
            self._values[point_id] = value
            self.writes.append((point_id, value))
        logger.debug(f"StaticPointStore: wrote {value!r} to {point_id}")
        return True

    def watch(self, point_ids: Iterable[str]) -> None:
        return
