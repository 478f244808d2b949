# compmem/points/mqtt_store.py

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional, Set, Tuple

from .mqtt_handler import MQTTInterface
from .payload import build_payload, encode_payload, parse_payload

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Reading:
    value: Any
    received_at: float


class MQTTPointStore:
    """
    Point store backed by MQTT topics.

    Each watched point is subscribed on `<topic_prefix><point_id>`; the last
    message received is cached and served to read_value(). A point that has
    not reported within `stale_after` seconds reads as unavailable. Writes
    publish a JSON payload to the point's topic at QoS 1 and wait for the
    broker's acknowledgement.
    """

    def __init__(self, mqtt_handler: MQTTInterface, topic_prefix: str = "points/",
                 stale_after: Optional[float] = 60.0, source: Optional[str] = "compmem",
                 trace: bool = True, clock: Callable[[], float] = time.monotonic):
        self._mqtt = mqtt_handler
        self._prefix = topic_prefix
        self._stale_after = stale_after
        self._source = source
        self._trace = trace
        self._clock = clock

        self._readings: Dict[str, _Reading] = {}
        self._watched: Set[str] = set()
        self._awaited: Set[str] = set()
        self._cond = threading.Condition()

        self._mqtt.register_connect_handler(self._resubscribe_all)

    def topic_for(self, point_id: str) -> str:
        return f"{self._prefix}{point_id}"

    # --- Subscriptions ---

    def watch(self, point_ids: Iterable[str]) -> None:
        new_ids = []
        with self._cond:
            for point_id in point_ids:
                if point_id and point_id not in self._watched:
                    self._watched.add(point_id)
                    new_ids.append(point_id)
        for point_id in new_ids:
            self._subscribe(point_id)

    def _subscribe(self, point_id: str) -> None:
        topic = self.topic_for(point_id)
        self._mqtt.register_message_handler(topic, self._make_handler(point_id))
        if self._mqtt.is_connected():
            self._mqtt.subscribe(topic, qos=1)

    def _resubscribe_all(self) -> None:
        with self._cond:
            watched = sorted(self._watched)
        logger.info(f"MQTTPointStore: (re)subscribing to {len(watched)} point topics.")
        for point_id in watched:
            self._mqtt.subscribe(self.topic_for(point_id), qos=1)

    def _make_handler(self, point_id: str) -> Callable[[str, str], None]:
        def handler(topic: str, payload: str) -> None:
            self._on_message(point_id, payload)
        handler.__name__ = f"on_point_{point_id}"
        return handler

    def _on_message(self, point_id: str, payload: str) -> None:
        value = parse_payload(payload)
        with self._cond:
            self._readings[point_id] = _Reading(value=value, received_at=self._clock())
            self._cond.notify_all()
        logger.debug(f"MQTTPointStore: {point_id} <- {value!r}")

    # --- PointStore ---

    def read_value(self, point_id: str, timeout: float | None = None) -> Tuple[Any, bool]:
        """
        Returns the cached value of a point.

        If nothing has been received yet, the first read of a point waits up
        to `timeout` seconds for a message; later reads of a point that has
        never reported return at once. Returns (None, False) if no value is
        cached or the cached reading is stale.
        """
        with self._cond:
            reading = self._readings.get(point_id)
            if reading is None and timeout and point_id not in self._awaited:
                self._awaited.add(point_id)
                self._cond.wait_for(lambda: point_id in self._readings, timeout=timeout)
                reading = self._readings.get(point_id)
        if reading is None:
            return None, False
        if self._stale_after is not None and self._clock() - reading.received_at > self._stale_after:
            logger.debug(f"MQTTPointStore: reading of {point_id} is stale.")
            return None, False
        return reading.value, True

    def write_value(self, point_id: str, value: Any, timeout: float | None = None) -> bool:
        payload = build_payload(point_id, value, source=self._source, trace=self._trace)
        ok = self._mqtt.publish(self.topic_for(point_id), encode_payload(payload), qos=1,
                                retain=False, timeout=timeout)
        if not ok:
            logger.warning(f"MQTTPointStore: write of {value!r} to {point_id} was not acknowledged.")
        return ok
