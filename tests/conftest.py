from typing import Any, Callable, Dict, List, Tuple

import pytest

from compmem.config_models import ComparisonGroup, ComparisonMemory
from compmem.points.point_store import StaticPointStore


class FakeClock:
    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_group(**overrides: Any) -> ComparisonGroup:
    data: Dict[str, Any] = {
        "id": "g1",
        "input_item_ids": ["in1"],
        "required_votes": 1,
        "comparison_mode": "digital",
        "digital_value": "1",
    }
    data.update(overrides)
    return ComparisonGroup.model_validate(data)


def make_memory(groups: List[ComparisonGroup] | None = None, **overrides: Any) -> ComparisonMemory:
    data: Dict[str, Any] = {
        "id": "cm1",
        "name": "Test memory",
        "comparison_groups": groups if groups is not None else [make_group()],
        "group_operator": "and",
        "output_item_id": "out",
        "interval": 1,
        "duration": 0,
    }
    data.update(overrides)
    return ComparisonMemory.model_validate(data)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> StaticPointStore:
    return StaticPointStore()


class FakeMQTTHandler:
    """In-memory stand-in for EngineMQTTHandler."""

    def __init__(self, connected: bool = True, publish_ok: bool = True):
        self.connected = connected
        self.publish_ok = publish_ok
        self.handlers: Dict[str, Callable[[str, str], None]] = {}
        self.connect_handlers: List[Callable[[], None]] = []
        self.subscriptions: List[str] = []
        self.published: List[Tuple[str, str, int]] = []

    def connect(self) -> None:
        self.connected = True
        for handler in self.connect_handlers:
            handler()

    def disconnect(self) -> None:
        self.connected = False

    def publish(self, topic: str, payload: Any, qos: int = 1, retain: bool = False, timeout: float | None = 1.0) -> bool:
        self.published.append((topic, payload, qos))
        return self.publish_ok

    def subscribe(self, topic: str, qos: int = 1) -> None:
        self.subscriptions.append(topic)

    def register_message_handler(self, topic: str, handler) -> None:
        self.handlers[topic] = handler

    def register_connect_handler(self, handler) -> None:
        self.connect_handlers.append(handler)

    def loop_start(self) -> None:
        pass

    def loop_stop(self) -> None:
        pass

    def is_connected(self) -> bool:
        return self.connected

    def deliver(self, topic: str, payload: str) -> None:
        self.handlers[topic](topic, payload)
