from .mqtt_handler import EngineMQTTHandler, MessageHandler, MQTTInterface
from .mqtt_store import MQTTPointStore
from .payload import build_payload, parse_payload
from .point_store import PointStore, StaticPointStore

__all__ = [
    "EngineMQTTHandler",
    "MessageHandler",
    "MQTTInterface",
    "MQTTPointStore",
    "PointStore",
    "StaticPointStore",
    "build_payload",
    "parse_payload",
]
