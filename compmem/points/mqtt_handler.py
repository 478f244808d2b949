# compmem/points/mqtt_handler.py

import logging
import socket
from typing import Any, Callable, Dict, List, Optional, Protocol

import paho.mqtt.client as mqtt
from paho.mqtt.enums import CallbackAPIVersion

logger = logging.getLogger(__name__)

# Called with (topic, payload)
MessageHandler = Callable[[str, str], None]


class MQTTInterface(Protocol):
    """Defines the MQTT operations the point store relies on."""

    def connect(self) -> None:
        ...

    def disconnect(self) -> None:
        ...

    def publish(self, topic: str, payload: Any, qos: int = 1, retain: bool = False,
                timeout: float | None = 1.0) -> bool:
        """
        Publishes a message to a topic.

        Returns:
            True once the broker acknowledged the message within `timeout`, False otherwise.
        """
        ...

    def subscribe(self, topic: str, qos: int = 1) -> None:
        ...

    def register_message_handler(self, topic: str, handler: MessageHandler) -> None:
        """Registers a callback for messages on one topic. The handler gets (topic, payload)."""
        ...

    def register_connect_handler(self, handler: Callable[[], None]) -> None:
        """Registers a callback run after every successful (re)connection."""
        ...

    def loop_start(self) -> None:
        ...

    def loop_stop(self) -> None:
        ...

    def is_connected(self) -> bool:
        ...


class EngineMQTTHandler:
    """
    Paho MQTT implementation of MQTTInterface used by the engine's point store.
    """

    def __init__(self, client_id: str, broker: str, port: int,
                 username: Optional[str] = None, password: Optional[str] = None, keepalive: int = 60):
        self.client_id = client_id
        self.broker = broker
        self.port = port
        self.keepalive = keepalive

        self._message_handlers: Dict[str, MessageHandler] = {}
        self._connect_handlers: List[Callable[[], None]] = []

        self.client = mqtt.Client(client_id=self.client_id,
                                  callback_api_version=CallbackAPIVersion.VERSION2)
        if username:
            self.client.username_pw_set(username, password)

        self.client.on_connect = self._on_connect
        self.client.on_message = self._on_message
        self.client.on_disconnect = self._on_disconnect

        logger.info(f"EngineMQTTHandler initialized for client ID: {self.client_id}")

    # --- Paho callbacks ---

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code == 0:
            logger.info(f"EngineMQTTHandler: Connected to MQTT broker {self.broker}")
            for handler in self._connect_handlers:
                try:
                    handler()
                except Exception as e:
                    logger.error(f"EngineMQTTHandler: Error in connect handler: {e}", exc_info=True)
        else:
            logger.error(f"EngineMQTTHandler: Failed to connect to MQTT broker, reason {reason_code}")

    def _on_message(self, client, userdata, message):
        topic = message.topic
        try:
            payload = message.payload.decode('utf-8')
        except UnicodeDecodeError:
            logger.warning(f"Could not decode payload for topic '{topic}' (bytes: {message.payload!r})")
            return
        logger.debug(f"MQTT RECV: Topic='{topic}', Payload='{payload}'")

        handler = self._message_handlers.get(topic)
        if handler is None:
            return
        try:
            handler(topic, payload)
        except Exception as e:
            logger.error(f"EngineMQTTHandler: Error calling message handler for topic '{topic}': {e}", exc_info=True)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        logger.info(f"EngineMQTTHandler: Disconnected from MQTT broker, reason {reason_code}")
        if reason_code != 0:
            logger.warning("EngineMQTTHandler: Unexpected disconnection. Paho client will attempt to reconnect.")

    # --- MQTTInterface ---

    def connect(self) -> None:
        logger.info(f"EngineMQTTHandler: Attempting connection to {self.broker}:{self.port}...")
        try:
            self.client.connect(self.broker, self.port, self.keepalive)
        except (socket.error, TimeoutError, OSError) as e:
            # loop_start() keeps retrying in the background
            logger.error(f"EngineMQTTHandler: Network connection attempt failed - {e}")

    def disconnect(self) -> None:
        logger.info("EngineMQTTHandler: Disconnecting client...")
        self.client.disconnect()

    def publish(self, topic: str, payload: Any, qos: int = 1, retain: bool = False,
                timeout: float | None = 1.0) -> bool:
        logger.debug(f"EngineMQTTHandler: Publishing to '{topic}': {payload}")
        try:
            msg_info = self.client.publish(topic, str(payload), qos=qos, retain=retain)
            if msg_info.rc != mqtt.MQTT_ERR_SUCCESS:
                logger.warning(f"Publish failed for topic '{topic}', rc={msg_info.rc}")
                return False
            msg_info.wait_for_publish(timeout=timeout)
        except (ValueError, RuntimeError) as e:
            logger.error(f"Publish failed for topic '{topic}': {e}")
            return False
        if not msg_info.is_published():
            logger.warning(f"Publish to '{topic}' not acknowledged within {timeout}s (mid={msg_info.mid})")
            return False
        logger.debug(f"Publish successful (mid={msg_info.mid}) for topic {topic}")
        return True

    def subscribe(self, topic: str, qos: int = 1) -> None:
        logger.info(f"EngineMQTTHandler: Subscribing to '{topic}' with QoS {qos}")
        result, mid = self.client.subscribe(topic, qos=qos)
        if result == mqtt.MQTT_ERR_SUCCESS:
            logger.debug(f"Subscription request successful (mid={mid}) for topic '{topic}'")
        else:
            logger.warning(f"Subscription request failed (rc={result}) for topic '{topic}'")

    def register_message_handler(self, topic: str, handler: MessageHandler) -> None:
        logger.debug(f"EngineMQTTHandler: Registering handler for topic '{topic}'")
        self._message_handlers[topic] = handler

    def register_connect_handler(self, handler: Callable[[], None]) -> None:
        logger.info(f"EngineMQTTHandler: Registering connect handler {getattr(handler, '__name__', repr(handler))}")
        self._connect_handlers.append(handler)

    def loop_start(self) -> None:
        logger.info("EngineMQTTHandler: Starting background loop...")
        self.client.loop_start()

    def loop_stop(self) -> None:
        logger.info("EngineMQTTHandler: Stopping background loop...")
        self.client.loop_stop()

    def is_connected(self) -> bool:
        return self.client.is_connected()
