# compmem/engine/runner.py

import logging
import threading
import time
from typing import Callable, Optional

from ..config_models.engine_settings import EngineSettings, load_engine_settings
from ..errors import CompMemError, EngineSettingsError
from ..points.mqtt_handler import EngineMQTTHandler, MQTTInterface
from ..points.mqtt_store import MQTTPointStore
from ..store.yaml_store import YamlDefinitionStore
from .scheduler import RuleScheduler

logger = logging.getLogger(__name__)


class EngineRunnerError(Exception):
    """Custom exception for engine runner errors."""
    pass


def _default_handler_factory(settings: EngineSettings) -> MQTTInterface:
    mqtt_settings = settings.mqtt
    return EngineMQTTHandler(
        client_id=mqtt_settings.client_id,
        broker=mqtt_settings.broker,
        port=mqtt_settings.port,
        username=mqtt_settings.username,
        password=mqtt_settings.password,
        keepalive=mqtt_settings.keepalive,
    )


class ComparisonEngineRunner:
    """Orchestrates the comparison memory engine lifecycle."""

    def __init__(self, config_path: str,
                 mqtt_handler_factory: Callable[[EngineSettings], MQTTInterface] = _default_handler_factory):
        self._config_path = config_path
        self._mqtt_handler_factory = mqtt_handler_factory
        self.settings: EngineSettings | None = None
        self.mqtt_handler: MQTTInterface | None = None
        self.point_store: MQTTPointStore | None = None
        self.definition_store: YamlDefinitionStore | None = None
        self.scheduler: RuleScheduler | None = None
        self._stop_event = threading.Event()
        self._is_running = False

    def setup(self) -> None:
        """Loads settings and initializes all components."""
        logger.info("ComparisonEngineRunner: Starting setup...")
        try:
            self.settings = load_engine_settings(self._config_path)
            runner_settings = self.settings.runner

            logger.info("Initializing MQTT Handler...")
            self.mqtt_handler = self._mqtt_handler_factory(self.settings)
            self.point_store = MQTTPointStore(
                self.mqtt_handler,
                topic_prefix=self.settings.mqtt.topic_prefix,
                stale_after=runner_settings.stale_after_seconds,
                source=self.settings.mqtt.client_id,
            )
            self.mqtt_handler.connect()
            self.mqtt_handler.loop_start()
            logger.info("MQTT Handler initialized and loop started.")

            logger.info(f"Opening definition store at {self.settings.store.definitions_dir}")
            self.definition_store = YamlDefinitionStore(self.settings.store.definitions_dir)

            self.scheduler = RuleScheduler(
                self.point_store,
                read_timeout=runner_settings.read_timeout_seconds,
                write_timeout=runner_settings.write_timeout_seconds,
            )
            self.definition_store.register_change_handler(self.scheduler.on_definition_changed)
            self.scheduler.sync(self.definition_store.load_all(), retain_ids=self.definition_store.list_ids())
            logger.info(f"ComparisonEngineRunner: Setup complete, {len(self.scheduler.rule_ids)} rule(s) scheduled.")

        except EngineSettingsError as e:
            logger.error(f"ComparisonEngineRunner Setup Failed: {e}")
            self.shutdown()
            raise
        except Exception as e:
            logger.error(f"ComparisonEngineRunner Setup Failed with unexpected error: {e}", exc_info=True)
            self.shutdown()
            raise EngineRunnerError(f"Unexpected setup error: {e}") from e

    def run(self) -> None:
        """Keeps workers in step with the definition directory until stopped."""
        if not self.settings or not self.scheduler or not self.definition_store:
            logger.error("Runner setup must be completed successfully before running.")
            return

        interval = self.settings.runner.sync_interval_seconds
        logger.info(f"ComparisonEngineRunner: Running; re-syncing definitions every {interval}s.")
        self._is_running = True
        self._stop_event.clear()
        try:
            while not self._stop_event.is_set():
                start_time = time.monotonic()
                self.sync_once()
                elapsed = time.monotonic() - start_time
                self._stop_event.wait(max(0.0, interval - elapsed))
        except KeyboardInterrupt:
            logger.info("KeyboardInterrupt received, stopping runner...")
        finally:
            self.shutdown()

    def sync_once(self) -> None:
        """Reloads definitions from disk and restarts any worker that died."""
        if not self.scheduler or not self.definition_store:
            return
        try:
            self.scheduler.sync(self.definition_store.load_all(), retain_ids=self.definition_store.list_ids())
        except CompMemError as e:
            logger.error(f"Could not reload definitions: {e}")
        self.scheduler.restart_dead()

    def stop(self) -> None:
        self._stop_event.set()

    def shutdown(self) -> None:
        """Stops all workers and disconnects from the broker."""
        if not self._is_running and self.mqtt_handler is None and self.scheduler is None:
            return
        logger.info("ComparisonEngineRunner: Shutting down...")
        self._is_running = False
        self._stop_event.set()
        if self.scheduler:
            self.scheduler.stop_all()
        if self.mqtt_handler:
            logger.info("Stopping MQTT handler loop...")
            self.mqtt_handler.loop_stop()
            self.mqtt_handler.disconnect()
        self.scheduler = None
        self.point_store = None
        self.definition_store = None
        self.mqtt_handler = None
        logger.info("ComparisonEngineRunner: Shutdown complete.")
