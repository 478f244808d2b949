# compmem/config_models/engine_settings.py

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from ..errors import EngineSettingsError

logger = logging.getLogger(__name__)


class MQTTSecrets(BaseModel):
    username: str = Field(..., description="MQTT username (secret)")
    password: str = Field(..., description="MQTT password (secret)")
    model_config = {"extra": "forbid"}


class EngineSecrets(BaseModel):
    mqtt: MQTTSecrets = Field(..., description="Credentials for the point broker.")
    model_config = {"extra": "forbid"}


class MQTTSettings(BaseModel):
    broker: str = Field(..., description="Hostname or IP address of the MQTT broker carrying point values.")
    port: int = Field(1883, description="Broker port.")
    client_id: str = Field("compmem-engine", description="MQTT client id of the engine.")
    keepalive: int = Field(60, gt=0, description="Keepalive in seconds.")
    topic_prefix: str = Field("points/", description="Prefix joined to a point id to form its topic.")
    username: Optional[str] = Field(None, description="Username; normally supplied by the secrets file.")
    password: Optional[str] = Field(None, description="Password; normally supplied by the secrets file.")
    model_config = {"extra": "forbid"}


class RunnerSettings(BaseModel):
    sync_interval_seconds: float = Field(5.0, gt=0, description="How often the runner checks worker health and reloads definitions.")
    read_timeout_seconds: float = Field(1.0, gt=0, description="Upper bound on a single point read.")
    write_timeout_seconds: float = Field(1.0, gt=0, description="Upper bound on waiting for an output write acknowledgement.")
    stale_after_seconds: Optional[float] = Field(60.0, gt=0, description="Readings older than this count as unavailable. None disables the check.")
    model_config = {"extra": "forbid"}


class StoreSettings(BaseModel):
    definitions_dir: str = Field(..., description="Directory holding one YAML file per comparison memory.")
    model_config = {"extra": "forbid"}


class LoggingSettings(BaseModel):
    level: str = Field("INFO", description="Root log level.")
    model_config = {"extra": "forbid"}

    @model_validator(mode='after')
    def check_level(self) -> 'LoggingSettings':
        if logging.getLevelName(self.level.upper()) == f"Level {self.level.upper()}":
            raise ValueError(f"Unknown log level '{self.level}'")
        self.level = self.level.upper()
        return self


class EngineSettings(BaseModel):
    """Top-level engine configuration file."""
    mqtt: MQTTSettings = Field(..., description="Point broker connection.")
    runner: RunnerSettings = Field(default_factory=RunnerSettings, description="Scheduling and timeout settings.")
    store: StoreSettings = Field(..., description="Where comparison memory definitions live.")
    logging: LoggingSettings = Field(default_factory=LoggingSettings, description="Logging settings.")
    secrets_file: Optional[str] = Field(None, description="Optional YAML file with MQTT credentials, relative to this file.")
    model_config = {"extra": "forbid"}


def _load_yaml_mapping(path: Path, description: str) -> Dict[str, Any]:
    if not path.is_file():
        raise EngineSettingsError(f"{description} file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise EngineSettingsError(f"Error parsing {description} file {path}: {e}") from e
    if not isinstance(data, dict):
        raise EngineSettingsError(f"{description} file ({path}) must contain a mapping.")
    return data


def load_engine_settings(config_path: str | Path) -> EngineSettings:
    """
    Loads and validates the engine settings file.

    Relative paths inside the file (definitions_dir, secrets_file) are resolved
    against the directory of the settings file. Credentials from the secrets
    file override any inline username/password.

    Raises:
        EngineSettingsError: if a file is missing or does not validate.
    """
    config_path = Path(config_path).resolve()
    config_dir = config_path.parent
    raw = _load_yaml_mapping(config_path, "engine settings")
    logger.info(f"Loaded engine settings from {config_path}")

    try:
        settings = EngineSettings.model_validate(raw)
    except ValidationError as e:
        raise EngineSettingsError(f"Invalid engine settings in {config_path}:\n{e}") from e

    definitions_dir = Path(settings.store.definitions_dir)
    if not definitions_dir.is_absolute():
        settings.store.definitions_dir = str((config_dir / definitions_dir).resolve())

    if settings.secrets_file:
        secrets_path = Path(settings.secrets_file)
        if not secrets_path.is_absolute():
            secrets_path = (config_dir / secrets_path).resolve()
        try:
            secrets = EngineSecrets.model_validate(_load_yaml_mapping(secrets_path, "secrets"))
        except ValidationError as e:
            raise EngineSettingsError(f"Invalid secrets file {secrets_path}:\n{e}") from e
        settings.mqtt.username = secrets.mqtt.username
        settings.mqtt.password = secrets.mqtt.password
        logger.info(f"MQTT credentials taken from {secrets_path}")

    return settings
