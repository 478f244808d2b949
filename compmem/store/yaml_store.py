# compmem/store/yaml_store.py

import enum
import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Callable, List, Optional

import yaml
from pydantic import ValidationError

from ..config_models.comparison_models import ComparisonMemory
from ..errors import StoreError
from ..validation.comparison import ensure_valid, validate

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class ChangeKind(str, enum.Enum):
    SAVED = "saved"
    DELETED = "deleted"


# (kind, memory_id, memory or None when deleted)
ChangeHandler = Callable[[ChangeKind, str, Optional[ComparisonMemory]], None]


def load_definition_file(path: Path) -> ComparisonMemory:
    """
    Parses one YAML definition file into a ComparisonMemory (not validated).

    Raises:
        StoreError: if the file is unreadable, not YAML, or does not fit the model.
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise StoreError(f"Error loading definition file {path}: {e}") from e
    if not isinstance(data, dict):
        raise StoreError(f"Definition file {path} must contain a mapping.")
    try:
        return ComparisonMemory.model_validate(data)
    except ValidationError as e:
        raise StoreError(f"Definition file {path} does not match the ComparisonMemory model:\n{e}") from e


class YamlDefinitionStore:
    """
    Keeps comparison memory definitions as one YAML file per memory.

    save() refuses definitions that do not validate; load_all() skips (and
    logs) any file that fails to parse or validate, so nothing invalid is
    handed on to the engine.
    """

    def __init__(self, definitions_dir: str | Path):
        self._dir = Path(definitions_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._handlers: List[ChangeHandler] = []
        self._lock = threading.Lock()

    @property
    def directory(self) -> Path:
        return self._dir

    def _path_for(self, memory_id: str) -> Path:
        if not _SAFE_ID.match(memory_id):
            raise StoreError(f"Comparison memory id '{memory_id}' cannot be used as a file name.")
        return self._dir / f"{memory_id}.yaml"

    def register_change_handler(self, handler: ChangeHandler) -> None:
        logger.info(f"Registering definition change handler {getattr(handler, '__name__', repr(handler))}")
        self._handlers.append(handler)

    def _notify(self, kind: ChangeKind, memory_id: str, memory: Optional[ComparisonMemory]) -> None:
        for handler in self._handlers:
            try:
                handler(kind, memory_id, memory)
            except Exception as e:
                logger.error(f"Error in definition change handler for {memory_id}: {e}", exc_info=True)

    # --- Reads ---

    def load_all(self) -> List[ComparisonMemory]:
        memories: List[ComparisonMemory] = []
        for path in sorted(self._dir.glob("*.yaml")):
            try:
                memory = load_definition_file(path)
            except StoreError as e:
                logger.error(f"Skipping {path.name}: {e}")
                continue
            errors = validate(memory)
            if errors:
                details = "; ".join(f"{err.field}: {err.message}" for err in errors)
                logger.error(f"Skipping {path.name}: definition is invalid ({details})")
                continue
            if memory.id != path.stem:
                logger.warning(f"{path.name} holds comparison memory '{memory.id}'; file name and id differ.")
            memories.append(memory)
        logger.debug(f"Loaded {len(memories)} comparison memories from {self._dir}")
        return memories

    def list_ids(self) -> List[str]:
        """Ids of every definition file present, including ones that do not load."""
        return sorted(path.stem for path in self._dir.glob("*.yaml"))

    def get(self, memory_id: str) -> Optional[ComparisonMemory]:
        path = self._path_for(memory_id)
        if not path.is_file():
            return None
        return load_definition_file(path)

    # --- Writes ---

    def save(self, memory: ComparisonMemory) -> ComparisonMemory:
        """
        Validates and writes a definition, then notifies change handlers.

        Raises:
            ConfigurationError: if the definition does not validate.
            StoreError: if the file cannot be written.
        """
        ensure_valid(memory)
        path = self._path_for(memory.id)
        data = memory.model_dump(mode="json")
        with self._lock:
            fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=f".{memory.id}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    yaml.safe_dump(data, f, sort_keys=False)
                os.replace(tmp_name, path)
            except OSError as e:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise StoreError(f"Error writing definition {path}: {e}") from e
        logger.info(f"Saved comparison memory '{memory.display_name()}' to {path}")
        self._notify(ChangeKind.SAVED, memory.id, memory)
        return memory

    def delete(self, memory_id: str) -> bool:
        path = self._path_for(memory_id)
        with self._lock:
            if not path.is_file():
                logger.warning(f"Comparison memory '{memory_id}' not found; nothing deleted.")
                return False
            try:
                path.unlink()
            except OSError as e:
                raise StoreError(f"Error deleting definition {path}: {e}") from e
        logger.info(f"Deleted comparison memory '{memory_id}'")
        self._notify(ChangeKind.DELETED, memory_id, None)
        return True
