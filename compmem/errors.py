# compmem/errors.py

from typing import List, TYPE_CHECKING

if TYPE_CHECKING:
    from .validation.comparison import FieldError


class CompMemError(Exception):
    """Base class for all comparison memory errors."""
    pass


class ConfigurationError(CompMemError):
    """A comparison memory definition failed validation."""

    def __init__(self, errors: List['FieldError'], memory_id: str | None = None):
        self.errors = list(errors)
        self.memory_id = memory_id
        summary = "; ".join(f"{e.field}: {e.message}" for e in self.errors)
        prefix = f"Comparison memory '{memory_id}'" if memory_id else "Comparison memory"
        super().__init__(f"{prefix} is invalid: {summary}")


class InputUnavailable(CompMemError):
    """A point read failed, timed out, or returned an unusable value."""

    def __init__(self, point_id: str, reason: str):
        self.point_id = point_id
        self.reason = reason
        super().__init__(f"Input '{point_id}' unavailable: {reason}")


class OutputWriteFailure(CompMemError):
    """The commit write to the output point did not succeed."""

    def __init__(self, point_id: str, value: str):
        self.point_id = point_id
        self.value = value
        super().__init__(f"Write of '{value}' to output '{point_id}' failed")


class EngineFault(CompMemError):
    """Unexpected internal error while evaluating a rule."""
    pass


class EngineSettingsError(CompMemError):
    """Engine settings file is missing or invalid."""
    pass


class StoreError(CompMemError):
    """Definition store could not read or write a definition."""
    pass
