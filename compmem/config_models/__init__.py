"""Pydantic models for comparison memory definitions and engine settings."""

from .comparison_models import (
    CompareType,
    ComparisonGroup,
    ComparisonMemory,
    ComparisonMode,
    GroupOperator,
)
from .engine_settings import EngineSettings, load_engine_settings

__all__ = [
    "CompareType",
    "ComparisonGroup",
    "ComparisonMemory",
    "ComparisonMode",
    "GroupOperator",
    "EngineSettings",
    "load_engine_settings",
]
