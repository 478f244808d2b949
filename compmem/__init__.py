"""Comparison memory engine: voting groups of point comparisons driving a debounced digital output."""

__version__ = "0.1.0"
