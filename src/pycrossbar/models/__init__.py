"""Typed models for crossbar entries and export documents."""

from pycrossbar.models.export import ExportDocument, MeasurementsBlock, Statistics
from pycrossbar.models.grid import MeasurementGrid, MeasurementState, next_state

__all__ = [
    "ExportDocument",
    "MeasurementGrid",
    "MeasurementState",
    "MeasurementsBlock",
    "Statistics",
    "next_state",
]
