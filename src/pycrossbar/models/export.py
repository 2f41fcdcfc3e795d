"""Export document models."""

from __future__ import annotations

from pydantic import ConfigDict, Field

from pycrossbar.models._base import CrossbarBaseModel, Instant
from pycrossbar.models.grid import MeasurementState

Coordinate = tuple[int, int]


class Statistics(CrossbarBaseModel):
    """Per-state device counts of one grid."""

    model_config = ConfigDict(frozen=True)

    total: int = 0
    successful: int = 0
    failed: int = 0
    misaligned: int = 0
    unmeasured: int = 0

    def count(self, state: MeasurementState) -> int:
        return {
            MeasurementState.UNMEASURED: self.unmeasured,
            MeasurementState.SUCCESS: self.successful,
            MeasurementState.FAILED: self.failed,
            MeasurementState.MISALIGNED: self.misaligned,
        }[MeasurementState(state)]

    def percent(self, state: MeasurementState) -> float:
        """Share of *state* in ``[0, 100]``; ``0.0`` for an empty grid."""
        if self.total <= 0:
            return 0.0
        return self.count(state) / self.total * 100

    def percentages(self) -> dict[str, str]:
        """One-decimal percentage strings keyed like the count fields."""
        return {
            "successful": f"{self.percent(MeasurementState.SUCCESS):.1f}",
            "failed": f"{self.percent(MeasurementState.FAILED):.1f}",
            "misaligned": f"{self.percent(MeasurementState.MISALIGNED):.1f}",
            "unmeasured": f"{self.percent(MeasurementState.UNMEASURED):.1f}",
        }


class MeasurementsBlock(CrossbarBaseModel):
    raw: list[int]
    grid: list[list[int]] = Field(default_factory=list)


class ExportDocument(CrossbarBaseModel):
    """The JSON document written by an export and accepted by an import."""

    name: str
    size: int
    created_at: Instant
    last_modified: Instant
    measurements: MeasurementsBlock
    statistics: Statistics
    successful_devices: list[Coordinate] = Field(default_factory=list)
    failed_devices: list[Coordinate] = Field(default_factory=list)
    misaligned_devices: list[Coordinate] = Field(default_factory=list)
