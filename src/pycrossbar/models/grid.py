"""Measurement grid model and the per-cell state cycle."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from pydantic import Field, field_validator, model_validator

from pycrossbar._constants import SUPPORTED_SIZES
from pycrossbar.models._base import CrossbarBaseModel, Instant, utcnow


class MeasurementState(enum.IntEnum):
    """Measurement outcome of a single crossbar device."""

    UNMEASURED = 0
    SUCCESS = 1
    FAILED = 2
    MISALIGNED = 3

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS: dict[MeasurementState, str] = {
    MeasurementState.UNMEASURED: "Unmeasured",
    MeasurementState.SUCCESS: "Successful",
    MeasurementState.FAILED: "Failed",
    MeasurementState.MISALIGNED: "Misaligned",
}

STATE_COUNT = len(MeasurementState)


def next_state(state: int) -> MeasurementState:
    """Return the state a cell moves to when it is clicked.

    ``next(state) = (state + 1) mod 4``; four applications return to the
    starting state.
    """
    return MeasurementState((int(state) + 1) % STATE_COUNT)


def _normalize_timestamps(value: Any, cell_count: int) -> list[Any] | None:
    """Expand a stored timestamps array to exactly *cell_count* slots.

    Realtime databases drop ``null`` array members, so a sparse array can
    come back shortened or as an ``{"index": value}`` object. A list
    without any non-null member is treated as absent.
    """
    if value is None:
        return None
    slots: list[Any] = [None] * cell_count
    if isinstance(value, dict):
        for raw_index, item in value.items():
            try:
                index = int(raw_index)
            except (TypeError, ValueError):
                continue
            if 0 <= index < cell_count:
                slots[index] = item
    elif isinstance(value, list):
        for index, item in enumerate(value[:cell_count]):
            slots[index] = item
    else:
        return value  # type: ignore[no-any-return]
    if all(item is None for item in slots):
        return None
    return slots


class MeasurementGrid(CrossbarBaseModel):
    """A named ``size × size`` array of device measurement states.

    Cell ``i`` sits at ``(row, col) = (i // size, i % size)``. ``name``
    and ``size`` never change after creation; ``cells`` always holds
    exactly ``size²`` values in ``0..3``.
    """

    name: str
    size: int
    cells: list[int] = Field(alias="measurements")
    cell_timestamps: list[Instant | None] | None = Field(default=None, alias="timestamps")
    created_at: Instant = Field(default_factory=utcnow)
    last_modified: Instant = Field(default_factory=utcnow)

    @classmethod
    def new(cls, name: str, size: int, *, now: datetime | None = None) -> MeasurementGrid:
        """Build an all-unmeasured grid stamped with *now*."""
        stamp = now or utcnow()
        return cls(
            name=name,
            size=size,
            cells=[int(MeasurementState.UNMEASURED)] * (size * size),
            created_at=stamp,
            last_modified=stamp,
        )

    @model_validator(mode="before")
    @classmethod
    def _expand_timestamps(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        size = values.get("size")
        if not isinstance(size, int) or size <= 0:
            return values
        for key in ("timestamps", "cell_timestamps"):
            if key in values:
                working = dict(values)
                working[key] = _normalize_timestamps(values[key], size * size)
                return working
        return values

    @field_validator("name")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        name = value.strip()
        if not name:
            raise ValueError("name must be non-empty")
        return name

    @field_validator("size")
    @classmethod
    def _check_size(cls, value: int) -> int:
        if value not in SUPPORTED_SIZES:
            raise ValueError(f"size must be one of {SUPPORTED_SIZES}, got {value}")
        return value

    @model_validator(mode="after")
    def _check_cells(self) -> MeasurementGrid:
        expected = self.size * self.size
        if len(self.cells) != expected:
            raise ValueError(f"expected {expected} measurements for size {self.size}, got {len(self.cells)}")
        for index, value in enumerate(self.cells):
            if isinstance(value, bool) or not 0 <= value < STATE_COUNT:
                raise ValueError(f"measurement {index} has invalid state {value!r}")
        return self

    @property
    def cell_count(self) -> int:
        return self.size * self.size

    def coordinates(self, index: int) -> tuple[int, int]:
        """``(row, col)`` of linear *index*."""
        return divmod(index, self.size)

    def state_at(self, index: int) -> MeasurementState:
        return MeasurementState(self.cells[index])

    def ensure_timestamps(self) -> list[datetime | None]:
        """Materialize the per-cell timestamp list on first use."""
        if self.cell_timestamps is None:
            self.cell_timestamps = [None] * self.cell_count
        return self.cell_timestamps

    def to_document(self) -> dict[str, Any]:
        """Wire form pushed to a remote store (camelCase, ISO ``Z`` instants)."""
        stamps = self.cell_timestamps
        exclude = {"cell_timestamps"} if stamps is None or all(item is None for item in stamps) else None
        return self.model_dump(mode="json", by_alias=True, exclude=exclude)
