"""Export and import of measurement grids as JSON documents.

The export document carries the flat cell list, its row-major 2D form,
per-state counts and the ``[row, col]`` coordinates of every measured
device. Import accepts the same shape and needs only ``name``, ``size``
and ``measurements.raw``.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from pycrossbar.exceptions import InvalidFormatError
from pycrossbar.models._base import utcnow
from pycrossbar.models.export import Coordinate, ExportDocument, MeasurementsBlock, Statistics
from pycrossbar.models.grid import MeasurementGrid, MeasurementState


def compute_statistics(cells: Sequence[int]) -> Statistics:
    counts = {state: 0 for state in MeasurementState}
    for value in cells:
        counts[MeasurementState(value)] += 1
    return Statistics(
        total=len(cells),
        successful=counts[MeasurementState.SUCCESS],
        failed=counts[MeasurementState.FAILED],
        misaligned=counts[MeasurementState.MISALIGNED],
        unmeasured=counts[MeasurementState.UNMEASURED],
    )


def to_rows(cells: Sequence[int], size: int) -> list[list[int]]:
    """Row-major 2D form: ``rows[r][c] == cells[r * size + c]``."""
    return [list(cells[row * size : (row + 1) * size]) for row in range(size)]


def device_coordinates(cells: Sequence[int], size: int) -> dict[MeasurementState, list[Coordinate]]:
    """Coordinates of every measured cell, grouped by state, in index order."""
    groups: dict[MeasurementState, list[Coordinate]] = {
        MeasurementState.SUCCESS: [],
        MeasurementState.FAILED: [],
        MeasurementState.MISALIGNED: [],
    }
    for index, value in enumerate(cells):
        state = MeasurementState(value)
        if state == MeasurementState.UNMEASURED:
            continue
        groups[state].append(divmod(index, size))
    return groups


def build_export(grid: MeasurementGrid) -> ExportDocument:
    coordinates = device_coordinates(grid.cells, grid.size)
    return ExportDocument(
        name=grid.name,
        size=grid.size,
        created_at=grid.created_at,
        last_modified=grid.last_modified,
        measurements=MeasurementsBlock(raw=list(grid.cells), grid=to_rows(grid.cells, grid.size)),
        statistics=compute_statistics(grid.cells),
        successful_devices=coordinates[MeasurementState.SUCCESS],
        failed_devices=coordinates[MeasurementState.FAILED],
        misaligned_devices=coordinates[MeasurementState.MISALIGNED],
    )


def export_dict(grid: MeasurementGrid) -> dict[str, Any]:
    return build_export(grid).model_dump(mode="json", by_alias=True)


def dumps(grid: MeasurementGrid, *, indent: int | None = 2) -> str:
    """Render the export document as JSON text."""
    return json.dumps(export_dict(grid), indent=indent)


def export_filename(grid: MeasurementGrid) -> str:
    return f"{grid.name}_export.json"


def parse_import(
    data: str | bytes | Mapping[str, Any],
    *,
    now: datetime | None = None,
) -> MeasurementGrid:
    """Build a grid from an export document.

    ``createdAt`` is kept when present; ``lastModified`` becomes *now*.
    Per-cell timestamps are not imported.

    Raises
    ------
    InvalidFormatError
        If the text is not JSON, required fields are missing, or the
        measurements do not describe a valid grid.
    """
    if isinstance(data, (str, bytes, bytearray)):
        try:
            data = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise InvalidFormatError(f"Import is not valid JSON: {exc}") from exc
    if not isinstance(data, Mapping):
        raise InvalidFormatError("Import document must be a JSON object")

    measurements = data.get("measurements")
    raw = measurements.get("raw") if isinstance(measurements, Mapping) else None
    if not data.get("name") or not data.get("size") or raw is None:
        raise InvalidFormatError("Import document requires name, size and measurements.raw")
    if not isinstance(raw, list):
        raise InvalidFormatError("measurements.raw must be a list")

    stamp = now or utcnow()
    try:
        return MeasurementGrid(
            name=data["name"],
            size=data["size"],
            cells=list(raw),
            created_at=data.get("createdAt") or stamp,
            last_modified=stamp,
        )
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'document'}: {err['msg']}" for err in exc.errors()
        )
        raise InvalidFormatError(f"Invalid import document: {details}") from exc
