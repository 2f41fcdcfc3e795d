from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest

from pycrossbar.exceptions import InvalidFormatError
from pycrossbar.export import (
    build_export,
    compute_statistics,
    dumps,
    export_dict,
    export_filename,
    parse_import,
    to_rows,
)
from pycrossbar.models.grid import MeasurementGrid, MeasurementState


def _dt() -> datetime:
    return datetime(2026, 1, 1, tzinfo=UTC)


def _wafer_a() -> MeasurementGrid:
    grid = MeasurementGrid.new("Wafer-A", 8, now=_dt())
    # B0/T5 clicked three times.
    grid.cells[5] = int(MeasurementState.MISALIGNED)
    return grid


def test_export_of_single_misaligned_device() -> None:
    doc = export_dict(_wafer_a())

    assert doc["name"] == "Wafer-A"
    assert doc["size"] == 8
    assert doc["createdAt"] == "2026-01-01T00:00:00.000Z"
    assert doc["statistics"] == {
        "total": 64,
        "successful": 0,
        "failed": 0,
        "misaligned": 1,
        "unmeasured": 63,
    }
    assert doc["misalignedDevices"] == [[0, 5]]
    assert doc["successfulDevices"] == []
    assert doc["failedDevices"] == []
    assert doc["measurements"]["raw"][5] == 3
    assert doc["measurements"]["grid"][0][5] == 3


def test_statistics_partition_the_grid() -> None:
    grid = MeasurementGrid.new("Wafer-B", 16, now=_dt())
    for index in range(grid.cell_count):
        grid.cells[index] = index % 4
    export = build_export(grid)
    stats = export.statistics

    assert stats.successful + stats.failed + stats.misaligned + stats.unmeasured == stats.total == 256
    device_sets = [
        set(export.successful_devices),
        set(export.failed_devices),
        set(export.misaligned_devices),
    ]
    assert sum(len(s) for s in device_sets) == stats.total - stats.unmeasured
    successful, failed, misaligned = device_sets
    assert not successful & failed
    assert not failed & misaligned
    assert not successful & misaligned

    listed = {row * 16 + col for row, col in successful | failed | misaligned}
    assert listed == {index for index, value in enumerate(grid.cells) if value != 0}
    for state, devices in (
        (MeasurementState.SUCCESS, export.successful_devices),
        (MeasurementState.FAILED, export.failed_devices),
        (MeasurementState.MISALIGNED, export.misaligned_devices),
    ):
        indices = [row * 16 + col for row, col in devices]
        assert indices == sorted(indices)
        assert all(grid.cells[index] == state for index in indices)


def test_percentages_are_one_decimal_strings() -> None:
    stats = compute_statistics([1, 1, 2, 0, 0, 0])
    assert stats.percentages() == {
        "successful": "33.3",
        "failed": "16.7",
        "misaligned": "0.0",
        "unmeasured": "50.0",
    }
    assert compute_statistics([]).percent(MeasurementState.SUCCESS) == 0.0


def test_rows_are_row_major() -> None:
    cells = list(range(4)) * 4
    rows = to_rows([c % 4 for c in range(16)], 4)
    assert rows[1] == [0, 1, 2, 3]
    assert [value for row in rows for value in row] == cells


def test_export_then_import_then_export_is_stable() -> None:
    grid = _wafer_a()
    grid.cells[63] = 1
    later = datetime(2026, 2, 1, tzinfo=UTC)

    imported = parse_import(dumps(grid), now=later)

    assert imported.name == grid.name
    assert imported.cells == grid.cells
    assert imported.created_at == grid.created_at
    assert imported.last_modified == later
    assert imported.cell_timestamps is None

    original, reexported = export_dict(grid), export_dict(imported)
    assert reexported["statistics"] == original["statistics"]
    assert reexported["measurements"]["raw"] == original["measurements"]["raw"]
    assert reexported["measurements"]["grid"] == original["measurements"]["grid"]


def test_import_minimal_document_defaults_created_at() -> None:
    raw = [0] * 64
    imported = parse_import({"name": "Wafer-C", "size": 8, "measurements": {"raw": raw}}, now=_dt())
    assert imported.created_at == _dt()


@pytest.mark.parametrize(
    "data",
    [
        "not json",
        "[1, 2]",
        json.dumps({"size": 8, "measurements": {"raw": [0] * 64}}),
        json.dumps({"name": "x", "measurements": {"raw": [0] * 64}}),
        json.dumps({"name": "x", "size": 8}),
        json.dumps({"name": "x", "size": 8, "measurements": {"raw": "0000"}}),
        json.dumps({"name": "x", "size": 8, "measurements": {"raw": [0] * 10}}),
        json.dumps({"name": "x", "size": 8, "measurements": {"raw": [5] * 64}}),
        json.dumps({"name": "x", "size": 9, "measurements": {"raw": [0] * 81}}),
    ],
)
def test_import_rejects_invalid_documents(data: str) -> None:
    with pytest.raises(InvalidFormatError):
        parse_import(data)


def test_export_filename() -> None:
    assert export_filename(_wafer_a()) == "Wafer-A_export.json"
