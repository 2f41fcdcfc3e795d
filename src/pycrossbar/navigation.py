"""Electrode-coordinate addressing of crossbar devices.

A device sits where bottom electrode ``B`` (row) crosses top electrode
``T`` (column); its linear index is ``B * size + T``.
"""

from __future__ import annotations

import enum

from pycrossbar.exceptions import InvalidCoordinateError


class Direction(enum.StrEnum):
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"


def _parse_electrode(value: int | str, label: str, size: int) -> int:
    if isinstance(value, bool):
        raise InvalidCoordinateError(f"{label} must be a number, got {value!r}")
    if isinstance(value, str):
        try:
            value = int(value.strip())
        except ValueError as exc:
            raise InvalidCoordinateError(f"{label} must be a number, got {value!r}") from exc
    if not isinstance(value, int):
        raise InvalidCoordinateError(f"{label} must be a number, got {value!r}")
    if not 0 <= value < size:
        raise InvalidCoordinateError(f"{label} must be between 0 and {size - 1}, got {value}")
    return value


def device_index(bottom: int | str, top: int | str, size: int) -> int:
    """Linear index of device ``(bottom, top)`` in a ``size × size`` grid.

    Raises
    ------
    InvalidCoordinateError
        If either electrode is not a number or lies outside ``[0, size)``.
    """
    row = _parse_electrode(bottom, "B", size)
    col = _parse_electrode(top, "T", size)
    return row * size + col


def coordinates(index: int, size: int) -> tuple[int, int]:
    """``(bottom, top)`` of linear *index*."""
    if not 0 <= index < size * size:
        raise InvalidCoordinateError(f"Index {index} outside [0, {size * size})")
    return divmod(index, size)


def step(index: int, direction: Direction | str, size: int) -> int:
    """Index of the neighbour in *direction*; stays put at the grid edge."""
    row, col = coordinates(index, size)
    direction = Direction(direction)
    if direction == Direction.UP and row > 0:
        return index - size
    if direction == Direction.DOWN and row < size - 1:
        return index + size
    if direction == Direction.LEFT and col > 0:
        return index - 1
    if direction == Direction.RIGHT and col < size - 1:
        return index + 1
    return index
