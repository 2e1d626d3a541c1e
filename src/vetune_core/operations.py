"""Selection-based table editing operations.

Every operation validates its selection up front, refuses to touch locked
cells, and returns a new :class:`~vetune_core.grid.TableGrid`.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum
import math
from typing import Collection

from vetune_core.errors import ValidationError
from vetune_core.grid import Cell, TableGrid, normalise_selection, reject_locked

__all__ = [
    "FillDirection",
    "InterpolationAxis",
    "add_offset",
    "fill_region",
    "interpolate_linear",
    "scale",
    "set_equal",
]


class InterpolationAxis(str, Enum):
    ROW = "row"
    COL = "col"


class FillDirection(str, Enum):
    RIGHT = "right"
    DOWN = "down"


def _finite(name: str, value: float) -> float:
    numeric = float(value)
    if not math.isfinite(numeric):
        raise ValidationError(f"{name} must be finite, got {value!r}")
    return numeric


def _prepare(
    grid: TableGrid, selection: Iterable[Cell], locked: Collection[Cell] | None
) -> tuple[Cell, ...]:
    cells = normalise_selection(grid, selection)
    reject_locked(cells, locked)
    return cells


def scale(
    grid: TableGrid,
    selection: Iterable[Cell],
    factor: float,
    *,
    locked: Collection[Cell] | None = None,
) -> TableGrid:
    """Multiply each selected cell by ``factor``."""

    multiplier = _finite("factor", factor)
    cells = _prepare(grid, selection, locked)
    result = grid.copy_values()
    for row, col in cells:
        result[row, col] *= multiplier
    return grid.with_values(result)


def set_equal(
    grid: TableGrid,
    selection: Iterable[Cell],
    *,
    locked: Collection[Cell] | None = None,
) -> TableGrid:
    """Assign the mean of the selected cells to every selected cell."""

    cells = _prepare(grid, selection, locked)
    mean = math.fsum(grid[cell] for cell in cells) / len(cells)
    result = grid.copy_values()
    for row, col in cells:
        result[row, col] = mean
    return grid.with_values(result)


def add_offset(
    grid: TableGrid,
    selection: Iterable[Cell],
    offset: float,
    *,
    locked: Collection[Cell] | None = None,
) -> TableGrid:
    delta = _finite("offset", offset)
    cells = _prepare(grid, selection, locked)
    result = grid.copy_values()
    for row, col in cells:
        result[row, col] += delta
    return grid.with_values(result)


def _bounds(cells: tuple[Cell, ...]) -> tuple[int, int, int, int]:
    rows = [row for row, _ in cells]
    cols = [col for _, col in cells]
    return min(rows), max(rows), min(cols), max(cols)


def interpolate_linear(
    grid: TableGrid,
    selection: Iterable[Cell],
    axis: InterpolationAxis | str = InterpolationAxis.ROW,
    *,
    locked: Collection[Cell] | None = None,
) -> TableGrid:
    """Linearly interpolate selected cells between the selection's edges.

    With ``ROW`` each row is interpolated between its values at the leftmost
    and rightmost selected columns; ``COL`` does the same vertically.  Anchors
    are read from the input grid even when they are not selected themselves.
    """

    direction = InterpolationAxis(axis)
    cells = _prepare(grid, selection, locked)
    min_row, max_row, min_col, max_col = _bounds(cells)
    source = grid.values
    result = grid.copy_values()
    for row, col in cells:
        if direction is InterpolationAxis.ROW:
            span = max_col - min_col
            if not span:
                continue
            start, end = float(source[row, min_col]), float(source[row, max_col])
            fraction = (col - min_col) / span
        else:
            span = max_row - min_row
            if not span:
                continue
            start, end = float(source[min_row, col]), float(source[max_row, col])
            fraction = (row - min_row) / span
        result[row, col] = start + (end - start) * fraction
    return grid.with_values(result)


def fill_region(
    grid: TableGrid,
    selection: Iterable[Cell],
    direction: FillDirection | str = FillDirection.RIGHT,
    *,
    locked: Collection[Cell] | None = None,
) -> TableGrid:
    """Copy the first selected column rightwards (or first row downwards)."""

    fill = FillDirection(direction)
    cells = _prepare(grid, selection, locked)
    min_row, _, min_col, _ = _bounds(cells)
    source = grid.values
    result = grid.copy_values()
    for row, col in cells:
        if fill is FillDirection.RIGHT:
            result[row, col] = source[row, min_col]
        else:
            result[row, col] = source[min_row, col]
    return grid.with_values(result)
