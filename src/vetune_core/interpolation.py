"""Bilinear interpolation, corner interpolation and axis rebinning.

All lookups share :func:`locate`, a bracket search that works on ascending
and descending axes alike.  Exact bin hits short-circuit to the stored
row/column so no interpolation error is introduced, queries outside the axis
range raise :class:`~vetune_core.errors.OutOfRangeError` and zero-width
brackets raise :class:`~vetune_core.errors.NumericalError`.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
import math
from typing import Any, Collection

import numpy as np

from vetune_core.errors import NumericalError, OutOfRangeError, ValidationError
from vetune_core.grid import Cell, TableGrid, check_axis, normalise_selection, reject_locked

__all__ = [
    "bilinear",
    "interpolate",
    "interpolate_cells",
    "interpolate_curve",
    "locate",
    "lookup_clamped",
    "nearest_index",
    "rebin",
]


def _lerp(start: float, end: float, fraction: float) -> float:
    return start + (end - start) * fraction


def locate(bins: Sequence[float] | np.ndarray, value: float, *, axis: str = "x") -> tuple[int, int, float]:
    """Return ``(low_index, high_index, fraction)`` bracketing ``value``.

    ``fraction`` is measured from ``bins[low_index]`` towards
    ``bins[high_index]``.  Exact hits return the same index twice with a zero
    fraction.
    """

    array = np.asarray(bins, dtype=float)
    count = int(array.size)
    if count == 0:
        raise ValidationError(f"{axis} axis is empty")
    value = float(value)
    if not math.isfinite(value):
        raise NumericalError(f"{axis}={value!r} is not a finite coordinate", context={"axis": axis})

    if count == 1:
        if value == array[0]:
            return 0, 0, 0.0
        raise OutOfRangeError(axis, value, float(array[0]), float(array[0]))

    descending = array[-1] < array[0]
    ordered = array[::-1] if descending else array
    low_edge, high_edge = float(ordered[0]), float(ordered[-1])
    if value < low_edge or value > high_edge:
        raise OutOfRangeError(axis, value, low_edge, high_edge)

    position = int(np.searchsorted(ordered, value, side="right"))
    position = min(max(position, 1), count - 1)
    if descending:
        low_index, high_index = count - 1 - position, count - position
    else:
        low_index, high_index = position - 1, position

    low_bin = float(array[low_index])
    high_bin = float(array[high_index])
    span = high_bin - low_bin
    if span == 0.0:
        raise NumericalError(
            f"Zero-width bracket on the {axis} axis at {low_bin!r}",
            context={"axis": axis, "index": low_index},
        )
    if value == low_bin:
        return low_index, low_index, 0.0
    if value == high_bin:
        return high_index, high_index, 0.0
    return low_index, high_index, (value - low_bin) / span


def bilinear(
    x_bins: Sequence[float] | np.ndarray,
    y_bins: Sequence[float] | np.ndarray,
    values: Any,
    x: float,
    y: float,
) -> float:
    """Bilinear lookup over raw axes and a ``[row][col]`` value grid.

    Tables with a single row (or column) degrade to linear interpolation along
    the remaining axis; the coordinate of the collapsed axis is ignored.
    """

    grid = np.asarray(values, dtype=float)
    if grid.ndim != 2 or grid.shape != (len(y_bins), len(x_bins)):
        raise ValidationError(
            f"values shape {grid.shape} does not match axes ({len(y_bins)} x {len(x_bins)})"
        )
    rows, cols = grid.shape

    if rows == 1 and cols == 1:
        return float(grid[0, 0])
    if rows == 1:
        c1, c2, tx = locate(x_bins, x, axis="x")
        return _lerp(float(grid[0, c1]), float(grid[0, c2]), tx)
    if cols == 1:
        r1, r2, ty = locate(y_bins, y, axis="y")
        return _lerp(float(grid[r1, 0]), float(grid[r2, 0]), ty)

    c1, c2, tx = locate(x_bins, x, axis="x")
    r1, r2, ty = locate(y_bins, y, axis="y")
    v11 = float(grid[r1, c1])
    v12 = float(grid[r1, c2])
    v21 = float(grid[r2, c1])
    v22 = float(grid[r2, c2])
    return _lerp(_lerp(v11, v12, tx), _lerp(v21, v22, tx), ty)


def interpolate(grid: TableGrid, x: float, y: float) -> float:
    """Interpolate ``grid`` at axis coordinates ``(x, y)``."""

    return bilinear(grid.x_bins, grid.y_bins, grid.values, x, y)


def interpolate_curve(bins: Sequence[float] | np.ndarray, values: Sequence[float] | np.ndarray, x: float) -> float:
    """One-dimensional lookup sharing the bracket search of :func:`bilinear`."""

    curve = np.asarray(values, dtype=float)
    if curve.shape != (len(bins),):
        raise ValidationError("Curve values must match the number of bins")
    low, high, fraction = locate(bins, x, axis="x")
    return _lerp(float(curve[low]), float(curve[high]), fraction)


def _clamp_to_axis(bins: np.ndarray, value: float) -> float:
    low = float(np.min(bins))
    high = float(np.max(bins))
    if not math.isfinite(value):
        return low if value < 0 else high
    return min(max(value, low), high)


def lookup_clamped(grid: TableGrid, x: float, y: float) -> float:
    """Interpolate ``grid`` after clamping ``(x, y)`` to the nearest table edge."""

    return interpolate(grid, _clamp_to_axis(grid.x_bins, x), _clamp_to_axis(grid.y_bins, y))


def nearest_index(bins: Sequence[float] | np.ndarray, value: float) -> int:
    """Return the index of the bin closest to ``value`` (ties go to the lower bin)."""

    array = np.asarray(bins, dtype=float)
    count = int(array.size)
    if count == 0:
        raise ValidationError("Axis is empty")
    if count == 1:
        return 0
    descending = array[-1] < array[0]
    ordered = array[::-1] if descending else array
    position = int(np.searchsorted(ordered, value, side="left"))
    if position <= 0:
        best = 0
    elif position >= count:
        best = count - 1
    else:
        before = value - float(ordered[position - 1])
        after = float(ordered[position]) - value
        best = position if after < before else position - 1
    return count - 1 - best if descending else best


def interpolate_cells(
    grid: TableGrid,
    selection: Iterable[Cell],
    *,
    locked: Collection[Cell] | None = None,
) -> TableGrid:
    """Blend the four corners of the selection's bounding box into every selected cell."""

    cells = normalise_selection(grid, selection)
    reject_locked(cells, locked)

    rows = [row for row, _ in cells]
    cols = [col for _, col in cells]
    min_row, max_row = min(rows), max(rows)
    min_col, max_col = min(cols), max(cols)

    source = grid.values
    top_left = float(source[min_row, min_col])
    top_right = float(source[min_row, max_col])
    bottom_left = float(source[max_row, min_col])
    bottom_right = float(source[max_row, max_col])

    height = max_row - min_row
    width = max_col - min_col
    result = grid.copy_values()
    for row, col in cells:
        ty = (row - min_row) / height if height else 0.0
        tx = (col - min_col) / width if width else 0.0
        result[row, col] = _lerp(
            _lerp(top_left, top_right, tx),
            _lerp(bottom_left, bottom_right, tx),
            ty,
        )
    return grid.with_values(result)


def rebin(
    grid: TableGrid,
    new_x_bins: Iterable[float],
    new_y_bins: Iterable[float],
    *,
    locked: Collection[Cell] | None = None,
) -> TableGrid:
    """Resample ``grid`` onto new axes, clamping to the edges outside the old range.

    With ``locked`` cells the resample is only allowed when it keeps the
    table shape and leaves every locked value untouched.
    """

    x_axis = check_axis("new_x_bins", new_x_bins)
    y_axis = check_axis("new_y_bins", new_y_bins)
    result = np.empty((y_axis.size, x_axis.size), dtype=float)
    for row, y in enumerate(y_axis):
        for col, x in enumerate(x_axis):
            try:
                result[row, col] = interpolate(grid, float(x), float(y))
            except NumericalError:
                result[row, col] = lookup_clamped(grid, float(x), float(y))

    if locked:
        if result.shape != grid.shape:
            reject_locked(sorted(locked), locked)
        changed = zip(*np.nonzero(result != grid.values))
        reject_locked(((int(row), int(col)) for row, col in changed), locked)
    return TableGrid(x_axis, y_axis, result)
