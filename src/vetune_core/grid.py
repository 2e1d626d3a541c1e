"""Two-dimensional calibration table model.

A :class:`TableGrid` couples two strictly monotonic axes with a rectangular
value grid indexed ``[row][col]``: rows follow ``y_bins`` and columns follow
``x_bins``.  Grids are value objects; every operation in :mod:`vetune_core`
returns a new grid instead of mutating the one it was given.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
import operator
from typing import Any, Collection, Tuple

import numpy as np

from vetune_core.errors import LockedCellError, ValidationError

__all__ = [
    "Cell",
    "TableGrid",
    "check_axis",
    "normalise_selection",
    "reject_locked",
]


Cell = Tuple[int, int]


def check_axis(name: str, bins: Iterable[Any]) -> np.ndarray:
    """Return ``bins`` as a float array after validating strict monotonicity."""

    try:
        axis = np.asarray(list(bins), dtype=float)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must contain real numbers") from exc
    if axis.ndim != 1 or axis.size == 0:
        raise ValidationError(f"{name} must be a non-empty sequence")
    if not np.all(np.isfinite(axis)):
        raise ValidationError(f"{name} contains non-finite values")
    if axis.size > 1:
        steps = np.diff(axis)
        if not (np.all(steps > 0.0) or np.all(steps < 0.0)):
            raise ValidationError(
                f"{name} must be strictly ascending or strictly descending",
                context={"axis": name},
            )
    return axis


@dataclass(frozen=True, eq=False)
class TableGrid:
    """Calibration table with validated axes and finite values."""

    x_bins: np.ndarray
    y_bins: np.ndarray
    values: np.ndarray

    def __post_init__(self) -> None:
        x_axis = check_axis("x_bins", self.x_bins)
        y_axis = check_axis("y_bins", self.y_bins)
        try:
            grid = np.array(self.values, dtype=float)
        except (TypeError, ValueError) as exc:
            raise ValidationError("values must be a rectangular grid of numbers") from exc
        if grid.shape != (y_axis.size, x_axis.size):
            raise ValidationError(
                f"values shape {grid.shape} does not match axes "
                f"({y_axis.size} rows x {x_axis.size} cols)",
                context={"rows": y_axis.size, "cols": x_axis.size},
            )
        if not np.all(np.isfinite(grid)):
            raise ValidationError("values must all be finite")
        for array in (x_axis, y_axis, grid):
            array.setflags(write=False)
        object.__setattr__(self, "x_bins", x_axis)
        object.__setattr__(self, "y_bins", y_axis)
        object.__setattr__(self, "values", grid)

    @classmethod
    def from_rows(
        cls,
        x_bins: Sequence[float],
        y_bins: Sequence[float],
        rows: Sequence[Sequence[float]],
    ) -> "TableGrid":
        return cls(np.asarray(x_bins), np.asarray(y_bins), np.asarray(rows, dtype=float))

    @classmethod
    def filled(cls, x_bins: Sequence[float], y_bins: Sequence[float], value: float) -> "TableGrid":
        return cls(
            np.asarray(x_bins),
            np.asarray(y_bins),
            np.full((len(y_bins), len(x_bins)), float(value)),
        )

    @property
    def shape(self) -> tuple[int, int]:
        rows, cols = self.values.shape
        return int(rows), int(cols)

    @property
    def rows(self) -> int:
        return self.shape[0]

    @property
    def cols(self) -> int:
        return self.shape[1]

    def __getitem__(self, cell: Cell) -> float:
        row, col = cell
        return float(self.values[row, col])

    def contains(self, cell: Cell) -> bool:
        row, col = cell
        return 0 <= row < self.rows and 0 <= col < self.cols

    def coordinates(self, cell: Cell) -> tuple[float, float]:
        """Return the ``(x, y)`` axis coordinates of ``cell``."""

        row, col = cell
        return float(self.x_bins[col]), float(self.y_bins[row])

    def with_values(self, values: Any) -> "TableGrid":
        return TableGrid(self.x_bins, self.y_bins, values)

    def copy_values(self) -> np.ndarray:
        """Return a writable copy of the value grid."""

        return np.array(self.values, dtype=float, copy=True)

    def to_lists(self) -> dict[str, list[Any]]:
        return {
            "x_bins": self.x_bins.tolist(),
            "y_bins": self.y_bins.tolist(),
            "values": self.values.tolist(),
        }

    def allclose(self, other: "TableGrid", *, rel_tol: float = 1e-9, abs_tol: float = 1e-9) -> bool:
        if self.shape != other.shape:
            return False
        return bool(
            np.allclose(self.x_bins, other.x_bins, rtol=rel_tol, atol=abs_tol)
            and np.allclose(self.y_bins, other.y_bins, rtol=rel_tol, atol=abs_tol)
            and np.allclose(self.values, other.values, rtol=rel_tol, atol=abs_tol)
        )

    def __repr__(self) -> str:
        return f"TableGrid(rows={self.rows}, cols={self.cols})"


def normalise_selection(grid: TableGrid, selection: Iterable[Cell]) -> tuple[Cell, ...]:
    """Validate ``selection`` against ``grid`` and return unique cells in order."""

    seen: dict[Cell, None] = {}
    for entry in selection:
        try:
            row, col = entry
            cell = (operator.index(row), operator.index(col))
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"Invalid cell reference: {entry!r}") from exc
        if not grid.contains(cell):
            raise ValidationError(
                f"Cell {cell} is outside the {grid.rows}x{grid.cols} table",
                context={"row": cell[0], "col": cell[1]},
            )
        seen.setdefault(cell, None)
    if not seen:
        raise ValidationError("Selection is empty")
    return tuple(seen)


def reject_locked(cells: Iterable[Cell], locked: Collection[Cell] | None) -> None:
    """Raise :class:`LockedCellError` when any of ``cells`` is locked."""

    if not locked:
        return
    blocked = tuple(cell for cell in cells if cell in locked)
    if blocked:
        raise LockedCellError(blocked)
