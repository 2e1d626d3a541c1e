"""Exception taxonomy shared by the table math library and the tuning engine."""

from __future__ import annotations

from typing import Any, Mapping

__all__ = [
    "TableMathError",
    "ValidationError",
    "LockedCellError",
    "NumericalError",
    "OutOfRangeError",
    "DataInsufficientError",
]


class TableMathError(Exception):
    """Base class for every error raised by :mod:`vetune_core`."""

    def __init__(self, message: str, *, context: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context: dict[str, Any] = dict(context or {})


class ValidationError(TableMathError, ValueError):
    """Input rejected before an operation runs (bad index, empty selection...)."""


class LockedCellError(ValidationError):
    """A bulk operation attempted to write into a locked cell."""

    def __init__(self, cells: tuple[tuple[int, int], ...]) -> None:
        preview = ", ".join(f"({row}, {col})" for row, col in cells[:8])
        if len(cells) > 8:
            preview += ", ..."
        super().__init__(
            f"Operation would modify {len(cells)} locked cell(s): {preview}",
            context={"locked_cells": len(cells)},
        )
        self.cells = cells


class NumericalError(TableMathError, ArithmeticError):
    """Numerical failure inside an interpolation primitive."""


class OutOfRangeError(NumericalError):
    """Query coordinate lies outside the axis range of a table or curve."""

    def __init__(self, axis: str, value: float, low: float, high: float) -> None:
        super().__init__(
            f"{axis}={value!r} is outside the axis range [{low!r}, {high!r}]",
            context={"axis": axis, "value": value, "low": low, "high": high},
        )
        self.axis = axis
        self.value = value


class DataInsufficientError(TableMathError, LookupError):
    """A cell has no accumulated data and therefore no average."""
