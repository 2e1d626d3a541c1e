"""Factories for calibration tables used across the test-suite."""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

from vetune_core import TableGrid


RPM_BINS = (1000.0, 2000.0, 3000.0, 4000.0)
LOAD_BINS = (30.0, 60.0, 90.0)


def build_grid(
    rows: Sequence[Sequence[float]],
    *,
    x_bins: Sequence[float] | None = None,
    y_bins: Sequence[float] | None = None,
) -> TableGrid:
    """Build a grid from ``rows`` with evenly spaced default axes."""

    cols = len(rows[0]) if rows else 0
    x_axis = list(x_bins) if x_bins is not None else [float(index * 10) for index in range(cols)]
    y_axis = list(y_bins) if y_bins is not None else [float(index * 10) for index in range(len(rows))]
    return TableGrid.from_rows(x_axis, y_axis, rows)


def build_ve_table(value: float = 75.0) -> TableGrid:
    """A 3x4 VE table over RPM (x) and MAP (y) filled with ``value``."""

    return TableGrid.filled(RPM_BINS, LOAD_BINS, value)


def write_table_toml(path: Path, table: TableGrid) -> Path:
    data = table.to_lists()

    def _row(values: Sequence[float]) -> str:
        return "[" + ", ".join(repr(float(value)) for value in values) + "]"

    lines = [
        f"x_bins = {_row(data['x_bins'])}",
        f"y_bins = {_row(data['y_bins'])}",
        "values = [",
        *(f"    {_row(row)}," for row in data["values"]),
        "]",
    ]
    path.write_text("\n".join(lines) + "\n", encoding="utf8")
    return path
