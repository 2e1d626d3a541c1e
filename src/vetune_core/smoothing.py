"""Gaussian-weighted neighbourhood smoothing for table selections."""

from __future__ import annotations

from collections.abc import Iterable
import math
from typing import Collection

import numpy as np

from vetune_core.errors import ValidationError
from vetune_core.grid import Cell, TableGrid, normalise_selection, reject_locked

__all__ = ["gaussian_kernel", "smooth"]


def gaussian_kernel(radius: int, sigma: float) -> np.ndarray:
    """Return the ``(2r+1) x (2r+1)`` weight matrix ``exp(-d²/(2σ²))``."""

    offsets = np.arange(-radius, radius + 1, dtype=float)
    distance_sq = offsets[:, None] ** 2 + offsets[None, :] ** 2
    return np.exp(-distance_sq / (2.0 * sigma * sigma))


def smooth(
    grid: TableGrid,
    selection: Iterable[Cell],
    kernel_size: int = 1,
    *,
    sigma: float | None = None,
    locked: Collection[Cell] | None = None,
) -> TableGrid:
    """Replace each selected cell with the Gaussian-weighted mean of its neighbours.

    Neighbours are read from the unmodified input grid so the order in which
    selected cells are visited never matters.  Cells near the table boundary
    simply have fewer contributors.
    """

    try:
        radius = int(kernel_size)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"kernel_size must be an integer, got {kernel_size!r}") from exc
    if radius < 1 or radius != kernel_size:
        raise ValidationError(f"kernel_size must be a positive integer, got {kernel_size!r}")
    resolved_sigma = radius / 2.0 if sigma is None else float(sigma)
    if not math.isfinite(resolved_sigma) or resolved_sigma <= 0.0:
        raise ValidationError(f"sigma must be positive, got {sigma!r}")

    cells = normalise_selection(grid, selection)
    reject_locked(cells, locked)

    kernel = gaussian_kernel(radius, resolved_sigma)
    snapshot = grid.values
    rows, cols = grid.shape
    result = grid.copy_values()
    for row, col in cells:
        top, bottom = max(row - radius, 0), min(row + radius, rows - 1)
        left, right = max(col - radius, 0), min(col + radius, cols - 1)
        window = snapshot[top : bottom + 1, left : right + 1]
        weights = kernel[
            top - row + radius : bottom - row + radius + 1,
            left - col + radius : right - col + radius + 1,
        ]
        total = float(weights.sum())
        if total > 0.0:
            result[row, col] = float((window * weights).sum()) / total
    return grid.with_values(result)
