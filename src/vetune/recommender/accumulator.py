"""Per-cell running statistics for the live tuning session.

Counters are stored densely in numpy arrays addressed by ``(row, col)``.
Every row owns a lock, so two samples landing in different rows never
contend while the three counters of one cell always move together.
"""

from __future__ import annotations

from collections.abc import Iterable
from contextlib import ExitStack
from dataclasses import dataclass
import logging
import math
import threading

import numpy as np

from vetune_core.errors import DataInsufficientError, ValidationError
from vetune_core.grid import Cell

__all__ = ["AccumulatorSnapshot", "CellAccumulator", "CellAccumulatorEntry"]


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CellAccumulatorEntry:
    hit_count: int
    weight_total: float
    weighted_sum: float
    locked: bool

    @property
    def average(self) -> float | None:
        if self.hit_count == 0 or self.weight_total <= 0.0:
            return None
        return self.weighted_sum / self.weight_total


@dataclass(frozen=True, eq=False)
class AccumulatorSnapshot:
    """Point-in-time copy of the accumulator arrays."""

    hit_count: np.ndarray
    weight_total: np.ndarray
    weighted_sum: np.ndarray
    locked: np.ndarray

    @property
    def shape(self) -> tuple[int, int]:
        rows, cols = self.hit_count.shape
        return int(rows), int(cols)

    @property
    def total_hits(self) -> int:
        return int(self.hit_count.sum())

    def entry(self, row: int, col: int) -> CellAccumulatorEntry:
        return CellAccumulatorEntry(
            hit_count=int(self.hit_count[row, col]),
            weight_total=float(self.weight_total[row, col]),
            weighted_sum=float(self.weighted_sum[row, col]),
            locked=bool(self.locked[row, col]),
        )

    def average(self, row: int, col: int) -> float:
        entry = self.entry(row, col)
        average = entry.average
        if average is None:
            raise DataInsufficientError(
                f"Cell ({row}, {col}) has no samples",
                context={"row": row, "col": col},
            )
        return average

    def locked_cells(self) -> frozenset[Cell]:
        rows, cols = np.nonzero(self.locked)
        return frozenset((int(row), int(col)) for row, col in zip(rows, cols))


class CellAccumulator:
    """Thread-safe weighted accumulator shaped like the tuned table.

    The lock mask lives beside the counters: :meth:`reset` clears the
    counters and keeps the mask.  Locked cells keep accumulating so their
    statistics stay visible.
    """

    def __init__(self, rows: int, cols: int) -> None:
        if rows <= 0 or cols <= 0:
            raise ValidationError(f"Accumulator shape must be positive, got {rows}x{cols}")
        self._rows = rows
        self._cols = cols
        self._hit_count = np.zeros((rows, cols), dtype=np.int64)
        self._weight_total = np.zeros((rows, cols), dtype=float)
        self._weighted_sum = np.zeros((rows, cols), dtype=float)
        self._locked = np.zeros((rows, cols), dtype=bool)
        self._row_locks = tuple(threading.Lock() for _ in range(rows))

    @property
    def shape(self) -> tuple[int, int]:
        return self._rows, self._cols

    def _check(self, row: int, col: int) -> None:
        if not (0 <= row < self._rows and 0 <= col < self._cols):
            raise ValidationError(
                f"Cell ({row}, {col}) is outside the {self._rows}x{self._cols} accumulator",
                context={"row": row, "col": col},
            )

    def add(self, row: int, col: int, value: float, weight: float = 1.0) -> None:
        self._check(row, col)
        if not math.isfinite(value):
            raise ValidationError(f"Accumulated value must be finite, got {value!r}")
        if not math.isfinite(weight) or weight <= 0.0:
            raise ValidationError(f"Sample weight must be positive, got {weight!r}")
        with self._row_locks[row]:
            self._hit_count[row, col] += 1
            self._weight_total[row, col] += weight
            self._weighted_sum[row, col] += value * weight

    def entry(self, row: int, col: int) -> CellAccumulatorEntry:
        self._check(row, col)
        with self._row_locks[row]:
            return CellAccumulatorEntry(
                hit_count=int(self._hit_count[row, col]),
                weight_total=float(self._weight_total[row, col]),
                weighted_sum=float(self._weighted_sum[row, col]),
                locked=bool(self._locked[row, col]),
            )

    def average(self, row: int, col: int) -> float:
        """Return the weighted mean of the samples attributed to the cell."""

        average = self.entry(row, col).average
        if average is None:
            raise DataInsufficientError(
                f"Cell ({row}, {col}) has no samples",
                context={"row": row, "col": col},
            )
        return average

    def _all_rows(self) -> ExitStack:
        stack = ExitStack()
        for lock in self._row_locks:
            stack.enter_context(lock)
        return stack

    def snapshot(self) -> AccumulatorSnapshot:
        with self._all_rows():
            return AccumulatorSnapshot(
                hit_count=self._hit_count.copy(),
                weight_total=self._weight_total.copy(),
                weighted_sum=self._weighted_sum.copy(),
                locked=self._locked.copy(),
            )

    def reset(self) -> None:
        with self._all_rows():
            self._hit_count.fill(0)
            self._weight_total.fill(0.0)
            self._weighted_sum.fill(0.0)
        logger.debug(
            "Accumulator reset.",
            extra={"event": "accumulator.reset", "rows": self._rows, "cols": self._cols},
        )

    def _set_locked(self, cells: Iterable[Cell], flag: bool) -> tuple[Cell, ...]:
        resolved = tuple((int(row), int(col)) for row, col in cells)
        for row, col in resolved:
            self._check(row, col)
        for row, col in resolved:
            with self._row_locks[row]:
                self._locked[row, col] = flag
        return resolved

    def lock(self, cells: Iterable[Cell]) -> tuple[Cell, ...]:
        return self._set_locked(cells, True)

    def unlock(self, cells: Iterable[Cell]) -> tuple[Cell, ...]:
        return self._set_locked(cells, False)

    def is_locked(self, row: int, col: int) -> bool:
        self._check(row, col)
        with self._row_locks[row]:
            return bool(self._locked[row, col])

    def locked_cells(self) -> frozenset[Cell]:
        with self._all_rows():
            rows, cols = np.nonzero(self._locked)
        return frozenset((int(row), int(col)) for row, col in zip(rows, cols))
