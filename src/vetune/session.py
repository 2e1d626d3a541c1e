"""Live tuning session and the shared calibration table.

:class:`AutoTuneSession` wires the ingestion pipeline (validation, filters,
delay compensation) to the per-cell accumulator and exposes recommendations
on demand.  :class:`LiveTable` guards the table being edited: mutations run
under an exclusive lock, renderer reads under a shared one.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from enum import Enum
import logging
import threading
from typing import Any, Collection

import numpy as np

from vetune_core.errors import ValidationError
from vetune_core.grid import Cell, TableGrid, reject_locked
from vetune.ingestion.delay import DelayCompensator, ResolvedPoint
from vetune.ingestion.filters import FilterConfig, FilterDecision, SampleFilterPipeline
from vetune.ingestion.samples import MalformedSampleError, TelemetrySample
from vetune.logging.config import RateLimitedLogger
from vetune.recommender.accumulator import AccumulatorSnapshot, CellAccumulator
from vetune.recommender.heatmap import Heatmap, build_heatmap
from vetune.recommender.rules import (
    AuthorityLimits,
    RecommendationEngine,
    RecommendationSet,
    TargetSource,
)

__all__ = ["AutoTuneSession", "LiveTable", "ReadWriteLock", "SessionState"]


logger = logging.getLogger(__name__)


class ReadWriteLock:
    """Many readers or one writer; waiting writers block new readers."""

    def __init__(self) -> None:
        self._condition = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        with self._condition:
            while self._writer or self._writers_waiting:
                self._condition.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._condition:
            self._readers -= 1
            if self._readers == 0:
                self._condition.notify_all()

    def acquire_write(self) -> None:
        with self._condition:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._condition.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._condition:
            self._writer = False
            self._condition.notify_all()

    @contextmanager
    def shared(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class LiveTable:
    """The calibration table shared between editors, renderers and the session."""

    def __init__(
        self,
        grid: TableGrid,
        *,
        locked_cells: Callable[[], Collection[Cell]] | None = None,
    ) -> None:
        self._grid = grid
        self._rw = ReadWriteLock()
        self._locked_cells = locked_cells or frozenset

    def bind_locks(self, locked_cells: Callable[[], Collection[Cell]]) -> None:
        self._locked_cells = locked_cells

    def snapshot(self) -> TableGrid:
        with self._rw.shared():
            return self._grid

    @contextmanager
    def reading(self) -> Iterator[TableGrid]:
        """Hold the shared lock while a renderer walks the table."""

        with self._rw.shared():
            yield self._grid

    def apply(self, operation: Callable[..., TableGrid], *args: Any, **kwargs: Any) -> TableGrid:
        """Run a table operation on the current grid and store its result.

        The operation receives the grid as first argument and the currently
        locked cells as ``locked=``, so writes to locked cells are rejected
        before anything changes.
        """

        with self._rw.exclusive():
            updated = operation(self._grid, *args, locked=frozenset(self._locked_cells()), **kwargs)
            if not isinstance(updated, TableGrid):
                raise ValidationError(
                    f"Table operation {getattr(operation, '__name__', operation)!r} "
                    "did not return a TableGrid"
                )
            self._grid = updated
            return updated

    def write_cells(self, values: Mapping[Cell, float]) -> TableGrid:
        """Write individual cell values, refusing locked cells."""

        with self._rw.exclusive():
            grid = self._grid
            cells = tuple(values)
            for cell in cells:
                if not grid.contains(cell):
                    raise ValidationError(f"Cell {cell} is outside the {grid.rows}x{grid.cols} table")
            reject_locked(cells, frozenset(self._locked_cells()))
            result = grid.copy_values()
            for (row, col), value in values.items():
                result[row, col] = value
            self._grid = grid.with_values(result)
            return self._grid

    def replace(self, grid: TableGrid) -> None:
        with self._rw.exclusive():
            self._grid = grid


class SessionState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


class AutoTuneSession:
    """Closed-loop tuning session over a :class:`LiveTable`.

    Samples are ignored while the session is idle.  Statistics and
    recommendations stay readable after :meth:`stop` until the next
    :meth:`start`, which snapshots a new baseline and clears every counter
    except the lock mask.
    """

    def __init__(
        self,
        table: LiveTable | TableGrid,
        target: TargetSource,
        *,
        filters: FilterConfig | SampleFilterPipeline | None = None,
        limits: AuthorityLimits | None = None,
        compensator: DelayCompensator | None = None,
        diagnostics: RateLimitedLogger | None = None,
    ) -> None:
        self.table = table if isinstance(table, LiveTable) else LiveTable(table)
        baseline = self.table.snapshot()
        self._diagnostics = diagnostics or RateLimitedLogger(logger)
        if isinstance(filters, SampleFilterPipeline):
            self.filters = filters
        else:
            self.filters = SampleFilterPipeline(filters, diagnostics=self._diagnostics)
        self.engine = RecommendationEngine(target, limits)
        self.compensator = compensator or DelayCompensator()
        self.accumulator = CellAccumulator(*baseline.shape)
        self.table.bind_locks(self.accumulator.locked_cells)
        self._baseline = baseline
        self._state = SessionState.IDLE
        self._gate = ReadWriteLock()
        self._counts_lock = threading.Lock()
        self._counts = {"received": 0, "malformed": 0, "accumulated": 0}

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is SessionState.RUNNING

    @property
    def baseline(self) -> TableGrid:
        return self._baseline

    def start(self) -> None:
        with self._gate.exclusive():
            baseline = self.table.snapshot()
            if baseline.shape != self.accumulator.shape:
                locks = self.accumulator.locked_cells()
                self.accumulator = CellAccumulator(*baseline.shape)
                self.accumulator.lock(cell for cell in locks if baseline.contains(cell))
                self.table.bind_locks(self.accumulator.locked_cells)
            else:
                self.accumulator.reset()
            self._baseline = baseline
            self.compensator.clear()
            self.filters.reset()
            with self._counts_lock:
                self._counts = {"received": 0, "malformed": 0, "accumulated": 0}
            self._state = SessionState.RUNNING
        logger.info(
            "Auto-tune session started.",
            extra={"event": "session.start", "rows": baseline.rows, "cols": baseline.cols},
        )

    def stop(self) -> None:
        with self._gate.exclusive():
            self._state = SessionState.IDLE
        logger.info(
            "Auto-tune session stopped.",
            extra={"event": "session.stop", **self.statistics()},
        )

    def _count(self, key: str) -> None:
        with self._counts_lock:
            self._counts[key] += 1

    def ingest(self, sample: TelemetrySample | Mapping[str, Any]) -> ResolvedPoint | None:
        """Process one sample; return the cell it was credited to, if any.

        Malformed samples are dropped with a rate-limited warning instead of
        raising into the caller's telemetry loop.
        """

        with self._gate.shared():
            if self._state is not SessionState.RUNNING:
                return None
            self._count("received")
            try:
                if not isinstance(sample, TelemetrySample):
                    sample = TelemetrySample.from_channels(sample)
                sample = sample.validate()
            except MalformedSampleError as exc:
                self._count("malformed")
                self._diagnostics.warning(
                    "sample.malformed",
                    "Dropped malformed telemetry sample.",
                    field=exc.field_name,
                    error=str(exc),
                )
                return None

            self.compensator.record(sample)
            decision: FilterDecision = self.filters.evaluate(sample)
            if not decision.admitted:
                return None
            baseline = self._baseline
            point = self.compensator.resolve(sample, baseline.x_bins, baseline.y_bins)
            self.accumulator.add(point.row, point.col, sample.measured)
            self._count("accumulated")
            return point

    def ingest_many(self, samples: Iterable[TelemetrySample | Mapping[str, Any]]) -> int:
        accepted = 0
        for sample in samples:
            if self.ingest(sample) is not None:
                accepted += 1
        return accepted

    def lock(self, cells: Iterable[Cell]) -> tuple[Cell, ...]:
        locked = self.accumulator.lock(cells)
        logger.debug("Cells locked.", extra={"event": "session.lock", "cells": locked})
        return locked

    def unlock(self, cells: Iterable[Cell]) -> tuple[Cell, ...]:
        unlocked = self.accumulator.unlock(cells)
        logger.debug("Cells unlocked.", extra={"event": "session.unlock", "cells": unlocked})
        return unlocked

    def locked_cells(self) -> frozenset[Cell]:
        return self.accumulator.locked_cells()

    def snapshot(self) -> AccumulatorSnapshot:
        return self.accumulator.snapshot()

    def _capture(self) -> tuple[AccumulatorSnapshot, TableGrid]:
        # A resizing start() swaps accumulator and baseline together.
        with self._gate.shared():
            return self.accumulator.snapshot(), self._baseline

    def recommendations(self) -> RecommendationSet:
        snapshot, baseline = self._capture()
        return self.engine.recommend(snapshot, baseline)

    def materialize(self) -> dict[Cell, float]:
        """Final values keyed by cell; locked cells and cells without data are omitted."""

        return self.recommendations().materialize()

    def apply_recommendations(self) -> TableGrid:
        values = self.materialize()
        if not values:
            return self.table.snapshot()
        updated = self.table.write_cells(values)
        logger.info(
            "Recommendations applied to the live table.",
            extra={"event": "session.apply", "cells": len(values)},
        )
        return updated

    def heatmap(self) -> Heatmap:
        snapshot, baseline = self._capture()
        return build_heatmap(self.engine.recommend(snapshot, baseline), snapshot, baseline)

    def statistics(self) -> dict[str, Any]:
        with self._counts_lock:
            counts = dict(self._counts)
        snapshot = self.accumulator.snapshot()
        counts["cells_with_data"] = int(np.count_nonzero(snapshot.hit_count))
        counts["rejected"] = {
            key: value for key, value in self.filters.statistics.items() if key != "admitted"
        }
        counts["state"] = self._state.value
        return counts
