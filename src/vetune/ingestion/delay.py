"""Transport-delay compensation for wideband readings.

The exhaust gas measured at time ``T`` was produced by the operating point
the engine held at ``T - delay(rpm)``.  :class:`DelayCompensator` keeps a
short, time-ordered history of operating points and resolves every admitted
sample to the table cell that actually produced its reading.

The history uses a preallocated circular store kept sorted by timestamp with
binary-search insertion, so out-of-order samples cost a shift rather than a
reallocation.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
import logging
import threading
from typing import Any, Optional

import numpy as np

from vetune_core.errors import ValidationError
from vetune_core.interpolation import interpolate_curve, nearest_index
from vetune.ingestion.samples import TelemetrySample

__all__ = [
    "DEFAULT_HISTORY_CAPACITY",
    "DelayCompensator",
    "DelayCurve",
    "OperatingPoint",
    "OperatingPointHistory",
    "ResolvedPoint",
]


logger = logging.getLogger(__name__)


DEFAULT_HISTORY_CAPACITY = 256


@dataclass(frozen=True, slots=True)
class OperatingPoint:
    timestamp: float
    x: float
    y: float


@dataclass(frozen=True, slots=True)
class ResolvedPoint:
    """Operating point attributed to a sample after delay compensation."""

    x: float
    y: float
    row: int
    col: int
    delay: float
    from_history: bool

    @property
    def cell(self) -> tuple[int, int]:
        return (self.row, self.col)


@dataclass(frozen=True)
class DelayCurve:
    """Piecewise linear RPM to transport delay (seconds) reference curve."""

    rpm: tuple[float, ...] = (800.0, 6000.0)
    seconds: tuple[float, ...] = (0.200, 0.050)

    def __post_init__(self) -> None:
        if len(self.rpm) != len(self.seconds) or not self.rpm:
            raise ValidationError("delay curve needs matching, non-empty rpm and seconds sequences")
        if any(value < 0.0 for value in self.seconds):
            raise ValidationError("delay curve values must be >= 0")
        ordered = np.asarray(self.rpm, dtype=float)
        if ordered.size > 1 and not np.all(np.diff(ordered) > 0.0):
            raise ValidationError("delay curve rpm points must be strictly ascending")

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "DelayCurve":
        if not payload:
            return cls()
        rpm = tuple(float(value) for value in payload.get("rpm", cls.rpm))
        seconds = tuple(float(value) for value in payload.get("seconds", cls.seconds))
        return cls(rpm=rpm, seconds=seconds)

    def __call__(self, rpm: float) -> float:
        # Outside the reference range the nearest endpoint applies.
        clamped = min(max(float(rpm), self.rpm[0]), self.rpm[-1])
        return interpolate_curve(self.rpm, self.seconds, clamped)


class OperatingPointHistory:
    """Bounded, timestamp-ordered history of operating points."""

    def __init__(self, capacity: int = DEFAULT_HISTORY_CAPACITY, *, max_age: float = 0.5) -> None:
        if capacity <= 0:
            raise ValueError("OperatingPointHistory requires a positive capacity")
        if max_age <= 0.0:
            raise ValueError("max_age must be positive")
        self._capacity = capacity
        self._max_age = float(max_age)
        self._points: list[Optional[OperatingPoint]] = [None] * capacity
        self._start = 0
        self._size = 0

    def __len__(self) -> int:
        return self._size

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def max_age(self) -> float:
        return self._max_age

    def clear(self) -> None:
        self._points = [None] * self._capacity
        self._start = 0
        self._size = 0

    def _slot(self, offset: int) -> int:
        return (self._start + offset) % self._capacity

    def _at(self, offset: int) -> OperatingPoint:
        point = self._points[self._slot(offset)]
        if point is None:  # pragma: no cover - storage invariant
            raise RuntimeError("OperatingPointHistory stored an empty slot")
        return point

    def _drop_oldest(self) -> None:
        self._points[self._start] = None
        self._start = (self._start + 1) % self._capacity
        self._size -= 1

    def _insert_position(self, timestamp: float) -> int:
        low, high = 0, self._size
        while low < high:
            mid = (low + high) // 2
            if timestamp < self._at(mid).timestamp:
                high = mid
            else:
                low = mid + 1
        return low

    def push(self, point: OperatingPoint) -> None:
        position = self._insert_position(point.timestamp)
        if self._size == self._capacity:
            if position == 0:
                # Older than everything retained in a full buffer.
                return
            self._drop_oldest()
            position -= 1
        for index in range(self._size, position, -1):
            self._points[self._slot(index)] = self._points[self._slot(index - 1)]
        self._points[self._slot(position)] = point
        self._size += 1
        self._expire(self._at(self._size - 1).timestamp)

    def _expire(self, newest: float) -> None:
        horizon = newest - self._max_age
        while self._size and self._at(0).timestamp < horizon:
            self._drop_oldest()

    def bracket(self, timestamp: float) -> tuple[OperatingPoint | None, OperatingPoint | None]:
        """Return the closest points at or before and strictly after ``timestamp``."""

        position = self._insert_position(timestamp)
        before = self._at(position - 1) if position > 0 else None
        after = self._at(position) if position < self._size else None
        return before, after

    def __iter__(self) -> Iterator[OperatingPoint]:
        for index in range(self._size):
            yield self._at(index)


class DelayCompensator:
    """Attribute samples to the operating point that produced them."""

    def __init__(
        self,
        curve: DelayCurve | None = None,
        *,
        max_age: float = 0.5,
        match_tolerance: float = 0.05,
        capacity: int = DEFAULT_HISTORY_CAPACITY,
    ) -> None:
        if match_tolerance < 0.0:
            raise ValidationError(f"match_tolerance must be >= 0, got {match_tolerance}")
        self._curve = curve or DelayCurve()
        self._tolerance = float(match_tolerance)
        self._history = OperatingPointHistory(capacity, max_age=max_age)
        self._lock = threading.Lock()

    @property
    def curve(self) -> DelayCurve:
        return self._curve

    def __len__(self) -> int:
        with self._lock:
            return len(self._history)

    def clear(self) -> None:
        with self._lock:
            self._history.clear()

    def record(self, sample: TelemetrySample) -> None:
        with self._lock:
            self._history.push(OperatingPoint(sample.timestamp, sample.rpm, sample.load))

    def _historical_point(self, timestamp: float) -> tuple[float, float] | None:
        with self._lock:
            before, after = self._history.bracket(timestamp)
        if before is not None and after is not None:
            span = after.timestamp - before.timestamp
            if before.timestamp == timestamp or span <= 0.0:
                return before.x, before.y
            fraction = (timestamp - before.timestamp) / span
            return (
                before.x + (after.x - before.x) * fraction,
                before.y + (after.y - before.y) * fraction,
            )
        nearest = before if before is not None else after
        if nearest is not None and abs(nearest.timestamp - timestamp) <= self._tolerance:
            return nearest.x, nearest.y
        return None

    def resolve(
        self,
        sample: TelemetrySample,
        x_bins: Sequence[float] | np.ndarray,
        y_bins: Sequence[float] | np.ndarray,
    ) -> ResolvedPoint:
        """Resolve ``sample`` to a delayed operating point and its nearest cell."""

        delay = self._curve(sample.rpm)
        historical = self._historical_point(sample.timestamp - delay)
        if historical is None:
            x, y, from_history = sample.rpm, sample.load, False
        else:
            (x, y), from_history = historical, True
        return ResolvedPoint(
            x=x,
            y=y,
            row=nearest_index(y_bins, y),
            col=nearest_index(x_bins, x),
            delay=delay,
            from_history=from_history,
        )
