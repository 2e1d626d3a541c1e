"""Correction recommendations derived from accumulated measurements.

For a cell with samples the recommendation is::

    error_ratio = (measured_avg - target) / target
    raw = beginning * (1 + error_ratio)

clamped to the authority limits.  Locked cells always report their
beginning value.  :func:`compute_recommendations` is a pure function of its
inputs; :class:`RecommendationEngine` binds the configuration that rarely
changes during a session.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
import logging
import math
from typing import Any, Union

from vetune_core.errors import DataInsufficientError, NumericalError, ValidationError
from vetune_core.grid import Cell, TableGrid
from vetune_core.interpolation import lookup_clamped
from vetune.recommender.accumulator import AccumulatorSnapshot

__all__ = [
    "AuthorityLimits",
    "Recommendation",
    "RecommendationEngine",
    "RecommendationSet",
    "TargetSource",
    "apply_authority_limits",
    "compute_recommendations",
    "resolve_target",
]


logger = logging.getLogger(__name__)

TargetSource = Union[float, TableGrid]


def _optional_limit(payload: Mapping[str, Any], key: str, fallback: float | None) -> float | None:
    if key not in payload:
        return fallback
    raw = payload[key]
    if raw is None:
        return None
    try:
        return float(raw)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"authority.{key} must be numeric, got {raw!r}") from exc


@dataclass(frozen=True, slots=True)
class AuthorityLimits:
    """Safety bounds on how far a recommendation may move a cell.

    ``max_percentage_change`` is a fraction (``0.20`` allows +/-20%).  A limit
    set to ``None`` is inactive.
    """

    max_absolute_change: float | None = 10.0
    max_percentage_change: float | None = 0.20

    def __post_init__(self) -> None:
        for name in ("max_absolute_change", "max_percentage_change"):
            value = getattr(self, name)
            if value is None:
                continue
            if not math.isfinite(value) or value < 0.0:
                raise ValidationError(f"{name} must be a finite value >= 0, got {value!r}")

    @classmethod
    def unlimited(cls) -> "AuthorityLimits":
        return cls(None, None)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "AuthorityLimits":
        if not payload:
            return cls()
        defaults = cls()
        return cls(
            max_absolute_change=_optional_limit(
                payload, "max_absolute_change", defaults.max_absolute_change
            ),
            max_percentage_change=_optional_limit(
                payload, "max_percentage_change", defaults.max_percentage_change
            ),
        )


def apply_authority_limits(beginning: float, raw: float, limits: AuthorityLimits) -> float:
    """Clamp ``raw`` to the intersection of the active authority intervals."""

    lower, upper = -math.inf, math.inf
    if limits.max_absolute_change is not None:
        lower = max(lower, beginning - limits.max_absolute_change)
        upper = min(upper, beginning + limits.max_absolute_change)
    if limits.max_percentage_change is not None:
        # Ordered explicitly so negative baselines keep a valid interval.
        low_bound = beginning * (1.0 - limits.max_percentage_change)
        high_bound = beginning * (1.0 + limits.max_percentage_change)
        lower = max(lower, min(low_bound, high_bound))
        upper = min(upper, max(low_bound, high_bound))
    return min(max(raw, lower), upper)


def resolve_target(target: TargetSource, x: float, y: float) -> float:
    """Return the target value for the cell at axis coordinates ``(x, y)``."""

    if isinstance(target, TableGrid):
        return lookup_clamped(target, x, y)
    return float(target)


@dataclass(frozen=True, slots=True)
class Recommendation:
    row: int
    col: int
    x: float
    y: float
    beginning_value: float
    recommended_value: float
    hit_count: int
    weight_total: float
    target_value: float
    measured_value: float
    hit_percentage: float
    locked: bool

    @property
    def cell(self) -> Cell:
        return (self.row, self.col)

    @property
    def change(self) -> float:
        return self.recommended_value - self.beginning_value


@dataclass(frozen=True)
class RecommendationSet:
    """Recommendations for every cell with data, keyed by ``(row, col)``."""

    shape: tuple[int, int]
    cells: Mapping[Cell, Recommendation]
    skipped: tuple[Cell, ...] = ()

    def __len__(self) -> int:
        return len(self.cells)

    def __iter__(self) -> Iterator[Recommendation]:
        return iter(self.cells.values())

    def __contains__(self, cell: object) -> bool:
        return cell in self.cells

    def get(self, cell: Cell) -> Recommendation | None:
        """Return the cell's recommendation or ``None`` when it has no data."""

        return self.cells.get(cell)

    def materialize(self) -> dict[Cell, float]:
        """Final values keyed by cell, excluding locked cells."""

        return {
            cell: item.recommended_value
            for cell, item in self.cells.items()
            if not item.locked
        }


def _recommend_cell(
    snapshot: AccumulatorSnapshot,
    baseline: TableGrid,
    target: TargetSource,
    limits: AuthorityLimits,
    row: int,
    col: int,
    total_hits: int,
) -> Recommendation:
    measured = snapshot.average(row, col)
    entry = snapshot.entry(row, col)
    x, y = baseline.coordinates((row, col))
    beginning = baseline[row, col]
    target_value = resolve_target(target, x, y)
    if not math.isfinite(target_value) or target_value <= 0.0:
        raise NumericalError(
            f"Target {target_value!r} for cell ({row}, {col}) is not positive",
            context={"row": row, "col": col, "target": target_value},
        )

    if entry.locked:
        recommended = beginning
    else:
        error_ratio = (measured - target_value) / target_value
        raw = beginning * (1.0 + error_ratio)
        recommended = apply_authority_limits(beginning, raw, limits)

    return Recommendation(
        row=row,
        col=col,
        x=x,
        y=y,
        beginning_value=beginning,
        recommended_value=recommended,
        hit_count=entry.hit_count,
        weight_total=entry.weight_total,
        target_value=target_value,
        measured_value=measured,
        hit_percentage=entry.hit_count / total_hits * 100.0 if total_hits else 0.0,
        locked=entry.locked,
    )


def compute_recommendations(
    snapshot: AccumulatorSnapshot,
    baseline: TableGrid,
    target: TargetSource,
    limits: AuthorityLimits | None = None,
) -> RecommendationSet:
    """Compute recommendations for every cell of ``baseline``.

    Cells without samples are absent from the result.  A cell whose target is
    not positive is skipped with a warning and listed in ``skipped``.
    """

    if snapshot.shape != baseline.shape:
        raise ValidationError(
            f"Accumulator shape {snapshot.shape} does not match table shape {baseline.shape}"
        )
    limits = limits or AuthorityLimits()
    total_hits = snapshot.total_hits
    rows, cols = baseline.shape
    cells: dict[Cell, Recommendation] = {}
    skipped: list[Cell] = []
    for row in range(rows):
        for col in range(cols):
            try:
                cells[(row, col)] = _recommend_cell(
                    snapshot, baseline, target, limits, row, col, total_hits
                )
            except DataInsufficientError:
                continue
            except NumericalError as exc:
                skipped.append((row, col))
                logger.warning(
                    str(exc),
                    extra={"event": "recommendation.skipped", "row": row, "col": col},
                )
    return RecommendationSet(shape=(rows, cols), cells=cells, skipped=tuple(skipped))


class RecommendationEngine:
    """Bind a target and authority limits for repeated recommendation runs."""

    def __init__(self, target: TargetSource, limits: AuthorityLimits | None = None) -> None:
        if not isinstance(target, TableGrid):
            target = float(target)
        self.target = target
        self.limits = limits or AuthorityLimits()

    def recommend(self, snapshot: AccumulatorSnapshot, baseline: TableGrid) -> RecommendationSet:
        return compute_recommendations(snapshot, baseline, self.target, self.limits)
