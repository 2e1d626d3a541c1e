"""Render-facing view of a recommendation run."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np

from vetune_core.grid import Cell, TableGrid
from vetune.recommender.accumulator import AccumulatorSnapshot
from vetune.recommender.rules import RecommendationSet

__all__ = ["Heatmap", "HeatmapCell", "build_heatmap"]


@dataclass(frozen=True, slots=True)
class HeatmapCell:
    x: float
    y: float
    beginning_value: float
    recommended_value: float
    hit_count: int
    weight_total: float
    target_value: float
    hit_percentage: float
    locked: bool = False

    @property
    def change_magnitude(self) -> float:
        return abs(self.recommended_value - self.beginning_value)

    def as_dict(self) -> dict[str, Any]:
        return {
            "x": self.x,
            "y": self.y,
            "beginning_value": self.beginning_value,
            "recommended_value": self.recommended_value,
            "hit_count": self.hit_count,
            "weight_total": self.weight_total,
            "target_value": self.target_value,
            "hit_percentage": self.hit_percentage,
            "locked": self.locked,
        }


@dataclass(frozen=True, eq=False)
class Heatmap:
    """Per-cell records plus coverage and change arrays scaled to ``[0, 1]``."""

    cells: dict[Cell, HeatmapCell]
    coverage: np.ndarray
    change: np.ndarray

    def records(self) -> list[dict[str, Any]]:
        return [
            {"row": row, "col": col, **cell.as_dict()}
            for (row, col), cell in sorted(self.cells.items())
        ]


def _normalise(values: np.ndarray) -> np.ndarray:
    peak = float(values.max()) if values.size else 0.0
    if peak <= 0.0:
        return np.zeros_like(values, dtype=float)
    return values / peak


def build_heatmap(
    recommendations: RecommendationSet,
    snapshot: AccumulatorSnapshot,
    baseline: TableGrid,
) -> Heatmap:
    """Build the heatmap view; extremes are recomputed on every call."""

    cells: dict[Cell, HeatmapCell] = {}
    change = np.zeros(baseline.shape, dtype=float)
    for item in recommendations:
        cells[item.cell] = HeatmapCell(
            x=item.x,
            y=item.y,
            beginning_value=item.beginning_value,
            recommended_value=item.recommended_value,
            hit_count=item.hit_count,
            weight_total=item.weight_total,
            target_value=item.target_value,
            hit_percentage=item.hit_percentage,
            locked=item.locked,
        )
        change[item.row, item.col] = abs(item.change)
    return Heatmap(
        cells=cells,
        coverage=_normalise(np.asarray(snapshot.weight_total, dtype=float)),
        change=_normalise(change),
    )
