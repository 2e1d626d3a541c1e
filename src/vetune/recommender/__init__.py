"""Accumulation and recommendation stages of the tuning pipeline."""

from vetune.recommender.accumulator import (
    AccumulatorSnapshot,
    CellAccumulator,
    CellAccumulatorEntry,
)
from vetune.recommender.heatmap import Heatmap, HeatmapCell, build_heatmap
from vetune.recommender.rules import (
    AuthorityLimits,
    Recommendation,
    RecommendationEngine,
    RecommendationSet,
    TargetSource,
    apply_authority_limits,
    compute_recommendations,
    resolve_target,
)

__all__ = [
    "AccumulatorSnapshot",
    "AuthorityLimits",
    "CellAccumulator",
    "CellAccumulatorEntry",
    "Heatmap",
    "HeatmapCell",
    "Recommendation",
    "RecommendationEngine",
    "RecommendationSet",
    "TargetSource",
    "apply_authority_limits",
    "build_heatmap",
    "compute_recommendations",
    "resolve_target",
]
