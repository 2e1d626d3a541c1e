"""Closed-loop VE table auto-tuning.

The package ingests engine telemetry, filters it, attributes every reading
to the table cell that produced it and turns the accumulated evidence into
bounded correction recommendations.  Table math lives in :mod:`vetune_core`.
"""

from vetune._version import __version__
from vetune.configuration import AutoTuneConfig, ConfigurationError, load_autotune_config
from vetune.ingestion import (
    ChannelMap,
    DelayCompensator,
    DelayCurve,
    FilterConfig,
    SampleFilterPipeline,
    TelemetrySample,
    replay_datalog,
    select_load_axis,
)
from vetune.recommender import (
    AuthorityLimits,
    CellAccumulator,
    Recommendation,
    RecommendationEngine,
    RecommendationSet,
    build_heatmap,
    compute_recommendations,
)
from vetune.session import AutoTuneSession, LiveTable, ReadWriteLock, SessionState

__all__ = [
    "AuthorityLimits",
    "AutoTuneConfig",
    "AutoTuneSession",
    "CellAccumulator",
    "ChannelMap",
    "ConfigurationError",
    "DelayCompensator",
    "DelayCurve",
    "FilterConfig",
    "LiveTable",
    "ReadWriteLock",
    "Recommendation",
    "RecommendationEngine",
    "RecommendationSet",
    "SampleFilterPipeline",
    "SessionState",
    "TelemetrySample",
    "__version__",
    "build_heatmap",
    "compute_recommendations",
    "load_autotune_config",
    "replay_datalog",
    "select_load_axis",
]
