"""Telemetry ingestion: samples, admission filters, delay compensation and replay."""

from vetune.ingestion.delay import (
    DelayCompensator,
    DelayCurve,
    OperatingPoint,
    OperatingPointHistory,
    ResolvedPoint,
)
from vetune.ingestion.filters import (
    FilterConfig,
    FilterDecision,
    RejectReason,
    SampleFilterPipeline,
    compile_expression,
)
from vetune.ingestion.replay import ReplaySummary, iter_samples, read_datalog, replay_datalog
from vetune.ingestion.samples import (
    ChannelMap,
    LoadAxisMode,
    LoadAxisSelection,
    MalformedSampleError,
    TelemetrySample,
    select_load_axis,
)

__all__ = [
    "ChannelMap",
    "DelayCompensator",
    "DelayCurve",
    "FilterConfig",
    "FilterDecision",
    "LoadAxisMode",
    "LoadAxisSelection",
    "MalformedSampleError",
    "OperatingPoint",
    "OperatingPointHistory",
    "RejectReason",
    "ReplaySummary",
    "ResolvedPoint",
    "SampleFilterPipeline",
    "TelemetrySample",
    "compile_expression",
    "iter_samples",
    "read_datalog",
    "replay_datalog",
    "select_load_axis",
]
