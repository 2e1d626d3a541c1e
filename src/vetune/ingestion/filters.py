"""Admission gate for telemetry samples.

Every rule excludes one named source of measurement bias: cranking and
over-rev (RPM window), cold-engine enrichment (coolant), decel fuel cut
(closed throttle), transient enrichment (throttle rate and the ECU's
accel-enrichment flag) plus an optional user predicate.  A rejected sample
leaves no trace in any accumulator; only the per-reason counters move.
"""

from __future__ import annotations

import ast
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
import logging
import math
import threading
from typing import Any

from vetune_core.errors import ValidationError
from vetune.ingestion.samples import TelemetrySample
from vetune.logging.config import RateLimitedLogger

__all__ = [
    "ChannelPredicate",
    "FilterConfig",
    "FilterDecision",
    "RejectReason",
    "SampleFilterPipeline",
    "compile_expression",
]


logger = logging.getLogger(__name__)

ChannelPredicate = Callable[[Mapping[str, Any]], Any]


class RejectReason(str, Enum):
    RPM = "rpm"
    COOLANT = "coolant"
    THROTTLE = "throttle"
    TPS_RATE = "tps_rate"
    LOAD = "load"
    ACCEL_ENRICH = "accel_enrich"
    CUSTOM = "custom"
    CUSTOM_ERROR = "custom_error"


@dataclass(frozen=True, slots=True)
class FilterDecision:
    admitted: bool
    reason: RejectReason | None = None
    throttle_rate: float = 0.0

    def __bool__(self) -> bool:
        return self.admitted


_ALLOWED_NODES: tuple[type[ast.AST], ...] = (
    ast.Expression,
    ast.BoolOp,
    ast.And,
    ast.Or,
    ast.UnaryOp,
    ast.Not,
    ast.USub,
    ast.UAdd,
    ast.BinOp,
    ast.Add,
    ast.Sub,
    ast.Mult,
    ast.Div,
    ast.Mod,
    ast.Pow,
    ast.BitAnd,
    ast.BitOr,
    ast.Compare,
    ast.Eq,
    ast.NotEq,
    ast.Lt,
    ast.LtE,
    ast.Gt,
    ast.GtE,
    ast.Constant,
    ast.Name,
    ast.Load,
)


def _normalise_expression(source: str) -> str:
    # Accept the C-style operators used by ECU definition files.
    text = source.strip()
    if text.startswith("{") and text.endswith("}"):
        text = text[1:-1].strip()
    text = text.replace("&&", " and ").replace("||", " or ")
    text = text.replace("!=", "\x00")
    text = text.replace("!", " not ")
    return text.replace("\x00", "!=").strip()


def compile_expression(source: str) -> ChannelPredicate:
    """Compile a boolean expression over channel names into a predicate.

    Only comparisons, boolean and arithmetic operators, numeric constants and
    channel names are accepted.  Unknown names raise :class:`NameError` at
    evaluation time, which the pipeline treats as a rejection.
    """

    text = _normalise_expression(source)
    try:
        tree = ast.parse(text, mode="eval")
    except SyntaxError as exc:
        raise ValidationError(f"Invalid custom filter expression: {source!r}") from exc
    for node in ast.walk(tree):
        if not isinstance(node, _ALLOWED_NODES):
            raise ValidationError(
                f"Unsupported construct {type(node).__name__} in custom filter: {source!r}"
            )
        if isinstance(node, ast.Constant) and not isinstance(node.value, (int, float, bool)):
            raise ValidationError(f"Only numeric constants are allowed in custom filter: {source!r}")
    code = compile(tree, "<custom-filter>", "eval")

    def predicate(channels: Mapping[str, Any]) -> Any:
        return eval(code, {"__builtins__": {}}, dict(channels))

    predicate.__name__ = "custom_filter"
    predicate.__qualname__ = "custom_filter"
    setattr(predicate, "source", source)
    return predicate


def _coerce_float(payload: Mapping[str, Any], key: str, fallback: float | None) -> float | None:
    if key not in payload or payload[key] is None:
        return fallback
    try:
        return float(payload[key])
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"filters.{key} must be numeric, got {payload[key]!r}") from exc


@dataclass(frozen=True, slots=True)
class FilterConfig:
    """Thresholds applied by :class:`SampleFilterPipeline`.

    ``custom_filter`` is either a callable receiving the sample's channel
    mapping or an expression string such as ``"rpm > 2000 && tps < 50"``.
    """

    min_rpm: float = 1000.0
    max_rpm: float = 7000.0
    min_clt: float = 60.0
    min_throttle: float = 1.0
    max_tps_rate: float = 10.0
    min_load: float | None = None
    max_load: float | None = None
    exclude_accel_enrich: bool = True
    custom_filter: str | ChannelPredicate | None = None

    def __post_init__(self) -> None:
        if self.min_rpm > self.max_rpm:
            raise ValidationError(
                f"min_rpm ({self.min_rpm}) must not exceed max_rpm ({self.max_rpm})"
            )
        if self.min_load is not None and self.max_load is not None and self.min_load > self.max_load:
            raise ValidationError(
                f"min_load ({self.min_load}) must not exceed max_load ({self.max_load})"
            )
        if self.max_tps_rate < 0.0:
            raise ValidationError(f"max_tps_rate must be >= 0, got {self.max_tps_rate}")
        for name in ("min_rpm", "max_rpm", "min_clt", "min_throttle"):
            if math.isnan(getattr(self, name)):
                raise ValidationError(f"{name} must be a number")

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "FilterConfig":
        if not payload:
            return cls()
        defaults = cls()
        custom = payload.get("custom_filter", defaults.custom_filter)
        if isinstance(custom, str) and not custom.strip():
            custom = None
        return cls(
            min_rpm=_coerce_float(payload, "min_rpm", defaults.min_rpm),  # type: ignore[arg-type]
            max_rpm=_coerce_float(payload, "max_rpm", defaults.max_rpm),  # type: ignore[arg-type]
            min_clt=_coerce_float(payload, "min_clt", defaults.min_clt),  # type: ignore[arg-type]
            min_throttle=_coerce_float(payload, "min_throttle", defaults.min_throttle),  # type: ignore[arg-type]
            max_tps_rate=_coerce_float(payload, "max_tps_rate", defaults.max_tps_rate),  # type: ignore[arg-type]
            min_load=_coerce_float(payload, "min_load", None),
            max_load=_coerce_float(payload, "max_load", None),
            exclude_accel_enrich=bool(payload.get("exclude_accel_enrich", defaults.exclude_accel_enrich)),
            custom_filter=custom,
        )


class SampleFilterPipeline:
    """Stateful admission gate.

    The only state kept between samples is the previous throttle reading,
    used to derive the throttle rate when the sample does not carry one.
    """

    def __init__(
        self,
        config: FilterConfig | None = None,
        *,
        diagnostics: RateLimitedLogger | None = None,
    ) -> None:
        self._config = config or FilterConfig()
        self._predicate = self._resolve_predicate(self._config.custom_filter)
        self._diagnostics = diagnostics or RateLimitedLogger(logger)
        self._lock = threading.Lock()
        self._previous: tuple[float, float] | None = None
        self._counts: dict[str, int] = {"admitted": 0}

    @staticmethod
    def _resolve_predicate(custom: str | ChannelPredicate | None) -> ChannelPredicate | None:
        if custom is None:
            return None
        if isinstance(custom, str):
            return compile_expression(custom)
        if callable(custom):
            return custom
        raise ValidationError(f"custom_filter must be a string or callable, got {custom!r}")

    @property
    def config(self) -> FilterConfig:
        return self._config

    @property
    def statistics(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counts)

    def reset(self) -> None:
        with self._lock:
            self._previous = None
            self._counts = {"admitted": 0}

    def _throttle_rate(self, sample: TelemetrySample) -> float:
        with self._lock:
            previous = self._previous
            self._previous = (sample.timestamp, sample.throttle)
        if sample.throttle_rate is not None:
            return sample.throttle_rate
        if previous is None:
            return 0.0
        last_time, last_throttle = previous
        elapsed = sample.timestamp - last_time
        if elapsed <= 0.0:
            return 0.0
        return (sample.throttle - last_throttle) / elapsed

    def _count(self, key: str) -> None:
        with self._lock:
            self._counts[key] = self._counts.get(key, 0) + 1

    def _reject(self, reason: RejectReason, rate: float) -> FilterDecision:
        self._count(reason.value)
        return FilterDecision(False, reason, rate)

    def evaluate(self, sample: TelemetrySample) -> FilterDecision:
        """Return the admission decision for an already validated sample."""

        cfg = self._config
        rate = self._throttle_rate(sample)

        if sample.rpm < cfg.min_rpm or sample.rpm > cfg.max_rpm:
            return self._reject(RejectReason.RPM, rate)
        if sample.coolant_temp < cfg.min_clt:
            return self._reject(RejectReason.COOLANT, rate)
        if sample.throttle <= cfg.min_throttle:
            return self._reject(RejectReason.THROTTLE, rate)
        if abs(rate) > cfg.max_tps_rate:
            return self._reject(RejectReason.TPS_RATE, rate)
        if cfg.min_load is not None and sample.load < cfg.min_load:
            return self._reject(RejectReason.LOAD, rate)
        if cfg.max_load is not None and sample.load > cfg.max_load:
            return self._reject(RejectReason.LOAD, rate)
        if cfg.exclude_accel_enrich and sample.accel_enrich:
            return self._reject(RejectReason.ACCEL_ENRICH, rate)

        if self._predicate is not None:
            channels = sample.channel_values()
            channels["tps_rate"] = rate
            try:
                verdict = bool(self._predicate(channels))
            except Exception as exc:
                self._diagnostics.warning(
                    "filters.custom_error",
                    "Custom filter rejected sample after evaluation error.",
                    error=str(exc),
                    timestamp=sample.timestamp,
                )
                return self._reject(RejectReason.CUSTOM_ERROR, rate)
            if not verdict:
                return self._reject(RejectReason.CUSTOM, rate)

        self._count("admitted")
        return FilterDecision(True, None, rate)

    def __call__(self, sample: TelemetrySample) -> FilterDecision:
        return self.evaluate(sample)
