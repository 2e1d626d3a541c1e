"""Telemetry sample model and channel mapping helpers."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, fields, replace
from enum import Enum
import logging
import math
from types import MappingProxyType
from typing import Any

__all__ = [
    "ChannelMap",
    "LoadAxisMode",
    "LoadAxisSelection",
    "MalformedSampleError",
    "TelemetrySample",
    "select_load_axis",
]


logger = logging.getLogger(__name__)


_MASS_FLOW_HINTS = ("maf", "massairflow", "mass_air_flow", "massflow", "mass_flow", "airmass")


class MalformedSampleError(ValueError):
    """Raised when a sample lacks a finite value for a required channel."""

    def __init__(self, message: str, *, field_name: str | None = None) -> None:
        super().__init__(message)
        self.field_name = field_name


def _finite(name: str, value: Any) -> float:
    try:
        numeric = float(value)
    except (TypeError, ValueError) as exc:
        raise MalformedSampleError(f"{name} is not numeric: {value!r}", field_name=name) from exc
    if not math.isfinite(numeric):
        raise MalformedSampleError(f"{name} is not finite: {value!r}", field_name=name)
    return numeric


def _optional_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    return numeric if math.isfinite(numeric) else None


def _optional_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
        return None
    numeric = _optional_float(value)
    if numeric is None:
        return None
    return numeric != 0.0


@dataclass(frozen=True, slots=True)
class TelemetrySample:
    """One row of engine telemetry.

    ``load`` is the value on the table's y axis (load or mass flow depending
    on the configured axis mode) and ``measured`` the sensor reading compared
    against the target (usually AFR or lambda).
    """

    timestamp: float
    rpm: float
    load: float
    measured: float
    coolant_temp: float
    throttle: float
    throttle_rate: float | None = None
    accel_enrich: bool | None = None
    channels: Mapping[str, float] = field(default_factory=lambda: MappingProxyType({}))

    def validate(self) -> "TelemetrySample":
        """Return a copy whose core fields are coerced to finite floats.

        Raises :class:`MalformedSampleError` for the first field that is not a
        finite number.  Optional fields that cannot be read become ``None``.
        """

        coerced: dict[str, Any] = {
            name: _finite(name, getattr(self, name))
            for name in ("timestamp", "rpm", "load", "measured", "coolant_temp", "throttle")
        }
        coerced["throttle_rate"] = _optional_float(self.throttle_rate)
        coerced["accel_enrich"] = _optional_bool(self.accel_enrich)
        return replace(self, **coerced)

    def channel_values(self) -> dict[str, Any]:
        """Return the named values visible to custom filter expressions."""

        values: dict[str, Any] = dict(self.channels)
        values.update(
            {
                "rpm": self.rpm,
                "load": self.load,
                "afr": self.measured,
                "measured": self.measured,
                "clt": self.coolant_temp,
                "coolant": self.coolant_temp,
                "tps": self.throttle,
                "throttle": self.throttle,
                "accel_enrich": bool(self.accel_enrich),
            }
        )
        if self.throttle_rate is not None:
            values["tps_rate"] = self.throttle_rate
        return values

    @classmethod
    def from_channels(
        cls,
        payload: Mapping[str, Any],
        channel_map: "ChannelMap | None" = None,
    ) -> "TelemetrySample":
        """Build a sample from a raw channel mapping.

        Raises :class:`MalformedSampleError` when a required channel is
        missing or not a finite number.
        """

        if not isinstance(payload, Mapping):
            raise MalformedSampleError(
                f"Sample payload must be a mapping of channels, got {type(payload).__name__}"
            )
        mapping = channel_map or ChannelMap()

        def required(field_name: str, channel: str) -> float:
            if channel not in payload:
                raise MalformedSampleError(
                    f"Channel '{channel}' required for {field_name} is missing",
                    field_name=field_name,
                )
            return _finite(field_name, payload[channel])

        numeric_channels: dict[str, float] = {}
        for key, value in payload.items():
            numeric = _optional_float(value)
            if numeric is not None:
                numeric_channels[str(key)] = numeric

        return cls(
            timestamp=required("timestamp", mapping.timestamp),
            rpm=required("rpm", mapping.rpm),
            load=required("load", mapping.load),
            measured=required("measured", mapping.measured),
            coolant_temp=required("coolant_temp", mapping.coolant_temp),
            throttle=required("throttle", mapping.throttle),
            throttle_rate=(
                _optional_float(payload.get(mapping.throttle_rate))
                if mapping.throttle_rate
                else None
            ),
            accel_enrich=(
                _optional_bool(payload.get(mapping.accel_enrich))
                if mapping.accel_enrich
                else None
            ),
            channels=MappingProxyType(numeric_channels),
        )


@dataclass(frozen=True, slots=True)
class ChannelMap:
    """Names of the raw channels feeding each :class:`TelemetrySample` field."""

    timestamp: str = "time"
    rpm: str = "rpm"
    load: str = "map"
    measured: str = "afr"
    coolant_temp: str = "clt"
    throttle: str = "tps"
    throttle_rate: str | None = "tps_rate"
    accel_enrich: str | None = "accel_enrich"

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "ChannelMap":
        if not payload:
            return cls()
        known = {item.name for item in fields(cls)}
        kwargs = {str(key): value for key, value in payload.items() if str(key) in known}
        for key in ("throttle_rate", "accel_enrich"):
            if key in kwargs and kwargs[key] in ("", None):
                kwargs[key] = None
        return cls(**kwargs)

    def with_load(self, channel: str) -> "ChannelMap":
        return ChannelMap(
            timestamp=self.timestamp,
            rpm=self.rpm,
            load=channel,
            measured=self.measured,
            coolant_temp=self.coolant_temp,
            throttle=self.throttle,
            throttle_rate=self.throttle_rate,
            accel_enrich=self.accel_enrich,
        )


class LoadAxisMode(str, Enum):
    LOAD = "load"
    MASS_FLOW = "mass_flow"


@dataclass(frozen=True, slots=True)
class LoadAxisSelection:
    mode: LoadAxisMode
    channel: str
    notice: str | None = None


def _looks_like_mass_flow(name: str) -> bool:
    lowered = name.strip().lower().replace(" ", "")
    return any(hint in lowered for hint in _MASS_FLOW_HINTS)


def select_load_axis(
    axis_channel: str,
    available_channels: Iterable[str],
    *,
    fallback_channel: str = "map",
) -> LoadAxisSelection:
    """Choose between load-based and mass-flow-based y axes.

    The decision comes from the channel name configured for the table's load
    axis.  When that name asks for mass flow but no mass-flow channel is being
    logged, the selection falls back to the load channel and carries a notice
    for the user.
    """

    available = [str(name) for name in available_channels]
    if not _looks_like_mass_flow(axis_channel):
        return LoadAxisSelection(LoadAxisMode.LOAD, axis_channel)

    if axis_channel in available:
        return LoadAxisSelection(LoadAxisMode.MASS_FLOW, axis_channel)
    for name in available:
        if _looks_like_mass_flow(name):
            return LoadAxisSelection(LoadAxisMode.MASS_FLOW, name)

    notice = (
        f"Table load axis '{axis_channel}' expects mass flow but no mass-flow channel "
        f"was detected; falling back to load channel '{fallback_channel}'."
    )
    logger.warning(
        notice,
        extra={
            "event": "load_axis.fallback",
            "axis_channel": axis_channel,
            "fallback_channel": fallback_channel,
        },
    )
    return LoadAxisSelection(LoadAxisMode.LOAD, fallback_channel, notice)
