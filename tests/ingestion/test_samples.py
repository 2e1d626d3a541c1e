from __future__ import annotations

import logging
import math

import pytest

from vetune.ingestion.samples import (
    ChannelMap,
    LoadAxisMode,
    MalformedSampleError,
    TelemetrySample,
    select_load_axis,
)

from tests.helpers import build_sample


def test_from_channels_maps_named_channels() -> None:
    payload = {
        "time": "1.5",
        "rpm": 2500,
        "map": 65.0,
        "afr": 13.9,
        "clt": 82.0,
        "tps": 30.0,
        "accel_enrich": "0",
        "egt": 720.0,
        "gear": "third",
    }

    sample = TelemetrySample.from_channels(payload)

    assert sample.timestamp == 1.5
    assert sample.load == 65.0
    assert sample.measured == 13.9
    assert sample.throttle_rate is None
    assert sample.accel_enrich is False
    assert sample.channels["egt"] == 720.0
    assert "gear" not in sample.channels


def test_from_channels_honours_custom_channel_map() -> None:
    channel_map = ChannelMap.from_mapping({"load": "maf", "measured": "lambda", "throttle_rate": ""})
    payload = {"time": 0.0, "rpm": 3000, "maf": 42.0, "lambda": 0.98, "clt": 90, "tps": 55, "tps_rate": 3.0}

    sample = TelemetrySample.from_channels(payload, channel_map)

    assert channel_map.throttle_rate is None
    assert sample.load == 42.0
    assert sample.measured == 0.98
    assert sample.throttle_rate is None


@pytest.mark.parametrize(
    ("payload", "field_name"),
    [
        pytest.param({"time": 0, "map": 50, "afr": 14, "clt": 80, "tps": 10}, "rpm", id="missing"),
        pytest.param(
            {"time": 0, "rpm": "n/a", "map": 50, "afr": 14, "clt": 80, "tps": 10}, "rpm", id="non-numeric"
        ),
        pytest.param(
            {"time": 0, "rpm": 2000, "map": 50, "afr": math.nan, "clt": 80, "tps": 10},
            "measured",
            id="nan",
        ),
    ],
)
def test_from_channels_rejects_malformed_payload(payload: dict[str, object], field_name: str) -> None:
    with pytest.raises(MalformedSampleError) as excinfo:
        TelemetrySample.from_channels(payload)

    assert excinfo.value.field_name == field_name


def test_validate_flags_non_finite_fields() -> None:
    assert build_sample().validate().rpm == 2000.0
    with pytest.raises(MalformedSampleError):
        build_sample(coolant_temp=math.inf).validate()


def test_validate_returns_coerced_copy() -> None:
    sample = build_sample(rpm="2000", throttle=25, throttle_rate="1.5", accel_enrich="0")

    validated = sample.validate()

    assert validated.rpm == 2000.0 and isinstance(validated.rpm, float)
    assert isinstance(validated.throttle, float)
    assert validated.throttle_rate == 1.5
    assert validated.accel_enrich is False
    assert sample.rpm == "2000"


@pytest.mark.parametrize("payload", [None, 42, [("rpm", 2000)]])
def test_from_channels_rejects_non_mapping_payload(payload: object) -> None:
    with pytest.raises(MalformedSampleError):
        TelemetrySample.from_channels(payload)  # type: ignore[arg-type]


def test_channel_values_expose_aliases() -> None:
    values = build_sample(throttle_rate=2.0, channels={"egt": 700.0}).channel_values()

    assert values["afr"] == values["measured"] == 14.7
    assert values["tps"] == values["throttle"] == 25.0
    assert values["clt"] == 85.0
    assert values["tps_rate"] == 2.0
    assert values["egt"] == 700.0


def test_select_load_axis_keeps_load_channels() -> None:
    selection = select_load_axis("map", ["rpm", "map", "afr"])

    assert selection.mode is LoadAxisMode.LOAD
    assert selection.channel == "map"
    assert selection.notice is None


def test_select_load_axis_detects_mass_flow_channel() -> None:
    selection = select_load_axis("MAF", ["rpm", "Mass Air Flow", "afr"])

    assert selection.mode is LoadAxisMode.MASS_FLOW
    assert selection.channel == "Mass Air Flow"


def test_select_load_axis_falls_back_with_notice(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="vetune"):
        selection = select_load_axis("maf", ["rpm", "map", "afr"], fallback_channel="map")

    assert selection.mode is LoadAxisMode.LOAD
    assert selection.channel == "map"
    assert selection.notice and "maf" in selection.notice
    assert any(getattr(record, "event", None) == "load_axis.fallback" for record in caplog.records)
