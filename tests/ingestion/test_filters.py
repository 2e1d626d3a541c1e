from __future__ import annotations

import logging

import numpy as np
import pytest

from vetune_core import ValidationError
from vetune.ingestion.filters import (
    FilterConfig,
    RejectReason,
    SampleFilterPipeline,
    compile_expression,
)

from tests.helpers import build_sample


def test_steady_sample_is_admitted() -> None:
    pipeline = SampleFilterPipeline()

    decision = pipeline.evaluate(build_sample())

    assert decision.admitted
    assert decision.reason is None
    assert pipeline.statistics == {"admitted": 1}


@pytest.mark.parametrize(
    ("overrides", "reason"),
    [
        pytest.param({"rpm": 900.0}, RejectReason.RPM, id="below-min-rpm"),
        pytest.param({"rpm": 7100.0}, RejectReason.RPM, id="above-max-rpm"),
        pytest.param({"coolant_temp": 40.0}, RejectReason.COOLANT, id="cold-engine"),
        pytest.param({"throttle": 0.5}, RejectReason.THROTTLE, id="closed-throttle"),
        pytest.param({"throttle_rate": 25.0}, RejectReason.TPS_RATE, id="tip-in"),
        pytest.param({"throttle_rate": -25.0}, RejectReason.TPS_RATE, id="tip-out"),
        pytest.param({"accel_enrich": True}, RejectReason.ACCEL_ENRICH, id="accel-enrich"),
    ],
)
def test_rejection_reasons(overrides: dict[str, object], reason: RejectReason) -> None:
    pipeline = SampleFilterPipeline()

    decision = pipeline.evaluate(build_sample(**overrides))

    assert not decision
    assert decision.reason is reason
    assert pipeline.statistics[reason.value] == 1


def test_range_edges_are_inclusive() -> None:
    pipeline = SampleFilterPipeline(FilterConfig(min_rpm=1000.0, max_rpm=7000.0, min_clt=60.0))

    assert pipeline.evaluate(build_sample(rpm=1000.0, coolant_temp=60.0)).admitted
    assert pipeline.evaluate(build_sample(rpm=7000.0, timestamp=1.0)).admitted


def test_throttle_rate_is_derived_from_previous_sample() -> None:
    pipeline = SampleFilterPipeline(FilterConfig(max_tps_rate=10.0))

    first = pipeline.evaluate(build_sample(timestamp=0.0, throttle=20.0, throttle_rate=None))
    slow = pipeline.evaluate(build_sample(timestamp=1.0, throttle=25.0, throttle_rate=None))
    fast = pipeline.evaluate(build_sample(timestamp=1.1, throttle=40.0, throttle_rate=None))

    assert first.admitted and first.throttle_rate == 0.0
    assert slow.admitted and slow.throttle_rate == pytest.approx(5.0)
    assert fast.reason is RejectReason.TPS_RATE
    assert fast.throttle_rate == pytest.approx(150.0)


def test_reset_clears_rate_state_and_counters() -> None:
    pipeline = SampleFilterPipeline()
    pipeline.evaluate(build_sample(timestamp=0.0, throttle=20.0, throttle_rate=None))
    pipeline.reset()

    decision = pipeline.evaluate(build_sample(timestamp=0.1, throttle=80.0, throttle_rate=None))

    assert decision.admitted
    assert pipeline.statistics == {"admitted": 1}


def test_optional_load_window() -> None:
    pipeline = SampleFilterPipeline(FilterConfig(min_load=40.0, max_load=80.0))

    assert pipeline.evaluate(build_sample(load=30.0)).reason is RejectReason.LOAD
    assert pipeline.evaluate(build_sample(load=90.0, timestamp=1.0)).reason is RejectReason.LOAD
    assert pipeline.evaluate(build_sample(load=60.0, timestamp=2.0)).admitted


def test_accel_enrich_flag_can_be_ignored() -> None:
    pipeline = SampleFilterPipeline(FilterConfig(exclude_accel_enrich=False))

    assert pipeline.evaluate(build_sample(accel_enrich=True)).admitted


def test_custom_expression_filters_on_channels() -> None:
    pipeline = SampleFilterPipeline(FilterConfig(custom_filter="rpm > 2500 && tps < 50"))

    assert pipeline.evaluate(build_sample(rpm=3000.0)).admitted
    rejected = pipeline.evaluate(build_sample(rpm=2000.0, timestamp=1.0))
    assert rejected.reason is RejectReason.CUSTOM


def test_custom_callable_receives_channel_mapping() -> None:
    seen: list[dict[str, object]] = []

    def predicate(channels):
        seen.append(dict(channels))
        return channels["egt"] < 900

    pipeline = SampleFilterPipeline(FilterConfig(custom_filter=predicate))

    assert pipeline.evaluate(build_sample(channels={"egt": 850.0})).admitted
    assert not pipeline.evaluate(build_sample(channels={"egt": 950.0}, timestamp=1.0)).admitted
    assert seen[0]["afr"] == 14.7
    assert seen[0]["tps_rate"] == 0.0


def test_custom_expression_errors_reject_with_rate_limited_warning(
    caplog: pytest.LogCaptureFixture,
) -> None:
    pipeline = SampleFilterPipeline(FilterConfig(custom_filter="boost > 5"))

    with caplog.at_level(logging.WARNING, logger="vetune"):
        first = pipeline.evaluate(build_sample(timestamp=0.0))
        second = pipeline.evaluate(build_sample(timestamp=0.1))

    assert first.reason is RejectReason.CUSTOM_ERROR
    assert second.reason is RejectReason.CUSTOM_ERROR
    events = [record for record in caplog.records if getattr(record, "event", None) == "filters.custom_error"]
    assert len(events) == 1
    assert pipeline.statistics["custom_error"] == 2


def test_ambiguous_predicate_result_is_an_evaluation_error() -> None:
    pipeline = SampleFilterPipeline(FilterConfig(custom_filter=lambda channels: np.array([True, False])))

    decision = pipeline.evaluate(build_sample())

    assert decision.reason is RejectReason.CUSTOM_ERROR
    assert pipeline.statistics == {"custom_error": 1, "admitted": 0}


@pytest.mark.parametrize(
    "source",
    [
        pytest.param("__import__('os').system('true')", id="call"),
        pytest.param("rpm.real > 1", id="attribute"),
        pytest.param("'text' == rpm", id="string-constant"),
        pytest.param("rpm >", id="syntax-error"),
        pytest.param("[rpm][0] > 1", id="subscript"),
    ],
)
def test_compile_expression_rejects_unsafe_constructs(source: str) -> None:
    with pytest.raises(ValidationError):
        compile_expression(source)


def test_compile_expression_accepts_c_style_operators() -> None:
    predicate = compile_expression("{ !accel_enrich && (map >= 40 || rpm != 3000) }")

    assert predicate({"accel_enrich": False, "map": 50.0, "rpm": 3000.0})
    assert not predicate({"accel_enrich": True, "map": 50.0, "rpm": 3000.0})
    assert not predicate({"accel_enrich": False, "map": 30.0, "rpm": 3000.0})


@pytest.mark.parametrize(
    "payload",
    [
        pytest.param({"min_rpm": 5000, "max_rpm": 1000}, id="inverted-rpm"),
        pytest.param({"min_load": 90, "max_load": 10}, id="inverted-load"),
        pytest.param({"max_tps_rate": -1}, id="negative-rate"),
        pytest.param({"min_rpm": "fast"}, id="non-numeric"),
    ],
)
def test_filter_config_rejects_invalid_ranges(payload: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        FilterConfig.from_mapping(payload)


def test_filter_config_from_mapping_keeps_defaults() -> None:
    config = FilterConfig.from_mapping({"min_rpm": 1500, "custom_filter": "  "})

    assert config.min_rpm == 1500.0
    assert config.max_rpm == 7000.0
    assert config.custom_filter is None
    assert FilterConfig.from_mapping(None) == FilterConfig()
