from __future__ import annotations

import pytest

from vetune_core import ValidationError
from vetune.ingestion.delay import (
    DelayCompensator,
    DelayCurve,
    OperatingPoint,
    OperatingPointHistory,
)

from tests.helpers import build_sample


X_BINS = [1000.0, 2000.0, 3000.0, 4000.0]
Y_BINS = [30.0, 60.0, 90.0]


@pytest.mark.parametrize(
    ("rpm", "expected"),
    [(500.0, 0.2), (800.0, 0.2), (3400.0, 0.125), (6000.0, 0.05), (9000.0, 0.05)],
)
def test_default_delay_curve_is_clamped(rpm: float, expected: float) -> None:
    assert DelayCurve()(rpm) == pytest.approx(expected)


def test_delay_curve_validation() -> None:
    with pytest.raises(ValidationError):
        DelayCurve(rpm=(1000.0, 500.0), seconds=(0.1, 0.1))
    with pytest.raises(ValidationError):
        DelayCurve(rpm=(1000.0,), seconds=(0.1, 0.2))
    with pytest.raises(ValidationError):
        DelayCurve(rpm=(1000.0,), seconds=(-0.1,))

    assert DelayCurve(rpm=(1000.0,), seconds=(0.08,))(4000.0) == pytest.approx(0.08)


def test_history_stays_sorted_and_expires_old_points() -> None:
    history = OperatingPointHistory(capacity=8, max_age=0.5)
    for timestamp in (0.0, 0.2, 0.1, 0.4):
        history.push(OperatingPoint(timestamp, timestamp * 1000.0, 50.0))

    assert [point.timestamp for point in history] == [0.0, 0.1, 0.2, 0.4]

    history.push(OperatingPoint(0.65, 650.0, 50.0))

    assert [point.timestamp for point in history] == [0.2, 0.4, 0.65]


def test_history_capacity_evicts_oldest() -> None:
    history = OperatingPointHistory(capacity=3, max_age=10.0)
    for timestamp in (0.0, 0.1, 0.2, 0.3):
        history.push(OperatingPoint(timestamp, 0.0, 0.0))

    assert len(history) == 3
    assert [point.timestamp for point in history] == [0.1, 0.2, 0.3]

    history.push(OperatingPoint(0.05, 0.0, 0.0))
    assert [point.timestamp for point in history] == [0.1, 0.2, 0.3]


def test_history_bracket() -> None:
    history = OperatingPointHistory(capacity=4, max_age=1.0)
    for timestamp in (0.0, 0.1, 0.2):
        history.push(OperatingPoint(timestamp, 0.0, 0.0))

    before, after = history.bracket(0.15)
    assert (before.timestamp, after.timestamp) == (0.1, 0.2)
    before, after = history.bracket(0.3)
    assert before.timestamp == 0.2 and after is None
    before, after = history.bracket(-0.1)
    assert before is None and after.timestamp == 0.0


def test_resolve_interpolates_delayed_operating_point() -> None:
    compensator = DelayCompensator(DelayCurve(rpm=(0.0, 10000.0), seconds=(0.1, 0.1)))
    compensator.record(build_sample(timestamp=0.0, rpm=1000.0, load=30.0))
    compensator.record(build_sample(timestamp=0.2, rpm=3000.0, load=90.0))
    current = build_sample(timestamp=0.2, rpm=3000.0, load=90.0)

    point = compensator.resolve(current, X_BINS, Y_BINS)

    assert point.from_history
    assert point.delay == pytest.approx(0.1)
    assert point.x == pytest.approx(2000.0)
    assert point.y == pytest.approx(60.0)
    assert point.cell == (1, 1)


def test_resolve_uses_single_side_within_tolerance() -> None:
    compensator = DelayCompensator(
        DelayCurve(rpm=(0.0, 10000.0), seconds=(0.1, 0.1)),
        match_tolerance=0.05,
    )
    compensator.record(build_sample(timestamp=1.0, rpm=4000.0, load=90.0))
    current = build_sample(timestamp=1.13, rpm=1000.0, load=30.0)

    point = compensator.resolve(current, X_BINS, Y_BINS)

    assert point.from_history
    assert point.cell == (2, 3)


def test_resolve_falls_back_to_current_point() -> None:
    compensator = DelayCompensator()
    current = build_sample(timestamp=5.0, rpm=2100.0, load=58.0)
    compensator.record(current)

    point = compensator.resolve(current, X_BINS, Y_BINS)

    assert not point.from_history
    assert (point.x, point.y) == (2100.0, 58.0)
    assert point.cell == (1, 1)


def test_clear_discards_history() -> None:
    compensator = DelayCompensator()
    compensator.record(build_sample(timestamp=0.0))
    assert len(compensator) == 1

    compensator.clear()

    assert len(compensator) == 0


def test_negative_tolerance_is_rejected() -> None:
    with pytest.raises(ValidationError):
        DelayCompensator(match_tolerance=-0.01)
