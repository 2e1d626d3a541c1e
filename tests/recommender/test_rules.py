from __future__ import annotations

import logging

import numpy as np
import pytest

from vetune_core import TableGrid, ValidationError
from vetune.recommender.accumulator import CellAccumulator
from vetune.recommender.heatmap import build_heatmap
from vetune.recommender.rules import (
    AuthorityLimits,
    RecommendationEngine,
    apply_authority_limits,
    compute_recommendations,
    resolve_target,
)

from tests.helpers import build_grid, build_ve_table


def test_authority_clamp_uses_tightest_interval() -> None:
    limits = AuthorityLimits(max_absolute_change=30.0, max_percentage_change=0.20)

    assert apply_authority_limits(100.0, 160.0, limits) == pytest.approx(120.0)
    assert apply_authority_limits(100.0, 40.0, limits) == pytest.approx(80.0)
    assert apply_authority_limits(100.0, 105.0, limits) == 105.0


def test_authority_absolute_limit_can_be_tighter() -> None:
    limits = AuthorityLimits(max_absolute_change=5.0, max_percentage_change=0.20)

    assert apply_authority_limits(100.0, 160.0, limits) == pytest.approx(105.0)


def test_inactive_limits_pass_raw_value() -> None:
    assert apply_authority_limits(100.0, 160.0, AuthorityLimits.unlimited()) == 160.0
    assert apply_authority_limits(100.0, 160.0, AuthorityLimits(None, 0.5)) == pytest.approx(150.0)


def test_percentage_limit_with_negative_baseline() -> None:
    limits = AuthorityLimits(max_absolute_change=None, max_percentage_change=0.10)

    assert apply_authority_limits(-10.0, -20.0, limits) == pytest.approx(-11.0)


@pytest.mark.parametrize(
    "payload",
    [{"max_absolute_change": -1.0}, {"max_percentage_change": "lots"}, {"max_absolute_change": float("nan")}],
)
def test_authority_limits_validation(payload: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        AuthorityLimits.from_mapping(payload)


def test_authority_limits_from_mapping_allows_disabling() -> None:
    limits = AuthorityLimits.from_mapping({"max_absolute_change": None})

    assert limits.max_absolute_change is None
    assert limits.max_percentage_change == 0.20


def test_recommendation_follows_measured_over_target_ratio() -> None:
    baseline = build_ve_table(75.0)
    accumulator = CellAccumulator(*baseline.shape)
    for _ in range(10):
        accumulator.add(1, 1, 15.5)

    result = compute_recommendations(accumulator.snapshot(), baseline, 14.7, AuthorityLimits.unlimited())

    item = result.get((1, 1))
    assert item is not None
    assert item.recommended_value == pytest.approx(75.0 * 15.5 / 14.7)
    assert item.recommended_value == pytest.approx(79.05, abs=0.05)
    assert item.hit_count == 10
    assert item.hit_percentage == pytest.approx(100.0)
    assert (item.x, item.y) == (2000.0, 60.0)
    assert result.get((0, 0)) is None
    assert len(result) == 1


def test_locked_cell_reports_beginning_value() -> None:
    baseline = build_ve_table(75.0)
    accumulator = CellAccumulator(*baseline.shape)
    accumulator.add(0, 0, 16.0)
    accumulator.add(0, 1, 16.0)
    accumulator.lock([(0, 0)])

    result = compute_recommendations(accumulator.snapshot(), baseline, 14.7)

    assert result.get((0, 0)).recommended_value == 75.0
    assert result.get((0, 0)).locked
    assert result.get((0, 1)).recommended_value > 75.0
    assert result.materialize() == {(0, 1): result.get((0, 1)).recommended_value}


def test_hit_percentage_is_share_of_total_hits() -> None:
    baseline = build_ve_table()
    accumulator = CellAccumulator(*baseline.shape)
    for _ in range(3):
        accumulator.add(0, 0, 14.7)
    accumulator.add(2, 3, 14.7)

    result = compute_recommendations(accumulator.snapshot(), baseline, 14.7)

    assert result.get((0, 0)).hit_percentage == pytest.approx(75.0)
    assert result.get((2, 3)).hit_percentage == pytest.approx(25.0)
    assert result.get((0, 0)).recommended_value == pytest.approx(75.0)


def test_target_table_lookup_is_clamped_to_edges() -> None:
    target = TableGrid.from_rows([1500.0, 3500.0], [40.0, 80.0], [[12.0, 13.0], [14.0, 15.0]])

    assert resolve_target(target, 1000.0, 30.0) == 12.0
    assert resolve_target(target, 2500.0, 60.0) == pytest.approx(13.5)
    assert resolve_target(14.7, 0.0, 0.0) == 14.7


def test_non_positive_target_cell_is_skipped(caplog: pytest.LogCaptureFixture) -> None:
    baseline = build_grid([[75.0, 75.0]], x_bins=[1000.0, 2000.0], y_bins=[50.0])
    target = build_grid([[0.0, 14.7]], x_bins=[1000.0, 2000.0], y_bins=[50.0])
    accumulator = CellAccumulator(1, 2)
    accumulator.add(0, 0, 14.0)
    accumulator.add(0, 1, 14.0)

    with caplog.at_level(logging.WARNING, logger="vetune"):
        result = compute_recommendations(accumulator.snapshot(), baseline, target)

    assert result.skipped == ((0, 0),)
    assert (0, 1) in result
    assert any(getattr(record, "event", None) == "recommendation.skipped" for record in caplog.records)


def test_shape_mismatch_is_rejected() -> None:
    with pytest.raises(ValidationError):
        compute_recommendations(CellAccumulator(1, 1).snapshot(), build_ve_table(), 14.7)


def test_engine_binds_target_and_limits() -> None:
    baseline = build_ve_table(100.0)
    accumulator = CellAccumulator(*baseline.shape)
    accumulator.add(0, 0, 29.4)
    engine = RecommendationEngine(14.7, AuthorityLimits(max_absolute_change=30.0, max_percentage_change=0.2))

    result = engine.recommend(accumulator.snapshot(), baseline)

    assert result.get((0, 0)).recommended_value == pytest.approx(120.0)


def test_heatmap_normalises_coverage_and_change() -> None:
    baseline = build_ve_table(100.0)
    accumulator = CellAccumulator(*baseline.shape)
    accumulator.add(0, 0, 14.7 * 1.1, weight=2.0)
    accumulator.add(1, 2, 14.7 * 1.05)
    snapshot = accumulator.snapshot()
    recommendations = compute_recommendations(snapshot, baseline, 14.7, AuthorityLimits.unlimited())

    heatmap = build_heatmap(recommendations, snapshot, baseline)

    assert heatmap.coverage[0, 0] == 1.0
    assert heatmap.coverage[1, 2] == pytest.approx(0.5)
    assert heatmap.change[0, 0] == pytest.approx(1.0)
    assert heatmap.change[1, 2] == pytest.approx(0.5)
    assert float(heatmap.change.max()) <= 1.0
    assert heatmap.cells[(0, 0)].change_magnitude == pytest.approx(10.0)
    records = heatmap.records()
    assert [(record["row"], record["col"]) for record in records] == [(0, 0), (1, 2)]
    assert records[0]["weight_total"] == 2.0


def test_heatmap_of_empty_session_is_zero() -> None:
    baseline = build_ve_table()
    snapshot = CellAccumulator(*baseline.shape).snapshot()

    heatmap = build_heatmap(compute_recommendations(snapshot, baseline, 14.7), snapshot, baseline)

    assert heatmap.cells == {}
    assert np.count_nonzero(heatmap.coverage) == 0
    assert np.count_nonzero(heatmap.change) == 0
