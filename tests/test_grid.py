from __future__ import annotations

import numpy as np
import pytest

from vetune_core import LockedCellError, TableGrid, ValidationError, normalise_selection
from vetune_core.grid import check_axis, reject_locked

from tests.helpers import build_grid


def test_table_grid_validates_shape_and_axes() -> None:
    with pytest.raises(ValidationError):
        TableGrid.from_rows([1.0, 2.0], [1.0], [[1.0, 2.0, 3.0]])
    with pytest.raises(ValidationError):
        TableGrid.from_rows([1.0, 1.0], [1.0], [[1.0, 2.0]])
    with pytest.raises(ValidationError):
        TableGrid.from_rows([1.0, 2.0], [1.0], [[1.0, float("nan")]])


@pytest.mark.parametrize(
    "bins",
    [
        pytest.param([1.0, 3.0, 2.0], id="not-monotonic"),
        pytest.param([], id="empty"),
        pytest.param([1.0, float("inf")], id="non-finite"),
        pytest.param(["a", "b"], id="non-numeric"),
    ],
)
def test_check_axis_rejects_invalid_bins(bins: list[object]) -> None:
    with pytest.raises(ValidationError):
        check_axis("x_bins", bins)


def test_check_axis_accepts_descending_bins() -> None:
    axis = check_axis("y_bins", [100.0, 50.0, 10.0])

    assert axis.tolist() == [100.0, 50.0, 10.0]


def test_table_grid_is_immutable_and_copies_values() -> None:
    rows = [[1.0, 2.0], [3.0, 4.0]]
    grid = build_grid(rows)
    rows[0][0] = 99.0

    assert grid[0, 0] == 1.0
    with pytest.raises(ValueError):
        grid.values[0, 0] = 5.0

    writable = grid.copy_values()
    writable[0, 0] = 5.0
    assert grid[0, 0] == 1.0


def test_table_grid_coordinates_follow_axes() -> None:
    grid = build_grid([[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]], x_bins=[500, 1000, 1500], y_bins=[20, 40])

    assert grid.shape == (2, 3)
    assert grid.coordinates((1, 2)) == (1500.0, 40.0)
    assert grid.contains((1, 2))
    assert not grid.contains((2, 0))
    assert grid.to_lists()["values"] == [[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]]


def test_normalise_selection_deduplicates_in_order() -> None:
    grid = build_grid([[1.0, 2.0], [3.0, 4.0]])

    assert normalise_selection(grid, [(1, 1), (0, 0), (1, 1), (np.int64(0), 1)]) == (
        (1, 1),
        (0, 0),
        (0, 1),
    )


@pytest.mark.parametrize(
    "selection",
    [
        pytest.param([], id="empty"),
        pytest.param([(2, 0)], id="row-out-of-bounds"),
        pytest.param([(0, -1)], id="negative-col"),
        pytest.param([(0.5, 1)], id="float-index"),
        pytest.param([(0,)], id="malformed"),
    ],
)
def test_normalise_selection_rejects_invalid_selection(selection: list[object]) -> None:
    grid = build_grid([[1.0, 2.0], [3.0, 4.0]])

    with pytest.raises(ValidationError):
        normalise_selection(grid, selection)  # type: ignore[arg-type]


def test_reject_locked_lists_blocked_cells() -> None:
    reject_locked([(0, 0)], None)
    reject_locked([(0, 0)], frozenset())

    with pytest.raises(LockedCellError) as excinfo:
        reject_locked([(0, 0), (1, 1), (0, 1)], {(1, 1), (0, 1)})

    assert excinfo.value.cells == ((1, 1), (0, 1))
    assert isinstance(excinfo.value, ValidationError)
