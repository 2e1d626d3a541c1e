"""Table math primitives for calibration grids.

The package is free of I/O and global state: every function receives an
explicit :class:`TableGrid`, selection and parameters and returns either a new
grid or raises one of the errors in :mod:`vetune_core.errors`.
"""

from vetune_core.errors import (
    DataInsufficientError,
    LockedCellError,
    NumericalError,
    OutOfRangeError,
    TableMathError,
    ValidationError,
)
from vetune_core.grid import Cell, TableGrid, check_axis, normalise_selection
from vetune_core.interpolation import (
    bilinear,
    interpolate,
    interpolate_cells,
    interpolate_curve,
    locate,
    lookup_clamped,
    nearest_index,
    rebin,
)
from vetune_core.operations import (
    FillDirection,
    InterpolationAxis,
    add_offset,
    fill_region,
    interpolate_linear,
    scale,
    set_equal,
)
from vetune_core.smoothing import gaussian_kernel, smooth

__all__ = [
    "Cell",
    "DataInsufficientError",
    "FillDirection",
    "InterpolationAxis",
    "LockedCellError",
    "NumericalError",
    "OutOfRangeError",
    "TableGrid",
    "TableMathError",
    "ValidationError",
    "add_offset",
    "bilinear",
    "check_axis",
    "fill_region",
    "gaussian_kernel",
    "interpolate",
    "interpolate_cells",
    "interpolate_curve",
    "interpolate_linear",
    "locate",
    "lookup_clamped",
    "nearest_index",
    "normalise_selection",
    "rebin",
    "scale",
    "set_equal",
    "smooth",
]
