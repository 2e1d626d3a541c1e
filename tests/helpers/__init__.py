"""Convenience re-exports for test helpers."""

from __future__ import annotations

from tests.helpers.samples import build_sample, steady_samples
from tests.helpers.tables import build_grid, build_ve_table, write_table_toml

__all__ = [
    "build_grid",
    "build_sample",
    "build_ve_table",
    "steady_samples",
    "write_table_toml",
]
