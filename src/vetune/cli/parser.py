"""Argument parsing for the ``vetune`` CLI."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any, Mapping, Optional

from vetune._version import __version__
from vetune.cli.workflows import _handle_rebin, _handle_replay, _handle_smooth


def _add_output_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--output",
        "-o",
        type=Path,
        default=None,
        help="Write the JSON result to this file instead of stdout.",
    )


def build_parser(config: Optional[Mapping[str, Any]] = None) -> argparse.ArgumentParser:
    config = dict(config or {})
    logging_cfg = config.get("logging", {})
    if not isinstance(logging_cfg, Mapping):
        logging_cfg = {}

    parser = argparse.ArgumentParser(
        prog="vetune",
        description="Closed-loop VE table auto-tuning and table utilities.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--config",
        dest="config_path",
        type=Path,
        default=None,
        help="Path to a TOML configuration file or a pyproject.toml with [tool.vetune].",
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        default=logging_cfg.get("level", "info"),
        help="Logging level (e.g. debug, info, warning).",
    )
    parser.add_argument(
        "--log-output",
        dest="log_output",
        default=logging_cfg.get("output", "stderr"),
        help="Logging destination (stdout, stderr or a file path).",
    )
    parser.add_argument(
        "--log-format",
        dest="log_format",
        choices=("json", "text"),
        default=logging_cfg.get("format", "json"),
        help="Logging formatter (json or text).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    replay_parser = subparsers.add_parser(
        "replay",
        help="Replay a CSV datalog against a table and report recommendations.",
    )
    replay_parser.add_argument("table", type=Path, help="Table file (TOML or JSON).")
    replay_parser.add_argument("datalog", type=Path, help="CSV datalog to replay.")
    replay_parser.add_argument(
        "--target",
        default=None,
        help="Target value or target table file (default: configured target).",
    )
    replay_parser.add_argument(
        "--lock",
        default=None,
        help="Cells to lock before replaying, as 'row,col;row,col'.",
    )
    replay_parser.add_argument(
        "--filter",
        default=None,
        help="Custom filter expression, e.g. 'rpm > 2000 && tps < 80'.",
    )
    replay_parser.add_argument(
        "--delimiter",
        default=None,
        help="CSV delimiter (default: detected).",
    )
    replay_parser.add_argument(
        "--apply",
        action="store_true",
        help="Include the table with recommendations applied in the output.",
    )
    _add_output_argument(replay_parser)
    replay_parser.set_defaults(handler=_handle_replay)

    rebin_parser = subparsers.add_parser(
        "rebin",
        help="Resample a table onto new axis bins.",
    )
    rebin_parser.add_argument("table", type=Path, help="Table file (TOML or JSON).")
    rebin_parser.add_argument("--x-bins", dest="x_bins", default=None, help="New x bins, comma separated.")
    rebin_parser.add_argument("--y-bins", dest="y_bins", default=None, help="New y bins, comma separated.")
    _add_output_argument(rebin_parser)
    rebin_parser.set_defaults(handler=_handle_rebin)

    smooth_parser = subparsers.add_parser(
        "smooth",
        help="Apply Gaussian smoothing to a selection of cells.",
    )
    smooth_parser.add_argument("table", type=Path, help="Table file (TOML or JSON).")
    smooth_parser.add_argument(
        "--cells",
        default=None,
        help="Cells to smooth as 'row,col;row,col' (default: all).",
    )
    smooth_parser.add_argument("--kernel-size", dest="kernel_size", type=int, default=1)
    smooth_parser.add_argument("--sigma", type=float, default=None)
    _add_output_argument(smooth_parser)
    smooth_parser.set_defaults(handler=_handle_smooth)

    return parser


__all__ = ["build_parser"]
