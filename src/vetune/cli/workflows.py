"""Command handlers for the ``vetune`` CLI.

Each handler receives the parsed namespace and the merged configuration
mapping and returns the text to print.
"""

from __future__ import annotations

import argparse
from dataclasses import replace
import logging
from pathlib import Path
from typing import Any, Mapping

import pandas as pd

from vetune_core.errors import TableMathError
from vetune_core.grid import TableGrid
from vetune_core.interpolation import rebin
from vetune_core.smoothing import smooth
from vetune.cli.errors import CliError, cli_error_from_exception
from vetune.cli.io import dump_payload, load_table, parse_bins, parse_cells, write_output
from vetune.configuration import AutoTuneConfig
from vetune.ingestion.replay import replay_datalog
from vetune.recommender.rules import TargetSource
from vetune.session import AutoTuneSession

__all__ = ["_handle_rebin", "_handle_replay", "_handle_smooth"]


logger = logging.getLogger(__name__)


def _settings(config: Mapping[str, Any]) -> AutoTuneConfig:
    settings = config.get("_settings")
    if isinstance(settings, AutoTuneConfig):
        return settings
    return AutoTuneConfig.from_mapping(config)


def _resolve_target(namespace: argparse.Namespace, settings: AutoTuneConfig) -> TargetSource:
    raw = getattr(namespace, "target", None)
    if raw is not None:
        try:
            return float(raw)
        except ValueError:
            return load_table(Path(raw))
    path = settings.target_path()
    if path is None:
        return float(settings.target)
    return load_table(path)


def _handle_replay(namespace: argparse.Namespace, *, config: Mapping[str, Any]) -> str:
    settings = _settings(config)
    table = load_table(namespace.table)
    target = _resolve_target(namespace, settings)
    filters = settings.filters

    try:
        if namespace.filter is not None:
            filters = replace(filters, custom_filter=namespace.filter)
        session = AutoTuneSession(
            table,
            target,
            filters=filters,
            limits=settings.authority,
            compensator=settings.delay.build(),
        )
        if namespace.lock:
            session.lock(parse_cells(namespace.lock, table))
        session.start()
        summary = replay_datalog(
            session,
            namespace.datalog,
            channel_map=settings.channels,
            delimiter=namespace.delimiter,
        )
        session.stop()
        payload: dict[str, Any] = {
            "replay": summary.as_dict(),
            "statistics": session.statistics(),
            "recommendations": session.heatmap().records(),
        }
        if namespace.apply:
            payload["table"] = session.apply_recommendations().to_lists()
    except FileNotFoundError as exc:
        raise cli_error_from_exception(exc, command="replay") from exc
    except TableMathError as exc:
        raise cli_error_from_exception(exc, command="replay") from exc
    except (pd.errors.EmptyDataError, pd.errors.ParserError) as exc:
        raise CliError(
            f"Unable to parse datalog {namespace.datalog}: {exc}",
            category="usage",
            command="replay",
            context={"path": str(namespace.datalog)},
        ) from exc
    return write_output(dump_payload(payload), namespace.output)


def _handle_rebin(namespace: argparse.Namespace, *, config: Mapping[str, Any]) -> str:
    table = load_table(namespace.table)
    new_x = parse_bins(namespace.x_bins, name="--x-bins") if namespace.x_bins else table.x_bins.tolist()
    new_y = parse_bins(namespace.y_bins, name="--y-bins") if namespace.y_bins else table.y_bins.tolist()
    try:
        result: TableGrid = rebin(table, new_x, new_y)
    except TableMathError as exc:
        raise cli_error_from_exception(exc, command="rebin") from exc
    logger.info(
        "Table rebinned.",
        extra={"event": "cli.rebin", "rows": result.rows, "cols": result.cols},
    )
    return write_output(dump_payload(result.to_lists()), namespace.output)


def _handle_smooth(namespace: argparse.Namespace, *, config: Mapping[str, Any]) -> str:
    table = load_table(namespace.table)
    cells = parse_cells(namespace.cells, table)
    if namespace.kernel_size < 1:
        raise CliError("--kernel-size must be >= 1", category="usage", command="smooth")
    try:
        result = smooth(table, cells, namespace.kernel_size, sigma=namespace.sigma)
    except TableMathError as exc:
        raise cli_error_from_exception(exc, command="smooth") from exc
    logger.info(
        "Table smoothed.",
        extra={"event": "cli.smooth", "cells": len(cells), "kernel_size": namespace.kernel_size},
    )
    return write_output(dump_payload(result.to_lists()), namespace.output)
