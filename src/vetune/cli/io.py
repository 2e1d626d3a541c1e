"""Table and payload I/O helpers for the ``vetune`` CLI.

Tables are exchanged as TOML or JSON documents holding ``x_bins``,
``y_bins`` and ``values`` (rows follow ``y_bins``).
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - Python < 3.11 fallback
    import tomli as tomllib  # type: ignore

from vetune_core.errors import ValidationError
from vetune_core.grid import Cell, TableGrid
from vetune.cli.errors import CliError

__all__ = [
    "dump_payload",
    "load_table",
    "parse_bins",
    "parse_cells",
    "table_from_mapping",
    "write_output",
]


def table_from_mapping(payload: Mapping[str, Any], *, source: str = "<memory>") -> TableGrid:
    section = payload.get("table", payload)
    if not isinstance(section, Mapping):
        raise CliError(f"Table document {source} has no table data", category="usage")
    missing = [key for key in ("x_bins", "y_bins", "values") if key not in section]
    if missing:
        raise CliError(
            f"Table document {source} is missing: {', '.join(missing)}",
            category="usage",
            context={"path": source},
        )
    try:
        return TableGrid.from_rows(section["x_bins"], section["y_bins"], section["values"])
    except ValidationError as exc:
        raise CliError(
            f"Invalid table in {source}: {exc}",
            category="usage",
            context={"path": source},
        ) from exc


def load_table(path: Path) -> TableGrid:
    """Load a table from a ``.toml`` or ``.json`` document."""

    source = Path(path).expanduser()
    if not source.is_file():
        raise CliError(
            f"Table file {source} does not exist",
            category="not_found",
            context={"path": str(source)},
        )
    try:
        if source.suffix.lower() == ".json":
            with source.open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        else:
            with source.open("rb") as handle:
                payload = tomllib.load(handle)
    except OSError as exc:
        raise CliError(str(exc), category="io", context={"path": str(source)}) from exc
    except (ValueError, tomllib.TOMLDecodeError) as exc:
        raise CliError(
            f"Unable to parse table file {source}: {exc}",
            category="usage",
            context={"path": str(source)},
        ) from exc
    if not isinstance(payload, Mapping):
        raise CliError(f"Table file {source} must contain a mapping", category="usage")
    return table_from_mapping(payload, source=str(source))


def parse_bins(raw: str, *, name: str) -> list[float]:
    """Parse ``"500,1000,1500"`` into a list of floats."""

    try:
        bins = [float(item) for item in raw.replace(";", ",").split(",") if item.strip()]
    except ValueError as exc:
        raise CliError(f"{name} must be a comma separated list of numbers", category="usage") from exc
    if not bins:
        raise CliError(f"{name} must not be empty", category="usage")
    return bins


def parse_cells(raw: str | None, table: TableGrid) -> list[Cell]:
    """Parse ``"0,1;2,3"`` into cells; ``None`` or ``"all"`` selects every cell."""

    if raw is None or raw.strip().lower() == "all":
        return [(row, col) for row in range(table.rows) for col in range(table.cols)]
    cells: list[Cell] = []
    for chunk in raw.split(";"):
        if not chunk.strip():
            continue
        parts = chunk.split(",")
        if len(parts) != 2:
            raise CliError(f"Invalid cell '{chunk}', expected 'row,col'", category="usage")
        try:
            cells.append((int(parts[0]), int(parts[1])))
        except ValueError as exc:
            raise CliError(f"Invalid cell '{chunk}', expected integers", category="usage") from exc
    return cells


def dump_payload(payload: Mapping[str, Any]) -> str:
    return json.dumps(payload, indent=2, sort_keys=False)


def write_output(text: str, destination: Path | None) -> str:
    """Write ``text`` to ``destination`` when given; return what to print."""

    if destination is None:
        return text
    target = Path(destination).expanduser()
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text if text.endswith("\n") else text + "\n", encoding="utf-8")
    except OSError as exc:
        raise CliError(str(exc), category="io", context={"path": str(target)}) from exc
    return f"Wrote {target}"
