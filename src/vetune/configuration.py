"""Helpers to load project-level configuration files.

Configuration is layered: the packaged ``autotune.yaml`` defaults first, then
the ``[tool.vetune]`` table of a ``pyproject.toml`` (or a standalone TOML
file passed explicitly).  :class:`AutoTuneConfig` turns the merged mapping
into the typed settings consumed by :class:`~vetune.session.AutoTuneSession`.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping as ABCMapping
from dataclasses import dataclass, field
from importlib import resources
import os
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - Python < 3.11 fallback
    import tomli as tomllib  # type: ignore

from vetune.ingestion.delay import DEFAULT_HISTORY_CAPACITY, DelayCompensator, DelayCurve
from vetune.ingestion.filters import FilterConfig
from vetune.ingestion.samples import ChannelMap
from vetune.recommender.rules import AuthorityLimits

__all__ = [
    "CONFIG_ENV_VAR",
    "AutoTuneConfig",
    "ConfigurationError",
    "DelaySettings",
    "load_autotune_config",
    "load_config_file",
    "load_default_config",
    "load_project_config",
    "merge_config",
]


CONFIG_ENV_VAR = "VETUNE_CONFIG"
_PROJECT_FILENAME = "pyproject.toml"
_TOOL_SECTION = "vetune"
_DEFAULTS_PACKAGE = "vetune.resources.config"
_DEFAULTS_NAME = "autotune.yaml"


class ConfigurationError(RuntimeError):
    """Raised when a configuration source cannot be read or parsed."""

    def __init__(self, message: str, *, path: Path | str | None = None) -> None:
        super().__init__(message)
        self.path = str(path) if path is not None else None


def _as_dict(payload: ABCMapping[str, Any]) -> dict[str, Any]:
    """Recursively coerce TOML/YAML mappings into regular dictionaries."""

    result: dict[str, Any] = {}
    for key, value in payload.items():
        key_str = str(key)
        if isinstance(value, ABCMapping):
            result[key_str] = _as_dict(value)
        elif isinstance(value, list):
            result[key_str] = [
                _as_dict(item) if isinstance(item, ABCMapping) else item for item in value
            ]
        else:
            result[key_str] = value
    return result


def merge_config(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Return ``base`` deep-merged with ``override`` (override wins)."""

    merged = _as_dict(base)
    for key, value in override.items():
        key_str = str(key)
        existing = merged.get(key_str)
        if isinstance(existing, ABCMapping) and isinstance(value, ABCMapping):
            merged[key_str] = merge_config(existing, value)
        elif isinstance(value, ABCMapping):
            merged[key_str] = _as_dict(value)
        else:
            merged[key_str] = value
    return merged


def _resolve_pyproject_path(candidate: Path) -> Path | None:
    candidate = candidate.expanduser()
    if candidate.name == _PROJECT_FILENAME:
        return candidate
    if candidate.suffix:
        return None
    return candidate / _PROJECT_FILENAME


def _iter_unique_paths(paths: Iterable[Path]) -> list[Path]:
    seen: dict[Path, None] = {}
    ordered: list[Path] = []
    for path in paths:
        resolved = path.expanduser().resolve(strict=False)
        if resolved in seen:
            continue
        seen[resolved] = None
        ordered.append(resolved)
    return ordered


def _load_toml_mapping(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    try:
        with path.open("rb") as handle:
            data = tomllib.load(handle)
    except OSError as exc:
        raise ConfigurationError(f"Unable to read configuration file {path}: {exc}", path=path) from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(f"Invalid TOML in {path}: {exc}", path=path) from exc
    if isinstance(data, ABCMapping):
        return _as_dict(data)
    return None


def load_project_config(path: Path) -> tuple[dict[str, Any], Path] | None:
    """Load the ``[tool.vetune]`` section from ``pyproject.toml``."""

    pyproject_path = _resolve_pyproject_path(path)
    if pyproject_path is None:
        return None

    pyproject_path = pyproject_path.expanduser().resolve(strict=False)
    pyproject_payload = _load_toml_mapping(pyproject_path)
    if not pyproject_payload:
        return None

    tool_section = pyproject_payload.get("tool")
    if not isinstance(tool_section, ABCMapping):
        return None

    section = tool_section.get(_TOOL_SECTION)
    if not isinstance(section, ABCMapping):
        return None

    return _as_dict(section), pyproject_path


def load_config_file(path: Path | str) -> tuple[dict[str, Any], Path]:
    """Load an explicit configuration file.

    A ``pyproject.toml`` (or a directory holding one) contributes its
    ``[tool.vetune]`` table; any other TOML file is read as a whole.
    """

    candidate = Path(path).expanduser()
    if candidate.is_dir() or candidate.name == _PROJECT_FILENAME:
        loaded = load_project_config(candidate)
        if loaded is None:
            raise ConfigurationError(
                f"No [tool.{_TOOL_SECTION}] table found in {candidate}", path=candidate
            )
        return loaded
    if not candidate.is_file():
        raise ConfigurationError(f"Configuration file {candidate} does not exist", path=candidate)
    payload = _load_toml_mapping(candidate) or {}
    tool_section = payload.get("tool")
    if isinstance(tool_section, ABCMapping) and isinstance(tool_section.get(_TOOL_SECTION), ABCMapping):
        payload = _as_dict(tool_section[_TOOL_SECTION])
    return payload, candidate.resolve(strict=False)


def load_default_config() -> dict[str, Any]:
    """Return the packaged defaults bundled with :mod:`vetune`."""

    resource = resources.files(_DEFAULTS_PACKAGE).joinpath(_DEFAULTS_NAME)
    try:
        data = yaml.safe_load(resource.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:  # pragma: no cover - packaged file
        raise ConfigurationError(f"Invalid packaged defaults: {exc}", path=str(resource)) from exc
    if not isinstance(data, ABCMapping):
        return {}
    return _as_dict(data)


def _coerce_target(raw: Any) -> float | str:
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return float(raw)
    if isinstance(raw, str) and raw.strip():
        try:
            return float(raw)
        except ValueError:
            return raw.strip()
    raise ConfigurationError(f"target must be a number or a table path, got {raw!r}")


@dataclass(frozen=True, slots=True)
class DelaySettings:
    curve: DelayCurve = field(default_factory=DelayCurve)
    max_age: float = 0.5
    match_tolerance: float = 0.05
    capacity: int = DEFAULT_HISTORY_CAPACITY

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> "DelaySettings":
        if not payload:
            return cls()
        defaults = cls()
        curve_payload = payload.get("curve")
        return cls(
            curve=DelayCurve.from_mapping(curve_payload if isinstance(curve_payload, ABCMapping) else None),
            max_age=float(payload.get("max_age", defaults.max_age)),
            match_tolerance=float(payload.get("match_tolerance", defaults.match_tolerance)),
            capacity=int(payload.get("capacity", defaults.capacity)),
        )

    def build(self) -> DelayCompensator:
        return DelayCompensator(
            self.curve,
            max_age=self.max_age,
            match_tolerance=self.match_tolerance,
            capacity=self.capacity,
        )


def _section(payload: Mapping[str, Any], key: str) -> Mapping[str, Any] | None:
    value = payload.get(key)
    return value if isinstance(value, ABCMapping) else None


@dataclass(frozen=True, slots=True)
class AutoTuneConfig:
    """Typed view over the merged configuration mapping.

    ``target`` is either a scalar target or the path of a target table file,
    resolved relative to ``source`` when relative.
    """

    target: float | str = 14.7
    filters: FilterConfig = field(default_factory=FilterConfig)
    authority: AuthorityLimits = field(default_factory=AuthorityLimits)
    delay: DelaySettings = field(default_factory=DelaySettings)
    channels: ChannelMap = field(default_factory=ChannelMap)
    logging: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    source: Path | None = None

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any], *, source: Path | None = None) -> "AutoTuneConfig":
        logging_section = _section(payload, "logging") or {}
        return cls(
            target=_coerce_target(payload.get("target", 14.7)),
            filters=FilterConfig.from_mapping(_section(payload, "filters")),
            authority=AuthorityLimits.from_mapping(_section(payload, "authority")),
            delay=DelaySettings.from_mapping(_section(payload, "delay")),
            channels=ChannelMap.from_mapping(_section(payload, "channels")),
            logging=MappingProxyType(dict(logging_section)),
            source=source,
        )

    def target_path(self) -> Path | None:
        if isinstance(self.target, float):
            return None
        path = Path(self.target).expanduser()
        if not path.is_absolute() and self.source is not None:
            path = self.source.parent / path
        return path


def load_autotune_config(path: Path | str | None = None) -> tuple[dict[str, Any], AutoTuneConfig]:
    """Resolve the effective configuration.

    The lookup order is the explicit ``path``, then ``$VETUNE_CONFIG``, then
    ``pyproject.toml`` in the working directory.  The first source found is
    merged over the packaged defaults.  Returns the raw merged mapping (for
    the logging setup) together with the typed view.
    """

    defaults = load_default_config()
    override: dict[str, Any] = {}
    source: Path | None = None

    env_config = os.environ.get(CONFIG_ENV_VAR)
    if path is not None:
        override, source = load_config_file(path)
    elif env_config:
        override, source = load_config_file(env_config)
    else:
        for candidate in _iter_unique_paths([Path.cwd() / _PROJECT_FILENAME]):
            loaded = load_project_config(candidate)
            if loaded is not None:
                override, source = loaded
                break

    merged = merge_config(defaults, override)
    merged["_config_path"] = str(source) if source is not None else None
    return merged, AutoTuneConfig.from_mapping(merged, source=source)
