"""Logging configuration for vetune.

Log records carry structured context through ``extra={"event": ..., ...}``.
:class:`JsonFormatter` serialises that context alongside the message, while
the text formatter keeps the classic single-line layout.
"""

from __future__ import annotations

import json
import logging
import sys
import threading
import time
from pathlib import Path
from typing import Any, Callable, Mapping

__all__ = ["JsonFormatter", "RateLimitedLogger", "setup_logging"]


_ROOT_LOGGER_NAME = "vetune"
_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_HANDLER_MARKER = "_vetune_handler"

_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    if isinstance(value, Path):
        return str(value)
    tolist = getattr(value, "tolist", None)
    if callable(tolist):
        return tolist()
    return str(value)


class JsonFormatter(logging.Formatter):
    """Render log records as one JSON document per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_json_default, sort_keys=False)


def _resolve_level(raw: Any) -> int:
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        candidate = logging.getLevelName(raw.strip().upper())
        if isinstance(candidate, int):
            return candidate
    return logging.INFO


def _build_handler(output: str) -> logging.Handler:
    lowered = output.strip().lower()
    if lowered == "stdout":
        return logging.StreamHandler(sys.stdout)
    if lowered in {"stderr", ""}:
        return logging.StreamHandler(sys.stderr)
    path = Path(output).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(path, encoding="utf-8")


def setup_logging(config: Mapping[str, Any] | None = None) -> logging.Logger:
    """Configure the ``vetune`` logger from the ``[logging]`` config table.

    Recognised keys are ``level`` (``info``), ``output`` (``stderr``,
    ``stdout`` or a file path) and ``format`` (``json`` or ``text``).
    Calling the function again replaces the handler it installed previously.
    """

    section = config.get("logging", {}) if config else {}
    if not isinstance(section, Mapping):
        section = {}
    level = _resolve_level(section.get("level", "info"))
    output = str(section.get("output", "stderr"))
    fmt = str(section.get("format", "json")).strip().lower()

    logger = logging.getLogger(_ROOT_LOGGER_NAME)
    for existing in list(logger.handlers):
        if getattr(existing, _HANDLER_MARKER, False):
            logger.removeHandler(existing)
            existing.close()

    handler = _build_handler(output)
    handler.setFormatter(JsonFormatter() if fmt == "json" else logging.Formatter(_TEXT_FORMAT))
    setattr(handler, _HANDLER_MARKER, True)
    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


class RateLimitedLogger:
    """Emit at most one record per ``event`` key every ``interval`` seconds.

    Suppressed occurrences are counted and reported as ``suppressed`` on the
    next record that gets through, so bursts of bad telemetry do not flood the
    log while still leaving a trace of their volume.
    """

    __slots__ = ("_logger", "_interval", "_clock", "_last", "_suppressed", "_lock")

    def __init__(
        self,
        logger: logging.Logger,
        *,
        interval: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval < 0.0:
            raise ValueError("interval must be >= 0")
        self._logger = logger
        self._interval = float(interval)
        self._clock = clock
        self._last: dict[str, float] = {}
        self._suppressed: dict[str, int] = {}
        self._lock = threading.Lock()

    @property
    def suppressed(self) -> Mapping[str, int]:
        with self._lock:
            return dict(self._suppressed)

    def log(self, level: int, event: str, message: str, **context: Any) -> bool:
        now = self._clock()
        with self._lock:
            last = self._last.get(event)
            if last is not None and now - last < self._interval:
                self._suppressed[event] = self._suppressed.get(event, 0) + 1
                return False
            self._last[event] = now
            suppressed = self._suppressed.pop(event, 0)
        extra = {"event": event, **context}
        if suppressed:
            extra["suppressed"] = suppressed
        self._logger.log(level, message, extra=extra)
        return True

    def warning(self, event: str, message: str, **context: Any) -> bool:
        return self.log(logging.WARNING, event, message, **context)

    def info(self, event: str, message: str, **context: Any) -> bool:
        return self.log(logging.INFO, event, message, **context)
