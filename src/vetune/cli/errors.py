"""Error reporting for the ``vetune`` command line.

Every failure is reduced to an :class:`ErrorPayload` that is logged with
structured context and printed as a JSON document, so scripts driving the
CLI can tell a locked cell from a missing datalog without parsing prose.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Optional

from vetune_core.errors import LockedCellError, TableMathError, ValidationError
from vetune.configuration import ConfigurationError

__all__ = [
    "CliError",
    "ErrorCategory",
    "ErrorPayload",
    "build_error_payload",
    "cli_error_from_exception",
    "log_cli_error",
]


_LOGGER_NAME = "vetune.cli"


class ErrorCategory(str, Enum):
    RUNTIME = "runtime"
    USAGE = "usage"
    IO = "io"
    NOT_FOUND = "not_found"

    @property
    def status_code(self) -> int:
        return _EXIT_STATUS[self]


_EXIT_STATUS: Mapping[ErrorCategory, int] = {
    ErrorCategory.RUNTIME: 1,
    ErrorCategory.USAGE: 2,
    ErrorCategory.IO: 3,
    ErrorCategory.NOT_FOUND: 4,
}


def _is_cell(value: Any) -> bool:
    return (
        isinstance(value, tuple)
        and len(value) == 2
        and all(isinstance(item, int) and not isinstance(item, bool) for item in value)
    )


def _context_value(value: Any) -> Any:
    # Cells are rendered in the same ``row,col;row,col`` form ``--lock`` accepts.
    if _is_cell(value):
        return f"{value[0]},{value[1]}"
    if isinstance(value, (tuple, list, frozenset, set)) and value and all(_is_cell(item) for item in value):
        return ";".join(f"{row},{col}" for row, col in sorted(value))
    if isinstance(value, Path):
        return str(value)
    item = getattr(value, "item", None)
    if callable(item) and not isinstance(value, (str, bytes)):
        try:
            value = item()
        except (TypeError, ValueError):
            return str(value)
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    return str(value)


@dataclass(frozen=True, slots=True)
class ErrorPayload:
    category: ErrorCategory
    message: str
    command: str | None = None
    context: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def status_code(self) -> int:
        return self.category.status_code

    def as_dict(self) -> dict[str, Any]:
        return {
            "status_code": self.status_code,
            "category": self.category.value,
            "command": self.command,
            "message": self.message,
            "context": dict(self.context),
        }


def build_error_payload(
    message: str,
    *,
    category: ErrorCategory | str = ErrorCategory.RUNTIME,
    command: str | None = None,
    context: Optional[Mapping[str, Any]] = None,
) -> ErrorPayload:
    return ErrorPayload(
        category=ErrorCategory(category),
        message=message,
        command=command,
        context=MappingProxyType(
            {str(key): _context_value(value) for key, value in (context or {}).items()}
        ),
    )


def log_cli_error(
    payload: ErrorPayload,
    *,
    logger: Optional[logging.Logger] = None,
    exc_info: Optional[BaseException] = None,
) -> None:
    (logger or logging.getLogger(_LOGGER_NAME)).error(
        payload.message,
        extra={
            "event": "cli.error",
            "category": payload.category.value,
            "status_code": payload.status_code,
            "command": payload.command,
            "context": dict(payload.context),
        },
        exc_info=exc_info,
    )


class CliError(RuntimeError):
    """Failure surfaced to the user; the category decides the exit status."""

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | str = ErrorCategory.RUNTIME,
        command: str | None = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.payload = build_error_payload(message, category=category, command=command, context=context)
        self.logged = False

    @property
    def category(self) -> ErrorCategory:
        return self.payload.category

    @property
    def status_code(self) -> int:
        return self.payload.status_code

    @property
    def context(self) -> Mapping[str, Any]:
        return self.payload.context


def _category_for(exc: BaseException) -> ErrorCategory:
    if isinstance(exc, FileNotFoundError):
        return ErrorCategory.NOT_FOUND
    if isinstance(exc, OSError):
        return ErrorCategory.IO
    if isinstance(exc, (ValidationError, ConfigurationError)):
        return ErrorCategory.USAGE
    return ErrorCategory.RUNTIME


def cli_error_from_exception(
    exc: BaseException,
    *,
    command: str | None = None,
    **context: Any,
) -> CliError:
    """Translate library exceptions into a categorised :class:`CliError`."""

    if isinstance(exc, CliError):
        return exc
    if isinstance(exc, FileNotFoundError) and exc.filename is not None:
        context.setdefault("path", exc.filename)
    if isinstance(exc, TableMathError):
        context.update(exc.context)
    if isinstance(exc, LockedCellError):
        context["cells"] = exc.cells
    if isinstance(exc, ConfigurationError) and exc.path:
        context.setdefault("path", exc.path)
    return CliError(str(exc), category=_category_for(exc), command=command, context=context)
