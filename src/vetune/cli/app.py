"""Command line application entry point for vetune."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Callable, NoReturn, Optional, Sequence

from vetune.cli.errors import CliError, cli_error_from_exception, log_cli_error
from vetune.cli.io import dump_payload
from vetune.cli.parser import build_parser
from vetune.configuration import ConfigurationError, load_autotune_config
from vetune.logging.config import setup_logging
from vetune_core.errors import ValidationError


CommandHandler = Callable[..., str]


def _preliminary_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--config", dest="config_path", type=Path, default=None)
    parser.add_argument("--log-level", dest="log_level", default=None)
    parser.add_argument("--log-output", dest="log_output", default=None)
    parser.add_argument("--log-format", dest="log_format", choices=("json", "text"), default=None)
    return parser


def _fail(exc: CliError) -> NoReturn:
    if not exc.logged:
        log_cli_error(exc.payload, exc_info=exc)
        exc.logged = True
    sys.stdout.write(dump_payload({"error": exc.payload.as_dict()}) + "\n")
    raise SystemExit(exc.status_code) from exc


def run_cli(args: Optional[Sequence[str]] = None) -> str:
    """Execute the ``vetune`` command line interface."""

    preliminary, _ = _preliminary_parser().parse_known_args(args)

    try:
        config, settings = load_autotune_config(preliminary.config_path)
    except (ConfigurationError, ValidationError) as exc:
        setup_logging({})
        _fail(cli_error_from_exception(exc))

    logging_config = dict(config.get("logging", {}) or {})
    for key in ("level", "output", "format"):
        override = getattr(preliminary, f"log_{key}")
        if override is not None:
            logging_config[key] = override
    logging_config.setdefault("level", "info")
    logging_config.setdefault("output", "stderr")
    logging_config.setdefault("format", "json")
    config["logging"] = logging_config
    config["_settings"] = settings
    setup_logging(config)

    parser = build_parser(config)
    namespace = parser.parse_args(args)
    namespace.config_path = namespace.config_path or config.get("_config_path")

    handler: CommandHandler | None = getattr(namespace, "handler", None)
    if handler is None:  # pragma: no cover - subcommand is required
        _fail(CliError(f"Unknown command '{namespace.command}'.", category="usage"))

    try:
        result = handler(namespace, config=config)
    except CliError as exc:
        _fail(exc)
    if result:
        sys.stdout.write(result if result.endswith("\n") else result + "\n")
    return result


def main() -> None:  # pragma: no cover - thin wrapper
    run_cli()


if __name__ == "__main__":  # pragma: no cover - CLI invocation guard
    main()
