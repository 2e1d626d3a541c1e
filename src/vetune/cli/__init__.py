"""Command line utilities for vetune."""

from vetune.cli.app import main, run_cli

__all__ = ["main", "run_cli"]
