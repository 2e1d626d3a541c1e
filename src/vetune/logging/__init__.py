"""Logging utilities for vetune."""

from vetune.logging.config import JsonFormatter, RateLimitedLogger, setup_logging

__all__ = ["JsonFormatter", "RateLimitedLogger", "setup_logging"]
