from __future__ import annotations

import sys
from pathlib import Path
from textwrap import dedent

import pytest


ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def write_pyproject(directory: Path, contents: str) -> Path:
    """Persist a ``pyproject.toml`` under ``directory`` and return its path."""

    payload = dedent(contents).lstrip()
    target = directory / "pyproject.toml"
    target.write_text(payload, encoding="utf8")
    return target


@pytest.fixture
def ve_table():
    from tests.helpers import build_ve_table

    return build_ve_table()


@pytest.fixture(autouse=True)
def _reset_vetune_logger():
    """Drop handlers installed by ``setup_logging`` so streams do not leak across tests."""

    import logging

    logger = logging.getLogger("vetune")
    level = logger.level
    yield
    for handler in list(logger.handlers):
        if getattr(handler, "_vetune_handler", False):
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)
