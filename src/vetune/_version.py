"""Utilities for retrieving and validating the package version."""

from __future__ import annotations

from importlib import metadata
from pathlib import Path
import re

from packaging.version import InvalidVersion, Version

_PACKAGE_NAME = "vetune"
_CHANGELOG_HEADING = re.compile(r"^## v(?P<version>\d+\.\d+\.\d+)\b")


def _version_from_changelog() -> str:
    """Read the newest released version from ``CHANGELOG.md``.

    Used in source checkouts where no distribution metadata exists yet.
    """

    parents = Path(__file__).resolve().parents
    for changelog in (parents[index] / "CHANGELOG.md" for index in (1, 2) if index < len(parents)):
        if not changelog.is_file():
            continue
        for line in changelog.read_text(encoding="utf-8").splitlines():
            match = _CHANGELOG_HEADING.match(line)
            if match:
                return match.group("version")
    raise RuntimeError(f"Unable to determine the '{_PACKAGE_NAME}' version.")


def _load_version() -> str:
    try:
        raw_version = metadata.version(_PACKAGE_NAME)
    except metadata.PackageNotFoundError:
        raw_version = _version_from_changelog()

    try:
        parsed = Version(raw_version)
    except InvalidVersion as exc:
        raise RuntimeError(f"Invalid version string for '{_PACKAGE_NAME}': {raw_version!r}") from exc
    if len(parsed.release) != 3:
        raise RuntimeError(
            f"The '{_PACKAGE_NAME}' version must follow MAJOR.MINOR.PATCH, found {raw_version!r}"
        )
    return raw_version


__version__ = _load_version()

__all__ = ["__version__"]
