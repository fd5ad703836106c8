"""
Package version, from installed metadata or the source tree's pyproject.toml.
"""
import importlib.metadata
import pathlib
from typing import Tuple

import tomli

DIST_NAME = "claimsettle"
UNKNOWN_VERSION = "0.0.0"
PYPROJECT = pathlib.Path(__file__).resolve().parent.parent / "pyproject.toml"


def _pyproject_version(path: pathlib.Path) -> str:
    try:
        with path.open("rb") as f:
            project = tomli.load(f).get("project", {})
    except (OSError, tomli.TOMLDecodeError):
        return UNKNOWN_VERSION
    return project.get("version", UNKNOWN_VERSION)


def resolve_version() -> str:
    """Installed distribution version, else the checkout's declared version"""
    try:
        return importlib.metadata.version(DIST_NAME)
    except importlib.metadata.PackageNotFoundError:
        return _pyproject_version(PYPROJECT)


def _as_tuple(version: str) -> Tuple[int, ...]:
    parts = []
    for piece in version.split(".")[:3]:
        digits = "".join(c for c in piece if c.isdigit())
        parts.append(int(digits or 0))
    return tuple(parts)


__version__ = resolve_version()
version_info = _as_tuple(__version__)
