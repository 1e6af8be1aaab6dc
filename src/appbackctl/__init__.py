"""appbackctl package bootstrap.

Exposes lightweight metadata that other modules (and packaging machinery)
rely upon.
"""
from __future__ import annotations

import logging

__all__ = ["__version__", "get_version"]

# NOTE: The version is duplicated in ``pyproject.toml`` and managed by Hatch.
__version__ = "0.1.0"

# The CLI reports warnings itself; embedders attach their own handlers.
logging.getLogger(__name__).addHandler(logging.NullHandler())


def get_version() -> str:
    """Return the current package version."""
    return __version__
