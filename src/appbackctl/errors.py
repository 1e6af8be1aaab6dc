"""Exception hierarchy for manifest, backup and restore operations."""
from __future__ import annotations


class BackupError(RuntimeError):
    """Raised when backup or restore operations fail."""


class SourceMissingError(BackupError):
    """Raised when a mandatory backup source does not exist."""


class DestinationCollisionError(BackupError):
    """Raised when an archive destination is already recorded in the manifest."""


class NotFoundError(BackupError):
    """Raised when no archive entry exists for a requested origin."""


class LookupFailureError(BackupError):
    """Raised when a manifest scan finds no row for a source path."""


__all__ = [
    "BackupError",
    "DestinationCollisionError",
    "LookupFailureError",
    "NotFoundError",
    "SourceMissingError",
]
