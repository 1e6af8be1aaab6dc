"""Detect manual edits of managed configuration files.

A checksum of every generated config file is stored in the app settings.
Before a helper overwrites such a file it asks :meth:`ChecksumGuard.check_drift`
whether the content still matches; if an administrator changed it, a dated
copy is kept under the cache directory. The returned path is handed to
:meth:`ChecksumGuard.store_checksum` once the new file is written so the
operator sees what changed.
"""
from __future__ import annotations

import difflib
import hashlib
import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from .backups import Outcome, aside_path
from .errors import BackupError
from .settings import SettingsStore

LOGGER = logging.getLogger(__name__)


class ContentHasher(Protocol):
    """Compute a content digest for a file."""

    def hexdigest(self, path: Path) -> str:
        """Return the digest of *path* as a hex string."""


class DiffRenderer(Protocol):
    """Render a human-readable difference between two files."""

    def render(self, before: Path, after: Path) -> str:
        """Return the diff from *before* to *after* (empty when identical)."""


class Md5Hasher:
    """MD5 digests, matching checksums recorded by earlier installs."""

    def hexdigest(self, path: Path) -> str:
        """Return the MD5 hex digest of *path*."""
        digest = hashlib.md5(usedforsecurity=False)
        with path.open("rb") as handle:
            for chunk in iter(lambda: handle.read(1024 * 1024), b""):
                digest.update(chunk)
        return digest.hexdigest()


class UnifiedDiffRenderer:
    """Unified diff between two text files."""

    def render(self, before: Path, after: Path) -> str:
        """Return a unified diff; binary content yields a one-line note."""
        try:
            old = before.read_text(encoding="utf-8").splitlines(keepends=True)
            new = after.read_text(encoding="utf-8").splitlines(keepends=True)
        except UnicodeDecodeError:
            return f"Binary files {before} and {after} differ\n"
        return "".join(
            difflib.unified_diff(old, new, fromfile=str(before), tofile=str(after))
        )


def setting_key(path: Path | str) -> str:
    """Return the settings key holding the checksum of *path*."""
    return "checksum_" + str(path).replace("/", "_").replace(" ", "_")


@dataclass(frozen=True, slots=True)
class StoreResult:
    """Outcome of :meth:`ChecksumGuard.store_checksum`."""

    outcome: Outcome
    checksum: str | None = None
    diff: str | None = None


@dataclass(slots=True)
class ChecksumGuard:
    """Store checksums and back up files whose content drifted."""

    app: str
    settings: SettingsStore
    cache_dir: Path
    hasher: ContentHasher = field(default_factory=Md5Hasher)
    differ: DiffRenderer = field(default_factory=UnifiedDiffRenderer)

    def stored_checksum(self, path: Path) -> str | None:
        """Return the recorded checksum of *path*, if any."""
        value = self.settings.get(self.app, setting_key(path))
        return value or None

    def check_drift(self, path: Path) -> Path | None:
        """Back up *path* when it no longer matches its recorded checksum.

        Returns the backup path, or ``None`` when the file was never tracked,
        is absent, or is unchanged.
        """
        path = Path(path)
        recorded = self.stored_checksum(path)
        if recorded is None or not path.exists():
            return None
        if self.hasher.hexdigest(path) == recorded:
            return None
        backup = aside_path(self.cache_dir, path)
        backup.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(path, backup)
        LOGGER.warning(
            "File %s has been manually modified since the installation or last upgrade. "
            "So it has been duplicated in %s",
            path,
            backup,
        )
        return backup

    def store_checksum(
        self,
        path: Path,
        *,
        update_only: bool = False,
        pending_backup: Path | None = None,
    ) -> StoreResult:
        """Record the current checksum of *path*.

        With *update_only* nothing is stored for files that were never tracked.
        When *pending_backup* comes from :meth:`check_drift`, the diff between
        that copy and the new content is logged and returned.
        """
        path = Path(path)
        if update_only and self.stored_checksum(path) is None:
            return StoreResult(Outcome.SKIPPED)
        if not path.exists():
            raise BackupError(f"Cannot record checksum of missing file {path}.")

        checksum = self.hasher.hexdigest(path)
        self.settings.set(self.app, setting_key(path), checksum)

        diff: str | None = None
        if pending_backup is not None and Path(pending_backup).exists():
            diff = self.differ.render(Path(pending_backup), path)
            if diff:
                LOGGER.warning("Changes since the manual edit of %s:\n%s", path, diff)
            else:
                LOGGER.info("Files %s and %s are identical", pending_backup, path)
        return StoreResult(Outcome.SUCCESS, checksum=checksum, diff=diff)

    def delete_checksum(self, path: Path) -> None:
        """Stop tracking *path*."""
        self.settings.delete(self.app, setting_key(path))


__all__ = [
    "ChecksumGuard",
    "ContentHasher",
    "DiffRenderer",
    "Md5Hasher",
    "StoreResult",
    "UnifiedDiffRenderer",
    "setting_key",
]
