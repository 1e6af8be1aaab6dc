"""Restore archived paths back onto the live filesystem."""
from __future__ import annotations

import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path

from .backups import BackupContext, Outcome, aside_path
from .config import DEFAULT_LARGE_RESTORE_THRESHOLD
from .errors import BackupError, LookupFailureError, NotFoundError
from .manifest import ManifestIndex

LOGGER = logging.getLogger(__name__)

_PROTECTED_PATHS = frozenset(
    Path(p)
    for p in ("/", "/bin", "/boot", "/dev", "/etc", "/home", "/lib", "/opt", "/proc",
              "/root", "/run", "/sbin", "/srv", "/sys", "/usr", "/var")
)


@dataclass(frozen=True, slots=True)
class RestoreRequest:
    """Arguments of a single-path restore."""

    origin: str
    destination: Path | None = None
    not_mandatory: bool = False

    def __post_init__(self) -> None:
        """Normalise the origin to a single leading separator."""
        origin = self.origin.strip()
        if not origin.strip("/"):
            raise BackupError("Restore origin path must name a file or directory.")
        object.__setattr__(self, "origin", "/" + origin.lstrip("/"))
        if self.destination is not None:
            object.__setattr__(self, "destination", Path(self.destination))

    @property
    def target(self) -> Path:
        """Return the destination, defaulting to the origin path."""
        return self.destination if self.destination is not None else Path(self.origin)


@dataclass(frozen=True, slots=True)
class RestoreResult:
    """Outcome of restoring one path."""

    outcome: Outcome
    origin: str
    destination: Path
    archive_path: Path | None = None
    aside_path: Path | None = None
    removed_existing: bool = False
    patched: bool = False

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "outcome": self.outcome.value,
            "origin": self.origin,
            "destination": str(self.destination),
            "archive_path": str(self.archive_path) if self.archive_path else None,
            "aside_path": str(self.aside_path) if self.aside_path else None,
            "removed_existing": self.removed_existing,
            "patched": self.patched,
        }


def disk_usage(path: Path) -> int:
    """Return the apparent size in bytes of *path* and everything below it."""
    stat = path.lstat()
    total = stat.st_size
    if not path.is_dir() or path.is_symlink():
        return total
    for root, dirs, files in os.walk(path):
        for name in (*dirs, *files):
            try:
                total += os.lstat(os.path.join(root, name)).st_size
            except FileNotFoundError:
                continue
    return total


def remove_path(path: Path) -> None:
    """Delete *path* (file, symlink or directory tree)."""
    absolute = Path(os.path.abspath(path))
    if absolute in _PROTECTED_PATHS:
        raise BackupError(f"Refusing to remove protected path {absolute}.")
    if absolute.is_dir() and not absolute.is_symlink():
        shutil.rmtree(absolute)
    else:
        absolute.unlink(missing_ok=True)


@dataclass(slots=True)
class Restorer:
    """Copy or move archive content back to its original location."""

    context: BackupContext
    cache_dir: Path
    large_threshold: int = DEFAULT_LARGE_RESTORE_THRESHOLD
    archive_is_mount: bool | None = None
    nginx_conf_dir: Path = Path("/etc/nginx/conf.d")
    runtime_upgrades: dict[str, str] = field(default_factory=lambda: {"7.0": "7.3"})
    _index: ManifestIndex | None = None

    def restore_all(self) -> list[RestoreResult]:
        """Restore every manifest entry recorded under the working directory."""
        prefix = self.context.relative_prefix
        results: list[RestoreResult] = []
        for entry in self.context.manifest.entries_under(prefix):
            request = RestoreRequest(
                origin=entry.destination[len(prefix) :],
                destination=Path(entry.source),
            )
            results.append(self.restore_file(request))
        return results

    def restore_file(self, request: RestoreRequest) -> RestoreResult:
        """Restore a single archived path.

        Raises :class:`NotFoundError` when the origin cannot be located and the
        request is mandatory.
        """
        destination = request.target
        archive_path = self.locate(request.origin)
        if archive_path is None:
            if request.not_mandatory:
                LOGGER.info("Nothing to restore for %s; skipping.", request.origin)
                return RestoreResult(Outcome.SKIPPED, request.origin, destination)
            raise NotFoundError(f"No archive entry found for {request.origin}.")

        aside: Path | None = None
        removed = False
        if destination.exists() or destination.is_symlink():
            size = disk_usage(destination)
            if size <= self.large_threshold:
                aside = aside_path(self.cache_dir, destination)
                aside.parent.mkdir(parents=True, exist_ok=True)
                shutil.move(str(destination), str(aside))
                LOGGER.info("Moved existing %s aside to %s.", destination, aside)
            else:
                LOGGER.warning(
                    "Removing existing %s (%d bytes) instead of keeping a copy.",
                    destination,
                    size,
                )
                remove_path(destination)
                removed = True

        destination.parent.mkdir(parents=True, exist_ok=True)
        if self._copy_semantics():
            self._copy(archive_path, destination)
        else:
            shutil.move(str(archive_path), str(destination))

        patched = self._patch_runtime_sockets(destination)
        return RestoreResult(
            Outcome.SUCCESS,
            request.origin,
            destination,
            archive_path=archive_path,
            aside_path=aside,
            removed_existing=removed,
            patched=patched,
        )

    def locate(self, origin: str) -> Path | None:
        """Return the archive path holding *origin*, or ``None``."""
        direct = self.context.working_dir / origin.lstrip("/")
        if direct.exists() or direct.is_symlink():
            return direct
        try:
            relative = self._lookup(origin)
        except LookupFailureError as exc:
            LOGGER.debug("%s", exc)
            return None
        candidate = self.context.archive_root / relative
        if candidate.exists() or candidate.is_symlink():
            return candidate
        return None

    # ------------------------------------------------------------------
    def _lookup(self, origin: str) -> str:
        if self._index is None:
            self._index = self.context.manifest.index()
        return self._index.find_by_source(origin)

    def _copy_semantics(self) -> bool:
        if self.archive_is_mount is not None:
            return self.archive_is_mount
        return os.path.ismount(self.context.archive_root)

    def _copy(self, source: Path, destination: Path) -> None:
        if source.is_dir() and not source.is_symlink():
            destination.mkdir(parents=True, exist_ok=True)
            shutil.copytree(source, destination, symlinks=True, dirs_exist_ok=True)
            shutil.copystat(source, destination)
        else:
            shutil.copy2(source, destination, follow_symlinks=False)

    def _patch_runtime_sockets(self, destination: Path) -> bool:
        if not self.runtime_upgrades:
            return False
        if not destination.is_file() or not destination.is_relative_to(self.nginx_conf_dir):
            return False
        content = destination.read_bytes()
        patched = content
        for obsolete, replacement in self.runtime_upgrades.items():
            # Covers both the shared socket and per-app ``php<v>-fpm-<app>.sock``.
            pattern = rb"php" + re.escape(obsolete.encode()) + rb"-fpm(?=[-.])"
            patched = re.sub(pattern, b"php" + replacement.encode() + b"-fpm", patched)
        if patched == content:
            return False
        destination.write_bytes(patched)
        LOGGER.info("Rewrote obsolete PHP-FPM socket references in %s.", destination)
        return True


__all__ = ["RestoreRequest", "RestoreResult", "Restorer", "disk_usage", "remove_path"]
