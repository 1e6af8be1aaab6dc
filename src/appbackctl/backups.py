"""Record application paths into the backup manifest.

Backup scripts run from a working directory inside the archive root, for
example ``<archive root>/apps/wiki/backup``. Every recorded destination is
prefixed with that offset so restore scripts running from the same place find
their own entries again.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path, PurePosixPath

from .errors import BackupError, DestinationCollisionError, SourceMissingError
from .manifest import BackupManifest, ManifestEntry
from .settings import SettingsStore

LOGGER = logging.getLogger(__name__)

SKIP_BIG_DATA_SETTING = "do_not_backup_data"
_TRUTHY = {"1", "true", "yes", "on"}


class Outcome(str, Enum):
    """Result kind shared by manifest, restore and checksum operations."""

    SUCCESS = "success"
    SKIPPED = "skipped"


def timestamp_suffix(moment: datetime | None = None) -> str:
    """Return the ``YYYYmmdd.HHMMSS`` stamp used for aside copies."""
    return f"{moment or datetime.now():%Y%m%d.%H%M%S}"


def aside_path(cache_dir: Path, original: Path, moment: datetime | None = None) -> Path:
    """Return a free ``<cache_dir>/<original>.backup.<stamp>`` path."""
    relative = str(original).lstrip("/")
    candidate = cache_dir / f"{relative}.backup.{timestamp_suffix(moment)}"
    counter = 1
    unique = candidate
    while unique.exists() or unique.is_symlink():
        unique = candidate.with_name(f"{candidate.name}-{counter}")
        counter += 1
    return unique


@dataclass(slots=True)
class BackupContext:
    """Explicit state shared by the helpers of one backup or restore run."""

    archive_root: Path
    working_dir: Path
    manifest: BackupManifest
    app: str | None = None
    settings: SettingsStore | None = None
    core_only: bool = False
    placeholder_prefixes: tuple[Path, ...] = (Path("/etc/fail2ban"),)

    def __post_init__(self) -> None:
        """Normalise paths and check the working directory sits in the archive."""
        self.archive_root = Path(os.path.abspath(self.archive_root))
        self.working_dir = Path(os.path.abspath(self.working_dir))
        self.placeholder_prefixes = tuple(Path(p) for p in self.placeholder_prefixes)
        if not self.working_dir.is_relative_to(self.archive_root):
            raise BackupError(
                f"Working directory {self.working_dir} is outside the archive root "
                f"{self.archive_root}."
            )

    @property
    def relative_prefix(self) -> str:
        """Return the working-directory offset as ``"a/b/"`` (``""`` at the root)."""
        relative = self.working_dir.relative_to(self.archive_root).as_posix()
        if relative in {"", "."}:
            return ""
        return f"{relative.strip('/')}/"

    def skip_big_data(self) -> bool:
        """Return True when the app asked to keep large data out of backups."""
        if self.app is None or self.settings is None:
            return False
        value = self.settings.get(self.app, SKIP_BIG_DATA_SETTING)
        return value is not None and value.strip().lower() in _TRUTHY


@dataclass(frozen=True, slots=True)
class BackupRequest:
    """Arguments of a single manifest write."""

    source: Path
    destination: str | None = None
    is_big: bool = False
    not_mandatory: bool = False

    def __post_init__(self) -> None:
        """Validate the request at the call boundary."""
        if not str(self.source).strip():
            raise BackupError("Backup source path must be a non-empty string.")
        if self.destination is not None and not self.destination.strip():
            raise BackupError("Backup destination hint must not be blank when given.")
        object.__setattr__(self, "source", Path(self.source))


@dataclass(frozen=True, slots=True)
class WriteResult:
    """Outcome of :meth:`ManifestWriter.write`."""

    outcome: Outcome
    entry: ManifestEntry | None = None
    reason: str | None = None


@dataclass(slots=True)
class ManifestWriter:
    """Append backup entries to the manifest of *context*."""

    context: BackupContext
    _warnings: list[str] = field(default_factory=list)

    @property
    def warnings(self) -> list[str]:
        """Return warnings emitted by previous writes."""
        return list(self._warnings)

    def write(self, request: BackupRequest) -> WriteResult:
        """Record *request* in the manifest.

        Returns a skipped result for big data excluded by policy and for
        missing optional sources. Raises :class:`SourceMissingError` or
        :class:`DestinationCollisionError` otherwise.
        """
        ctx = self.context
        if request.is_big and (ctx.core_only or ctx.skip_big_data()):
            flag = "core-only mode is active" if ctx.core_only else (
                f"'{SKIP_BIG_DATA_SETTING}' is set"
            )
            reason = f"{request.source} will not be saved, because {flag}."
            LOGGER.info("%s", reason)
            return WriteResult(Outcome.SKIPPED, reason=reason)

        source = request.source
        if not source.exists():
            message = f"Source path '{source}' does not exist"
            self._warn(message)
            if request.not_mandatory:
                return WriteResult(Outcome.SKIPPED, reason=message)
            if not self._is_placeholder_allowed(source):
                raise SourceMissingError(message)
            source.parent.mkdir(parents=True, exist_ok=True)
            source.touch()
            self._warn(f"The missing file {source} was replaced by an empty placeholder.")

        resolved = Path(os.path.realpath(source))
        destination = ctx.relative_prefix + self.resolve_destination(resolved, request.destination)
        destination = destination.lstrip("/")

        if ctx.manifest.has_destination(destination):
            raise DestinationCollisionError(
                f"Destination path '{destination}' already exists in the manifest."
            )

        entry = ManifestEntry(source=str(resolved), destination=destination)
        ctx.manifest.append(entry)
        (ctx.archive_root / destination).parent.mkdir(parents=True, exist_ok=True)
        return WriteResult(Outcome.SUCCESS, entry=entry)

    def resolve_destination(self, source: Path, hint: str | None) -> str:
        """Return the destination for *source* relative to the working directory."""
        if not hint:
            return str(source).lstrip("/")

        destination = hint
        if destination.startswith("/"):
            working = f"{self.context.working_dir.as_posix().rstrip('/')}/"
            if destination.startswith(working):
                destination = destination[len(working) :]
            destination = destination.lstrip("/")

        if destination.endswith("/"):
            destination = f"{destination}{source.name}"

        return str(PurePosixPath(destination)) if destination else source.name

    def _is_placeholder_allowed(self, source: Path) -> bool:
        absolute = Path(os.path.abspath(source))
        return any(absolute.is_relative_to(prefix) for prefix in self.context.placeholder_prefixes)

    def _warn(self, message: str) -> None:
        LOGGER.warning("%s", message)
        self._warnings.append(message)


__all__ = [
    "BackupContext",
    "BackupRequest",
    "ManifestWriter",
    "Outcome",
    "SKIP_BIG_DATA_SETTING",
    "WriteResult",
    "aside_path",
    "timestamp_suffix",
]
