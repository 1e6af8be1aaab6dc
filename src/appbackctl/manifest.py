"""Append-only CSV manifest of backed-up paths.

One row per recorded path, two double-quoted fields, no header::

    "/etc/nginx/conf.d/example.org.d/wiki.conf","apps/wiki/backup/etc/nginx/conf.d/example.org.d/wiki.conf"

The first field is the absolute source path on the live system, the second
the destination relative to the archive root. Embedded quotes are doubled.
"""
from __future__ import annotations

import csv
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

from .errors import BackupError, LookupFailureError


@dataclass(frozen=True, slots=True)
class ManifestEntry:
    """A single (source, destination) row of the manifest."""

    source: str
    destination: str

    def to_dict(self) -> dict[str, str]:
        """Return a serialisable representation."""
        return {"source": self.source, "destination": self.destination}


@dataclass(slots=True)
class BackupManifest:
    """Read and append rows of the backup manifest at *path*."""

    path: Path

    def __post_init__(self) -> None:
        """Normalise the manifest path after initialisation."""
        self.path = Path(self.path).expanduser()

    def exists(self) -> bool:
        """Return True when the manifest file is present."""
        return self.path.exists()

    def append(self, entry: ManifestEntry) -> None:
        """Append *entry* as a new newline-terminated row."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8", newline="") as handle:
                writer = csv.writer(handle, quoting=csv.QUOTE_ALL, lineterminator="\n")
                writer.writerow([entry.source, entry.destination])
        except OSError as exc:
            raise BackupError(f"Failed to append to manifest {self.path}: {exc}") from exc

    def entries(self) -> Iterator[ManifestEntry]:
        """Yield every row in insertion order."""
        if not self.path.exists():
            return
        try:
            with self.path.open("r", encoding="utf-8", newline="") as handle:
                for line_no, row in enumerate(csv.reader(handle), start=1):
                    if not row:
                        continue
                    if len(row) != 2:
                        raise BackupError(
                            f"Malformed manifest row {line_no} in {self.path}: "
                            f"expected 2 fields, got {len(row)}."
                        )
                    source, destination = (field.replace("\r", "") for field in row)
                    yield ManifestEntry(source=source, destination=destination)
        except OSError as exc:
            raise BackupError(f"Failed to read manifest {self.path}: {exc}") from exc

    def has_destination(self, destination: str) -> bool:
        """Return True when *destination* is already recorded."""
        return any(entry.destination == destination for entry in self.entries())

    def find_by_source(self, source: str) -> str:
        """Return the destination recorded for *source*.

        Raises :class:`LookupFailureError` when no row matches.
        """
        for entry in self.entries():
            if entry.source == source:
                return entry.destination
        raise LookupFailureError(f"Original path for {source} not found in {self.path}.")

    def entries_under(self, prefix: str) -> list[ManifestEntry]:
        """Return rows whose destination starts with *prefix* (textual match)."""
        return [entry for entry in self.entries() if entry.destination.startswith(prefix)]

    def index(self) -> ManifestIndex:
        """Build an in-memory lookup table for one restore session."""
        return ManifestIndex.from_manifest(self)


@dataclass(slots=True)
class ManifestIndex:
    """Map from source path to destination built from a single manifest pass."""

    manifest_path: Path
    by_source: dict[str, str]

    @classmethod
    def from_manifest(cls, manifest: BackupManifest) -> ManifestIndex:
        """Scan *manifest* once, keeping the first destination for each source."""
        by_source: dict[str, str] = {}
        for entry in manifest.entries():
            by_source.setdefault(entry.source, entry.destination)
        return cls(manifest_path=manifest.path, by_source=by_source)

    def find_by_source(self, source: str) -> str:
        """Return the destination recorded for *source*."""
        try:
            return self.by_source[source]
        except KeyError:
            raise LookupFailureError(
                f"Original path for {source} not found in {self.manifest_path}."
            ) from None


__all__ = ["BackupManifest", "ManifestEntry", "ManifestIndex"]
