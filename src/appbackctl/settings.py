"""Per-application key/value settings store.

Each managed application owns ``<root>/<app>/settings.yml``, a flat YAML
mapping. Checksum records and policy flags such as ``do_not_backup_data``
live there. Writes are atomic so an interrupted helper never leaves a
truncated settings file behind.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import yaml


class SettingsError(RuntimeError):
    """Raised when settings store operations fail."""


class SettingsStore(Protocol):
    """Key/value collaborator keyed by application identifier."""

    def get(self, app: str, key: str) -> str | None:
        """Return the value stored under *key* or ``None``."""

    def set(self, app: str, key: str, value: str) -> None:
        """Store *value* under *key*."""

    def delete(self, app: str, key: str) -> None:
        """Remove *key* if present."""


def _normalise_app(app: str) -> str:
    normalised = app.strip()
    if not normalised or "/" in normalised or normalised in {".", ".."}:
        raise SettingsError(f"Invalid application identifier: {app!r}.")
    return normalised


@dataclass(frozen=True)
class AppSettingsStore:
    """YAML-backed implementation of :class:`SettingsStore`."""

    root: Path

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        object.__setattr__(self, "root", self.root.expanduser())

    def path_for(self, app: str) -> Path:
        """Return the settings file for *app*."""
        return self.root / _normalise_app(app) / "settings.yml"

    def read(self, app: str) -> dict[str, object]:
        """Return every setting of *app* (empty when the file is missing)."""
        path = self.path_for(app)
        if not path.exists():
            return {}
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:  # pragma: no cover - delegated to PyYAML
            raise SettingsError(f"Failed to parse settings file {path}: {exc}") from exc
        if data is None:
            return {}
        if not isinstance(data, Mapping):
            raise SettingsError(f"Settings file {path} must contain a mapping.")
        return {str(key): value for key, value in data.items()}

    def write(self, app: str, payload: Mapping[str, object]) -> None:
        """Atomically replace the settings of *app* with *payload*."""
        path = self.path_for(app)
        path.parent.mkdir(parents=True, exist_ok=True)

        tmp_fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump(dict(payload), handle, sort_keys=False)
            os.replace(tmp_path, path)
            os.chmod(path, 0o600)
        except OSError as exc:
            raise SettingsError(f"Failed to write settings for {app}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)

    # SettingsStore protocol ------------------------------------------
    def get(self, app: str, key: str) -> str | None:
        """Return the value stored under *key* for *app*."""
        value = self.read(app).get(key)
        if value is None:
            return None
        return str(value)

    def set(self, app: str, key: str, value: str) -> None:
        """Store *value* under *key* for *app*."""
        data = self.read(app)
        data[key] = value
        self.write(app, data)

    def delete(self, app: str, key: str) -> None:
        """Remove *key* from the settings of *app*."""
        data = self.read(app)
        if key not in data:
            return
        del data[key]
        self.write(app, data)


__all__ = ["AppSettingsStore", "SettingsError", "SettingsStore"]
