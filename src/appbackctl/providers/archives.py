"""Archive-management collaborator used for pre-upgrade snapshots."""
from __future__ import annotations

import json
import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol


class ArchiveCatalogError(RuntimeError):
    """Raised when archive management commands fail."""


class ArchiveCatalog(Protocol):
    """Create, list, delete and restore named backup archives."""

    def list_names(self) -> list[str]:
        """Return the names of existing archives."""

    def exists(self, name: str) -> bool:
        """Return True when an archive called *name* exists."""

    def create(self, name: str, app: str, *, core_only: bool = False) -> None:
        """Create archive *name* holding *app*."""

    def delete(self, name: str) -> None:
        """Delete archive *name*."""

    def remove_app(self, app: str) -> None:
        """Uninstall *app* so a snapshot can be restored over it."""

    def restore(self, name: str, app: str) -> None:
        """Restore *app* from archive *name*."""


@dataclass(slots=True)
class CommandArchiveCatalog:
    """:class:`ArchiveCatalog` backed by the platform's admin CLI."""

    command: str = "yunohost"

    def list_names(self) -> list[str]:
        """Return archive names reported by ``backup list``."""
        result = self._run(["backup", "list", "--output-as", "json"])
        try:
            payload = json.loads(result.stdout or "{}")
        except json.JSONDecodeError as exc:
            raise ArchiveCatalogError(f"Unreadable archive list: {exc}") from exc
        archives = payload.get("archives", []) if isinstance(payload, Mapping) else []
        if not isinstance(archives, list):
            return []
        return [str(name) for name in archives]

    def exists(self, name: str) -> bool:
        """Return True when *name* appears in the archive list."""
        return name in self.list_names()

    def create(self, name: str, app: str, *, core_only: bool = False) -> None:
        """Create archive *name* containing *app*."""
        env = {"BACKUP_CORE_ONLY": "1"} if core_only else None
        self._run(["backup", "create", "--apps", app, "--name", name], env=env)

    def delete(self, name: str) -> None:
        """Delete archive *name*."""
        self._run(["backup", "delete", name])

    def remove_app(self, app: str) -> None:
        """Uninstall *app*."""
        self._run(["app", "remove", app])

    def restore(self, name: str, app: str) -> None:
        """Restore *app* from archive *name*, overwriting current state."""
        self._run(["backup", "restore", name, "--apps", app, "--force"])

    # ------------------------------------------------------------------
    def _run(
        self,
        args: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
    ) -> subprocess.CompletedProcess[str]:
        command = [self.command, *args]
        run_env = None
        if env:
            run_env = os.environ.copy()
            run_env.update(env)
        try:
            result = subprocess.run(  # noqa: S603, S607
                command,
                capture_output=True,
                text=True,
                env=run_env,
                check=False,
            )
        except FileNotFoundError as exc:
            raise ArchiveCatalogError(f"{self.command} not found: {exc}") from exc
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "no output").strip()
            raise ArchiveCatalogError(
                f"{' '.join(command)} failed (exit {result.returncode}): {message}"
            )
        return result


__all__ = ["ArchiveCatalog", "ArchiveCatalogError", "CommandArchiveCatalog"]
