"""Safety snapshots taken before an application upgrade.

Two archive slots alternate per app (``<app>-pre-upgrade1`` and
``<app>-pre-upgrade2``) so the previous snapshot is only deleted once the new
one has been created successfully.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass

from .errors import BackupError
from .providers.archives import ArchiveCatalog, ArchiveCatalogError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class UpgradeSnapshot:
    """A pre-upgrade archive that a failed upgrade can roll back to."""

    app: str
    name: str
    slot: int


def snapshot_name(app: str, slot: int) -> str:
    """Return the archive name for *app* in *slot*."""
    return f"{app.replace('_', '-')}-pre-upgrade{slot}"


@dataclass(slots=True)
class UpgradeGuard:
    """Create and restore pre-upgrade snapshots through an archive catalog."""

    catalog: ArchiveCatalog
    no_backup_upgrade: bool = False

    def backup_before_upgrade(self, app: str) -> UpgradeSnapshot | None:
        """Snapshot *app* (core data only) ahead of an upgrade.

        Returns ``None`` when snapshots are disabled. Raises
        :class:`BackupError` when the archive cannot be created.
        """
        if self.no_backup_upgrade:
            LOGGER.warning(
                "Pre-upgrade backups are disabled; %s will be upgraded without a "
                "safety backup.",
                app,
            )
            return None

        existing = set(self.catalog.list_names())
        slot, old_slot = (2, 1) if snapshot_name(app, 1) in existing else (1, 2)
        name = snapshot_name(app, slot)
        if name in existing:
            self.catalog.delete(name)

        try:
            self.catalog.create(name, app, core_only=True)
        except ArchiveCatalogError as exc:
            raise BackupError(f"Backup failed, the upgrade process was aborted: {exc}") from exc

        old_name = snapshot_name(app, old_slot)
        if old_name in existing:
            self.catalog.delete(old_name)
        return UpgradeSnapshot(app=app, name=name, slot=slot)

    def restore_upgrade_backup(self, app: str, snapshot: UpgradeSnapshot | str) -> bool:
        """Roll *app* back to *snapshot*; return False when there is nothing to restore."""
        if self.no_backup_upgrade:
            LOGGER.warning(
                "Pre-upgrade backups are disabled, there is no backup of %s to restore.",
                app,
            )
            return False
        name = snapshot.name if isinstance(snapshot, UpgradeSnapshot) else snapshot
        if not self.catalog.exists(name):
            LOGGER.warning("Snapshot %s does not exist; nothing to restore.", name)
            return False
        self.catalog.remove_app(app)
        self.catalog.restore(name, app)
        return True


__all__ = ["UpgradeGuard", "UpgradeSnapshot", "snapshot_name"]
