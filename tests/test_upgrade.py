"""Tests for pre-upgrade snapshots."""
from __future__ import annotations

import json
import subprocess
from dataclasses import dataclass, field

import pytest

from appbackctl.errors import BackupError
from appbackctl.providers.archives import ArchiveCatalogError, CommandArchiveCatalog
from appbackctl.upgrade import UpgradeGuard, UpgradeSnapshot, snapshot_name


@dataclass
class FakeCatalog:
    """In-memory archive catalog recording every call."""

    names: list[str] = field(default_factory=list)
    calls: list[tuple[str, ...]] = field(default_factory=list)
    fail_create: bool = False

    def list_names(self) -> list[str]:
        return list(self.names)

    def exists(self, name: str) -> bool:
        return name in self.names

    def create(self, name: str, app: str, *, core_only: bool = False) -> None:
        self.calls.append(("create", name, app, str(core_only)))
        if self.fail_create:
            raise ArchiveCatalogError("disk full")
        self.names.append(name)

    def delete(self, name: str) -> None:
        self.calls.append(("delete", name))
        self.names.remove(name)

    def remove_app(self, app: str) -> None:
        self.calls.append(("remove_app", app))

    def restore(self, name: str, app: str) -> None:
        self.calls.append(("restore", name, app))


def test_snapshot_name_replaces_underscores() -> None:
    assert snapshot_name("my_app", 1) == "my-app-pre-upgrade1"


def test_first_snapshot_uses_slot_one() -> None:
    catalog = FakeCatalog()
    snapshot = UpgradeGuard(catalog).backup_before_upgrade("wiki")

    assert snapshot == UpgradeSnapshot(app="wiki", name="wiki-pre-upgrade1", slot=1)
    assert catalog.calls == [("create", "wiki-pre-upgrade1", "wiki", "True")]


def test_slots_alternate_and_old_one_is_dropped() -> None:
    """The previous snapshot is deleted only after the new one exists."""
    catalog = FakeCatalog(names=["wiki-pre-upgrade1"])

    snapshot = UpgradeGuard(catalog).backup_before_upgrade("wiki")

    assert snapshot is not None
    assert snapshot.slot == 2
    assert catalog.calls == [
        ("create", "wiki-pre-upgrade2", "wiki", "True"),
        ("delete", "wiki-pre-upgrade1"),
    ]
    assert catalog.names == ["wiki-pre-upgrade2"]


def test_stale_target_slot_is_replaced() -> None:
    catalog = FakeCatalog(names=["wiki-pre-upgrade2"])

    snapshot = UpgradeGuard(catalog).backup_before_upgrade("wiki")

    assert snapshot is not None
    assert snapshot.slot == 1
    assert catalog.calls == [
        ("create", "wiki-pre-upgrade1", "wiki", "True"),
        ("delete", "wiki-pre-upgrade2"),
    ]


def test_failed_snapshot_aborts_and_keeps_previous() -> None:
    catalog = FakeCatalog(names=["wiki-pre-upgrade1"], fail_create=True)

    with pytest.raises(BackupError, match="upgrade process was aborted"):
        UpgradeGuard(catalog).backup_before_upgrade("wiki")

    assert catalog.names == ["wiki-pre-upgrade1"]


def test_disabled_snapshots() -> None:
    catalog = FakeCatalog(names=["wiki-pre-upgrade1"])
    guard = UpgradeGuard(catalog, no_backup_upgrade=True)

    assert guard.backup_before_upgrade("wiki") is None
    assert guard.restore_upgrade_backup("wiki", "wiki-pre-upgrade1") is False
    assert catalog.calls == []


def test_rollback_removes_then_restores() -> None:
    catalog = FakeCatalog(names=["wiki-pre-upgrade2"])
    snapshot = UpgradeSnapshot(app="wiki", name="wiki-pre-upgrade2", slot=2)

    assert UpgradeGuard(catalog).restore_upgrade_backup("wiki", snapshot) is True
    assert catalog.calls == [("remove_app", "wiki"), ("restore", "wiki-pre-upgrade2", "wiki")]


def test_rollback_without_snapshot() -> None:
    catalog = FakeCatalog()
    assert UpgradeGuard(catalog).restore_upgrade_backup("wiki", "wiki-pre-upgrade1") is False
    assert catalog.calls == []


class DummyResult:
    """Stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


def test_command_catalog_builds_commands(monkeypatch: pytest.MonkeyPatch) -> None:
    """The command-backed catalog shells out to the admin CLI."""
    seen: list[tuple[list[str], dict[str, str] | None]] = []

    def fake_run(command: list[str], **kwargs: object) -> DummyResult:
        env = kwargs.get("env")
        seen.append((command, env if isinstance(env, dict) else None))
        if command[1:3] == ["backup", "list"]:
            return DummyResult(stdout=json.dumps({"archives": ["wiki-pre-upgrade1"]}))
        return DummyResult()

    monkeypatch.setattr(subprocess, "run", fake_run)
    catalog = CommandArchiveCatalog(command="yunohost")

    assert catalog.exists("wiki-pre-upgrade1") is True
    catalog.create("wiki-pre-upgrade2", "wiki", core_only=True)
    catalog.restore("wiki-pre-upgrade2", "wiki")

    assert seen[0][0] == ["yunohost", "backup", "list", "--output-as", "json"]
    create_command, create_env = seen[1]
    assert create_command == [
        "yunohost", "backup", "create", "--apps", "wiki", "--name", "wiki-pre-upgrade2"
    ]
    assert create_env is not None
    assert create_env["BACKUP_CORE_ONLY"] == "1"
    assert seen[2][0] == ["yunohost", "backup", "restore", "wiki-pre-upgrade2", "--apps", "wiki", "--force"]


def test_command_catalog_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        subprocess, "run", lambda *args, **kwargs: DummyResult(returncode=1, stderr="boom")
    )
    with pytest.raises(ArchiveCatalogError, match="boom"):
        CommandArchiveCatalog().delete("x")
