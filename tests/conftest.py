"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

from pathlib import Path

import pytest

from appbackctl.backups import BackupContext
from appbackctl.manifest import BackupManifest
from appbackctl.settings import AppSettingsStore


@pytest.fixture
def settings(tmp_path: Path) -> AppSettingsStore:
    """Return a settings store rooted in the temporary directory."""
    return AppSettingsStore(tmp_path / "settings")


@pytest.fixture
def archive_root(tmp_path: Path) -> Path:
    """Return an archive root with an app working directory inside it."""
    root = tmp_path / "archive"
    (root / "apps" / "wiki" / "backup").mkdir(parents=True)
    return root


@pytest.fixture
def backup_context(archive_root: Path, settings: AppSettingsStore) -> BackupContext:
    """Return a backup context working from ``apps/wiki/backup``."""
    return BackupContext(
        archive_root=archive_root,
        working_dir=archive_root / "apps" / "wiki" / "backup",
        manifest=BackupManifest(archive_root / "backup.csv"),
        app="wiki",
        settings=settings,
    )
