"""Configuration loader tests."""
from __future__ import annotations

from pathlib import Path

import pytest

from appbackctl.config import AppConfig, ConfigError, load_config


def test_load_config_defaults_when_file_missing(tmp_path: Path) -> None:
    """Defaults apply when no config file is present."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})

    assert isinstance(config, AppConfig)
    assert config.backup.root == Path("/var/lib/appbackctl/tmp/backup")
    assert config.backup.manifest == Path("/var/lib/appbackctl/tmp/backup/backup.csv")
    assert config.backup.large_restore_threshold == 500_000_000
    assert config.backup.placeholder_prefixes == (Path("/etc/fail2ban"),)
    assert config.backup.archive_is_mount is None
    assert config.backup.core_only is False
    assert config.nginx.conf_dir == Path("/etc/nginx/conf.d")
    assert dict(config.nginx.runtime_upgrades) == {"7.0": "7.3"}
    assert config.archives.command == "yunohost"


def test_load_config_reads_yaml_file(tmp_path: Path) -> None:
    """Values are loaded from the YAML config file."""
    cfg = tmp_path / "appbackctl.yml"
    cfg.write_text(
        "cache_dir: {cache}\n"
        "backup:\n"
        "  root: {root}\n"
        "  archive_is_mount: true\n"
        "  placeholder_prefixes: [/etc/fail2ban, /etc/legacy]\n"
        "nginx:\n"
        "  runtime_upgrades:\n"
        "    7.0: 7.4\n"
        "    '7.3': '8.2'\n".format(cache=tmp_path / "cache", root=tmp_path / "bk")
    )

    config = load_config(config_file=cfg, env={})

    assert config.config_file == cfg
    assert config.cache_dir == tmp_path / "cache"
    assert config.backup.root == tmp_path / "bk"
    assert config.backup.manifest == tmp_path / "bk" / "backup.csv"
    assert config.backup.archive_is_mount is True
    assert config.backup.placeholder_prefixes == (Path("/etc/fail2ban"), Path("/etc/legacy"))
    assert dict(config.nginx.runtime_upgrades) == {"7.0": "7.4", "7.3": "8.2"}


def test_env_overrides_take_precedence(tmp_path: Path) -> None:
    """Environment variables override defaults and file settings."""
    env = {
        "APPBACKCTL_BACKUP__ROOT": str(tmp_path / "bk"),
        "APPBACKCTL_BACKUP__CORE_ONLY": "true",
        "APPBACKCTL_BACKUP__LARGE_RESTORE_THRESHOLD": "1024",
        "APPBACKCTL_ARCHIVES__NO_BACKUP_UPGRADE": "1",
        "APPBACKCTL_LOGS_DIR": str(tmp_path / "logs"),
        "APPBACKCTL_APP": "ignored",
    }

    config = load_config(config_file=tmp_path / "missing.yml", env=env)

    assert config.backup.root == tmp_path / "bk"
    assert config.backup.core_only is True
    assert config.backup.large_restore_threshold == 1024
    assert config.archives.no_backup_upgrade is True
    assert config.logs_dir == tmp_path / "logs"


def test_config_file_env_var(tmp_path: Path) -> None:
    """APPBACKCTL_CONFIG_FILE points the loader at another file."""
    cfg = tmp_path / "alt.yml"
    cfg.write_text("systemd:\n  systemctl_bin: /bin/true\n")

    config = load_config(env={"APPBACKCTL_CONFIG_FILE": str(cfg)})

    assert config.config_file == cfg
    assert config.systemd.systemctl_bin == "/bin/true"


def test_unknown_keys_rejected(tmp_path: Path) -> None:
    """Unknown top-level or section keys raise ConfigError."""
    cfg = tmp_path / "bad.yml"
    cfg.write_text("unknown: 1\n")
    with pytest.raises(ConfigError, match="Unknown configuration keys"):
        load_config(config_file=cfg, env={})

    cfg.write_text("backup:\n  compression: gzip\n")
    with pytest.raises(ConfigError, match="Unknown backup configuration keys"):
        load_config(config_file=cfg, env={})


def test_runtime_upgrades_must_move_forward(tmp_path: Path) -> None:
    """A replacement runtime older than the obsolete one is rejected."""
    with pytest.raises(ConfigError, match="must be newer"):
        load_config(
            config_file=tmp_path / "missing.yml",
            env={},
            overrides={"nginx": {"runtime_upgrades": {"8.2": "7.4"}}},
        )


def test_invalid_runtime_version(tmp_path: Path) -> None:
    """Runtime versions must parse as versions."""
    with pytest.raises(ConfigError, match="must be a version"):
        load_config(
            config_file=tmp_path / "missing.yml",
            env={},
            overrides={"nginx": {"runtime_upgrades": {"seven": "8.2"}}},
        )


def test_to_dict_is_serialisable(tmp_path: Path) -> None:
    """to_dict returns plain values."""
    config = load_config(config_file=tmp_path / "missing.yml", env={})
    data = config.to_dict()
    assert data["backup"]["archive_is_mount"] == "auto"
    assert data["nginx"]["runtime_upgrades"] == {"7.0": "7.3"}


def test_archiver_core_only_variable(tmp_path: Path) -> None:
    """The archiver's BACKUP_CORE_ONLY flag turns on core-only mode."""
    config = load_config(config_file=tmp_path / "missing.yml", env={"BACKUP_CORE_ONLY": "1"})

    assert config.backup.core_only is True


def test_prefixed_core_only_wins_over_archiver_variable(tmp_path: Path) -> None:
    env = {"BACKUP_CORE_ONLY": "1", "APPBACKCTL_BACKUP__CORE_ONLY": "false"}

    config = load_config(config_file=tmp_path / "missing.yml", env=env)

    assert config.backup.core_only is False
