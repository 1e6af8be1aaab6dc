"""Layered configuration for appbackctl.

Later sources win over earlier ones:

* the built-in ``DEFAULTS`` mapping;
* the YAML file at ``/etc/appbackctl/config.yml``, or the path named by
  ``--config-file`` / ``APPBACKCTL_CONFIG_FILE``;
* ``APPBACKCTL_*`` environment variables, where ``__`` separates nested keys
  (``APPBACKCTL_BACKUP__CORE_ONLY=true``, ``APPBACKCTL_NGINX__CONF_DIR=...``).
  ``BACKUP_CORE_ONLY``, exported by the archiver for core-only snapshots, also
  sets ``backup.core_only`` unless the prefixed variable is present;
* overrides passed in by the CLI, such as ``--backup-dir``.

Environment values go through ``yaml.safe_load`` so ``true`` and ``42`` arrive
as a bool and an int. The merged tree is validated and frozen into the
dataclasses below.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import cast

import yaml
from packaging.version import InvalidVersion, Version

ENV_PREFIX = "APPBACKCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
CORE_ONLY_ENV_VAR = "BACKUP_CORE_ONLY"
RESERVED_ENV_KEYS = {
    CONFIG_ENV_VAR,
    f"{ENV_PREFIX}APP",
    f"{ENV_PREFIX}WORK_DIR",
}

DEFAULT_LARGE_RESTORE_THRESHOLD = 500_000_000


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class BackupConfig:
    """Archive root, manifest location and backup policy switches."""

    root: Path
    manifest: Path
    core_only: bool = False
    large_restore_threshold: int = DEFAULT_LARGE_RESTORE_THRESHOLD
    placeholder_prefixes: tuple[Path, ...] = (Path("/etc/fail2ban"),)
    archive_is_mount: bool | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        if self.archive_is_mount is None:
            mount: object = "auto"
        else:
            mount = self.archive_is_mount
        return {
            "root": str(self.root),
            "manifest": str(self.manifest),
            "core_only": self.core_only,
            "large_restore_threshold": self.large_restore_threshold,
            "placeholder_prefixes": [str(prefix) for prefix in self.placeholder_prefixes],
            "archive_is_mount": mount,
        }


@dataclass(frozen=True)
class NginxConfig:
    """Where nginx fragments live and how restored ones are patched."""

    conf_dir: Path = Path("/etc/nginx/conf.d")
    nginx_bin: str = "nginx"
    runtime_upgrades: Mapping[str, str] = field(default_factory=lambda: {"7.0": "7.3"})

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "conf_dir": str(self.conf_dir),
            "nginx_bin": self.nginx_bin,
            "runtime_upgrades": dict(self.runtime_upgrades),
        }


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    systemctl_bin: str = "systemctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"systemctl_bin": self.systemctl_bin}


@dataclass(frozen=True)
class ArchivesConfig:
    """Archive-management command used for pre-upgrade snapshots."""

    command: str = "yunohost"
    no_backup_upgrade: bool = False

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"command": self.command, "no_backup_upgrade": self.no_backup_upgrade}


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for appbackctl."""

    config_file: Path
    settings_dir: Path
    logs_dir: Path
    cache_dir: Path
    templates_dir: Path
    backup: BackupConfig
    nginx: NginxConfig
    systemd: SystemdConfig
    archives: ArchivesConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "settings_dir": str(self.settings_dir),
            "logs_dir": str(self.logs_dir),
            "cache_dir": str(self.cache_dir),
            "templates_dir": str(self.templates_dir),
            "backup": self.backup.to_dict(),
            "nginx": self.nginx.to_dict(),
            "systemd": self.systemd.to_dict(),
            "archives": self.archives.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/appbackctl/config.yml",
    "settings_dir": "/etc/appbackctl/apps",
    "logs_dir": "/var/log/appbackctl",
    "cache_dir": "/var/cache/appbackctl/backup",
    "templates_dir": "/etc/appbackctl/templates",
    "backup": {
        "root": "/var/lib/appbackctl/tmp/backup",
        "manifest": None,  # derived from backup.root when absent
        "core_only": False,
        "large_restore_threshold": DEFAULT_LARGE_RESTORE_THRESHOLD,
        "placeholder_prefixes": ["/etc/fail2ban"],
        "archive_is_mount": "auto",
    },
    "nginx": {
        "conf_dir": "/etc/nginx/conf.d",
        "nginx_bin": "nginx",
        "runtime_upgrades": {"7.0": "7.3"},
    },
    "systemd": {
        "systemctl_bin": "systemctl",
    },
    "archives": {
        "command": "yunohost",
        "no_backup_upgrade": False,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
_SECTION_KEYS: dict[str, set[str]] = {
    "backup": {
        "root",
        "manifest",
        "core_only",
        "large_restore_threshold",
        "placeholder_prefixes",
        "archive_is_mount",
    },
    "nginx": {"conf_dir", "nginx_bin", "runtime_upgrades"},
    "systemd": {"systemctl_bin"},
    "archives": {"command", "no_backup_upgrade"},
}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in _SECTION_KEYS.items():
        value = raw.get(section)
        if value is None:
            continue
        mapping = _as_dict(value, section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    backup_mapping = _as_dict(raw.get("backup"), "backup")
    backup_root = _to_path(backup_mapping.get("root", "/var/lib/appbackctl/tmp/backup"))
    manifest_value = backup_mapping.get("manifest")
    manifest = _to_path(manifest_value) if manifest_value else backup_root / "backup.csv"

    threshold = _expect_int(
        backup_mapping.get("large_restore_threshold"),
        "backup.large_restore_threshold",
        default=DEFAULT_LARGE_RESTORE_THRESHOLD,
    )
    if threshold < 0:
        raise ConfigError("backup.large_restore_threshold must be non-negative.")

    prefixes_raw = backup_mapping.get("placeholder_prefixes")
    prefixes: tuple[Path, ...] = ()
    if prefixes_raw is not None:
        prefixes = tuple(
            _to_path(item)
            for item in _as_sequence(prefixes_raw, "backup.placeholder_prefixes")
        )

    backup = BackupConfig(
        root=backup_root,
        manifest=manifest,
        core_only=_expect_bool(backup_mapping.get("core_only"), "backup.core_only"),
        large_restore_threshold=threshold,
        placeholder_prefixes=prefixes,
        archive_is_mount=_parse_tristate(
            backup_mapping.get("archive_is_mount"), "backup.archive_is_mount"
        ),
    )

    nginx_mapping = _as_dict(raw.get("nginx"), "nginx")
    nginx = NginxConfig(
        conf_dir=_to_path(nginx_mapping.get("conf_dir", "/etc/nginx/conf.d")),
        nginx_bin=str(nginx_mapping.get("nginx_bin", "nginx")),
        runtime_upgrades=_parse_runtime_upgrades(nginx_mapping.get("runtime_upgrades")),
    )

    systemd_mapping = _as_dict(raw.get("systemd"), "systemd")
    systemd = SystemdConfig(
        systemctl_bin=str(systemd_mapping.get("systemctl_bin", "systemctl")),
    )

    archives_mapping = _as_dict(raw.get("archives"), "archives")
    archives = ArchivesConfig(
        command=str(archives_mapping.get("command", "yunohost")),
        no_backup_upgrade=_expect_bool(
            archives_mapping.get("no_backup_upgrade"), "archives.no_backup_upgrade"
        ),
    )

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        settings_dir=_to_path(raw.get("settings_dir")),
        logs_dir=_to_path(raw.get("logs_dir")),
        cache_dir=_to_path(raw.get("cache_dir")),
        templates_dir=_to_path(raw.get("templates_dir")),
        backup=backup,
        nginx=nginx,
        systemd=systemd,
        archives=archives,
    )


def _parse_runtime_upgrades(value: object | None) -> dict[str, str]:
    mapping = _as_dict(value, "nginx.runtime_upgrades")
    upgrades: dict[str, str] = {}
    for obsolete, replacement in mapping.items():
        old = _version_text(obsolete, "nginx.runtime_upgrades key")
        new = _version_text(replacement, f"nginx.runtime_upgrades[{obsolete}]")
        if Version(new) <= Version(old):
            raise ConfigError(
                f"nginx.runtime_upgrades maps {old} to {new}; the replacement must be newer."
            )
        upgrades[old] = new
    return upgrades


def _version_text(value: object, label: str) -> str:
    # YAML turns ``7.0`` into a float; keep the textual form nginx configs use.
    text = str(value).strip()
    try:
        Version(text)
    except InvalidVersion as exc:
        raise ConfigError(f"{label} must be a version such as '7.4'. Got {value!r}.") from exc
    return text


def _parse_tristate(value: object | None, label: str) -> bool | None:
    if value is None:
        return None
    if isinstance(value, str) and value.strip().lower() == "auto":
        return None
    return _expect_bool(value, label)


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    # Set by the archiver while it runs app backup scripts for a core-only snapshot.
    if CORE_ONLY_ENV_VAR in env:
        _assign_nested(overrides, ["backup", "core_only"], _coerce_value(env[CORE_ONLY_ENV_VAR]))
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_bool(value: object | None, label: str, *, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        text = value.strip().lower()
        if text in {"1", "true", "yes", "on"}:
            return True
        if text in {"0", "false", "no", "off", ""}:
            return False
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if isinstance(key, (int, float)) and not isinstance(key, bool):
            key = str(key)
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ArchivesConfig",
    "BackupConfig",
    "ConfigError",
    "NginxConfig",
    "SystemdConfig",
    "load_config",
]
