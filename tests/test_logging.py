"""Tests for the structured operation log."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from appbackctl.logging import StructuredLogger


def _records(logger: StructuredLogger) -> list[dict[str, object]]:
    path = logger._operations_log_path  # type: ignore[attr-defined]
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_unwritable_log_dir_disables_logging(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A log directory that cannot be created turns logging off without failing."""
    log_dir = tmp_path / "var" / "log"
    real_mkdir = Path.mkdir

    def deny(self: Path, *args: object, **kwargs: object) -> None:
        if self == log_dir:
            raise PermissionError("read-only filesystem")
        real_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", deny)

    logger = StructuredLogger(log_dir)

    assert logger.enabled is False
    with logger.operation("backup add", args={"source": "/etc/app.conf"}) as op:
        op.success("Path recorded in manifest.")
    assert not log_dir.exists()


def test_failed_append_turns_logging_off(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """An append error is absorbed and later operations skip the log."""
    logger = StructuredLogger(tmp_path / "logs")
    target = logger._operations_log_path  # type: ignore[attr-defined]
    real_open = Path.open
    attempts: list[Path] = []

    def broken(self: Path, *args: object, **kwargs: object) -> object:
        if self == target:
            attempts.append(self)
            raise OSError("no space left on device")
        return real_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", broken)

    with logger.operation("restore all") as op:
        op.success("Restored 0 path(s).")
    with logger.operation("restore all") as op:
        op.success("Restored 0 path(s).")

    assert logger.enabled is False
    assert len(attempts) == 1


def test_warning_result_is_json_safe(tmp_path: Path) -> None:
    """Paths and arbitrary objects are stored as strings."""
    logger = StructuredLogger(tmp_path / "logs")

    class Marker:
        def __str__(self) -> str:
            return "marker"

    with logger.operation("checksum check", args={"file": Path("app.ini")}) as op:
        op.warning(
            "Manual modification detected.",
            changed=1,
            backups=[Path("/var/cache/app.ini.backup.20240101.000000")],
            context={"file": Path("/etc/app.ini"), "extra": Marker()},
        )

    (record,) = _records(logger)
    assert record["args"] == {"file": "app.ini"}
    result = record["result"]
    assert isinstance(result, dict)
    assert result["status"] == "warning"
    assert result["warnings"] == ["Manual modification detected."]
    assert result["backups"] == ["/var/cache/app.ini.backup.20240101.000000"]
    assert result["context"] == {"file": "/etc/app.ini", "extra": "marker"}


def test_error_result_defaults_errors_to_message(tmp_path: Path) -> None:
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("nginx add") as op:
        op.error("nginx rejected the new configuration", rc=4, context={"ids": {3}})

    (record,) = _records(logger)
    result = record["result"]
    assert isinstance(result, dict)
    assert result["errors"] == ["nginx rejected the new configuration"]
    assert result["rc"] == 4
    assert result["context"] == {"ids": "{3}"}


def test_operation_records_steps_and_target(tmp_path: Path) -> None:
    """Steps and target metadata end up in the JSON record."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation(
        "restore.file", args={"origin": "/etc/app.conf"}, target={"app": "wiki"}
    ) as op:
        op.add_step("restore.locate", detail="apps/wiki/backup/etc/app.conf")
        op.success("Restored /etc/app.conf.", changed=1, backups=[Path("/var/cache/a.backup")])

    (record,) = _records(logger)
    assert record["operation"] == "restore.file"
    assert record["target"] == {"app": "wiki"}
    steps = record["steps"]
    assert isinstance(steps, list)
    assert steps[0]["name"] == "restore.locate"
    assert steps[0]["detail"] == "apps/wiki/backup/etc/app.conf"
    result = record["result"]
    assert isinstance(result, dict)
    assert result["changed"] == 1
    assert result["backups"] == ["/var/cache/a.backup"]
    assert result["rc"] == 0


def test_operation_records_escaping_exception(tmp_path: Path) -> None:
    """An exception leaving the scope is logged as an error and re-raised."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(ValueError):
        with logger.operation("backup add"):
            raise ValueError("bad source")

    (record,) = _records(logger)
    result = record["result"]
    assert isinstance(result, dict)
    assert result["status"] == "error"
    assert result["errors"] == ["bad source"]


def test_operation_appends_one_line_per_run(tmp_path: Path) -> None:
    logger = StructuredLogger(tmp_path / "logs")
    for index in range(3):
        with logger.operation(f"op-{index}") as op:
            op.success("ok")

    assert [record["operation"] for record in _records(logger)] == ["op-0", "op-1", "op-2"]
