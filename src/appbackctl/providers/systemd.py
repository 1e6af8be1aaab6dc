"""Systemd provider for controlling named services."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass


class SystemdError(RuntimeError):
    """Raised when systemd operations fail."""


ALLOWED_ACTIONS = frozenset({"start", "stop", "reload", "restart", "reload-or-restart"})


@dataclass(slots=True)
class SystemdProvider:
    """Start, stop, reload or restart services after configuration changes."""

    systemctl_bin: str = "systemctl"

    def unit_name(self, service: str) -> str:
        """Return the unit name for *service* (``.service`` appended when missing)."""
        name = service.strip()
        if not name:
            raise SystemdError("Service name must be a non-empty string.")
        if "." in name.rsplit("/", 1)[-1]:
            return name
        return f"{name}.service"

    def action(
        self,
        service: str,
        action: str,
        *,
        dry_run: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        """Run ``systemctl <action> <service>``."""
        if action not in ALLOWED_ACTIONS:
            allowed = ", ".join(sorted(ALLOWED_ACTIONS))
            raise SystemdError(f"Unsupported service action '{action}'. Allowed: {allowed}.")
        return self._systemctl(action, self.unit_name(service), dry_run=dry_run)

    def start(self, service: str, *, dry_run: bool = False) -> subprocess.CompletedProcess[str]:
        """Start *service*."""
        return self.action(service, "start", dry_run=dry_run)

    def stop(self, service: str, *, dry_run: bool = False) -> subprocess.CompletedProcess[str]:
        """Stop *service*."""
        return self.action(service, "stop", dry_run=dry_run)

    def reload(self, service: str, *, dry_run: bool = False) -> subprocess.CompletedProcess[str]:
        """Reload *service*."""
        return self.action(service, "reload", dry_run=dry_run)

    def restart(self, service: str, *, dry_run: bool = False) -> subprocess.CompletedProcess[str]:
        """Restart *service*."""
        return self.action(service, "restart", dry_run=dry_run)

    def is_active(self, service: str) -> bool:
        """Return True when systemd reports *service* as active."""
        result = self._systemctl("is-active", self.unit_name(service), check=False)
        return result.returncode == 0

    # ------------------------------------------------------------------
    def _systemctl(
        self,
        command: str,
        unit: str | None = None,
        *,
        check: bool = True,
        dry_run: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        args: list[str] = [self.systemctl_bin, command]
        if unit is not None:
            args.append(unit)
        return self._run_command(
            args,
            check=check,
            error_prefix=f"{self.systemctl_bin} {command}",
            dry_run=dry_run,
        )

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
        dry_run: bool,
    ) -> subprocess.CompletedProcess[str]:
        if dry_run:
            return subprocess.CompletedProcess(list(args), returncode=0, stdout="", stderr="")
        try:
            result = subprocess.run(  # noqa: S603, S607
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise SystemdError(f"{args[0]} not found: {exc}") from exc
        if check and result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise SystemdError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


__all__ = ["ALLOWED_ACTIONS", "SystemdError", "SystemdProvider"]
