"""Nginx provider for per-application vhost fragments.

Each managed app gets ``<conf_dir>/<domain>.d/<app>.conf``, included by the
domain's main server block. Templates may carry two marker prefixes:

* ``#sub_path_only`` lines are enabled when the app lives under a sub-path;
* ``#root_path_only`` lines are enabled when the app owns the whole domain.

The marker of the other variant is dropped together with its line.
"""
from __future__ import annotations

import re
import shutil
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from ..checksums import ChecksumGuard
from ..templates import TemplateEngine
from .systemd import SystemdProvider

SUB_PATH_MARKER = "#sub_path_only"
ROOT_PATH_MARKER = "#root_path_only"


class NginxError(RuntimeError):
    """Raised when nginx operations fail."""


@dataclass(slots=True)
class NginxRenderResult:
    """Outcome of writing, moving or removing an app fragment."""

    path: Path
    changed: bool
    backup: Path | None = None
    diff: str | None = None
    validation: subprocess.CompletedProcess[str] | None = None
    reload: subprocess.CompletedProcess[str] | None = None
    validation_error: str | None = None


def apply_path_markers(content: str, path_url: str) -> str:
    """Enable the marker lines matching *path_url* and drop the others."""
    if path_url != "/":
        keep, drop = SUB_PATH_MARKER, ROOT_PATH_MARKER
    else:
        keep, drop = ROOT_PATH_MARKER, SUB_PATH_MARKER
    keep_re = re.compile(rf"^(\s*){re.escape(keep)} ?")
    drop_re = re.compile(rf"^\s*{re.escape(drop)}")
    lines: list[str] = []
    for line in content.splitlines(keepends=True):
        if drop_re.match(line):
            continue
        lines.append(keep_re.sub(r"\1", line, count=1))
    return "".join(lines)


def normalise_path_url(path_url: str) -> str:
    """Return *path_url* with one leading slash and no trailing slash."""
    stripped = path_url.strip().strip("/")
    return f"/{stripped}" if stripped else "/"


@dataclass(slots=True)
class NginxProvider:
    """Render and manage nginx fragments for managed applications."""

    templates: TemplateEngine
    conf_dir: Path = Path("/etc/nginx/conf.d")
    nginx_bin: str = "nginx"
    services: SystemdProvider | None = None
    template_name: str = "nginx/app.conf.j2"

    def conf_path(self, domain: str, app: str) -> Path:
        """Return the fragment path for *app* on *domain*."""
        safe_domain = domain.strip().replace("/", "-")
        safe_app = app.strip().replace("/", "-")
        if not safe_domain or not safe_app:
            raise NginxError("Domain and app must be non-empty strings.")
        return self.conf_dir / f"{safe_domain}.d" / f"{safe_app}.conf"

    def render_config(
        self,
        app: str,
        domain: str,
        path_url: str,
        context: Mapping[str, object] | None = None,
        *,
        template: Path | None = None,
    ) -> str:
        """Return the fragment content for *app* without touching the disk."""
        path_url = normalise_path_url(path_url)
        values: dict[str, object] = {
            "alias": None,
            "upstream_port": None,
            "upstream_path": "",
            "php_version": None,
            "max_body_size": "50M",
        }
        values.update(context or {})
        values.update(
            {
                "app": app,
                "domain": domain,
                "path_url": path_url,
                "location": "/" if path_url == "/" else f"{path_url}/",
            }
        )
        if template is not None:
            rendered = self.templates.render_source(
                template.read_text(encoding="utf-8"), values
            )
        else:
            rendered = self.templates.render_to_string(self.template_name, values)
        return apply_path_markers(rendered, path_url)

    def add_config(
        self,
        app: str,
        domain: str,
        path_url: str,
        context: Mapping[str, object] | None = None,
        *,
        guard: ChecksumGuard | None = None,
        template: Path | None = None,
        reload_on_change: bool = True,
    ) -> NginxRenderResult:
        """Write the fragment for *app*, keeping a copy if it was hand-edited.

        The new configuration is validated with ``nginx -t`` before reloading.
        Validation failures roll back to the previous content.
        """
        destination = self.conf_path(domain, app)
        content = self.render_config(app, domain, path_url, context, template=template)

        backup = guard.check_drift(destination) if guard is not None else None

        previous: tuple[str, int] | None = None
        if destination.exists():
            previous = (
                destination.read_text(encoding="utf-8"),
                destination.stat().st_mode,
            )

        changed = self.templates.write_if_changed(destination, content, mode=0o644)

        validation_result: subprocess.CompletedProcess[str] | None = None
        if changed:
            try:
                validation_result = self.test_config()
            except NginxError as exc:
                if previous is None:
                    destination.unlink(missing_ok=True)
                else:
                    old_content, mode = previous
                    destination.write_text(old_content, encoding="utf-8")
                    destination.chmod(mode)
                return NginxRenderResult(
                    path=destination,
                    changed=False,
                    backup=backup,
                    validation_error=str(exc),
                )

        diff: str | None = None
        if guard is not None:
            diff = guard.store_checksum(destination, pending_backup=backup).diff

        reload_result: subprocess.CompletedProcess[str] | None = None
        if changed and reload_on_change:
            reload_result = self.reload()
        return NginxRenderResult(
            path=destination,
            changed=changed,
            backup=backup,
            diff=diff,
            validation=validation_result,
            reload=reload_result,
        )

    def remove_config(
        self,
        app: str,
        domain: str,
        *,
        guard: ChecksumGuard | None = None,
        reload_on_change: bool = True,
    ) -> NginxRenderResult:
        """Delete the fragment of *app* and stop tracking its checksum."""
        path = self.conf_path(domain, app)
        existed = path.exists()
        path.unlink(missing_ok=True)
        if guard is not None:
            guard.delete_checksum(path)
        reload_result = self.reload() if existed and reload_on_change else None
        return NginxRenderResult(path=path, changed=existed, reload=reload_result)

    def change_url(
        self,
        app: str,
        *,
        old_domain: str,
        new_domain: str,
        old_path: str,
        new_path: str,
        context: Mapping[str, object] | None = None,
        guard: ChecksumGuard | None = None,
        template: Path | None = None,
    ) -> NginxRenderResult:
        """Move the fragment of *app* to a new domain and/or path."""
        old_conf = self.conf_path(old_domain, app)
        new_conf = self.conf_path(new_domain, app)
        result = NginxRenderResult(path=old_conf, changed=False)

        if normalise_path_url(old_path) != normalise_path_url(new_path):
            result = self.add_config(
                app,
                old_domain,
                new_path,
                context,
                guard=guard,
                template=template,
                reload_on_change=False,
            )
            if result.validation_error:
                return result

        if old_conf != new_conf:
            if not old_conf.exists():
                raise NginxError(f"Cannot move missing nginx configuration {old_conf}.")
            if guard is not None:
                guard.delete_checksum(old_conf)
            new_conf.parent.mkdir(parents=True, exist_ok=True)
            shutil.move(str(old_conf), str(new_conf))
            if guard is not None:
                guard.store_checksum(new_conf)
            result.path = new_conf
            result.changed = True

        if result.changed:
            result.reload = self.reload()
        return result

    def test_config(self) -> subprocess.CompletedProcess[str]:
        """Run ``nginx -t`` to validate the configuration."""
        try:
            return self._run_nginx(["-t"])
        except FileNotFoundError:
            return subprocess.CompletedProcess([self.nginx_bin, "-t"], returncode=0)

    def reload(self) -> subprocess.CompletedProcess[str]:
        """Reload nginx through the service manager, or ``nginx -s reload``."""
        if self.services is not None:
            return self.services.reload("nginx")
        try:
            return self._run_nginx(["-s", "reload"])
        except FileNotFoundError:
            return subprocess.CompletedProcess([self.nginx_bin, "-s", "reload"], returncode=0)

    # ------------------------------------------------------------------
    def _run_nginx(self, args: Sequence[str]) -> subprocess.CompletedProcess[str]:
        command = [self.nginx_bin, *args]
        result = subprocess.run(  # noqa: S603, S607
            command,
            capture_output=True,
            text=True,
            check=False,
        )
        if result.returncode != 0:
            message = (result.stderr or result.stdout or "no output").strip()
            raise NginxError(
                f"{self.nginx_bin} {' '.join(args)} failed (exit {result.returncode}): {message}"
            )
        return result


__all__ = [
    "NginxError",
    "NginxProvider",
    "NginxRenderResult",
    "apply_path_markers",
    "normalise_path_url",
]
