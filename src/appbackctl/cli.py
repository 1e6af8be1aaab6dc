"""Typer-powered command line for ``appbackctl``.

Application install, backup, restore and upgrade scripts call these commands
instead of sourcing shell helpers. Every command runs inside a structured
operation scope so administrators can audit what a packaging script did.
"""
from __future__ import annotations

import os
import textwrap
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .backups import BackupContext, BackupRequest, ManifestWriter, Outcome
from .checksums import ChecksumGuard
from .config import AppConfig, ConfigError, load_config
from .errors import (
    BackupError,
    DestinationCollisionError,
    LookupFailureError,
    NotFoundError,
    SourceMissingError,
)
from .exit_codes import ExitCode
from .logging import OperationScope, StructuredLogger
from .manifest import BackupManifest
from .providers import (
    ArchiveCatalogError,
    CommandArchiveCatalog,
    NginxError,
    NginxProvider,
    NginxRenderResult,
    SystemdError,
    SystemdProvider,
)
from .restore import RestoreRequest, RestoreResult, Restorer
from .settings import AppSettingsStore, SettingsError
from .templates import TemplateEngine
from .upgrade import UpgradeGuard

console = Console()
err_console = Console(stderr=True)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to appbackctl's YAML config file.",
)
APP_OPTION = typer.Option(
    None,
    "--app",
    envvar="APPBACKCTL_APP",
    help="Identifier of the application the helpers act on.",
)
WORK_DIR_OPTION = typer.Option(
    None,
    "--work-dir",
    envvar="APPBACKCTL_WORK_DIR",
    file_okay=False,
    help="Working directory inside the archive root (defaults to the current directory).",
)
BACKUP_DIR_OPTION = typer.Option(
    None,
    "--backup-dir",
    file_okay=False,
    help="Override the archive root for this invocation.",
)
CORE_ONLY_OPTION = typer.Option(
    False,
    "--core-only",
    help="Leave data flagged as big out of the backup.",
)
JSON_OPTION = typer.Option(False, "--json", help="Emit JSON instead of a table.")
NOT_MANDATORY_OPTION = typer.Option(
    False,
    "--not-mandatory",
    "-m",
    help="Skip silently instead of failing when the path is missing.",
)

_EXIT_CODES: tuple[tuple[type[Exception], ExitCode], ...] = (
    (DestinationCollisionError, ExitCode.VALIDATION),
    (SourceMissingError, ExitCode.ENVIRONMENT),
    (NotFoundError, ExitCode.ENVIRONMENT),
    (LookupFailureError, ExitCode.ENVIRONMENT),
    (ConfigError, ExitCode.VALIDATION),
    (SettingsError, ExitCode.ENVIRONMENT),
    (NginxError, ExitCode.PROVIDER),
    (SystemdError, ExitCode.PROVIDER),
    (ArchiveCatalogError, ExitCode.PROVIDER),
    (BackupError, ExitCode.FAILURE),
    (OSError, ExitCode.ENVIRONMENT),
)


app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Backup manifest, restore and nginx helpers for packaged applications.

        Backup scripts record paths with ``backup add``; restore scripts put
        them back with ``restore all`` or ``restore file``. Configuration
        files written by the helpers are checksummed so manual edits are
        preserved before being overwritten.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    logger: StructuredLogger
    settings: AppSettingsStore
    templates: TemplateEngine
    systemd_provider: SystemdProvider
    nginx_provider: NginxProvider
    archives: CommandArchiveCatalog
    work_dir: Path
    app: str | None = None


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    *,
    app_id: str | None = None,
    work_dir: Path | None = None,
    backup_dir: Path | None = None,
    core_only: bool = False,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {}
    backup_overrides: dict[str, object] = {}
    if backup_dir is not None:
        backup_overrides["root"] = str(backup_dir)
    if core_only:
        backup_overrides["core_only"] = True
    if backup_overrides:
        overrides["backup"] = backup_overrides

    config = load_config(config_file=config_file, overrides=overrides)
    logger = StructuredLogger(config.logs_dir)
    templates = TemplateEngine.with_overrides(config.templates_dir)
    systemd_provider = SystemdProvider(systemctl_bin=config.systemd.systemctl_bin)
    nginx_provider = NginxProvider(
        templates=templates,
        conf_dir=config.nginx.conf_dir,
        nginx_bin=config.nginx.nginx_bin,
        services=systemd_provider,
    )
    runtime = RuntimeContext(
        config=config,
        logger=logger,
        settings=AppSettingsStore(config.settings_dir),
        templates=templates,
        systemd_provider=systemd_provider,
        nginx_provider=nginx_provider,
        archives=CommandArchiveCatalog(command=config.archives.command),
        work_dir=(work_dir or Path.cwd()).expanduser(),
        app=app_id.strip() if app_id else None,
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the appbackctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    app_id: str | None = APP_OPTION,
    work_dir: Path | None = WORK_DIR_OPTION,
    backup_dir: Path | None = BACKUP_DIR_OPTION,
    core_only: bool = CORE_ONLY_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"appbackctl {__version__}")
        raise typer.Exit(code=0)

    try:
        _ensure_runtime(
            ctx,
            config_file,
            app_id=app_id,
            work_dir=work_dir,
            backup_dir=backup_dir,
            core_only=core_only,
        )
    except ConfigError as exc:
        err_console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=int(ExitCode.VALIDATION)) from exc

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _exit_code_for(exc: Exception) -> ExitCode:
    for kind, code in _EXIT_CODES:
        if isinstance(exc, kind):
            return code
    return ExitCode.FAILURE


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = int(ExitCode.VALIDATION),
    errors: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    err_console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _fail(op: OperationScope, exc: Exception) -> NoReturn:
    _command_error(op, str(exc), rc=int(_exit_code_for(exc)))


def _require_app(runtime: RuntimeContext, op: OperationScope) -> str:
    if not runtime.app:
        _command_error(op, "This command needs an application: pass --app or set APPBACKCTL_APP.")
    return runtime.app


def _backup_context(runtime: RuntimeContext) -> BackupContext:
    backup = runtime.config.backup
    return BackupContext(
        archive_root=backup.root,
        working_dir=runtime.work_dir,
        manifest=BackupManifest(backup.manifest),
        app=runtime.app,
        settings=runtime.settings,
        core_only=backup.core_only,
        placeholder_prefixes=backup.placeholder_prefixes,
    )


def _restorer(runtime: RuntimeContext) -> Restorer:
    config = runtime.config
    return Restorer(
        context=_backup_context(runtime),
        cache_dir=config.cache_dir,
        large_threshold=config.backup.large_restore_threshold,
        archive_is_mount=config.backup.archive_is_mount,
        nginx_conf_dir=config.nginx.conf_dir,
        runtime_upgrades=dict(config.nginx.runtime_upgrades),
    )


def _checksum_guard(runtime: RuntimeContext, op: OperationScope) -> ChecksumGuard:
    return ChecksumGuard(
        app=_require_app(runtime, op),
        settings=runtime.settings,
        cache_dir=runtime.config.cache_dir,
    )


def _parse_vars(values: Sequence[str] | None) -> dict[str, object]:
    parsed: dict[str, object] = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise typer.BadParameter(f"Expected KEY=VALUE, got {item!r}.", param_hint="--var")
        parsed[key] = value
    return parsed


def _report_restore(result: RestoreResult) -> None:
    if result.outcome is Outcome.SKIPPED:
        console.print(f"[yellow]Skipped[/yellow] {result.origin} (not in archive).")
        return
    console.print(f"[green]Restored[/green] {result.origin} -> {result.destination}")
    if result.aside_path is not None:
        console.print(f"  previous content kept in {result.aside_path}")
    if result.removed_existing:
        console.print("  previous content was too large to keep and has been removed")


def _report_nginx(op: OperationScope, result: NginxRenderResult, action: str) -> None:
    if result.validation_error:
        _command_error(
            op,
            f"nginx rejected the new configuration: {result.validation_error}",
            rc=int(ExitCode.PROVIDER),
        )
    if result.backup is not None:
        console.print(
            f"[yellow]{result.path} was modified by hand; a copy was kept in "
            f"{result.backup}.[/yellow]"
        )
    if result.diff:
        err_console.print(result.diff, markup=False, highlight=False)
    state = "updated" if result.changed else "unchanged"
    console.print(f"[green]nginx {action}[/green]: {result.path} ({state})")
    op.success(
        f"nginx configuration {state}.",
        changed=1 if result.changed else 0,
        backups=[result.backup] if result.backup else None,
        context={"path": result.path},
    )


backup_app = typer.Typer(help="Record paths into the backup manifest.")
restore_app = typer.Typer(help="Restore archived paths to the live system.")
manifest_app = typer.Typer(help="Inspect the backup manifest.")
checksum_app = typer.Typer(help="Track manual edits of managed config files.")
nginx_app = typer.Typer(help="Manage per-application nginx fragments.")
service_app = typer.Typer(help="Control system services.")
upgrade_app = typer.Typer(help="Snapshot applications around upgrades.")
config_app = typer.Typer(help="Inspect the effective configuration.")

app.add_typer(backup_app, name="backup")
app.add_typer(restore_app, name="restore")
app.add_typer(manifest_app, name="manifest")
app.add_typer(checksum_app, name="checksum")
app.add_typer(nginx_app, name="nginx")
app.add_typer(service_app, name="service")
app.add_typer(upgrade_app, name="upgrade")
app.add_typer(config_app, name="config")


@backup_app.command("add")
def backup_add(
    ctx: typer.Context,
    source: Path = typer.Argument(..., help="File or directory to back up."),
    dest: str | None = typer.Option(
        None,
        "--dest",
        "-d",
        help="Destination inside the archive; a trailing '/' keeps the source name.",
    ),
    is_big: bool = typer.Option(
        False,
        "--is-big",
        "-b",
        help="Mark as large data that core-only backups leave out.",
    ),
    not_mandatory: bool = NOT_MANDATORY_OPTION,
) -> None:
    """Record SOURCE in the backup manifest."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "backup add",
        args={"source": source, "dest": dest, "is_big": is_big, "not_mandatory": not_mandatory},
        target={"kind": "manifest", "path": runtime.config.backup.manifest},
    ) as op:
        try:
            writer = ManifestWriter(_backup_context(runtime))
            result = writer.write(
                BackupRequest(
                    source=source,
                    destination=dest,
                    is_big=is_big,
                    not_mandatory=not_mandatory,
                )
            )
        except (BackupError, SettingsError, OSError) as exc:
            _fail(op, exc)

        for warning in writer.warnings:
            err_console.print(f"[yellow]Warning:[/yellow] {warning}")
        if result.outcome is Outcome.SKIPPED:
            console.print(f"[yellow]Skipped[/yellow]: {result.reason}")
            op.warning(result.reason or "Skipped.", changed=0)
            return
        assert result.entry is not None
        console.print(f"[green]Recorded[/green] {result.entry.source} -> {result.entry.destination}")
        op.success(
            "Path recorded in manifest.",
            changed=1,
            warnings=writer.warnings,
            context=result.entry.to_dict(),
        )


@restore_app.command("all")
def restore_all(ctx: typer.Context) -> None:
    """Restore every manifest entry recorded under the working directory."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "restore all",
        args={"work_dir": runtime.work_dir},
        target={"kind": "manifest", "path": runtime.config.backup.manifest},
    ) as op:
        try:
            results = _restorer(runtime).restore_all()
        except (BackupError, OSError) as exc:
            _fail(op, exc)
        for result in results:
            _report_restore(result)
            op.add_step(
                "restore.file",
                status=result.outcome.value,
                detail=f"{result.origin} -> {result.destination}",
            )
        asides = [result.aside_path for result in results if result.aside_path]
        op.success(
            f"Restored {len(results)} path(s).",
            changed=len(results),
            backups=asides,
        )


@restore_app.command("file")
def restore_file(
    ctx: typer.Context,
    origin: str = typer.Argument(..., help="Path inside the archive (or original path)."),
    dest: Path | None = typer.Option(
        None,
        "--dest",
        "-d",
        help="Where to restore; defaults to ORIGIN.",
    ),
    not_mandatory: bool = NOT_MANDATORY_OPTION,
) -> None:
    """Restore a single archived path."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "restore file",
        args={"origin": origin, "dest": dest, "not_mandatory": not_mandatory},
        target={"kind": "path", "path": dest or origin},
    ) as op:
        try:
            result = _restorer(runtime).restore_file(
                RestoreRequest(origin=origin, destination=dest, not_mandatory=not_mandatory)
            )
        except (BackupError, OSError) as exc:
            _fail(op, exc)
        _report_restore(result)
        if result.outcome is Outcome.SKIPPED:
            op.warning(f"Nothing to restore for {result.origin}.", changed=0)
            return
        op.success(
            "Path restored.",
            changed=1,
            backups=[result.aside_path] if result.aside_path else None,
            context=result.to_dict(),
        )


@manifest_app.command("list")
def manifest_list(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """List manifest rows in insertion order."""
    runtime = _get_runtime(ctx)
    manifest = BackupManifest(runtime.config.backup.manifest)
    with runtime.logger.operation(
        "manifest list",
        args={"json": json_output},
        target={"kind": "manifest", "path": manifest.path},
    ) as op:
        try:
            entries = [entry.to_dict() for entry in manifest.entries()]
        except BackupError as exc:
            _fail(op, exc)
        if json_output:
            console.print_json(data={"manifest": str(manifest.path), "entries": entries})
            op.success("Rendered manifest as JSON.", changed=0)
            return
        if not entries:
            console.print("Manifest is empty.")
            op.success("Manifest is empty.", changed=0)
            return
        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Source", style="bold")
        table.add_column("Destination")
        for entry in entries:
            table.add_row(entry["source"], entry["destination"])
        console.print(table)
        op.success(f"Listed {len(entries)} manifest row(s).", changed=0)


@checksum_app.command("check")
def checksum_check(
    ctx: typer.Context,
    file: Path = typer.Argument(..., help="Managed file to compare against its checksum."),
) -> None:
    """Back up FILE if it changed since its checksum was stored.

    Prints the backup path on stdout so scripts can pass it to
    ``checksum store --pending-backup``.
    """
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "checksum check",
        args={"file": file},
        target={"kind": "file", "path": file, "app": runtime.app},
    ) as op:
        guard = _checksum_guard(runtime, op)
        try:
            backup = guard.check_drift(file)
        except (SettingsError, OSError) as exc:
            _fail(op, exc)
        if backup is None:
            op.success("No manual modification detected.", changed=0)
            return
        err_console.print(
            f"[yellow]Warning:[/yellow] {file} has been manually modified since the "
            f"installation or last upgrade. So it has been duplicated in {backup}"
        )
        typer.echo(str(backup))
        op.warning("Manual modification detected.", backups=[backup], changed=1)


@checksum_app.command("store")
def checksum_store(
    ctx: typer.Context,
    file: Path = typer.Argument(..., help="Managed file whose checksum to record."),
    update_only: bool = typer.Option(
        False,
        "--update-only",
        help="Only refresh an existing checksum; never start tracking a new file.",
    ),
    pending_backup: Path | None = typer.Option(
        None,
        "--pending-backup",
        dir_okay=False,
        help="Backup returned by 'checksum check'; its diff with FILE is shown.",
    ),
) -> None:
    """Record the current checksum of FILE."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "checksum store",
        args={"file": file, "update_only": update_only, "pending_backup": pending_backup},
        target={"kind": "file", "path": file, "app": runtime.app},
    ) as op:
        guard = _checksum_guard(runtime, op)
        try:
            result = guard.store_checksum(
                file,
                update_only=update_only,
                pending_backup=pending_backup,
            )
        except (BackupError, SettingsError, OSError) as exc:
            _fail(op, exc)
        if result.outcome is Outcome.SKIPPED:
            op.success("File is not tracked; checksum left unset.", changed=0)
            return
        if result.diff:
            err_console.print(result.diff, markup=False, highlight=False)
        console.print(f"[green]Checksum stored[/green] for {file}: {result.checksum}")
        op.success("Checksum stored.", changed=1, context={"checksum": result.checksum})


@checksum_app.command("delete")
def checksum_delete(
    ctx: typer.Context,
    file: Path = typer.Argument(..., help="File to stop tracking."),
) -> None:
    """Forget the checksum recorded for FILE."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "checksum delete",
        args={"file": file},
        target={"kind": "file", "path": file, "app": runtime.app},
    ) as op:
        guard = _checksum_guard(runtime, op)
        try:
            guard.delete_checksum(file)
        except SettingsError as exc:
            _fail(op, exc)
        console.print(f"[green]Checksum removed[/green] for {file}")
        op.success("Checksum removed.", changed=1)


@nginx_app.command("add")
def nginx_add(
    ctx: typer.Context,
    domain: str = typer.Option(..., "--domain", help="Domain serving the application."),
    path_url: str = typer.Option("/", "--path", help="URL path of the application."),
    template: Path | None = typer.Option(
        None,
        "--template",
        exists=True,
        dir_okay=False,
        help="App-supplied Jinja2 template instead of the built-in one.",
    ),
    variables: list[str] | None = typer.Option(
        None,
        "--var",
        help="Extra template variable as KEY=VALUE (repeatable).",
    ),
    no_reload: bool = typer.Option(False, "--no-reload", help="Do not reload nginx."),
) -> None:
    """Render and install the nginx fragment of the application."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "nginx add",
        args={"domain": domain, "path": path_url, "template": template, "vars": variables},
        target={"kind": "nginx", "app": runtime.app, "domain": domain},
    ) as op:
        app_id = _require_app(runtime, op)
        context = _parse_vars(variables)
        try:
            result = runtime.nginx_provider.add_config(
                app_id,
                domain,
                path_url,
                context,
                guard=_checksum_guard(runtime, op),
                template=template,
                reload_on_change=not no_reload,
            )
        except (NginxError, SystemdError, BackupError, SettingsError, OSError) as exc:
            _fail(op, exc)
        _report_nginx(op, result, "add")


@nginx_app.command("remove")
def nginx_remove(
    ctx: typer.Context,
    domain: str = typer.Option(..., "--domain", help="Domain serving the application."),
) -> None:
    """Remove the nginx fragment of the application."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "nginx remove",
        args={"domain": domain},
        target={"kind": "nginx", "app": runtime.app, "domain": domain},
    ) as op:
        app_id = _require_app(runtime, op)
        try:
            result = runtime.nginx_provider.remove_config(
                app_id, domain, guard=_checksum_guard(runtime, op)
            )
        except (NginxError, SystemdError, SettingsError, OSError) as exc:
            _fail(op, exc)
        _report_nginx(op, result, "remove")


@nginx_app.command("change-url")
def nginx_change_url(
    ctx: typer.Context,
    old_domain: str = typer.Option(..., "--old-domain"),
    new_domain: str = typer.Option(..., "--new-domain"),
    old_path: str = typer.Option("/", "--old-path"),
    new_path: str = typer.Option("/", "--new-path"),
    template: Path | None = typer.Option(None, "--template", exists=True, dir_okay=False),
    variables: list[str] | None = typer.Option(None, "--var"),
) -> None:
    """Move the nginx fragment to a new domain and/or path."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "nginx change-url",
        args={
            "old_domain": old_domain,
            "new_domain": new_domain,
            "old_path": old_path,
            "new_path": new_path,
        },
        target={"kind": "nginx", "app": runtime.app, "domain": new_domain},
    ) as op:
        app_id = _require_app(runtime, op)
        try:
            result = runtime.nginx_provider.change_url(
                app_id,
                old_domain=old_domain,
                new_domain=new_domain,
                old_path=old_path,
                new_path=new_path,
                context=_parse_vars(variables),
                guard=_checksum_guard(runtime, op),
                template=template,
            )
        except (NginxError, SystemdError, BackupError, SettingsError, OSError) as exc:
            _fail(op, exc)
        _report_nginx(op, result, "change-url")


@service_app.command("action")
def service_action(
    ctx: typer.Context,
    service: str = typer.Argument(..., help="Service to act on, e.g. nginx."),
    action: str = typer.Argument(..., help="start, stop, reload, restart or reload-or-restart."),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print the command only."),
) -> None:
    """Run a service manager action."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "service action",
        args={"service": service, "action": action, "dry_run": dry_run},
        target={"kind": "service", "name": service},
    ) as op:
        try:
            result = runtime.systemd_provider.action(service, action, dry_run=dry_run)
        except SystemdError as exc:
            _fail(op, exc)
        command = " ".join(str(part) for part in result.args)
        prefix = "[yellow]Dry run[/yellow]: " if dry_run else ""
        console.print(f"{prefix}{command}")
        op.success(f"{action} {service}", changed=0 if dry_run else 1)


@upgrade_app.command("snapshot")
def upgrade_snapshot(ctx: typer.Context) -> None:
    """Take a core-only snapshot of the application before upgrading it."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "upgrade snapshot",
        target={"kind": "app", "app": runtime.app},
    ) as op:
        app_id = _require_app(runtime, op)
        guard = UpgradeGuard(
            catalog=runtime.archives,
            no_backup_upgrade=runtime.config.archives.no_backup_upgrade,
        )
        try:
            snapshot = guard.backup_before_upgrade(app_id)
        except (BackupError, ArchiveCatalogError) as exc:
            _fail(op, exc)
        if snapshot is None:
            err_console.print(
                "[yellow]Warning:[/yellow] pre-upgrade backups are disabled; "
                "upgrading without a safety backup."
            )
            op.warning("Snapshot skipped.", changed=0)
            return
        typer.echo(snapshot.name)
        op.success("Snapshot created.", changed=1, backups=[snapshot.name])


@upgrade_app.command("rollback")
def upgrade_rollback(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Snapshot name printed by 'upgrade snapshot'."),
) -> None:
    """Restore the application from a pre-upgrade snapshot after a failed upgrade."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "upgrade rollback",
        args={"name": name},
        target={"kind": "app", "app": runtime.app},
    ) as op:
        app_id = _require_app(runtime, op)
        guard = UpgradeGuard(
            catalog=runtime.archives,
            no_backup_upgrade=runtime.config.archives.no_backup_upgrade,
        )
        try:
            restored = guard.restore_upgrade_backup(app_id, name)
        except ArchiveCatalogError as exc:
            _fail(op, exc)
        if not restored:
            _command_error(
                op,
                f"No snapshot '{name}' to restore; the upgrade must be fixed manually.",
                rc=int(ExitCode.ENVIRONMENT),
            )
        console.print(f"[green]{app_id} was restored to the way it was before the upgrade.[/green]")
        op.success("Snapshot restored.", changed=1)


@config_app.command("show")
def config_show(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()
    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in data.items():
            rendered = _render_value(value)
            table.add_row(key, rendered)
        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def _render_value(value: object) -> str:
    if isinstance(value, Mapping):
        return os.linesep.join(f"{key}: {item}" for key, item in value.items())
    return str(value)


def main() -> None:
    """Console script entry point."""
    app()
