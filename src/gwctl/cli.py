"""Typer-powered command line interface for ``gwctl``.

Commands stay thin: they resolve the runtime, open a structured operation
record, call into the domain modules and render results with rich. Domain
modules raise typed exceptions; :func:`_fail` is the single place that turns
them into console output, a journal entry and an exit code.
"""
from __future__ import annotations

import textwrap
from dataclasses import dataclass, field
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .archive import ArchiveError
from .backups import BackupCoordinator, BackupError, StagingCollisionError, check_media_name
from .config import AppConfig, ConfigError, load_config
from .deploy import DeploymentOrchestrator, build_poller
from .envstore import EnvironmentStore, EnvironmentStoreError
from .exit_codes import ExitCode
from .health import HealthCheckError, HealthReporter, HealthStage
from .logging import OperationScope, StructuredLogger
from .profiles import KNOWN_IMAGES, ModeProfile, profile_for
from .providers import (
    CommandError,
    ComposeError,
    ComposeProvider,
    ComposeUnavailableError,
    ExecutableNotFoundError,
    ProcessRunner,
)
from .readiness import ReadinessError
from .tls import MaterialStatus, TLSGenerationError, generate_certificate_package
from .versions import (
    ReleaseLookupError,
    fetch_latest_release,
    read_local_version,
    update_available,
)

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to gwctl's YAML config file.",
)

DEV_OPTION = typer.Option(
    False,
    "--dev",
    help="Target the development environment instead of production.",
)

YES_OPTION = typer.Option(
    False,
    "--yes",
    "-y",
    help="Do not ask for confirmation.",
)

SKIP_SEED_OPTION = typer.Option(
    False,
    "--skip-seed",
    help="Do not wait for the application and re-run the seed script after building.",
)

VOLUMES_OPTION = typer.Option(
    False,
    "--volumes",
    help="Also remove data volumes. This deletes the database!",
)

# Exception types mapped to exit codes; subclasses must precede their bases.
_EXIT_CODES: tuple[tuple[type[Exception], ExitCode], ...] = (
    (StagingCollisionError, ExitCode.VALIDATION),
    (EnvironmentStoreError, ExitCode.VALIDATION),
    (ExecutableNotFoundError, ExitCode.ENVIRONMENT),
    (ComposeUnavailableError, ExitCode.ENVIRONMENT),
    (ConfigError, ExitCode.ENVIRONMENT),
    (CommandError, ExitCode.PROVIDER),
    (ComposeError, ExitCode.PROVIDER),
    (ReadinessError, ExitCode.PROVIDER),
    (BackupError, ExitCode.PROVIDER),
    (ArchiveError, ExitCode.PROVIDER),
    (HealthCheckError, ExitCode.PROVIDER),
    (ReleaseLookupError, ExitCode.PROVIDER),
    (TLSGenerationError, ExitCode.PROVIDER),
)
OPERATION_ERRORS: tuple[type[Exception], ...] = tuple(exc for exc, _ in _EXIT_CODES)


app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Ghostwriter deployment operations CLI.

        Wraps the compose tool to install, upgrade, back up and inspect a
        Ghostwriter deployment, and manages the deployment's .env settings.
        Commands target production unless --dev is given.
        """
    ).strip(),
)
containers_app = typer.Typer(help="Build and manage the deployment's containers.")
config_app = typer.Typer(help="Display and change the deployment's .env settings.")

app.add_typer(containers_app, name="containers")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    profile: ModeProfile
    logger: StructuredLogger
    runner: ProcessRunner
    compose: ComposeProvider
    _env: EnvironmentStore | None = field(default=None, repr=False)

    def environment(self) -> EnvironmentStore:
        """Load the ``.env`` store on first use (creating it if needed)."""
        if self._env is None:
            self._env = EnvironmentStore.load(self.config.env_file)
        return self._env

    def orchestrator(self, compose: ComposeProvider | None = None) -> DeploymentOrchestrator:
        compose = compose or self.compose
        return DeploymentOrchestrator(
            compose=compose,
            env=self.environment(),
            poller_factory=lambda: build_poller(
                compose,
                self.config.readiness,
                on_tick=_progress_tick,
            ),
        )

    def backups(self) -> BackupCoordinator:
        return BackupCoordinator(
            compose=self.compose,
            workdir=self.config.install_root,
        )

    def apply_mode(self) -> None:
        """Persist the .env presets that belong to the selected mode."""
        env = self.environment()
        if self.profile.is_production:
            env.set_production_mode()
        else:
            env.set_development_mode()


def _progress_tick(counter: int) -> None:
    console.print(".", end="")


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    dev: bool,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    config = load_config(config_file=config_file)
    profile = profile_for(config, dev=dev)
    runner = ProcessRunner(cwd=config.install_root)
    compose = ComposeProvider(
        runner=runner,
        descriptor=profile.descriptor,
        docker_bin=config.compose.docker_bin,
        legacy_bin=config.compose.legacy_bin,
    )
    runtime = RuntimeContext(
        config=config,
        profile=profile,
        logger=StructuredLogger(config.logs_dir),
        runner=runner,
        compose=compose,
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    root = ctx.find_root()
    if isinstance(root.obj, RuntimeContext):
        return root.obj
    return _ensure_runtime(ctx, None, False)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the gwctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    dev: bool = DEV_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"gwctl {__version__}")
        raise typer.Exit(code=0)

    try:
        _ensure_runtime(ctx, config_file, dev)
    except ConfigError as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        raise typer.Exit(code=ExitCode.ENVIRONMENT) from exc

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _exit_code_for(exc: Exception) -> ExitCode:
    for exc_type, code in _EXIT_CODES:
        if isinstance(exc, exc_type):
            return code
    return ExitCode.PROVIDER


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = 2,
    errors: list[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _fail(op: OperationScope, exc: Exception) -> NoReturn:
    """Report *exc* and exit with the code for its category."""
    remediation = getattr(exc, "remediation", None)
    if remediation:
        console.print(f"[yellow]See {remediation} for help resolving this.[/yellow]")
    _command_error(op, str(exc), rc=int(_exit_code_for(exc)))


def _mode_label(runtime: RuntimeContext) -> str:
    return runtime.profile.mode.value


# ---------------------------------------------------------------------------
# Lifecycle


@app.command("install")
def install(ctx: typer.Context) -> None:
    """Build, start and initialise a new deployment."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "install",
        args={"mode": _mode_label(runtime)},
        target={"kind": "deployment", "descriptor": runtime.profile.descriptor},
    ) as op:
        console.print(f"[+] Starting {_mode_label(runtime)} environment installation")
        try:
            runtime.apply_mode()
            if runtime.profile.is_production:
                _generate_certificates(runtime, op)
            result = runtime.orchestrator().install(op)
        except OPERATION_ERRORS as exc:
            _fail(op, exc)

        console.print()
        for advisory in result.advisories:
            console.print(f"[yellow]{advisory}[/yellow]")
        console.print("[green]Ghostwriter is ready to go![/green]")
        console.print(f"Log in as [bold]{result.username}[/bold] with password: {result.password}")
        console.print("Change this password and store it somewhere safe.")
        if result.advisories:
            op.warning(
                "Installation completed with advisories.",
                warnings=list(result.advisories),
                changed=1,
            )
        else:
            op.success("Installation complete.", changed=1)


@app.command("uninstall")
def uninstall(ctx: typer.Context, yes: bool = YES_OPTION) -> None:
    """Remove all containers, images and volumes (including the database)."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "uninstall",
        args={"mode": _mode_label(runtime), "yes": yes},
        target={"kind": "deployment", "descriptor": runtime.profile.descriptor},
    ) as op:
        if not yes and not typer.confirm(
            "This removes all Ghostwriter containers, images and data volumes. Continue?"
        ):
            console.print("Aborted.")
            op.success("Uninstall aborted by user.", changed=0)
            return
        try:
            runtime.apply_mode()
            runtime.orchestrator().uninstall(op)
        except OPERATION_ERRORS as exc:
            _fail(op, exc)
        console.print("[green]Ghostwriter has been removed.[/green]")
        op.success("Uninstall complete.", changed=1)


def _build(ctx: typer.Context, skip_seed: bool) -> None:
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "containers build",
        args={"mode": _mode_label(runtime), "skip_seed": skip_seed},
        target={"kind": "deployment", "descriptor": runtime.profile.descriptor},
    ) as op:
        console.print(f"[+] Rebuilding the {_mode_label(runtime)} environment")
        try:
            runtime.apply_mode()
            runtime.orchestrator().upgrade(skip_seed=skip_seed, op=op)
        except OPERATION_ERRORS as exc:
            _fail(op, exc)
        console.print("[green]Containers rebuilt and running.[/green]")
        op.success("Containers rebuilt.", changed=1)


def _passthrough(ctx: typer.Context, action: str, *, volumes: bool = False) -> None:
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        f"containers {action}",
        args={"mode": _mode_label(runtime), "volumes": volumes},
        target={"kind": "deployment", "descriptor": runtime.profile.descriptor},
    ) as op:
        console.print(f"[+] Running `{action}` for the {_mode_label(runtime)} environment")
        try:
            if action == "up":
                runtime.apply_mode()
            orchestrator = runtime.orchestrator()
            if action == "down":
                orchestrator.down(volumes=volumes, op=op)
            else:
                getattr(orchestrator, action)(op=op)
        except OPERATION_ERRORS as exc:
            _fail(op, exc)
        op.success(f"Containers {action} complete.", changed=1)


@containers_app.command("build")
def containers_build(ctx: typer.Context, skip_seed: bool = SKIP_SEED_OPTION) -> None:
    """Stop, rebuild and restart the containers, then re-run the seed script."""
    _build(ctx, skip_seed)


@containers_app.command("up")
def containers_up(ctx: typer.Context) -> None:
    """Start the containers in the background."""
    _passthrough(ctx, "up")


@containers_app.command("down")
def containers_down(ctx: typer.Context, volumes: bool = VOLUMES_OPTION) -> None:
    """Stop and remove the containers."""
    _passthrough(ctx, "down", volumes=volumes)


@containers_app.command("start")
def containers_start(ctx: typer.Context) -> None:
    """Start existing, stopped containers."""
    _passthrough(ctx, "start")


@containers_app.command("stop")
def containers_stop(ctx: typer.Context) -> None:
    """Stop running containers without removing them."""
    _passthrough(ctx, "stop")


@containers_app.command("restart")
def containers_restart(ctx: typer.Context) -> None:
    """Restart the containers."""
    _passthrough(ctx, "restart")


@app.command("build")
def build(ctx: typer.Context, skip_seed: bool = SKIP_SEED_OPTION) -> None:
    """Shortcut for ``containers build``."""
    _build(ctx, skip_seed)


@app.command("up")
def up(ctx: typer.Context) -> None:
    """Shortcut for ``containers up``."""
    _passthrough(ctx, "up")


@app.command("down")
def down(ctx: typer.Context, volumes: bool = VOLUMES_OPTION) -> None:
    """Shortcut for ``containers down``."""
    _passthrough(ctx, "down", volumes=volumes)


@app.command("restart")
def restart(ctx: typer.Context) -> None:
    """Shortcut for ``containers restart``."""
    _passthrough(ctx, "restart")


# ---------------------------------------------------------------------------
# Backups


@app.command("backup")
def backup(
    ctx: typer.Context,
    list_only: bool = typer.Option(False, "--list", help="List the available backup files."),
    download: bool = typer.Option(
        False,
        "--download",
        help="Copy every backup file into the installation directory.",
    ),
) -> None:
    """Back up the database and media files into the backup volume."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "backup",
        args={"mode": _mode_label(runtime), "list": list_only, "download": download},
        target={"kind": "backup", "descriptor": runtime.profile.descriptor},
    ) as op:
        coordinator = runtime.backups()
        try:
            runtime.apply_mode()
            if list_only:
                coordinator.list_backups()
                op.success("Listed backups.", changed=0)
                return
            if download:
                destination = coordinator.download()
                console.print(f"[green]Backups downloaded to {destination}[/green]")
                op.success("Downloaded backups.", changed=1, artifacts=[destination])
                return
            result = coordinator.backup(op)
        except OPERATION_ERRORS as exc:
            _fail(op, exc)
        console.print(
            f"[green]Backup complete.[/green] Media archive: {result.media_archive} "
            f"({result.media_files} files)"
        )
        op.success(
            "Backup complete.",
            changed=1,
            artifacts=[result.media_archive],
            context={"checksum": result.checksum},
        )


@app.command("restore")
def restore(
    ctx: typer.Context,
    database_file: str = typer.Argument(..., help="Database backup filename to restore."),
    media: str | None = typer.Option(
        None,
        "--media",
        help="Media backup filename to restore (optional).",
    ),
    yes: bool = YES_OPTION,
) -> None:
    """Restore a database backup and, optionally, a media backup."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "restore",
        args={"mode": _mode_label(runtime), "database": database_file, "media": media},
        target={"kind": "backup", "descriptor": runtime.profile.descriptor},
    ) as op:
        warnings: list[str] = []
        if media is not None:
            warning = check_media_name(media)
            if warning:
                warnings.append(warning)
                console.print(f"[yellow]{warning}[/yellow]")
        prompt = (
            "Do you really want to restore the database and media backups? This cannot be undone!"
            if media
            else "Do you really want to restore this backup file? This cannot be undone!"
        )
        if not yes and not typer.confirm(prompt):
            console.print("Aborted.")
            op.success("Restore aborted by user.", changed=0)
            return
        try:
            runtime.apply_mode()
            files = runtime.backups().restore(database_file, media, op)
        except OPERATION_ERRORS as exc:
            _fail(op, exc)
        console.print("[green]Restore complete.[/green]")
        if media is not None:
            console.print(f"Restored {files} media files from {media}.")
        if warnings:
            op.warning("Restore complete.", warnings=warnings, changed=1)
        else:
            op.success("Restore complete.", changed=1)


# ---------------------------------------------------------------------------
# Inspection


@app.command("logs")
def logs(
    ctx: typer.Context,
    container: str = typer.Argument(
        ...,
        help="Container name (e.g. django or ghostwriter_django) or `all`.",
    ),
    lines: int = typer.Option(500, "--lines", "-l", min=1, help="Number of lines to display."),
) -> None:
    """Print recent log lines from one or all Ghostwriter containers."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "logs",
        args={"container": container, "lines": lines},
        target={"kind": "container", "name": container},
    ) as op:
        try:
            units = runtime.compose.find_units(
                container, runtime.compose.running_units(KNOWN_IMAGES)
            )
            if not units:
                _command_error(
                    op,
                    f"No running Ghostwriter container matches `{container}`.",
                    rc=ExitCode.VALIDATION,
                )
            console.print(f"[+] Fetching up to {lines} lines of logs for `{container}`...")
            for unit in units:
                typer.echo(f"\n*** Logs for `{unit.name}` ***\n")
                for line in runtime.compose.unit_logs(unit, lines):
                    typer.echo(line)
        except OPERATION_ERRORS as exc:
            _fail(op, exc)
        op.success("Fetched logs.", changed=0, context={"units": [unit.name for unit in units]})


@app.command("running")
def running(ctx: typer.Context) -> None:
    """List the running Ghostwriter containers."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "running",
        target={"kind": "container", "scope": "all"},
    ) as op:
        try:
            units = runtime.compose.running_units(KNOWN_IMAGES)
        except OPERATION_ERRORS as exc:
            _fail(op, exc)
        console.print(f"[+] Found {len(units)} running Ghostwriter containers")
        if units:
            table = Table(title="Running containers")
            table.add_column("Name")
            table.add_column("Container ID")
            table.add_column("Image")
            table.add_column("Status")
            table.add_column("Ports")
            for unit in units:
                table.add_row(unit.name, unit.id, unit.image, unit.status, unit.ports)
            console.print(table)
        op.success("Listed running containers.", changed=0, context={"count": len(units)})


@app.command("healthcheck")
def healthcheck(ctx: typer.Context) -> None:
    """Check that every container is running and every service is healthy."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "healthcheck",
        args={"mode": _mode_label(runtime)},
        target={"kind": "deployment", "descriptor": runtime.profile.descriptor},
    ) as op:
        reporter = HealthReporter(
            list_units=lambda: runtime.compose.running_units(KNOWN_IMAGES),
            profile=runtime.profile,
            timeout=runtime.config.http.status_timeout,
        )
        try:
            report = reporter.check()
        except OPERATION_ERRORS as exc:
            _fail(op, exc)

        if report.healthy:
            console.print("[green]All containers are running and all services are healthy.[/green]")
            op.success("Deployment healthy.", changed=0)
            return

        stage = "container" if report.stage is HealthStage.CONTAINERS else "service"
        table = Table(title=f"Health issues ({stage} check)")
        table.add_column("Type")
        table.add_column("Service")
        table.add_column("Message")
        for issue in report.issues:
            table.add_row(issue.kind.value, issue.subject, issue.message)
        console.print(table)
        messages = [f"{issue.subject}: {issue.message}" for issue in report.issues]
        _command_error(
            op,
            f"Found {len(report.issues)} health issue(s).",
            rc=ExitCode.PROVIDER,
            errors=messages,
        )


# ---------------------------------------------------------------------------
# Configuration (.env)


def _render_entries(title: str, entries: list[tuple[str, str]]) -> None:
    table = Table(title=title)
    table.add_column("Setting")
    table.add_column("Value")
    for key, value in entries:
        table.add_row(key, value or "–")
    console.print(table)


@config_app.callback(invoke_without_command=True)
def config_root(ctx: typer.Context) -> None:
    """Display every setting when no sub-command is given."""
    if ctx.invoked_subcommand is not None:
        return
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("config show", target={"kind": "env"}) as op:
        try:
            entries = runtime.environment().get_all()
        except OPERATION_ERRORS as exc:
            _fail(op, exc)
        _render_entries("Ghostwriter configuration", [(e.key, e.value) for e in entries])
        op.success("Displayed configuration.", changed=0, context={"count": len(entries)})


@config_app.command("get")
def config_get(
    ctx: typer.Context,
    keys: list[str] = typer.Argument(..., help="One or more setting names."),
) -> None:
    """Display the values of specific settings."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "config get",
        args={"keys": keys},
        target={"kind": "env"},
    ) as op:
        try:
            entries = runtime.environment().get_many(keys)
        except OPERATION_ERRORS as exc:
            _fail(op, exc)
        _render_entries("Ghostwriter configuration", [(e.key, e.value) for e in entries])
        op.success("Displayed settings.", changed=0)


@config_app.command("set")
def config_set(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Setting name."),
    value: str = typer.Argument(..., help="New value (true/false become booleans)."),
) -> None:
    """Set a setting and write it to the .env file."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "config set",
        args={"key": key},
        target={"kind": "env", "key": key},
    ) as op:
        try:
            runtime.environment().set(key, value)
        except OPERATION_ERRORS as exc:
            _fail(op, exc)
        console.print(f"[green]Set {key.upper()}.[/green] Restart the containers to apply it.")
        op.success("Updated setting.", changed=1)


def _token_command(
    ctx: typer.Context,
    name: str,
    token: str,
    *,
    method: str,
    label: str,
) -> None:
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        f"config {name}",
        args={"value": token},
        target={"kind": "env", "list": label},
    ) as op:
        try:
            changed = getattr(runtime.environment(), method)(token)
        except OPERATION_ERRORS as exc:
            _fail(op, exc)
        if changed:
            console.print(f"[green]Updated {label}:[/green] {token}")
            op.success(f"Updated {label}.", changed=1)
        else:
            console.print(f"[yellow]{label} unchanged:[/yellow] {token}")
            op.success(f"{label} unchanged.", changed=0)


@config_app.command("allowhost")
def config_allowhost(ctx: typer.Context, host: str = typer.Argument(...)) -> None:
    """Add a host to Django's allowed hosts."""
    _token_command(ctx, "allowhost", host, method="allow_host", label="allowed hosts")


@config_app.command("disallowhost")
def config_disallowhost(ctx: typer.Context, host: str = typer.Argument(...)) -> None:
    """Remove a host from Django's allowed hosts."""
    _token_command(ctx, "disallowhost", host, method="disallow_host", label="allowed hosts")


@config_app.command("trustorigin")
def config_trustorigin(ctx: typer.Context, origin: str = typer.Argument(...)) -> None:
    """Add an origin to Django's trusted CSRF origins."""
    _token_command(ctx, "trustorigin", origin, method="trust_origin", label="trusted origins")


@config_app.command("distrustorigin")
def config_distrustorigin(ctx: typer.Context, origin: str = typer.Argument(...)) -> None:
    """Remove an origin from Django's trusted CSRF origins."""
    _token_command(
        ctx, "distrustorigin", origin, method="distrust_origin", label="trusted origins"
    )


# ---------------------------------------------------------------------------
# TLS, versions and maintenance


def _generate_certificates(runtime: RuntimeContext, op: OperationScope) -> None:
    console.print("[+] Preparing TLS material for the reverse proxy (this may take a while)")
    package = generate_certificate_package(
        runtime.config.ssl_dir,
        validity_days=runtime.config.tls.validity_days,
        dh_key_size=runtime.config.tls.dh_key_size,
    )
    if package.certificate_status is MaterialStatus.SKIPPED:
        console.print(
            f"[yellow]Keeping existing certificate {package.certificate}.[/yellow] "
            "Delete it and the key to generate new ones."
        )
    else:
        console.print(f"[green]Generated {package.certificate} and {package.key}[/green]")
    if package.dhparam_status is MaterialStatus.SKIPPED:
        console.print(f"[yellow]Keeping existing DH parameters {package.dhparam}.[/yellow]")
    else:
        console.print(f"[green]Generated {package.dhparam}[/green]")
    op.add_step(
        "tls.generate",
        detail={
            "certificate": package.certificate_status.value,
            "dhparam": package.dhparam_status.value,
            "not_after": package.not_after.isoformat() if package.not_after else None,
        },
    )


@app.command("gencert")
def gencert(ctx: typer.Context) -> None:
    """Generate the self-signed certificate, key and DH parameters."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "gencert",
        target={"kind": "tls", "path": runtime.config.ssl_dir},
    ) as op:
        try:
            _generate_certificates(runtime, op)
        except OPERATION_ERRORS as exc:
            _fail(op, exc)
        op.success("TLS material ready.", changed=1)


@app.command("version")
def version(ctx: typer.Context) -> None:
    """Show the gwctl and local Ghostwriter versions."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("version", target={"kind": "meta"}) as op:
        local = read_local_version(runtime.config.install_root)
        console.print(f"gwctl {__version__}")
        if local is None:
            console.print("[yellow]Could not read Ghostwriter's `VERSION` file[/yellow]")
        else:
            console.print(local.describe())
        op.success("Reported versions.", changed=0)


@app.command("update")
def update(ctx: typer.Context) -> None:
    """Compare the local Ghostwriter version with the latest release."""
    runtime = _get_runtime(ctx)
    releases = runtime.config.releases
    with runtime.logger.operation(
        "update",
        target={"kind": "release", "repository": f"{releases.owner}/{releases.repository}"},
    ) as op:
        console.print("[+] Fetching latest version information")
        local = read_local_version(runtime.config.install_root)
        try:
            latest = fetch_latest_release(
                releases.owner,
                releases.repository,
                api_url=releases.api_url,
                timeout=runtime.config.http.release_timeout,
            )
        except OPERATION_ERRORS as exc:
            _fail(op, exc)

        table = Table(show_header=False)
        table.add_column("Field")
        table.add_column("Value")
        table.add_row(
            "Local Version",
            local.describe() if local else "Could not read Ghostwriter's `VERSION` file",
        )
        table.add_row("Latest Release", latest.describe())
        table.add_row("Latest Release URL", latest.html_url)
        console.print(table)

        newer = update_available(local.version, latest.tag_name) if local else None
        if newer:
            console.print(f"[yellow]An update is available: {latest.tag_name}[/yellow]")
        elif newer is False:
            console.print("[green]You are running the latest release.[/green]")
        op.success(
            "Compared versions.",
            changed=0,
            context={"local": local.version if local else None, "latest": latest.tag_name},
        )


@app.command("test")
def run_tests(ctx: typer.Context) -> None:
    """Run Ghostwriter's unit tests in the development environment."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "test",
        target={"kind": "deployment", "descriptor": runtime.config.compose.development_file},
    ) as op:
        console.print("[+] Running Ghostwriter's unit tests")
        try:
            development = runtime.compose.with_descriptor(runtime.config.compose.development_file)
            runtime.orchestrator(development).run_tests(op)
        except OPERATION_ERRORS as exc:
            _fail(op, exc)
        op.success("Tests passed.", changed=0)


@app.command("tagcleanup")
def tagcleanup(ctx: typer.Context) -> None:
    """Deduplicate tags and delete orphaned tags in the database."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "tagcleanup",
        args={"mode": _mode_label(runtime)},
        target={"kind": "deployment", "descriptor": runtime.profile.descriptor},
    ) as op:
        try:
            runtime.apply_mode()
            orchestrator = runtime.orchestrator()
            orchestrator.manage("deduplicate_tags", op=op)
            orchestrator.manage("remove_orphaned_tags", op=op)
        except OPERATION_ERRORS as exc:
            _fail(op, exc)
        console.print("[green]Tag cleanup complete.[/green]")
        op.success("Tag cleanup complete.", changed=1)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
