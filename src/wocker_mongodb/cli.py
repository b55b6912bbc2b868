"""Typer-powered command line for ``wocker-mongodb``.

Each command resolves the shared :class:`RuntimeContext`, runs inside a
structured logger operation and reports :class:`MongodbError` failures as a
red message with the error's exit code. The Docker provider connects on
first use so registry-only commands work without a reachable engine.
"""
from __future__ import annotations

import textwrap
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .admin import AdminAggregator, AdminResult
from .backups import BackupPipeline
from .config import AppConfig, ConfigError, load_config
from .errors import MongodbError
from .exit_codes import ExitCode
from .lifecycle import LifecycleController, StartResult
from .logging import OperationScope, StructuredLogger
from .providers import DockerProvider, NonInteractivePrompter, Prompter, ProxyProvider
from .state import Registry
from .store import ConfigStore

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to wocker-mongodb's YAML settings file.",
)

NAME_ARGUMENT = typer.Argument(None, help="Database name (defaults to the default database).")
DATABASE_OPTION = typer.Option(
    None, "--database", "-d", help="Logical database inside the instance."
)
FILE_OPTION = typer.Option(None, "--file", help="Backup file name.")
YES_OPTION = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation.")

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        MongoDB plugin for the wocker workspace.

        Manages named MongoDB containers, the shared mongo-express console and
        streamed backups of their databases.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    store: ConfigStore
    registry: Registry
    logger: StructuredLogger
    prompter: Prompter
    engine: DockerProvider

    def lifecycle(self) -> LifecycleController:
        """Return a lifecycle controller bound to this runtime."""
        return LifecycleController(
            self.registry,
            self.engine,
            self.prompter,
            self.logger,
            min_engine_version=self.config.min_engine_version,
        )

    def admin(self) -> AdminAggregator:
        """Return the admin console aggregator bound to this runtime."""
        return AdminAggregator(
            self.registry,
            self.engine,
            ProxyProvider(self.engine, container_name=self.config.proxy.container_name),
            self.logger,
            container_name=self.config.admin.container_name,
            image=self.config.admin.image,
        )

    def backups(self) -> BackupPipeline:
        """Return the backup pipeline bound to this runtime."""
        return BackupPipeline(
            self.registry,
            self.engine,
            self.prompter,
            self.logger,
            root=self.config.backups.root,
            shell_bin=self.config.shell_bin,
        )


def _connect_engine(config: AppConfig) -> DockerProvider:
    return DockerProvider(
        base_url=config.docker.base_url,
        timeout=config.docker.timeout,
        network=config.network,
    )


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    no_input: bool = False,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    config = load_config(config_file=config_file)
    store = ConfigStore(config.data_dir)
    registry = Registry.load(store, config.registry_file)
    logger = StructuredLogger(config.logs_dir)
    prompter = NonInteractivePrompter(console) if no_input else Prompter(console)
    runtime = RuntimeContext(
        config=config,
        store=store,
        registry=registry,
        logger=logger,
        prompter=prompter,
        engine=_connect_engine(config),
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
        help="Show the wocker-mongodb version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    no_input: bool = typer.Option(
        False,
        "--no-input",
        help="Fail instead of prompting for missing values.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    try:
        runtime = _ensure_runtime(ctx, config_file, no_input)
    except ConfigError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc
    except MongodbError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=exc.rc) from exc

    if version:
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"wocker-mongodb {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _command_error(op: OperationScope, exc: MongodbError) -> NoReturn:
    """Emit a structured error and terminate the command."""
    message = str(exc)
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=[message], rc=int(exc.rc))
    raise typer.Exit(code=int(exc.rc))


def _instance_target(name: str | None) -> dict[str, object]:
    return {"kind": "database", "name": name or "(default)"}


def _refresh_admin(runtime: RuntimeContext, op: OperationScope) -> AdminResult:
    result = runtime.admin().refresh()
    if result.connection:
        op.add_step(
            "admin.refresh",
            detail={"instance": result.instance, "started": result.started},
        )
    else:
        op.add_step("admin.refresh", status="skipped", detail="no running databases")
    for name in result.skipped or []:
        console.print(f"[yellow]Could not inspect '{name}'; treated as stopped.[/yellow]")
    return result


def _report_start(result: StartResult) -> None:
    name = result.instance.name
    for volume in result.created_volumes:
        console.print(f"Created volume [bold]{volume}[/bold].")
    if result.started:
        console.print(f"[green]Database '{name}' started.[/green]")
    else:
        console.print(f"Database '{name}' is already running.")


# ----------------------------------------------------------------------
# Registry commands
# ----------------------------------------------------------------------
@app.command("create")
def create_command(
    ctx: typer.Context,
    name: str | None = NAME_ARGUMENT,
    username: str | None = typer.Option(None, "--username", "-u", help="Root username."),
    password: str | None = typer.Option(None, "--password", "-p", help="Root password."),
    image_name: str | None = typer.Option(
        None, "--image", "-i", help="Image name (default: mongo)."
    ),
    image_version: str | None = typer.Option(
        None, "--image-version", "-I", help="Image tag (default: latest)."
    ),
) -> None:
    """Register a new MongoDB database."""
    runtime = _get_runtime(ctx)
    args = {
        "name": name,
        "username": username,
        "password": password,
        "image_name": image_name,
        "image_version": image_version,
    }
    with runtime.logger.operation("create", args=args, target=_instance_target(name)) as op:
        try:
            instance = runtime.lifecycle().create(
                name,
                username,
                password,
                image_name=image_name,
                image_version=image_version,
            )
        except MongodbError as exc:
            _command_error(op, exc)
        console.print(f"[green]Database '{instance.name}' created.[/green]")
        op.success("Database registered.", changed=1, context={"name": instance.name})


@app.command("upgrade")
def upgrade_command(
    ctx: typer.Context,
    name: str | None = NAME_ARGUMENT,
    image_name: str | None = typer.Option(None, "--image", help="New image name."),
    image_version: str | None = typer.Option(None, "--image-version", help="New image tag."),
    storage: str | None = typer.Option(None, "--volume", help="Data volume to use."),
    config_storage: str | None = typer.Option(
        None, "--config-volume", help="Config volume to use."
    ),
) -> None:
    """Change the image or volumes of a database (applied on next restart)."""
    runtime = _get_runtime(ctx)
    args = {
        "name": name,
        "image_name": image_name,
        "image_version": image_version,
        "storage": storage,
        "config_storage": config_storage,
    }
    with runtime.logger.operation("upgrade", args=args, target=_instance_target(name)) as op:
        try:
            controller = runtime.lifecycle()
            changed = controller.upgrade(
                name,
                image_name=image_name,
                image_version=image_version,
                storage=storage,
                config_storage=config_storage,
            )
        except MongodbError as exc:
            _command_error(op, exc)
        if not changed:
            console.print("Nothing to change.")
            op.success("No changes requested.", changed=0)
            return
        console.print("[green]Database updated. Restart it to apply the changes.[/green]")
        op.success("Database upgraded.", changed=1)


@app.command("use")
def use_command(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Database to make the default."),
) -> None:
    """Set the default database."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("use", args={"name": name}, target=_instance_target(name)) as op:
        try:
            instance = runtime.lifecycle().use(name)
        except MongodbError as exc:
            _command_error(op, exc)
        console.print(f"Default database set to [bold]{instance.name}[/bold].")
        op.success("Default database updated.", changed=1)


@app.command("list")
def list_command(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Emit JSON instead of a table."),
) -> None:
    """List registered databases."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "list", args={"json": json_output}, target={"kind": "database", "scope": "all"}
    ) as op:
        rows = runtime.lifecycle().list()
        if json_output:
            console.print_json(data={"databases": [row.to_dict() for row in rows]})
            op.success("Listed databases.", changed=0, context={"count": len(rows)})
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Name", style="bold")
        table.add_column("Username")
        table.add_column("Container")
        table.add_column("Image")
        table.add_column("Volume")
        table.add_column("Config volume")

        if not rows:
            table.add_row("(none)", "", "", "", "", "")
        else:
            for row in rows:
                table.add_row(
                    row.name,
                    row.username,
                    row.container_name,
                    row.image,
                    row.storage_volume,
                    row.config_volume,
                )
        console.print(table)
        op.success("Listed databases.", changed=0, context={"count": len(rows)})


app.command("ls", hidden=True)(list_command)


# ----------------------------------------------------------------------
# Container commands
# ----------------------------------------------------------------------
@app.command("start")
def start_command(
    ctx: typer.Context,
    name: str | None = NAME_ARGUMENT,
    restart: bool = typer.Option(False, "--restart", "-r", help="Recreate the container."),
) -> None:
    """Start a database container, creating it when needed."""
    runtime = _get_runtime(ctx)
    args = {"name": name, "restart": restart}
    with runtime.logger.operation("start", args=args, target=_instance_target(name)) as op:
        try:
            result = runtime.lifecycle().start(name, restart=restart)
            op.add_step(
                "container.start",
                detail={"created": result.created, "started": result.started},
            )
            _report_start(result)
            _refresh_admin(runtime, op)
        except MongodbError as exc:
            _command_error(op, exc)
        op.success("Database started.", changed=int(result.created or result.started))


@app.command("restart")
def restart_command(
    ctx: typer.Context,
    name: str | None = NAME_ARGUMENT,
) -> None:
    """Recreate and start a database container."""
    runtime = _get_runtime(ctx)
    target = _instance_target(name)
    with runtime.logger.operation("restart", args={"name": name}, target=target) as op:
        try:
            result = runtime.lifecycle().restart(name)
            op.add_step("container.recreate", detail={"removed": result.removed_existing})
            _report_start(result)
            _refresh_admin(runtime, op)
        except MongodbError as exc:
            _command_error(op, exc)
        op.success("Database restarted.", changed=1)


@app.command("stop")
def stop_command(
    ctx: typer.Context,
    name: str | None = NAME_ARGUMENT,
) -> None:
    """Stop and remove a database container; data volumes are kept."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("stop", args={"name": name}, target=_instance_target(name)) as op:
        try:
            removed = runtime.lifecycle().stop(name)
            op.add_step("container.remove", status="success" if removed else "skipped")
            _refresh_admin(runtime, op)
        except MongodbError as exc:
            _command_error(op, exc)
        if removed:
            console.print("[green]Database stopped.[/green]")
        else:
            console.print("Database is not running.")
        op.success("Database stopped.", changed=int(removed))


@app.command("destroy")
def destroy_command(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Database to destroy."),
    yes: bool = YES_OPTION,
    force: bool = typer.Option(
        False, "--force", "-f", help="Allow destroying the default database."
    ),
) -> None:
    """Remove a database, its container and its default volumes."""
    runtime = _get_runtime(ctx)
    args = {"name": name, "yes": yes, "force": force}
    with runtime.logger.operation("destroy", args=args, target=_instance_target(name)) as op:
        try:
            volumes = runtime.lifecycle().destroy(name, yes=yes, force=force)
            op.add_step("volumes.remove", detail=volumes)
            _refresh_admin(runtime, op)
        except MongodbError as exc:
            _command_error(op, exc)
        console.print(f"[green]Database '{name}' destroyed.[/green]")
        op.success("Database destroyed.", changed=1, context={"volumes": volumes})


@app.command("admin")
def admin_command(ctx: typer.Context) -> None:
    """Rebuild the mongo-express console for the running databases."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "admin", args={}, target={"kind": "admin", "name": runtime.config.admin.container_name}
    ) as op:
        try:
            result = _refresh_admin(runtime, op)
        except MongodbError as exc:
            _command_error(op, exc)
        if result.instance is None:
            console.print("No running databases; admin console removed.")
        else:
            console.print(
                f"Admin console serving [bold]{result.instance}[/bold] at "
                f"http://{runtime.config.admin.container_name}"
            )
        op.success("Admin console refreshed.", changed=1)


# ----------------------------------------------------------------------
# Backup commands
# ----------------------------------------------------------------------
@app.command("backup")
def backup_command(
    ctx: typer.Context,
    name: str | None = NAME_ARGUMENT,
    database: str | None = DATABASE_OPTION,
) -> None:
    """Dump a database into a gzip archive."""
    runtime = _get_runtime(ctx)
    args = {"name": name, "database": database}
    with runtime.logger.operation("backup", args=args, target=_instance_target(name)) as op:
        try:
            path = runtime.backups().backup(name, database)
        except MongodbError as exc:
            _command_error(op, exc)
        console.print(f"[green]Backup written to {path}[/green]")
        op.success("Backup created.", changed=1, context={"path": path})


@app.command("restore")
def restore_command(
    ctx: typer.Context,
    name: str | None = NAME_ARGUMENT,
    database: str | None = DATABASE_OPTION,
    filename: str | None = FILE_OPTION,
) -> None:
    """Restore a database from a backup archive."""
    runtime = _get_runtime(ctx)
    args = {"name": name, "database": database, "file": filename}
    with runtime.logger.operation("restore", args=args, target=_instance_target(name)) as op:
        try:
            path = runtime.backups().restore(name, database, filename)
        except MongodbError as exc:
            _command_error(op, exc)
        console.print(f"[green]Restored {path.name}.[/green]")
        op.success("Backup restored.", changed=1, context={"path": path})


@app.command("delete-backup")
def delete_backup_command(
    ctx: typer.Context,
    name: str | None = NAME_ARGUMENT,
    database: str | None = DATABASE_OPTION,
    filename: str | None = FILE_OPTION,
    yes: bool = YES_OPTION,
) -> None:
    """Delete a backup archive."""
    runtime = _get_runtime(ctx)
    args = {"name": name, "database": database, "file": filename, "yes": yes}
    with runtime.logger.operation("delete-backup", args=args, target=_instance_target(name)) as op:
        try:
            path = runtime.backups().delete_backup(name, database, filename, yes=yes)
        except MongodbError as exc:
            _command_error(op, exc)
        console.print(f"[green]Deleted {path.name}.[/green]")
        op.success("Backup deleted.", changed=1, context={"path": path})


@app.command("backups")
def backups_command(
    ctx: typer.Context,
    name: str | None = NAME_ARGUMENT,
) -> None:
    """List backup archives of a database."""
    runtime = _get_runtime(ctx)
    target = _instance_target(name)
    with runtime.logger.operation("backups", args={"name": name}, target=target) as op:
        try:
            listing = runtime.backups().list_backups(name)
        except MongodbError as exc:
            _command_error(op, exc)

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Database", style="bold")
        table.add_column("File")
        total = 0
        for database_name, files in listing.items():
            for filename in files:
                table.add_row(database_name, filename)
                total += 1
        if total == 0:
            table.add_row("(none)", "")
        console.print(table)
        op.success("Listed backups.", changed=0, context={"count": total})


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["RuntimeContext", "app", "main"]
