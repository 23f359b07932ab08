"""CLI interface for PyVaultSync."""

import logging
import time
from pathlib import Path
from typing import Any, Callable, Optional

import click

from .cli_progress import SyncProgressDisplay
from .config import SyncSettings, config
from .exceptions import ConfigError, DatabaseError, DecryptionError
from .output import OutputFormatter
from .sync import (
    INTERVAL_CHOICES,
    AutoSyncScheduler,
    Credentials,
    SyncContext,
    SyncEngine,
    SyncReporter,
    SyncResultCode,
    diagnose_sync_url,
    format_interval,
    parse_sync_url,
)
from .vault import MasterKey, Record, RecordVault

logger = logging.getLogger(__name__)


@click.group()
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output")
@click.option("--json", is_flag=True, help="Output in JSON format")
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose/debug logging output",
)
@click.version_option(package_name="pyvaultsync")
@click.pass_context
def main(ctx: Any, quiet: bool, json: bool, verbose: bool) -> None:
    """PyVaultSync - Synchronize an encrypted vault with a copy on an SFTP server."""
    ctx.ensure_object(dict)
    ctx.obj["out"] = OutputFormatter(json_output=json, quiet=quiet)
    ctx.obj["verbose"] = verbose

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%H:%M:%S",
        )
        logging.getLogger("pyvaultsync").setLevel(logging.DEBUG)
        # paramiko is chatty at debug level
        logging.getLogger("paramiko").setLevel(logging.WARNING)
    else:
        logging.basicConfig(level=logging.WARNING)


def _open_vault(
    ctx: Any, out: OutputFormatter, path: str, master_password: Optional[str]
) -> RecordVault:
    if master_password is None:
        master_password = click.prompt("Vault password", hide_input=True)
    try:
        return RecordVault.open(Path(path), MasterKey(master_password))
    except DecryptionError:
        out.error("Wrong master password or damaged vault file")
        ctx.exit(1)
    except DatabaseError as e:
        out.error(str(e))
        ctx.exit(1)


def _load_settings(ctx: Any, out: OutputFormatter) -> SyncSettings:
    try:
        if config.ensure_defaults() and not out.quiet:
            out.info(f"Created default settings in {config.get_config_path()}")
        return config.load_settings()
    except ConfigError as e:
        out.error(str(e))
        ctx.exit(1)


def _make_attempt(
    vault: RecordVault,
    settings: SyncSettings,
    show_progress: bool,
) -> Callable[[bool], SyncResultCode]:
    """Build the function that runs one attempt with the current settings."""

    def run_attempt(attended: bool) -> SyncResultCode:
        display: Optional[SyncProgressDisplay] = None

        def confirm_override(message: str) -> bool:
            if display is not None:
                display.pause()
            try:
                return click.confirm(message, default=False)
            finally:
                if display is not None:
                    display.resume()

        context = SyncContext(
            url=settings.url,
            credentials=Credentials(settings.username, settings.password),
            attended=attended,
            confirm_override=confirm_override,
        )
        if not show_progress:
            code = SyncEngine().synchronize(vault, context)
        else:
            with SyncProgressDisplay() as display:
                engine = SyncEngine(progress_callback=display.create_callback())
                code = engine.synchronize(vault, context)

        if code.is_success:
            # Remote records were merged in memory after the local save
            try:
                vault.save()
            except DatabaseError as e:
                logger.warning("Failed to save merged vault: %s", e)
                return SyncResultCode.UNKNOWN_ERROR
        return code

    return run_attempt


@main.command()
@click.option("--url", prompt="Sync URL (sftp://host:port/path/to/directory/)")
@click.option("--username", prompt="SSH username")
@click.option("--password", prompt="SSH password", hide_input=True)
@click.option(
    "--sync-on-open/--no-sync-on-open",
    default=False,
    help="Synchronize after the vault is opened",
)
@click.option(
    "--sync-on-save/--no-sync-on-save",
    default=False,
    help="Synchronize after the vault is saved",
)
@click.option(
    "--timer",
    type=click.Choice([str(m) for m in INTERVAL_CHOICES]),
    default="0",
    help="Auto-sync interval in minutes (0 disables)",
)
@click.pass_context
def init(
    ctx: Any,
    url: str,
    username: str,
    password: str,
    sync_on_open: bool,
    sync_on_save: bool,
    timer: str,
) -> None:
    """Configure the remote location and SSH credentials.

    Stores the settings in ~/.config/pyvaultsync/config.
    """
    out: OutputFormatter = ctx.obj["out"]

    code = diagnose_sync_url(url)
    if code != SyncResultCode.SUCCESS:
        out.warning(f"The URL is invalid ({code.value})")
        if not click.confirm("Save settings anyway?", default=False):
            out.info("Configuration cancelled.")
            ctx.exit(1)

    settings = SyncSettings(
        url=url,
        username=username,
        password=password,
        sync_on_open=sync_on_open,
        sync_on_save=sync_on_save,
        timer_minutes=int(timer),
    )
    try:
        config.save_settings(settings)
    except ConfigError as e:
        out.error(str(e))
        ctx.exit(1)

    out.success("Configuration saved successfully")
    out.info(f"Config file: {config.get_config_path()}")


@main.command()
@click.pass_context
def check(ctx: Any) -> None:
    """Show the current settings and validate the sync URL."""
    out: OutputFormatter = ctx.obj["out"]
    settings = _load_settings(ctx, out)

    code = diagnose_sync_url(settings.url)
    target = parse_sync_url(settings.url)

    if out.json_output:
        out.output_json(
            {
                "url": settings.url,
                "valid": code == SyncResultCode.SUCCESS,
                "result": code.value,
                "target": str(target) if target else None,
                "username": settings.username,
                "sync_on_open": settings.sync_on_open,
                "sync_on_save": settings.sync_on_save,
                "timer": format_interval(settings.timer_minutes),
            }
        )
    else:
        out.info(f"URL:          {settings.url}")
        out.info(f"Username:     {settings.username}")
        out.info(f"Sync on open: {settings.sync_on_open}")
        out.info(f"Sync on save: {settings.sync_on_save}")
        out.info(f"Auto-sync:    {format_interval(settings.timer_minutes)}")
        if code == SyncResultCode.SUCCESS:
            out.success(f"Target: {target}")
        else:
            out.error(f"The URL is invalid ({code.value})")

    if code != SyncResultCode.SUCCESS:
        ctx.exit(1)


@main.command()
@click.argument("database", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--master-password",
    envvar="PYVAULTSYNC_MASTER_PASSWORD",
    help="Vault master password (prompted if omitted)",
)
@click.option(
    "--unattended",
    is_flag=True,
    help="Never prompt; override a corrupted remote copy automatically",
)
@click.option("--no-progress", is_flag=True, help="Disable the progress spinner")
@click.pass_context
def sync(
    ctx: Any,
    database: str,
    master_password: Optional[str],
    unattended: bool,
    no_progress: bool,
) -> None:
    """Synchronize DATABASE with its remote copy.

    Examples:
        pyvaultsync sync ./vault.pvs
        pyvaultsync sync ./vault.pvs --unattended --no-progress
    """
    out: OutputFormatter = ctx.obj["out"]
    settings = _load_settings(ctx, out)
    vault = _open_vault(ctx, out, database, master_password)

    attended = not unattended
    show_progress = not (no_progress or out.quiet or out.json_output)
    try:
        code = _make_attempt(vault, settings, show_progress)(attended)
    finally:
        vault.close()

    report = SyncReporter(out).report(code, attended)
    if out.json_output:
        out.output_json(
            {"result": code.value, "status": report.status, "message": report.message}
        )

    if not code.is_success:
        ctx.exit(1)


@main.command()
@click.argument("database", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--master-password",
    envvar="PYVAULTSYNC_MASTER_PASSWORD",
    help="Vault master password (prompted if omitted)",
)
@click.option(
    "--interval",
    type=int,
    default=None,
    help="Override the auto-sync interval in minutes",
)
@click.pass_context
def watch(
    ctx: Any,
    database: str,
    master_password: Optional[str],
    interval: Optional[int],
) -> None:
    """Keep DATABASE open and synchronize it periodically until Ctrl+C."""
    out: OutputFormatter = ctx.obj["out"]
    settings = _load_settings(ctx, out)
    if interval is not None:
        settings.timer_minutes = max(interval, 0)
    if settings.timer_minutes == 0:
        out.error("Auto-sync is disabled; use --interval or 'pyvaultsync init --timer'")
        ctx.exit(1)

    vault = _open_vault(ctx, out, database, master_password)
    reporter = SyncReporter(out)
    scheduler = AutoSyncScheduler(
        _make_attempt(vault, settings, show_progress=False),
        settings,
        reporter=reporter,
    )

    out.info(f"Auto-sync every {format_interval(settings.timer_minutes)}")
    last_status: Optional[str] = None
    try:
        scheduler.on_database_opened()
        while True:
            status = scheduler.countdown_status()
            if status and status != last_status:
                reporter.status(status)
                last_status = status
            time.sleep(1)
    except KeyboardInterrupt:
        out.warning("\nStopped by user")
    finally:
        scheduler.on_database_closed()
        vault.close()


@main.group()
def vault() -> None:
    """Manage the local vault file."""


@vault.command("create")
@click.argument("database", type=click.Path(dir_okay=False))
@click.option(
    "--master-password",
    prompt="New vault password",
    hide_input=True,
    confirmation_prompt=True,
    envvar="PYVAULTSYNC_MASTER_PASSWORD",
)
@click.pass_context
def vault_create(ctx: Any, database: str, master_password: str) -> None:
    """Create an empty vault at DATABASE."""
    out: OutputFormatter = ctx.obj["out"]
    try:
        RecordVault.create(Path(database), MasterKey(master_password)).close()
    except DatabaseError as e:
        out.error(str(e))
        ctx.exit(1)
    out.success(f"Created {database}")


@vault.command("add")
@click.argument("database", type=click.Path(exists=True, dir_okay=False))
@click.option("--title", "-t", required=True, help="Record title")
@click.option("--username", "-u", default="", help="Record username")
@click.option("--url", default="", help="Record URL")
@click.option("--notes", default="", help="Record notes")
@click.option(
    "--password",
    "record_password",
    prompt="Record password",
    hide_input=True,
    default="",
    help="Record password",
)
@click.option(
    "--master-password",
    envvar="PYVAULTSYNC_MASTER_PASSWORD",
    help="Vault master password (prompted if omitted)",
)
@click.pass_context
def vault_add(
    ctx: Any,
    database: str,
    title: str,
    username: str,
    url: str,
    notes: str,
    record_password: str,
    master_password: Optional[str],
) -> None:
    """Add a record to DATABASE."""
    out: OutputFormatter = ctx.obj["out"]
    db = _open_vault(ctx, out, database, master_password)
    try:
        record = db.add(
            Record(
                title=title,
                username=username,
                password=record_password,
                url=url,
                notes=notes,
            )
        )
        db.save()
    except DatabaseError as e:
        out.error(str(e))
        ctx.exit(1)
    finally:
        db.close()

    if out.json_output:
        out.output_json({"id": record.id, "title": record.title})
    else:
        out.success(f"Added '{title}' ({record.id})")


@vault.command("ls")
@click.argument("database", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--master-password",
    envvar="PYVAULTSYNC_MASTER_PASSWORD",
    help="Vault master password (prompted if omitted)",
)
@click.pass_context
def vault_ls(ctx: Any, database: str, master_password: Optional[str]) -> None:
    """List the records of DATABASE (passwords are not shown)."""
    out: OutputFormatter = ctx.obj["out"]
    db = _open_vault(ctx, out, database, master_password)
    records = db.records
    db.close()

    if out.json_output:
        out.output_json(
            [
                {
                    "id": r.id,
                    "title": r.title,
                    "username": r.username,
                    "url": r.url,
                    "modified": r.modified,
                }
                for r in records
            ]
        )
        return

    if not records:
        out.info("No records.")
        return
    for r in records:
        out.print(f"{r.title:<30} {r.username:<20} {r.url}")
    out.info(f"\n{len(records)} record(s)")


if __name__ == "__main__":
    main()
