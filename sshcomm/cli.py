"""Command-line interface for sshcomm."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import List, Optional

import paramiko
import typer

from sshcomm.config import SETTING_NAMES, ConfigManager
from sshcomm.connection import SSHConnection
from sshcomm.remote_cmd import RemoteCommand
from sshcomm.scp import SCPError
from sshcomm.utils.path_helpers import human_readable_size, normalize_local_path

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s  %(levelname)-8s  %(name)s — %(message)s"
_DATE_FORMAT = "%H:%M:%S"

app = typer.Typer(
    add_completion=False,
    help="Run commands and upload files over SSH.",
    no_args_is_help=True,
)
host_app = typer.Typer(help="Manage saved hosts.", no_args_is_help=True)
config_app = typer.Typer(help="Show or change settings.", no_args_is_help=True)
app.add_typer(host_app, name="host")
app.add_typer(config_app, name="config")


def configure_logging(verbose: bool = False) -> None:
    """Set up root logging to stderr."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=_LOG_FORMAT,
        datefmt=_DATE_FORMAT,
        stream=sys.stderr,
    )
    # Quieten noisy third-party loggers
    logging.getLogger("paramiko").setLevel(logging.WARNING)


@app.callback()
def main(
    ctx: typer.Context,
    config_dir: Optional[Path] = typer.Option(
        None, "--config-dir", help="Settings directory (default ~/.sshcomm)."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """sshcomm — remote command execution and SCP upload."""
    configure_logging(verbose)
    ctx.obj = ConfigManager(base_dir=config_dir)




# ============================================================
# Connection helpers
# ============================================================


def _build_connection(
    config: ConfigManager,
    host: str,
    port: Optional[int],
    user: Optional[str],
    key: Optional[Path],
    accept_new_host: bool,
) -> SSHConnection:
    """Resolve *host* as a saved alias first, then as an address."""
    saved = config.host(host)
    address = saved.host if saved else host
    port = port or (saved.port if saved else 22)
    user = user or (saved.username if saved else None) or typer.prompt("SSH username")
    key_path = str(key) if key else (saved.key_path if saved else None)

    return SSHConnection.from_settings(
        config.settings,
        host=address,
        port=port,
        username=user,
        key_path=key_path,
        accept_new_host=accept_new_host,
    )


def _connect(connection: SSHConnection) -> None:
    try:
        connection.connect()
    except paramiko.SSHException as exc:
        typer.echo(f"Error: {exc}", err=True)
        if "known_hosts" in str(exc) and not connection.accept_new_host:
            typer.echo("Re-run with --accept-host-key to trust this host.", err=True)
        raise typer.Exit(code=1) from exc
    except OSError as exc:
        typer.echo(f"Error: cannot reach {connection.host}: {exc}", err=True)
        raise typer.Exit(code=1) from exc


_HOST_OPTION = typer.Option(..., "--host", "-H", help="Saved host alias or address.")
_PORT_OPTION = typer.Option(None, "--port", help="SSH port.")
_USER_OPTION = typer.Option(None, "--user", "-u", help="SSH username.")
_KEY_OPTION = typer.Option(None, "--key", "-i", help="Private key file.")
_ACCEPT_OPTION = typer.Option(
    False, "--accept-host-key", help="Record the key of a host not yet in known_hosts."
)


# ============================================================
# Commands
# ============================================================


@app.command()
def run(
    ctx: typer.Context,
    command: List[str] = typer.Argument(..., help="Command to run remotely."),
    forward_stdin: bool = typer.Option(False, "--stdin", help="Forward local stdin."),
    host: str = _HOST_OPTION,
    port: Optional[int] = _PORT_OPTION,
    user: Optional[str] = _USER_OPTION,
    key: Optional[Path] = _KEY_OPTION,
    accept_new_host: bool = _ACCEPT_OPTION,
) -> None:
    """Run COMMAND on the remote host and exit with its status."""
    config: ConfigManager = ctx.obj
    connection = _build_connection(config, host, port, user, key, accept_new_host)
    cmd = RemoteCommand(
        " ".join(command),
        stdin=sys.stdin.buffer if forward_stdin else None,
        stdout=sys.stdout.buffer,
        stderr=sys.stderr.buffer,
    )

    _connect(connection)
    try:
        with connection:
            exit_status = connection.communicator(config).start(cmd).result()
    except (paramiko.SSHException, OSError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    logger.info("Remote command finished with status %d", exit_status)
    raise typer.Exit(code=exit_status)


@app.command()
def upload(
    ctx: typer.Context,
    local_path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    remote_path: str = typer.Argument(..., help="Destination path on the remote host."),
    host: str = _HOST_OPTION,
    port: Optional[int] = _PORT_OPTION,
    user: Optional[str] = _USER_OPTION,
    key: Optional[Path] = _KEY_OPTION,
    accept_new_host: bool = _ACCEPT_OPTION,
) -> None:
    """Upload LOCAL_PATH to REMOTE_PATH using SCP."""
    config: ConfigManager = ctx.obj
    connection = _build_connection(config, host, port, user, key, accept_new_host)

    _connect(connection)
    try:
        with connection, open(normalize_local_path(local_path), "rb") as source:
            size = connection.communicator(config).upload(remote_path, source)
    except SCPError as exc:
        typer.echo(f"Error: {exc}", err=True)
        if exc.stderr:
            typer.echo(exc.stderr.decode("utf-8", errors="replace"), err=True)
        raise typer.Exit(code=exc.exit_status or 1) from exc
    except (ValueError, paramiko.SSHException, OSError) as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc

    typer.echo(f"Uploaded {human_readable_size(size)} to {remote_path}")


@app.command()
def download(
    remote_path: str = typer.Argument(...),
    local_path: Path = typer.Argument(...),
) -> None:
    """Not supported: downloading remote files."""
    typer.echo(f"Error: download of {remote_path} is not implemented", err=True)
    raise typer.Exit(code=1)


# ============================================================
# Saved hosts
# ============================================================


@host_app.command("add")
def host_add(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Alias to save the host under."),
    address: str = typer.Argument(..., help="Hostname or IP address."),
    port: int = typer.Option(22, "--port"),
    user: Optional[str] = _USER_OPTION,
    key: Optional[Path] = _KEY_OPTION,
    password: Optional[str] = typer.Option(
        None, "--password", help="Keep this password in the OS keyring."
    ),
) -> None:
    """Save ADDRESS under alias NAME, replacing any previous entry."""
    config: ConfigManager = ctx.obj
    if password and not user:
        typer.echo("Error: --password needs --user", err=True)
        raise typer.Exit(code=1)
    entry = config.save_host(name, address, port, user, str(key) if key else None)
    if password:
        SSHConnection(host=address, port=port, username=user).remember_password(password)
    typer.echo(f"Saved {name}: {entry.label}")


@host_app.command("list")
def host_list(ctx: typer.Context) -> None:
    """List saved hosts."""
    config: ConfigManager = ctx.obj
    entries = config.hosts()
    if not entries:
        typer.echo("No saved hosts.")
        return
    for entry in entries:
        typer.echo(f"{entry.name}: {entry.label}")


@host_app.command("remove")
def host_remove(ctx: typer.Context, name: str = typer.Argument(...)) -> None:
    """Forget a saved host and any password kept for it."""
    config: ConfigManager = ctx.obj
    entry = config.host(name)
    if entry is None or not config.remove_host(name):
        typer.echo(f"Unknown host alias: {name}", err=True)
        raise typer.Exit(code=1)
    if entry.username:
        SSHConnection(host=entry.host, port=entry.port, username=entry.username).forget_password()
    typer.echo(f"Removed {name}")


# ============================================================
# Settings
# ============================================================


@config_app.command("show")
def config_show(ctx: typer.Context) -> None:
    """Print every setting with its current value."""
    config: ConfigManager = ctx.obj
    for key in SETTING_NAMES:
        typer.echo(f"{key} = {config.get(key)!r}")


@config_app.command("set")
def config_set(
    ctx: typer.Context,
    key: str = typer.Argument(...),
    value: str = typer.Argument(...),
) -> None:
    """Change one setting."""
    config: ConfigManager = ctx.obj
    try:
        stored = config.set(key, value)
    except KeyError as exc:
        typer.echo(f"Error: unknown setting {key}", err=True)
        raise typer.Exit(code=1) from exc
    except ValueError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    typer.echo(f"{key} = {stored!r}")


@config_app.command("reset")
def config_reset(ctx: typer.Context, key: str = typer.Argument(...)) -> None:
    """Return one setting to its default."""
    config: ConfigManager = ctx.obj
    if key not in SETTING_NAMES:
        typer.echo(f"Error: unknown setting {key}", err=True)
        raise typer.Exit(code=1)
    config.reset(key)
    typer.echo(f"{key} = {config.get(key)!r}")
