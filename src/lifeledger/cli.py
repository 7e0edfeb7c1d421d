"""Typer-based CLI for the life ledger."""

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from .config import LedgerConfig
from .errors import LedgerError
from .ledger import Ledger
from .models.event import LifeEvent
from .notifications import AuditLogWriter, NotificationBus, read_notifications_tail
from .paths import StatePaths
from .store import LedgerStore

app = typer.Typer(
    name="lifeledger",
    help="Life Ledger - append-only, verifiable record of life events",
    add_completion=False,
)

console = Console()

STATE_HELP = "Path to ledger state directory (default: LIFELEDGER_HOME env or ./lifeledger_state)"
IDENTITY_HELP = "Identity performing the call (default: LIFELEDGER_IDENTITY env)"


@app.callback()
def main(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Enable debug logging",
    ),
):
    """Life Ledger command line."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )


def _load_config(state_path: Optional[str]) -> tuple[LedgerConfig, StatePaths]:
    config = LedgerConfig.from_env(cli_state_path=state_path)
    return config, StatePaths.from_config(config)


def _require_identity(identity: Optional[str]) -> str:
    if not identity:
        console.print("[red]Error: No caller identity. Pass --as or set LIFELEDGER_IDENTITY[/red]")
        raise typer.Exit(code=1)
    return identity


@contextmanager
def _open_ledger(state_path: Optional[str]) -> Iterator[Ledger]:
    """Open the ledger in the state directory; flushes notifications on exit."""
    config, paths = _load_config(state_path)

    if not paths.is_initialized():
        console.print(f"[red]Error: Ledger not initialized at {paths.root}[/red]")
        console.print("[yellow]Run 'lifeledger init --admin <identity>' first[/yellow]")
        raise typer.Exit(code=1)

    store = LedgerStore(paths.db_file)
    admin = store.get_admin()
    if admin is None:
        console.print(f"[red]Error: Ledger at {paths.root} has no admin recorded[/red]")
        raise typer.Exit(code=1)

    bus = NotificationBus()
    if config.audit_log_enabled:
        bus.subscribe(AuditLogWriter(paths.notifications_file))

    try:
        yield Ledger(admin, store=store, bus=bus)
    except LedgerError as e:
        console.print(f"[red]Error: {escape(e.message)}[/red]")
        raise typer.Exit(code=1)
    finally:
        bus.close()


def _print_event(event: LifeEvent) -> None:
    console.print(f"[cyan]Event {event.id}[/cyan]")
    console.print(f"  [dim]Owner:[/dim]       {event.owner}")
    console.print(f"  [dim]Type:[/dim]        [magenta]{event.event_type}[/magenta]")
    console.print(f"  [dim]Description:[/dim] {event.description}")
    console.print(f"  [dim]Created:[/dim]     {event.created_at.strftime('%Y-%m-%d %H:%M:%S')} UTC")
    console.print(f"  [dim]Document:[/dim]    {event.document_ref or '-'}")
    if event.verified:
        console.print(f"  [dim]Verified:[/dim]    [green]yes[/green] (by {event.verifier})")
    else:
        console.print("  [dim]Verified:[/dim]    [yellow]no[/yellow]")


@app.command()
def init(
    admin: str = typer.Option(
        None,
        "--admin",
        "-a",
        help="Admin identity (default: LIFELEDGER_ADMIN env or config)",
    ),
    state_path: str = typer.Option(None, "--state", "-s", help=STATE_HELP),
):
    """Initialize a ledger state directory and record its admin.

    This command is idempotent - it will not overwrite existing data.
    """
    config, paths = _load_config(state_path)
    admin = admin or config.admin
    if not admin:
        console.print("[red]Error: Must provide --admin (or set LIFELEDGER_ADMIN)[/red]")
        raise typer.Exit(code=1)
    config.admin = admin

    if paths.is_initialized():
        console.print(f"[yellow]Ledger already exists at:[/yellow] {paths.root}")
        console.print("[yellow]Running in idempotent mode - will only create missing items[/yellow]")
    else:
        console.print(f"[green]Initializing new ledger at:[/green] {paths.root}")

    for directory in paths.get_all_directories():
        directory.mkdir(parents=True, exist_ok=True)

    if not paths.config_file.exists():
        paths.config_file.write_text(config.to_toml_str(), encoding="utf-8")
        console.print(f"[green]+[/green] Created config: {paths.config_file}")
    else:
        console.print(f"[dim]Config already exists: {paths.config_file}[/dim]")

    try:
        Ledger.open(paths.db_file, admin)
    except (LedgerError, ValueError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]+[/green] Ledger database ready: {paths.db_file}")

    if not paths.notifications_file.exists():
        paths.notifications_file.touch()
        console.print(f"[green]+[/green] Created notifications log: {paths.notifications_file}")

    console.print()
    console.print("[bold green]Ledger initialization complete![/bold green]")
    console.print(f"[dim]Admin:[/dim] {admin}")


@app.command()
def record(
    event_type: str = typer.Option(..., "--type", "-t", help="Event type, e.g. birth"),
    description: str = typer.Option(..., "--description", "-d", help="Event description"),
    document_ref: str = typer.Option("", "--doc", help="Opaque reference to a supporting document"),
    identity: str = typer.Option(None, "--as", envvar="LIFELEDGER_IDENTITY", help=IDENTITY_HELP),
    state_path: str = typer.Option(None, "--state", "-s", help=STATE_HELP),
):
    """Record a life event owned by the caller."""
    caller = _require_identity(identity)
    with _open_ledger(state_path) as ledger:
        event_id = ledger.record_event(caller, event_type, description, document_ref)
    console.print(f"[green]Recorded event {event_id}[/green]")


@app.command()
def verify(
    event_id: int = typer.Argument(..., help="Id of the event to verify"),
    identity: str = typer.Option(None, "--as", envvar="LIFELEDGER_IDENTITY", help=IDENTITY_HELP),
    state_path: str = typer.Option(None, "--state", "-s", help=STATE_HELP),
):
    """Verify an event recorded by someone else (verifiers only)."""
    caller = _require_identity(identity)
    with _open_ledger(state_path) as ledger:
        event = ledger.verify_event(caller, event_id)
    console.print(f"[green]Event {event.id} verified by {event.verifier}[/green]")


@app.command()
def show(
    event_id: int = typer.Argument(..., help="Event id"),
    state_path: str = typer.Option(None, "--state", "-s", help=STATE_HELP),
):
    """Show the details of one event."""
    with _open_ledger(state_path) as ledger:
        event = ledger.get_event(event_id)
    _print_event(event)


@app.command()
def timeline(
    identity: str = typer.Argument(..., help="Owner identity"),
    state_path: str = typer.Option(None, "--state", "-s", help=STATE_HELP),
):
    """List the events recorded by an identity, oldest first."""
    with _open_ledger(state_path) as ledger:
        events = [ledger.get_event(event_id) for event_id in ledger.get_timeline(identity)]

    if not events:
        console.print(f"[dim]No events recorded by {identity}[/dim]")
        return

    table = Table(title=f"Timeline of {identity}")
    table.add_column("ID", style="cyan", justify="right")
    table.add_column("Created (UTC)", style="cyan", no_wrap=True)
    table.add_column("Type", style="magenta")
    table.add_column("Description")
    table.add_column("Verified By", style="green")

    for event in events:
        description = event.description
        if len(description) > 60:
            description = description[:57] + "..."
        table.add_row(
            str(event.id),
            event.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            event.event_type,
            description,
            event.verifier or "-",
        )

    console.print(table)


@app.command()
def total(
    state_path: str = typer.Option(None, "--state", "-s", help=STATE_HELP),
):
    """Print the number of events ever recorded."""
    with _open_ledger(state_path) as ledger:
        count = ledger.get_total_events()
    console.print(str(count))


verifiers_app = typer.Typer(help="Verifier set commands")
app.add_typer(verifiers_app, name="verifiers")


@verifiers_app.command("add")
def verifiers_add(
    target: str = typer.Argument(..., help="Identity to grant the verifier role"),
    identity: str = typer.Option(None, "--as", envvar="LIFELEDGER_IDENTITY", help=IDENTITY_HELP),
    state_path: str = typer.Option(None, "--state", "-s", help=STATE_HELP),
):
    """Grant the verifier role (admin only)."""
    caller = _require_identity(identity)
    with _open_ledger(state_path) as ledger:
        ledger.add_verifier(caller, target)
    console.print(f"[green]+[/green] {target} is now a verifier")


@verifiers_app.command("remove")
def verifiers_remove(
    target: str = typer.Argument(..., help="Identity to revoke"),
    identity: str = typer.Option(None, "--as", envvar="LIFELEDGER_IDENTITY", help=IDENTITY_HELP),
    state_path: str = typer.Option(None, "--state", "-s", help=STATE_HELP),
):
    """Revoke the verifier role (admin only; the admin cannot be removed)."""
    caller = _require_identity(identity)
    with _open_ledger(state_path) as ledger:
        ledger.remove_verifier(caller, target)
    console.print(f"[green]-[/green] {target} is no longer a verifier")


@verifiers_app.command("check")
def verifiers_check(
    target: str = typer.Argument(..., help="Identity to check"),
    state_path: str = typer.Option(None, "--state", "-s", help=STATE_HELP),
):
    """Report whether an identity is a verifier."""
    with _open_ledger(state_path) as ledger:
        is_verifier = ledger.is_verifier(target)
    if is_verifier:
        console.print(f"[green]{target} is a verifier[/green]")
    else:
        console.print(f"[yellow]{target} is not a verifier[/yellow]")


notifications_app = typer.Typer(help="Notification log commands")
app.add_typer(notifications_app, name="notifications")


@notifications_app.command("tail")
def notifications_tail(
    n: int = typer.Option(20, "--n", help="Number of recent notifications to display"),
    state_path: str = typer.Option(None, "--state", "-s", help=STATE_HELP),
):
    """Display the last N notifications from the audit log."""
    _, paths = _load_config(state_path)
    notifications = read_notifications_tail(paths.notifications_file, n=n)

    if not notifications:
        console.print("[dim]No notifications in log[/dim]")
        return

    table = Table(title=f"Last {len(notifications)} Notification(s)")
    table.add_column("Timestamp (UTC)", style="cyan", no_wrap=True)
    table.add_column("Kind", style="magenta")
    table.add_column("Event", style="yellow", justify="right")
    table.add_column("Identity")
    table.add_column("Actor", style="dim")

    for notification in notifications:
        table.add_row(
            notification.ts.strftime("%Y-%m-%d %H:%M:%S"),
            notification.kind.value,
            str(notification.event_id) if notification.event_id is not None else "-",
            notification.identity,
            notification.actor,
        )

    console.print(table)


@app.command()
def serve(
    host: str = typer.Option(None, "--host", help="Bind address (default: config api.host)"),
    port: int = typer.Option(None, "--port", help="Bind port (default: config api.port)"),
    state_path: str = typer.Option(None, "--state", "-s", help=STATE_HELP),
):
    """Serve the ledger over HTTP."""
    from .api import serve as serve_api

    config, _ = _load_config(state_path)
    bind_host = host or config.api_host
    bind_port = port if port is not None else config.api_port
    with _open_ledger(state_path) as ledger:
        console.print(f"[green]Serving ledger on {bind_host}:{bind_port}[/green]")
        serve_api(ledger, bind_host, bind_port)


if __name__ == "__main__":
    app()
