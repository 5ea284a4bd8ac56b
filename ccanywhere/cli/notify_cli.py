"""
Notify CLI Subcommands

Send an ad-hoc notification or test the configured channels.
"""

import asyncio
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from ccanywhere.cli import wiring
from ccanywhere.errors import ConfigurationError, NotificationError
from ccanywhere.notifications.dispatcher import NotificationDispatcher
from ccanywhere.notifications.types import NotificationMessage
from ccanywhere.types import NotificationOutcome

notify_app = typer.Typer(
    name="notify",
    help="Send and test notifications",
    no_args_is_help=True,
)

console = Console()


def _load_dispatcher(config_path: Optional[str]) -> NotificationDispatcher:
    try:
        config = wiring.get_config(config_path)
        return wiring.get_dispatcher(config)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)


def _print_outcomes(outcomes: List[NotificationOutcome]) -> None:
    table = Table(title="Notification Results")
    table.add_column("Channel", style="cyan")
    table.add_column("Result")
    table.add_column("Error", style="dim")
    for o in outcomes:
        table.add_row(
            o.channel,
            "[green]✓ sent[/green]" if o.success else "[red]✗ failed[/red]",
            o.error or "-",
        )
    console.print(table)


# =============================================================================
# Send Command
# =============================================================================

@notify_app.command("send")
def notify_send(
    title: str = typer.Option(..., "--title", "-t", help="Message title"),
    message: Optional[str] = typer.Option(None, "--message", "-m", help="Message body"),
    channels: Optional[str] = typer.Option(
        None,
        "--channels",
        help="Comma-separated channel subset (default: all configured)",
    ),
    error: bool = typer.Option(False, "--error", help="Mark as an error notification"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Config file"),
):
    """Send a custom notification."""
    dispatcher = _load_dispatcher(config_path)
    targets = [c.strip() for c in channels.split(",") if c.strip()] if channels else None

    notification = NotificationMessage(title=title, extra=message, is_error=error)
    try:
        outcomes = asyncio.run(dispatcher.send(notification, targets))
    except NotificationError as e:
        _print_outcomes(e.outcomes)
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(1)

    _print_outcomes(outcomes)


# =============================================================================
# Test Command
# =============================================================================

@notify_app.command("test")
def notify_test(
    channel: Optional[str] = typer.Option(None, "--channel", help="Test only this channel"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Config file"),
):
    """Send a test message to every configured channel."""
    dispatcher = _load_dispatcher(config_path)

    if channel:
        outcomes = [asyncio.run(dispatcher.test_channel(channel))]
    else:
        outcomes = asyncio.run(dispatcher.test_all_channels())

    _print_outcomes(outcomes)

    unconfigured = dispatcher.unconfigured_channels()
    if unconfigured and not channel:
        console.print(f"[dim]Not configured: {', '.join(unconfigured)}[/dim]")

    if not any(o.success for o in outcomes):
        raise typer.Exit(1)
