"""
Lock CLI Subcommands

Administrative access to the build lock: status, stale cleanup and
forced release.
"""

import json as json_lib
from datetime import datetime
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel

from ccanywhere.cli import wiring
from ccanywhere.errors import ConfigurationError

lock_app = typer.Typer(
    name="lock",
    help="Inspect and manage the build lock",
    no_args_is_help=True,
)

console = Console()


def _load(config_path: Optional[str]):
    try:
        config = wiring.get_config(config_path)
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)
    return config, wiring.get_lock_manager(config)


# =============================================================================
# Status Command
# =============================================================================

@lock_app.command("status")
def lock_status(
    lock_file: Optional[str] = typer.Option(None, "--lock-file", help="Lock file path"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Config file"),
    json: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show whether the build lock is held."""
    config, manager = _load(config_path)
    path = lock_file or config.build.lock_file

    locked = manager.is_locked(path)
    info = manager.get_lock_info(path)

    if json:
        output = {
            "lock_file": path,
            "locked": locked,
            "record": info.to_dict() if info else None,
        }
        print(json_lib.dumps(output, indent=2))
        return

    if info is None:
        console.print(f"[green]🔓 Unlocked[/green] [dim]({path})[/dim]")
        return

    acquired = datetime.fromtimestamp(info.timestamp / 1000).strftime("%Y-%m-%d %H:%M:%S")
    state = "[red]🔒 Locked[/red]" if locked else "[yellow]⏰ Stale[/yellow]"
    panel_content = f"""[bold]State:[/bold] {state}
[bold]Lock File:[/bold] {path}
[bold]PID:[/bold] {info.pid}
[bold]Revision:[/bold] {info.revision}
[bold]Host:[/bold] {info.hostname or "-"}
[bold]Acquired:[/bold] {acquired}
[bold]Age:[/bold] {info.age_ms() // 1000}s"""
    console.print(Panel(panel_content, title="Build Lock", border_style="blue"))


# =============================================================================
# Clean Command
# =============================================================================

@lock_app.command("clean")
def lock_clean(
    lock_dir: Optional[str] = typer.Option(None, "--lock-dir", help="Lock directory"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Config file"),
):
    """Remove stale and malformed lock files."""
    config, manager = _load(config_path)
    directory = lock_dir or config.build.lock_dir

    removed = manager.clean(directory)
    if not removed:
        console.print("[dim]No stale locks found[/dim]")
        return

    for path in removed:
        console.print(f"[green]✓ Removed:[/green] {path}")
    console.print(f"Cleaned {len(removed)} stale lock(s)")


# =============================================================================
# Force Release Command
# =============================================================================

@lock_app.command("force-release")
def lock_force_release(
    lock_file: Optional[str] = typer.Option(None, "--lock-file", help="Lock file path"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="Config file"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
):
    """Delete the lock file without checking who owns it."""
    config, manager = _load(config_path)
    path = lock_file or config.build.lock_file

    info = manager.get_lock_info(path)
    if info is not None and not yes:
        typer.confirm(
            f"Lock is owned by pid {info.pid} (revision {info.revision}). Release anyway?",
            abort=True,
        )

    if manager.force_release(path):
        console.print(f"[yellow]⚠ Lock force released:[/yellow] {path}")
    else:
        console.print(f"[dim]No lock file at {path}[/dim]")
